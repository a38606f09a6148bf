# Importing every model registers it on Base.metadata (Alembic, create_all)
from carenote.models.user import User
from carenote.models.subscription import Subscription
from carenote.models.clinical_session import ClinicalSession, SessionFact
from carenote.models.template import Template
from carenote.models.lead import Lead

__all__ = ["User", "Subscription", "ClinicalSession", "SessionFact", "Template", "Lead"]
