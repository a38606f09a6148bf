"""
CareNote Backend — Application Package Initializer
===================================================

What: Backend-for-frontend API for the CareNote clinical documentation product.
Who:  Imported by uvicorn (`carenote.main:app`), Alembic, pytest and the
      maintenance scripts in `backend/scripts`.

Architecture Note:

    ┌─────────────────────────────────────┐
    │   Routes + Dependencies (API)       │  ← HTTP, auth, subscription gate
    ├─────────────────────────────────────┤
    │   Services (Business Logic)         │  ← pricing, tenancy, invitations
    ├─────────────────────────────────────┤
    │   Models & Schemas (Data)           │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database (Persistence)            │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Outbound collaborators (Corti clinical AI, SMTP) live in services and
    surface failures as UpstreamServiceError.
"""

__version__ = "1.0.0"
