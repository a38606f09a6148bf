"""
CareNote Backend — Email Dispatcher
=====================================

What:  Sends transactional emails: invitation, welcome/verification,
       password reset, verification reminder and contact-form forwarding.
How:   Jinja2 renders a small HTML + plain-text body, aiosmtplib delivers it.
       Every send is awaited; an SMTP failure raises UpstreamServiceError
       naming the operation so the calling workflow can abort or compensate.
Who:   AuthService (welcome, reset, reminder), InvitationService (invitation),
       the public contact route (contact message).

With EMAIL_ENABLED=false (development, tests) messages are rendered and
logged but not delivered.
"""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib
from jinja2 import Environment, select_autoescape

from carenote.config import settings
from carenote.exceptions import UpstreamServiceError

logger = logging.getLogger(__name__)

_env = Environment(autoescape=select_autoescape(default_for_string=True))

_LAYOUT = """
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2>{{ heading }}</h2>
    {% for paragraph in paragraphs %}<p>{{ paragraph }}</p>{% endfor %}
    {% if action_url %}
    <p><a href="{{ action_url }}" style="display: inline-block; padding: 12px 24px;
       background: #2563eb; color: white; text-decoration: none; border-radius: 4px;">
       {{ action_label }}</a></p>
    <p style="font-size: 12px; color: #666;">{{ action_url }}</p>
    {% endif %}
    <p>Venlig hilsen<br>{{ company_name }}</p>
  </div>
</body>
</html>
"""

_TEXT_LAYOUT = """{{ heading }}

{% for paragraph in paragraphs %}{{ paragraph }}

{% endfor %}{% if action_url %}{{ action_label }}: {{ action_url }}

{% endif %}Venlig hilsen
{{ company_name }}
"""


class EmailService:
    """Async SMTP email dispatcher."""

    def __init__(self):
        self.company_name = settings.email_from_name
        self.frontend_url = settings.frontend_url.rstrip("/")
        self._html = _env.from_string(_LAYOUT)
        self._text = _env.from_string(_TEXT_LAYOUT)

    # ── Transport ─────────────────────────────────────────────────────────
    async def send_email(
        self,
        to: str,
        subject: str,
        heading: str,
        paragraphs: list,
        operation: str,
        action_url: Optional[str] = None,
        action_label: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        """
        Render and deliver one message.

        Raises:
            UpstreamServiceError: SMTP connection, auth or delivery failed.
        """
        context = {
            "heading": heading,
            "paragraphs": paragraphs,
            "action_url": action_url,
            "action_label": action_label,
            "company_name": self.company_name,
        }
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{self.company_name} <{settings.email_from}>"
        message["To"] = to
        if reply_to:
            message["Reply-To"] = reply_to
        message.attach(MIMEText(self._text.render(**context), "plain", "utf-8"))
        message.attach(MIMEText(self._html.render(**context), "html", "utf-8"))

        if not settings.email_enabled:
            logger.info("Email delivery disabled; %s to %s: %s", operation, to, action_url or subject)
            return

        try:
            await aiosmtplib.send(
                message,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                start_tls=settings.smtp_use_tls,
                timeout=settings.smtp_timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("Email %s to %s failed: %s", operation, to, str(e))
            raise UpstreamServiceError(
                service="email",
                operation=operation,
                message="The email could not be sent. Please try again later.",
                context={"error_type": type(e).__name__},
            ) from e

        logger.info("Email %s sent to %s", operation, to)

    # ── Messages ──────────────────────────────────────────────────────────
    async def send_invitation(
        self,
        email: str,
        token: str,
        tenant_name: str,
        inviter_name: str,
        invitee_name: Optional[str] = None,
    ) -> None:
        await self.send_email(
            to=email,
            subject=f"Invitation til {tenant_name} - {self.company_name}",
            heading=f"Hej {invitee_name or email}",
            paragraphs=[
                f"{inviter_name} har inviteret dig til {tenant_name} på {self.company_name}.",
                f"Invitationen udløber om {settings.invitation_ttl_days} dage.",
            ],
            operation="send_invitation",
            action_url=f"{self.frontend_url}/accept-invitation?token={token}",
            action_label="Accepter invitation",
        )

    async def send_welcome(self, email: str, name: str, verification_token: str) -> None:
        await self.send_email(
            to=email,
            subject=f"Velkommen til {self.company_name} - Bekræft din e-mailadresse",
            heading=f"Velkommen {name}",
            paragraphs=[
                f"Din prøveperiode på {settings.trial_days} dage er startet.",
                "Bekræft din e-mailadresse for at logge ind.",
            ],
            operation="send_welcome",
            action_url=f"{self.frontend_url}/verify-email?token={verification_token}",
            action_label="Bekræft e-mail",
        )

    async def send_password_reset(self, email: str, name: str, reset_token: str) -> None:
        await self.send_email(
            to=email,
            subject=f"Nulstil din adgangskode - {self.company_name}",
            heading=f"Hej {name}",
            paragraphs=[
                "Vi har modtaget en anmodning om at nulstille din adgangskode.",
                f"Linket er gyldigt i {settings.password_reset_ttl_minutes} minutter.",
            ],
            operation="send_password_reset",
            action_url=f"{self.frontend_url}/reset-password?token={reset_token}",
            action_label="Nulstil adgangskode",
        )

    async def send_verification_reminder(self, email: str, name: str, verification_token: str) -> None:
        await self.send_email(
            to=email,
            subject=f"Påmindelse: Bekræft din e-mailadresse - {self.company_name}",
            heading=f"Hej {name}",
            paragraphs=["Du mangler stadig at bekræfte din e-mailadresse."],
            operation="send_verification_reminder",
            action_url=f"{self.frontend_url}/verify-email?token={verification_token}",
            action_label="Bekræft e-mail",
        )

    async def send_contact_message(self, name: str, email: str, subject: str, message: str) -> None:
        """Forward a public contact-form message to the support inbox; replies go to the sender."""
        await self.send_email(
            to=settings.contact_email,
            subject=f"Kontakthenvendelse: {subject}",
            heading=f"Ny besked fra {name}",
            paragraphs=[f"Afsender: {name} <{email}>", f"Emne: {subject}", *message.split("\n\n")],
            operation="send_contact_message",
            reply_to=email,
        )


# ── Singleton Instance ────────────────────────────────────────────────────
email_service = EmailService()
