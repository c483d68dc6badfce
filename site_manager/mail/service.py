"""Email delivery over SMTP.

Messages are built with :class:`email.message.EmailMessage` and handed to a
blocking :mod:`smtplib` session that runs in a worker thread so request
handlers never stall on the mail server.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import TYPE_CHECKING, Any, Optional, Sequence

from site_manager.config import settings

if TYPE_CHECKING:
    from site_manager.interventions.models import InterventionRequest
    from site_manager.sites.models import Site
    from site_manager.users.models import User

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 10

_PRIORITY_EMOJI = {
    "low": "🟢",
    "medium": "🟡",
    "high": "🟠",
    "urgent": "🔴",
}


@dataclass
class MailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class DeliveryResult:
    ok: bool
    message_id: Optional[str] = None
    error: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


# ── Low-level delivery ──────────────────────────────────────────────

def _build_message(
    *,
    subject: str,
    body: str,
    to_email: str,
    from_name: str,
    reply_to: Optional[str] = None,
    attachments: Sequence[MailAttachment] = (),
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name, settings.email_sender))
    msg["To"] = to_email
    msg["Message-ID"] = make_msgid(domain=settings.email_sender.rsplit("@", 1)[-1] or None)
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.set_content(body)

    for attachment in attachments:
        maintype, _, subtype = attachment.content_type.partition("/")
        msg.add_attachment(
            attachment.content,
            maintype=maintype or "application",
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return msg


def _deliver(msg: EmailMessage) -> DeliveryResult:
    """Send *msg* synchronously. Never raises."""
    if not settings.SMTP_HOST or not settings.email_sender:
        return DeliveryResult(ok=False, error="SMTP not configured")

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
            if settings.SMTP_USE_TLS:
                smtp.starttls()
            if settings.EMAIL_USER:
                smtp.login(settings.EMAIL_USER, settings.EMAIL_PASSWORD)
            smtp.send_message(msg)
        return DeliveryResult(ok=True, message_id=msg["Message-ID"])
    except (smtplib.SMTPException, OSError) as exc:
        return DeliveryResult(ok=False, error=str(exc)[:400])


async def _send(msg: EmailMessage) -> DeliveryResult:
    result = await asyncio.to_thread(_deliver, msg)
    if result.ok:
        logger.info("Email sent to %s: %s", msg["To"], msg["Subject"])
    else:
        logger.warning("Email to %s failed: %s", msg["To"], result.error)
    return result


# ── Service ─────────────────────────────────────────────────────────

class EmailService:
    """Transactional emails sent by the platform."""

    @staticmethod
    async def send_otp_email(email: str, otp_code: str, first_name: str) -> bool:
        """Send the registration verification code.

        In development without SMTP credentials the code is only logged so
        sign-up can be exercised locally, and delivery failures are tolerated.
        """
        if settings.is_development and not settings.email_configured:
            logger.info("OTP for %s: %s (email delivery disabled)", email, otp_code)
            return True

        body = (
            f"Hello {first_name}!\n\n"
            "Thank you for registering with TM Paysage Site Manager. To complete "
            "your account creation, please verify your email address using the "
            "code below:\n\n"
            f"    {otp_code}\n\n"
            f"This code expires in {settings.OTP_EXPIRY_MINUTES} minutes. You have "
            f"{settings.OTP_MAX_ATTEMPTS} attempts to enter it correctly.\n\n"
            "If you did not request this, you can ignore this email."
        )
        msg = _build_message(
            subject="Account Verification - OTP Code",
            body=body,
            to_email=email,
            from_name=settings.EMAIL_FROM_NAME,
        )
        result = await _send(msg)
        if not result.ok and settings.is_development:
            logger.info("OTP for %s: %s (delivery failed in development)", email, otp_code)
            return True
        return result.ok

    @staticmethod
    async def send_welcome_email(email: str, first_name: str) -> bool:
        """Greet a newly verified user. Failures are logged only."""
        body = (
            f"Welcome {first_name}!\n\n"
            "Your TM Paysage Site Manager account is now active. You can sign in "
            f"from the mobile app or at {settings.FRONTEND_URL}.\n"
        )
        msg = _build_message(
            subject="Welcome to TM Paysage Site Manager!",
            body=body,
            to_email=email,
            from_name=settings.EMAIL_FROM_NAME,
        )
        result = await _send(msg)
        return result.ok

    @staticmethod
    async def send_user_email(
        sender: User,
        *,
        to_email: str,
        subject: str,
        body: str,
        attachments: Sequence[MailAttachment] = (),
    ) -> DeliveryResult:
        """Send on behalf of *sender*; replies go straight to the user."""
        msg = _build_message(
            subject=subject,
            body=body,
            to_email=to_email,
            from_name=sender.full_name,
            reply_to=sender.email,
            attachments=attachments,
        )
        return await _send(msg)

    @staticmethod
    async def send_system_email(to_email: str, subject: str, body: str) -> bool:
        msg = _build_message(
            subject=subject,
            body=body,
            to_email=to_email,
            from_name=settings.EMAIL_FROM_NAME,
        )
        result = await _send(msg)
        return result.ok

    @staticmethod
    async def send_intervention_email(
        to_email: str,
        request: InterventionRequest,
        submitter: User,
        site: Optional[Site] = None,
    ) -> bool:
        """Notify a workshop member about a newly transferred request."""
        subject, body = render_intervention_email(request, submitter, site)
        return await EmailService.send_system_email(to_email, subject, body)

    @staticmethod
    async def verify() -> DeliveryResult:
        """Open an authenticated SMTP session without sending anything."""

        def _check() -> DeliveryResult:
            try:
                with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
                    if settings.SMTP_USE_TLS:
                        smtp.starttls()
                    if settings.EMAIL_USER:
                        smtp.login(settings.EMAIL_USER, settings.EMAIL_PASSWORD)
                    smtp.noop()
                return DeliveryResult(ok=True)
            except (smtplib.SMTPException, OSError) as exc:
                return DeliveryResult(ok=False, error=str(exc)[:400])

        if not settings.email_configured:
            return DeliveryResult(ok=False, error="SMTP credentials not configured")
        return await asyncio.to_thread(_check)

    @staticmethod
    def status() -> dict[str, Any]:
        return {
            "configured": settings.email_configured,
            "smtp_host": settings.SMTP_HOST,
            "smtp_port": settings.SMTP_PORT,
            "use_tls": settings.SMTP_USE_TLS,
            "sender": settings.email_sender or None,
            "sender_name": settings.EMAIL_FROM_NAME,
            "environment": settings.ENVIRONMENT,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }


def render_intervention_email(
    request: InterventionRequest,
    submitter: User,
    site: Optional[Site] = None,
) -> tuple[str, str]:
    """Return ``(subject, body)`` for a workshop notification."""
    prefix = "🚨 EMERGENCY REQUEST 🚨 " if request.is_emergency else ""
    subject = f"{prefix}New Workshop Intervention Request - {request.title}"

    priority = request.priority.value
    lines = [
        "New Workshop Intervention Request" + (" (EMERGENCY)" if request.is_emergency else ""),
        "",
        f"Title: {request.title}",
        f"Priority: {_PRIORITY_EMOJI.get(priority, '')} {priority}",
        f"Submitted by: {submitter.full_name} ({submitter.role.value})",
    ]
    if site is not None:
        lines.append(f"Site: {site.name} - {site.city}")
    if request.equipment_location:
        lines.append(f"Equipment Location: {request.equipment_location}")
    lines += ["", "Description:", request.description]
    if request.equipment_details:
        lines += ["", "Equipment Details:", request.equipment_details]
    lines += [
        "",
        f"Request ID: {request.id}",
        f"Submitted: {request.created_at:%Y-%m-%d %H:%M}",
        "",
        "This is an automated notification from TM Paysage Site Manager.",
    ]
    return subject, "\n".join(lines)
