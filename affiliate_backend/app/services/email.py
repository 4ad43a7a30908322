"""Send transactional e-mails (OTP codes) through an HTTP e-mail API."""
from typing import Optional

import httpx

from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.core.settings import get_settings

logger = get_logger(__name__)


class EmailDeliveryError(ServiceError):
    def __init__(self, message: str = "Could not send e-mail, please try again later"):
        super().__init__(message, 503)


OTP_SUBJECTS = {
    "verify": "Verify Your Account",
    "resend": "Resend OTP",
    "device": "Login OTP",
    "reset": "Password Reset OTP",
}


def render_otp_email(purpose: str, code: str, ttl_minutes: Optional[int] = None) -> tuple[str, str]:
    """Return (subject, html) for an OTP e-mail."""
    subject = OTP_SUBJECTS.get(purpose, "Your OTP")
    if purpose == "device":
        html = f"<h3>Your login OTP is {code}</h3>"
    elif purpose == "reset":
        html = f"<h3>Your password reset OTP is {code}</h3>"
    elif purpose == "resend":
        html = f"<h3>Your new OTP is {code}</h3>"
    else:
        html = f"<h3>Your OTP is {code}</h3>"
    if ttl_minutes:
        html += f"<p>This OTP expires in {ttl_minutes} minutes.</p>"
    return subject, html


async def send_email(to: str, subject: str, html: str) -> bool:
    """
    Send an e-mail. Returns True when the provider accepted it.

    Returns False only when no provider is configured (development).
    Raises EmailDeliveryError when the provider is configured but the
    message could not be handed over.
    """
    settings = get_settings()
    if not settings.EMAIL_API_URL:
        logger.warning("EMAIL_API_URL not set, skip e-mail", to=to, subject=subject)
        return False

    headers = {"Content-Type": "application/json"}
    if settings.EMAIL_API_KEY:
        headers["Authorization"] = f"Bearer {settings.EMAIL_API_KEY}"
    payload = {
        "from": settings.EMAIL_FROM,
        "to": [to],
        "subject": subject,
        "html": html,
    }
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            r = await client.post(settings.EMAIL_API_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.error("E-mail API request failed", to=to, subject=subject, error=str(e))
        raise EmailDeliveryError()

    if not r.is_success:
        logger.error(
            "E-mail API rejected message",
            to=to,
            subject=subject,
            status=r.status_code,
            body=r.text[:500],
        )
        raise EmailDeliveryError()

    logger.info("E-mail sent", to=to, subject=subject)
    return True


async def send_otp_email(to: str, purpose: str, code: str, ttl_minutes: Optional[int] = None) -> bool:
    subject, html = render_otp_email(purpose, code, ttl_minutes)
    return await send_email(to, subject, html)
