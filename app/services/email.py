"""SMTP email sender for OTP codes and welcome messages."""

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

import anyio

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    """Outcome of one delivery attempt; failures are reported, never raised."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def _otp_bodies(otp_code: str, display_name: str) -> tuple[str, str]:
    minutes = settings.OTP_EXPIRE_MINUTES
    html = f"""
    <div>
        <h2>Email verification code</h2>
        <p>Hi {display_name},</p>
        <p>Use the following one-time code to verify your Aarambh account:</p>
        <h3 style="color: #FF1493; font-size: 24px; letter-spacing: 4px; text-align: center;">{otp_code}</h3>
        <p>The code expires in {minutes} minutes.</p>
        <p>If you did not request this code, you can ignore this email.</p>
    </div>
    """
    text = (
        f"Hi {display_name},\n\nYour Aarambh verification code is {otp_code}.\n"
        f"It expires in {minutes} minutes.\n"
    )
    return html, text


def _welcome_bodies(display_name: str) -> tuple[str, str]:
    html = f"""
    <div>
        <h1>Welcome to Aarambh!</h1>
        <p>Hi {display_name},</p>
        <p>Thank you for joining Aarambh LMS. We're excited to have you on board.</p>
        <ul>
            <li>Explore your personalized dashboard</li>
            <li>Join discussions and connect with peers</li>
            <li>Start your first course</li>
        </ul>
        <p>Happy learning!<br>The Aarambh Team</p>
    </div>
    """
    text = (
        f"Welcome to Aarambh LMS, {display_name}! We're excited to have you on board. "
        "Start exploring your dashboard and begin your learning journey today!"
    )
    return html, text


async def _deliver(to_email: str, subject: str, html: str, text: str) -> EmailResult:
    """Send one message via SMTP in a worker thread so the request loop is not blocked."""

    message_id = make_msgid(domain=(settings.FROM_EMAIL or "aarambh.local").split("@")[-1])

    if settings.EMAIL_DELIVERY == "console":
        logger.info("console email delivery", extra={"to": to_email, "subject": subject, "body": text})
        return EmailResult(success=True, message_id=message_id)

    def _send() -> None:
        """Inner sync function executed in a thread."""
        if not all([settings.SMTP_SERVER, settings.SMTP_USERNAME, settings.SMTP_PASSWORD, settings.FROM_EMAIL]):
            raise RuntimeError("SMTP settings are incomplete.")

        message = MIMEMultipart("alternative")
        message["From"] = formataddr((settings.FROM_NAME, settings.FROM_EMAIL))
        message["To"] = to_email
        message["Subject"] = subject
        message["Message-ID"] = message_id
        message.attach(MIMEText(text, "plain"))
        message.attach(MIMEText(html, "html"))

        with smtplib.SMTP(settings.SMTP_SERVER, int(settings.SMTP_PORT), timeout=20) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(message)

    try:
        await anyio.to_thread.run_sync(_send)
    except (smtplib.SMTPException, OSError, RuntimeError) as exc:
        logger.warning("email delivery failed", extra={"to": to_email, "error": str(exc)})
        return EmailResult(success=False, error=str(exc))

    logger.info("email sent", extra={"to": to_email, "message_id": message_id})
    return EmailResult(success=True, message_id=message_id)


async def send_otp_email(email: str, otp_code: str, display_name: Optional[str] = None) -> EmailResult:
    """Send the OTP code to the provided email address."""
    html, text = _otp_bodies(otp_code, display_name or "User")
    return await _deliver(email, "Your Aarambh verification code", html, text)


async def send_welcome_email(email: str, display_name: str) -> EmailResult:
    html, text = _welcome_bodies(display_name)
    return await _deliver(email, "Welcome to Aarambh LMS!", html, text)
