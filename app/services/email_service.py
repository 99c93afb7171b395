"""
Email Service - transactional mail over SMTP.

Used for the verification and password-reset OTPs. With
EMAIL_SUPPRESS_SEND=true (tests, local development) nothing leaves the
process; the message is only logged.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, html: str, text: Optional[str] = None) -> bool:
    """
    Send a single email.

    Returns:
        True if the message was handed to the SMTP server (or suppressed)
    """
    settings = get_settings()

    if settings.email_suppress_send:
        logger.info("Email suppressed: to=%s subject=%r", to_email, subject)
        return True

    if not settings.smtp_host:
        logger.warning("SMTP_HOST not configured; email to %s not sent", to_email)
        return False

    msg = MIMEMultipart("alternative")
    msg["From"] = f"{settings.from_name} <{settings.from_email}>"
    msg["To"] = to_email
    msg["Subject"] = subject
    if text:
        msg.attach(MIMEText(text, "plain"))
    msg.attach(MIMEText(html, "html"))

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(msg, from_addr=settings.from_email, to_addrs=[to_email])
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send email to %s: %s", to_email, e)
        return False

    logger.info("Email sent to %s", to_email)
    return True


def _otp_body(heading: str, otp: str, minutes: int) -> tuple:
    html = (
        f"<p>{heading}</p>"
        f"<p style=\"font-size:22px;letter-spacing:4px\"><b>{otp}</b></p>"
        f"<p>This code expires in {minutes} minutes.</p>"
    )
    text = f"{heading}\n\n{otp}\n\nThis code expires in {minutes} minutes."
    return html, text


def send_verification_otp(to_email: str, otp: str) -> bool:
    minutes = get_settings().verify_otp_expires_min
    html, text = _otp_body("Use this code to verify your email address:", otp, minutes)
    return send_email(to_email, "Verify your email", html, text)


def send_password_reset_otp(to_email: str, otp: str) -> bool:
    minutes = get_settings().reset_otp_expires_min
    html, text = _otp_body("Use this code to reset your password:", otp, minutes)
    return send_email(to_email, "Reset your password", html, text)
