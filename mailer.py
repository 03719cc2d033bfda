"""Password reset emails over SMTP."""

import smtplib
from email.message import EmailMessage
from urllib.parse import urlencode

from config import Settings, get_settings
from errors import DeliveryError
from log import get_logger

logger = get_logger(__name__)

SUBJECT = "Reset Your Password - Expense Tracker"

TEXT_TEMPLATE = """Password Reset Request

We received a request to reset your password for your Expense Tracker account.

Click the link below to reset your password:
{reset_url}

This link will expire in 1 hour for security reasons.

If you didn't request a password reset, you can safely ignore this email.
"""

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="color: #1d4ed8;">Expense Tracker</h1>
    <h2 style="color: #1f2937;">Password Reset Request</h2>
    <p>We received a request to reset your password. Click the button below to create a new password:</p>
    <p style="text-align: center; margin: 30px 0;">
      <a href="{reset_url}" style="background: #3b82f6; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; font-weight: bold;">Reset Password</a>
    </p>
    <p style="color: #6b7280; font-size: 14px;">This link will expire in 1 hour for security reasons.</p>
    <p style="color: #6b7280; font-size: 14px;">If you didn't request a password reset, you can safely ignore this email.</p>
    <p style="color: #9ca3af; font-size: 12px;">If the button doesn't work, copy and paste this link into your browser:<br>{reset_url}</p>
  </body>
</html>
"""


def build_reset_url(token: str, settings: Settings = None) -> str:
    settings = settings or get_settings()
    return f"{settings.app_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"


def build_reset_message(email: str, token: str, settings: Settings = None) -> EmailMessage:
    settings = settings or get_settings()
    reset_url = build_reset_url(token, settings)
    message = EmailMessage()
    message["Subject"] = SUBJECT
    message["From"] = settings.smtp_from
    message["To"] = email
    message.set_content(TEXT_TEMPLATE.format(reset_url=reset_url))
    message.add_alternative(HTML_TEMPLATE.format(reset_url=reset_url), subtype="html")
    return message


def send_password_reset_email(email: str, token: str) -> None:
    settings = get_settings()
    message = build_reset_message(email, token, settings)
    try:
        if settings.smtp_secure:
            server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=30)
        else:
            server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30)
        with server:
            server.ehlo()
            if not settings.smtp_secure and server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            if settings.smtp_user:
                server.login(settings.smtp_user, settings.smtp_pass)
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise DeliveryError("Failed to send reset email") from exc
    logger.info("reset_email_sent", smtp_host=settings.smtp_host)
