"""
Email service using fastapi-mail over the provider's SMTP relay.

Resend setup (default relay):
  MAIL_SERVER=smtp.resend.com, MAIL_PORT=587, MAIL_USERNAME=resend,
  MAIL_PASSWORD=<Resend API key>, MAIL_FROM=<verified sender address>

fastapi-mail notes:
  - ConnectionConfig uses MAIL_STARTTLS=True, MAIL_SSL_TLS=False for port 587
  - MAIL_SSL_TLS=True, MAIL_STARTTLS=False for port 465
  - SUPPRESS_SEND=True renders and dispatches in-process only; tests collect
    the messages with fast_mail.record_messages()

OTP mails are sent inline, NOT via BackgroundTasks: if the send fails the
request must fail so the caller knows to resend.
"""
import html
import logging
from datetime import datetime, timezone
from typing import Optional

from aiosmtplib import SMTPException
from fastapi_mail import FastMail, MessageSchema, ConnectionConfig, MessageType
from fastapi_mail.errors import ConnectionErrors

from app.config import Settings
from app.core.exceptions import ConfigurationError, DeliveryFailureException

logger = logging.getLogger(__name__)


_fast_mail: Optional[FastMail] = None


def get_fast_mail(settings: Settings) -> FastMail:
    """Build the SMTP client once per process — don't rebuild on every request."""
    global _fast_mail
    if _fast_mail is not None:
        return _fast_mail
    mail_config = ConnectionConfig(
        MAIL_USERNAME=settings.mail_username,
        MAIL_PASSWORD=settings.mail_password,
        MAIL_FROM=settings.mail_from,
        MAIL_FROM_NAME=settings.app_name,
        MAIL_PORT=settings.mail_port,
        MAIL_SERVER=settings.mail_server,
        MAIL_STARTTLS=settings.mail_port != 465,
        MAIL_SSL_TLS=settings.mail_port == 465,
        USE_CREDENTIALS=True,
        VALIDATE_CERTS=True,
        TIMEOUT=settings.mail_timeout_seconds,
        SUPPRESS_SEND=settings.mail_suppress_send,
    )
    _fast_mail = FastMail(mail_config)
    return _fast_mail


def ensure_mail_configured(settings: Settings) -> None:
    if not settings.mail_suppress_send and not (settings.mail_password and settings.mail_from):
        raise ConfigurationError("Missing email configuration")


def _minutes_left(expires_at: datetime) -> int:
    seconds = (expires_at - datetime.now(timezone.utc)).total_seconds()
    return max(1, round(seconds / 60))


def admin_login_otp_html(app_name: str, otp: str, minutes: int, logo_url: str = "") -> str:
    app_name = html.escape(app_name)
    logo = (
        f'<img src="{html.escape(logo_url, quote=True)}" alt="" width="34" height="34" '
        f'style="border-radius:8px;display:block;" />'
        if logo_url else ""
    )
    return (
        f"<!doctype html><html><body style=\"margin:0;background:#f6f7fb;font-family:system-ui,Arial,sans-serif;\">"
        f"<div style=\"max-width:560px;margin:0 auto;padding:28px 16px;\">"
        f"<div style=\"background:#0f172a;color:#fff;padding:20px;border-radius:14px 14px 0 0;\">"
        f"{logo}<div style=\"font-size:18px;font-weight:700;\">{app_name}</div>"
        f"<div style=\"font-size:14px;opacity:0.9;\">Admin login verification code</div></div>"
        f"<div style=\"background:#fff;padding:22px;border-radius:0 0 14px 14px;\">"
        f"<p>Use the OTP below to complete admin login. This code expires in <b>{minutes} minutes</b>.</p>"
        f"<div style=\"font-size:28px;font-weight:800;letter-spacing:6px;text-align:center;\">{otp}</div>"
        f"<p style=\"font-size:12px;color:#475569;\">If you didn't request this, you can ignore this email.</p>"
        f"</div></div></body></html>"
    )


def return_otp_html(app_name: str, otp: str, minutes: int, order_reference: str) -> str:
    app_name = html.escape(app_name)
    order_reference = html.escape(order_reference)
    return (
        f"<!doctype html><html><body style=\"margin:0;background:#f0f9ff;font-family:system-ui,Arial,sans-serif;\">"
        f"<div style=\"max-width:480px;margin:0 auto;padding:32px 18px;\">"
        f"<div style=\"background:#1e40af;color:#fff;padding:24px;text-align:center;border-radius:20px 20px 0 0;\">"
        f"<div style=\"font-size:22px;font-weight:800;\">{app_name}</div>"
        f"<div style=\"font-size:13px;\">Secure Return Verification</div></div>"
        f"<div style=\"background:#fff;padding:28px 24px;text-align:center;border-radius:0 0 20px 20px;\">"
        f"<p>OTP for your return request</p>"
        f"<p>Order ID: <b>{order_reference}</b></p>"
        f"<div style=\"font-size:36px;letter-spacing:10px;font-weight:800;\">{otp}</div>"
        f"<p>Valid for <b>{minutes} minutes</b> only. Do not share this OTP with anyone.</p>"
        f"<p style=\"font-size:12px;color:#64748b;\">If you did not request this, please ignore this email.</p>"
        f"</div></div></body></html>"
    )


async def _send(settings: Settings, to: str, subject: str, body_html: str) -> None:
    message = MessageSchema(
        subject=subject,
        recipients=[to],
        body=body_html,
        subtype=MessageType.html,
    )
    try:
        await get_fast_mail(settings).send_message(message)
    except (ConnectionErrors, SMTPException) as exc:
        logger.error(f"OTP email delivery failed: subject={subject!r}, error={exc}")
        raise DeliveryFailureException() from exc


async def send_admin_login_otp_email(
    settings: Settings, email_to: str, otp: str, expires_at: datetime
) -> None:
    body = admin_login_otp_html(
        settings.app_name, otp, _minutes_left(expires_at), settings.admin_otp_logo_url
    )
    await _send(settings, email_to, f"{settings.app_name} admin login OTP", body)


async def send_return_otp_email(
    settings: Settings, email_to: str, otp: str, expires_at: datetime, order_reference: str
) -> None:
    body = return_otp_html(settings.app_name, otp, _minutes_left(expires_at), order_reference)
    await _send(settings, email_to, f"{settings.app_name} return verification OTP", body)
