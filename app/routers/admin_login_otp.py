"""
Admin login OTP router.

The scope is a single operator email fixed by ADMIN_OTP_EMAIL. There is no
per-user scoping: whoever can read that inbox can log in as admin.

  POST /admin-login-otp {"action": "request"}               → email a code (60s cooldown)
  POST /admin-login-otp {"action": "verify", "otp": "..."}  → consume the code

`email` is optional; when present it must match the configured address
(case-insensitive) or the call is rejected before any OTP work happens.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.core.rate_limiter import limiter
from app.core.dependencies import get_client_ip, get_user_agent
from app.core.exceptions import BadRequestException, ConfigurationError
from app.schemas.otp import AdminLoginOTPRequest, OkResponse
from app.services import otp_service
from app.services.email_service import ensure_mail_configured, send_admin_login_otp_email
from app.services.otp_service import ADMIN_LOGIN_POLICY

OTP_RATE_LIMIT = get_settings().otp_rate_limit

router = APIRouter()


@router.post("/admin-login-otp", response_model=OkResponse)
@limiter.limit(OTP_RATE_LIMIT)
async def admin_login_otp(
    request: Request,
    body: AdminLoginOTPRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    admin_email = settings.admin_email
    if not admin_email:
        raise ConfigurationError("Missing ADMIN_OTP_EMAIL")

    if body.email is not None and body.email != admin_email:
        raise BadRequestException("Invalid admin email")

    if body.action == "request":
        ensure_mail_configured(settings)

        async def deliver(otp: str, expires_at: datetime) -> None:
            await send_admin_login_otp_email(settings, admin_email, otp, expires_at)

        # Throttled or not, the caller sees the same response.
        await otp_service.request_otp(
            db,
            ADMIN_LOGIN_POLICY,
            admin_email,
            deliver,
            pepper=settings.otp_pepper,
            requester_ip=get_client_ip(request),
            requester_user_agent=get_user_agent(request),
        )
        return {"ok": True}

    otp_service.verify_otp(
        db, ADMIN_LOGIN_POLICY, admin_email, body.otp or "", pepper=settings.otp_pepper
    )
    return {"ok": True}
