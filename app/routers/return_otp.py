"""
Order return OTP router.

The scope is (authenticated user id, order id). Before any OTP work:
  - the bearer token must verify and carry role "authenticated"
  - the order must exist, belong to the token subject, be delivered,
    and have no return on record

  POST /return-otp {"action": "request" | "resend", "order_id": "<uuid>"}
      → {"ok": true, "expires_at": "..."}  or  {"ok": true, "throttled": true}
  POST /return-otp {"action": "verify", "order_id": "<uuid>", "otp": "123456"}
      → {"ok": true}

"resend" behaves exactly like "request": the 10s cooldown absorbs
double-clicks and a new code supersedes the previous one.
"""
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.core.rate_limiter import limiter
from app.core.dependencies import get_current_user_id
from app.schemas.otp import ReturnOTPRequest, ReturnOTPResponse
from app.services import otp_service, order_service
from app.services.email_service import ensure_mail_configured, send_return_otp_email
from app.services.otp_service import ORDER_RETURN_POLICY

OTP_RATE_LIMIT = get_settings().otp_rate_limit

router = APIRouter()


@router.post("/return-otp", response_model=ReturnOTPResponse, response_model_exclude_none=True)
@limiter.limit(OTP_RATE_LIMIT)
async def return_otp(
    request: Request,
    body: ReturnOTPRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    order_id = uuid.UUID(body.order_id)
    order = order_service.get_returnable_order(db, order_id, user_id)
    scope_key = order_service.return_scope_key(user_id, order_id)

    if body.action in ("request", "resend"):
        ensure_mail_configured(settings)
        # Read before request_otp commits and expires the instance
        email_to = order_service.customer_email(order)
        order_reference = order.order_id

        async def deliver(otp: str, expires_at: datetime) -> None:
            await send_return_otp_email(settings, email_to, otp, expires_at, order_reference)

        result = await otp_service.request_otp(
            db, ORDER_RETURN_POLICY, scope_key, deliver, pepper=settings.otp_pepper
        )
        if result.throttled:
            return {"ok": True, "throttled": True}
        return {"ok": True, "expires_at": result.expires_at.isoformat()}

    otp_service.verify_otp(
        db, ORDER_RETURN_POLICY, scope_key, body.otp or "", pepper=settings.otp_pepper
    )
    return {"ok": True}
