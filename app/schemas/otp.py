"""
OTP schemas: request bodies and responses for the admin-login and return OTP endpoints.
"""
import uuid
from pydantic import BaseModel, field_validator
from typing import Literal, Optional


class AdminLoginOTPRequest(BaseModel):
    action: str
    email: Optional[str] = None
    otp: Optional[str] = None

    @field_validator("action")
    @classmethod
    def action_valid(cls, v: str) -> str:
        if v not in {"request", "verify"}:
            raise ValueError("Invalid action")
        return v

    @field_validator("email")
    @classmethod
    def email_normalised(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v is not None else None


class ReturnOTPRequest(BaseModel):
    action: str
    order_id: str
    otp: Optional[str] = None

    @field_validator("action")
    @classmethod
    def action_valid(cls, v: str) -> str:
        if v not in {"request", "resend", "verify"}:
            raise ValueError("Invalid action")
        return v

    @field_validator("order_id")
    @classmethod
    def order_id_is_uuid(cls, v: str) -> str:
        try:
            return str(uuid.UUID(v.strip()))
        except ValueError:
            raise ValueError("Invalid order_id")


class OkResponse(BaseModel):
    ok: Literal[True] = True


class ReturnOTPResponse(BaseModel):
    ok: Literal[True] = True
    expires_at: Optional[str] = None
    throttled: Optional[bool] = None
