"""
Security utilities: OTP hashing and bearer token verification.
Uses PyJWT (not python-jose) — actively maintained, no known CVEs as of 2026.
"""
import base64
import hashlib
import hmac
import secrets

import jwt
from jwt.exceptions import InvalidTokenError

from app.config import Settings

SALT_BYTES = 16


# ── OTP Hashing ───────────────────────────────────────────────────────────────

def generate_salt() -> str:
    """16 random bytes, urlsafe base64 without padding (22 chars)."""
    return base64.urlsafe_b64encode(secrets.token_bytes(SALT_BYTES)).rstrip(b"=").decode("ascii")


def hash_otp(otp: str, salt: str, pepper: str) -> str:
    """
    sha256 hex of "code:salt:pepper".
    The pepper never touches the store, so a leaked otp_records table alone
    is not enough to brute-force the 10^6 code space offline.
    """
    return hashlib.sha256(f"{otp}:{salt}:{pepper}".encode("utf-8")).hexdigest()


def verify_otp_hash(otp: str, salt: str, pepper: str, expected_hash: str) -> bool:
    """Constant-time comparison of the recomputed digest against the stored one."""
    return hmac.compare_digest(hash_otp(otp, salt, pepper), expected_hash)


# ── Bearer Tokens ─────────────────────────────────────────────────────────────

def decode_access_token(token: str, settings: Settings) -> dict:
    """
    Verifies and decodes a bearer token issued by the auth provider.

    Signature, expiry and audience are checked by PyJWT before any claim is read;
    only then is the role claim inspected. Raises InvalidTokenError (or a
    subclass) on any failure. The caller converts that into a 401.
    """
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        options={"require": ["exp", "sub"]},
    )
    if payload.get("role") != "authenticated":
        raise InvalidTokenError("Not an authenticated user token")
    return payload
