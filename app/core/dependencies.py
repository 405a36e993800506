"""
FastAPI dependencies used across routers.
Keep this file lean — only auth/request-context dependencies go here.
Business logic belongs in services/.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt.exceptions import InvalidTokenError

from app.config import Settings, get_settings
from app.core.security import decode_access_token
from app.core.exceptions import CredentialsException

# auto_error=False so a missing header goes through our own 401 envelope
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Verifies the bearer token and returns its subject (the storefront user id).

    Checks performed (in order):
    1. Authorization header is present and uses the Bearer scheme
    2. Token signature, expiry and audience are valid
    3. role claim is "authenticated" and 'sub' is present
    """
    if credentials is None or not credentials.credentials:
        raise CredentialsException()
    try:
        payload = decode_access_token(credentials.credentials, settings)
    except InvalidTokenError:
        raise CredentialsException()

    user_id = payload.get("sub")
    if not user_id:
        raise CredentialsException()
    return user_id


def get_client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, falling back to the socket peer."""
    forwarded_for = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded_for.split(",")[0].strip()
    if first_hop:
        return first_hop
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    user_agent = request.headers.get("user-agent")
    return user_agent[:512] if user_agent else None
