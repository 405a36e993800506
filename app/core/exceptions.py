"""
Centralised custom exceptions.
Every failure a handler can produce is one of these. The handler registered in
main.py renders them as {"error": detail} with the matching status code.
"""
from fastapi import HTTPException, status


class ConfigurationError(HTTPException):
    def __init__(self, detail: str = "Server is not configured"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


class BadRequestException(HTTPException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class CredentialsException(HTTPException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(HTTPException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFoundException(HTTPException):
    def __init__(self, resource: str = "Resource"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )


# ── Verification-domain failures ──────────────────────────────────────────────
# All three are 400s. Expired and missing share one message; "wrong code" and
# "locked out" stay distinct so the UI can tell the user to resend.

class MalformedOTPException(BadRequestException):
    def __init__(self):
        super().__init__(detail="Invalid OTP format")


class OTPExpiredOrMissingException(BadRequestException):
    def __init__(self):
        super().__init__(detail="OTP expired or not found")


class InvalidOTPException(BadRequestException):
    def __init__(self):
        super().__init__(detail="Invalid OTP")


class TooManyAttemptsException(BadRequestException):
    def __init__(self):
        super().__init__(detail="Too many attempts. Please resend OTP.")


# ── Infrastructure failures ───────────────────────────────────────────────────

class DeliveryFailureException(HTTPException):
    def __init__(self, detail: str = "Failed to send OTP email"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


class StoreFailureException(HTTPException):
    def __init__(self, detail: str = "Storage error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
