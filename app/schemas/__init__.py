from app.schemas.otp import (
    AdminLoginOTPRequest, ReturnOTPRequest, OkResponse, ReturnOTPResponse
)
