"""
Application entry point.

Run locally:
    uvicorn app.main:app --reload --port 8000

In Docker:
    CMD ["uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", "8000"]

API docs available at:
    http://localhost:8000/docs   (Swagger UI)
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.core.exceptions import StoreFailureException
from app.core.rate_limiter import limiter
from app.routers import admin_login_otp, return_otp

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = first.get("loc", ("body",))[-1]
    if first.get("type") == "missing":
        return "Invalid request body" if field == "body" else f"Missing {field}"
    if first.get("type") == "json_invalid":
        return "Invalid JSON body"
    # field_validator errors arrive as "Value error, <our message>"
    return str(first.get("msg", "Invalid request")).removeprefix("Value error, ")


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not settings.otp_pepper:
        logger.warning("OTP_PEPPER is empty; OTP hashes rely on the per-record salt only")

    app = FastAPI(
        title=f"{settings.app_name} OTP API",
        description=(
            "One-time-password issuance and verification for admin login "
            "and order return confirmation."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # ── Rate Limiter ──────────────────────────────────────────────────────────
    # slowapi's 429 handler already answers with {"error": "..."}
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # ── Error envelope ────────────────────────────────────────────────────────
    # Every failure leaves as {"error": "<message>"}.
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def store_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Store operation failed")
        store_error = StoreFailureException()
        return JSONResponse(status_code=store_error.status_code, content={"error": store_error.detail})

    # ── CORS ──────────────────────────────────────────────────────────────────
    # Permissive by default: the storefront and admin panel call these
    # endpoints from the browser. Preflight OPTIONS is answered here.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(admin_login_otp.router, tags=["Admin Login OTP"])
    app.include_router(return_otp.router, tags=["Return OTP"])

    # ── Health Check ──────────────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    def health_check():
        """
        Simple health check endpoint for load balancers and Docker health checks.
        Returns 200 if the application is running.
        """
        return {"status": "ok", "version": "1.0.0"}

    return app


app = create_app()
