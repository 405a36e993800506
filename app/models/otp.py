import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Index, Integer, String, TIMESTAMP, Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql.expression import text
from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OTPRecord(Base):
    """
    Stores hashed one-time codes bound to a (purpose, scope_key) pair.

    Security notes:
    - The raw code is NEVER stored, only sha256(code:salt:pepper) plus the salt.
    - At most one row per purpose+scope_key has consumed_at IS NULL. The partial
      unique index below enforces it at the store level, so two concurrent
      issuances cannot both leave an active code behind.
    - consumed_at is set on success, on lockout, and on supersession; once set
      the row is inert forever.
    - verified_at is only written by flows that record positive confirmation
      separately from consumption (admin login).
    """
    __tablename__ = "otp_records"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, nullable=False)
    purpose = Column(
        SAEnum("admin_login", "order_return", name="otp_purpose"),
        nullable=False,
    )
    scope_key = Column(String(255), nullable=False)
    code_hash = Column(String(64), nullable=False)   # sha256 hex
    code_salt = Column(String(64), nullable=False)   # urlsafe base64, stored in clear
    attempts = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)
    consumed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    verified_at = Column(TIMESTAMP(timezone=True), nullable=True)

    # Provenance captured at issuance (admin flow)
    requester_ip = Column(String(64), nullable=True)
    requester_user_agent = Column(String(512), nullable=True)

    __table_args__ = (
        Index(
            "uq_otp_records_active_scope",
            "purpose",
            "scope_key",
            unique=True,
            postgresql_where=text("consumed_at IS NULL"),
            sqlite_where=text("consumed_at IS NULL"),
        ),
        Index("ix_otp_records_scope_consumed", "purpose", "scope_key", "consumed_at"),
    )

    def __repr__(self) -> str:
        return f"<OTPRecord id={self.id} purpose={self.purpose} attempts={self.attempts}>"
