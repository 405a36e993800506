"""
OTP service: generation, storage (hashed), cooldown, and verification.

Shared by every flow that needs a short-lived numeric code. Callers decide who
is allowed to act for a scope; this module only deals in (purpose, scope_key)
pairs and knows nothing about users, orders, or admins.

Security design decisions:
  1. Raw OTP is NEVER stored — only sha256(code:salt:pepper) and the salt.
  2. A new code supersedes (consumes) every active code for the same scope, in
     the same transaction as the insert. The partial unique index on
     otp_records turns a concurrent double-insert into an IntegrityError.
  3. Codes expire after policy.validity_minutes (10 min in both flows).
  4. secrets.randbelow() per digit: uniform, leading zeros allowed.
  5. Each wrong guess increments attempts under a row lock; reaching
     policy.max_attempts consumes the record, so a single code allows at most
     five guesses and more guesses require a fresh (rate-limited) delivery.
  6. Malformed guesses are rejected before the store is touched and never
     cost an attempt.
  7. On PostgreSQL every request and verify for a scope first takes a
     transaction-scoped advisory lock on "purpose:scope_key", so the cooldown
     check always sees a concurrent request's committed insert.
"""
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.otp import OTPRecord
from app.core.security import generate_salt, hash_otp, verify_otp_hash
from app.core.exceptions import (
    MalformedOTPException,
    OTPExpiredOrMissingException,
    InvalidOTPException,
    TooManyAttemptsException,
)

logger = logging.getLogger(__name__)

# Delivery callback: receives the plaintext code and its expiry, raises
# DeliveryFailureException if the message could not be handed off.
DeliverFn = Callable[[str, datetime], Awaitable[None]]


@dataclass(frozen=True)
class OtpPolicy:
    purpose: str
    cooldown_seconds: int
    validity_minutes: int = 10
    max_attempts: int = 5
    code_length: int = 6
    records_verification: bool = False


ADMIN_LOGIN_POLICY = OtpPolicy(
    purpose="admin_login",
    cooldown_seconds=60,
    records_verification=True,
)

ORDER_RETURN_POLICY = OtpPolicy(
    purpose="order_return",
    cooldown_seconds=10,
)


@dataclass(frozen=True)
class OtpIssueResult:
    throttled: bool
    expires_at: Optional[datetime] = None
    record_id: Optional[uuid.UUID] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we write is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_otp(length: int = 6) -> str:
    """Fixed-width string of cryptographically random digits, e.g. "034917"."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def is_well_formed(otp: str, policy: OtpPolicy) -> bool:
    return re.fullmatch(f"[0-9]{{{policy.code_length}}}", otp or "") is not None


def _unconsumed(policy: OtpPolicy, scope_key: str):
    return (
        OTPRecord.purpose == policy.purpose,
        OTPRecord.scope_key == scope_key,
        OTPRecord.consumed_at.is_(None),
    )


def _lock_scope(db: Session, policy: OtpPolicy, scope_key: str) -> None:
    # Row locks alone let two READ COMMITTED requests both pass the cooldown
    # check when neither sees the other's uncommitted insert. The advisory
    # lock is released on commit/rollback.
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(select(func.pg_advisory_xact_lock(func.hashtext(f"{policy.purpose}:{scope_key}"))))


def get_active_otp(
    db: Session,
    policy: OtpPolicy,
    scope_key: str,
    now: Optional[datetime] = None,
    for_update: bool = False,
) -> Optional[OTPRecord]:
    """
    The record a verification would run against: unconsumed and not expired.
    Expired-but-unconsumed rows are treated as absent.
    """
    now = now or utcnow()
    query = (
        select(OTPRecord)
        .where(*_unconsumed(policy, scope_key), OTPRecord.expires_at > now)
        .order_by(OTPRecord.created_at.desc())
        .limit(1)
    )
    if for_update:
        query = query.with_for_update()
    return db.execute(query).scalar_one_or_none()


async def request_otp(
    db: Session,
    policy: OtpPolicy,
    scope_key: str,
    deliver: DeliverFn,
    *,
    pepper: str,
    now: Optional[datetime] = None,
    requester_ip: Optional[str] = None,
    requester_user_agent: Optional[str] = None,
) -> OtpIssueResult:
    """
    Issues a new code for scope_key and hands it to `deliver`.

    Steps:
    1. Take the scope lock, then lock the latest unconsumed record
       (SELECT FOR UPDATE).
       If it was created inside the cooldown window, return throttled=True
       and do nothing else.
    2. Generate code + salt, hash with the pepper.
    3. In ONE transaction: consume every unconsumed record for the scope,
       insert the new one. An IntegrityError here means a concurrent request
       inserted first; that request owns the active code, so we report
       throttled instead of inserting a second one.
    4. Deliver. A delivery failure propagates; the row stays persisted and is
       superseded by the next request/resend once the cooldown has passed.
    """
    now = now or utcnow()

    _lock_scope(db, policy, scope_key)
    latest = db.execute(
        select(OTPRecord)
        .where(*_unconsumed(policy, scope_key))
        .order_by(OTPRecord.created_at.desc())
        .limit(1)
        .with_for_update()
    ).scalar_one_or_none()

    if latest is not None:
        age = now - _as_utc(latest.created_at)
        if age < timedelta(seconds=policy.cooldown_seconds):
            result = OtpIssueResult(
                throttled=True,
                expires_at=_as_utc(latest.expires_at),
                record_id=latest.id,
            )
            db.rollback()  # release the row lock
            logger.info(f"OTP request throttled: purpose={policy.purpose}, record={result.record_id}")
            return result

    raw_otp = generate_otp(policy.code_length)
    salt = generate_salt()
    record_id = uuid.uuid4()
    expires_at = now + timedelta(minutes=policy.validity_minutes)

    # Supersede, then insert — same transaction
    db.query(OTPRecord).filter(*_unconsumed(policy, scope_key)).update(
        {"consumed_at": now}, synchronize_session=False
    )
    db.add(
        OTPRecord(
            id=record_id,
            purpose=policy.purpose,
            scope_key=scope_key,
            code_hash=hash_otp(raw_otp, salt, pepper),
            code_salt=salt,
            attempts=0,
            created_at=now,
            expires_at=expires_at,
            requester_ip=requester_ip,
            requester_user_agent=requester_user_agent,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(f"OTP insert lost a race: purpose={policy.purpose}, treating as throttled")
        return OtpIssueResult(throttled=True)

    logger.info(f"OTP issued: purpose={policy.purpose}, record={record_id}, expires_at={expires_at.isoformat()}")

    # Never retried: a second send would deliver the same code twice.
    await deliver(raw_otp, expires_at)

    return OtpIssueResult(throttled=False, expires_at=expires_at, record_id=record_id)


def verify_otp(
    db: Session,
    policy: OtpPolicy,
    scope_key: str,
    otp: str,
    *,
    pepper: str,
    now: Optional[datetime] = None,
) -> OTPRecord:
    """
    Verifies `otp` against the active record for scope_key.

    Returns the consumed record on success. Raises:
      MalformedOTPException          — wrong shape; store untouched, no attempt spent
      OTPExpiredOrMissingException   — no unconsumed, unexpired record
      TooManyAttemptsException       — record already at the attempt limit
      InvalidOTPException            — wrong code; attempts incremented and the
                                       record consumed once the limit is reached

    The record is read FOR UPDATE and every write lands in the same
    transaction, so concurrent guesses cannot exceed max_attempts.
    """
    otp = (otp or "").strip()
    if not is_well_formed(otp, policy):
        raise MalformedOTPException()

    now = now or utcnow()

    _lock_scope(db, policy, scope_key)
    record = get_active_otp(db, policy, scope_key, now, for_update=True)

    if record is None:
        db.rollback()
        raise OTPExpiredOrMissingException()

    if record.attempts >= policy.max_attempts:
        # Should already be consumed; make it so.
        record.consumed_at = now
        db.commit()
        raise TooManyAttemptsException()

    if not verify_otp_hash(otp, record.code_salt, pepper, record.code_hash):
        record.attempts = record.attempts + 1
        locked_out = record.attempts >= policy.max_attempts
        if locked_out:
            record.consumed_at = now
        record_id = record.id
        db.commit()
        if locked_out:
            logger.warning(f"OTP locked out after {policy.max_attempts} attempts: purpose={policy.purpose}, record={record_id}")
        raise InvalidOTPException()

    record.consumed_at = now
    if policy.records_verification:
        record.verified_at = now
    db.commit()
    db.refresh(record)

    logger.info(f"OTP verified: purpose={policy.purpose}, record={record.id}")
    return record
