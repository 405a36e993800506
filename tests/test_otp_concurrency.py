import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import (
    InvalidOTPException,
    OTPExpiredOrMissingException,
    TooManyAttemptsException,
)
from app.database import Base
from app.models import OTPRecord
from app.services import otp_service
from app.services.otp_service import ADMIN_LOGIN_POLICY, ORDER_RETURN_POLICY

PEPPER = "unit-pepper"
T0 = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)
ORDER_SCOPE = "7f1b6a52-2f2e-4c3e-9a57-2d4b8a0f3c11:0b8d1c7e-5d4a-4f0e-8a7b-3c2e1d0f9a88"
WORKERS = 8


class Outbox:
    def __init__(self):
        self.codes = []

    async def __call__(self, otp, expires_at):
        self.codes.append(otp)


@pytest.fixture()
def shared_sessions(tmp_path):
    """
    Session factory over a file-backed SQLite database that several threads
    can open at once. Every transaction starts with BEGIN IMMEDIATE, so
    concurrent sessions queue on the write lock like row-locked Postgres
    transactions do instead of failing with "database is locked".
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'otp.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_size=WORKERS,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


def _rows(session_factory, policy, scope):
    with session_factory() as db:
        return (
            db.query(OTPRecord)
            .filter(OTPRecord.purpose == policy.purpose, OTPRecord.scope_key == scope)
            .all()
        )


# ── Concurrent issuance ───────────────────────────────────────────────────────

def test_concurrent_requests_leave_one_active_code(shared_sessions):
    outbox = Outbox()

    def request(_):
        with shared_sessions() as db:
            return asyncio.run(otp_service.request_otp(
                db, ORDER_RETURN_POLICY, ORDER_SCOPE, outbox, pepper=PEPPER, now=T0,
            ))

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(request, range(WORKERS)))

    issued = [r for r in results if not r.throttled]
    assert len(issued) == 1
    assert len(outbox.codes) == 1
    assert all(r.record_id == issued[0].record_id for r in results)

    rows = _rows(shared_sessions, ORDER_RETURN_POLICY, ORDER_SCOPE)
    assert len(rows) == 1
    assert rows[0].consumed_at is None


# ── Concurrent guessing ───────────────────────────────────────────────────────

def test_concurrent_wrong_guesses_never_exceed_attempt_limit(shared_sessions, issued_codes):
    issued_codes("424242")
    with shared_sessions() as db:
        asyncio.run(otp_service.request_otp(
            db, ADMIN_LOGIN_POLICY, "admin@cartlyfy.com", Outbox(), pepper=PEPPER, now=T0,
        ))

    def guess(_):
        with shared_sessions() as db:
            try:
                otp_service.verify_otp(
                    db, ADMIN_LOGIN_POLICY, "admin@cartlyfy.com", "000000",
                    pepper=PEPPER, now=T0 + timedelta(seconds=5),
                )
            except (InvalidOTPException, OTPExpiredOrMissingException, TooManyAttemptsException) as exc:
                return type(exc)
        return None

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        outcomes = list(pool.map(guess, range(WORKERS * 2)))

    assert outcomes.count(InvalidOTPException) == ADMIN_LOGIN_POLICY.max_attempts
    assert outcomes.count(OTPExpiredOrMissingException) == len(outcomes) - ADMIN_LOGIN_POLICY.max_attempts

    [row] = _rows(shared_sessions, ADMIN_LOGIN_POLICY, "admin@cartlyfy.com")
    assert row.attempts == ADMIN_LOGIN_POLICY.max_attempts
    assert row.consumed_at is not None
    assert row.verified_at is None


# ── Lost insert race ──────────────────────────────────────────────────────────

def test_insert_rejected_by_store_reports_throttled(db_session, monkeypatch):
    # Another request's code lands after our supersede ran: simulated by an
    # existing active row (outside the cooldown) that the supersede misses.
    rival = OTPRecord(
        purpose=ORDER_RETURN_POLICY.purpose,
        scope_key=ORDER_SCOPE,
        code_hash="0" * 64,
        code_salt="salt",
        created_at=T0 - timedelta(minutes=1),
        expires_at=T0 + timedelta(minutes=9),
    )
    db_session.add(rival)
    db_session.commit()
    rival_id = rival.id

    supersede = MagicMock()
    supersede.filter.return_value.update.return_value = 0
    outbox = Outbox()
    with monkeypatch.context() as patched:
        patched.setattr(db_session, "query", lambda *entities: supersede)
        result = asyncio.run(otp_service.request_otp(
            db_session, ORDER_RETURN_POLICY, ORDER_SCOPE, outbox, pepper=PEPPER, now=T0,
        ))

    assert result.throttled
    assert result.record_id is None
    assert outbox.codes == []

    db_session.expire_all()
    [row] = db_session.query(OTPRecord).all()
    assert row.id == rival_id
    assert row.consumed_at is None


# ── Scope lock ────────────────────────────────────────────────────────────────

def _session_on(dialect_name):
    db = MagicMock()
    db.get_bind.return_value.dialect.name = dialect_name
    return db


def test_scope_lock_takes_postgres_advisory_lock():
    db = _session_on("postgresql")

    otp_service._lock_scope(db, ORDER_RETURN_POLICY, ORDER_SCOPE)

    [call] = db.execute.call_args_list
    statement = call.args[0]
    compiled = statement.compile(compile_kwargs={"literal_binds": True})
    assert "pg_advisory_xact_lock(hashtext(" in str(compiled)
    assert f"order_return:{ORDER_SCOPE}" in str(compiled)


def test_scope_lock_is_a_no_op_elsewhere():
    db = _session_on("sqlite")

    otp_service._lock_scope(db, ORDER_RETURN_POLICY, ORDER_SCOPE)

    db.execute.assert_not_called()


def test_request_and_verify_take_the_scope_lock(db_session, monkeypatch):
    locked = []
    monkeypatch.setattr(
        otp_service, "_lock_scope", lambda db, policy, scope: locked.append((policy.purpose, scope))
    )

    outbox = Outbox()
    asyncio.run(otp_service.request_otp(
        db_session, ORDER_RETURN_POLICY, ORDER_SCOPE, outbox, pepper=PEPPER, now=T0,
    ))
    otp_service.verify_otp(db_session, ORDER_RETURN_POLICY, ORDER_SCOPE, outbox.codes[0], pepper=PEPPER, now=T0)

    assert locked == [("order_return", ORDER_SCOPE)] * 2
