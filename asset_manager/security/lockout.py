from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from asset_manager.models.account_lockout import REASON_TOO_MANY_FAILED, AccountLockout
from asset_manager.models.login_attempt import ATTEMPT_FAILED, ATTEMPT_SUCCESS

from .attempt_ledger import AttemptLedger
from .client_ip import RequestContext
from .clock import Clock, SystemClock
from .denials import SecurityStoreUnavailable
from .dialects import dialect_name, insert_for, supports_returning
from .security_events import (
    ACCOUNT_LOCKED,
    ACCOUNT_UNLOCKED,
    LEDGER_STORE_ERROR,
    LOCKOUT_STORE_ERROR,
    SecurityEventLogger,
    Severity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutSettings:
    max_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=30)
    lookback: timedelta = timedelta(hours=1)
    # keep expired lockout rows this long so repeat offenders keep their attempt_count
    purge_grace: timedelta = timedelta(hours=1)
    fail_closed: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.lockout_duration <= timedelta(0):
            raise ValueError("lockout_duration must be positive")
        if self.lookback <= timedelta(0):
            raise ValueError("lookback must be positive")

    @classmethod
    def from_config(cls, config) -> "LockoutSettings":
        return cls(
            max_attempts=int(config.get("MAX_LOGIN_ATTEMPTS", 5)),
            lockout_duration=timedelta(minutes=int(config.get("LOCKOUT_DURATION_MINUTES", 30))),
            lookback=timedelta(minutes=int(config.get("FAILURE_LOOKBACK_MINUTES", 60))),
            purge_grace=timedelta(hours=int(config.get("LOCKOUT_PURGE_GRACE_HOURS", 1))),
            fail_closed=bool(config.get("LOCKOUT_FAIL_CLOSED", False)),
        )


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    locked_until: datetime | None = None
    attempt_count: int = 0

    def remaining_seconds(self, now: datetime) -> int:
        if not self.locked or self.locked_until is None:
            return 0
        return max(0, math.ceil((self.locked_until - now).total_seconds()))

    def remaining_minutes(self, now: datetime) -> int:
        return math.ceil(self.remaining_seconds(now) / 60)


UNLOCKED = LockStatus(locked=False)


@dataclass(frozen=True)
class FailureOutcome:
    locked: bool
    attempt_count: int
    remaining_attempts: int = 0
    lockout_duration: timedelta | None = None


class LockoutPolicy:
    """
    Unlocked -> Locked(until) -> Unlocked, derived from the attempt ledger.

    A lockout is "active" while locked_until > now; expiry needs no write.
    Administrative unlock deletes the row.
    """

    def __init__(
        self,
        db,
        ledger: AttemptLedger,
        events: SecurityEventLogger,
        clock: Clock | None = None,
        settings: LockoutSettings | None = None,
    ):
        self.db = db
        self.ledger = ledger
        self.events = events
        self.clock = clock or SystemClock()
        self.settings = settings or LockoutSettings()

    # ---------- reads ----------

    def is_locked(self, identifier: str) -> LockStatus:
        now = self.clock.now()
        stmt = (
            sa.select(AccountLockout.locked_until, AccountLockout.attempt_count)
            .where(AccountLockout.identifier == identifier)
            .where(AccountLockout.locked_until > now)
        )
        try:
            row = self.db.session.execute(stmt).first()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            self.events.log_event(
                LOCKOUT_STORE_ERROR,
                Severity.ERROR,
                {
                    "identifier": identifier,
                    "error": type(exc).__name__,
                    "fail_closed": self.settings.fail_closed,
                },
            )
            if self.settings.fail_closed:
                raise SecurityStoreUnavailable("lockout status unavailable") from exc
            return UNLOCKED

        if row is None:
            return UNLOCKED
        return LockStatus(locked=True, locked_until=row.locked_until, attempt_count=row.attempt_count)

    def active_lockouts(self) -> list[AccountLockout]:
        now = self.clock.now()
        return (
            AccountLockout.query.filter(AccountLockout.locked_until > now)
            .order_by(AccountLockout.locked_until.desc())
            .all()
        )

    # ---------- outcomes reported by the login handler ----------

    def record_failed_attempt(self, identifier: str, ctx: RequestContext) -> FailureOutcome:
        max_attempts = self.settings.max_attempts
        try:
            self.ledger.record_attempt(identifier, ctx.ip, ctx.user_agent, ATTEMPT_FAILED)
            attempt_count = self.ledger.count_recent_failures(identifier, self.settings.lookback)
        except SQLAlchemyError as exc:
            self.events.log_event(
                LEDGER_STORE_ERROR,
                Severity.ERROR,
                {"identifier": identifier, "ip": ctx.ip, "operation": "record_failed_attempt", "error": type(exc).__name__},
            )
            return FailureOutcome(locked=False, attempt_count=0, remaining_attempts=max_attempts)

        if attempt_count < max_attempts:
            return FailureOutcome(
                locked=False,
                attempt_count=attempt_count,
                remaining_attempts=max_attempts - attempt_count,
            )

        try:
            times_locked = self.lock(identifier)
        except SQLAlchemyError as exc:
            self.events.log_event(
                LOCKOUT_STORE_ERROR,
                Severity.ERROR,
                {"identifier": identifier, "ip": ctx.ip, "operation": "lock", "error": type(exc).__name__},
            )
            return FailureOutcome(locked=False, attempt_count=attempt_count, remaining_attempts=0)

        self.events.log_event(
            ACCOUNT_LOCKED,
            Severity.WARN,
            {
                "identifier": identifier,
                "ip": ctx.ip,
                "user_agent": ctx.user_agent,
                "failed_attempts": attempt_count,
                "times_locked": times_locked,
                "lockout_minutes": int(self.settings.lockout_duration.total_seconds() // 60),
            },
        )
        return FailureOutcome(
            locked=True,
            attempt_count=attempt_count,
            lockout_duration=self.settings.lockout_duration,
        )

    def record_successful_login(self, identifier: str, ctx: RequestContext | None = None) -> None:
        """A clean login resets every counter for the identifier."""
        try:
            self.ledger.clear(identifier)
            self._delete_lockout(identifier)
            if ctx is not None:
                self.ledger.record_attempt(identifier, ctx.ip, ctx.user_agent, ATTEMPT_SUCCESS)
        except SQLAlchemyError as exc:
            self.events.log_event(
                LEDGER_STORE_ERROR,
                Severity.ERROR,
                {"identifier": identifier, "operation": "record_successful_login", "error": type(exc).__name__},
            )

    # ---------- writes ----------

    def lock(self, identifier: str) -> int | None:
        """
        Upsert the lockout row in one statement and return its attempt_count.

        Racing requests that both cross the threshold end up on the same row;
        the second one refreshes the window and bumps attempt_count. Where the
        upsert cannot return the count, it is read back separately and None
        means the lock was written but its count is unknown.
        """
        now = self.clock.now()
        returning = supports_returning(self.db.session)
        stmt = self._upsert_statement(
            identifier=identifier,
            locked_at=now,
            locked_until=now + self.settings.lockout_duration,
        )
        if returning:
            stmt = stmt.returning(AccountLockout.__table__.c.attempt_count)
        try:
            result = self.db.session.execute(stmt)
            times_locked = int(result.scalar_one()) if returning else None
            self.db.session.commit()
        except Exception:
            self.db.session.rollback()
            raise
        if times_locked is None:
            times_locked = self._read_attempt_count(identifier)
        return times_locked

    def _read_attempt_count(self, identifier: str) -> int | None:
        try:
            count = self.db.session.scalar(
                sa.select(AccountLockout.attempt_count).where(AccountLockout.identifier == identifier)
            )
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            logger.warning("lockout count read failed for %s: %s", identifier, type(exc).__name__)
            return None
        return int(count) if count is not None else None

    def unlock(self, identifier: str, actor: str | None = None) -> bool:
        removed = self._delete_lockout(identifier)
        if removed:
            self.events.log_event(
                ACCOUNT_UNLOCKED,
                Severity.INFO,
                {"identifier": identifier, "actor": actor},
            )
        return removed

    def purge_expired(self) -> int:
        cutoff = self.clock.now() - self.settings.purge_grace
        stmt = sa.delete(AccountLockout).where(AccountLockout.locked_until < cutoff)
        try:
            removed = self.db.session.execute(stmt).rowcount
            self.db.session.commit()
        except Exception:
            self.db.session.rollback()
            raise
        return removed

    def _delete_lockout(self, identifier: str) -> bool:
        stmt = sa.delete(AccountLockout).where(AccountLockout.identifier == identifier)
        try:
            removed = self.db.session.execute(stmt).rowcount
            self.db.session.commit()
        except Exception:
            self.db.session.rollback()
            raise
        return bool(removed)

    def _upsert_statement(self, identifier: str, locked_at: datetime, locked_until: datetime):
        table = AccountLockout.__table__
        values = {
            "identifier": identifier,
            "locked_at": locked_at,
            "locked_until": locked_until,
            "attempt_count": 1,
            "reason": REASON_TOO_MANY_FAILED,
        }
        insert = insert_for(self.db.session)

        if dialect_name(self.db.session) in ("mysql", "mariadb"):
            stmt = insert(table).values(**values)
            return stmt.on_duplicate_key_update(
                locked_at=stmt.inserted.locked_at,
                locked_until=stmt.inserted.locked_until,
                attempt_count=table.c.attempt_count + 1,
                reason=stmt.inserted.reason,
            )

        stmt = insert(table).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=[table.c.identifier],
            set_={
                "locked_at": stmt.excluded.locked_at,
                "locked_until": stmt.excluded.locked_until,
                "attempt_count": table.c.attempt_count + 1,
                "reason": stmt.excluded.reason,
            },
        )
