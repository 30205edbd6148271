from __future__ import annotations

from datetime import timedelta

import sqlalchemy as sa

from asset_manager.models.login_attempt import ATTEMPT_FAILED, ATTEMPT_SUCCESS, LoginAttempt

from .clock import Clock, SystemClock

DEFAULT_LOOKBACK = timedelta(hours=1)
DEFAULT_RETENTION = timedelta(hours=24)

OUTCOMES = {ATTEMPT_FAILED, ATTEMPT_SUCCESS}


class AttemptLedger:
    """
    Append-only record of authentication attempts.

    Each method is one short statement committed on its own. Errors
    (SQLAlchemyError) propagate after a rollback; callers decide whether a
    failure is fatal.
    """

    def __init__(self, db, clock: Clock | None = None):
        self.db = db
        self.clock = clock or SystemClock()

    def record_attempt(self, identifier: str, ip: str, user_agent: str | None, outcome: str) -> None:
        if outcome not in OUTCOMES:
            raise ValueError(f"unknown attempt outcome: {outcome!r}")
        row = LoginAttempt(
            identifier=identifier,
            ip_address=ip,
            user_agent=user_agent[:255] if user_agent else None,
            attempt_time=self.clock.now(),
            attempt_type=outcome,
        )
        self._run(lambda: self.db.session.add(row))

    def count_recent_failures(self, identifier: str, lookback: timedelta = DEFAULT_LOOKBACK) -> int:
        cutoff = self.clock.now() - lookback
        stmt = (
            sa.select(sa.func.count(LoginAttempt.id))
            .where(LoginAttempt.identifier == identifier)
            .where(LoginAttempt.attempt_type == ATTEMPT_FAILED)
            .where(LoginAttempt.attempt_time > cutoff)
        )
        try:
            return int(self.db.session.scalar(stmt) or 0)
        except Exception:
            self.db.session.rollback()
            raise

    def clear(self, identifier: str) -> int:
        stmt = sa.delete(LoginAttempt).where(LoginAttempt.identifier == identifier)
        return self._run(lambda: self.db.session.execute(stmt).rowcount)

    def purge_older_than(self, age: timedelta = DEFAULT_RETENTION) -> int:
        cutoff = self.clock.now() - age
        stmt = sa.delete(LoginAttempt).where(LoginAttempt.attempt_time < cutoff)
        return self._run(lambda: self.db.session.execute(stmt).rowcount)

    def _run(self, work):
        try:
            result = work()
            self.db.session.commit()
            return result
        except Exception:
            self.db.session.rollback()
            raise
