from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import sqlalchemy as sa
from flask import Request
from sqlalchemy.exc import SQLAlchemyError

from .clock import Clock, SystemClock
from .dialects import dialect_name, insert_for
from .security_events import RATE_LIMIT_STORE_ERROR, RATE_LIMITED, SecurityEventLogger, Severity

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


@dataclass
class WindowState:
    window_start: datetime
    count: int
    last_request: datetime


@dataclass(frozen=True)
class HitResult:
    allowed: bool
    count: int
    window_start: datetime
    reset_at: datetime


def _fresh(state: WindowState | None, now: datetime, window: timedelta) -> bool:
    return state is None or (now - state.window_start) > window


class WindowStore:
    """Backing storage for fixed-window counters."""

    def init(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    def hit(self, key: str, now: datetime, window: timedelta, limit: int) -> HitResult:
        raise NotImplementedError

    def reset(self, key: str) -> None:
        raise NotImplementedError

    def purge(self, before: datetime) -> int:
        raise NotImplementedError


class MemoryWindowStore(WindowStore):
    """
    Process-local counters. Guarantees hold for a single app instance only;
    counters are lost on restart.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._windows: dict[str, WindowState] = {}

    def init(self) -> None:
        with self._lock:
            self._windows.clear()

    def shutdown(self) -> None:
        with self._lock:
            self._windows.clear()

    def hit(self, key, now, window, limit):
        with self._lock:
            state = self._windows.get(key)
            if _fresh(state, now, window):
                state = WindowState(window_start=now, count=0, last_request=now)
                self._windows[key] = state
            state.last_request = now
            allowed = state.count < limit
            if allowed:
                state.count += 1
            return HitResult(allowed, state.count, state.window_start, state.window_start + window)

    def get(self, key: str) -> WindowState | None:
        with self._lock:
            state = self._windows.get(key)
            return None if state is None else WindowState(**vars(state))

    def reset(self, key):
        with self._lock:
            self._windows.pop(key, None)

    def purge(self, before):
        with self._lock:
            stale = [k for k, s in self._windows.items() if s.last_request < before]
            for k in stale:
                del self._windows[k]
            return len(stale)


class DatabaseWindowStore(WindowStore):
    """Counters in the rate_limit_windows table, shared across app instances."""

    def __init__(self, db):
        self.db = db

    def hit(self, key, now, window, limit):
        from asset_manager.models.rate_limit_window import RateLimitWindow

        try:
            self._ensure_row(key, now)
            row = (
                self.db.session.query(RateLimitWindow)
                .filter_by(key=key)
                .with_for_update()
                .one()
            )
            if (now - row.window_start) > window:
                row.window_start = now
                row.count = 0

            row.last_request = now
            allowed = row.count < limit
            if allowed:
                row.count += 1
            result = HitResult(allowed, row.count, row.window_start, row.window_start + window)
            self.db.session.commit()
            return result
        except Exception:
            self.db.session.rollback()
            raise

    def _ensure_row(self, key, now):
        """
        Insert an empty window for `key` unless one exists. Concurrent first hits
        collapse onto a single row instead of failing on the unique key.
        """
        from asset_manager.models.rate_limit_window import RateLimitWindow

        table = RateLimitWindow.__table__
        stmt = insert_for(self.db.session)(table).values(key=key, window_start=now, count=0, last_request=now)
        if dialect_name(self.db.session) in ("mysql", "mariadb"):
            stmt = stmt.on_duplicate_key_update(key=stmt.inserted.key)
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=[table.c.key])
        self.db.session.execute(stmt)

    def reset(self, key):
        from asset_manager.models.rate_limit_window import RateLimitWindow

        self.db.session.execute(sa.delete(RateLimitWindow).where(RateLimitWindow.key == key))
        self.db.session.commit()

    def purge(self, before):
        from asset_manager.models.rate_limit_window import RateLimitWindow

        removed = self.db.session.execute(
            sa.delete(RateLimitWindow).where(RateLimitWindow.last_request < before)
        ).rowcount
        self.db.session.commit()
        return removed


@dataclass(frozen=True)
class RateLimitRule:
    """
    One protected surface: which requests it covers, how they are keyed, and the window.

    `key_func` returns None to skip counting the request.
    """

    name: str
    window: timedelta
    max_requests: int
    message: str
    key_func: Callable[[Request], str | None]
    endpoints: frozenset = frozenset()
    path_prefix: str | None = None
    redirect_endpoint: str | None = None

    def applies_to(self, req: Request) -> bool:
        if req.endpoint in self.endpoints:
            return True
        return bool(self.path_prefix and req.path.startswith(self.path_prefix))


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    bucket: str | None
    count: int = 0
    retry_after: int = 0


ALLOW = RateLimitDecision(allowed=True, bucket=None)


class RateLimiter:
    def __init__(
        self,
        store: WindowStore,
        events: SecurityEventLogger,
        clock: Clock | None = None,
        rules: list[RateLimitRule] | None = None,
    ):
        self.store = store
        self.events = events
        self.clock = clock or SystemClock()
        self.rules = list(rules or [])

    def rules_for(self, req: Request) -> list[RateLimitRule]:
        return [rule for rule in self.rules if rule.applies_to(req)]

    def check(self, rule: RateLimitRule, req: Request, ip: str | None = None) -> RateLimitDecision:
        bucket = rule.key_func(req)
        if bucket is None:
            return ALLOW
        return self.hit(rule, bucket, ip=ip)

    def hit(self, rule: RateLimitRule, bucket: str, ip: str | None = None) -> RateLimitDecision:
        now = self.clock.now()
        try:
            result = self.store.hit(bucket, now, rule.window, rule.max_requests)
        except SQLAlchemyError as exc:
            self.events.log_event(
                RATE_LIMIT_STORE_ERROR,
                Severity.ERROR,
                {"rule": rule.name, "bucket": bucket, "ip": ip, "error": type(exc).__name__},
            )
            return RateLimitDecision(allowed=True, bucket=bucket)

        if result.allowed:
            return RateLimitDecision(allowed=True, bucket=bucket, count=result.count)

        retry_after = max(1, math.ceil((result.reset_at - now).total_seconds()))
        self.events.log_event(
            RATE_LIMITED,
            Severity.WARN,
            {
                "rule": rule.name,
                "bucket": bucket,
                "ip": ip,
                "hits": result.count,
                "limit": rule.max_requests,
                "retry_after": retry_after,
            },
            status_code=429,
        )
        return RateLimitDecision(allowed=False, bucket=bucket, count=result.count, retry_after=retry_after)

    def purge(self, older_than: timedelta) -> int:
        return self.store.purge(self.clock.now() - older_than)
