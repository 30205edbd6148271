from __future__ import annotations

import json
import logging
from datetime import timedelta
from enum import Enum

import sqlalchemy as sa
from flask import has_request_context, request, session
from sqlalchemy.exc import SQLAlchemyError

from .clock import Clock, SystemClock
from .redaction import redact

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}

# event kinds
RATE_LIMITED = "rate_limited"
ACCOUNT_LOCKED = "account_locked"
LOCKED_ACCOUNT_LOGIN = "locked_account_login"
ACCOUNT_UNLOCKED = "account_unlocked"
LOGIN_ATTEMPTS_CLEARED = "login_attempts_cleared"
CSRF_SESSION_MISSING = "csrf_session_missing"
CSRF_TOKEN_MISSING = "csrf_token_missing"
CSRF_TOKEN_INVALID = "csrf_token_invalid"
LOCKOUT_STORE_ERROR = "lockout_store_error"
LEDGER_STORE_ERROR = "ledger_store_error"
RATE_LIMIT_STORE_ERROR = "rate_limit_store_error"
CSP_VIOLATION = "csp_violation"


class SecurityEventLogger:
    """
    Structured, redacted log of security denials.

    Every event goes to the `asset_manager.security` logger; when `persist`
    is on it is also stored as a SecurityEvent row. Persisting is best-effort:
    it never breaks the request that produced the event.
    """

    def __init__(self, db=None, clock: Clock | None = None, persist: bool = True):
        self.db = db
        self.clock = clock or SystemClock()
        self.persist = persist and db is not None

    def log_event(
        self,
        kind: str,
        severity: Severity = Severity.WARN,
        context: dict | None = None,
        *,
        status_code: int | None = None,
    ) -> dict:
        severity = Severity(severity)
        record = self._build_record(kind, severity, redact(dict(context or {})), status_code)

        logger.log(
            _LEVELS[severity],
            "SECURITY %s [%s] %s",
            kind,
            severity.value,
            json.dumps(record, default=str, sort_keys=True),
        )

        if self.persist:
            self._store(record)
        return record

    def _build_record(self, kind, severity, context, status_code) -> dict:
        record = {
            "event_type": kind,
            "severity": severity.value,
            "status_code": status_code,
            "created_at": self.clock.now(),
            "identifier": context.pop("identifier", None),
            "ip": context.pop("ip", None),
            "user_id": context.pop("user_id", None),
            "endpoint": None,
            "blueprint": None,
            "method": None,
            "path": None,
            "context": context,
        }
        if has_request_context():
            record["endpoint"] = request.endpoint
            record["blueprint"] = request.blueprint
            record["method"] = request.method
            record["path"] = request.path
            if record["user_id"] is None:
                record["user_id"] = session.get("user_id")
        return record

    def _store(self, record: dict) -> None:
        from asset_manager.models.security_event import SecurityEvent

        try:
            ev = SecurityEvent(
                created_at=record["created_at"],
                event_type=record["event_type"],
                severity=record["severity"],
                status_code=record["status_code"],
                endpoint=record["endpoint"],
                blueprint=record["blueprint"],
                method=record["method"],
                path=(record["path"] or "")[:255] or None,
                identifier=(str(record["identifier"])[:255] if record["identifier"] else None),
                user_id=record["user_id"],
                ip=record["ip"],
                details=json.dumps(record["context"], default=str, sort_keys=True)
                if record["context"]
                else None,
            )
            self.db.session.add(ev)
            self.db.session.commit()
        except SQLAlchemyError:
            self.db.session.rollback()
            logger.warning("could not persist security event %s", record["event_type"], exc_info=True)

    def purge_older_than(self, age: timedelta) -> int:
        """Delete stored events older than `age`."""
        if self.db is None:
            return 0
        from asset_manager.models.security_event import SecurityEvent

        cutoff = self.clock.now() - age
        try:
            removed = self.db.session.execute(
                sa.delete(SecurityEvent).where(SecurityEvent.created_at < cutoff)
            ).rowcount
            self.db.session.commit()
        except Exception:
            self.db.session.rollback()
            raise
        return removed
