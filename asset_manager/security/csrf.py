from __future__ import annotations

import hashlib
import hmac
import secrets
from collections.abc import MutableMapping
from dataclasses import dataclass

from flask import Request

from .denials import CSRF_SESSION_MISSING, CSRF_TOKEN_INVALID, CSRF_TOKEN_MISSING, Denial
from .request_data import payload
from .security_events import (
    CSRF_SESSION_MISSING as EV_SESSION_MISSING,
    CSRF_TOKEN_INVALID as EV_TOKEN_INVALID,
    CSRF_TOKEN_MISSING as EV_TOKEN_MISSING,
    SecurityEventLogger,
    Severity,
)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}

SESSION_KEY = "csrf_token"
FIELD_NAME = "_csrf"
HEADER_NAME = "X-CSRF-Token"


def generate_token() -> str:
    return secrets.token_hex(32)


def tokens_match(expected: str, supplied: str) -> bool:
    """
    Constant-time comparison. Both sides are hashed first so tokens of any
    length are compared as equal-length digests.
    """
    a = hashlib.sha256(expected.encode("utf-8", "surrogatepass")).digest()
    b = hashlib.sha256(supplied.encode("utf-8", "surrogatepass")).digest()
    return hmac.compare_digest(a, b)


def clean_token(raw) -> str | None:
    """
    Normalize a supplied token. Folded duplicate headers ("tok, tok") yield the first segment.
    """
    if not isinstance(raw, str):
        return None
    value = raw.split(",", 1)[0].strip() if "," in raw else raw.strip()
    return value or None


@dataclass(frozen=True)
class CsrfFailure:
    code: str
    event: str
    message: str


SESSION_MISSING = CsrfFailure(
    CSRF_SESSION_MISSING,
    EV_SESSION_MISSING,
    "CSRF token missing from session. Please refresh the page.",
)
TOKEN_MISSING = CsrfFailure(
    CSRF_TOKEN_MISSING,
    EV_TOKEN_MISSING,
    "CSRF token missing from request. Please refresh the page and try again.",
)
TOKEN_INVALID = CsrfFailure(
    CSRF_TOKEN_INVALID,
    EV_TOKEN_INVALID,
    "Invalid CSRF token. Please refresh the page and try again.",
)


class CsrfGuard:
    """
    One token per session, created lazily and reused for the session's lifetime.
    """

    def __init__(self, events: SecurityEventLogger, exempt_paths=(), enabled: bool = True):
        self.events = events
        self.exempt_paths = frozenset(exempt_paths)
        self.enabled = enabled

    def ensure_token(self, session: MutableMapping) -> str:
        token = session.get(SESSION_KEY)
        if not token:
            token = generate_token()
            session[SESSION_KEY] = token
        return token

    def rotate(self, session: MutableMapping) -> str:
        """Issue a fresh token, used when a session is re-established at login."""
        token = generate_token()
        session[SESSION_KEY] = token
        return token

    def requires_check(self, req: Request) -> bool:
        if not self.enabled:
            return False
        return req.method not in SAFE_METHODS and req.path not in self.exempt_paths

    def supplied_token(self, req: Request) -> str | None:
        """Body field, then header, then query string."""
        body = payload(req)
        for raw in (body.get(FIELD_NAME), req.headers.get(HEADER_NAME), req.args.get(FIELD_NAME)):
            token = clean_token(raw)
            if token:
                return token
        return None

    def validate(self, session: MutableMapping, supplied: str | None) -> CsrfFailure | None:
        expected = session.get(SESSION_KEY)
        if not expected:
            return SESSION_MISSING
        if not supplied:
            return TOKEN_MISSING
        if not tokens_match(expected, supplied):
            return TOKEN_INVALID
        return None

    def check_request(self, req: Request, session: MutableMapping, ip: str | None = None) -> Denial | None:
        supplied = self.supplied_token(req)
        failure = self.validate(session, supplied)
        if failure is None:
            return None

        context = {"ip": ip, "user_agent": req.headers.get("User-Agent")}
        if failure is TOKEN_INVALID:
            context["supplied_length"] = len(supplied)
            context["expected_length"] = len(session.get(SESSION_KEY) or "")
        self.events.log_event(failure.event, Severity.WARN, context, status_code=403)
        return Denial(status_code=403, code=failure.code, message=failure.message)
