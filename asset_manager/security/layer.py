from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from datetime import datetime, timedelta

from flask import Flask, Request, current_app, g, request, session
from sqlalchemy.exc import SQLAlchemyError

from .attempt_ledger import AttemptLedger
from .client_ip import RequestContext, client_ip, ip_key
from .clock import Clock, SystemClock
from .csrf import SAFE_METHODS, CsrfGuard
from .denials import (
    ACCOUNT_LOCKED,
    LOCKOUT_CHECK_UNAVAILABLE,
    RATE_LIMIT_EXCEEDED,
    Denial,
    SecurityStoreUnavailable,
)
from .guards import run_guards
from .headers import apply_security_headers
from .lockout import LockoutPolicy, LockoutSettings
from .rate_limit import (
    DatabaseWindowStore,
    MemoryWindowStore,
    RateLimitDecision,
    RateLimiter,
    RateLimitRule,
    WindowStore,
)
from .request_data import payload, submitted_identifier
from .security_events import LOCKED_ACCOUNT_LOGIN, SecurityEventLogger, Severity

logger = logging.getLogger(__name__)

LOGIN_ENDPOINT = "auth.login"
LOGIN_FORM_ENDPOINT = "auth.login_form"
REGISTER_ENDPOINT = "auth.register"
PASSWORD_RESET_ENDPOINT = "auth.request_password_reset"
CSP_REPORT_ENDPOINT = "security.csp_report"
API_PREFIX = "/api/"
GENERAL_EXEMPT_PATHS = frozenset({"/health"})


def build_window_store(config: Mapping, db) -> WindowStore:
    kind = (config.get("RATE_LIMIT_STORAGE") or "memory").lower()
    if kind == "memory":
        return MemoryWindowStore()
    if kind == "database":
        return DatabaseWindowStore(db)
    raise ValueError(f"unknown RATE_LIMIT_STORAGE: {kind!r}")


def build_rate_limit_rules(config: Mapping) -> list[RateLimitRule]:
    """
    Every rule that applies to a request is checked, in this order; the
    app-wide rule comes first.
    """

    def ip_of(req: Request) -> str:
        return ip_key(client_ip(req))

    def general_key(req: Request) -> str | None:
        if req.path in GENERAL_EXEMPT_PATHS:
            return None
        return f"general:{ip_of(req)}"

    def login_key(req: Request) -> str | None:
        # showing the form and re-posting from an authenticated session are not counted
        if req.method in SAFE_METHODS or session.get("user_id"):
            return None
        identifier = submitted_identifier(req).lower() or "unknown"
        return f"login:{ip_of(req)}:{identifier}"

    def api_key(req: Request) -> str:
        user_id = session.get("user_id")
        if user_id:
            return f"api:user:{user_id}"
        return f"api:ip:{ip_of(req)}"

    def password_reset_key(req: Request) -> str | None:
        if req.method in SAFE_METHODS:
            return None
        email = payload(req).get("email")
        email = email.strip().lower() if isinstance(email, str) else ""
        return f"pwd-reset:{ip_of(req)}:{email or 'unknown'}"

    def registration_key(req: Request) -> str | None:
        if req.method in SAFE_METHODS:
            return None
        return f"registration:{ip_of(req)}"

    def csp_report_key(req: Request) -> str:
        return f"csp-report:{ip_of(req)}"

    def seconds(name: str, default: int) -> timedelta:
        return timedelta(seconds=int(config.get(name, default)))

    return [
        RateLimitRule(
            name="general",
            window=seconds("GENERAL_RATE_WINDOW_SECONDS", 15 * 60),
            max_requests=int(config.get("GENERAL_RATE_MAX", 500)),
            message="Too many requests from this IP, please try again later.",
            key_func=general_key,
            path_prefix="/",
        ),
        RateLimitRule(
            name="login",
            window=seconds("LOGIN_RATE_WINDOW_SECONDS", 15 * 60),
            max_requests=int(config.get("LOGIN_RATE_MAX", 5)),
            message="Too many login attempts. Please try again in 15 minutes.",
            key_func=login_key,
            endpoints=frozenset({LOGIN_ENDPOINT}),
            redirect_endpoint=LOGIN_FORM_ENDPOINT,
        ),
        RateLimitRule(
            name="password_reset",
            window=seconds("PASSWORD_RESET_RATE_WINDOW_SECONDS", 60 * 60),
            max_requests=int(config.get("PASSWORD_RESET_RATE_MAX", 3)),
            message="Too many password reset attempts. Please try again in 1 hour.",
            key_func=password_reset_key,
            endpoints=frozenset({PASSWORD_RESET_ENDPOINT}),
        ),
        RateLimitRule(
            name="registration",
            window=seconds("REGISTRATION_RATE_WINDOW_SECONDS", 60 * 60),
            max_requests=int(config.get("REGISTRATION_RATE_MAX", 3)),
            message="Registration limit exceeded. Please try again in 1 hour.",
            key_func=registration_key,
            endpoints=frozenset({REGISTER_ENDPOINT}),
        ),
        RateLimitRule(
            name="csp_report",
            window=seconds("CSP_REPORT_RATE_WINDOW_SECONDS", 15 * 60),
            max_requests=int(config.get("CSP_REPORT_RATE_MAX", 50)),
            message="Too many reports.",
            key_func=csp_report_key,
            endpoints=frozenset({CSP_REPORT_ENDPOINT}),
        ),
        RateLimitRule(
            name="api",
            window=seconds("API_RATE_WINDOW_SECONDS", 15 * 60),
            max_requests=int(config.get("API_RATE_MAX", 100)),
            message="Too many API requests. Please try again later.",
            key_func=api_key,
            path_prefix=API_PREFIX,
        ),
    ]


class SecurityLayer:
    """
    Owns the attempt ledger, lockout policy, rate limiter, CSRF guard and
    security event logger for one app, and wires them into the request cycle.

    Request order: rate limit -> account lockout (login POST) -> CSRF.
    """

    def __init__(
        self,
        db,
        config: Mapping,
        clock: Clock | None = None,
        window_store: WindowStore | None = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.production = bool(config.get("IS_PRODUCTION", False))

        self.events = SecurityEventLogger(
            db, self.clock, persist=bool(config.get("SECURITY_EVENTS_PERSIST", True))
        )
        self.ledger = AttemptLedger(db, self.clock)
        self.lockout = LockoutPolicy(
            db, self.ledger, self.events, self.clock, LockoutSettings.from_config(config)
        )

        self.rate_limit_enabled = bool(config.get("RATE_LIMIT_ENABLED", True))
        self.window_store = window_store or build_window_store(config, db)
        self.rate_limiter = RateLimiter(
            self.window_store,
            self.events,
            self.clock,
            build_rate_limit_rules(config),
        )

        self.csrf = CsrfGuard(
            self.events,
            exempt_paths=config.get("CSRF_EXEMPT_PATHS", ()),
            enabled=bool(config.get("CSRF_ENABLED", True)),
        )

        self.attempt_retention = timedelta(hours=int(config.get("ATTEMPT_RETENTION_HOURS", 24)))
        self.event_retention = timedelta(days=int(config.get("SECURITY_EVENT_RETENTION_DAYS", 30)))
        self.sweep_interval = timedelta(seconds=int(config.get("SECURITY_SWEEP_INTERVAL_SECONDS", 3600)))
        self._last_sweep: datetime | None = None
        self._sweep_lock = threading.Lock()

        self.guards = [self.rate_limit_guard, self.lockout_guard, self.csrf_guard]

    # ---------- lifecycle ----------

    def init_app(self, app: Flask) -> None:
        app.extensions["security"] = self
        self.window_store.init()
        app.before_request(self._before_request)
        app.after_request(self._after_request)

        @app.context_processor
        def _inject_csrf():
            return {"csrf_token": lambda: self.csrf.ensure_token(session)}

    def shutdown(self) -> None:
        self.window_store.shutdown()

    # ---------- request hooks ----------

    def _before_request(self):
        if request.endpoint is None or request.endpoint == "static":
            return None

        self.maybe_sweep()

        denial = run_guards(self.guards, request)
        if denial is not None:
            return denial.to_response(request)
        return None

    def _after_request(self, resp):
        return apply_security_headers(resp, request, self.production)

    def request_context(self, req: Request | None = None) -> RequestContext:
        return RequestContext.from_request(req or request)

    # ---------- guards ----------

    def rate_limit_guard(self, req: Request) -> Denial | None:
        if not self.rate_limit_enabled:
            return None
        ip = client_ip(req)
        for rule in self.rate_limiter.rules_for(req):
            decision = self.rate_limiter.check(rule, req, ip=ip)
            if not decision.allowed:
                return self._rate_limited(rule, decision)
        return None

    def _rate_limited(self, rule: RateLimitRule, decision: RateLimitDecision) -> Denial:
        current_app.logger.info(
            "RATE LIMIT 429: rule=%s bucket=%s hits=%s retry_after=%s",
            rule.name, decision.bucket, decision.count, decision.retry_after,
        )
        return Denial(
            status_code=429,
            code=RATE_LIMIT_EXCEEDED,
            message=rule.message,
            payload={"retryAfter": decision.retry_after},
            headers={"Retry-After": str(decision.retry_after)},
            redirect_endpoint=rule.redirect_endpoint,
        )

    def lockout_guard(self, req: Request) -> Denial | None:
        if req.endpoint != LOGIN_ENDPOINT or req.method in SAFE_METHODS:
            return None

        identifier = submitted_identifier(req)
        if not identifier:
            # malformed input is the login handler's 400, not a security event
            return None

        try:
            status = self.lockout.is_locked(identifier)
        except SecurityStoreUnavailable:
            return Denial(
                status_code=503,
                code=LOCKOUT_CHECK_UNAVAILABLE,
                message="Login is temporarily unavailable. Please try again shortly.",
            )
        if not status.locked:
            return None

        now = self.clock.now()
        minutes = status.remaining_minutes(now)
        ctx = self.request_context(req)
        self.events.log_event(
            LOCKED_ACCOUNT_LOGIN,
            Severity.WARN,
            {
                "identifier": identifier,
                "ip": ctx.ip,
                "user_agent": ctx.user_agent,
                "times_locked": status.attempt_count,
                "remaining_minutes": minutes,
            },
            status_code=423,
        )
        return Denial(
            status_code=423,
            code=ACCOUNT_LOCKED,
            message=(
                "Account temporarily locked due to repeated failed login attempts. "
                f"Please try again in {minutes} minutes."
            ),
            payload={"locked": True, "remainingMinutes": minutes},
            headers={"Retry-After": str(status.remaining_seconds(now))},
            redirect_endpoint=LOGIN_FORM_ENDPOINT,
        )

    def csrf_guard(self, req: Request) -> Denial | None:
        if self.csrf.requires_check(req):
            denial = self.csrf.check_request(req, session, ip=client_ip(req))
            if denial is not None:
                return denial
        g.csrf_token = self.csrf.ensure_token(session)
        return None

    # ---------- maintenance ----------

    def sweep(self) -> dict:
        """Purge aged ledger rows and security events, long-expired lockouts and idle rate-limit windows."""
        longest_window = max((r.window for r in self.rate_limiter.rules), default=timedelta(hours=1))
        result = {
            "login_attempts": self.ledger.purge_older_than(self.attempt_retention),
            "account_lockouts": self.lockout.purge_expired(),
            "rate_limit_windows": self.rate_limiter.purge(longest_window),
            "security_events": self.events.purge_older_than(self.event_retention),
        }
        self._last_sweep = self.clock.now()
        logger.info("security sweep: %s", result)
        return result

    def maybe_sweep(self) -> None:
        now = self.clock.now()
        if self._last_sweep is not None and now - self._last_sweep < self.sweep_interval:
            return
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            self.sweep()
        except SQLAlchemyError:
            self.db.session.rollback()
            # retry on the next interval rather than on every request
            self._last_sweep = now
            logger.error("security sweep failed", exc_info=True)
        finally:
            self._sweep_lock.release()


def current_security() -> SecurityLayer:
    return current_app.extensions["security"]
