from __future__ import annotations

from dataclasses import dataclass, field

from flask import Request, flash, jsonify, make_response, redirect, url_for

# machine-readable codes
ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
CSRF_SESSION_MISSING = "CSRF_SESSION_MISSING"
CSRF_TOKEN_MISSING = "CSRF_TOKEN_MISSING"
CSRF_TOKEN_INVALID = "CSRF_TOKEN_INVALID"
LOCKOUT_CHECK_UNAVAILABLE = "LOCKOUT_CHECK_UNAVAILABLE"


class SecurityStoreUnavailable(Exception):
    """The ledger / lockout store could not answer and the policy is to fail closed."""


@dataclass(frozen=True)
class Denial:
    """A guard's decision to stop the request. Carries only what is safe to show a client."""

    status_code: int
    code: str
    message: str
    payload: dict = field(default_factory=dict)
    headers: dict = field(default_factory=dict)
    # endpoint to flash+redirect to when the client is a plain browser form
    redirect_endpoint: str | None = None

    def to_response(self, req: Request):
        if self.redirect_endpoint and not wants_json(req):
            flash(self.message, "error")
            resp = redirect(url_for(self.redirect_endpoint))
        else:
            body = {"success": False, "error": self.message, "code": self.code}
            body.update(self.payload)
            resp = make_response(jsonify(body), self.status_code)
        for name, value in self.headers.items():
            resp.headers[name] = value
        return resp


def wants_json(req: Request) -> bool:
    if req.is_json:
        return True
    if req.headers.get("X-Requested-With", "").lower() == "xmlhttprequest":
        return True
    return "application/json" in (req.headers.get("Accept") or "")
