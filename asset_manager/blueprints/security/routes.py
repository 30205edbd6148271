import json

from flask import Blueprint, request

from ...security import current_security
from ...security.security_events import CSP_VIOLATION, Severity

bp = Blueprint("security", __name__, url_prefix="/security")

_REPORT_FIELDS = ("blocked-uri", "document-uri", "violated-directive", "effective-directive", "original-policy")


@bp.post("/csp-report")
def csp_report():
    """
    Sink for browser CSP violation reports (application/csp-report or JSON).
    Always answers 204.
    """
    body = request.get_json(force=True, silent=True)
    if body is None:
        raw = request.get_data(cache=False, as_text=True)[:4096]
        try:
            body = json.loads(raw) if raw else {}
        except ValueError:
            body = {"raw": raw}

    report = body.get("csp-report", body) if isinstance(body, dict) else {"reports": body}
    details = {k: report.get(k) for k in _REPORT_FIELDS if isinstance(report, dict) and k in report}
    if not details:
        details = {"report": report}

    security = current_security()
    details["ip"] = security.request_context().ip
    details["user_agent"] = request.headers.get("User-Agent")
    security.events.log_event(CSP_VIOLATION, Severity.WARN, details)
    return "", 204
