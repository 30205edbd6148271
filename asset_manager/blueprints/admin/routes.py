from __future__ import annotations

import math
from datetime import datetime, timedelta

import sqlalchemy as sa
from flask import abort, jsonify, request, session

from asset_manager.extensions import db
from asset_manager.models.account_lockout import AccountLockout
from asset_manager.models.login_attempt import ATTEMPT_FAILED, LoginAttempt
from asset_manager.models.security_event import SecurityEvent
from asset_manager.security import current_security
from asset_manager.security.request_data import normalize_identifier
from asset_manager.security.security_events import LOGIN_ATTEMPTS_CLEARED, Severity

from ..auth.decorators import role_required
from . import bp

REPORT_WINDOW = timedelta(hours=24)
RECENT_ATTEMPTS_MIN = 3


def _parse_iso_dt(value: str) -> datetime:
    """
    Accepts ISO 8601 with or without Z.
    e.g. 2026-01-12T14:00:00Z / 2026-01-12T14:00:00
    """
    v = value.strip()
    if v.endswith("Z"):
        v = v[:-1]
    try:
        return datetime.fromisoformat(v)
    except ValueError:
        abort(
            400,
            description="Invalid datetime format. Use ISO 8601, e.g. 2026-01-12T14:00:00Z",
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() + "Z" if value else None


# -------------------
# LOCKOUTS
# -------------------

@bp.route("/lockouts", methods=["GET"])
@role_required("admin")
def admin_list_lockouts():
    security = current_security()
    now = security.clock.now()
    items = []
    for row in security.lockout.active_lockouts():
        item = row.to_dict()
        item["remaining_minutes"] = max(0, math.ceil((row.locked_until - now).total_seconds() / 60))
        item["recent_failures"] = security.ledger.count_recent_failures(
            row.identifier, security.lockout.settings.lookback
        )
        items.append(item)
    return jsonify(items=items, total=len(items), recent_attempts=_recent_attempts(now))


def _recent_attempts(now: datetime) -> list[dict]:
    """Identifiers with RECENT_ATTEMPTS_MIN or more failures in the last 24 hours, busiest first."""
    attempt_count = sa.func.count(LoginAttempt.id)
    stmt = (
        sa.select(
            LoginAttempt.identifier,
            attempt_count.label("attempt_count"),
            sa.func.min(LoginAttempt.attempt_time).label("first_attempt"),
            sa.func.max(LoginAttempt.attempt_time).label("last_attempt"),
        )
        .where(LoginAttempt.attempt_type == ATTEMPT_FAILED)
        .where(LoginAttempt.attempt_time > now - REPORT_WINDOW)
        .group_by(LoginAttempt.identifier)
        .having(attempt_count >= RECENT_ATTEMPTS_MIN)
        .order_by(attempt_count.desc(), LoginAttempt.identifier)
    )
    return [
        {
            "identifier": row.identifier,
            "attempt_count": row.attempt_count,
            "first_attempt": _iso(row.first_attempt),
            "last_attempt": _iso(row.last_attempt),
        }
        for row in db.session.execute(stmt)
    ]


@bp.route("/lockouts/<path:identifier>", methods=["DELETE"])
@role_required("admin")
def admin_unlock(identifier: str):
    """
    Administrative unlock: removes the lockout row only. The failed-attempt
    history stays until the next successful login clears it.
    """
    identifier = normalize_identifier(identifier)
    security = current_security()
    removed = security.lockout.unlock(identifier, actor=f"user:{session.get('user_id')}")
    if not removed:
        return jsonify(success=False, error="not_locked", identifier=identifier), 404
    return jsonify(success=True, identifier=identifier, unlocked=True), 200


@bp.route("/login-attempts/<path:identifier>", methods=["DELETE"])
@role_required("admin")
def admin_clear_login_attempts(identifier: str):
    """Forget the attempt history of an identifier. An active lockout is left in place."""
    identifier = normalize_identifier(identifier)
    security = current_security()
    cleared = security.ledger.clear(identifier)
    security.events.log_event(
        LOGIN_ATTEMPTS_CLEARED,
        Severity.INFO,
        {"identifier": identifier, "actor": f"user:{session.get('user_id')}", "attempts_cleared": cleared},
    )
    return jsonify(success=True, identifier=identifier, attempts_cleared=cleared), 200


# -------------------
# SECURITY CENTER
# -------------------

@bp.route("/security-center", methods=["GET"])
@role_required("admin")
def admin_security_center():
    """
    Dashboard summary over the last 24 hours: failed logins, active lockouts
    and security events grouped by type and severity.
    """
    now = current_security().clock.now()
    since = now - REPORT_WINDOW

    failed = db.session.execute(
        sa.select(
            sa.func.count(LoginAttempt.id).label("total"),
            sa.func.count(sa.distinct(LoginAttempt.identifier)).label("unique_identifiers"),
            sa.func.max(LoginAttempt.attempt_time).label("last_attempt"),
        )
        .where(LoginAttempt.attempt_type == ATTEMPT_FAILED)
        .where(LoginAttempt.attempt_time > since)
    ).one()

    locked = db.session.execute(
        sa.select(
            sa.func.count(AccountLockout.id).label("total"),
            sa.func.min(AccountLockout.locked_until).label("next_unlock"),
        ).where(AccountLockout.locked_until > now)
    ).one()

    event_rows = db.session.execute(
        sa.select(SecurityEvent.event_type, SecurityEvent.severity, sa.func.count(SecurityEvent.id))
        .where(SecurityEvent.created_at > since)
        .group_by(SecurityEvent.event_type, SecurityEvent.severity)
        .order_by(SecurityEvent.event_type, SecurityEvent.severity)
    ).all()

    return jsonify(
        generated_at=_iso(now),
        failed_attempts={
            "total": failed.total,
            "unique_identifiers": failed.unique_identifiers,
            "last_attempt": _iso(failed.last_attempt),
        },
        locked_accounts={
            "total": locked.total,
            "next_unlock": _iso(locked.next_unlock),
        },
        security_events=[
            {"event_type": event_type, "severity": severity, "count": count}
            for event_type, severity, count in event_rows
        ],
        recent_attempts=_recent_attempts(now),
    )


# -------------------
# SECURITY EVENTS
# -------------------

@bp.route("/security-events", methods=["GET"])
@role_required("admin")
def admin_list_security_events():
    """
    Most recent security events (max 200) with basic filters.
    """
    limit = (request.args.get("limit") or "100").strip()
    event_type = (request.args.get("event_type") or "").strip()
    severity = (request.args.get("severity") or "").strip()
    status_code = (request.args.get("status_code") or "").strip()
    identifier = (request.args.get("identifier") or "").strip()
    ip = (request.args.get("ip") or "").strip()

    dt_from = (request.args.get("from") or "").strip()
    dt_to = (request.args.get("to") or "").strip()

    try:
        limit_n = max(1, min(int(limit), 200))
    except ValueError:
        abort(400, description="limit must be int")

    q = SecurityEvent.query

    if event_type:
        q = q.filter(SecurityEvent.event_type == event_type)

    if severity:
        q = q.filter(SecurityEvent.severity == severity)

    if status_code:
        try:
            q = q.filter(SecurityEvent.status_code == int(status_code))
        except ValueError:
            abort(400, description="status_code must be int")

    if identifier:
        q = q.filter(SecurityEvent.identifier == identifier)

    if ip:
        q = q.filter(SecurityEvent.ip == ip)

    if dt_from:
        q = q.filter(SecurityEvent.created_at >= _parse_iso_dt(dt_from))

    if dt_to:
        q = q.filter(SecurityEvent.created_at <= _parse_iso_dt(dt_to))

    items = q.order_by(SecurityEvent.id.desc()).limit(limit_n).all()

    return jsonify([e.to_dict() for e in items])
