from flask import Blueprint, current_app, flash, get_flashed_messages, jsonify, redirect, request, session, url_for

from ...extensions import db
from ...models import User
from ...security import current_security
from ...security.denials import wants_json
from ...security.request_data import payload, submitted_identifier

bp = Blueprint("auth", __name__, url_prefix="/auth")

INVALID_CREDENTIALS = "Invalid email or password"


def _text(data, name: str) -> str:
    value = data.get(name)
    return value.strip() if isinstance(value, str) else ""


def _start_session(user: User) -> str:
    # new session on login; the CSRF token is re-issued with it
    session.clear()
    session["user_id"] = user.id
    session["role"] = user.role
    return current_security().csrf.rotate(session)


# ---------- LOGIN ----------
@bp.get("/login")
def login_form():
    return jsonify(
        csrf_token=current_security().csrf.ensure_token(session),
        messages=get_flashed_messages(with_categories=True),
        authenticated=bool(session.get("user_id")),
    ), 200


@bp.post("/login")
def login():
    """
    Lockout and rate limit are checked before this runs; here the outcome is
    reported back to the lockout policy.
    """
    data = payload(request)
    identifier = submitted_identifier(request)
    password = data.get("password") or ""

    if not identifier or not isinstance(password, str) or not password:
        return jsonify(
            success=False,
            message="Email and password are required",
            error="missing_fields",
            required=["email", "password"],
        ), 400

    security = current_security()
    ctx = security.request_context()

    user = User.find_by_login(identifier)

    if not user or not user.check_password(password):
        outcome = security.lockout.record_failed_attempt(identifier, ctx)
        current_app.logger.info(
            "LOGIN FAIL: ip=%s attempts=%s locked=%s", ctx.ip, outcome.attempt_count, outcome.locked
        )
        if not wants_json(request):
            flash(INVALID_CREDENTIALS, "error")
            return redirect(url_for("auth.login_form"))
        return jsonify(success=False, message=INVALID_CREDENTIALS), 401

    if not user.is_active:
        return jsonify(success=False, message="Account disabled", code="ACCOUNT_DISABLED"), 403

    security.lockout.record_successful_login(identifier, ctx)
    csrf_token = _start_session(user)
    current_app.logger.info("LOGIN OK: user_id=%s ip=%s", user.id, ctx.ip)

    if not wants_json(request):
        return redirect("/")
    return jsonify(success=True, redirect="/", csrf_token=csrf_token), 200


# ---------- LOGOUT ----------
@bp.post("/logout")
def logout():
    session.clear()
    return jsonify(success=True, message="logged_out"), 200


# ---------- CSRF TOKEN ----------
@bp.get("/csrf-token")
def csrf_token():
    return jsonify(csrf_token=current_security().csrf.ensure_token(session)), 200


# ---------- REGISTER ----------
@bp.post("/register")
def register():
    data = payload(request)

    name = _text(data, "name")
    email = _text(data, "email").lower()
    password = data.get("password") or ""
    confirm = data.get("confirm_password")

    if not name or not email or not isinstance(password, str) or not password:
        return jsonify(
            success=False,
            error="missing_fields",
            required=["name", "email", "password"]
        ), 400

    if confirm is not None and confirm != password:
        return jsonify(success=False, error="password_mismatch"), 400

    if len(password) < 8:
        return jsonify(
            success=False,
            error="weak_password",
            min_length=8
        ), 400

    if User.find_by_login(email) is not None:
        return jsonify(success=False, error="user_exists"), 409

    user = User(email=email, name=name, role="user")
    user.set_password(password)

    db.session.add(user)
    db.session.commit()

    csrf_token = _start_session(user)

    return jsonify(
        success=True,
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        csrf_token=csrf_token,
    ), 201


# ---------- PASSWORD RESET ----------
@bp.post("/password-reset")
def request_password_reset():
    """
    Accepts a reset request. The answer is the same whether or not the
    account exists; delivering the reset link is not handled here.
    """
    data = payload(request)
    email = _text(data, "email")
    if not email:
        return jsonify(success=False, error="missing_fields", required=["email"]), 400

    user = User.find_by_login(email)
    current_app.logger.info(
        "PASSWORD RESET requested: known_account=%s ip=%s",
        user is not None, current_security().request_context().ip,
    )
    return jsonify(
        success=True,
        message="If an account exists for that email, reset instructions will follow.",
    ), 202

