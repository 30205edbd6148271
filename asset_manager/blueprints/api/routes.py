from flask import Blueprint, jsonify, session

from ...extensions import db
from ...models import User

bp = Blueprint("api", __name__, url_prefix="/api")


@bp.get("/health")
def api_health():
    return jsonify(status="ok")


@bp.get("/me")
def me():
    user_id = session.get("user_id")

    if not user_id:
        return jsonify(authenticated=False), 200

    user = db.session.get(User, user_id)

    if not user:
        session.clear()
        return jsonify(authenticated=False), 200

    return jsonify(
        authenticated=True,
        id=user.id,
        email=user.email,
        login_id=user.login_id,
        name=user.name,
        role=session.get("role")
    ), 200
