from asset_manager.extensions import db

ATTEMPT_FAILED = "failed"
ATTEMPT_SUCCESS = "success"


class LoginAttempt(db.Model):
    """One row per authentication try. Rows are inserted and purged, never updated."""

    __tablename__ = "login_attempts"

    id = db.Column(db.Integer, primary_key=True)

    # normalized identifier: emails lower-cased, login ids as typed
    identifier = db.Column(db.String(255), nullable=False)
    ip_address = db.Column(db.String(45), nullable=False)  # IPv4/IPv6
    user_agent = db.Column(db.String(255), nullable=True)

    attempt_time = db.Column(db.DateTime, nullable=False, index=True)
    attempt_type = db.Column(db.String(20), nullable=False, default=ATTEMPT_FAILED)

    __table_args__ = (
        db.Index("ix_login_attempts_identifier_time", "identifier", "attempt_time"),
        db.CheckConstraint(
            "attempt_type IN ('failed', 'success')", name="ck_login_attempts_type"
        ),
    )
