from asset_manager.extensions import db

REASON_TOO_MANY_FAILED = "too_many_failed_attempts"


class AccountLockout(db.Model):
    __tablename__ = "account_lockouts"

    id = db.Column(db.Integer, primary_key=True)

    # unique so concurrent lockouts of the same identifier merge into one row
    identifier = db.Column(db.String(255), unique=True, nullable=False)

    locked_at = db.Column(db.DateTime, nullable=False)
    locked_until = db.Column(db.DateTime, nullable=False, index=True)
    attempt_count = db.Column(db.Integer, nullable=False, default=1)
    reason = db.Column(db.String(100), nullable=False, default=REASON_TOO_MANY_FAILED)

    __table_args__ = (
        db.CheckConstraint("locked_until > locked_at", name="ck_account_lockouts_window"),
    )

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "locked_at": self.locked_at.isoformat() + "Z" if self.locked_at else None,
            "locked_until": self.locked_until.isoformat() + "Z" if self.locked_until else None,
            "attempt_count": self.attempt_count,
            "reason": self.reason,
        }
