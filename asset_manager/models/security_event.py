from __future__ import annotations

from asset_manager.extensions import db


class SecurityEvent(db.Model):
    __tablename__ = "security_events"

    id = db.Column(db.Integer, primary_key=True)

    created_at = db.Column(db.DateTime, nullable=False, index=True)

    # "rate_limited" | "account_locked" | "locked_account_login" | "csrf_token_missing" ...
    event_type = db.Column(db.String(48), nullable=False, index=True)
    severity = db.Column(db.String(10), nullable=False, index=True)  # info | warn | error

    status_code = db.Column(db.Integer, nullable=True, index=True)

    endpoint = db.Column(db.String(128), nullable=True, index=True)
    blueprint = db.Column(db.String(64), nullable=True, index=True)
    method = db.Column(db.String(10), nullable=True)
    path = db.Column(db.String(255), nullable=True)

    identifier = db.Column(db.String(255), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    ip = db.Column(db.String(64), nullable=True, index=True)

    # redacted JSON context
    details = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
            "event_type": self.event_type,
            "severity": self.severity,
            "status_code": self.status_code,
            "endpoint": self.endpoint,
            "blueprint": self.blueprint,
            "method": self.method,
            "path": self.path,
            "identifier": self.identifier,
            "user_id": self.user_id,
            "ip": self.ip,
            "details": self.details,
        }
