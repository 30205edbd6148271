from asset_manager.extensions import db


class RateLimitWindow(db.Model):
    """Fixed-window counter shared by every app instance on the same database."""

    __tablename__ = "rate_limit_windows"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(400), unique=True, nullable=False, index=True)

    window_start = db.Column(db.DateTime, nullable=False)
    count = db.Column(db.Integer, default=0, nullable=False)
    last_request = db.Column(db.DateTime, nullable=False)
