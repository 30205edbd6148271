from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from asset_manager.extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    # employee / company id accepted as an alternative login
    login_id = db.Column(db.String(64), unique=True, nullable=True, index=True)
    name = db.Column(db.String(120), nullable=False)

    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(20), nullable=False, default="user")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @classmethod
    def find_by_login(cls, login: str):
        """Resolve an email (case-insensitive) or a login id."""
        value = (login or "").strip()
        if not value:
            return None
        user = cls.query.filter(db.func.lower(cls.email) == value.lower()).first()
        if user is None:
            user = cls.query.filter_by(login_id=value).first()
        return user
