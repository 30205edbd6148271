from .user import User
from .login_attempt import LoginAttempt
from .account_lockout import AccountLockout
from .rate_limit_window import RateLimitWindow
from .security_event import SecurityEvent


__all__ = ["User", "LoginAttempt", "AccountLockout", "RateLimitWindow", "SecurityEvent"]
