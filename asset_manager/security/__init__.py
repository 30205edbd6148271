from .clock import Clock, ManualClock, SystemClock
from .denials import Denial, SecurityStoreUnavailable
from .guards import run_guards
from .layer import SecurityLayer, current_security

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "Denial",
    "SecurityStoreUnavailable",
    "run_guards",
    "SecurityLayer",
    "current_security",
]
