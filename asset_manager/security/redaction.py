from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

_SENSITIVE_KEY = re.compile(r"password|passwd|secret|token|key|auth|cookie|session", re.IGNORECASE)

# inline "name=value" / "name: value" pairs inside free-form strings
_INLINE_SECRET = re.compile(
    r"((?:password|passwd|secret|token|api_key|key|authorization|auth)\s*[=:]\s*)([^&\s,;]+)",
    re.IGNORECASE,
)


def is_sensitive_key(name: str) -> bool:
    return bool(_SENSITIVE_KEY.search(name))


def redact_text(value: str) -> str:
    return _INLINE_SECRET.sub(lambda m: m.group(1) + REDACTED, value)


def redact(value: Any) -> Any:
    """Return a copy of `value` with secret-looking fields masked. Walks dicts, lists and tuples."""
    if isinstance(value, dict):
        return {
            k: (REDACTED if isinstance(k, str) and is_sensitive_key(k) else redact(v))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if isinstance(value, str):
        return redact_text(value)
    return value
