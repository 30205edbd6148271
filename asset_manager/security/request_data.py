from __future__ import annotations

from collections.abc import Mapping

from flask import Request


def payload(req: Request) -> Mapping:
    """Submitted fields from a JSON body or a form post."""
    data = req.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return req.form


def normalize_identifier(value) -> str:
    """
    Canonical login identifier. Emails are matched without regard to case, so
    they are folded to lower case; login ids are kept as typed.

    Ledger rows, lockout rows and the user lookup all use this form, so every
    spelling of one email shares a single attempt count and lock.
    """
    if not isinstance(value, str):
        return ""
    value = value.strip()
    if "@" in value:
        return value.lower()
    return value


def submitted_identifier(req: Request) -> str:
    """The login identifier (email or login id) from the request, normalized."""
    data = payload(req)
    return normalize_identifier(data.get("email") or data.get("login") or "")
