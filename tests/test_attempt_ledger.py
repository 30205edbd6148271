from datetime import timedelta

import pytest

from asset_manager.extensions import db
from asset_manager.models import LoginAttempt
from asset_manager.security import current_security


def _ledger():
    return current_security().ledger


def test_counts_only_failures_inside_lookback(app, clock):
    ledger = _ledger()
    ledger.record_attempt("a@test.local", "10.0.0.1", "pytest", "failed")
    clock.advance(minutes=30)
    ledger.record_attempt("a@test.local", "10.0.0.1", "pytest", "failed")
    ledger.record_attempt("a@test.local", "10.0.0.1", "pytest", "success")
    ledger.record_attempt("other@test.local", "10.0.0.1", "pytest", "failed")

    assert ledger.count_recent_failures("a@test.local") == 2

    clock.advance(minutes=31)
    assert ledger.count_recent_failures("a@test.local") == 1
    assert ledger.count_recent_failures("a@test.local", timedelta(hours=2)) == 2


def test_identifier_is_matched_exactly(app):
    ledger = _ledger()
    ledger.record_attempt("Alice@test.local", "10.0.0.1", None, "failed")
    assert ledger.count_recent_failures("Alice@test.local") == 1
    assert ledger.count_recent_failures("alice@test.local") == 0


def test_unknown_outcome_is_rejected(app):
    with pytest.raises(ValueError):
        _ledger().record_attempt("a@test.local", "10.0.0.1", None, "maybe")


def test_user_agent_is_truncated(app):
    _ledger().record_attempt("a@test.local", "10.0.0.1", "x" * 600, "failed")
    row = LoginAttempt.query.one()
    assert len(row.user_agent) == 255


def test_clear_removes_all_rows_for_identifier(app):
    ledger = _ledger()
    for _ in range(3):
        ledger.record_attempt("a@test.local", "10.0.0.1", None, "failed")
    ledger.record_attempt("b@test.local", "10.0.0.1", None, "failed")

    assert ledger.clear("a@test.local") == 3
    assert ledger.count_recent_failures("a@test.local") == 0
    assert ledger.count_recent_failures("b@test.local") == 1


def test_purge_older_than_keeps_recent_rows(app, clock):
    ledger = _ledger()
    ledger.record_attempt("a@test.local", "10.0.0.1", None, "failed")
    clock.advance(hours=25)
    ledger.record_attempt("a@test.local", "10.0.0.1", None, "failed")

    assert ledger.purge_older_than(timedelta(hours=24)) == 1
    assert db.session.query(LoginAttempt).count() == 1
