from asset_manager.models import AccountLockout, LoginAttempt, User
from asset_manager.security import current_security
from asset_manager.security.client_ip import RequestContext

CTX = RequestContext(ip="192.0.2.1")


def test_sweep_purges_old_rows(app, clock):
    security = current_security()
    security.ledger.record_attempt("old@test.local", "192.0.2.1", None, "failed")
    security.lockout.lock("old@test.local")
    security.rate_limiter.hit(security.rate_limiter.rules[0], "login:192.0.2.1:old@test.local")

    clock.advance(hours=25)
    security.ledger.record_attempt("new@test.local", "192.0.2.1", None, "failed")

    result = app.test_cli_runner().invoke(args=["security", "sweep"])
    assert result.exit_code == 0, result.output
    assert "login_attempts: 1 removed" in result.output
    assert "account_lockouts: 1 removed" in result.output
    assert "rate_limit_windows: 1 removed" in result.output

    assert LoginAttempt.query.count() == 1
    assert AccountLockout.query.count() == 0


def test_status_and_unlock(app):
    security = current_security()
    for _ in range(5):
        security.lockout.record_failed_attempt("bob@test.local", CTX)

    runner = app.test_cli_runner()
    out = runner.invoke(args=["security", "status", "bob@test.local"]).output
    assert "LOCKED for 30 more minutes" in out
    assert "recent failed attempts: 5" in out

    out = runner.invoke(args=["security", "unlock", "bob@test.local", "--clear-attempts"]).output
    assert "bob@test.local unlocked" in out
    assert security.lockout.is_locked("bob@test.local").locked is False
    assert security.ledger.count_recent_failures("bob@test.local") == 0

    out = runner.invoke(args=["security", "unlock", "bob@test.local"]).output
    assert "is not locked" in out


def test_create_user(app):
    runner = app.test_cli_runner()
    result = runner.invoke(
        args=["create-user", "Root@Example.com", "s3cret-pass", "--role", "admin", "--login-id", "EMP-1"]
    )
    assert result.exit_code == 0, result.output

    user = User.query.filter_by(email="root@example.com").one()
    assert user.role == "admin"
    assert user.login_id == "EMP-1"
    assert user.check_password("s3cret-pass")

    again = runner.invoke(args=["create-user", "root@example.com", "x"])
    assert again.exit_code != 0
    assert "already exists" in again.output


def test_lazy_sweep_runs_on_interval(app, clock):
    security = current_security()
    client = app.test_client()
    client.get("/health")
    first = security._last_sweep
    assert first == clock.now()

    clock.advance(minutes=30)
    client.get("/health")
    assert security._last_sweep == first

    clock.advance(minutes=31)
    client.get("/health")
    assert security._last_sweep == clock.now()


def test_startup_sweep_survives_missing_tables(clock):
    from sqlalchemy.pool import StaticPool

    from asset_manager import create_app

    app = create_app(
        config_overrides={
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "SQLALCHEMY_ENGINE_OPTIONS": {
                "connect_args": {"check_same_thread": False},
                "poolclass": StaticPool,
            },
            "SECURITY_SWEEP_ON_STARTUP": True,
        },
        clock=clock,
    )
    security = app.extensions["security"]
    assert security._last_sweep is None

    # the lazy sweep fails the same way and backs off for one interval
    assert app.test_client().get("/health").status_code == 200
    assert security._last_sweep == clock.now()


def test_sweep_purges_old_security_events(app, clock):
    from asset_manager.models import SecurityEvent

    security = current_security()
    security.events.log_event("csp_violation", "warn", {"ip": "192.0.2.1"})
    clock.advance(days=31)
    security.events.log_event("csp_violation", "warn", {"ip": "192.0.2.2"})

    result = app.test_cli_runner().invoke(args=["security", "sweep"])
    assert result.exit_code == 0, result.output
    assert "security_events: 1 removed" in result.output
    assert [ev.ip for ev in SecurityEvent.query.all()] == ["192.0.2.2"]
