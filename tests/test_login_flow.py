from asset_manager.extensions import db
from asset_manager.models import AccountLockout, LoginAttempt, User
from asset_manager.security import current_security
from tests.conftest import PASSWORD, ensure_user, fetch_csrf, login_session, post_login

EMAIL = "a@x.com"


def _make_user(email=EMAIL, login_id=None, is_active=True):
    user = User(email=email, name="A", login_id=login_id, is_active=is_active)
    user.set_password(PASSWORD)
    db.session.add(user)
    db.session.commit()
    return user


def _fail_five_times(client, token, ip="1.2.3.4"):
    for _ in range(5):
        res = post_login(client, EMAIL, "wrong-password", token=token, ip=ip)
        assert res.status_code == 401
        assert res.get_json() == {"success": False, "message": "Invalid email or password"}


def test_correct_credentials_log_in(client):
    _make_user()
    res = post_login(client, EMAIL, PASSWORD)
    assert res.status_code == 200
    body = res.get_json()
    assert body["success"] is True
    assert body["redirect"] == "/"

    me = client.get("/api/me").get_json()
    assert me["authenticated"] is True
    assert me["email"] == EMAIL


def test_login_by_login_id(client):
    _make_user(login_id="EMP-0042")
    res = post_login(client, "EMP-0042", PASSWORD)
    assert res.status_code == 200


def test_email_lookup_ignores_case(client):
    _make_user()
    assert post_login(client, "A@X.com", PASSWORD).status_code == 200


def test_missing_fields(client):
    token = fetch_csrf(client)
    res = client.post("/auth/login", json={"email": EMAIL}, headers={"X-CSRF-Token": token})
    assert res.status_code == 400
    assert res.get_json()["error"] == "missing_fields"
    # malformed input is not a failed attempt
    assert LoginAttempt.query.count() == 0


def test_disabled_account(client):
    _make_user(is_active=False)
    res = post_login(client, EMAIL, PASSWORD)
    assert res.status_code == 403
    assert res.get_json()["code"] == "ACCOUNT_DISABLED"


def test_unknown_account_counts_towards_lockout(client):
    token = fetch_csrf(client)
    for _ in range(5):
        assert post_login(client, "ghost@x.com", "pw", token=token, ip="1.2.3.4").status_code == 401

    res = post_login(client, "ghost@x.com", "pw", token=token, ip="5.6.7.8")
    assert res.status_code == 423


def test_sixth_attempt_from_new_ip_is_locked(client):
    _make_user()
    token = fetch_csrf(client)
    _fail_five_times(client, token)

    res = post_login(client, EMAIL, PASSWORD, token=token, ip="9.9.9.9")
    assert res.status_code == 423
    body = res.get_json()
    assert body["code"] == "ACCOUNT_LOCKED"
    assert body["locked"] is True
    assert body["remainingMinutes"] == 30
    assert res.headers["Retry-After"] == "1800"


def test_sixth_attempt_from_same_ip_hits_rate_limit_first(client):
    _make_user()
    token = fetch_csrf(client)
    _fail_five_times(client, token)

    res = post_login(client, EMAIL, PASSWORD, token=token, ip="1.2.3.4")
    assert res.status_code == 429
    assert res.get_json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert int(res.headers["Retry-After"]) > 0


def test_sixth_attempt_is_locked_when_rate_limit_is_loose(make_app):
    app = make_app(LOGIN_RATE_MAX=100)
    client = app.test_client()
    _make_user()
    token = fetch_csrf(client)
    _fail_five_times(client, token)

    res = post_login(client, EMAIL, "anything", token=token, ip="1.2.3.4")
    assert res.status_code == 423
    assert res.get_json()["remainingMinutes"] == 30


def test_lock_expires(client, clock):
    _make_user()
    token = fetch_csrf(client)
    _fail_five_times(client, token)

    clock.advance(minutes=10)
    res = post_login(client, EMAIL, PASSWORD, token=token, ip="9.9.9.9")
    assert res.status_code == 423
    assert res.get_json()["remainingMinutes"] == 20

    clock.advance(minutes=20)
    res = post_login(client, EMAIL, PASSWORD, token=token, ip="9.9.9.9")
    assert res.status_code == 200


def test_admin_unlock_then_login_clears_ledger(app, client):
    _make_user()
    token = fetch_csrf(client)
    _fail_five_times(client, token)
    assert post_login(client, EMAIL, PASSWORD, token=token, ip="9.9.9.9").status_code == 423

    admin = app.test_client()
    login_session(admin, user_id=90, role="admin")
    admin_token = fetch_csrf(admin)
    res = admin.delete(f"/admin/lockouts/{EMAIL}", headers={"X-CSRF-Token": admin_token})
    assert res.status_code == 200
    assert res.get_json()["unlocked"] is True

    ledger = current_security().ledger
    # unlock leaves the failure history alone
    assert ledger.count_recent_failures(EMAIL) == 5

    res = post_login(client, EMAIL, PASSWORD, token=token, ip="9.9.9.9")
    assert res.status_code == 200
    assert ledger.count_recent_failures(EMAIL) == 0
    assert AccountLockout.query.count() == 0


def test_browser_form_gets_redirect_with_flash(client):
    _make_user()
    token = fetch_csrf(client)
    res = client.post(
        "/auth/login",
        data={"email": EMAIL, "password": "bad", "_csrf": token},
    )
    assert res.status_code == 302
    assert res.headers["Location"].endswith("/auth/login")

    messages = client.get("/auth/login").get_json()["messages"]
    assert ["error", "Invalid email or password"] in messages


def test_locked_browser_form_is_redirected(make_app):
    app = make_app(LOGIN_RATE_MAX=100)
    client = app.test_client()
    _make_user()
    token = fetch_csrf(client)
    _fail_five_times(client, token)

    res = client.post(
        "/auth/login",
        data={"email": EMAIL, "password": PASSWORD, "_csrf": token},
    )
    assert res.status_code == 302
    messages = client.get("/auth/login").get_json()["messages"]
    assert any("locked" in text for _, text in messages)


def test_successful_login_records_success_row(client):
    ensure_user(5)
    assert post_login(client, "user5@test.local", PASSWORD).status_code == 200
    row = LoginAttempt.query.one()
    assert row.attempt_type == "success"
    assert row.ip_address == "203.0.113.7"


def test_email_case_variants_share_one_lock(make_app):
    app = make_app(LOGIN_RATE_MAX=100)
    client = app.test_client()
    _make_user()
    token = fetch_csrf(client)
    _fail_five_times(client, token)

    for variant in ("A@x.com", "a@X.com", "A@X.COM", "a@x.COM", " a@x.com "):
        res = post_login(client, variant, "wrong-password", token=token, ip="9.9.9.9")
        assert res.status_code == 423, variant

    res = post_login(client, "A@x.cOm", PASSWORD, token=token, ip="9.9.9.9")
    assert res.status_code == 423
    assert AccountLockout.query.one().identifier == EMAIL


def test_mixed_case_failures_count_together(make_app):
    app = make_app(LOGIN_RATE_MAX=100)
    client = app.test_client()
    _make_user()
    token = fetch_csrf(client)
    for variant in ("A@x.com", "a@X.com", "A@X.COM", "a@x.COM", "a@x.com"):
        assert post_login(client, variant, "wrong-password", token=token).status_code == 401

    assert {row.identifier for row in LoginAttempt.query.all()} == {EMAIL}
    assert post_login(client, EMAIL, PASSWORD, token=token).status_code == 423


def test_login_ids_keep_their_case(client):
    _make_user(login_id="EMP-0042")
    token = fetch_csrf(client)
    assert post_login(client, "emp-0042", PASSWORD, token=token).status_code == 401
    assert LoginAttempt.query.one().identifier == "emp-0042"
