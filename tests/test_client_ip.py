import pytest

from asset_manager.security.client_ip import UNKNOWN_IP, RequestContext, client_ip, ip_key, normalize_ip


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1.2.3.4", "1.2.3.4"),
        (" 1.2.3.4 ", "1.2.3.4"),
        ("1.2.3.4:8080", "1.2.3.4"),
        ("2001:DB8:0:0::1", "2001:db8::1"),
        ("[2001:db8::1]:443", "2001:db8::1"),
        ("fe80::1%eth0", "fe80::1"),
        ("::ffff:10.0.0.5", "10.0.0.5"),
        ("not-an-ip", UNKNOWN_IP),
        ("", UNKNOWN_IP),
        (None, UNKNOWN_IP),
    ],
)
def test_normalize_ip(raw, expected):
    assert normalize_ip(raw) == expected


def test_ip_key_brackets_ipv6():
    assert ip_key("10.0.0.1") == "10.0.0.1"
    assert ip_key("2001:db8::1") == "[2001:db8::1]"
    assert ip_key(UNKNOWN_IP) == UNKNOWN_IP


def test_client_ip_ignores_forwarded_header_by_default(app):
    with app.test_request_context(
        "/",
        headers={"X-Forwarded-For": "198.51.100.2, 10.0.0.1"},
        environ_base={"REMOTE_ADDR": "10.0.0.1"},
    ):
        from flask import request

        assert client_ip(request) == "10.0.0.1"


def test_one_trusted_proxy_hop_uses_rightmost_entry(make_app):
    from asset_manager.models import LoginAttempt
    from tests.conftest import fetch_csrf

    app = make_app(PROXY_FIX_X_FOR=1)
    client = app.test_client()
    token = fetch_csrf(client)

    res = client.post(
        "/auth/login",
        json={"email": "ghost@x.com", "password": "pw"},
        headers={"X-CSRF-Token": token, "X-Forwarded-For": "6.6.6.6, 198.51.100.1"},
        environ_base={"REMOTE_ADDR": "10.0.0.1"},
    )
    assert res.status_code == 401
    # the client-written entry is left of the one the proxy appended
    assert LoginAttempt.query.one().ip_address == "198.51.100.1"


def test_request_context_truncates_user_agent(app):
    with app.test_request_context("/", headers={"User-Agent": "u" * 400}):
        from flask import request

        ctx = RequestContext.from_request(request)
    assert len(ctx.user_agent) == 255
    assert ctx.ip == "127.0.0.1"
