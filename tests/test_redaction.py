from asset_manager.security.redaction import REDACTED, is_sensitive_key, redact, redact_text


def test_sensitive_keys():
    for name in ("password", "new_password", "csrf_token", "api_key", "Authorization", "session_id", "Cookie"):
        assert is_sensitive_key(name), name
    for name in ("identifier", "ip", "user_agent", "bucket", "hits"):
        assert not is_sensitive_key(name), name


def test_nested_structures_are_redacted():
    data = {
        "identifier": "a@x.com",
        "password": "hunter2",
        "headers": {"Authorization": "Bearer abc", "Accept": "text/html"},
        "attempts": [{"token": "t1"}, {"ip": "10.0.0.1"}],
    }
    out = redact(data)
    assert out["identifier"] == "a@x.com"
    assert out["password"] == REDACTED
    assert out["headers"] == {"Authorization": REDACTED, "Accept": "text/html"}
    assert out["attempts"] == [{"token": REDACTED}, {"ip": "10.0.0.1"}]
    # input is left untouched
    assert data["password"] == "hunter2"


def test_inline_secrets_in_strings():
    assert redact_text("login?user=a&password=hunter2&x=1") == f"login?user=a&password={REDACTED}&x=1"
    assert redact_text("token: abc123 rest") == f"token: {REDACTED} rest"
    assert redact_text("nothing to see") == "nothing to see"


def test_non_string_values_pass_through():
    assert redact({"hits": 5, "locked": True, "nothing": None}) == {"hits": 5, "locked": True, "nothing": None}
