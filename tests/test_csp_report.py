import json

from asset_manager.models import SecurityEvent


def test_csp_report_is_logged(client):
    report = {
        "csp-report": {
            "document-uri": "https://assets.example.com/",
            "blocked-uri": "https://evil.example.net/x.js",
            "violated-directive": "script-src",
        }
    }
    res = client.post(
        "/security/csp-report",
        data=json.dumps(report),
        content_type="application/csp-report",
    )
    assert res.status_code == 204

    ev = SecurityEvent.query.filter_by(event_type="csp_violation").one()
    details = json.loads(ev.details)
    assert details["blocked-uri"] == "https://evil.example.net/x.js"
    assert details["violated-directive"] == "script-src"


def test_garbage_report_still_answers_204(client):
    res = client.post("/security/csp-report", data="not json", content_type="text/plain")
    assert res.status_code == 204
    assert SecurityEvent.query.filter_by(event_type="csp_violation").count() == 1


def test_report_flood_is_rate_limited(make_app):
    app = make_app(CSP_REPORT_RATE_MAX=2)
    client = app.test_client()
    peer = {"REMOTE_ADDR": "198.51.100.77"}

    codes = [
        client.post("/security/csp-report", json={"csp-report": {}}, environ_base=peer).status_code
        for _ in range(4)
    ]
    assert codes == [204, 204, 429, 429]
    assert SecurityEvent.query.filter_by(event_type="csp_violation").count() == 2
