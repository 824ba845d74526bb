import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from sltmon import db, main, slt
from sltmon.timebuckets import format_day_key

USAGE_PAYLOAD = {
    "isSuccess": True,
    "dataBundle": {
        "my_package_summary": {"used": "12.5"},
        "vas_data_summary": {"used": "1.75"},
        "my_package_info": {"package_name": "ANY BEAT"},
    },
}


@pytest.fixture
def client(temp_db):
    return TestClient(main.app)


@pytest.fixture
def slt_environment(monkeypatch):
    monkeypatch.setenv("SLT_SUBSCRIBER_ID", "94112345678")
    monkeypatch.setenv("SLT_USERNAME", "user@example.com")
    monkeypatch.setenv("SLT_PASSWORD", "secret")
    monkeypatch.delenv("SLT_AUTH_TOKEN", raising=False)


def store_now(vas_used):
    db.insert_usage_row(
        {
            "timestamp": db.utc_now_iso(),
            "package_name": "ANY BEAT",
            "used_gb": 12.0,
            "vas_used_gb": vas_used,
            "raw": {},
        }
    )


class TestReadRoutes:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.text == "ok"

    def test_index_lists_endpoints(self, client):
        response = client.get("/does-not-exist")

        assert response.status_code == 200
        assert response.json()["message"] == "SLT usage monitor"
        assert response.json()["schedule"] == ["29 * * * *", "59 * * * *"]

    def test_options_preflight(self, client):
        response = client.options("/usage")

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.content == b""

    def test_usage_rows(self, client):
        store_now(1.5)
        db.insert_usage_row(
            {
                "timestamp": db.utc_iso(datetime.now(timezone.utc) - timedelta(days=10)),
                "package_name": "OLD",
                "used_gb": 1.0,
                "vas_used_gb": 0.5,
                "raw": {},
            }
        )

        body = client.get("/usage").json()
        assert body["count"] == 1
        assert body["rows"][0]["vas_used_gb"] == 1.5

        assert client.get("/usage?days=30").json()["count"] == 2
        assert client.get("/usage?days=-3").json()["count"] == 1

    def test_usage_huge_window_is_clamped(self, client):
        store_now(1.5)

        response = client.get("/usage?days=1000000")

        assert response.status_code == 200
        assert response.json()["count"] == 1

    def test_intraday_invalid_day(self, client):
        response = client.get("/intraday?day=2025-02-30")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid day parameter"}

    def test_intraday_for_day(self, client):
        db.insert_usage_row(
            {"timestamp": "2025-03-10T03:01:00.000Z", "package_name": "P", "used_gb": 1, "vas_used_gb": 2.0, "raw": {}}
        )

        body = client.get("/intraday?day=2025-03-10").json()
        series = {point["key"]: point["value"] for point in body["series"]}

        assert body["dayKey"] == "2025-03-10"
        assert len(body["series"]) == 48
        assert series["08:29"] == 0
        assert series["08:59"] == 2.0

    def test_intraday_rejects_day_outside_datetime_range(self, client):
        response = client.get("/intraday?day=0001-01-01")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid day parameter"}

    def test_intraday_last_representable_day(self, client):
        body = client.get("/intraday?day=9999-12-31").json()

        assert body["dayKey"] == "9999-12-31"
        assert len(body["series"]) == 48

    def test_intraday_defaults_to_today(self, client):
        body = client.get("/intraday").json()

        assert body["dayKey"] == format_day_key(datetime.now(timezone.utc))

    def test_monthly(self, client):
        store_now(3.0)

        body = client.get("/monthly").json()
        today = format_day_key(datetime.now(timezone.utc))

        assert body["startDayKey"].endswith("-01")
        assert {point["key"]: point["value"] for point in body["series"]}[today] == 3.0

    def test_dashboard_without_data(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "No usage entries recorded yet." in response.text

    def test_dashboard_with_data(self, client):
        store_now(2.5)

        response = client.get("/")

        assert "Data Usage Today" in response.text
        assert "2.50 GB" in response.text
        assert "ANY BEAT" in response.text

    def test_dashboard_selected_day(self, client):
        db.insert_usage_row(
            {"timestamp": "2025-03-10T03:01:00.000Z", "package_name": "P", "used_gb": 1, "vas_used_gb": 2.0, "raw": {}}
        )

        response = client.get("/?day=2025-03-10")

        assert response.status_code == 200
        assert "Mon, 10 Mar" in response.text

    def test_dashboard_yesterday_title(self, client):
        yesterday = format_day_key(datetime.now(timezone.utc) - timedelta(days=1))

        response = client.get(f"/?day={yesterday}")

        assert "Yesterday" in response.text

    def test_dashboard_invalid_day_shows_today(self, client):
        response = client.get("/?day=2025-02-30")

        assert response.status_code == 200
        assert '<div class="chart-title">Today</div>' in response.text

    def test_dashboard_links_days_and_syncs_with_login(self, client):
        text = client.get("/").text

        assert 'href="/?day=' in text
        assert "triggerWithAutoLogin" in text
        assert 'postJson("/login")' in text

    def test_jobs(self, client):
        db.update_job_status("slt_usage", last_run_at="x")

        assert client.get("/jobs").json()["jobs"][0]["job_name"] == "slt_usage"


class TestActionRoutes:
    def test_trigger_stores_record(self, client, slt_environment, make_transport, monkeypatch):
        transport = make_transport([(200, json.dumps({"accessToken": "tok"})), (200, json.dumps(USAGE_PAYLOAD))])
        monkeypatch.setattr(slt, "urllib_transport", transport)

        response = client.post("/trigger")

        assert response.status_code == 200
        body = response.json()
        assert body["stored"] is True
        assert body["record"]["vas_used_gb"] == 1.75
        assert len(db.get_usage_rows_since("1970-01-01T00:00:00.000Z")) == 1
        assert slt.token_cache.get() == "tok"

    def test_trigger_reports_failure(self, client, monkeypatch):
        monkeypatch.delenv("SLT_SUBSCRIBER_ID", raising=False)

        response = client.get("/trigger")

        assert response.status_code == 500
        assert response.json() == {"stored": False, "error": "Missing SLT_SUBSCRIBER_ID"}

    def test_login_requires_post(self, client):
        assert client.get("/login").status_code == 405

    def test_login_prewarms_cache(self, client, slt_environment, make_transport, monkeypatch):
        monkeypatch.setattr(slt, "urllib_transport", make_transport([(200, json.dumps({"accessToken": "warm"}))]))

        response = client.post("/login")

        assert response.json() == {"loggedIn": True}
        assert slt.token_cache.get() == "warm"

    def test_login_failure(self, client, slt_environment, make_transport, monkeypatch):
        monkeypatch.setattr(slt, "urllib_transport", make_transport([(401, "denied")]))

        response = client.post("/login")

        assert response.status_code == 500
        assert response.json() == {"loggedIn": False, "error": "SLT login failed with 401: denied"}
