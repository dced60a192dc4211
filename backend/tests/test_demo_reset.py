"""
Tests for demo endpoints. Demo reset and record listing are only available when DEMO_MODE=true.
"""
import pytest

import main
from conftest import MARIA


class TestDemoStatus:
    def test_status_reflects_env(self, client, monkeypatch):
        monkeypatch.setenv("DEMO_MODE", "true")
        assert client.get("/demo/status").json() == {"demoMode": True}
        monkeypatch.delenv("DEMO_MODE")
        assert client.get("/demo/status").json() == {"demoMode": False}


class TestDemoResetEndpoint:
    """Test POST /demo/reset is gated by DEMO_MODE and behaves correctly."""

    def test_demo_reset_endpoint_disabled_when_demo_mode_false(self, client, monkeypatch):
        """When DEMO_MODE is false, POST /demo/reset returns 404."""
        monkeypatch.setenv("DEMO_MODE", "false")

        resp = client.post("/demo/reset")
        assert resp.status_code == 404
        assert "detail" in resp.json()

    def test_demo_reset_endpoint_disabled_when_demo_mode_unset(self, client, monkeypatch):
        """When DEMO_MODE is unset, POST /demo/reset returns 404."""
        monkeypatch.delenv("DEMO_MODE", raising=False)

        resp = client.post("/demo/reset")
        assert resp.status_code == 404

    def test_demo_records_hidden_when_demo_mode_unset(self, client, monkeypatch):
        monkeypatch.delenv("DEMO_MODE", raising=False)
        assert client.get("/demo/records").status_code == 404

    def test_demo_reset_clears_records_and_forms_when_demo_mode_true(self, client, intake_url, monkeypatch):
        """When DEMO_MODE=true, reset clears records and drops every open form."""
        monkeypatch.setenv("DEMO_MODE", "true")

        client.patch(f"{intake_url}/form", json=MARIA)
        submitted = client.post(f"{intake_url}/submit").json()
        assert submitted["state"] == "submitted"

        records = client.get("/demo/records").json()
        assert len(records) == 1
        assert records[0]["loginId"] == "MAR2311"
        assert records[0]["status"] == "pending"
        assert "id" in records[0]

        reset_resp = client.post("/demo/reset")
        assert reset_resp.status_code == 200
        assert reset_resp.json() == {"status": "ok"}

        assert client.get(intake_url).status_code == 404
        assert client.get("/demo/records").json() == []

        # Same patient can be submitted again on a new form after reset
        view = client.post("/intakes").json()
        assert view["form"] == {"name": "", "dob": "", "gender": "", "symptoms": ""}
        assert view["sessionActive"] is True
        fresh_url = f"/intakes/{view['intakeId']}"
        client.patch(f"{fresh_url}/form", json=MARIA)
        again = client.post(f"{fresh_url}/submit").json()
        assert again["result"]["loginId"] == "MAR2311"
        assert len(client.get("/demo/records").json()) == 1

    def test_demo_reset_discards_half_filled_forms(self, client, monkeypatch):
        monkeypatch.setenv("DEMO_MODE", "true")
        client.post("/intakes")
        intake_id = client.post("/intakes").json()["intakeId"]
        client.patch(f"/intakes/{intake_id}/form", json={"name": "Maria"})
        client.post("/demo/reset")
        assert len(main.registry) == 0
