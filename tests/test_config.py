"""Tests for Settings validation and policy loading."""

import json

import pytest

from availability.config import Settings
from availability.stores import InMemoryPolicyDirectory


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestSettings:
    def test_defaults(self):
        settings = _settings()
        assert settings.business_day_start_hour == 9
        assert settings.business_day_end_hour == 20
        assert settings.slot_increment_minutes == 30
        assert settings.search_horizon_days == 3
        assert settings.search_max_steps == 1000

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SEARCH_HORIZON_DAYS", "5")
        assert _settings().search_horizon_days == 5

    def test_webhook_url(self):
        settings = _settings(base_url="https://sched.example.com/")
        assert settings.webhook_url == "https://sched.example.com/webhook/google-calendar"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValueError):
            _settings(calendar_timezone="Mars/Olympus_Mons").validate_startup()

    def test_inverted_business_day_rejected(self):
        with pytest.raises(ValueError):
            _settings(business_day_start_hour=20, business_day_end_hour=9).validate_startup()

    def test_non_positive_increment_rejected(self):
        with pytest.raises(ValueError):
            _settings(slot_increment_minutes=0).validate_startup()

    def test_warnings(self):
        warnings = _settings(admin_api_key="", google_service_account_json="").validate_startup()
        assert any("ADMIN_API_KEY" in w for w in warnings)
        assert any("GOOGLE_SERVICE_ACCOUNT_JSON" in w for w in warnings)
        assert any("BASE_URL" in w for w in warnings)

    def test_clean_configuration(self):
        warnings = _settings(
            admin_api_key="secret",
            google_service_account_json="/etc/sa.json",
            base_url="https://sched.example.com",
        ).validate_startup()
        assert warnings == []


class TestPolicyFile:
    async def test_loads_clients_and_campaigns(self, tmp_path):
        path = tmp_path / "policies.json"
        path.write_text(json.dumps({
            "clients": [
                {
                    "client_id": "client-1",
                    "zone": "America/Toronto",
                    "business_hours": [{"days": [1, 2, 3, 4, 5], "start": "09:00", "end": "17:00"}],
                    "holidays": ["12-25"],
                }
            ],
            "campaigns": {"camp-west": "America/Vancouver"},
        }))

        directory = InMemoryPolicyDirectory.from_json_file(path)

        policy = await directory.get_policy("client-1")
        assert policy.business_hours[0].days == {1, 2, 3, 4, 5}
        assert await directory.list_client_ids() == ["client-1"]
        assert await directory.get_lead_timezone("camp-west", "America/Toronto") == "America/Vancouver"
        assert await directory.get_lead_timezone(None, "America/Toronto") == "America/Toronto"
        assert await directory.get_policy("missing") is None
