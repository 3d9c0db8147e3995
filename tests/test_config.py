"""
Tests for settings and notification configuration
"""

import pytest


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        from soc_automation.config.settings import RuntimeMode, Settings

        monkeypatch.chdir("/")
        s = Settings()

        assert s.mode == RuntimeMode.OBSERVE
        assert s.kill_switch is False
        assert s.max_notifications_per_hour == 50
        assert s.notify_min_severity == "medium"

    def test_no_settings_built_at_import(self):
        from soc_automation import config
        from soc_automation.config import settings as settings_module

        assert not hasattr(config, "settings") or config.settings is settings_module
        assert not isinstance(getattr(settings_module, "settings", None), settings_module.Settings)

    def test_environment_overrides(self, monkeypatch):
        from soc_automation.config.settings import RuntimeMode, Settings

        monkeypatch.setenv("SOC_MODE", "enforce")
        monkeypatch.setenv("SOC_ACTION_TIMEOUT", "12.5")
        monkeypatch.setenv("SOC_NOTIFY_ADMIN_EMAILS", '["ir@example.com", "ciso@example.com"]')
        monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.test/env")

        s = Settings()

        assert s.mode == RuntimeMode.ENFORCE
        assert s.action_timeout == 12.5
        assert s.notify_admin_emails == ["ir@example.com", "ciso@example.com"]
        assert s.slack_webhook_url == "https://hooks.slack.test/env"

    @pytest.mark.parametrize("field,value", [
        ("log_level", "LOUD"),
        ("notify_min_severity", "extreme"),
        ("action_timeout", 0),
        ("max_notifications_per_hour", -5),
    ])
    def test_invalid_values(self, field, value):
        from pydantic import ValidationError

        from soc_automation.config.settings import Settings

        with pytest.raises(ValidationError):
            Settings(**{field: value})

    def test_kill_switch_forces_observe(self, enforce_settings):
        from soc_automation.config.settings import RuntimeMode

        assert enforce_settings.get_effective_mode() == RuntimeMode.ENFORCE
        enforce_settings.kill_switch = True
        assert enforce_settings.get_effective_mode() == RuntimeMode.OBSERVE

    def test_integration_problems_only_in_enforce(self, tmp_path):
        from soc_automation.config.settings import Settings

        observe = Settings(db_path=str(tmp_path / "db"))
        assert observe.validate_integration_config() == []

        enforce = Settings(mode="enforce", db_path=str(tmp_path / "db"), jira_base_url="https://jira.test")
        problems = enforce.validate_integration_config()
        assert len(problems) == 3
        assert any("SOC_FIREWALL_API_URL" in p for p in problems)


class TestNotificationConfig:
    """Tests for NotificationConfig."""

    def test_from_settings(self, settings):
        from soc_automation.config.notifications import NotificationConfig

        config = NotificationConfig.from_settings(settings)

        assert config.email.enabled is True
        assert config.email.recipients == ("soc@example.com",)
        assert config.slack.enabled is True
        assert config.slack.channel == "#security-alerts"
        assert config.teams.enabled is False
        assert config.push.topics == ("security-alerts",)

    def test_slack_requires_webhook(self, tmp_path):
        from soc_automation.config.notifications import NotificationConfig
        from soc_automation.config.settings import Settings

        config = NotificationConfig.from_settings(Settings(db_path=str(tmp_path / "db")))

        assert config.slack.enabled is False

    def test_webhook_endpoints_from_settings(self, settings):
        from soc_automation.config.notifications import NotificationConfig

        settings.notify_webhooks_enabled = True
        settings.notify_webhook_endpoints = [{"name": "siem", "url": "https://siem.test", "method": "put"}]

        config = NotificationConfig.from_settings(settings)

        assert config.webhooks.endpoints[0].method == "PUT"

    def test_merged_is_deep_and_returns_new_instance(self):
        from soc_automation.config.notifications import NotificationConfig

        base = NotificationConfig(slack={"enabled": True, "webhook_url": "https://hooks.slack.test/x"})
        merged = base.merged({"slack": {"channel": "#ir"}, "min_severity": "Low"})

        assert merged is not base
        assert merged.slack.webhook_url == "https://hooks.slack.test/x"
        assert merged.slack.channel == "#ir"
        assert merged.min_severity == "low"
        assert base.slack.channel == "#security-alerts"

    @pytest.mark.parametrize("updates", [
        {"min_severity": "urgent"},
        {"webhooks": {"endpoints": [{"name": "x", "url": "https://x.test", "method": "DELETE"}]}},
        {"max_notifications_per_hour": -1},
    ])
    def test_merged_validates(self, updates):
        from pydantic import ValidationError

        from soc_automation.config.notifications import NotificationConfig

        with pytest.raises(ValidationError):
            NotificationConfig().merged(updates)
