"""
Tests for Built-in Actions

Notification, remediation and ticketing actions against a mock HTTP
transport.
"""

import json

import httpx
import pytest

from conftest import EDR_URL, FIREWALL_URL, JIRA_URL, SLACK_URL, TEAMS_URL


class TestBlockIp:
    """Tests for the block_ip remediation action."""

    @pytest.mark.asyncio
    async def test_observe_mode_is_dry_run(self, registry, context, http):
        result = await registry.execute(
            "block_ip", {"ip_address": "203.0.113.7", "reason": "C2 beacon"}, context
        )

        assert result.success is True
        assert result.data["dry_run"] is True
        assert result.data["blocked_ip"] == "203.0.113.7"
        assert result.data["rule_id"].startswith("dryrun_")
        assert http.requests == []

    @pytest.mark.asyncio
    async def test_enforce_mode_calls_firewall(self, enforce_settings, registry, context, http):
        http.route(f"{FIREWALL_URL}/rules", httpx.Response(201, json={"rule_id": "fw-991"}))

        result = await registry.execute(
            "block_ip",
            {"ip_address": "203.0.113.7", "reason": "C2 beacon", "duration": 60},
            context,
        )

        assert result.success is True
        assert result.data["rule_id"] == "fw-991"
        assert result.data["dry_run"] is False
        assert result.data["expires_at"] is not None

        body = http.json_bodies(FIREWALL_URL)[0]
        assert body["ip"] == "203.0.113.7"
        assert body["duration_minutes"] == 60
        assert http.requests[0].headers["Authorization"] == "Bearer fw-key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ip", ["10.1.2.3", "192.168.1.1", "127.0.0.1", "::1"])
    async def test_protected_networks_refused(self, enforce_settings, registry, context, http, ip):
        from soc_automation.exceptions import ErrorCode

        result = await registry.execute("block_ip", {"ip_address": ip, "reason": "test"}, context)

        assert result.success is False
        assert result.error_code == ErrorCode.PERMISSION_DENIED
        assert http.requests == []

    @pytest.mark.asyncio
    async def test_configured_allowlist(self, enforce_settings, client, context):
        from soc_automation.actions.registry import ActionRegistry
        from soc_automation.actions.remediation import BlockIpAction

        enforce_settings.ip_allowlist = ["198.51.100.0/24"]
        registry = ActionRegistry()
        registry.register(BlockIpAction(enforce_settings, client))

        result = await registry.execute(
            "block_ip", {"ip_address": "198.51.100.20", "reason": "partner"}, context
        )

        assert result.success is False
        assert "protected" in result.error

    @pytest.mark.asyncio
    async def test_kill_switch_forces_dry_run(self, enforce_settings, registry, context, http):
        enforce_settings.kill_switch = True

        result = await registry.execute(
            "block_ip", {"ip_address": "203.0.113.7", "reason": "test"}, context
        )

        assert result.data["dry_run"] is True
        assert http.requests == []

    @pytest.mark.asyncio
    async def test_firewall_error_is_failed_result(self, enforce_settings, registry, context, http):
        from soc_automation.exceptions import ErrorCode

        http.route(FIREWALL_URL, httpx.Response(503, json={"error": "busy"}))

        result = await registry.execute(
            "block_ip", {"ip_address": "203.0.113.7", "reason": "test"}, context
        )

        assert result.success is False
        assert result.error_code == ErrorCode.EXTERNAL_CALL_FAILED
        assert result.data["status_code"] == 503


class TestIsolateHost:
    """Tests for the isolate_host remediation action."""

    @pytest.mark.asyncio
    async def test_critical_host_refused(self, enforce_settings, registry, context, http):
        from soc_automation.exceptions import ErrorCode

        result = await registry.execute(
            "isolate_host", {"hostname": "dc01", "reason": "ransomware"}, context
        )

        assert result.success is False
        assert result.error_code == ErrorCode.PERMISSION_DENIED
        assert "dc01" in result.error
        assert http.requests == []

    @pytest.mark.asyncio
    async def test_workstation_isolated(self, enforce_settings, registry, context, http):
        http.route(f"{EDR_URL}/hosts/isolate", httpx.Response(200, json={"isolation_id": "iso-7"}))

        result = await registry.execute(
            "isolate_host", {"hostname": "workstation-42", "reason": "ransomware"}, context
        )

        assert result.success is True
        assert result.data["isolation_id"] == "iso-7"
        assert result.data["host_identifier"] == "workstation-42"
        assert http.json_bodies(EDR_URL)[0]["hostname"] == "workstation-42"

    @pytest.mark.asyncio
    async def test_critical_check_runs_in_observe_mode(self, registry, context):
        result = await registry.execute(
            "isolate_host", {"hostname": "MAIL-EXCH-01", "reason": "test"}, context
        )

        assert result.success is False

    @pytest.mark.asyncio
    async def test_identifier_required(self, registry, context):
        from soc_automation.exceptions import ErrorCode

        result = await registry.execute("isolate_host", {"reason": "no target"}, context)

        assert result.error_code == ErrorCode.INVALID_PARAMETERS

    def test_is_critical_host(self, settings):
        from soc_automation.actions.remediation import IsolateHostAction

        action = IsolateHostAction(settings)
        assert action.is_critical_host("dc01")
        assert action.is_critical_host("DNS-primary")
        assert not action.is_critical_host("workstation-42")
        assert not action.is_critical_host(None)


class TestChatNotifications:
    """Tests for Slack and Teams actions."""

    @pytest.mark.asyncio
    async def test_slack_payload(self, registry, context, http):
        result = await registry.execute(
            "notify_slack",
            {
                "channel": "#soc",
                "message": "Alert!",
                "attachments": [{"color": "danger", "fields": [{"title": "IP", "value": "1.2.3.4"}]}],
            },
            context,
        )

        assert result.success is True
        body = http.json_bodies(SLACK_URL)[0]
        assert body["channel"] == "#soc"
        assert body["text"] == "Alert!"
        assert body["username"] == "SOC Automation"
        assert body["attachments"][0]["fields"][0] == {"title": "IP", "value": "1.2.3.4"}

    @pytest.mark.asyncio
    async def test_slack_without_webhook(self, settings, client, context):
        from soc_automation.actions.notification import SlackNotificationAction
        from soc_automation.actions.registry import ActionRegistry

        settings.slack_webhook_url = None
        registry = ActionRegistry()
        registry.register(SlackNotificationAction(settings, client))

        result = await registry.execute("notify_slack", {"channel": "#soc", "message": "x"}, context)

        assert result.success is False
        assert "not configured" in result.error

    @pytest.mark.asyncio
    async def test_teams_message_card(self, registry, context, http):
        result = await registry.execute(
            "notify_teams",
            {"title": "Host isolated", "message": "ws-42", "color": "attention"},
            context,
        )

        assert result.success is True
        assert result.data["webhook_url"].startswith("https://outlook.teams.test")
        assert result.data["webhook_url"].endswith("...")
        card = http.json_bodies(TEAMS_URL)[0]
        assert card["@type"] == "MessageCard"
        assert card["themeColor"] == "FF0000"

    def test_teams_theme_color(self):
        from soc_automation.actions.notification import teams_theme_color

        assert teams_theme_color("good") == "00FF00"
        assert teams_theme_color("#123456") == "123456"
        assert teams_theme_color(None) == "0078D4"


class TestWebhook:
    """Tests for the generic webhook action."""

    @pytest.fixture
    def sleeps(self, registry):
        recorded = []

        async def fake_sleep(delay):
            recorded.append(delay)

        registry.get_action("notify_webhook")._sleep = fake_sleep
        return recorded

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, registry, context, http, sleeps):
        http.route("https://hooks.example.com", [
            httpx.Response(500),
            httpx.Response(502),
            httpx.Response(200, json={"received": True}),
        ])

        result = await registry.execute(
            "notify_webhook", {"url": "https://hooks.example.com/soc", "retry_delay": 1.0}, context
        )

        assert result.success is True
        assert result.data["attempts"] == 3
        assert sleeps == [1.0, 2.0]
        assert len(http.requests) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, registry, context, http, sleeps):
        from soc_automation.exceptions import ErrorCode

        http.route("https://hooks.example.com", httpx.Response(404))

        result = await registry.execute(
            "notify_webhook", {"url": "https://hooks.example.com/soc"}, context
        )

        assert result.success is False
        assert result.error_code == ErrorCode.EXTERNAL_CALL_FAILED
        assert result.data["status_code"] == 404
        assert len(http.requests) == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_payload_includes_alert(self, registry, context, http, sleeps):
        await registry.execute(
            "notify_webhook",
            {"url": "https://hooks.example.com/soc", "payload": {"team": "blue"}},
            context,
        )

        body = http.json_bodies("https://hooks.example.com")[0]
        assert body["alert"]["id"] == "alert-1"
        assert body["alert"]["organization_id"] == 1
        assert body["system"]["source"] == "soc-automation"
        assert body["team"] == "blue"

    @pytest.mark.asyncio
    async def test_rejects_non_http_url(self, registry, context):
        from soc_automation.exceptions import ErrorCode

        result = await registry.execute("notify_webhook", {"url": "ftp://example.com"}, context)
        assert result.error_code == ErrorCode.INVALID_PARAMETERS

    def test_mask_url(self):
        from soc_automation.actions.http import mask_url

        assert mask_url("https://hooks.example.com/services/very/long/secret/token") == (
            "https://hooks.example.com/services/very/long/..."
        )
        assert mask_url("not a url") == "invalid-url"


class TestPushAndEmail:
    """Tests for push and email actions."""

    @pytest.mark.asyncio
    async def test_push_requires_target(self, registry, context):
        from soc_automation.exceptions import ErrorCode

        result = await registry.execute("notify_push", {"title": "t", "body": "b"}, context)
        assert result.error_code == ErrorCode.INVALID_PARAMETERS

    @pytest.mark.asyncio
    async def test_push_to_topic(self, registry, context, http):
        from soc_automation.actions.notification import FCM_URL

        result = await registry.execute(
            "notify_push", {"topic": "security-alerts", "title": "Alert", "body": "High"}, context
        )

        assert result.success is True
        body = http.json_bodies(FCM_URL)[0]
        assert body["to"] == "/topics/security-alerts"
        assert body["android"]["notification"]["color"] == "#F44336"
        assert http.requests[0].headers["Authorization"] == "key=fcm-test-key"

    @pytest.mark.asyncio
    async def test_email_sent_with_priority(self, registry, context, sent_emails):
        result = await registry.execute(
            "notify_email",
            {"to": ["soc@example.com"], "subject": "Alert", "body": "Details", "priority": "high"},
            context,
        )

        assert result.success is True
        assert len(sent_emails) == 1
        message = sent_emails[0]
        assert message["To"] == "soc@example.com"
        assert message["X-Priority"] == "1"

    @pytest.mark.asyncio
    async def test_email_rejects_bad_address(self, registry, context, sent_emails):
        result = await registry.execute(
            "notify_email", {"to": ["not-an-email"], "subject": "s", "body": "b"}, context
        )

        assert result.success is False
        assert sent_emails == []

    @pytest.mark.asyncio
    async def test_smtp_failure_is_failed_result(self, settings, context):
        import smtplib

        from soc_automation.actions.notification import EmailNotificationAction
        from soc_automation.actions.registry import ActionRegistry

        def refuse(message):
            raise smtplib.SMTPRecipientsRefused({})

        registry = ActionRegistry()
        registry.register(EmailNotificationAction(settings, sender=refuse))

        result = await registry.execute(
            "notify_email", {"to": ["soc@example.com"], "subject": "s", "body": "b"}, context
        )
        assert result.success is False
        assert "Failed to send email" in result.error


class TestJira:
    """Tests for the Jira ticket action."""

    @pytest.mark.asyncio
    async def test_creates_ticket(self, registry, context, http):
        http.route(f"{JIRA_URL}/rest/api/2/issue", httpx.Response(201, json={"id": "10001", "key": "SEC-12"}))

        result = await registry.execute(
            "create_jira_ticket",
            {"project_key": "SEC", "summary": "Ransomware", "description": "Host isolated", "priority": "Highest"},
            context,
        )

        assert result.success is True
        assert result.data["ticket_key"] == "SEC-12"
        assert result.data["ticket_url"] == f"{JIRA_URL}/browse/SEC-12"

        fields = http.json_bodies(JIRA_URL)[0]["fields"]
        assert fields["project"] == {"key": "SEC"}
        assert fields["priority"] == {"name": "Highest"}
        assert "Execution ID:* exec_test" in fields["description"]
        assert http.requests[0].headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_watcher_failure_keeps_ticket(self, registry, context, http):
        def watchers(request):
            if json.loads(request.content) == "ghost":
                return httpx.Response(404)
            return httpx.Response(204)

        http.route(f"{JIRA_URL}/rest/api/2/issue/SEC-7/watchers", watchers)
        http.route(f"{JIRA_URL}/rest/api/2/issue", httpx.Response(201, json={"id": "10007", "key": "SEC-7"}))

        result = await registry.execute(
            "create_jira_ticket",
            {
                "project_key": "SEC",
                "summary": "Phishing",
                "description": "Mailbox quarantined",
                "watchers": ["ghost", "analyst-1"],
            },
            context,
        )

        assert result.success is True
        assert result.data["ticket_key"] == "SEC-7"
        assert result.data["failed_watchers"] == ["ghost"]
        assert len(http.requests) == 3

    @pytest.mark.asyncio
    async def test_not_configured(self, settings, client, context):
        from soc_automation.actions.registry import ActionRegistry
        from soc_automation.actions.ticketing import CreateJiraTicketAction

        settings.jira_base_url = None
        registry = ActionRegistry()
        registry.register(CreateJiraTicketAction(settings, client))

        result = await registry.execute(
            "create_jira_ticket", {"project_key": "SEC", "summary": "s", "description": "d"}, context
        )
        assert result.success is False
        assert result.error == "Jira integration not configured"
