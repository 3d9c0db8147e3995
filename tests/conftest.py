"""
SOC Automation Test Configuration and Fixtures
"""

import json
import os

import httpx
import pytest

# Keep developer environment from leaking into Settings
for _key in list(os.environ):
    if _key.startswith("SOC_"):
        del os.environ[_key]

SLACK_URL = "https://hooks.slack.test/services/T000/B000/XXXX"
TEAMS_URL = "https://outlook.teams.test/webhook/abc"
FIREWALL_URL = "https://firewall.test/api"
EDR_URL = "https://edr.test/api"
JIRA_URL = "https://jira.test"


class HttpRecorder:
    """
    Handler for httpx.MockTransport.

    Records every request and answers from registered routes; unmatched
    requests get 200 ``{"ok": true}``.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: list[tuple[str, object]] = []

    def route(self, url_prefix: str, response):
        """Answer requests whose URL starts with ``url_prefix``.

        ``response`` is an httpx.Response, a callable taking the request,
        or a list of either (consumed in order, last one repeats).
        """
        self._routes.append((url_prefix, response))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for prefix, response in self._routes:
            if str(request.url).startswith(prefix):
                if isinstance(response, list):
                    response = response.pop(0) if len(response) > 1 else response[0]
                if callable(response):
                    return response(request)
                return response
        return httpx.Response(200, json={"ok": True})

    def json_bodies(self, url_prefix: str = "") -> list[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if str(r.url).startswith(url_prefix) and r.content
        ]


@pytest.fixture
def http():
    """Request recorder backing the mock HTTP client."""
    return HttpRecorder()


@pytest.fixture
def client(http):
    """httpx.AsyncClient that never leaves the process."""
    return httpx.AsyncClient(transport=httpx.MockTransport(http))


@pytest.fixture
def settings(tmp_path):
    """Observe-mode settings with every integration pointed at test hosts."""
    from soc_automation.config.settings import Settings

    return Settings(
        mode="observe",
        db_path=str(tmp_path / "playbooks.db"),
        slack_webhook_url=SLACK_URL,
        teams_webhook_url=TEAMS_URL,
        fcm_server_key="fcm-test-key",
        firewall_api_url=FIREWALL_URL,
        firewall_api_key="fw-key",
        edr_api_url=EDR_URL,
        edr_api_key="edr-key",
        jira_base_url=JIRA_URL,
        jira_user="bot@example.com",
        jira_api_token="jira-token",
        notify_admin_emails=["soc@example.com"],
        action_timeout=5.0,
    )


@pytest.fixture
def enforce_settings(settings):
    """Same integrations, enforce mode."""
    from soc_automation.config.settings import RuntimeMode

    settings.mode = RuntimeMode.ENFORCE
    return settings


@pytest.fixture
def sent_emails():
    return []


@pytest.fixture
def registry(settings, client, sent_emails):
    """Default registry with mock HTTP and captured email."""
    from soc_automation.actions.registry import create_default_registry

    return create_default_registry(settings, client, email_sender=sent_emails.append)


@pytest.fixture
def repository():
    from soc_automation.store.repository import InMemoryPlaybookRepository

    return InMemoryPlaybookRepository()


@pytest.fixture
def broadcaster():
    from soc_automation.realtime.broadcast import InMemoryBroadcaster

    return InMemoryBroadcaster()


@pytest.fixture
def context():
    from soc_automation.actions.base import ActionContext

    return ActionContext(
        playbook_id="pb_test",
        execution_id="exec_test",
        organization_id=1,
        data={"alert_id": "alert-1", "severity": "high", "title": "Test alert"},
    )


@pytest.fixture
def alert():
    return {
        "id": "alert-42",
        "title": "Suspicious outbound traffic",
        "severity": "high",
        "source": "ids",
        "description": "Beaconing to known C2 infrastructure",
        "source_ip": "203.0.113.50",
        "hostname": "workstation-42",
        "organization_id": 1,
    }
