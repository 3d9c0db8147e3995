"""
Ticketing Actions

Creates Jira issues through the REST API v2.
"""

from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel, Field

from soc_automation.actions.base import ActionCategory, ActionContext
from soc_automation.actions.http import HttpAction
from soc_automation.config.settings import Settings
from soc_automation.exceptions import ExternalCallFailedError
from soc_automation.store.models import ActionResult, now_iso


class JiraTicketParams(BaseModel):
    project_key: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    description: str = Field(min_length=1)
    issue_type: Literal["Bug", "Task", "Story", "Epic", "Incident", "Security Incident"] = "Security Incident"
    priority: Literal["Lowest", "Low", "Medium", "High", "Highest"] = "Medium"
    assignee: Optional[str] = None
    reporter: Optional[str] = None
    labels: Optional[list[str]] = None
    components: Optional[list[str]] = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    parent_issue: Optional[str] = None
    watchers: Optional[list[str]] = None
    due_date: Optional[str] = None


class CreateJiraTicketAction(HttpAction):
    """Open a Jira issue describing an alert or incident."""

    name = "create_jira_ticket"
    description = "Create Jira ticket"
    category = ActionCategory.NOTIFICATION
    parameter_schema = JiraTicketParams
    service_name = "jira"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client=client, timeout=settings.action_timeout)
        self._settings = settings

    def format_description(self, description: str, context: ActionContext) -> str:
        """Append automation provenance to the issue description."""
        return (
            f"{description}\n\n---\n"
            "*Created by SOC Automation*\n"
            f"*Playbook ID:* {context.playbook_id}\n"
            f"*Execution ID:* {context.execution_id}\n"
            f"*Organization:* {context.organization_id}\n"
            f"*Created:* {now_iso()}\n"
        )

    def build_payload(self, params: JiraTicketParams, context: ActionContext) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "project": {"key": params.project_key},
            "summary": params.summary,
            "description": self.format_description(params.description, context),
            "issuetype": {"name": params.issue_type},
            "priority": {"name": params.priority},
        }
        if params.assignee:
            fields["assignee"] = {"name": params.assignee}
        if params.reporter:
            fields["reporter"] = {"name": params.reporter}
        if params.labels:
            fields["labels"] = params.labels
        if params.components:
            fields["components"] = [{"name": c} for c in params.components]
        if params.due_date:
            fields["duedate"] = params.due_date
        if params.parent_issue:
            fields["parent"] = {"key": params.parent_issue}
        fields.update(params.custom_fields)
        return {"fields": fields}

    async def execute(self, params: JiraTicketParams, context: ActionContext) -> ActionResult:
        s = self._settings
        if not (s.jira_base_url and s.jira_user and s.jira_api_token):
            return self.failure("Jira integration not configured")

        base_url = s.jira_base_url.rstrip("/")
        auth = httpx.BasicAuth(s.jira_user, s.jira_api_token)
        self.log(context, "Creating Jira ticket", project=params.project_key)

        response = await self._send(
            "POST",
            f"{base_url}/rest/api/2/issue",
            json=self.build_payload(params, context),
            auth=auth,
        )
        body = response.json()
        key = body["key"]

        failed_watchers = await self.add_watchers(base_url, key, params.watchers or [], auth, context)

        ticket_url = f"{base_url}/browse/{key}"
        self.log(context, "Jira ticket created", ticket=key)
        data = {
            "ticket_key": key,
            "ticket_id": body.get("id"),
            "ticket_url": ticket_url,
            "project": params.project_key,
            "issue_type": params.issue_type,
            "priority": params.priority,
            "summary": params.summary,
        }
        if failed_watchers:
            data["failed_watchers"] = failed_watchers
        return self.success(f"Jira ticket {key} created successfully", data)

    async def add_watchers(
        self,
        base_url: str,
        key: str,
        watchers: list[str],
        auth: httpx.Auth,
        context: ActionContext,
    ) -> list[str]:
        """Add watchers to an existing issue; returns the ones Jira refused."""
        failed = []
        for watcher in watchers:
            try:
                await self._send(
                    "POST",
                    f"{base_url}/rest/api/2/issue/{key}/watchers",
                    json=watcher,
                    auth=auth,
                )
            except ExternalCallFailedError as e:
                self.log(
                    context,
                    "Failed to add Jira watcher",
                    level="warning",
                    ticket=key,
                    watcher=watcher,
                    error=str(e),
                )
                failed.append(watcher)
        return failed
