"""
Notification Manager

Fans alert notifications out to every enabled channel through the action
registry, subject to a severity threshold and a global hourly rate limit.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

import structlog

from soc_automation.actions.base import ActionContext
from soc_automation.actions.registry import ActionRegistry
from soc_automation.config.notifications import NotificationConfig
from soc_automation.notifications.ratelimit import SlidingWindowRateLimiter
from soc_automation.realtime.broadcast import Broadcaster, NullBroadcaster, org_channel
from soc_automation.store.models import ActionResult, Event, generate_id, now_iso, severity_rank

logger = structlog.get_logger(__name__)


# Slack attachment colours (Teams maps the same names to hex)
SEVERITY_COLORS = {
    "low": "good",
    "medium": "warning",
    "high": "danger",
    "critical": "danger",
}

SEVERITY_PRIORITIES = {
    "low": "low",
    "medium": "normal",
    "high": "high",
    "critical": "high",
}

DEFAULT_PUSH_TOPIC = "security-alerts"


def severity_color(severity: str) -> str:
    return SEVERITY_COLORS.get(severity, "warning")


def severity_priority(severity: str) -> str:
    return SEVERITY_PRIORITIES.get(severity, "normal")


@dataclass
class _Dispatch:
    channel: str
    action_name: str
    params: dict[str, Any]


def _alert_from_event(event: Event) -> dict[str, Any]:
    alert = dict(event.data)
    alert.setdefault("id", event.entity_id)
    alert.setdefault("organization_id", event.organization_id)
    alert.setdefault("timestamp", event.timestamp)
    return alert


def email_body(alert: Mapping[str, Any], severity: str) -> str:
    """Plain-text email body for an alert."""
    return "\n".join([
        "Security Alert Notification",
        "",
        "Alert Details:",
        f"- ID: {alert.get('id', 'unknown')}",
        f"- Title: {alert.get('title', 'Security Alert')}",
        f"- Severity: {severity.upper()}",
        f"- Source: {alert.get('source', 'N/A')}",
        f"- Time: {alert.get('timestamp') or now_iso()}",
        "",
        "Technical Details:",
        f"- Source IP: {alert.get('source_ip') or 'N/A'}",
        f"- Hostname: {alert.get('hostname') or 'N/A'}",
        f"- Description: {alert.get('description') or 'No description available'}",
        "",
        "This is an automated notification from the SOC automation service.",
        "Please investigate this alert promptly.",
    ])


class NotificationManager:
    """
    Multi-channel alert notifications.

    The active NotificationConfig is immutable; ``update_config`` builds a
    new one and swaps it in under a lock, so a dispatch in progress always
    sees one consistent config.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        config: NotificationConfig,
        broadcaster: Optional[Broadcaster] = None,
        channel_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._config = config
        self._config_lock = threading.Lock()
        self._broadcaster = broadcaster or NullBroadcaster()
        self._channel_timeout = channel_timeout
        self._limiter = SlidingWindowRateLimiter(config.max_notifications_per_hour, clock=clock)

    # === Configuration ===

    def get_config(self) -> NotificationConfig:
        return self._config

    def update_config(
        self, updates: Union[NotificationConfig, Mapping[str, Any]]
    ) -> NotificationConfig:
        """
        Replace the active configuration.

        Args:
            updates: A complete NotificationConfig, or a partial mapping that
                is deep-merged over the current config.

        Raises:
            pydantic.ValidationError: If the merged config is invalid. The
                current config stays active.
        """
        with self._config_lock:
            if isinstance(updates, NotificationConfig):
                new_config = updates
            else:
                new_config = self._config.merged(dict(updates))
            self._config = new_config
            self._limiter.limit = new_config.max_notifications_per_hour
        logger.info(
            "Notification config updated",
            channels=self.enabled_channels(new_config),
            min_severity=new_config.min_severity,
        )
        return new_config

    @staticmethod
    def enabled_channels(config: NotificationConfig) -> list[str]:
        channels = []
        if config.email.enabled and config.email.recipients:
            channels.append("email")
        if config.slack.enabled:
            channels.append("slack")
        if config.teams.enabled:
            channels.append("teams")
        if config.webhooks.enabled:
            channels.extend(
                f"webhook:{endpoint.name}" for endpoint in config.webhooks.endpoints if endpoint.enabled
            )
        if config.push.enabled:
            channels.append("push")
        return channels

    # === Payloads ===

    def _dispatches(
        self, config: NotificationConfig, alert: Mapping[str, Any], severity: str
    ) -> list[_Dispatch]:
        title = alert.get("title") or "Security Alert"
        source = alert.get("source") or "N/A"
        dispatches = []

        if config.email.enabled and config.email.recipients:
            dispatches.append(_Dispatch("email", "notify_email", {
                "to": list(config.email.recipients),
                "subject": f"Security Alert: {severity.upper()} - {title}",
                "body": email_body(alert, severity),
                "priority": severity_priority(severity),
            }))

        if config.slack.enabled:
            dispatches.append(_Dispatch("slack", "notify_slack", {
                "channel": config.slack.channel,
                "message": f"*Security Alert*: {title}",
                "webhook_url": config.slack.webhook_url,
                "attachments": [{
                    "color": severity_color(severity),
                    "title": f"{severity.upper()} Priority Incident",
                    "fields": [
                        {"title": "Source", "value": str(source), "short": True},
                        {"title": "Severity", "value": severity.upper(), "short": True},
                        {"title": "Source IP", "value": alert.get("source_ip") or "N/A", "short": True},
                        {"title": "Hostname", "value": alert.get("hostname") or "N/A", "short": True},
                        {
                            "title": "Description",
                            "value": alert.get("description") or "No description available",
                            "short": False,
                        },
                    ],
                }],
            }))

        if config.teams.enabled:
            dispatches.append(_Dispatch("teams", "notify_teams", {
                "webhook_url": config.teams.webhook_url,
                "title": f"Security Alert: {severity.upper()}",
                "message": title,
                "color": severity_color(severity),
                "sections": [{
                    "title": "Alert Details",
                    "facts": [
                        {"name": "Severity", "value": severity.upper()},
                        {"name": "Source", "value": str(source)},
                        {"name": "Source IP", "value": alert.get("source_ip") or "N/A"},
                        {"name": "Hostname", "value": alert.get("hostname") or "N/A"},
                        {"name": "Time", "value": str(alert.get("timestamp") or now_iso())},
                    ],
                    "text": alert.get("description") or "No additional details available",
                }],
            }))

        if config.webhooks.enabled:
            for endpoint in config.webhooks.endpoints:
                if not endpoint.enabled:
                    continue
                dispatches.append(_Dispatch(f"webhook:{endpoint.name}", "notify_webhook", {
                    "url": endpoint.url,
                    "method": endpoint.method,
                    "headers": dict(endpoint.headers),
                    "include_alert_data": True,
                }))

        if config.push.enabled:
            topics = config.push.topics or (DEFAULT_PUSH_TOPIC,)
            dispatches.append(_Dispatch("push", "notify_push", {
                "topic": topics[0],
                "title": f"Security Alert: {severity.upper()}",
                "body": title,
                "priority": "high" if severity in ("high", "critical") else "normal",
                "data": {
                    "alert_id": str(alert.get("id", "")),
                    "severity": severity,
                    "source": str(source),
                },
            }))

        return dispatches

    def _context(
        self, alert: Mapping[str, Any], severity: str, options: Mapping[str, Any]
    ) -> ActionContext:
        execution_id = generate_id("notification")
        organization_id = options.get("organization_id", alert.get("organization_id"))
        data = dict(alert.get("metadata") or {})
        data.update(
            alert_id=alert.get("id"),
            title=alert.get("title"),
            severity=severity,
            source=alert.get("source"),
            description=alert.get("description") or "",
            source_ip=alert.get("source_ip"),
            hostname=alert.get("hostname"),
            timestamp=alert.get("timestamp") or now_iso(),
        )
        return ActionContext(
            playbook_id=options.get("playbook_id", "critical-event-notification"),
            execution_id=execution_id,
            organization_id=organization_id,
            user_id=options.get("user_id", "system"),
            data=data,
            logger=logger.bind(execution_id=execution_id, alert_id=alert.get("id")),
        )

    # === Dispatch ===

    async def _dispatch(self, dispatch: _Dispatch, context: ActionContext) -> ActionResult:
        return await asyncio.wait_for(
            self._registry.execute(dispatch.action_name, dispatch.params, context),
            timeout=self._channel_timeout,
        )

    async def notify(
        self,
        alert: Union[Mapping[str, Any], Event],
        severity: Optional[str] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Send notifications for an alert to every enabled channel.

        Args:
            alert: Alert fields (id, title, severity, source, description,
                source_ip, hostname, timestamp, metadata) or an alert event.
            severity: Overrides ``alert["severity"]``.
            options: Context overrides (organization_id, playbook_id, user_id).

        Returns:
            ``{success, skipped, reason}`` when nothing was sent, otherwise
            ``{success, summary, channels, alert_id}`` where summary is
            ``{successful, failed, total, details}``.
        """
        if isinstance(alert, Event):
            alert = _alert_from_event(alert)
        options = options or {}
        config = self._config
        severity = str(severity or alert.get("severity") or "low").lower()
        alert_id = alert.get("id")

        if severity_rank(severity) < severity_rank(config.min_severity):
            logger.info(
                "Notification skipped below severity threshold",
                alert_id=alert_id,
                severity=severity,
                min_severity=config.min_severity,
            )
            return {"success": True, "skipped": True, "reason": "Below severity threshold"}

        dispatches = self._dispatches(config, alert, severity)
        if not dispatches:
            logger.info("Notification skipped, no channels enabled", alert_id=alert_id)
            return {"success": True, "skipped": True, "reason": "No notification channels enabled"}

        if not self._limiter.try_acquire():
            logger.warning(
                "Notification rate limit exceeded",
                alert_id=alert_id,
                limit=config.max_notifications_per_hour,
            )
            return {
                "success": False,
                "skipped": True,
                "rate_limited": True,
                "reason": "Rate limit exceeded",
            }

        logger.info(
            "Dispatching alert notifications",
            alert_id=alert_id,
            severity=severity,
            channels=[d.channel for d in dispatches],
        )
        context = self._context(alert, severity, options)
        results = await asyncio.gather(
            *(self._dispatch(d, context) for d in dispatches),
            return_exceptions=True,
        )

        summary = self._summarize(dispatches, results)
        logger.info(
            "Notification audit",
            alert_id=alert_id,
            successful=summary["successful"],
            failed=summary["failed"],
            total=summary["total"],
        )
        self._broadcast(context.organization_id, alert_id, summary)

        return {
            "success": summary["successful"] > 0,
            "summary": summary,
            "channels": [d.channel for d in dispatches],
            "alert_id": alert_id,
        }

    @staticmethod
    def _summarize(dispatches: list[_Dispatch], results: list[Any]) -> dict[str, Any]:
        successful = 0
        failed = 0
        details = []
        for dispatch, result in zip(dispatches, results):
            if isinstance(result, ActionResult) and result.success:
                successful += 1
                details.append({"channel": dispatch.channel, "status": "success", "message": result.message})
                continue

            failed += 1
            if isinstance(result, ActionResult):
                error = result.error
            elif isinstance(result, asyncio.TimeoutError):
                error = "Notification channel timed out"
            else:
                error = str(result) or type(result).__name__
            details.append({"channel": dispatch.channel, "status": "failed", "error": error})

        return {"successful": successful, "failed": failed, "total": len(results), "details": details}

    def _broadcast(self, organization_id: Any, alert_id: Any, summary: dict[str, Any]) -> None:
        try:
            self._broadcaster.broadcast(
                org_channel(organization_id),
                {"event": "notification:sent", "alert_id": alert_id, "summary": summary},
            )
        except Exception:
            logger.exception("Notification broadcast failed", alert_id=alert_id)

    def handle_event(self, event: Event):
        """Bus handler: notify for an alert event."""
        return self.notify(event)
