"""
Notification Configuration

Frozen channel configuration used by the notification manager. Instances
are never mutated; updates build a new instance and swap it in.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from soc_automation.config.settings import Settings


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class EmailChannelConfig(_Frozen):
    enabled: bool = False
    recipients: tuple[str, ...] = ()


class SlackChannelConfig(_Frozen):
    enabled: bool = False
    webhook_url: Optional[str] = None
    channel: str = "#security-alerts"


class TeamsChannelConfig(_Frozen):
    enabled: bool = False
    webhook_url: Optional[str] = None


class PushChannelConfig(_Frozen):
    enabled: bool = False
    topics: tuple[str, ...] = ()


class WebhookEndpoint(_Frozen):
    """A generic HTTP endpoint that receives alert notifications."""
    name: str
    url: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        upper = v.upper()
        if upper not in {"POST", "PUT"}:
            raise ValueError(f"Unsupported webhook method: {v}")
        return upper


class WebhookChannelConfig(_Frozen):
    enabled: bool = False
    endpoints: tuple[WebhookEndpoint, ...] = ()


class NotificationConfig(_Frozen):
    """Per-channel notification settings plus global thresholds."""
    min_severity: str = "medium"
    max_notifications_per_hour: int = Field(default=50, ge=0)
    email: EmailChannelConfig = EmailChannelConfig()
    slack: SlackChannelConfig = SlackChannelConfig()
    teams: TeamsChannelConfig = TeamsChannelConfig()
    push: PushChannelConfig = PushChannelConfig()
    webhooks: WebhookChannelConfig = WebhookChannelConfig()

    @field_validator("min_severity")
    @classmethod
    def validate_min_severity(cls, v: str) -> str:
        lower = v.lower()
        if lower not in {"low", "medium", "high", "critical"}:
            raise ValueError(f"Invalid severity: {v}")
        return lower

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationConfig":
        """Build the startup notification config from settings."""
        return cls(
            min_severity=settings.notify_min_severity,
            max_notifications_per_hour=settings.max_notifications_per_hour,
            email=EmailChannelConfig(
                enabled=settings.notify_email_enabled,
                recipients=tuple(settings.notify_admin_emails),
            ),
            slack=SlackChannelConfig(
                enabled=settings.notify_slack_enabled and bool(settings.slack_webhook_url),
                webhook_url=settings.slack_webhook_url,
                channel=settings.slack_channel,
            ),
            teams=TeamsChannelConfig(
                enabled=settings.notify_teams_enabled and bool(settings.teams_webhook_url),
                webhook_url=settings.teams_webhook_url,
            ),
            push=PushChannelConfig(
                enabled=settings.notify_push_enabled,
                topics=tuple(settings.notify_push_topics),
            ),
            webhooks=WebhookChannelConfig(
                enabled=settings.notify_webhooks_enabled,
                endpoints=tuple(
                    WebhookEndpoint.model_validate(e) for e in settings.notify_webhook_endpoints
                ),
            ),
        )

    def merged(self, updates: dict[str, Any]) -> "NotificationConfig":
        """Return a new config with ``updates`` deep-merged over this one."""
        return NotificationConfig.model_validate(_deep_merge(self.model_dump(), updates))


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
