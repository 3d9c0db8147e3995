"""Configuration module."""

from soc_automation.config.notifications import NotificationConfig, WebhookEndpoint
from soc_automation.config.settings import RuntimeMode, Settings

__all__ = ["Settings", "RuntimeMode", "NotificationConfig", "WebhookEndpoint"]
