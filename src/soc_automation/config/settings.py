"""
SOC Automation Configuration Settings

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeMode(str, Enum):
    """Runtime enforcement mode."""
    OBSERVE = "observe"
    ENFORCE = "enforce"


DEFAULT_CRITICAL_HOST_PATTERNS = [
    r"^dc\d+",       # Domain controllers
    r"^mail",
    r"^dns",
    r"^dhcp",
    r"^proxy",
    r"^firewall",
    r"^backup",
]


class Settings(BaseSettings):
    """
    SOC Automation Configuration.

    All settings can be configured via environment variables with the SOC_ prefix.
    Example: SOC_MODE=enforce, SOC_ACTION_TIMEOUT=15
    """

    model_config = SettingsConfigDict(
        env_prefix="SOC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Core settings
    mode: RuntimeMode = Field(
        default=RuntimeMode.OBSERVE,
        description="Runtime mode: observe (dry-run remediation) or enforce (call external systems)"
    )
    kill_switch: bool = Field(
        default=False,
        description="Emergency kill switch - forces observe mode for all remediation"
    )

    # Server settings
    host: str = Field(default="0.0.0.0", description="Gateway host")
    port: int = Field(default=8090, description="Gateway port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=True, description="Render logs as JSON lines")

    # Database settings
    db_path: str = Field(
        default=os.environ.get("SOC_DB_PATH", str(Path.home() / ".soc-automation" / "playbooks.db")),
        description="SQLite database path"
    )

    # Orchestration
    action_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-action execution timeout in seconds"
    )
    playbook_refresh_interval: float = Field(
        default=60.0,
        ge=0,
        description="Seconds between active playbook refreshes (0 = every event)"
    )
    dedupe_inflight_executions: bool = Field(
        default=False,
        description="Skip triggers for a playbook while a run of it is in flight"
    )

    # Notification fan-out
    notification_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Per-channel notification timeout in seconds"
    )
    notify_min_severity: str = Field(
        default="medium",
        description="Minimum alert severity that triggers notifications"
    )
    max_notifications_per_hour: int = Field(
        default=50,
        ge=0,
        description="Global notification rate limit"
    )
    notify_email_enabled: bool = Field(default=True)
    notify_admin_emails: list[str] = Field(default_factory=lambda: ["admin@example.com"])
    notify_slack_enabled: bool = Field(default=True)
    notify_teams_enabled: bool = Field(default=False)
    notify_push_enabled: bool = Field(default=False)
    notify_push_topics: list[str] = Field(default_factory=lambda: ["security-alerts"])
    notify_webhooks_enabled: bool = Field(default=False)
    notify_webhook_endpoints: list[dict] = Field(
        default_factory=list,
        description="Webhook endpoints: [{name, url, method, headers, enabled}]"
    )

    # SMTP
    smtp_host: str = Field(default="localhost")
    smtp_port: int = Field(default=587)
    smtp_use_tls: bool = Field(default=True)
    smtp_user: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_from: str = Field(default="soc-automation@localhost")

    # Chat / push integrations
    slack_webhook_url: Optional[str] = Field(default=None, alias="SLACK_WEBHOOK_URL")
    slack_channel: str = Field(default="#security-alerts")
    teams_webhook_url: Optional[str] = Field(default=None, alias="TEAMS_WEBHOOK_URL")
    fcm_server_key: Optional[str] = Field(default=None, alias="FCM_SERVER_KEY")

    # Remediation integrations
    firewall_api_url: Optional[str] = Field(default=None, description="Firewall management API base URL")
    firewall_api_key: Optional[str] = Field(default=None)
    edr_api_url: Optional[str] = Field(default=None, description="EDR management API base URL")
    edr_api_key: Optional[str] = Field(default=None)
    critical_host_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CRITICAL_HOST_PATTERNS),
        description="Hostname regexes that must never be isolated"
    )
    ip_allowlist: list[str] = Field(
        default_factory=list,
        description="Additional CIDRs that must never be blocked"
    )

    # Ticketing
    jira_base_url: Optional[str] = Field(default=None, alias="JIRA_BASE_URL")
    jira_user: Optional[str] = Field(default=None, alias="JIRA_USER")
    jira_api_token: Optional[str] = Field(default=None, alias="JIRA_API_TOKEN")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("notify_min_severity")
    @classmethod
    def validate_min_severity(cls, v: str) -> str:
        """Validate notification severity threshold."""
        valid = {"low", "medium", "high", "critical"}
        lower = v.lower()
        if lower not in valid:
            raise ValueError(f"Invalid severity: {v}. Must be one of {valid}")
        return lower

    def get_effective_mode(self) -> RuntimeMode:
        """Get effective runtime mode (considering kill switch)."""
        if self.kill_switch:
            return RuntimeMode.OBSERVE
        return self.mode

    def validate_integration_config(self) -> list[str]:
        """Report enforce-mode integrations that are missing credentials."""
        errors = []

        if self.get_effective_mode() != RuntimeMode.ENFORCE:
            return errors

        if not self.firewall_api_url:
            errors.append("SOC_FIREWALL_API_URL is required for block_ip in enforce mode")
        if not self.edr_api_url:
            errors.append("SOC_EDR_API_URL is required for isolate_host in enforce mode")
        if self.jira_base_url and not (self.jira_user and self.jira_api_token):
            errors.append("JIRA_USER and JIRA_API_TOKEN are required when JIRA_BASE_URL is set")

        return errors

