"""
Notification Actions

Email, Slack, Microsoft Teams, generic webhook and push (FCM) channels.
"""

import asyncio
import re
import smtplib
from email.message import EmailMessage
from typing import Any, Callable, Literal, Optional

import httpx
from pydantic import BaseModel, Field, field_validator, model_validator

from soc_automation import __version__
from soc_automation.actions.base import ActionCategory, ActionContext, BaseAction
from soc_automation.actions.http import HttpAction, mask_url
from soc_automation.config.settings import Settings
from soc_automation.exceptions import ExternalCallFailedError
from soc_automation.store.models import ActionResult, now_iso


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")

# Theme colours for Teams message cards
TEAMS_COLORS = {
    "good": "00FF00",
    "warning": "FFA500",
    "attention": "FF0000",
    "danger": "FF0000",
    "info": "0078D4",
}
TEAMS_DEFAULT_COLOR = "0078D4"

PUSH_SEVERITY_COLORS = {
    "low": "#4CAF50",
    "medium": "#FF9800",
    "high": "#F44336",
    "critical": "#9C27B0",
}

FCM_URL = "https://fcm.googleapis.com/fcm/send"

EMAIL_PRIORITY_HEADERS = {"high": "1", "normal": "3", "low": "5"}


def _compact(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in payload.items() if v is not None}


# === Email ===

class EmailParams(BaseModel):
    to: list[str] = Field(min_length=1)
    cc: list[str] = Field(default_factory=list)
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    priority: Literal["low", "normal", "high"] = "normal"
    html: bool = False

    @field_validator("to", "cc")
    @classmethod
    def validate_addresses(cls, v: list[str]) -> list[str]:
        for address in v:
            if not EMAIL_PATTERN.match(address):
                raise ValueError(f"Invalid email address: {address}")
        return v


class EmailNotificationAction(BaseAction):
    """Send an email through the configured SMTP relay."""

    name = "notify_email"
    description = "Send email notification"
    category = ActionCategory.NOTIFICATION
    parameter_schema = EmailParams

    def __init__(
        self,
        settings: Settings,
        sender: Optional[Callable[[EmailMessage], None]] = None,
    ):
        """
        Initialize the email action.

        Args:
            settings: SMTP connection settings.
            sender: Optional blocking callable that delivers a message,
                used instead of SMTP (tests, alternative relays).
        """
        self._settings = settings
        self._sender = sender or self._send_smtp

    def build_message(self, params: EmailParams) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._settings.smtp_from
        message["To"] = ", ".join(params.to)
        if params.cc:
            message["Cc"] = ", ".join(params.cc)
        message["Subject"] = params.subject
        message["X-Priority"] = EMAIL_PRIORITY_HEADERS[params.priority]
        if params.html:
            message.set_content(params.body, subtype="html")
        else:
            message.set_content(params.body)
        return message

    def _send_smtp(self, message: EmailMessage) -> None:
        s = self._settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.notification_timeout) as smtp:
            if s.smtp_use_tls:
                smtp.starttls()
            if s.smtp_user and s.smtp_password:
                smtp.login(s.smtp_user, s.smtp_password)
            smtp.send_message(message)

    async def execute(self, params: EmailParams, context: ActionContext) -> ActionResult:
        recipients = params.to + params.cc
        self.log(context, "Sending email notification", recipients=len(recipients))

        message = self.build_message(params)
        try:
            await asyncio.to_thread(self._sender, message)
        except (smtplib.SMTPException, OSError) as e:
            raise ExternalCallFailedError(
                message=f"Failed to send email: {e}",
                service="smtp",
                original_error=e,
            )

        return self.success(
            f"Email sent to {len(recipients)} recipient(s)",
            {
                "recipients": recipients,
                "subject": params.subject,
                "priority": params.priority,
            },
        )


# === Slack ===

class SlackAttachmentField(BaseModel):
    title: str
    value: str
    short: Optional[bool] = None


class SlackAttachment(BaseModel):
    color: Optional[str] = None
    title: Optional[str] = None
    text: Optional[str] = None
    fields: Optional[list[SlackAttachmentField]] = None


class SlackParams(BaseModel):
    channel: str = Field(min_length=1)
    message: str = Field(min_length=1)
    username: Optional[str] = None
    icon_emoji: Optional[str] = None
    icon_url: Optional[str] = None
    attachments: Optional[list[SlackAttachment]] = None
    blocks: Optional[list[Any]] = None
    thread_ts: Optional[str] = None
    webhook_url: Optional[str] = None


class SlackNotificationAction(HttpAction):
    """Post a message to a Slack incoming webhook."""

    name = "notify_slack"
    description = "Send Slack notification"
    category = ActionCategory.NOTIFICATION
    parameter_schema = SlackParams
    service_name = "slack"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client=client, timeout=settings.notification_timeout)
        self._settings = settings

    def build_payload(self, params: SlackParams) -> dict[str, Any]:
        attachments = None
        if params.attachments:
            attachments = [a.model_dump(exclude_none=True) for a in params.attachments]
        return _compact({
            "channel": params.channel,
            "text": params.message,
            "username": params.username or "SOC Automation",
            "icon_emoji": params.icon_emoji or ":shield:",
            "icon_url": params.icon_url,
            "attachments": attachments,
            "blocks": params.blocks,
            "thread_ts": params.thread_ts,
        })

    async def execute(self, params: SlackParams, context: ActionContext) -> ActionResult:
        webhook_url = params.webhook_url or self._settings.slack_webhook_url
        if not webhook_url:
            return self.failure("Slack webhook URL not configured")

        self.log(context, "Sending Slack message", channel=params.channel)
        response = await self._send("POST", webhook_url, json=self.build_payload(params))

        return self.success(
            f"Slack message sent successfully to {params.channel}",
            {
                "channel": params.channel,
                "message_text": params.message,
                "status_code": response.status_code,
            },
        )


# === Microsoft Teams ===

class TeamsFact(BaseModel):
    name: str
    value: str


class TeamsSection(BaseModel):
    title: Optional[str] = None
    facts: Optional[list[TeamsFact]] = None
    text: Optional[str] = None


class TeamsParams(BaseModel):
    webhook_url: Optional[str] = None
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    color: Optional[str] = None
    sections: Optional[list[TeamsSection]] = None
    potential_actions: Optional[list[dict[str, Any]]] = None


def teams_theme_color(color: Optional[str]) -> str:
    """Map a colour name or hex value to a MessageCard theme colour."""
    if not color:
        return TEAMS_DEFAULT_COLOR
    if color.startswith("#"):
        return color[1:]
    return TEAMS_COLORS.get(color.lower(), color)


class TeamsNotificationAction(HttpAction):
    """Post a MessageCard to a Microsoft Teams webhook."""

    name = "notify_teams"
    description = "Send Microsoft Teams notification"
    category = ActionCategory.NOTIFICATION
    parameter_schema = TeamsParams
    service_name = "teams"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client=client, timeout=settings.notification_timeout)
        self._settings = settings

    def build_payload(self, params: TeamsParams) -> dict[str, Any]:
        sections = None
        if params.sections:
            sections = [s.model_dump(exclude_none=True) for s in params.sections]
        return _compact({
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "summary": params.title,
            "themeColor": teams_theme_color(params.color),
            "title": params.title,
            "text": params.message,
            "sections": sections,
            "potentialAction": params.potential_actions,
        })

    async def execute(self, params: TeamsParams, context: ActionContext) -> ActionResult:
        webhook_url = params.webhook_url or self._settings.teams_webhook_url
        if not webhook_url:
            return self.failure("Teams webhook URL not provided")

        self.log(context, "Sending Teams notification", title=params.title)
        await self._send("POST", webhook_url, json=self.build_payload(params))

        return self.success(
            "Teams notification sent successfully",
            {
                "title": params.title,
                "message": params.message,
                "webhook_url": mask_url(webhook_url),
            },
        )


# === Generic webhook ===

class WebhookParams(BaseModel):
    url: str = Field(pattern=r"^https?://")
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    payload: Optional[dict[str, Any]] = None
    timeout: float = Field(default=10.0, ge=1.0, le=30.0)
    retries: int = Field(default=3, ge=0, le=5)
    retry_delay: float = Field(default=1.0, ge=0.0, le=10.0)
    include_alert_data: bool = True


class WebhookNotificationAction(HttpAction):
    """
    Send a JSON payload to an arbitrary HTTP endpoint.

    Failed attempts are retried with linear back-off (``retry_delay *
    attempt``). Client errors (4xx) are not retried.
    """

    name = "notify_webhook"
    description = "Send webhook notification to external endpoints"
    category = ActionCategory.NOTIFICATION
    parameter_schema = WebhookParams
    service_name = "webhook"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client=client, timeout=settings.notification_timeout)
        self._settings = settings
        self._sleep = asyncio.sleep

    def build_payload(self, params: WebhookParams, context: ActionContext) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if params.include_alert_data:
            data = context.data
            payload = {
                "alert": {
                    "id": data.get("alert_id", "unknown"),
                    "severity": data.get("severity", "unknown"),
                    "title": data.get("title", "Security Alert"),
                    "description": data.get("description", ""),
                    "source": data.get("source", "SOC System"),
                    "source_ip": data.get("source_ip"),
                    "hostname": data.get("hostname"),
                    "timestamp": now_iso(),
                    "organization_id": context.organization_id,
                },
                "system": {
                    "source": "soc-automation",
                    "version": __version__,
                    "timestamp": now_iso(),
                },
            }
        if params.payload:
            payload.update(params.payload)
        return payload

    async def execute(self, params: WebhookParams, context: ActionContext) -> ActionResult:
        masked = mask_url(params.url)
        self.log(context, "Sending webhook notification", url=masked)

        payload = self.build_payload(params, context)
        headers = {"User-Agent": f"soc-automation/{__version__}", **params.headers}

        last_error: Optional[ExternalCallFailedError] = None
        for attempt in range(params.retries + 1):
            if attempt > 0:
                self.log(context, "Webhook retry", attempt=attempt, max_retries=params.retries)
                await self._sleep(params.retry_delay * attempt)
            try:
                response = await self._send(
                    params.method,
                    params.url,
                    json=payload,
                    headers=headers,
                    timeout=params.timeout,
                )
            except ExternalCallFailedError as e:
                last_error = e
                self.log(context, "Webhook attempt failed", "warning", attempt=attempt + 1, error=str(e))
                if not e.retryable:
                    break
                continue

            return self.success(
                f"Webhook notification sent successfully to {masked}",
                {
                    "url": masked,
                    "method": params.method,
                    "status_code": response.status_code,
                    "attempts": attempt + 1,
                    "timestamp": now_iso(),
                },
            )

        raise ExternalCallFailedError(
            message=f"Failed to send webhook notification to {masked}: {last_error}",
            service=self.service_name,
            status_code=last_error.status_code,
            retryable=False,
            original_error=last_error,
        )


# === Push (Firebase Cloud Messaging) ===

class PushParams(BaseModel):
    server_key: Optional[str] = None
    tokens: Optional[list[str]] = None
    topic: Optional[str] = None
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    icon: Optional[str] = None
    badge: Optional[int] = None
    sound: Optional[str] = None
    priority: Literal["normal", "high"] = "high"
    data: dict[str, Any] = Field(default_factory=dict)
    click_action: Optional[str] = None
    tag: Optional[str] = None
    ttl: int = Field(default=86400, ge=0, le=2419200)

    @model_validator(mode="after")
    def require_target(self) -> "PushParams":
        if not self.tokens and not self.topic:
            raise ValueError("Either device tokens or topic must be provided")
        return self


class PushNotificationAction(HttpAction):
    """Send a push notification through Firebase Cloud Messaging."""

    name = "notify_push"
    description = "Send push notification via Firebase Cloud Messaging"
    category = ActionCategory.NOTIFICATION
    parameter_schema = PushParams
    service_name = "fcm"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client=client, timeout=settings.notification_timeout)
        self._settings = settings

    def build_payload(self, params: PushParams, context: ActionContext) -> dict[str, Any]:
        severity = str(context.data.get("severity", ""))
        tag = params.tag or "security-alert"
        sound = params.sound or "default"
        payload: dict[str, Any] = {
            "notification": _compact({
                "title": params.title,
                "body": params.body,
                "icon": params.icon or "security-alert-icon",
                "sound": sound,
                "badge": params.badge,
                "tag": tag,
                "click_action": params.click_action or "FCM_PLUGIN_ACTIVITY",
            }),
            "data": {
                "alert_id": context.data.get("alert_id", ""),
                "severity": severity,
                "source": context.data.get("source", ""),
                "timestamp": now_iso(),
                **params.data,
            },
            "android": {
                "priority": params.priority,
                "ttl": f"{params.ttl}s",
                "notification": {
                    "icon": params.icon or "security_alert",
                    "color": PUSH_SEVERITY_COLORS.get(severity, "#2196F3"),
                    "sound": sound,
                    "tag": tag,
                },
            },
            "apns": {
                "payload": {
                    "aps": _compact({
                        "alert": {"title": params.title, "body": params.body},
                        "badge": params.badge,
                        "sound": sound,
                    }),
                },
            },
            "webpush": {
                "headers": {"TTL": str(params.ttl)},
                "notification": {
                    "title": params.title,
                    "body": params.body,
                    "icon": params.icon or "/icons/security-alert.png",
                    "tag": tag,
                    "requireInteraction": params.priority == "high",
                },
            },
        }
        if params.tokens:
            payload["registration_ids"] = params.tokens
        else:
            payload["to"] = f"/topics/{params.topic}"
        return payload

    async def execute(self, params: PushParams, context: ActionContext) -> ActionResult:
        server_key = params.server_key or self._settings.fcm_server_key
        if not server_key:
            return self.failure("FCM server key not provided")

        self.log(context, "Sending push notification", title=params.title)
        response = await self._send(
            "POST",
            FCM_URL,
            json=self.build_payload(params, context),
            headers={"Authorization": f"key={server_key}"},
        )

        try:
            body = response.json()
        except ValueError:
            body = {}

        return self.success(
            "Push notification sent successfully",
            {
                "title": params.title,
                "body": params.body,
                "recipients": len(params.tokens) if params.tokens else f"topic: {params.topic}",
                "message_id": body.get("message_id") or body.get("name"),
                "timestamp": now_iso(),
            },
        )
