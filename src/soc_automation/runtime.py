"""
Runtime wiring

Builds the automation core: action registry, event bus, executor, trigger
engine and notification manager, connected explicitly.
"""

from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, Optional

import httpx
import structlog

from soc_automation.actions.registry import ActionRegistry, create_default_registry
from soc_automation.config.notifications import NotificationConfig
from soc_automation.config.settings import Settings
from soc_automation.events.bus import EventBus
from soc_automation.events.types import ALERT_CREATED
from soc_automation.notifications.manager import NotificationManager
from soc_automation.orchestrator.executor import EnrichmentHook, PlaybookExecutor
from soc_automation.orchestrator.triggers import TriggerEngine
from soc_automation.realtime.broadcast import Broadcaster, StreamBroadcaster
from soc_automation.store.database import SQLitePlaybookRepository
from soc_automation.store.repository import PlaybookRepository

logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    """The wired automation core."""
    settings: Settings
    repository: PlaybookRepository
    registry: ActionRegistry
    bus: EventBus
    executor: PlaybookExecutor
    triggers: TriggerEngine
    notifications: NotificationManager
    broadcaster: Broadcaster

    async def wait_idle(self) -> None:
        """Wait for bus handlers and playbook executions to finish."""
        await self.bus.drain()
        await self.executor.wait_idle()

    async def close(self) -> None:
        await self.triggers.stop()
        await self.wait_idle()
        await self.registry.close()


def build_runtime(
    settings: Optional[Settings] = None,
    repository: Optional[PlaybookRepository] = None,
    broadcaster: Optional[Broadcaster] = None,
    client: Optional[httpx.AsyncClient] = None,
    enrichment: Optional[EnrichmentHook] = None,
    notify_on_alerts: bool = False,
    email_sender: Optional[Callable[[EmailMessage], None]] = None,
) -> Runtime:
    """
    Construct and connect all automation components.

    Args:
        settings: Application settings (defaults to a fresh Settings()).
        repository: Playbook storage (defaults to SQLite at settings.db_path).
        broadcaster: Live update sink (defaults to a StreamBroadcaster).
        client: HTTP client shared by HTTP-backed actions.
        enrichment: Optional hook merged into execution variables.
        notify_on_alerts: Subscribe the notification manager to alert events.
        email_sender: Replacement for SMTP delivery.

    Returns:
        Runtime with a frozen registry and the trigger engine attached.
    """
    settings = settings or Settings()
    repository = repository or SQLitePlaybookRepository(settings.db_path)
    broadcaster = broadcaster or StreamBroadcaster()

    registry = create_default_registry(settings, client, email_sender=email_sender)
    registry.freeze()

    bus = EventBus()
    executor = PlaybookExecutor(
        registry,
        repository,
        broadcaster=broadcaster,
        enrichment=enrichment,
        dedupe_inflight=settings.dedupe_inflight_executions,
    )
    triggers = TriggerEngine(
        repository,
        executor,
        refresh_interval=settings.playbook_refresh_interval,
    )
    triggers.attach(bus)

    notifications = NotificationManager(
        registry,
        NotificationConfig.from_settings(settings),
        broadcaster=broadcaster,
        channel_timeout=settings.notification_timeout,
    )
    if notify_on_alerts:
        bus.subscribe(ALERT_CREATED, notifications.handle_event)

    logger.info(
        "Automation runtime ready",
        mode=settings.get_effective_mode().value,
        actions=registry.action_names(),
    )
    for problem in settings.validate_integration_config():
        logger.warning("Integration misconfigured", problem=problem)

    return Runtime(
        settings=settings,
        repository=repository,
        registry=registry,
        bus=bus,
        executor=executor,
        triggers=triggers,
        notifications=notifications,
        broadcaster=broadcaster,
    )
