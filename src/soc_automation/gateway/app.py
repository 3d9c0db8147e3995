"""
SOC Automation Gateway

FastAPI service exposing the automation core: action schemas, event
ingestion, manual playbook runs, execution records, notification config
and a live SSE stream of execution updates.
"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError
from sse_starlette.sse import EventSourceResponse

from soc_automation import __version__
from soc_automation.config.settings import RuntimeMode, Settings
from soc_automation.exceptions import ActionNotFoundError, PlaybookValidationError
from soc_automation.logging_config import configure_logging
from soc_automation.runtime import Runtime, build_runtime
from soc_automation.realtime.broadcast import StreamBroadcaster
from soc_automation.store.models import Event, Playbook, TriggerSource

logger = structlog.get_logger(__name__)


# === Pydantic Models for API ===

class EventRequest(BaseModel):
    """A domain event submitted by the data layer."""
    type: str = Field(min_length=1)
    entity_id: str
    entity_type: str = "alert"
    organization_id: Optional[Any] = None
    data: dict[str, Any] = Field(default_factory=dict)

    def to_event(self) -> Event:
        return Event(
            type=self.type,
            entity_id=self.entity_id,
            entity_type=self.entity_type,
            organization_id=self.organization_id,
            data=self.data,
        )


class RunPlaybookRequest(BaseModel):
    """Manual playbook run."""
    triggered_by: Optional[str] = None
    event: Optional[EventRequest] = None
    variables: dict[str, Any] = Field(default_factory=dict)


class NotifyRequest(BaseModel):
    """Alert to fan out through the notification channels."""
    alert: dict[str, Any]
    severity: Optional[str] = None
    organization_id: Optional[Any] = None


class ModeChangeRequest(BaseModel):
    """Request to change runtime mode."""
    mode: RuntimeMode


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    mode: str
    kill_switch: bool
    actions: int
    version: str


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


# === Application ===

def create_app(
    runtime: Optional[Runtime] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create the gateway application.

    Args:
        runtime: Pre-built runtime (tests). Built from settings at startup
            when omitted.
        settings: Settings used when the runtime is built here.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rt: Runtime = app.state.runtime or build_runtime(settings)
        app.state.runtime = rt
        app.state.started_at = time.time()
        configure_logging(rt.settings.log_level, json=rt.settings.log_json)
        rt.triggers.start_refresh_task()

        logger.info(
            "SOC Automation gateway starting",
            mode=rt.settings.get_effective_mode().value,
            host=rt.settings.host,
            port=rt.settings.port,
        )

        yield

        logger.info("SOC Automation gateway shutting down")
        await rt.close()

    app = FastAPI(
        title="SOC Automation Gateway",
        description="Playbook orchestration and notification fan-out for security operations",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    # === Health & Control ===

    @app.get("/health", response_model=HealthResponse, tags=["Control"])
    async def health_check(request: Request):
        """Check gateway health."""
        rt = get_runtime(request)
        return HealthResponse(
            status="healthy",
            mode=rt.settings.get_effective_mode().value,
            kill_switch=rt.settings.kill_switch,
            actions=len(rt.registry.action_names()),
            version=__version__,
        )

    @app.get("/status", tags=["Control"])
    async def get_status(request: Request):
        """Get runtime status."""
        rt = get_runtime(request)
        return {
            "status": "operational",
            "mode": rt.settings.get_effective_mode().value,
            "kill_switch": rt.settings.kill_switch,
            "executions_in_flight": rt.executor.in_flight,
            "bus_subscribers": rt.bus.subscriber_count,
            "integration_problems": rt.settings.validate_integration_config(),
            "uptime_seconds": time.time() - request.app.state.started_at,
        }

    @app.post("/mode", tags=["Control"])
    async def set_mode(body: ModeChangeRequest, request: Request):
        """Change runtime mode (observe/enforce)."""
        rt = get_runtime(request)
        rt.settings.mode = body.mode
        logger.info("Mode changed", new_mode=body.mode.value)
        return {"status": "ok", "mode": body.mode.value}

    @app.post("/kill", tags=["Control"])
    async def activate_kill_switch(request: Request):
        """Activate the emergency kill switch (remediation becomes dry-run)."""
        get_runtime(request).settings.kill_switch = True
        logger.warning("Kill switch activated")
        return {"status": "kill_switch_active", "mode": RuntimeMode.OBSERVE.value}

    @app.delete("/kill", tags=["Control"])
    async def deactivate_kill_switch(request: Request):
        """Deactivate the emergency kill switch."""
        rt = get_runtime(request)
        rt.settings.kill_switch = False
        logger.info("Kill switch deactivated")
        return {"status": "normal", "mode": rt.settings.mode.value}

    # === Actions ===

    @app.get("/actions", tags=["Actions"])
    async def list_actions(request: Request):
        """Schemas of every registered action."""
        return {"actions": get_runtime(request).registry.get_all_action_schemas()}

    @app.get("/actions/{name}", tags=["Actions"])
    async def get_action(name: str, request: Request):
        try:
            return get_runtime(request).registry.get_action_schema(name)
        except ActionNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    # === Events ===

    @app.post("/events", status_code=202, tags=["Events"])
    async def publish_event(body: EventRequest, request: Request):
        """Publish an event to the bus; matching playbooks run in the background."""
        event = body.to_event()
        delivered = get_runtime(request).bus.publish(event)
        return {"event_id": event.id, "type": event.type, "delivered": delivered}

    # === Playbooks ===

    @app.get("/playbooks", tags=["Playbooks"])
    async def list_playbooks(request: Request, trigger_type: Optional[str] = None):
        playbooks = get_runtime(request).repository.list_active_playbooks(trigger_type=trigger_type)
        return {"playbooks": [p.to_dict() for p in playbooks]}

    @app.put("/playbooks/{playbook_id}", tags=["Playbooks"])
    async def save_playbook(playbook_id: str, body: dict[str, Any], request: Request):
        """Create or replace a playbook."""
        rt = get_runtime(request)
        try:
            playbook = Playbook.from_dict({**body, "id": playbook_id})
            rt.repository.save_playbook(playbook)
        except (PlaybookValidationError, KeyError, TypeError, ValueError) as e:
            raise HTTPException(status_code=422, detail=str(e))
        rt.triggers.invalidate()
        logger.info("Playbook saved", playbook_id=playbook_id, active=playbook.is_active)
        return playbook.to_dict()

    @app.post("/playbooks/{playbook_id}/run", tags=["Playbooks"])
    async def run_playbook(playbook_id: str, body: RunPlaybookRequest, request: Request):
        """Run a playbook manually and return the finished execution."""
        rt = get_runtime(request)
        playbook = rt.repository.get_playbook(playbook_id)
        if playbook is None:
            raise HTTPException(status_code=404, detail=f"Playbook '{playbook_id}' not found")

        execution = await rt.executor.execute(
            playbook,
            event=body.event.to_event() if body.event else None,
            trigger_source=TriggerSource.MANUAL,
            triggered_by=body.triggered_by,
            variables=body.variables,
        )
        return execution.to_dict()

    # === Executions ===

    @app.get("/executions", tags=["Executions"])
    async def list_executions(request: Request, playbook_id: Optional[str] = None, limit: int = 50):
        executions = get_runtime(request).repository.list_executions(playbook_id=playbook_id, limit=limit)
        return {"executions": [e.to_dict() for e in executions]}

    @app.get("/executions/{execution_id}", tags=["Executions"])
    async def get_execution(execution_id: str, request: Request):
        execution = get_runtime(request).repository.get_execution(execution_id)
        if execution is None:
            raise HTTPException(status_code=404, detail=f"Execution '{execution_id}' not found")
        return execution.to_dict()

    # === Notifications ===

    @app.get("/notifications/config", tags=["Notifications"])
    async def get_notification_config(request: Request):
        return get_runtime(request).notifications.get_config().model_dump()

    @app.put("/notifications/config", tags=["Notifications"])
    async def update_notification_config(body: dict[str, Any], request: Request):
        """Deep-merge updates into the notification config."""
        try:
            config = get_runtime(request).notifications.update_config(body)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=json.loads(e.json(include_url=False)))
        return config.model_dump()

    @app.post("/notifications", tags=["Notifications"])
    async def send_notification(body: NotifyRequest, request: Request):
        options = {"organization_id": body.organization_id} if body.organization_id is not None else {}
        return await get_runtime(request).notifications.notify(body.alert, body.severity, options)

    # === Live Stream ===

    @app.get("/stream", tags=["Realtime"])
    async def stream(request: Request, channel: Optional[list[str]] = Query(default=None)):
        """
        Server-sent events of execution and notification updates.

        Pass ``channel`` (repeatable) to receive only e.g. ``org:1`` or
        ``execution:<id>``.
        """
        broadcaster = get_runtime(request).broadcaster
        if not isinstance(broadcaster, StreamBroadcaster):
            raise HTTPException(status_code=503, detail="Live stream not available")

        queue = broadcaster.subscribe(set(channel) if channel else None)

        async def event_generator():
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        message = await asyncio.wait_for(queue.get(), timeout=15.0)
                    except asyncio.TimeoutError:
                        yield {"event": "ping", "data": "{}"}
                        continue
                    payload = message["payload"]
                    yield {
                        "event": payload.get("event", "message"),
                        "data": json.dumps({"channel": message["channel"], **payload}, default=str),
                    }
            finally:
                broadcaster.unsubscribe(queue)

        return EventSourceResponse(event_generator())


app = create_app()
