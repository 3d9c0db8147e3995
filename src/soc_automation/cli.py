#!/usr/bin/env python3
"""
SOC Automation Command Line Interface

Usage:
    socauto actions                          # List registered actions
    socauto playbooks                        # List built-in playbooks
    socauto run PLAYBOOK [--event FILE]      # Run a playbook locally
    socauto serve                            # Start the gateway
    socauto status                           # Show gateway status
    socauto health                           # Health check
    socauto mode [observe|enforce]           # Get or set mode
    socauto kill [on|off]                    # Kill switch control
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from soc_automation import __version__
from soc_automation.config.settings import RuntimeMode, Settings
from soc_automation.exceptions import AutomationError
from soc_automation.logging_config import configure_logging
from soc_automation.orchestrator.playbooks import STANDARD_PLAYBOOKS, load_playbooks
from soc_automation.realtime.broadcast import InMemoryBroadcaster
from soc_automation.runtime import build_runtime
from soc_automation.store.models import Event, Playbook, PlaybookExecution, TriggerSource
from soc_automation.store.repository import InMemoryPlaybookRepository


DEFAULT_GATEWAY = "http://localhost:8090"


class CLI:
    """CLI helper class."""

    def __init__(self, gateway: str = DEFAULT_GATEWAY):
        self.gateway = gateway
        self.console = Console()

    def print_header(self, title: str):
        self.console.print(Panel.fit(f"[bold cyan]{title}[/bold cyan]", border_style="cyan"))

    def print_success(self, msg: str):
        self.console.print(f"[green]OK[/green] {msg}")

    def print_error(self, msg: str):
        self.console.print(f"[red]ERROR[/red] {msg}")

    def print_info(self, msg: str):
        self.console.print(f"[blue]INFO[/blue] {msg}")

    def print_warning(self, msg: str):
        self.console.print(f"[yellow]WARN[/yellow] {msg}")

    def api_call(self, endpoint: str, method: str = "GET", data: Optional[dict] = None) -> dict:
        """Make API call to gateway."""
        url = f"{self.gateway}{endpoint}"
        try:
            response = httpx.request(method, url, json=data if method in ("POST", "PUT") else None, timeout=10)
            return {"status_code": response.status_code, "data": response.json()}
        except httpx.ConnectError:
            return {"error": "Connection refused. Is the gateway running?"}
        except (httpx.HTTPError, ValueError) as e:
            return {"error": str(e)}


# === Local commands ===

def cmd_actions(args):
    """List registered actions and their parameters."""
    cli = CLI()
    runtime = build_runtime(Settings(), repository=InMemoryPlaybookRepository())

    table = Table(title="Registered Actions", show_header=True)
    table.add_column("Name", style="bold")
    table.add_column("Category")
    table.add_column("Description")
    table.add_column("Required parameters", style="dim")

    for schema in runtime.registry.get_all_action_schemas():
        required = ", ".join(schema["schema"].get("required", []))
        table.add_row(schema["name"], schema["category"], schema["description"], required)

    cli.console.print(table)
    return 0


def cmd_playbooks(args):
    """List built-in playbooks."""
    cli = CLI()
    table = Table(title="Built-in Playbooks", show_header=True)
    table.add_column("ID", style="bold")
    table.add_column("Trigger")
    table.add_column("Steps")
    table.add_column("Description", style="dim")

    for playbook in STANDARD_PLAYBOOKS.values():
        steps = " > ".join(step.action_name for step in playbook.steps)
        table.add_row(playbook.id, playbook.trigger_type, steps, playbook.description or "")

    cli.console.print(table)
    return 0


def _resolve_playbook(ref: str, playbook_id: Optional[str] = None) -> Playbook:
    if ref in STANDARD_PLAYBOOKS:
        return STANDARD_PLAYBOOKS[ref]
    playbooks = load_playbooks(Path(ref))
    if playbook_id:
        playbooks = [p for p in playbooks if p.id == playbook_id]
    if not playbooks:
        raise ValueError(f"No matching playbook in {ref}")
    return playbooks[0]


def _load_event(args) -> Optional[Event]:
    if not args.event:
        return None
    raw = args.event
    path = Path(raw)
    if path.exists():
        raw = path.read_text(encoding="utf-8")
    return Event.from_dict(json.loads(raw))


def _print_execution(cli: CLI, execution: PlaybookExecution):
    table = Table(title=f"Execution {execution.id}", show_header=True)
    table.add_column("#", style="dim")
    table.add_column("Action")
    table.add_column("Result")
    table.add_column("Detail")
    table.add_column("ms", justify="right")

    for step in execution.step_results:
        status = "[green]success[/]" if step.success else "[red]failed[/]"
        detail = step.result.message if step.success else step.result.error
        table.add_row(str(step.index), step.action_name, status, detail or "", f"{step.duration_ms:.0f}")

    cli.console.print(table)
    if execution.status.value == "completed":
        cli.print_success(f"Playbook completed in {execution.duration_ms:.0f} ms")
    else:
        cli.print_error(f"Playbook failed: {execution.error}")


def cmd_run(args):
    """Run a playbook locally against an event."""
    cli = CLI()
    configure_logging(args.log_level, json=False)

    try:
        playbook = _resolve_playbook(args.playbook, args.id)
        event = _load_event(args)
    except (OSError, ValueError, KeyError, AutomationError) as e:
        cli.print_error(str(e))
        return 1

    settings = Settings()
    if args.enforce:
        settings.mode = RuntimeMode.ENFORCE

    async def run() -> PlaybookExecution:
        runtime = build_runtime(
            settings,
            repository=InMemoryPlaybookRepository([playbook]),
            broadcaster=InMemoryBroadcaster(),
        )
        try:
            return await runtime.executor.execute(
                playbook,
                event=event,
                trigger_source=TriggerSource.MANUAL,
                triggered_by=args.user,
            )
        finally:
            await runtime.close()

    cli.print_header(f"Running {playbook.name} ({settings.get_effective_mode().value} mode)")
    execution = asyncio.run(run())
    _print_execution(cli, execution)
    if args.json:
        cli.console.print_json(json.dumps(execution.to_dict(), default=str))
    return 0 if execution.status.value == "completed" else 1


def cmd_serve(args):
    """Start the automation gateway."""
    import uvicorn

    settings = Settings()
    host = args.host or settings.host
    port = args.port or settings.port
    CLI().print_info(f"Starting gateway on {host}:{port}")
    uvicorn.run("soc_automation.gateway.app:app", host=host, port=port, log_level=settings.log_level.lower())
    return 0


# === Gateway commands ===

def cmd_status(args):
    """Show gateway status."""
    cli = CLI(args.gateway)
    result = cli.api_call("/status")

    if result.get("error"):
        cli.print_error(result["error"])
        return 1

    data = result["data"]
    table = Table(title="SOC Automation Status", show_header=True)
    table.add_column("Property", style="dim")
    table.add_column("Value")

    mode_color = "green" if data.get("mode") == "observe" else "yellow"
    table.add_row("Mode", f"[{mode_color}]{data.get('mode', 'unknown')}[/]")
    table.add_row("Kill Switch", str(data.get("kill_switch", False)))
    table.add_row("Executions in flight", str(data.get("executions_in_flight", 0)))
    table.add_row("Uptime (s)", f"{data.get('uptime_seconds', 0):.0f}")
    cli.console.print(table)

    for problem in data.get("integration_problems", []):
        cli.print_warning(problem)
    return 0


def cmd_health(args):
    """Health check."""
    cli = CLI(args.gateway)
    result = cli.api_call("/health")

    if result.get("error"):
        cli.print_error(result["error"])
        return 1

    if result["data"].get("status") == "healthy":
        cli.print_success(f"Gateway healthy ({args.gateway})")
        return 0
    cli.print_error("Gateway unhealthy")
    return 1


def cmd_mode(args):
    """Get or set mode."""
    cli = CLI(args.gateway)

    if args.value:
        result = cli.api_call("/mode", method="POST", data={"mode": args.value})
        if result.get("error"):
            cli.print_error(result["error"])
            return 1
        cli.print_success(f"Mode set to: {args.value}")
    else:
        result = cli.api_call("/status")
        if result.get("error"):
            cli.print_error(result["error"])
            return 1
        cli.print_info(f"Current mode: {result['data'].get('mode', 'unknown')}")

    return 0


def cmd_kill(args):
    """Kill switch control."""
    cli = CLI(args.gateway)

    if args.value in ("on", "off"):
        result = cli.api_call("/kill", method="POST" if args.value == "on" else "DELETE")
        if result.get("error"):
            cli.print_error(result["error"])
            return 1
        if args.value == "on":
            cli.print_warning("Kill switch ACTIVATED")
        else:
            cli.print_success("Kill switch DEACTIVATED")
    else:
        result = cli.api_call("/status")
        if result.get("error"):
            cli.print_error(result["error"])
            return 1
        active = result["data"].get("kill_switch", False)
        cli.print_info(f"Kill switch: {'ACTIVE' if active else 'inactive'}")

    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="socauto",
        description="SOC Automation - playbook orchestration for security operations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  socauto actions                                   List actions
  socauto run block_malicious_ip --event alert.json Dry-run a built-in playbook
  socauto run samples/playbooks.json --id phishing_host_containment -e samples/alert_event.json
  socauto serve --port 8090                         Start the gateway
  socauto mode enforce                              Switch to enforce mode
  socauto kill on                                   Activate kill switch
        """
    )

    parser.add_argument("--gateway", "-g", default=DEFAULT_GATEWAY,
                        help=f"Gateway URL (default: {DEFAULT_GATEWAY})")
    parser.add_argument("--version", "-v", action="version", version=f"socauto {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Actions
    actions_p = subparsers.add_parser("actions", help="List registered actions")
    actions_p.set_defaults(func=cmd_actions)

    # Playbooks
    playbooks_p = subparsers.add_parser("playbooks", help="List built-in playbooks")
    playbooks_p.set_defaults(func=cmd_playbooks)

    # Run
    run_p = subparsers.add_parser("run", help="Run a playbook locally")
    run_p.add_argument("playbook", help="Built-in playbook ID or path to a playbook JSON file")
    run_p.add_argument("--id", default=None, help="Playbook ID when the file holds several")
    run_p.add_argument("--event", "-e", help="Event JSON (file path or inline)")
    run_p.add_argument("--user", default=None, help="User recorded as triggered_by")
    run_p.add_argument("--enforce", action="store_true", help="Call remediation systems for real")
    run_p.add_argument("--json", action="store_true", help="Print the execution record as JSON")
    run_p.add_argument("--log-level", default="WARNING")
    run_p.set_defaults(func=cmd_run)

    # Serve
    serve_p = subparsers.add_parser("serve", help="Start the gateway")
    serve_p.add_argument("--host", default=None)
    serve_p.add_argument("--port", type=int, default=None)
    serve_p.set_defaults(func=cmd_serve)

    # Status
    status_p = subparsers.add_parser("status", help="Show gateway status")
    status_p.set_defaults(func=cmd_status)

    # Health
    health_p = subparsers.add_parser("health", help="Health check")
    health_p.set_defaults(func=cmd_health)

    # Mode
    mode_p = subparsers.add_parser("mode", help="Get or set mode")
    mode_p.add_argument("value", nargs="?", choices=["observe", "enforce"])
    mode_p.set_defaults(func=cmd_mode)

    # Kill
    kill_p = subparsers.add_parser("kill", help="Kill switch control")
    kill_p.add_argument("value", nargs="?", choices=["on", "off"])
    kill_p.set_defaults(func=cmd_kill)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
