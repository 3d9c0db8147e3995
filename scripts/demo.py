#!/usr/bin/env python3
"""
SOC Automation Gateway Demo Script

Walks a running gateway through the main automation flows:
1. Health check
2. Action catalog
3. Playbook upload
4. Manual playbook run
5. Event ingestion
6. Notification fan-out
7. Control endpoints (mode, kill switch)

Usage:
    # Start gateway first (observe mode, remediation is dry-run):
    socauto serve --port 8090

    # Then run this script:
    python scripts/demo.py

    # Or with custom gateway URL:
    python scripts/demo.py --gateway http://localhost:8090
"""

import argparse
import json
import sys
import time
from pathlib import Path

import httpx


SAMPLES = Path(__file__).resolve().parent.parent / "samples"


def print_header(title: str):
    """Print a section header."""
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}\n")


def check_health(gateway_url: str) -> bool:
    """Check health endpoint."""
    print_header("1. Health Check")

    try:
        data = httpx.get(f"{gateway_url}/health", timeout=10).json()

        print(f"Status: {data['status']}")
        print(f"Mode: {data['mode']}")
        print(f"Kill Switch: {data['kill_switch']}")
        print(f"Actions: {data['actions']}")
        print(f"Version: {data['version']}")

        if data["status"] == "healthy":
            print("\n✅ Health check PASSED")
            return True
        print("\n❌ Health check FAILED")
        return False

    except httpx.HTTPError as e:
        print(f"❌ Error: {e}")
        return False


def check_actions(gateway_url: str) -> bool:
    """List registered actions."""
    print_header("2. Action Catalog")

    try:
        actions = httpx.get(f"{gateway_url}/actions", timeout=10).json()["actions"]
        for action in actions:
            print(f"  - {action['name']:<20} [{action['category']}] {action['description']}")

        print("\n✅ Action catalog PASSED")
        return bool(actions)

    except httpx.HTTPError as e:
        print(f"❌ Error: {e}")
        return False


def upload_playbooks(gateway_url: str) -> bool:
    """Upload the sample playbooks."""
    print_header("3. Playbook Upload")

    try:
        playbooks = json.loads((SAMPLES / "playbooks.json").read_text())["playbooks"]
        for playbook in playbooks:
            response = httpx.put(f"{gateway_url}/playbooks/{playbook['id']}", json=playbook, timeout=10)
            response.raise_for_status()
            print(f"  Saved {playbook['id']} ({len(playbook['steps'])} steps)")

        print("\n✅ Playbook upload PASSED")
        return True

    except (httpx.HTTPError, OSError, KeyError) as e:
        print(f"❌ Error: {e}")
        return False


def run_playbook(gateway_url: str) -> bool:
    """Run a playbook manually and show the step results."""
    print_header("4. Manual Playbook Run")

    try:
        event = json.loads((SAMPLES / "alert_event.json").read_text())
        start = time.time()
        response = httpx.post(
            f"{gateway_url}/playbooks/phishing_host_containment/run",
            json={"triggered_by": "demo", "event": event},
            timeout=60,
        )
        response.raise_for_status()
        execution = response.json()
        elapsed = time.time() - start

        print(f"Execution: {execution['id']}")
        print(f"Status: {execution['status']}")
        for step in execution["step_results"]:
            outcome = step.get("message") or step.get("error")
            print(f"  [{step['index']}] {step['action']}: {'ok' if step['success'] else 'FAILED'} - {outcome}")
        print(f"Time: {elapsed:.2f}s")

        print("\n✅ Manual run PASSED")
        return True

    except (httpx.HTTPError, OSError) as e:
        print(f"❌ Error: {e}")
        return False


def publish_event(gateway_url: str) -> bool:
    """Publish an alert event and list the resulting executions."""
    print_header("5. Event Ingestion")

    try:
        event = json.loads((SAMPLES / "alert_event.json").read_text())
        data = httpx.post(f"{gateway_url}/events", json=event, timeout=10).json()
        print(f"Event {data['event_id']} delivered to {data['delivered']} subscriber(s)")

        # Triggered playbooks run in the background
        time.sleep(2)
        executions = httpx.get(f"{gateway_url}/executions", params={"limit": 5}, timeout=10).json()
        for execution in executions["executions"]:
            print(f"  {execution['playbook_id']:<32} {execution['status']:<10} {execution['trigger_source']}")

        print("\n✅ Event ingestion PASSED")
        return True

    except (httpx.HTTPError, OSError) as e:
        print(f"❌ Error: {e}")
        return False


def send_notification(gateway_url: str) -> bool:
    """Fan an alert out to the configured notification channels."""
    print_header("6. Notification Fan-out")

    try:
        event = json.loads((SAMPLES / "alert_event.json").read_text())
        alert = {"id": event["entity_id"], **event["data"]}
        data = httpx.post(f"{gateway_url}/notifications", json={"alert": alert}, timeout=30).json()

        if data.get("skipped"):
            print(f"Skipped: {data['reason']}")
        else:
            summary = data["summary"]
            print(f"Channels: {', '.join(data['channels'])}")
            print(f"Successful: {summary['successful']}/{summary['total']}")
            for detail in summary["details"]:
                print(f"  {detail['channel']}: {detail['status']}")

        print("\n✅ Notification fan-out PASSED")
        return True

    except (httpx.HTTPError, OSError) as e:
        print(f"❌ Error: {e}")
        return False


def check_control_endpoints(gateway_url: str) -> bool:
    """Exercise control endpoints."""
    print_header("7. Control Endpoints")

    try:
        print("Testing mode change to 'enforce'...")
        response = httpx.post(f"{gateway_url}/mode", json={"mode": "enforce"}, timeout=10)
        print(f"  Response: {response.json()}")

        print("\nTesting kill switch activation...")
        response = httpx.post(f"{gateway_url}/kill", timeout=10)
        print(f"  Response: {response.json()}")

        health = httpx.get(f"{gateway_url}/health", timeout=10).json()
        print(f"  Kill switch active: {health['kill_switch']} (effective mode: {health['mode']})")

        print("Deactivating kill switch and returning to 'observe'...")
        httpx.delete(f"{gateway_url}/kill", timeout=10)
        response = httpx.post(f"{gateway_url}/mode", json={"mode": "observe"}, timeout=10)
        print(f"  Response: {response.json()}")

        print("\n✅ Control endpoints PASSED")
        return True

    except httpx.HTTPError as e:
        print(f"❌ Error: {e}")
        return False


def main():
    parser = argparse.ArgumentParser(description="SOC Automation Gateway Demo")
    parser.add_argument(
        "--gateway",
        default="http://localhost:8090",
        help="Gateway URL (default: http://localhost:8090)"
    )
    parser.add_argument(
        "--skip-notify",
        action="store_true",
        help="Skip the notification fan-out step"
    )
    args = parser.parse_args()

    print("\n" + "="*60)
    print("  SOC Automation Gateway Demo")
    print("="*60)
    print(f"\nGateway URL: {args.gateway}")

    results = []

    results.append(("Health Check", check_health(args.gateway)))
    results.append(("Action Catalog", check_actions(args.gateway)))
    results.append(("Playbook Upload", upload_playbooks(args.gateway)))
    results.append(("Manual Run", run_playbook(args.gateway)))
    results.append(("Event Ingestion", publish_event(args.gateway)))

    if not args.skip_notify:
        results.append(("Notification Fan-out", send_notification(args.gateway)))

    results.append(("Control Endpoints", check_control_endpoints(args.gateway)))

    # Summary
    print_header("Summary")

    passed = sum(1 for _, r in results if r)
    total = len(results)

    for name, result in results:
        status = "✅ PASS" if result else "❌ FAIL"
        print(f"  {name}: {status}")

    print(f"\nTotal: {passed}/{total} checks passed")

    if passed == total:
        print("\n🎉 All checks passed! Gateway is working correctly.")
        return 0
    print("\n⚠️  Some checks failed. Check the output above.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
