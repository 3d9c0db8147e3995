"""
Remediation Actions

Network and endpoint containment: blocking IP addresses on a firewall and
isolating hosts through an EDR platform.

In observe mode (or with the kill switch engaged) safety checks still run,
but no external call is made and a dry-run result is returned.
"""

import ipaddress
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel, Field, IPvAnyAddress, model_validator

from soc_automation.actions.base import ActionCategory, ActionContext
from soc_automation.actions.http import HttpAction
from soc_automation.config.settings import RuntimeMode, Settings
from soc_automation.exceptions import ErrorCode
from soc_automation.store.models import ActionResult, generate_id


# Networks that must never be blocked
PROTECTED_NETWORKS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("fc00::/7"),
]

MAC_PATTERN = r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$"


def _expires_at(delta: Optional[timedelta]) -> Optional[str]:
    if delta is None:
        return None
    return (datetime.now(timezone.utc) + delta).isoformat().replace("+00:00", "Z")


class RemediationAction(HttpAction):
    """Remediation action bound to a vendor API and the runtime mode."""

    category = ActionCategory.REMEDIATION

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client=client, timeout=settings.action_timeout)
        self._settings = settings

    @property
    def dry_run(self) -> bool:
        return self._settings.get_effective_mode() != RuntimeMode.ENFORCE

    def _auth_headers(self, api_key: Optional[str]) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"} if api_key else {}


# === Block IP ===

class BlockIpParams(BaseModel):
    ip_address: IPvAnyAddress
    reason: str = Field(min_length=1)
    duration: Optional[int] = Field(default=None, gt=0, description="Minutes; omit for permanent")
    firewall_type: Literal["palo_alto", "fortinet", "checkpoint", "cisco", "iptables"] = "iptables"
    rule_group: Optional[str] = None
    priority: int = Field(default=100, ge=1, le=1000)
    direction: Literal["inbound", "outbound", "both"] = "both"


class BlockIpAction(RemediationAction):
    """Block an IP address on the firewall management API."""

    name = "block_ip"
    description = "Block IP address in firewall"
    parameter_schema = BlockIpParams
    service_name = "firewall"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        super().__init__(settings, client)
        self._allowlist = [
            ipaddress.ip_network(cidr, strict=False) for cidr in settings.ip_allowlist
        ]

    def is_protected(self, ip: Any) -> bool:
        """Check whether an address falls in a network that must not be blocked."""
        address = ipaddress.ip_address(str(ip))
        for network in PROTECTED_NETWORKS + self._allowlist:
            if address.version == network.version and address in network:
                return True
        return False

    async def execute(self, params: BlockIpParams, context: ActionContext) -> ActionResult:
        ip = str(params.ip_address)
        self.log(context, "Blocking IP", ip=ip, firewall=params.firewall_type)

        if self.is_protected(ip):
            self.log(context, "Refusing to block protected IP", "warning", ip=ip)
            return self.failure(
                f"Cannot block protected IP: {ip}",
                data={"ip": ip},
                error_code=ErrorCode.PERMISSION_DENIED,
            )

        result: dict[str, Any] = {
            "blocked_ip": ip,
            "firewall_type": params.firewall_type,
            "direction": params.direction,
            "duration": params.duration,
            "expires_at": _expires_at(timedelta(minutes=params.duration) if params.duration else None),
            "reason": params.reason,
        }

        if self.dry_run:
            result.update(rule_id=generate_id("dryrun"), dry_run=True)
            self.log(context, "Observe mode: firewall rule not created", ip=ip)
            return self.success(f"IP {ip} would be blocked (observe mode)", result)

        if not self._settings.firewall_api_url:
            return self.failure("Firewall API not configured", data={"ip": ip})

        response = await self._send(
            "POST",
            f"{self._settings.firewall_api_url.rstrip('/')}/rules",
            json={
                "action": "block",
                "ip": ip,
                "direction": params.direction,
                "priority": params.priority,
                "duration_minutes": params.duration,
                "rule_group": params.rule_group,
                "firewall_type": params.firewall_type,
                "reason": params.reason,
                "execution_id": context.execution_id,
            },
            headers=self._auth_headers(self._settings.firewall_api_key),
        )
        body = response.json() if response.content else {}
        result.update(rule_id=body.get("rule_id") or body.get("id"), dry_run=False)

        self.log(context, "IP blocked", ip=ip, rule_id=result["rule_id"])
        return self.success(f"IP {ip} blocked successfully", result)


# === Isolate host ===

class IsolateHostParams(BaseModel):
    hostname: Optional[str] = Field(default=None, min_length=1)
    ip_address: Optional[IPvAnyAddress] = None
    mac_address: Optional[str] = Field(default=None, pattern=MAC_PATTERN)
    edr_agent: Literal["crowdstrike", "sentinelone", "carbon_black", "defender", "cylance"] = "crowdstrike"
    isolation_type: Literal["network", "full", "custom"] = "network"
    reason: str = Field(min_length=1)
    duration: Optional[int] = Field(default=None, gt=0, description="Hours; omit for indefinite")
    allowed_ips: Optional[list[IPvAnyAddress]] = None
    allowed_ports: Optional[list[int]] = None

    @model_validator(mode="after")
    def require_identifier(self) -> "IsolateHostParams":
        if not (self.hostname or self.ip_address or self.mac_address):
            raise ValueError("At least one of hostname, ip_address, or mac_address must be provided")
        if self.allowed_ports and any(not 1 <= p <= 65535 for p in self.allowed_ports):
            raise ValueError("allowed_ports must be between 1 and 65535")
        return self

    @property
    def host_identifier(self) -> str:
        return str(self.hostname or self.ip_address or self.mac_address)


class IsolateHostAction(RemediationAction):
    """Isolate a host from the network through the EDR API."""

    name = "isolate_host"
    description = "Isolate host from network"
    parameter_schema = IsolateHostParams
    service_name = "edr"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        super().__init__(settings, client)
        self._critical_patterns = [
            re.compile(p, re.IGNORECASE) for p in settings.critical_host_patterns
        ]

    def is_critical_host(self, hostname: Optional[str]) -> bool:
        """Check a hostname against the critical infrastructure patterns."""
        if not hostname:
            return False
        return any(p.search(hostname) for p in self._critical_patterns)

    async def execute(self, params: IsolateHostParams, context: ActionContext) -> ActionResult:
        host = params.host_identifier
        self.log(context, "Isolating host", host=host, edr=params.edr_agent)

        if self.is_critical_host(params.hostname):
            self.log(context, "Refusing to isolate critical host", "warning", host=host)
            return self.failure(
                f"Cannot isolate critical host: {host}",
                data={"host_identifier": host},
                error_code=ErrorCode.PERMISSION_DENIED,
            )

        result: dict[str, Any] = {
            "host_identifier": host,
            "edr_agent": params.edr_agent,
            "isolation_type": params.isolation_type,
            "duration": params.duration,
            "expires_at": _expires_at(timedelta(hours=params.duration) if params.duration else None),
            "reason": params.reason,
            "allowed_ips": [str(ip) for ip in params.allowed_ips] if params.allowed_ips else None,
            "allowed_ports": params.allowed_ports,
        }

        if self.dry_run:
            result.update(isolation_id=generate_id("dryrun"), dry_run=True)
            self.log(context, "Observe mode: host not isolated", host=host)
            return self.success(f"Host {host} would be isolated (observe mode)", result)

        if not self._settings.edr_api_url:
            return self.failure("EDR API not configured", data={"host_identifier": host})

        response = await self._send(
            "POST",
            f"{self._settings.edr_api_url.rstrip('/')}/hosts/isolate",
            json={
                "vendor": params.edr_agent,
                "hostname": params.hostname,
                "ip_address": str(params.ip_address) if params.ip_address else None,
                "mac_address": params.mac_address,
                "isolation_type": params.isolation_type,
                "duration_hours": params.duration,
                "allowed_ips": result["allowed_ips"],
                "allowed_ports": params.allowed_ports,
                "reason": params.reason,
                "execution_id": context.execution_id,
            },
            headers=self._auth_headers(self._settings.edr_api_key),
        )
        body = response.json() if response.content else {}
        result.update(isolation_id=body.get("isolation_id") or body.get("id"), dry_run=False)

        self.log(context, "Host isolated", host=host, isolation_id=result["isolation_id"])
        return self.success(f"Host {host} isolated successfully", result)
