"""
apply_orchestrator.py — Pushes a parsed IOS-XE config to a Meraki network.

Flow (fixed order, each phase gated by its flag and by having something to push):
  1. Ports   — per compatible switch: GET its ports once, then PUT each
               access/trunk interface onto the port with the same number
  2. RADIUS  — one POST creating an 802.1X access policy from every server
  3. ACLs    — one PUT replacing the network ACL (plus the trailing allow-all)

Per-item failures are logged and counted, never raised. stop() halts the run
after the call in flight; the returned ApplySessionState doubles as the
checkpoint a later run resumes from.

Source for API payloads:
  https://developer.cisco.com/meraki/api-v1/update-device-switch-port/
"""

import asyncio
import logging
from typing import Optional

import httpx

from errors import ValidationError
from config_parser import extract_port_number
from events import COLORS, now
from meraki_api import MerakiDashboardClient, MerakiAPIError
from models import (
    MerakiCredentials, ParsedConfig, TargetNetwork, TargetDevice,
    ApplyFlags, ApplySessionState,
)
from translation import port_payload, describe_port, access_policy_payload, acl_rules_payload

logger = logging.getLogger(__name__)

PORT_PUSH_DELAY = 0.12  # seconds between port PUTs (org limit is 10 req/s)
COMPATIBLE_MODEL_PREFIXES = ("C93", "C9K")


def is_compatible(device: TargetDevice) -> bool:
    """Catalyst 9300-family switch. A device with no model yet (claim placeholder) is accepted."""
    model = (device.model or "").upper()
    return not model or model.startswith(COMPATIBLE_MODEL_PREFIXES)


def compatible_devices(devices: list[TargetDevice]) -> list[TargetDevice]:
    return [d for d in devices if is_compatible(d)]


def port_key(serial: str, port_id: str) -> str:
    return f"{serial}:{port_id}"


class ApplyOrchestrator:
    def __init__(
        self,
        credentials: MerakiCredentials,
        parsed: ParsedConfig,
        network: Optional[TargetNetwork],
        devices: list[TargetDevice],
        flags: ApplyFlags = None,
        state: Optional[ApplySessionState] = None,
        ws=None,
        port_delay: float = PORT_PUSH_DELAY,
    ):
        self.credentials = credentials
        self.parsed      = parsed
        self.network     = network
        self.devices     = devices
        self.flags       = flags or ApplyFlags()
        self.ws          = ws
        self.port_delay  = port_delay
        self.resuming    = state is not None
        self.state       = state.model_copy(deep=True) if state else ApplySessionState()
        self._stopped    = False

    async def log(self, msg: str, color: str = "info"):
        self.state.log.append(msg)
        logger.info("[APPLY %s] %s", self.network.id if self.network else "-", msg)
        if self.ws:
            await self.ws.send_json({"type": "log", "msg": msg, "color": COLORS.get(color, color), "time": now()})

    def stop(self):
        """Halt after the current API call. Already-pushed items stay pushed."""
        self._stopped = True

    async def _halt_requested(self) -> bool:
        if self._stopped and not self.state.was_stopped:
            self.state.was_stopped = True
            await self.log("⚠ Migration stopped — progress saved, resume to continue", "warn")
        return self._stopped

    # ------------------------------------------------------------------ #
    #  Phase 1 — switch ports                                              #
    # ------------------------------------------------------------------ #

    async def run_ports_phase(self):
        targets = compatible_devices(self.devices)
        if not targets:
            await self.log("⚠ No compatible Catalyst 9K device in the destination — skipping port configuration", "warn")
            return

        interfaces = [i for i in self.parsed.interfaces if i.mode != "unknown"]
        await self.log(
            f"Configuring {len(interfaces)} port(s) on {len(targets)} switch(es)…", "accent"
        )
        applied = set(self.state.applied_ports)
        pushes = 0

        for device in targets:
            label = device.name or device.serial
            try:
                ports = await self.meraki.get_switch_ports(device.serial) or []
            except (MerakiAPIError, httpx.HTTPError) as e:
                await self.log(f"✗ {label}: could not fetch switch ports — {e}", "error")
                pending = [i for i in interfaces
                           if port_key(device.serial, extract_port_number(i.name)) not in applied]
                self.state.ports_failed += len(pending)
                continue
            port_ids = {str(p.get("portId")) for p in ports}

            for iface in interfaces:
                if await self._halt_requested():
                    return

                port_id = extract_port_number(iface.name)
                key = port_key(device.serial, port_id)
                if key in applied:
                    await self.log(f"↩ {label}: skipped (already applied) {iface.short_name}", "muted")
                    continue
                if port_id not in port_ids:
                    self.state.ports_failed += 1
                    await self.log(f"⚠ {label}: no port {port_id} for {iface.short_name} — skipped", "warn")
                    continue

                if pushes:
                    await asyncio.sleep(self.port_delay)
                pushes += 1

                body = port_payload(iface)
                try:
                    await self.meraki.update_switch_port(device.serial, port_id, body)
                except (MerakiAPIError, httpx.HTTPError) as e:
                    self.state.ports_failed += 1
                    await self.log(f"✗ {label} port {port_id} ({iface.short_name}): {e}", "error")
                    continue

                self.state.ports_pushed += 1
                self.state.applied_ports.append(key)
                applied.add(key)
                await self.log(f"✓ {label} port {port_id} ← {iface.short_name}: {describe_port(iface, body)}", "success")

    # ------------------------------------------------------------------ #
    #  Phase 2 — RADIUS / 802.1X access policy                             #
    # ------------------------------------------------------------------ #

    async def run_radius_phase(self):
        servers = self.parsed.radius_servers
        await self.log(f"Creating 802.1X access policy with {len(servers)} RADIUS server(s)…", "accent")
        body = access_policy_payload(servers)
        try:
            await self.meraki.create_access_policy(self.network.id, body)
        except (MerakiAPIError, httpx.HTTPError) as e:
            await self.log(f"✗ Access policy creation failed: {e}", "error")
            return
        self.state.policies_created = 1
        self.state.radius_applied = True
        await self.log(f"✓ Access policy \"{body['name']}\" created", "success")

    # ------------------------------------------------------------------ #
    #  Phase 3 — ACLs                                                      #
    # ------------------------------------------------------------------ #

    async def run_acl_phase(self):
        rules = acl_rules_payload(self.parsed.acls)
        count = len(rules) - 1  # trailing allow-all is not reported
        await self.log(f"Pushing {count} ACL rule(s) from {len(self.parsed.acls)} ACL(s)…", "accent")
        try:
            await self.meraki.update_access_control_lists(self.network.id, rules)
        except (MerakiAPIError, httpx.HTTPError) as e:
            await self.log(f"✗ ACL update failed: {e}", "error")
            return
        self.state.acl_rules_pushed = count
        self.state.acls_applied = True
        await self.log(f"✓ {count} ACL rule(s) pushed (+ default allow)", "success")

    # ------------------------------------------------------------------ #
    #  Main orchestrator                                                   #
    # ------------------------------------------------------------------ #

    async def run(self) -> ApplySessionState:
        if not self.network or not self.network.id:
            raise ValidationError("No destination network selected")

        # Instantiate client here (not in __init__) so unit test mocks intercept correctly
        self.meraki = MerakiDashboardClient.from_credentials(self.credentials)

        if self.resuming:
            # failed ports are retried, so they are counted afresh
            self.state.ports_failed = 0
            self.state.was_stopped = False
            await self.log("── Resuming Migration ──", "accent")
        else:
            await self.log(
                f"Starting migration of {self.parsed.hostname or 'source switch'} → "
                f"network \"{self.network.name or self.network.id}\"", "accent"
            )

        phases = [
            (self.flags.apply_ports and bool(self.parsed.interfaces), False,
             "Ports", self.run_ports_phase),
            (self.flags.apply_radius and bool(self.parsed.radius_servers), self.state.radius_applied,
             "RADIUS", self.run_radius_phase),
            (self.flags.apply_acls and bool(self.parsed.acls), self.state.acls_applied,
             "ACLs", self.run_acl_phase),
        ]
        for enabled, done, name, phase in phases:
            if await self._halt_requested():
                break
            if not enabled:
                continue
            if done:
                await self.log(f"{name} already applied — skipping", "muted")
                continue
            await self.log(f"── {name} ──", "accent")
            await phase()

        if not self.state.was_stopped:
            await self.log("Migration complete ✓", "success")
        s = self.state
        await self.log(
            f"Summary: {s.ports_pushed} port(s) pushed, {s.ports_failed} failed, "
            f"{s.policies_created} access polic{'y' if s.policies_created == 1 else 'ies'} created, "
            f"{s.acl_rules_pushed} ACL rule(s) pushed",
            "success" if s.ports_failed == 0 and not s.was_stopped else "warn",
        )
        return self.state
