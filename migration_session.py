"""
migration_session.py — Drives one migration through its six phases.

  upload → review → destination → claim → apply → results

The session owns the parsed config, the chosen destination, the apply toggles,
the claimed devices and the latest ApplySessionState. Claim and apply runs are
exposed as async event streams; only one of them may run at a time.

Stream events:
  { "type": "claim",   "step": "polling", "detail": "...", "status": "warn", "color": "..." }
  { "type": "result",  "claimed": [...], "timed_out": false, "stopped": false, "error": null }
  { "type": "log",     "msg": "...", "color": "...", "time": "12:00:01" }
  { "type": "summary", "ports_pushed": 1, ..., "was_stopped": false, "log": [...] }
"""

import asyncio
import logging
import uuid
from typing import AsyncIterator, Optional

import httpx

from apply_orchestrator import ApplyOrchestrator, PORT_PUSH_DELAY
from claim_coordinator import ClaimCoordinator, validate_cloud_ids, POLL_INTERVAL, MAX_POLLS
from config_fetcher import RunningConfigFetcher
from config_parser import parse, summarize
from errors import MigrationError, ValidationError
from events import EventChannel
from meraki_api import MerakiDashboardClient, MerakiAPIError
from models import (
    ParsedConfig, ApplyFlags, ApplySessionState, MerakiCredentials, TargetNetwork,
    TargetDevice, ClaimResult, SourceDeviceRequest, SessionStatus,
)

logger = logging.getLogger(__name__)


class MigrationSession:
    def __init__(self, session_id: Optional[str] = None, poll_interval: float = POLL_INTERVAL,
                 max_polls: int = MAX_POLLS, port_delay: float = PORT_PUSH_DELAY):
        self.session_id    = session_id or str(uuid.uuid4())
        self.poll_interval = poll_interval
        self.max_polls     = max_polls
        self.port_delay    = port_delay
        self._task: Optional[asyncio.Task] = None
        self._clear()

    def _clear(self):
        self.phase = "upload"
        self.parsed: Optional[ParsedConfig] = None
        self.flags = ApplyFlags()
        self.credentials: Optional[MerakiCredentials] = None
        self.network: Optional[TargetNetwork] = None
        self.destination_devices: list[TargetDevice] = []
        self.claim_result: Optional[ClaimResult] = None
        self.results: Optional[ApplySessionState] = None
        self._claimer: Optional[ClaimCoordinator] = None
        self._orchestrator: Optional[ApplyOrchestrator] = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def _ensure_idle(self):
        if self.busy:
            raise ValidationError("A claim or apply run is already in progress")

    def _require_destination(self):
        if self.parsed is None:
            raise ValidationError("Upload a configuration first")
        if self.credentials is None or self.network is None:
            raise ValidationError("Select a destination network first")

    # ------------------------------------------------------------------ #
    #  Upload / review                                                     #
    # ------------------------------------------------------------------ #

    def upload(self, raw) -> ParsedConfig:
        """Parse raw config text. A new upload discards everything downstream."""
        self._ensure_idle()
        parsed = parse(raw)
        self.parsed       = parsed
        self.claim_result = None
        self.results      = None
        self.phase        = "review"
        logger.info("[SESSION %s] Parsed config for %s", self.session_id[:8], parsed.hostname or "(no hostname)")
        return parsed

    async def upload_from_device(self, req: SourceDeviceRequest) -> ParsedConfig:
        raw = await RunningConfigFetcher(req).fetch()
        return self.upload(raw)

    def review(self, flags: Optional[ApplyFlags] = None) -> dict:
        """Confirm apply toggles. Toggles for features the config doesn't contain are forced off."""
        if self.parsed is None:
            raise ValidationError("Upload a configuration first")
        self._ensure_idle()
        flags = flags or ApplyFlags()
        summary = summarize(self.parsed)
        self.flags = ApplyFlags(
            apply_ports  = flags.apply_ports and summary["can_apply_ports"],
            apply_radius = flags.apply_radius and summary["can_apply_radius"],
            apply_acls   = flags.apply_acls and summary["can_apply_acls"],
        )
        self.phase = "destination"
        return summary

    # ------------------------------------------------------------------ #
    #  Destination                                                         #
    # ------------------------------------------------------------------ #

    async def select_destination(self, credentials: MerakiCredentials, org_id: str, network_id: str) -> TargetNetwork:
        """
        Look the network up in the org and load its current devices.
        Raises ValidationError for an unknown network, MerakiAPIError for API failures.
        """
        if self.parsed is None:
            raise ValidationError("Upload a configuration first")
        self._ensure_idle()

        client = MerakiDashboardClient.from_credentials(credentials)
        networks = await client.list_networks(org_id)
        match = next((n for n in networks if n.get("id") == network_id), None)
        if match is None:
            raise ValidationError(f"Network {network_id} not found in organization {org_id}")

        devices = await client.get_network_devices(network_id) or []
        self.credentials = credentials
        self.network = TargetNetwork(id=network_id, name=match.get("name", ""), organization_id=org_id)
        self.destination_devices = [
            TargetDevice(serial=d["serial"], name=d.get("name"), model=d.get("model") or "")
            for d in devices if d.get("serial")
        ]
        self.claim_result = None
        self.results = None
        self.phase = "claim"
        return self.network

    def skip_claim(self):
        """Devices are already in the network — go straight to apply."""
        self._require_destination()
        self._ensure_idle()
        self.phase = "apply"

    def target_devices(self) -> list[TargetDevice]:
        """Freshly claimed devices win; otherwise whatever the destination network already holds."""
        if self.claim_result and self.claim_result.claimed:
            return [TargetDevice(serial=d.serial, name=d.name, model=d.model) for d in self.claim_result.claimed]
        return list(self.destination_devices)

    # ------------------------------------------------------------------ #
    #  Claim                                                               #
    # ------------------------------------------------------------------ #

    async def stream_claim(self, cloud_ids: list[str]) -> AsyncIterator[dict]:
        self._require_destination()
        self._ensure_idle()
        if not validate_cloud_ids(cloud_ids)[0]:
            raise ValidationError("No valid Cloud IDs — expected format XXXX-XXXX-XXXX")

        channel = EventChannel()
        self._claimer = ClaimCoordinator(
            self.credentials, self.network, ws=channel,
            poll_interval=self.poll_interval, max_polls=self.max_polls,
        )
        outcome: dict = {}

        async def runner():
            try:
                outcome["result"] = await self._claimer.claim(cloud_ids)
            except (MigrationError, MerakiAPIError, httpx.HTTPError) as e:
                outcome["error"] = e.message if isinstance(e, MerakiAPIError) else str(e)
            finally:
                channel.close()

        task = self._task = asyncio.create_task(runner())
        try:
            async for event in channel:
                yield event
            await asyncio.wait([task])
            if task.cancelled():
                return
            task.result()

            result = outcome.get("result")
            if result is not None:
                self.claim_result = result
                self.phase = "apply"
            yield {
                "type":      "result",
                "claimed":   [d.model_dump() for d in result.claimed] if result else [],
                "timed_out": result.timed_out if result else False,
                "stopped":   result is None and "error" not in outcome,
                "error":     outcome.get("error"),
            }
        finally:
            if not task.done():
                task.cancel()

    # ------------------------------------------------------------------ #
    #  Apply                                                               #
    # ------------------------------------------------------------------ #

    async def stream_apply(self, resume: bool = False) -> AsyncIterator[dict]:
        self._require_destination()
        self._ensure_idle()
        if resume and not (self.results and self.results.was_stopped):
            raise ValidationError("Nothing to resume — the last run was not stopped")

        channel = EventChannel()
        self._orchestrator = ApplyOrchestrator(
            self.credentials, self.parsed, self.network, self.target_devices(), self.flags,
            state=self.results if resume else None, ws=channel, port_delay=self.port_delay,
        )
        self.phase = "apply"
        orchestrator = self._orchestrator

        async def runner():
            try:
                return await orchestrator.run()
            except asyncio.CancelledError:
                self._keep_checkpoint(orchestrator)
                raise
            finally:
                channel.close()

        task = self._task = asyncio.create_task(runner())
        try:
            async for event in channel:
                yield event
            await asyncio.wait([task])
            if task.cancelled():
                return
            state = task.result()

            self.results = state
            self.phase = "results"
            yield {"type": "summary", **state.summary(), "was_stopped": state.was_stopped, "log": list(state.log)}
        finally:
            if not task.done():
                task.cancel()

    def _keep_checkpoint(self, orchestrator: ApplyOrchestrator):
        """A cancelled apply run keeps what it already pushed, marked as resumable."""
        state = orchestrator.state.model_copy(deep=True)
        state.was_stopped = True
        state.log.append("⚠ Migration cancelled — progress saved, resume to continue")
        self.results = state
        logger.info("[SESSION %s] Apply cancelled after %d port(s) — checkpoint kept",
                    self.session_id[:8], state.ports_pushed)

    def resume(self) -> AsyncIterator[dict]:
        """Continue a stopped apply run from its checkpoint."""
        if not (self.results and self.results.was_stopped):
            raise ValidationError("Nothing to resume — the last run was not stopped")
        return self.stream_apply(resume=True)

    # ------------------------------------------------------------------ #
    #  Lifecycle                                                           #
    # ------------------------------------------------------------------ #

    def stop(self):
        """Ask the running claim poll or apply run to halt at its next checkpoint."""
        if self._claimer and self._claimer.state in ("claiming", "polling"):
            self._claimer.stop()
        if self._orchestrator:
            self._orchestrator.stop()

    async def close(self):
        """Cancel whatever is running. The session stays readable."""
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("[SESSION %s] Cancelled running task", self.session_id[:8])

    async def reset(self):
        await self.close()
        self._clear()

    def status(self) -> SessionStatus:
        return SessionStatus(
            session_id      = self.session_id,
            phase           = self.phase,
            hostname        = self.parsed.hostname if self.parsed else None,
            network         = self.network,
            flags           = self.flags,
            claimed_devices = self.claim_result.claimed if self.claim_result else [],
            results         = self.results,
        )
