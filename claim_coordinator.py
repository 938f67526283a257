"""
claim_coordinator.py — Claims Catalyst 9K Cloud IDs into a Meraki network and
waits for them to show up in the network's device list.

State machine:
  idle → claiming → polling → done
             └──────→ error   (claim call rejected — terminal, retry manually)

Flow:
  1. Validate Cloud IDs (XXXX-XXXX-XXXX, alphanumeric) — invalid ones are dropped
  2. POST one claim request carrying every valid ID
  3. Poll GET /networks/{id}/devices immediately, then every POLL_INTERVAL seconds
     up to MAX_POLLS times (~5 minutes), matching serial or cloudId
  4. All matched → done.  Ceiling reached → done with timed_out=True and
     placeholder devices (serial = Cloud ID) so the operator can carry on.

The Cloud ID is printed by 'service meraki register' on the switch.
"""

import asyncio
import logging
import re
from typing import Optional

import httpx

from errors import ValidationError
from events import COLORS
from meraki_api import MerakiDashboardClient, MerakiAPIError
from models import MerakiCredentials, TargetNetwork, ClaimedDevice, ClaimResult

logger = logging.getLogger(__name__)

CLOUD_ID_RE   = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$", re.IGNORECASE)
POLL_INTERVAL = 5    # seconds between inventory lookups
MAX_POLLS     = 60   # 5 min at 5-sec intervals


def validate_cloud_ids(cloud_ids: list[str]) -> tuple[list[str], list[str]]:
    """Split input into (valid, rejected). Valid IDs are upper-cased and de-duplicated."""
    valid, rejected = [], []
    for raw in cloud_ids:
        cid = raw.strip().upper()
        if not cid:
            continue
        if not CLOUD_ID_RE.match(cid):
            rejected.append(raw)
        elif cid not in valid:
            valid.append(cid)
    return valid, rejected


def _find_device(devices: list[dict], cloud_id: str) -> Optional[dict]:
    cid = cloud_id.lower()
    for d in devices:
        if (d.get("serial") or "").lower() == cid or (d.get("cloudId") or "").lower() == cid:
            return d
    return None


class ClaimCoordinator:
    def __init__(self, credentials: MerakiCredentials, network: TargetNetwork, ws=None,
                 poll_interval: float = POLL_INTERVAL, max_polls: int = MAX_POLLS):
        self.credentials   = credentials
        self.network       = network
        self.ws            = ws
        self.poll_interval = poll_interval
        self.max_polls     = max_polls
        self.state         = "idle"
        self.log_lines: list[str] = []
        self.error: Optional[str] = None
        self._stop         = asyncio.Event()

    async def log(self, msg: str, color: str = "info"):
        self.log_lines.append(msg)
        logger.info("[CLAIM %s] %s", self.network.id, msg)
        if self.ws:
            await self.ws.send_json({
                "type": "claim", "step": self.state, "detail": msg,
                "status": color, "color": COLORS.get(color, color),
            })

    def stop(self):
        """Stop polling at the next tick. Safe to call from any coroutine."""
        self._stop.set()

    async def _sleep_or_stop(self) -> bool:
        """Wait one poll interval. True if stop() was called meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            return True
        except asyncio.TimeoutError:
            return False

    def _claimed(self, cloud_id: str, device: Optional[dict]) -> ClaimedDevice:
        if device is None:
            return ClaimedDevice(cloud_id=cloud_id, serial=cloud_id, name=cloud_id, model="")
        return ClaimedDevice(
            cloud_id = cloud_id,
            serial   = device.get("serial") or cloud_id,
            name     = device.get("name") or device.get("serial") or cloud_id,
            model    = device.get("model") or "",
        )

    async def claim(self, cloud_ids: list[str]) -> Optional[ClaimResult]:
        """
        Claim and wait. Returns the ClaimResult, or None if stop() ended polling early.
        Raises ValidationError before any API call, MerakiAPIError if the claim itself fails.
        """
        if self.state in ("claiming", "polling"):
            raise ValidationError("A claim is already in progress")
        if not self.network or not self.network.id:
            raise ValidationError("No destination network selected")

        ids, rejected = validate_cloud_ids(cloud_ids)
        if not ids:
            raise ValidationError("No valid Cloud IDs — expected format XXXX-XXXX-XXXX")

        self._stop.clear()
        self.error = None
        self.log_lines = []

        # Instantiate client here (not in __init__) so unit test mocks intercept correctly
        self.meraki = MerakiDashboardClient.from_credentials(self.credentials)

        self.state = "claiming"
        for raw in rejected:
            await self.log(f"⚠ Ignoring invalid Cloud ID '{raw}'", "warn")
        await self.log(f"Claiming {len(ids)} device(s) to network \"{self.network.name or self.network.id}\"…", "accent")
        await self.log(f"Cloud ID(s): {', '.join(ids)}", "muted")

        try:
            await self.meraki.claim_network_devices(self.network.id, ids)
        except (MerakiAPIError, httpx.HTTPError) as e:
            self.error = e.message if isinstance(e, MerakiAPIError) else str(e)
            self.state = "error"
            await self.log(f"✗ Claim failed: {self.error}", "error")
            raise
        await self.log("✓ Claim request accepted by Meraki", "success")

        self.state = "polling"
        await self.log("Waiting for device(s) to register in Meraki Dashboard…", "warn")

        found: dict[str, dict] = {}
        try:
            for attempt in range(1, self.max_polls + 1):
                # First poll runs immediately
                if attempt > 1 and await self._sleep_or_stop():
                    await self.log(f"⚠ Polling stopped after {attempt - 1} attempt(s)", "warn")
                    self.state = "idle"
                    return None

                try:
                    devices = await self.meraki.get_network_devices(self.network.id) or []
                except (MerakiAPIError, httpx.HTTPError) as e:
                    await self.log(f"[Poll {attempt}/{self.max_polls}] Could not fetch devices ({e}) — retrying…", "warn")
                    continue

                for cid in ids:
                    dev = _find_device(devices, cid)
                    if dev is not None:
                        found[cid] = dev
                await self.log(
                    f"[Poll {attempt}/{self.max_polls}] {len(found)}/{len(ids)} device(s) visible in Dashboard",
                    "muted",
                )

                if len(found) == len(ids):
                    claimed = [self._claimed(cid, found[cid]) for cid in ids]
                    await self.log(f"✓ All {len(ids)} device(s) are registered in Meraki Dashboard", "success")
                    for d in claimed:
                        await self.log(f"   • {d.name} ({d.model or 'Cat9K'}) — {d.serial}", "info")
                    self.state = "done"
                    return ClaimResult(claimed=claimed, timed_out=False)
        except asyncio.CancelledError:
            self.state = "idle"
            raise

        missing = [cid for cid in ids if cid not in found]
        await self.log(
            f"⚠ Timed out waiting for {', '.join(missing)} — the device(s) may still be registering. "
            "You can proceed; make sure 'service meraki start' was run on the switch.",
            "warn",
        )
        self.state = "done"
        return ClaimResult(claimed=[self._claimed(cid, found.get(cid)) for cid in ids], timed_out=True)
