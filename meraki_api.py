"""
meraki_api.py — Meraki Dashboard API client for the migration engine.

Covers:
  - GET  /organizations                                  list organizations for the key
  - GET  /organizations/{orgId}                          verify API key + org
  - GET  /organizations/{orgId}/networks                 list networks
  - GET  /networks/{networkId}/devices                   list devices in a network
  - POST /networks/{networkId}/devices/claim             claim Cloud IDs into a network
  - GET  /devices/{serial}/switch/ports                  current port list
  - PUT  /devices/{serial}/switch/ports/{portId}         update one port
  - POST /networks/{networkId}/switch/accessPolicies     create 802.1X access policy
  - PUT  /networks/{networkId}/switch/accessControlLists replace the network ACL

API docs:
  https://developer.cisco.com/meraki/api-v1/
  https://developer.cisco.com/meraki/api-v1/rate-limit/
"""

import asyncio
import logging
import random
import httpx
from typing import Optional
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from models import MerakiCredentials

logger = logging.getLogger(__name__)

REGION_BASE_URLS = {
    "com":    "https://api.meraki.com/api/v1",
    "in":     "https://api.meraki.in/api/v1",
    "cn":     "https://api.meraki.cn/api/v1",
    "ca":     "https://api.meraki.ca/api/v1",
    "us-gov": "https://api.gov-meraki.com/api/v1",
}
DEFAULT_REGION = "com"

# Rate limit: 10 requests/second per org — 429s carry Retry-After
MAX_RETRIES     = 3
RETRY_BACKOFF   = 2  # seconds, doubled per 5xx retry


def _should_retry(resp: httpx.Response) -> bool:
    return resp.status_code == 429 or resp.status_code >= 500


_server_error_wait = wait_exponential(multiplier=RETRY_BACKOFF)


def _wait_for_dashboard(retry_state: RetryCallState) -> float:
    """Honour Retry-After on 429, back off exponentially on 5xx."""
    resp = retry_state.outcome.result()
    if resp.status_code == 429:
        return float(resp.headers.get("Retry-After", RETRY_BACKOFF)) + random.random() / 2
    return _server_error_wait(retry_state)


def _log_retry(retry_state: RetryCallState):
    resp = retry_state.outcome.result()
    req = resp.request
    logger.warning(
        "HTTP %d on %s %s — retry %d/%d in %.1fs",
        resp.status_code, req.method, req.url.path, retry_state.attempt_number, MAX_RETRIES,
        retry_state.next_action.sleep,
    )


def _last_response(retry_state: RetryCallState) -> httpx.Response:
    return retry_state.outcome.result()


class MerakiAPIError(Exception):
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")


def base_url_for(region: str, base_url: Optional[str] = None) -> str:
    if base_url:
        return base_url.rstrip("/")
    try:
        return REGION_BASE_URLS[region]
    except KeyError:
        raise ValueError(f"Unknown Meraki region '{region}' — expected one of {', '.join(REGION_BASE_URLS)}")


class MerakiDashboardClient:
    def __init__(self, api_key: str, region: str = DEFAULT_REGION, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = base_url_for(region, base_url)
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    def from_credentials(cls, creds: MerakiCredentials) -> "MerakiDashboardClient":
        return cls(creds.api_key, creds.region, creds.base_url)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self.headers,
            timeout=30.0,
            follow_redirects=True,  # Meraki API uses redirects
        )

    async def _request(self, method: str, path: str, params: dict = None, body=None) -> dict | list:
        url = f"{self.base_url}{path}"
        async with self._client() as client:
            retrying = AsyncRetrying(
                retry=retry_if_result(_should_retry),
                wait=_wait_for_dashboard,
                stop=stop_after_attempt(MAX_RETRIES + 1),
                sleep=asyncio.sleep,
                before_sleep=_log_retry,
                retry_error_callback=_last_response,
            )
            resp = await retrying(client.request, method, url, params=params, json=body)

        self._raise_for_status(resp)
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    async def _get(self, path: str, params: dict = None) -> dict | list:
        return await self._request("GET", path, params=params)

    async def _post(self, path: str, body: dict) -> dict | list:
        return await self._request("POST", path, body=body)

    async def _put(self, path: str, body: dict) -> dict | list:
        return await self._request("PUT", path, body=body)

    def _raise_for_status(self, resp: httpx.Response):
        if resp.status_code >= 400:
            try:
                detail = resp.json()
                msg = detail.get("errors", [str(detail)])[0] if isinstance(detail, dict) else str(detail)
            except ValueError:
                msg = resp.text or f"HTTP {resp.status_code}"
            raise MerakiAPIError(resp.status_code, msg)

    # ------------------------------------------------------------------ #
    #  Organizations / networks                                            #
    # ------------------------------------------------------------------ #

    async def get_organizations(self) -> list:
        """List every organization the API key can reach."""
        return await self._get("/organizations")

    async def get_organization(self, org_id: str) -> dict:
        """Verify the org exists and the API key has access."""
        return await self._get(f"/organizations/{org_id}")

    async def list_networks(self, org_id: str) -> list:
        """List all networks in an organization."""
        return await self._get(f"/organizations/{org_id}/networks")

    async def get_network_devices(self, network_id: str) -> list:
        """GET /networks/{networkId}/devices — devices currently registered in the network."""
        return await self._get(f"/networks/{network_id}/devices")

    # ------------------------------------------------------------------ #
    #  Device claim                                                        #
    # ------------------------------------------------------------------ #

    async def claim_network_devices(self, network_id: str, cloud_ids: list[str]) -> dict:
        """
        POST /networks/{networkId}/devices/claim
        Claim Cloud IDs (issued by 'service meraki register') straight into a network.
        """
        logger.info("Claiming %d device(s) into network %s", len(cloud_ids), network_id)
        return await self._post(f"/networks/{network_id}/devices/claim", {"serials": cloud_ids})

    # ------------------------------------------------------------------ #
    #  Switch configuration                                                #
    # ------------------------------------------------------------------ #

    async def get_switch_ports(self, serial: str) -> list:
        return await self._get(f"/devices/{serial}/switch/ports")

    async def update_switch_port(self, serial: str, port_id: str, body: dict) -> dict:
        return await self._put(f"/devices/{serial}/switch/ports/{port_id}", body)

    async def create_access_policy(self, network_id: str, body: dict) -> dict:
        """POST /networks/{networkId}/switch/accessPolicies — RADIUS-backed 802.1X policy."""
        logger.info("Creating access policy '%s' in network %s", body.get("name"), network_id)
        return await self._post(f"/networks/{network_id}/switch/accessPolicies", body)

    async def update_access_control_lists(self, network_id: str, rules: list[dict]) -> dict:
        """
        PUT /networks/{networkId}/switch/accessControlLists
        Replaces the whole rule list — the caller must include the trailing allow-all.
        """
        logger.info("Replacing ACL of network %s with %d rule(s)", network_id, len(rules))
        return await self._put(f"/networks/{network_id}/switch/accessControlLists", {"rules": rules})

    # ------------------------------------------------------------------ #
    #  Convenience helpers                                                 #
    # ------------------------------------------------------------------ #

    async def verify_api_key(self, org_id: str) -> tuple[bool, str]:
        """Returns (success, org_name_or_error)."""
        try:
            org = await self.get_organization(org_id)
            return True, org.get("name", org_id)
        except MerakiAPIError as e:
            if e.status_code == 401:
                return False, "Invalid API key"
            elif e.status_code == 404:
                return False, f"Organization {org_id} not found"
            return False, e.message
        except httpx.HTTPError as e:
            return False, str(e)
