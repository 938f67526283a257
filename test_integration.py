# tests/test_integration.py
# Integration tests — connect to a REAL switch and the REAL Meraki Dashboard API.
#
# SETUP:
#   Copy .env.example to .env and fill in your values, then run:
#     pytest test_integration.py -v -s
#
# WARNING: the end-to-end test pushes port, access-policy and ACL configuration
# into the configured network. Only run it against a dedicated lab network.

import pytest
import os
from dotenv import load_dotenv

load_dotenv()

# Read from environment — skip all tests if not configured
SWITCH_HOST        = os.getenv("TEST_SWITCH_HOST")
SWITCH_USERNAME    = os.getenv("TEST_SWITCH_USERNAME")
SWITCH_PASSWORD    = os.getenv("TEST_SWITCH_PASSWORD")
SWITCH_SECRET      = os.getenv("TEST_SWITCH_SECRET", "")
MERAKI_API_KEY     = os.getenv("TEST_MERAKI_API_KEY")
MERAKI_REGION      = os.getenv("TEST_MERAKI_REGION", "com")
MERAKI_ORG_ID      = os.getenv("TEST_MERAKI_ORG_ID")
MERAKI_NETWORK_ID  = os.getenv("TEST_MERAKI_NETWORK_ID")
ALLOW_APPLY        = os.getenv("TEST_ALLOW_APPLY", "").lower() in ("1", "true", "yes")

SWITCH_AVAILABLE     = bool(SWITCH_HOST and SWITCH_USERNAME and SWITCH_PASSWORD)
MERAKI_API_AVAILABLE = bool(MERAKI_API_KEY and MERAKI_ORG_ID and MERAKI_NETWORK_ID)

skip_no_switch = pytest.mark.skipif(not SWITCH_AVAILABLE,     reason="No real switch configured in .env")
skip_no_api    = pytest.mark.skipif(not MERAKI_API_AVAILABLE, reason="No Meraki API credentials in .env")
skip_no_apply  = pytest.mark.skipif(not (SWITCH_AVAILABLE and MERAKI_API_AVAILABLE and ALLOW_APPLY),
                                    reason="Need switch, API and TEST_ALLOW_APPLY=1")


def source_request():
    from models import SourceDeviceRequest
    return SourceDeviceRequest(
        host=SWITCH_HOST,
        username=SWITCH_USERNAME,
        password=SWITCH_PASSWORD,
        secret=SWITCH_SECRET or None,
    )


def credentials():
    from models import MerakiCredentials
    return MerakiCredentials(api_key=MERAKI_API_KEY, region=MERAKI_REGION)


# ------------------------------------------------------------------ #
#  Source switch                                                       #
# ------------------------------------------------------------------ #

class TestRealSwitch:

    @skip_no_switch
    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_fetch_and_parse_running_config(self):
        """Pull 'show running-config' and make sure the parser finds the basics."""
        from config_fetcher import RunningConfigFetcher
        from config_parser import parse, summarize

        raw = await RunningConfigFetcher(source_request()).fetch()
        parsed = parse(raw)
        summary = summarize(parsed)

        print(f"\n  Hostname:   {parsed.hostname}")
        print(f"  VLANs:      {summary['n_vlans']}")
        print(f"  Interfaces: {summary['n_interfaces']} "
              f"({summary['n_access']} access / {summary['n_trunk']} trunk)")
        print(f"  RADIUS:     {summary['n_radius_servers']}")
        print(f"  ACL rules:  {summary['n_acl_rules']}")

        assert parsed.hostname, "running-config had no hostname line"
        assert summary["n_interfaces"] > 0, "no physical interfaces parsed"


# ------------------------------------------------------------------ #
#  Meraki API — real API calls (read-only)                            #
# ------------------------------------------------------------------ #

class TestRealMerakiAPI:

    @skip_no_api
    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_verify_api_key(self):
        from meraki_api import MerakiDashboardClient

        client = MerakiDashboardClient.from_credentials(credentials())
        ok, name = await client.verify_api_key(MERAKI_ORG_ID)

        print(f"\n  API Key valid: {ok}")
        print(f"  Org name:      {name}")

        assert ok is True, f"API key verification failed: {name}"

    @skip_no_api
    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_destination_lookup(self):
        """Select the destination network the same way a session does."""
        from migration_session import MigrationSession
        from conftest import SAMPLE_CONFIG

        session = MigrationSession()
        session.upload(SAMPLE_CONFIG)
        session.review()
        network = await session.select_destination(credentials(), MERAKI_ORG_ID, MERAKI_NETWORK_ID)

        print(f"\n  Network: {network.name} ({network.id})")
        for d in session.destination_devices:
            print(f"    serial={d.serial}  model={d.model}  name={d.name}")

        assert network.id == MERAKI_NETWORK_ID

    @skip_no_api
    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_switch_ports_readable(self):
        from meraki_api import MerakiDashboardClient
        from apply_orchestrator import compatible_devices
        from models import TargetDevice

        client = MerakiDashboardClient.from_credentials(credentials())
        devices = [
            TargetDevice(serial=d["serial"], name=d.get("name"), model=d.get("model") or "")
            for d in await client.get_network_devices(MERAKI_NETWORK_ID)
        ]
        switches = [d for d in compatible_devices(devices) if d.model]
        if not switches:
            pytest.skip("No Catalyst 9K switch in the test network")

        ports = await client.get_switch_ports(switches[0].serial)
        print(f"\n  {switches[0].serial}: {len(ports)} port(s)")
        assert all("portId" in p for p in ports)


# ------------------------------------------------------------------ #
#  Full end-to-end (fetch → parse → apply)                            #
# WARNING: This writes configuration into your Meraki network!        #
# ------------------------------------------------------------------ #

class TestRealEndToEnd:

    @skip_no_apply
    @pytest.mark.asyncio
    @pytest.mark.integration
    @pytest.mark.e2e
    async def test_migrate_switch(self):
        from migration_session import MigrationSession

        session = MigrationSession()
        await session.upload_from_device(source_request())
        session.review()
        await session.select_destination(credentials(), MERAKI_ORG_ID, MERAKI_NETWORK_ID)
        session.skip_claim()

        summary = None
        async for event in session.stream_apply():
            if event["type"] == "log":
                print(f"  {event['msg']}")
            elif event["type"] == "summary":
                summary = event

        assert summary is not None
        assert summary["was_stopped"] is False
        assert session.phase == "results"
