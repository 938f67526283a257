#!/usr/bin/env python3
"""
cli.py — Command-line runner for a Catalyst 9K → Meraki config migration.

Usage:
  Parse a saved running-config and print what would be migrated:
    python cli.py --config switch01.txt

  Pull the running-config over SSH instead:
    python cli.py --host 192.168.1.10 --user admin --password Cisco123!

  Migrate into an existing network (devices already present):
    python cli.py --config switch01.txt \\
      --api-key YOUR_KEY --org-id 123456 --network-id L_646829496481105433

  Claim freshly registered switches first, then migrate:
    python cli.py --config switch01.txt --org-id 123456 --network-id L_6468... \\
      --cloud-id Q2XX-AAAA-BBBB --cloud-id Q2XX-CCCC-DDDD --region com

The API key falls back to MERAKI_API_KEY (environment or .env file).
"""

import asyncio
import argparse
import json
import os

from dotenv import load_dotenv

from errors import MigrationError
from events import COLORS
from meraki_api import MerakiAPIError, REGION_BASE_URLS, DEFAULT_REGION
from migration_session import MigrationSession
from models import ApplyFlags, MerakiCredentials, ParsedConfig, SourceDeviceRequest

ANSI = {
    "#00e676": "\033[92m",
    "#ffd600": "\033[93m",
    "#ff4444": "\033[91m",
    "#00c8ff": "\033[96m",
    "#4a6080": "\033[90m",
    "#e0eeff": "\033[97m",
    "reset":   "\033[0m",
}

def c(msg, color):
    return f"{ANSI.get(COLORS.get(color, color), '')}{msg}{ANSI['reset']}"

def hr(char="═", n=62):
    print(char * n)


def print_event(data: dict):
    t = data.get("type")
    if t == "log":
        print(c(f"  {data['msg']}", data.get("color", "")))
    elif t == "claim":
        print(c(f"  {data['detail']}", data.get("color", data.get("status", ""))))


def print_summary(parsed: ParsedConfig, summary: dict):
    hr()
    print(c(f"  HOSTNAME   : {parsed.hostname or '(none)'}", "accent"))
    print(f"  VLANS      : {summary['n_vlans']}")
    print(f"  INTERFACES : {summary['n_interfaces']}  "
          f"({summary['n_access']} access / {summary['n_trunk']} trunk / {summary['n_unknown']} skipped)")
    print(f"  RADIUS     : {summary['n_radius_servers']} server(s)"
          f"{'  — dot1x system-auth-control on' if summary['dot1x_enabled'] else ''}")
    print(f"  ACLS       : {summary['n_acls']} ({summary['n_acl_rules']} rule(s))")
    hr()


async def run(args) -> int:
    session = MigrationSession()

    try:
        if args.config:
            with open(args.config, "rb") as f:
                parsed = session.upload(f.read())
        else:
            req = SourceDeviceRequest(
                host=args.host, username=args.user, password=args.password,
                port=args.port, secret=args.secret,
            )
            print(c(f"  Fetching running-config from {args.host}:{args.port}…", "accent"))
            parsed = await session.upload_from_device(req)
    except MigrationError as e:
        print(c(f"  ✗ {e}", "error"))
        return 1

    summary = session.review(ApplyFlags(
        apply_ports=not args.no_ports, apply_radius=not args.no_radius, apply_acls=not args.no_acls,
    ))
    print_summary(parsed, summary)

    if not (args.org_id and args.network_id):
        print(c("  No destination network — parse only", "warn"))
        return 0
    if not args.api_key:
        print(c("  ✗ Meraki API key required (--api-key or MERAKI_API_KEY)", "error"))
        return 1

    creds = MerakiCredentials(api_key=args.api_key, region=args.region)
    try:
        network = await session.select_destination(creds, args.org_id, args.network_id)
    except (MigrationError, MerakiAPIError) as e:
        print(c(f"  ✗ Destination: {e}", "error"))
        return 1
    print(c(f"  NETWORK : {network.name} ({network.id}) — {len(session.destination_devices)} device(s)", "muted"))
    hr("─")

    if args.cloud_id:
        try:
            async for event in session.stream_claim(args.cloud_id):
                if event["type"] == "result":
                    if event["error"]:
                        print(c(f"  ✗ Claim failed — {event['error']}", "error"))
                        return 1
                else:
                    print_event(event)
        except MigrationError as e:
            print(c(f"  ✗ {e}", "error"))
            return 1
        hr("─")
    else:
        session.skip_claim()

    summary_event = {}
    async for event in session.stream_apply():
        if event["type"] == "summary":
            summary_event = event
        else:
            print_event(event)

    hr("─")
    failed = summary_event.get("ports_failed", 0)
    print(c(
        f"  DONE — {summary_event.get('ports_pushed', 0)} port(s) pushed / {failed} failed / "
        f"{summary_event.get('policies_created', 0)} policy / {summary_event.get('acl_rules_pushed', 0)} ACL rule(s)",
        "success" if failed == 0 else "warn",
    ))

    if args.output:
        with open(args.output, "w") as f:
            json.dump(session.status().model_dump(), f, indent=2)
        print(c(f"\n  Full results saved to {args.output}", "muted"))
    return 0


def main():
    load_dotenv()
    parser = argparse.ArgumentParser(description="Catalyst 9K → Meraki Config Migration CLI")

    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--config", help="Saved IOS-XE running-config (any extension, plain text)")
    src.add_argument("--host",   help="Pull the running-config from this switch over SSH")

    # SSH credentials (for --host)
    parser.add_argument("--user",     help="SSH username")
    parser.add_argument("--password", help="SSH password")
    parser.add_argument("--port",     type=int, default=22)
    parser.add_argument("--secret",   help="Enable/secret password")

    # Meraki Dashboard API (optional — triggers claim/apply)
    parser.add_argument("--api-key",    dest="api_key", default=os.getenv("MERAKI_API_KEY"),
                        help="Meraki Dashboard API key (default: $MERAKI_API_KEY)")
    parser.add_argument("--region",     choices=list(REGION_BASE_URLS), default=DEFAULT_REGION)
    parser.add_argument("--org-id",     dest="org_id",     help="Meraki Organization ID")
    parser.add_argument("--network-id", dest="network_id", help="Meraki Network ID")
    parser.add_argument("--cloud-id",   dest="cloud_id", action="append",
                        help="Cloud ID to claim before applying (repeatable)")

    # Apply toggles
    parser.add_argument("--no-ports",  action="store_true", help="Skip switch port configuration")
    parser.add_argument("--no-radius", action="store_true", help="Skip the 802.1X access policy")
    parser.add_argument("--no-acls",   action="store_true", help="Skip ACL migration")

    # Output
    parser.add_argument("--output", help="Save session results to JSON file")

    args = parser.parse_args()

    if args.host and (not args.user or not args.password):
        parser.error("--user and --password required with --host")

    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
