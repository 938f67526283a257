"""
translation.py — IOS-XE → Meraki Dashboard payload mapping.

Pure functions: one parsed entity in, one Dashboard request body out.

  ParsedInterface  →  PUT  /devices/{serial}/switch/ports/{portId}
  RadiusServer[]   →  POST /networks/{networkId}/switch/accessPolicies
  Acl[]            →  PUT  /networks/{networkId}/switch/accessControlLists

API docs:
  https://developer.cisco.com/meraki/api-v1/update-device-switch-port/
  https://developer.cisco.com/meraki/api-v1/create-network-switch-access-policy/
  https://developer.cisco.com/meraki/api-v1/update-network-switch-access-control-lists/
"""

from typing import Optional

from models import ParsedInterface, RadiusServer, Acl, AclRule

ACCESS_POLICY_NAME     = "Cat9K-RADIUS-Policy"
RADIUS_SECRET_FALLBACK = "changeme"  # used when the source config carried no key

ACL_PROTOCOLS = {"tcp", "udp", "icmp", "any"}

# Meraki switch ACLs end in an implicit deny; this keeps IOS-XE's
# "traffic not matched by an ACL is forwarded" behaviour.
DEFAULT_ALLOW_RULE = {
    "comment":  "Default allow all",
    "policy":   "allow",
    "protocol": "any",
    "srcCidr":  "any",
    "dstCidr":  "any",
}


def port_payload(iface: ParsedInterface) -> Optional[dict]:
    """Switch port body, or None for unknown-mode interfaces (never migrated)."""
    if iface.mode == "unknown":
        return None

    body = {
        "name":       iface.description or iface.short_name,
        "type":       iface.mode,
        "poeEnabled": True,
    }
    if iface.mode == "access":
        body["vlan"] = iface.access_vlan or 1
    else:
        body["allowedVlans"] = iface.trunk_allowed_vlans or "all"
        if iface.native_vlan is not None:
            body["vlan"] = iface.native_vlan
    return body


def describe_port(iface: ParsedInterface, body: dict) -> str:
    """Short log text: 'access VLAN 20' / 'trunk (10,20,30)'."""
    if iface.mode == "access":
        return f"access VLAN {body['vlan']}"
    return f"trunk ({body['allowedVlans']})"


def access_policy_payload(servers: list[RadiusServer]) -> dict:
    """One 802.1X access policy backed by every parsed RADIUS server."""
    return {
        "name": ACCESS_POLICY_NAME,
        "radiusServers": [
            {"host": s.ip, "port": s.auth_port, "secret": s.key or RADIUS_SECRET_FALLBACK}
            for s in servers
        ],
        "radiusTestingEnabled":           False,
        "radiusCoaSupportEnabled":        False,
        "radiusAccountingEnabled":        False,
        "radiusGroupAttribute":           "11",
        "hostMode":                       "Single-Host",
        "accessPolicyType":               "802.1x",
        "voiceVlanClients":               True,
        "urlRedirectWalledGardenEnabled": False,
        "dot1x": {"controlDirection": "inbound"},
    }


def normalize_protocol(protocol: str) -> str:
    """tcp/udp/icmp pass through (any case); ip and everything else become 'any'."""
    p = protocol.lower()
    return p if p in ACL_PROTOCOLS else "any"


def acl_rule_payload(rule: AclRule) -> dict:
    body = {
        "policy":   "allow" if rule.action == "permit" else "deny",
        "protocol": normalize_protocol(rule.protocol),
        "srcCidr":  rule.src_cidr,
        "dstCidr":  rule.dst_cidr,
    }
    if rule.src_port:
        body["srcPort"] = rule.src_port
    if rule.dst_port:
        body["dstPort"] = rule.dst_port
    if rule.comment:
        body["comment"] = rule.comment
    return body


def acl_rules_payload(acls: list[Acl]) -> list[dict]:
    """
    Flatten every ACL (in parsed order) into one Meraki rule list.
    The last element is always DEFAULT_ALLOW_RULE; callers report
    len(result) - 1 as the number of rules pushed.
    """
    rules = [acl_rule_payload(rule) for acl in acls for rule in acl.rules]
    rules.append(dict(DEFAULT_ALLOW_RULE))
    return rules
