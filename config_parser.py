"""
config_parser.py — IOS-XE running-config parser.

Splits a Catalyst 9K 'show running-config' into '!'-delimited blocks and
dispatches each block on its first line to a block classifier:

  hostname <name>                     → hostname
  vlan <id>                           → ParsedVlan   (reserved 1, 1002-1005 skipped)
  interface <PhysicalType><slot/port> → ParsedInterface
  radius server <name>                → RadiusServer (dropped without an address)
  ip access-list extended <name>      → Acl          (dropped without rules)

'dot1x system-auth-control' is a global line and is detected in any block.

Blocks that match nothing (SVIs, port-channels, line vty, …) are ignored.
A classifier that trips over a malformed stanza is logged and skipped;
one bad block never aborts the document.
"""

import re
import logging
from typing import Callable, Optional

from errors import ParseError
from models import ParsedConfig, ParsedVlan, ParsedInterface, RadiusServer, Acl, AclRule

logger = logging.getLogger(__name__)


RESERVED_VLANS = {1, 1002, 1003, 1004, 1005}

# Physical Ethernet types migrated to Meraki switch ports → IOS abbreviation
INTERFACE_ABBREVIATIONS = {
    "gigabitethernet":      "Gi",
    "fastethernet":         "Fa",
    "tengigabitethernet":   "Te",
    "twogigabitethernet":   "Tw",
    "fivegigabitethernet":  "Fi",
    "twentyfivegige":       "Twe",
    "fortygigabitethernet": "Fo",
    "hundredgige":          "Hu",
}

BLOCK_DELIMITER   = re.compile(r"^!\s*$", re.MULTILINE)
DOT1X_GLOBAL      = re.compile(r"^\s*dot1x\s+system-auth-control\s*$", re.IGNORECASE | re.MULTILINE)

HOSTNAME_LINE     = re.compile(r"^hostname\s+(\S+)", re.IGNORECASE)
VLAN_LINE         = re.compile(r"^vlan\s+(\d+)$", re.IGNORECASE)
INTERFACE_LINE    = re.compile(
    r"^interface\s+(GigabitEthernet|FastEthernet|TenGigabitEthernet|TwoGigabitEthernet|"
    r"FiveGigabitEthernet|TwentyFiveGigE|FortyGigabitEthernet|HundredGigE)(\d\S*)$",
    re.IGNORECASE,
)
RADIUS_LINE       = re.compile(r"^radius\s+server\s+(.+)$", re.IGNORECASE)
ACL_LINE          = re.compile(r"^ip\s+access-list\s+extended\s+(\S+)", re.IGNORECASE)

WILDCARD_MASK     = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")


# ── Block helpers ─────────────────────────────────────────────────────────────

def split_blocks(raw: str) -> list[str]:
    """Normalise line endings and split on bare '!' separator lines."""
    normalized = raw.replace("\r\n", "\n").replace("\r", "\n")
    return BLOCK_DELIMITER.split(normalized)


def _lines(block: str) -> list[str]:
    """Non-blank, stripped lines of a block."""
    return [l.strip() for l in block.split("\n") if l.strip()]


def first_line(block: str) -> str:
    lines = _lines(block)
    return lines[0] if lines else ""


# ── ACL helpers ───────────────────────────────────────────────────────────────

def wildcard_to_prefix(mask: str) -> int:
    """
    Convert an IOS wildcard mask to a prefix length.
    Each octet is inverted and its leading one-bits counted:
    0.0.0.255 → 24, 0.0.3.255 → 22, 0.0.0.0 → 32.
    """
    bits = 0
    for octet in mask.split("."):
        inverted = ~int(octet) & 0xFF
        while inverted & 0x80:
            bits += 1
            inverted = (inverted << 1) & 0xFF
    return bits


def parse_endpoint(tokens: list[str]) -> tuple[str, list[str]]:
    """Consume an ACL address spec → (cidr, remaining tokens)."""
    if not tokens:
        return "any", []
    if tokens[0].lower() == "any":
        return "any", tokens[1:]
    if tokens[0].lower() == "host":
        return f"{tokens[1]}/32", tokens[2:]
    ip = tokens[0]
    if len(tokens) > 1 and WILDCARD_MASK.match(tokens[1]):
        return f"{ip}/{wildcard_to_prefix(tokens[1])}", tokens[2:]
    return ip, tokens[1:]


def parse_port_spec(tokens: list[str]) -> tuple[Optional[str], list[str]]:
    """Consume an optional port operator → (port string, remaining tokens)."""
    if not tokens:
        return None, []
    op = tokens[0].lower()
    if op == "eq":
        return tokens[1], tokens[2:]
    if op == "range":
        return f"{tokens[1]}-{tokens[2]}", tokens[3:]
    if op == "gt":
        return f">{tokens[1]}", tokens[2:]
    if op == "lt":
        return f"<{tokens[1]}", tokens[2:]
    return None, tokens


def parse_acl_rule(line: str, comment: str = "") -> Optional[AclRule]:
    """Parse one permit/deny line (sequence number already stripped)."""
    m = re.match(r"^(permit|deny)\s+(.+)$", line.strip(), re.IGNORECASE)
    if not m:
        return None

    tokens = m.group(2).split()
    protocol, tokens = tokens[0], tokens[1:]
    src_cidr, tokens = parse_endpoint(tokens)
    src_port, tokens = parse_port_spec(tokens)
    dst_cidr, tokens = parse_endpoint(tokens)
    dst_port, tokens = parse_port_spec(tokens)

    return AclRule(
        comment  = comment,
        action   = m.group(1).lower(),
        protocol = protocol,
        src_cidr = src_cidr,
        src_port = src_port,
        dst_cidr = dst_cidr,
        dst_port = dst_port,
    )


# ── Block classifiers ─────────────────────────────────────────────────────────
# Each takes the raw block string and returns the parsed entity, or None if the
# block does not belong to it.

def parse_hostname_block(block: str) -> Optional[str]:
    m = HOSTNAME_LINE.match(first_line(block))
    return m.group(1) if m else None


def parse_vlan_block(block: str) -> Optional[ParsedVlan]:
    lines = _lines(block)
    m = VLAN_LINE.match(lines[0]) if lines else None
    if not m:
        return None
    vid = int(m.group(1))
    if vid in RESERVED_VLANS:
        return None

    name = f"VLAN{vid}"
    for line in lines[1:]:
        nm = re.match(r"^name\s+(.+)$", line, re.IGNORECASE)
        if nm:
            name = nm.group(1).strip()
            break
    return ParsedVlan(id=vid, name=name)


def parse_interface_block(block: str) -> Optional[ParsedInterface]:
    lines = _lines(block)
    m = INTERFACE_LINE.match(lines[0]) if lines else None
    if not m:
        return None

    iface_type, slot_port = m.group(1), m.group(2)
    fields = {
        "name":       f"{iface_type}{slot_port}",
        "short_name": f"{INTERFACE_ABBREVIATIONS[iface_type.lower()]}{slot_port}",
    }

    for line in lines[1:]:
        if d := re.match(r"^description\s+(.+)$", line, re.IGNORECASE):
            fields["description"] = d.group(1).strip()
        elif re.match(r"^switchport\s+mode\s+access", line, re.IGNORECASE):
            fields["mode"] = "access"
        elif re.match(r"^switchport\s+mode\s+trunk", line, re.IGNORECASE):
            fields["mode"] = "trunk"
        elif v := re.match(r"^switchport\s+access\s+vlan\s+(\d+)", line, re.IGNORECASE):
            fields["access_vlan"] = int(v.group(1))
        elif v := re.match(r"^switchport\s+trunk\s+allowed\s+vlan\s+(.+)$", line, re.IGNORECASE):
            fields["trunk_allowed_vlans"] = v.group(1).strip()
        elif v := re.match(r"^switchport\s+trunk\s+native\s+vlan\s+(\d+)", line, re.IGNORECASE):
            fields["native_vlan"] = int(v.group(1))
        elif re.match(r"^spanning-tree\s+portfast", line, re.IGNORECASE):
            fields["port_fast"] = True
        elif re.match(r"^(dot1x\s+pae\s+authenticator|authentication\s+port-control|access-session\s+port-control)",
                      line, re.IGNORECASE):
            fields["dot1x"] = True

    # An access port never carries a trunk list
    if fields.get("mode") == "access":
        fields.pop("trunk_allowed_vlans", None)

    return ParsedInterface(**fields)


def parse_radius_block(block: str) -> Optional[RadiusServer]:
    lines = _lines(block)
    m = RADIUS_LINE.match(lines[0]) if lines else None
    if not m:
        return None

    srv = {"name": m.group(1).strip(), "ip": ""}
    for line in lines[1:]:
        if a := re.match(r"^address\s+ipv4\s+(\S+)", line, re.IGNORECASE):
            srv["ip"] = a.group(1)
            if p := re.search(r"auth-port\s+(\d+)", line, re.IGNORECASE):
                srv["auth_port"] = int(p.group(1))
            if p := re.search(r"acct-port\s+(\d+)", line, re.IGNORECASE):
                srv["acct_port"] = int(p.group(1))
        elif p := re.match(r"^auth-port\s+(\d+)", line, re.IGNORECASE):
            srv["auth_port"] = int(p.group(1))
        elif p := re.match(r"^acct-port\s+(\d+)", line, re.IGNORECASE):
            srv["acct_port"] = int(p.group(1))
        elif k := re.match(r"^key\s+(?:\d\s+)?(\S+)$", line, re.IGNORECASE):
            srv["key"] = k.group(1)

    if not srv["ip"]:
        logger.debug("radius server %s has no address — dropped", srv["name"])
        return None
    return RadiusServer(**srv)


def parse_acl_block(block: str) -> Optional[Acl]:
    lines = _lines(block)
    m = ACL_LINE.match(lines[0]) if lines else None
    if not m:
        return None

    rules: list[AclRule] = []
    pending_remark = ""
    for line in lines[1:]:
        stripped = re.sub(r"^\d+\s+", "", line)
        if r := re.match(r"^remark\s+(.+)$", stripped, re.IGNORECASE):
            pending_remark = r.group(1).strip()
            continue
        try:
            rule = parse_acl_rule(stripped, comment=pending_remark)
        except (IndexError, ValueError) as e:
            logger.debug("ACL %s: skipping malformed rule %r (%s)", m.group(1), line, e)
            continue
        if rule:
            rules.append(rule)
            pending_remark = ""

    if not rules:
        return None
    return Acl(name=m.group(1), rules=rules)


# ── Parser ────────────────────────────────────────────────────────────────────

# Dispatch table: (result key, classifier). The first classifier that returns a
# value claims the block.
BLOCK_CLASSIFIERS: list[tuple[str, Callable[[str], object]]] = [
    ("hostname",       parse_hostname_block),
    ("vlans",          parse_vlan_block),
    ("interfaces",     parse_interface_block),
    ("radius_servers", parse_radius_block),
    ("acls",           parse_acl_block),
]


class ConfigParser:
    def parse(self, raw) -> ParsedConfig:
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ParseError(f"configuration is not UTF-8 text: {e}") from e
        if not isinstance(raw, str):
            raise ParseError(f"expected configuration text, got {type(raw).__name__}")
        if "\x00" in raw:
            raise ParseError("configuration contains binary data")

        result = {
            "hostname":       "",
            "vlans":          [],
            "interfaces":     [],
            "radius_servers": [],
            "dot1x_enabled":  False,
            "acls":           [],
        }

        for block in split_blocks(raw):
            if not block.strip():
                continue

            if DOT1X_GLOBAL.search(block):
                result["dot1x_enabled"] = True

            for key, classify in BLOCK_CLASSIFIERS:
                try:
                    parsed = classify(block)
                except (IndexError, ValueError, KeyError) as e:
                    logger.warning("Skipping malformed %s block %r: %s", key, first_line(block), e)
                    break
                if parsed is None:
                    continue
                if key == "hostname":
                    result["hostname"] = parsed
                else:
                    result[key].append(parsed)
                break

        parsed_config = ParsedConfig(**result)
        logger.info(
            "Parsed config '%s': %d VLAN(s), %d interface(s), %d RADIUS server(s), %d ACL(s), dot1x=%s",
            parsed_config.hostname, len(parsed_config.vlans), len(parsed_config.interfaces),
            len(parsed_config.radius_servers), len(parsed_config.acls), parsed_config.dot1x_enabled,
        )
        return parsed_config


def parse(raw) -> ParsedConfig:
    """Module-level convenience wrapper around ConfigParser().parse()."""
    return ConfigParser().parse(raw)


def extract_port_number(interface_name: str) -> str:
    """Last '/'-separated segment: GigabitEthernet1/0/24 → '24'."""
    return interface_name.split("/")[-1]


def summarize(parsed: ParsedConfig) -> dict:
    """Counts shown in the review phase; also decides which apply toggles are usable."""
    migratable = [i for i in parsed.interfaces if i.mode != "unknown"]
    return {
        "hostname":         parsed.hostname,
        "n_vlans":          len(parsed.vlans),
        "n_interfaces":     len(parsed.interfaces),
        "n_access":         sum(1 for i in migratable if i.mode == "access"),
        "n_trunk":          sum(1 for i in migratable if i.mode == "trunk"),
        "n_unknown":        len(parsed.interfaces) - len(migratable),
        "n_radius_servers": len(parsed.radius_servers),
        "n_acls":           len(parsed.acls),
        "n_acl_rules":      sum(len(a.rules) for a in parsed.acls),
        "dot1x_enabled":    parsed.dot1x_enabled,
        "can_apply_ports":  bool(parsed.interfaces),
        "can_apply_radius": bool(parsed.radius_servers),
        "can_apply_acls":   bool(parsed.acls),
    }
