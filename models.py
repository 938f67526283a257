"""
models.py — Pydantic models for the Catalyst 9K → Meraki migration engine.
"""

from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime


# ------------------------------------------------------------------ #
#  Parsed IOS-XE configuration (immutable once parsed)                 #
# ------------------------------------------------------------------ #

class ParsedVlan(BaseModel):
    id: int
    name: str

    model_config = {"frozen": True}


class ParsedInterface(BaseModel):
    name: str = Field(..., description="Full interface name, e.g. GigabitEthernet1/0/24")
    short_name: str = Field(..., description="Abbreviated name, e.g. Gi1/0/24")
    description: str = ""
    mode: Literal["access", "trunk", "unknown"] = "unknown"
    access_vlan: Optional[int] = None
    trunk_allowed_vlans: Optional[str] = Field(default=None, description="Raw allowed list or 'all'")
    native_vlan: Optional[int] = None
    port_fast: bool = False
    dot1x: bool = False

    model_config = {"frozen": True}


class RadiusServer(BaseModel):
    name: str
    ip: str
    auth_port: int = 1812
    acct_port: int = 1813
    key: str = ""

    model_config = {"frozen": True}


class AclRule(BaseModel):
    comment: str = ""
    action: Literal["permit", "deny"]
    protocol: str
    src_cidr: str
    src_port: Optional[str] = None
    dst_cidr: str
    dst_port: Optional[str] = None

    model_config = {"frozen": True}


class Acl(BaseModel):
    name: str
    rules: list[AclRule] = []

    model_config = {"frozen": True}


class ParsedConfig(BaseModel):
    hostname: str = ""
    vlans: list[ParsedVlan] = []
    interfaces: list[ParsedInterface] = []
    radius_servers: list[RadiusServer] = []
    dot1x_enabled: bool = False
    acls: list[Acl] = []

    model_config = {"frozen": True}


# ------------------------------------------------------------------ #
#  Destination (Meraki Dashboard)                                      #
# ------------------------------------------------------------------ #

class MerakiCredentials(BaseModel):
    api_key: str = Field(..., description="Meraki Dashboard API key")
    region: str = Field(default="com", description="Dashboard region code: com, in, cn, ca, us-gov")
    base_url: Optional[str] = Field(default=None, description="Explicit API base URL (overrides region)")


class TargetNetwork(BaseModel):
    id: str
    name: str = ""
    organization_id: Optional[str] = None


class TargetDevice(BaseModel):
    serial: str
    name: Optional[str] = None
    model: str = ""


class ClaimedDevice(BaseModel):
    cloud_id: str
    serial: str
    name: str
    model: str = ""

    model_config = {"frozen": True}


class ClaimResult(BaseModel):
    claimed: list[ClaimedDevice] = []
    timed_out: bool = False


# ------------------------------------------------------------------ #
#  Apply run                                                           #
# ------------------------------------------------------------------ #

class ApplyFlags(BaseModel):
    apply_ports: bool = True
    apply_radius: bool = True
    apply_acls: bool = True


class ApplySessionState(BaseModel):
    ports_pushed: int = 0
    ports_failed: int = 0
    policies_created: int = 0
    acl_rules_pushed: int = 0
    log: list[str] = []
    # Checkpoint fields — a resumed run skips whatever is recorded here
    applied_ports: list[str] = Field(default_factory=list, description="'<serial>:<portId>' keys already pushed")
    radius_applied: bool = False
    acls_applied: bool = False
    was_stopped: bool = False

    def summary(self) -> dict:
        return {
            "ports_pushed":     self.ports_pushed,
            "ports_failed":     self.ports_failed,
            "policies_created": self.policies_created,
            "acl_rules_pushed": self.acl_rules_pushed,
        }


# ------------------------------------------------------------------ #
#  API request bodies                                                  #
# ------------------------------------------------------------------ #

class SourceDeviceRequest(BaseModel):
    host: str = Field(..., description="Switch IP address or hostname")
    username: str = Field(..., description="SSH username (must be privilege-15)")
    password: str = Field(..., description="SSH password")
    port: int = Field(default=22, description="SSH port")
    secret: Optional[str] = Field(default=None, description="Enable secret (if required)")

    model_config = {"json_schema_extra": {"example": {"host": "192.168.1.10", "username": "admin", "password": "Cisco123!", "port": 22}}}


class ParseRequest(BaseModel):
    config_text: str = Field(..., description="Raw IOS-XE running-config text")


class DestinationRequest(BaseModel):
    credentials: MerakiCredentials
    organization_id: str
    network_id: str

    model_config = {"json_schema_extra": {"example": {
                "credentials": {"api_key": "your-api-key-here", "region": "com"},
                "organization_id": "123456",
                "network_id": "L_646829496481105433",
}}}


class SessionStatus(BaseModel):
    session_id: str
    phase: Literal["upload", "review", "destination", "claim", "apply", "results"]
    hostname: Optional[str] = None
    network: Optional[TargetNetwork] = None
    flags: ApplyFlags = Field(default_factory=ApplyFlags)
    claimed_devices: list[ClaimedDevice] = []
    results: Optional[ApplySessionState] = None
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
