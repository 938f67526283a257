# conftest.py — shared pytest fixtures for the Catalyst → Meraki migration test suite

import sys
import os

# Ensure the project directory is on the path so backend modules
# (models, config_parser, meraki_api, etc.) can be imported from tests.
sys.path.insert(0, os.path.dirname(__file__))

import pytest
from unittest.mock import AsyncMock, MagicMock
from models import MerakiCredentials, TargetNetwork, TargetDevice, SourceDeviceRequest


# ------------------------------------------------------------------ #
#  Sample running-config                                               #
# ------------------------------------------------------------------ #

SAMPLE_CONFIG = """\
!
version 17.9
!
hostname C9300-ACCESS-01
!
dot1x system-auth-control
!
vlan 10
 name USERS
!
vlan 20
 name VOICE
!
vlan 1002
 name fddi-default
!
interface GigabitEthernet1/0/1
 description Uplink to core
 switchport trunk allowed vlan 10,20,30
 switchport trunk native vlan 99
 switchport mode trunk
!
interface GigabitEthernet1/0/5
 description Desk 5
 switchport access vlan 20
 switchport mode access
 authentication port-control auto
 dot1x pae authenticator
 spanning-tree portfast
!
interface GigabitEthernet1/0/6
 shutdown
!
interface Vlan10
 ip address 10.10.10.1 255.255.255.0
!
radius server ISE-1
 address ipv4 10.1.1.10 auth-port 1812 acct-port 1813
 key 7 070C285F4D06
!
radius server ISE-EMPTY
 key NoAddressHere
!
ip access-list extended GUEST-IN
 10 remark Block RFC1918
 20 deny ip any 10.0.0.0 0.255.255.255
 30 permit tcp host 192.168.50.10 any eq 443
 40 permit udp any range 16384 32767 any
!
ip access-list extended EMPTY-ACL
!
line vty 0 4
 transport input ssh
!
end
"""


@pytest.fixture
def sample_config():
    return SAMPLE_CONFIG


# ------------------------------------------------------------------ #
#  Destination fixtures                                                #
# ------------------------------------------------------------------ #

@pytest.fixture
def credentials():
    return MerakiCredentials(api_key="test-api-key-abc123", region="com")


@pytest.fixture
def network():
    return TargetNetwork(id="L_646829496481105433", name="HQ Network", organization_id="123456")


@pytest.fixture
def c9300():
    return TargetDevice(serial="Q2XX-AAAA-0001", name="hq-sw-01", model="C9300-48U")


@pytest.fixture
def source_device():
    return SourceDeviceRequest(host="192.168.1.10", username="admin", password="Cisco123!")


# ------------------------------------------------------------------ #
#  Netmiko mock                                                        #
# ------------------------------------------------------------------ #

def make_netmiko_mock(running_config=SAMPLE_CONFIG):
    """MagicMock that behaves like a Netmiko ConnectHandler for 'show running-config'."""
    mock = MagicMock()

    def send_command(cmd, **kwargs):
        if cmd.strip() == "show running-config":
            return running_config
        return ""

    mock.send_command.side_effect = send_command
    mock.disconnect.return_value = None
    return mock


@pytest.fixture
def netmiko_mock():
    return make_netmiko_mock()


# ------------------------------------------------------------------ #
#  Meraki API mock                                                     #
# ------------------------------------------------------------------ #

def make_ports(*port_ids):
    return [{"portId": str(p), "name": None, "enabled": True} for p in port_ids]


@pytest.fixture
def meraki_api_mock():
    """Mock MerakiDashboardClient: every call succeeds, the C9300 has ports 1-48."""
    mock = AsyncMock()
    mock.verify_api_key.return_value = (True, "Test Organization")
    mock.list_networks.return_value = [
        {"id": "L_646829496481105433", "name": "HQ Network", "productTypes": ["switch"]},
        {"id": "L_999999999999999999", "name": "Branch Network", "productTypes": ["switch"]},
    ]
    mock.get_network_devices.return_value = [
        {"serial": "Q2XX-AAAA-0001", "name": "hq-sw-01", "model": "C9300-48U"},
        {"serial": "Q2MR-ZZZZ-0009", "name": "hq-ap-01", "model": "MR46"},
    ]
    mock.claim_network_devices.return_value = {"serials": ["Q2XX-AAAA-0001"]}
    mock.get_switch_ports.return_value = make_ports(*range(1, 49))
    mock.update_switch_port.return_value = {}
    mock.create_access_policy.return_value = {"accessPolicyNumber": "1"}
    mock.update_access_control_lists.return_value = {"rules": []}
    return mock
