# tests/test_config_fetcher.py
# Unit tests for RunningConfigFetcher — all SSH calls are mocked.

import pytest
from unittest.mock import patch
from netmiko import NetmikoTimeoutException, NetmikoAuthenticationException

from config_fetcher import RunningConfigFetcher
from errors import DeviceConnectionError
from conftest import SAMPLE_CONFIG


class TestRunningConfigFetcher:

    @pytest.mark.asyncio
    async def test_fetch_returns_running_config(self, source_device, netmiko_mock):
        with patch("config_fetcher.ConnectHandler", return_value=netmiko_mock) as MockHandler:
            cfg = await RunningConfigFetcher(source_device).fetch()

        assert cfg == SAMPLE_CONFIG
        kwargs = MockHandler.call_args.kwargs
        assert kwargs["device_type"] == "cisco_ios"
        assert kwargs["host"] == "192.168.1.10"
        # no enable secret given → falls back to the login password
        assert kwargs["secret"] == "Cisco123!"
        netmiko_mock.send_command.assert_called_once_with("show running-config", read_timeout=60)
        netmiko_mock.disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_auth_failure(self, source_device):
        with patch("config_fetcher.ConnectHandler", side_effect=NetmikoAuthenticationException("denied")):
            with pytest.raises(DeviceConnectionError) as exc:
                await RunningConfigFetcher(source_device).fetch()

        assert exc.value.host == "192.168.1.10"
        assert "authentication failed" in exc.value.message

    @pytest.mark.asyncio
    async def test_timeout(self, source_device):
        with patch("config_fetcher.ConnectHandler", side_effect=NetmikoTimeoutException("timed out")):
            with pytest.raises(DeviceConnectionError) as exc:
                await RunningConfigFetcher(source_device).fetch()

        assert "timed out" in str(exc.value)

    @pytest.mark.asyncio
    async def test_command_failure_still_disconnects(self, source_device, netmiko_mock):
        netmiko_mock.send_command.side_effect = OSError("socket closed")
        with patch("config_fetcher.ConnectHandler", return_value=netmiko_mock):
            with pytest.raises(DeviceConnectionError):
                await RunningConfigFetcher(source_device).fetch()

        netmiko_mock.disconnect.assert_called_once()
