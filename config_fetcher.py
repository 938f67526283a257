"""
config_fetcher.py — Pulls 'show running-config' from a live Catalyst switch.

Alternative to uploading a saved config: SSH in with Netmiko, grab the
running-config and hand the text to the parser. Netmiko is blocking, so every
call runs in the default executor.
"""

import asyncio
import logging

from netmiko import ConnectHandler, NetmikoTimeoutException, NetmikoAuthenticationException

from errors import DeviceConnectionError
from models import SourceDeviceRequest

logger = logging.getLogger(__name__)


class RunningConfigFetcher:
    def __init__(self, req: SourceDeviceRequest):
        self.req  = req
        self.conn = None

    def _connect(self):
        return ConnectHandler(
            device_type="cisco_ios",
            host=self.req.host,
            username=self.req.username,
            password=self.req.password,
            port=self.req.port,
            secret=self.req.secret or self.req.password,
            timeout=30,
            auth_timeout=20,
            fast_cli=False,
        )

    def _get_running_config(self) -> str:
        return self.conn.send_command("show running-config", read_timeout=60)

    async def fetch(self) -> str:
        """Returns the raw running-config. Raises DeviceConnectionError on any SSH failure."""
        loop = asyncio.get_event_loop()
        logger.info("Fetching running-config from %s:%d", self.req.host, self.req.port)
        try:
            self.conn = await loop.run_in_executor(None, self._connect)
        except NetmikoAuthenticationException:
            raise DeviceConnectionError(self.req.host, "SSH authentication failed — check credentials and privilege level")
        except NetmikoTimeoutException:
            raise DeviceConnectionError(self.req.host, f"SSH connection timed out on port {self.req.port}")
        except Exception as e:
            raise DeviceConnectionError(self.req.host, f"SSH error: {e}")

        try:
            cfg = await loop.run_in_executor(None, self._get_running_config)
        except Exception as e:
            raise DeviceConnectionError(self.req.host, f"'show running-config' failed: {e}")
        finally:
            self.conn.disconnect()

        logger.info("Fetched %d line(s) of running-config from %s", len(cfg.splitlines()), self.req.host)
        return cfg
