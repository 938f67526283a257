"""
errors.py — Exceptions raised by the migration engine.

Remote Dashboard failures use MerakiAPIError from meraki_api.py.
"""


class MigrationError(Exception):
    """Base class for migration engine errors."""


class ParseError(MigrationError):
    """Raw configuration input could not be read as text."""


class ValidationError(MigrationError):
    """User-supplied input (cloud IDs, target selection, phase order) was rejected."""


class DeviceConnectionError(MigrationError):
    """SSH to the source switch failed while fetching its running-config."""

    def __init__(self, host: str, message: str):
        self.host = host
        self.message = message
        super().__init__(f"{host}: {message}")
