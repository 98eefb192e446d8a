"""
Exception hierarchy for the transit beacon relay.

Every error raised inside the relay duty cycle is scoped to a single packet or
a single store entry. The relay catches these at the phase boundary, logs them
and carries on with the next candidate.
"""


class TransitBeaconError(Exception):
    """Base class for all transit beacon errors."""


# Protocol (decode time)

class ProtocolError(TransitBeaconError):
    """Wire-format problem with a notification buffer."""


class DecodeError(ProtocolError):
    """Buffer could not be decoded into a notification."""


class TooShort(DecodeError):
    """Buffer is smaller than the fixed notification size."""

    def __init__(self, length: int, expected: int):
        super().__init__(f"payload too short: {length} < {expected} bytes")
        self.length = length
        self.expected = expected


class VersionMismatch(DecodeError):
    """Version byte differs from the supported protocol version."""

    def __init__(self, version: int, expected: int):
        super().__init__(f"unsupported protocol version {version} (expected {expected})")
        self.version = version
        self.expected = expected


class InvalidEnum(DecodeError):
    """Nibble value does not map to a known enumeration member."""

    def __init__(self, kind: str, value: int):
        super().__init__(f"invalid {kind}: {value}")
        self.kind = kind
        self.value = value


# Authentication (verification time)

class AuthError(TransitBeaconError):
    """Authentication tag problem."""


class InfraTagMismatch(AuthError):
    """Infrastructure tag does not match the base payload."""


# Store (merge time)

class StoreError(TransitBeaconError):
    """Notification store problem."""


class StoreFull(StoreError):
    """Store is at capacity and the candidate id is not already present."""

    def __init__(self, capacity: int):
        super().__init__(f"active list full ({capacity} entries)")
        self.capacity = capacity


# Radio

class RadioError(TransitBeaconError):
    """Radio collaborator failure."""


class StartFailed(RadioError):
    """Advertisement could not be started."""


class StopFailed(RadioError):
    """Advertisement could not be stopped."""


class ScanFailed(RadioError):
    """Scan window could not be run to completion."""
