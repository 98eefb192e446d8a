"""
Transit notification wire format.

A notification is a fixed 25-byte packet carried in the manufacturer-specific
data field of a BLE advertisement. It is small enough to fit in a legacy
advertisement alongside the 2-byte company identifier.

Format (packed, little-endian):
    - Version (1 byte): Protocol version
    - Source ID (4 bytes): Opaque station identifier
    - Notification ID (4 bytes): Opaque per-event identifier, dedup key
    - Event/Destination (1 byte): high nibble = event_id, low = destination_id
    - Type/Status (1 byte): high nibble = transport_type, low = transport_status
    - Duration (2 bytes): Seconds to keep relaying, u16
    - Infra tag (8 bytes): Truncated HMAC-SHA256 (infrastructure key)
    - Client tag (4 bytes): Truncated HMAC-SHA256 (client key), zero = unset

Both tags authenticate the base payload: bytes [0..13).
"""

import struct
from dataclasses import dataclass, replace
from enum import IntEnum

from .errors import InvalidEnum, TooShort, VersionMismatch

# Custom BLE company identifier used by the protocol
MANUFACTURER_ID = 0xFFFF

PROTOCOL_VERSION = 1

INFRA_TAG_LEN = 8
CLIENT_TAG_LEN = 4

# version, source_id, notification_id, event_dest, type_status, duration_secs
_BASE_FORMAT = struct.Struct('<B4s4sBBH')

BASE_PAYLOAD_SIZE = _BASE_FORMAT.size                                # 13
NOTIFICATION_SIZE = BASE_PAYLOAD_SIZE + INFRA_TAG_LEN + CLIENT_TAG_LEN  # 25

INFRA_TAG_OFFSET = BASE_PAYLOAD_SIZE
CLIENT_TAG_OFFSET = INFRA_TAG_OFFSET + INFRA_TAG_LEN

EMPTY_CLIENT_TAG = bytes(CLIENT_TAG_LEN)
EMPTY_INFRA_TAG = bytes(INFRA_TAG_LEN)

MAX_DURATION_SECS = 0xFFFF


class TransportType(IntEnum):
    """Kind of vehicle the notification is about."""
    BUS = 1
    TRAIN = 2

    @classmethod
    def from_nibble(cls, value: int) -> 'TransportType':
        try:
            return cls(value)
        except ValueError:
            raise InvalidEnum('transport type', value) from None


class TransportStatus(IntEnum):
    """What the vehicle is doing at the stop."""
    PASSING = 1
    COMING = 2
    LATE = 3

    @classmethod
    def from_nibble(cls, value: int) -> 'TransportStatus':
        try:
            return cls(value)
        except ValueError:
            raise InvalidEnum('transport status', value) from None


def pack_nibbles(high: int, low: int) -> int:
    """Pack two 4-bit values into one byte, ``high`` in the upper nibble."""
    if not 0 <= high <= 0x0F or not 0 <= low <= 0x0F:
        raise ValueError(f"nibble out of range: high={high} low={low}")
    return (high << 4) | low


def unpack_nibbles(value: int):
    """Split a byte into its (high, low) nibbles."""
    return (value >> 4) & 0x0F, value & 0x0F


def format_id(value: bytes) -> str:
    """Format a 4-byte identifier for display (e.g. "A1B2C3D4")."""
    return value.hex().upper()


@dataclass(frozen=True)
class NotificationPacket:
    """A decoded transit notification."""
    source_id: bytes
    notification_id: bytes
    event_id: int
    destination_id: int
    transport_type: TransportType
    transport_status: TransportStatus
    duration_secs: int
    infra_tag: bytes = EMPTY_INFRA_TAG
    client_tag: bytes = EMPTY_CLIENT_TAG
    version: int = PROTOCOL_VERSION

    def __post_init__(self):
        if len(self.source_id) != 4:
            raise ValueError(f"source_id must be 4 bytes, got {len(self.source_id)}")
        if len(self.notification_id) != 4:
            raise ValueError(f"notification_id must be 4 bytes, got {len(self.notification_id)}")
        if len(self.infra_tag) != INFRA_TAG_LEN:
            raise ValueError(f"infra_tag must be {INFRA_TAG_LEN} bytes")
        if len(self.client_tag) != CLIENT_TAG_LEN:
            raise ValueError(f"client_tag must be {CLIENT_TAG_LEN} bytes")
        if not 0 <= self.duration_secs <= MAX_DURATION_SECS:
            raise ValueError(f"duration_secs out of range: {self.duration_secs}")

    @property
    def has_client_tag(self) -> bool:
        """True once a relay has signed the client tag."""
        return self.client_tag != EMPTY_CLIENT_TAG

    def with_tags(self, infra_tag: bytes = None, client_tag: bytes = None) -> 'NotificationPacket':
        """Return a copy with the given tag(s) replaced."""
        changes = {}
        if infra_tag is not None:
            changes['infra_tag'] = bytes(infra_tag)
        if client_tag is not None:
            changes['client_tag'] = bytes(client_tag)
        return replace(self, **changes)

    def encode(self) -> bytes:
        return encode(self)

    def __repr__(self):
        return (f"NotificationPacket(id={format_id(self.notification_id)}, "
                f"source={format_id(self.source_id)}, "
                f"{self.transport_type.name} {self.transport_status.name}, "
                f"event={self.event_id} dest={self.destination_id}, "
                f"duration={self.duration_secs}s)")


def base_payload(packet: NotificationPacket) -> bytes:
    """Return the bytes preceding both tags. This is the MAC input."""
    return _BASE_FORMAT.pack(
        packet.version,
        packet.source_id,
        packet.notification_id,
        pack_nibbles(packet.event_id, packet.destination_id),
        pack_nibbles(int(packet.transport_type), int(packet.transport_status)),
        packet.duration_secs,
    )


def encode(packet: NotificationPacket) -> bytes:
    """Encode a notification to its 25-byte wire form."""
    return base_payload(packet) + packet.infra_tag + packet.client_tag


def decode(data: bytes) -> NotificationPacket:
    """
    Decode a notification from a manufacturer-data payload.

    Raises TooShort, VersionMismatch or InvalidEnum. Bytes beyond the fixed
    notification size are ignored. Tags are not checked here.
    """
    if len(data) < NOTIFICATION_SIZE:
        raise TooShort(len(data), NOTIFICATION_SIZE)

    (version, source_id, notification_id,
     event_dest, type_status, duration_secs) = _BASE_FORMAT.unpack_from(data, 0)

    if version != PROTOCOL_VERSION:
        raise VersionMismatch(version, PROTOCOL_VERSION)

    event_id, destination_id = unpack_nibbles(event_dest)
    type_nibble, status_nibble = unpack_nibbles(type_status)
    transport_type = TransportType.from_nibble(type_nibble)
    transport_status = TransportStatus.from_nibble(status_nibble)

    return NotificationPacket(
        version=version,
        source_id=bytes(source_id),
        notification_id=bytes(notification_id),
        event_id=event_id,
        destination_id=destination_id,
        transport_type=transport_type,
        transport_status=transport_status,
        duration_secs=duration_secs,
        infra_tag=bytes(data[INFRA_TAG_OFFSET:CLIENT_TAG_OFFSET]),
        client_tag=bytes(data[CLIENT_TAG_OFFSET:NOTIFICATION_SIZE]),
    )
