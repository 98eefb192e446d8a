"""
Client-side receiver.

The client application holds only the client key. It decodes notifications
heard over the air and checks the client tag added by the first relay.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from .auth import DEFAULT_CLIENT_KEY, ClientVerifier
from .protocol import NOTIFICATION_SIZE, NotificationPacket, decode, format_id

log = logging.getLogger('beacon-client')


@dataclass
class ReceivedNotification:
    """A notification as seen by the client application."""
    packet: NotificationPacket
    client_verified: bool
    raw: bytes
    received_at: datetime
    rssi: Optional[int] = None

    def to_dict(self) -> Dict:
        """Convert to JSON-serializable dict."""
        p = self.packet
        return {
            'notification_id': format_id(p.notification_id),
            'source_id': format_id(p.source_id),
            'event_id': p.event_id,
            'destination_id': p.destination_id,
            'transport_type': p.transport_type.name.lower(),
            'transport_status': p.transport_status.name.lower(),
            'duration_secs': p.duration_secs,
            'client_verified': self.client_verified,
            'received_at': self.received_at.isoformat(),
            'rssi': self.rssi,
        }


class NotificationReceiver:
    """Parses and verifies notifications with the client key."""

    def __init__(self, client_key=DEFAULT_CLIENT_KEY):
        self.verifier = ClientVerifier(client_key)

    def parse(self, payload: bytes, rssi: Optional[int] = None) -> ReceivedNotification:
        """
        Decode ``payload`` and check its client tag.

        Raises DecodeError for malformed payloads. A missing or wrong client
        tag is reported through ``client_verified`` rather than raised.
        """
        packet = decode(payload)

        if not packet.has_client_tag:
            log.warning("Client tag not set (no relay in chain)")
            verified = False
        else:
            verified = self.verifier.client_verify(packet)
            if not verified:
                log.warning(f"Client tag mismatch for {format_id(packet.notification_id)} "
                            f"- notification may be forged")

        return ReceivedNotification(
            packet=packet,
            client_verified=verified,
            raw=bytes(payload[:NOTIFICATION_SIZE]),
            received_at=datetime.now(timezone.utc),
            rssi=rssi,
        )


def parse_notification(payload: bytes, rssi: Optional[int] = None,
                       client_key=DEFAULT_CLIENT_KEY) -> ReceivedNotification:
    """Convenience wrapper around NotificationReceiver.parse."""
    return NotificationReceiver(client_key).parse(payload, rssi)
