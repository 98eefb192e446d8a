"""
Active notification store.

Bounded table of notifications a relay is currently re-broadcasting, keyed by
notification id. Expiry times live in the monotonic clock domain.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from .errors import StoreFull
from .protocol import NotificationPacket, format_id

log = logging.getLogger('beacon-store')

DEFAULT_CAPACITY = 16


@dataclass(frozen=True)
class ActiveEntry:
    """A verified notification being re-broadcast, with its expiry."""
    packet: NotificationPacket
    raw: bytes
    expires_at: float

    @property
    def notification_id(self) -> bytes:
        return self.packet.notification_id

    def remaining(self, now: float) -> float:
        """Seconds until expiry, never negative."""
        return max(0.0, self.expires_at - now)

    def to_dict(self, now: float) -> Dict:
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
            'client_tag_set': p.has_client_tag,
            'remaining_secs': int(self.remaining(now)),
            'raw': self.raw.hex(),
        }


class _Snapshot:
    """Finite, restartable view of the entries present when it was taken."""

    def __init__(self, entries):
        self._entries = tuple(entries)

    def __iter__(self) -> Iterator[ActiveEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)


class NotificationStore:
    """
    Capacity-bounded table of active notifications.

    Only the relay duty cycle writes to the store. The lock lets the status API
    read consistent snapshots from another thread.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        # dicts keep insertion order; refresh replaces the value under the same key
        self._entries: Dict[bytes, ActiveEntry] = {}
        self._lock = threading.Lock()

    def merge(self, packet: NotificationPacket, raw: bytes, now: float) -> ActiveEntry:
        """
        Add or refresh a verified notification.

        An existing id has its content replaced and its expiry reset to
        ``now + duration_secs``. A new id is inserted if there is room,
        otherwise StoreFull is raised and existing entries are untouched.
        """
        expires_at = now + packet.duration_secs
        nid = packet.notification_id

        entry = ActiveEntry(packet=packet, raw=bytes(raw), expires_at=expires_at)

        with self._lock:
            known = nid in self._entries
            if not known and len(self._entries) >= self.capacity:
                raise StoreFull(self.capacity)
            self._entries[nid] = entry

        if known:
            log.info(f"Updated notification {format_id(nid)} expiry")
        else:
            log.info(f"Added notification {format_id(nid)} to active list")
        return entry

    def prune(self, now: float) -> int:
        """Remove entries whose expiry is at or before ``now``. Returns count removed."""
        with self._lock:
            expired = [k for k, v in self._entries.items() if v.expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            log.info(f"Pruned {len(expired)} expired notification(s)")
        return len(expired)

    def snapshot(self) -> _Snapshot:
        """Entries in first-sighting order."""
        with self._lock:
            return _Snapshot(self._entries.values())

    def get(self, notification_id: bytes) -> Optional[ActiveEntry]:
        with self._lock:
            return self._entries.get(bytes(notification_id))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, notification_id) -> bool:
        with self._lock:
            return bytes(notification_id) in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
