"""
Transit Beacon Relay

Authenticated flood relay for BLE transit stop notifications.

Components:
- protocol: Fixed 25-byte notification wire format
- auth: Two-tier truncated HMAC chain (infrastructure / client)
- store: Bounded, TTL-driven active notification store
- relay: Prune/scan/merge/rebroadcast duty cycle daemon
- generator: Origin that authors infra-signed notifications
- radio: Radio daemon client and in-memory loopback radio
- client: Client-side parsing and client tag verification
- dashboard: Flask status API for a running relay
"""

from .errors import (
    TransitBeaconError,
    ProtocolError,
    DecodeError,
    TooShort,
    VersionMismatch,
    InvalidEnum,
    AuthError,
    InfraTagMismatch,
    StoreError,
    StoreFull,
    RadioError,
    StartFailed,
    StopFailed,
    ScanFailed,
)

from .protocol import (
    MANUFACTURER_ID,
    PROTOCOL_VERSION,
    NOTIFICATION_SIZE,
    BASE_PAYLOAD_SIZE,
    NotificationPacket,
    TransportType,
    TransportStatus,
    encode,
    decode,
    base_payload,
    pack_nibbles,
    unpack_nibbles,
)

from .auth import (
    AuthChain,
    InfraAuthority,
    ClientVerifier,
)

from .store import (
    ActiveEntry,
    NotificationStore,
)

from .radio import (
    Radio,
    RadioDaemonClient,
    LoopbackAir,
    LoopbackRadio,
)

from .relay import (
    RelayNode,
    RelayConfig,
    RelayStats,
    Phase,
)

from .generator import (
    OriginGenerator,
    GeneratorConfig,
)

from .client import (
    NotificationReceiver,
    ReceivedNotification,
    parse_notification,
)

__all__ = [
    'TransitBeaconError',
    'ProtocolError',
    'DecodeError',
    'TooShort',
    'VersionMismatch',
    'InvalidEnum',
    'AuthError',
    'InfraTagMismatch',
    'StoreError',
    'StoreFull',
    'RadioError',
    'StartFailed',
    'StopFailed',
    'ScanFailed',
    'MANUFACTURER_ID',
    'PROTOCOL_VERSION',
    'NOTIFICATION_SIZE',
    'BASE_PAYLOAD_SIZE',
    'NotificationPacket',
    'TransportType',
    'TransportStatus',
    'encode',
    'decode',
    'base_payload',
    'pack_nibbles',
    'unpack_nibbles',
    'AuthChain',
    'InfraAuthority',
    'ClientVerifier',
    'ActiveEntry',
    'NotificationStore',
    'Radio',
    'RadioDaemonClient',
    'LoopbackAir',
    'LoopbackRadio',
    'RelayNode',
    'RelayConfig',
    'RelayStats',
    'Phase',
    'OriginGenerator',
    'GeneratorConfig',
    'NotificationReceiver',
    'ReceivedNotification',
    'parse_notification',
]
