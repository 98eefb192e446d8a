#!/usr/bin/env python3
"""
Transit Beacon Origin - authors infrastructure-signed notifications.

The origin is the only place the infrastructure key signs anything. It builds
a batch of notifications, self-checks each one, then advertises them one at a
time and exits. Relays pick them up from there.
"""

import argparse
import json
import logging
import random
import sys
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

from .auth import DEFAULT_INFRA_KEY, AuthChain, InfraAuthority
from .errors import RadioError, TransitBeaconError
from .protocol import (
    MANUFACTURER_ID, NotificationPacket, TransportStatus, TransportType,
    decode, encode, format_id,
)
from .radio import Radio, RadioDaemonClient

log = logging.getLogger('beacon-origin')


@dataclass
class GeneratorConfig:
    """Configuration for the origin generator."""
    count: int = 5                      # Notifications per run
    interval_sec: float = 5.0           # Advertise each for this long
    duration_secs: int = 30             # Relay duration embedded in packets
    adv_interval_ms: int = 20

    infra_key: str = DEFAULT_INFRA_KEY.decode('utf-8')

    radio_host: str = "127.0.0.1"
    radio_port: int = 8010
    radio_timeout: float = 5.0
    manufacturer_id: int = MANUFACTURER_ID

    @classmethod
    def from_file(cls, path: Path) -> 'GeneratorConfig':
        """Load configuration from JSON file."""
        if not path.exists():
            return cls()
        with open(path) as f:
            data = json.load(f)

        config = cls()
        for key, value in data.items():
            if hasattr(config, key):
                setattr(config, key, value)
        return config

    def to_file(self, path: Path) -> None:
        """Save configuration to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(asdict(self), f, indent=2)


def short_uuid() -> bytes:
    """First 4 bytes of a random UUID4."""
    return uuid.uuid4().bytes[:4]


class OriginGenerator:
    """Builds fresh notifications signed with the infrastructure key."""

    def __init__(self, config: GeneratorConfig, rng: Optional[random.Random] = None):
        self.config = config
        self.authority = InfraAuthority(config.infra_key)
        self.rng = rng or random.Random()

    def create(self, transport_type: Optional[TransportType] = None,
               transport_status: Optional[TransportStatus] = None,
               event_id: Optional[int] = None,
               destination_id: Optional[int] = None,
               duration_secs: Optional[int] = None,
               source_id: Optional[bytes] = None) -> NotificationPacket:
        """Build a new infra-signed notification. Unset fields are randomized."""
        packet = NotificationPacket(
            source_id=source_id or short_uuid(),
            notification_id=short_uuid(),
            event_id=self.rng.randint(0, 15) if event_id is None else event_id,
            destination_id=self.rng.randint(0, 15) if destination_id is None else destination_id,
            transport_type=transport_type or self.rng.choice(list(TransportType)),
            transport_status=transport_status or self.rng.choice(list(TransportStatus)),
            duration_secs=self.config.duration_secs if duration_secs is None else duration_secs,
        )
        return self.authority.sign_packet(packet)

    def create_batch(self, count: Optional[int] = None) -> List[NotificationPacket]:
        return [self.create() for _ in range(self.config.count if count is None else count)]

    def broadcast(self, radio: Radio, packets: List[NotificationPacket],
                  wait=time.sleep) -> int:
        """
        Advertise each packet for ``interval_sec``, one at a time.

        Radio errors propagate: the origin is a finite run, not a service.
        """
        interval = self.config.adv_interval_ms / 1000.0
        for i, packet in enumerate(packets, 1):
            log.info(f"[{i}/{len(packets)}] Broadcasting notification "
                     f"{format_id(packet.notification_id)} for {self.config.interval_sec}s...")
            handle = radio.advertise(encode(packet), interval, interval)
            try:
                wait(self.config.interval_sec)
            finally:
                radio.stop(handle)
            log.info("  ✓ done")
        return len(packets)


def describe(packet: NotificationPacket, auth: AuthChain) -> str:
    """Multi-line summary of a packet for console output."""
    payload = encode(packet)
    return (f"  id={format_id(packet.notification_id)} source={format_id(packet.source_id)} "
            f"event={packet.event_id} dest={packet.destination_id} "
            f"type={packet.transport_type.name} status={packet.transport_status.name} "
            f"dur={packet.duration_secs}s\n"
            f"  infra-HMAC-valid={auth.infra_verify(packet)} "
            f"client-tag-set={packet.has_client_tag} "
            f"payload({len(payload)} B)={payload.hex()}")


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Transit Beacon Origin',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Broadcast 5 random notifications, 5 seconds each
  %(prog)s

  # Build and print packets without touching the radio
  %(prog)s --dry-run --count 3
"""
    )

    parser.add_argument('--config', '-c', type=Path,
                        default=Path('/etc/transitbeacon/origin.json'),
                        help='Configuration file path')
    parser.add_argument('--count', '-n', type=int, default=None,
                        help='Number of notifications to broadcast')
    parser.add_argument('--interval', type=float, default=None,
                        help='Seconds to advertise each notification')
    parser.add_argument('--duration', type=int, default=None,
                        help='Relay duration embedded in each notification')
    parser.add_argument('--dry-run', action='store_true',
                        help='Build and print packets only')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    config = GeneratorConfig.from_file(args.config)
    if args.count is not None:
        config.count = args.count
    if args.interval is not None:
        config.interval_sec = args.interval
    if args.duration is not None:
        config.duration_secs = args.duration

    generator = OriginGenerator(config)
    # Self-check uses verification only; the client key is irrelevant here
    checker = AuthChain(infra_key=config.infra_key)

    try:
        packets = generator.create_batch()
    except ValueError as e:
        log.error(f"Invalid notification parameters: {e}")
        return 1

    for i, packet in enumerate(packets):
        print(f"\n── Notification {i} ──")
        print(describe(packet, checker))
        parsed = decode(encode(packet))
        if parsed == packet and checker.infra_verify(parsed):
            print(f"    ✓ round-trip parse OK (id={format_id(parsed.notification_id)})")
        else:
            log.error(f"Round-trip check failed for {format_id(packet.notification_id)}")
            return 1

    if args.dry_run:
        return 0

    radio = RadioDaemonClient(
        host=config.radio_host,
        port=config.radio_port,
        timeout=config.radio_timeout,
        manufacturer_id=config.manufacturer_id
    )
    if not radio.ping():
        log.error("Radio daemon not responding")
        return 1

    try:
        generator.broadcast(radio, packets)
    except RadioError as e:
        log.error(f"Radio failure: {e}")
        return 1
    except TransitBeaconError as e:
        log.error(f"Broadcast failed: {e}")
        return 1

    print("\nAll notifications broadcast. Exiting.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
