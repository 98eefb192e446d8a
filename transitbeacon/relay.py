#!/usr/bin/env python3
"""
Transit Beacon Relay - flood relay for transit stop notifications.

This daemon extends the range of infrastructure-signed notifications by
re-broadcasting them verbatim until their duration elapses:

Duty cycle (runs forever):
    PRUNE:
        - Drop notifications whose expiry has passed
    SCAN (3 s):
        - Collect advertisements carrying our manufacturer id
        - Decode, verify the infrastructure tag
        - Sign the client tag if no relay has done so yet
    MERGE:
        - Add new notifications, refresh the expiry of known ones
    REBROADCAST (2 s per notification):
        - Advertise each active notification in turn, one at a time

The radio can either scan or advertise, never both, so phases are strictly
sequential. A malformed, forged or unstorable packet only costs that packet.
"""

import argparse
import json
import logging
import signal
import sys
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .auth import DEFAULT_CLIENT_KEY, DEFAULT_INFRA_KEY, AuthChain
from .errors import (
    DecodeError, InfraTagMismatch, RadioError, ScanFailed, StoreFull,
)
from .protocol import MANUFACTURER_ID, NotificationPacket, decode, encode, format_id
from .radio import LoopbackAir, LoopbackRadio, Radio, RadioDaemonClient
from .store import DEFAULT_CAPACITY, NotificationStore

log = logging.getLogger('beacon-relay')


class Phase(Enum):
    """Duty cycle phases."""
    PRUNE = "prune"
    SCAN = "scan"
    MERGE = "merge"
    REBROADCAST = "rebroadcast"
    STOPPED = "stopped"


@dataclass
class RelayConfig:
    """Configuration for the relay node."""
    # Timing
    scan_window_ms: int = 3000          # Passive scan per cycle
    rebroadcast_dwell_ms: int = 2000    # Advertise each notification this long
    idle_delay_ms: int = 500            # Pause when nothing is active
    adv_interval_ms: int = 20           # BLE advertising interval (min = max)

    # Store
    capacity: int = DEFAULT_CAPACITY

    # Radio daemon
    radio_host: str = "127.0.0.1"
    radio_port: int = 8010
    radio_timeout: float = 5.0
    manufacturer_id: int = MANUFACTURER_ID

    # Keys (UTF-8 strings)
    infra_key: str = DEFAULT_INFRA_KEY.decode('utf-8')
    client_key: str = DEFAULT_CLIENT_KEY.decode('utf-8')

    # Status API
    http_host: str = "127.0.0.1"
    http_port: int = 0                  # 0 = disabled

    @classmethod
    def from_file(cls, path: Path) -> 'RelayConfig':
        """Load configuration from JSON file."""
        if not path.exists():
            return cls()
        with open(path) as f:
            data = json.load(f)

        config = cls()
        for key, value in data.items():
            if hasattr(config, key):
                setattr(config, key, value)
            else:
                log.warning(f"Ignoring unknown config key: {key}")
        return config

    def to_file(self, path: Path) -> None:
        """Save configuration to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(asdict(self), f, indent=2)

    @property
    def uses_default_keys(self) -> bool:
        return (self.infra_key.encode('utf-8') == DEFAULT_INFRA_KEY
                or self.client_key.encode('utf-8') == DEFAULT_CLIENT_KEY)


@dataclass
class Candidate:
    """A verified, client-signed notification waiting for the merge phase."""
    packet: NotificationPacket
    raw: bytes
    observed_at: float


@dataclass
class RelayStats:
    """Counters for observability."""
    cycles: int = 0
    candidates_seen: int = 0
    accepted: int = 0
    decode_errors: int = 0
    forged: int = 0
    zero_duration: int = 0
    store_full: int = 0
    client_tags_signed: int = 0
    radio_errors: int = 0
    pruned: int = 0
    rebroadcasts: int = 0


class RelayNode:
    """
    A relay node driving one radio.

    The store is owned by the node and only mutated from the duty cycle
    thread. Other threads may call get_status().
    """

    def __init__(self, config: RelayConfig, radio: Radio,
                 auth: Optional[AuthChain] = None,
                 store: Optional[NotificationStore] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.radio = radio
        self.auth = auth if auth is not None else AuthChain(config.infra_key, config.client_key)
        self.store = store if store is not None else NotificationStore(config.capacity)
        self.clock = clock

        self.stats = RelayStats()
        self.phase = Phase.STOPPED
        self.running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Callbacks for external integration
        self.on_accepted: Optional[Callable[[NotificationPacket], None]] = None
        self.on_rejected: Optional[Callable[[bytes, Exception], None]] = None

    # --- lifecycle ---

    def start(self) -> bool:
        """Run the duty cycle in a background thread."""
        if self.running:
            return True

        self.running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run,
            name="beacon-relay",
            daemon=True
        )
        self._thread.start()
        log.info(f"Relay started (scan={self.config.scan_window_ms}ms, "
                 f"dwell={self.config.rebroadcast_dwell_ms}ms, "
                 f"capacity={self.store.capacity})")
        return True

    def stop(self) -> None:
        """Request the duty cycle to stop after the current step."""
        self.running = False
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=10)
        self._thread = None

    def run(self) -> None:
        """Run duty cycles until stop() is called."""
        self.running = True
        try:
            while not self._stop_event.is_set():
                self.run_cycle()
        finally:
            self.running = False
            self.phase = Phase.STOPPED
            self.radio.close()

    # --- duty cycle ---

    def run_cycle(self) -> None:
        """Execute one PRUNE -> SCAN -> MERGE -> REBROADCAST pass."""
        self.stats.cycles += 1
        self.prune()
        candidates = self.scan()
        self.merge(candidates)
        self.rebroadcast()

    def prune(self) -> int:
        self.phase = Phase.PRUNE
        removed = self.store.prune(self.clock())
        self.stats.pruned += removed
        return removed

    def scan(self) -> List[Candidate]:
        """Collect verified candidates for one scan window."""
        self.phase = Phase.SCAN
        log.info(f"── Scanning for {self.config.scan_window_ms} ms "
                 f"(active list: {len(self.store)}) ──")

        found: List[Candidate] = []

        def on_candidate(raw: bytes) -> None:
            candidate = self.process_candidate(raw)
            if candidate is not None:
                found.append(candidate)

        try:
            self.radio.scan(self.config.scan_window_ms / 1000.0, on_candidate)
        except ScanFailed as e:
            self.stats.radio_errors += 1
            log.error(f"Scan failed: {e}")
        return found

    def process_candidate(self, raw: bytes) -> Optional[Candidate]:
        """
        Decode, verify and client-sign one received payload.

        Returns None when the payload is rejected or should not be relayed.
        Never raises for bad input.
        """
        self.stats.candidates_seen += 1
        try:
            packet = decode(raw)
            self.auth.require_infra(packet)
        except DecodeError as e:
            self.stats.decode_errors += 1
            log.debug(f"  ✗ undecodable payload ({len(raw)} bytes): {e}")
            self._rejected(raw, e)
            return None
        except InfraTagMismatch as e:
            self.stats.forged += 1
            log.warning(f"  ✗ {e} - rejecting forged notification")
            self._rejected(raw, e)
            return None

        log.info(f"  ✓ verified {packet}")

        if packet.duration_secs == 0:
            self.stats.zero_duration += 1
            log.debug(f"  notification {format_id(packet.notification_id)} "
                      f"has zero duration, not relaying")
            return None

        if not packet.has_client_tag:
            packet = self.auth.ensure_client_tag(packet)
            self.stats.client_tags_signed += 1
            log.info("    → signed client tag")

        return Candidate(packet=packet, raw=encode(packet), observed_at=self.clock())

    def merge(self, candidates: List[Candidate]) -> int:
        """Apply candidates to the store. Returns the number accepted."""
        self.phase = Phase.MERGE
        accepted = 0
        for candidate in candidates:
            try:
                self.store.merge(candidate.packet, candidate.raw, candidate.observed_at)
            except StoreFull as e:
                self.stats.store_full += 1
                log.warning(f"  {e}, dropping notification "
                            f"{format_id(candidate.packet.notification_id)}")
                continue
            accepted += 1
            self.stats.accepted += 1
            if self.on_accepted:
                try:
                    self.on_accepted(candidate.packet)
                except Exception as e:
                    log.error(f"Accepted callback error: {e}")
        return accepted

    def rebroadcast(self) -> int:
        """Advertise each active entry for the dwell time. Returns entries sent."""
        self.phase = Phase.REBROADCAST
        entries = self.store.snapshot()

        if not entries:
            log.info("No active notifications to broadcast.")
            self._stop_event.wait(self.config.idle_delay_ms / 1000.0)
            return 0

        log.info(f"── Re-broadcasting {len(entries)} active notification(s) ──")
        interval = self.config.adv_interval_ms / 1000.0
        dwell = self.config.rebroadcast_dwell_ms / 1000.0
        sent = 0

        for i, entry in enumerate(entries):
            if self._stop_event.is_set():
                break

            try:
                handle = self.radio.advertise(entry.raw, interval, interval)
            except RadioError as e:
                self.stats.radio_errors += 1
                log.error(f"  [{i}] failed to start advertising: {e}")
                continue

            p = entry.packet
            log.info(f"  [{i}] notification {format_id(p.notification_id)} "
                     f"from station {format_id(p.source_id)} "
                     f"({p.transport_type.name} {p.transport_status.name}) "
                     f"- expires in {int(entry.remaining(self.clock()))}s")

            self._stop_event.wait(dwell)

            try:
                self.radio.stop(handle)
            except RadioError as e:
                self.stats.radio_errors += 1
                log.error(f"  [{i}] failed to stop advertising: {e}")
                continue

            sent += 1
            self.stats.rebroadcasts += 1

        log.info("── Cycle complete ──")
        return sent

    def _rejected(self, raw: bytes, error: Exception) -> None:
        if self.on_rejected:
            try:
                self.on_rejected(raw, error)
            except Exception as e:
                log.error(f"Rejected callback error: {e}")

    # --- observability ---

    def get_notifications(self) -> List[Dict]:
        now = self.clock()
        return [entry.to_dict(now) for entry in self.store.snapshot()]

    def get_status(self) -> Dict:
        """Get current relay status."""
        notifications = self.get_notifications()
        return {
            'running': self.running,
            'phase': self.phase.value,
            'capacity': self.store.capacity,
            'active_count': len(notifications),
            'scan_window_ms': self.config.scan_window_ms,
            'rebroadcast_dwell_ms': self.config.rebroadcast_dwell_ms,
            'manufacturer_id': f"{self.config.manufacturer_id:04X}",
            'stats': asdict(self.stats),
            'notifications': notifications,
        }


def _start_status_api(node: RelayNode, host: str, port: int) -> None:
    """Serve the status API from a daemon thread."""
    from .dashboard import create_app

    app = create_app(node)
    thread = threading.Thread(
        target=lambda: app.run(host=host, port=port, debug=False, use_reloader=False),
        name="relay-status-api",
        daemon=True
    )
    thread.start()
    log.info(f"Status API on http://{host}:{port}/api/relay/status")


def _start_loopback_origin(air: LoopbackAir, config: RelayConfig,
                           stop_event: threading.Event) -> LoopbackRadio:
    """Feed the loopback air with freshly signed notifications."""
    from .generator import GeneratorConfig, OriginGenerator

    gen_config = GeneratorConfig(infra_key=config.infra_key, duration_secs=30)
    generator = OriginGenerator(gen_config)
    origin_radio = air.attach("origin", config.manufacturer_id)

    def feed():
        while not stop_event.is_set():
            emit_once()
            stop_event.wait(10.0)

    def emit_once():
        packet = generator.create()
        log.info(f"[loopback origin] emitting {packet}")
        try:
            handle = origin_radio.advertise(encode(packet), 0.02, 0.02)
        except RadioError as e:
            log.error(f"[loopback origin] failed to start advertising: {e}")
            return
        stop_event.wait(5.0)
        try:
            origin_radio.stop(handle)
        except RadioError as e:
            log.error(f"[loopback origin] failed to stop advertising: {e}")

    threading.Thread(target=feed, name="loopback-origin", daemon=True).start()
    return origin_radio


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Transit Beacon Relay',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with default config
  %(prog)s

  # Use custom config file and expose the status API
  %(prog)s --config /etc/transitbeacon/relay.json --http-port 8080

  # Simulate an origin and a relay in-process
  %(prog)s --loopback --verbose
"""
    )

    parser.add_argument('--config', '-c', type=Path,
                        default=Path('/etc/transitbeacon/relay.json'),
                        help='Configuration file path')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    parser.add_argument('--generate-config', action='store_true',
                        help='Generate default config file and exit')
    parser.add_argument('--status', action='store_true',
                        help='Check radio daemon and show configuration, then exit')
    parser.add_argument('--http-port', type=int, default=None,
                        help='Serve the status API on this port')
    parser.add_argument('--loopback', action='store_true',
                        help='Use an in-memory radio with a simulated origin')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if args.generate_config:
        RelayConfig().to_file(args.config)
        print(f"Generated config: {args.config}")
        return 0

    config = RelayConfig.from_file(args.config)
    if args.http_port is not None:
        config.http_port = args.http_port

    if config.uses_default_keys:
        log.warning("Using development HMAC keys - configure infra_key/client_key for deployment")

    air = None
    if args.loopback:
        air = LoopbackAir()
        radio = air.attach("relay", config.manufacturer_id)
    else:
        radio = RadioDaemonClient(
            host=config.radio_host,
            port=config.radio_port,
            timeout=config.radio_timeout,
            manufacturer_id=config.manufacturer_id
        )

    node = RelayNode(config, radio)

    if args.status:
        if isinstance(radio, RadioDaemonClient) and not radio.ping():
            print("ERROR: radio daemon not responding")
            return 1
        print(json.dumps(node.get_status(), indent=2, default=str))
        return 0

    stop_event = threading.Event()
    if air is not None:
        _start_loopback_origin(air, config, stop_event)

    if config.http_port:
        _start_status_api(node, config.http_host, config.http_port)

    def handle_signal(signum, frame):
        log.info(f"Received signal {signum}")
        stop_event.set()
        node.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    log.info("Starting transit beacon relay...")
    log.info(f"Scan {config.scan_window_ms}ms → re-broadcast each for "
             f"{config.rebroadcast_dwell_ms}ms → repeat")

    node.run()

    stats = node.stats
    log.info(f"Relay stopped after {stats.cycles} cycle(s): "
             f"{stats.accepted} accepted, {stats.forged} forged, "
             f"{stats.decode_errors} undecodable")
    return 0


if __name__ == '__main__':
    sys.exit(main())
