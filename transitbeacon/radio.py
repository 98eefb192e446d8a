"""
Radio collaborators.

The relay talks to the BLE radio through a narrow interface: scan for a fixed
window, start one advertisement, stop it. Two implementations are provided:

    RadioDaemonClient:
        - Line-oriented command client for a local BLE helper daemon
        - Same request/response style as a TNC command port
        - Used on real hardware

    LoopbackRadio:
        - In-memory radio attached to a shared LoopbackAir
        - Advertisements started on one radio are seen by scans on the others
        - Used for simulation and tests
"""

import itertools
import logging
import socket
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .errors import ScanFailed, StartFailed, StopFailed
from .protocol import MANUFACTURER_ID

log = logging.getLogger('beacon-radio')

CandidateCallback = Callable[[bytes], None]


class Radio:
    """Interface every radio collaborator implements."""

    manufacturer_id: int = MANUFACTURER_ID

    def scan(self, window_secs: float, on_candidate: CandidateCallback) -> None:
        """
        Passively scan for ``window_secs``.

        ``on_candidate`` is called with the manufacturer-data payload of every
        advertisement tagged with our manufacturer id. Raises ScanFailed.
        """
        raise NotImplementedError

    def advertise(self, raw: bytes, min_interval: float, max_interval: float):
        """Start a non-connectable advertisement. Returns a handle. Raises StartFailed."""
        raise NotImplementedError

    def stop(self, handle) -> None:
        """Stop an advertisement started by advertise(). Raises StopFailed."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class RadioDaemonClient(Radio):
    """
    Client for a BLE helper daemon command interface.

    Protocol (one command per connection, newline terminated):
        PING                                        -> OK PONG
        ADV START <mfg_hex> <payload_hex> <min_ms> <max_ms>  -> OK ADV <handle>
        ADV STOP <handle>                           -> OK
        SCAN <window_ms> <mfg_hex>                  -> ADV <mfg_hex> <payload_hex> <rssi> <addr>
                                                       ...
                                                       OK SCAN
    Anything not starting with OK (or ADV during a scan) is an error.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8010,
                 timeout: float = 5.0, manufacturer_id: int = MANUFACTURER_ID):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.manufacturer_id = manufacturer_id

    def _connect(self, timeout: float) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        sock.connect((self.host, self.port))
        return sock

    def send_command(self, command: str) -> Tuple[bool, str]:
        """Send command to the daemon command interface."""
        try:
            sock = self._connect(self.timeout)
            try:
                sock.sendall(f"{command}\n".encode('utf-8'))
                with sock.makefile('r', encoding='utf-8') as reader:
                    response = reader.readline().strip()
            finally:
                sock.close()

            return response.startswith("OK"), response
        except socket.timeout:
            return False, "ERROR Connection timeout"
        except ConnectionRefusedError:
            return False, "ERROR radio daemon not running"
        except OSError as e:
            return False, f"ERROR {e}"

    def ping(self) -> bool:
        """Check if the radio daemon is responding."""
        success, _ = self.send_command("PING")
        return success

    def advertise(self, raw: bytes, min_interval: float, max_interval: float) -> str:
        min_ms = max(1, int(round(min_interval * 1000)))
        max_ms = max(min_ms, int(round(max_interval * 1000)))
        success, response = self.send_command(
            f"ADV START {self.manufacturer_id:04X} {bytes(raw).hex()} {min_ms} {max_ms}")
        if not success:
            raise StartFailed(response)

        parts = response.split()
        if len(parts) < 3 or parts[1] != "ADV":
            raise StartFailed(f"unexpected response: {response}")
        return parts[2]

    def stop(self, handle) -> None:
        success, response = self.send_command(f"ADV STOP {handle}")
        if not success:
            raise StopFailed(response)

    def scan(self, window_secs: float, on_candidate: CandidateCallback) -> None:
        window_ms = max(0, int(window_secs * 1000))
        # the whole scan, not each read, is bounded by the window plus the timeout
        deadline = time.monotonic() + window_secs + self.timeout
        try:
            sock = self._connect(window_secs + self.timeout)
        except OSError as e:
            raise ScanFailed(f"cannot reach radio daemon: {e}") from e

        try:
            sock.sendall(f"SCAN {window_ms} {self.manufacturer_id:04X}\n".encode('utf-8'))
            with sock.makefile('r', encoding='utf-8') as reader:
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise ScanFailed(f"scan overran its {window_ms} ms window")
                    sock.settimeout(remaining)
                    line = reader.readline()
                    if not line:
                        raise ScanFailed("connection closed before scan completed")
                    line = line.strip()
                    if not line:
                        continue
                    if line.startswith("OK"):
                        return
                    if line.startswith("ADV "):
                        self._handle_adv_line(line, on_candidate)
                        continue
                    raise ScanFailed(line)
        except socket.timeout as e:
            raise ScanFailed(f"scan overran its {window_ms} ms window") from e
        except OSError as e:
            raise ScanFailed(str(e)) from e
        finally:
            sock.close()

    def _handle_adv_line(self, line: str, on_candidate: CandidateCallback) -> None:
        """Parse: ADV <mfg_hex> <payload_hex> [rssi] [addr]"""
        parts = line.split()
        if len(parts) < 3:
            log.debug(f"Malformed scan line: {line}")
            return
        try:
            mfg_id = int(parts[1], 16)
            payload = bytes.fromhex(parts[2])
        except ValueError:
            log.debug(f"Malformed scan line: {line}")
            return

        if mfg_id != self.manufacturer_id:
            return

        rssi = parts[3] if len(parts) > 3 else "?"
        addr = parts[4] if len(parts) > 4 else "?"
        log.debug(f"Advertisement from {addr} (RSSI {rssi}): {len(payload)} bytes")
        on_candidate(payload)


class LoopbackAir:
    """Shared in-memory medium for LoopbackRadio instances."""

    def __init__(self):
        self._adverts: Dict[int, Tuple[Optional['LoopbackRadio'], int, bytes]] = {}
        self._handles = itertools.count(1)
        self._cond = threading.Condition()

    def attach(self, name: str = "", manufacturer_id: int = MANUFACTURER_ID) -> 'LoopbackRadio':
        return LoopbackRadio(self, name=name, manufacturer_id=manufacturer_id)

    def broadcast(self, payload: bytes, manufacturer_id: int = MANUFACTURER_ID,
                  owner: Optional['LoopbackRadio'] = None) -> int:
        """Put an advertisement on the air. Returns its handle."""
        with self._cond:
            handle = next(self._handles)
            self._adverts[handle] = (owner, manufacturer_id, bytes(payload))
            self._cond.notify_all()
        return handle

    def withdraw(self, handle: int) -> bool:
        """Take an advertisement off the air. False if it was not live."""
        with self._cond:
            return self._adverts.pop(handle, None) is not None

    def live(self):
        """Payloads currently on the air."""
        with self._cond:
            return [payload for _, _, payload in self._adverts.values()]

    def _observe(self, radio: 'LoopbackRadio', seen: set):
        """Adverts not owned by ``radio`` and not yet in ``seen``."""
        found = []
        for handle, (owner, mfg_id, payload) in self._adverts.items():
            if handle in seen or owner is radio:
                continue
            seen.add(handle)
            if mfg_id == radio.manufacturer_id:
                found.append(payload)
        return found

    def listen(self, radio: 'LoopbackRadio', window_secs: float, on_candidate: CandidateCallback):
        """Report each advertisement live during the window once."""
        deadline = time.monotonic() + window_secs
        seen = set()
        while True:
            with self._cond:
                found = self._observe(radio, seen)
                remaining = deadline - time.monotonic()
                if not found and remaining > 0:
                    self._cond.wait(remaining)
                    found = self._observe(radio, seen)
            for payload in found:
                on_candidate(payload)
            if deadline - time.monotonic() <= 0:
                return


class LoopbackRadio(Radio):
    """Radio attached to a LoopbackAir."""

    def __init__(self, air: LoopbackAir, name: str = "", manufacturer_id: int = MANUFACTURER_ID):
        self.air = air
        self.name = name
        self.manufacturer_id = manufacturer_id
        self._active: Optional[int] = None

    def scan(self, window_secs: float, on_candidate: CandidateCallback) -> None:
        if self._active is not None:
            raise ScanFailed("cannot scan while advertising")
        self.air.listen(self, window_secs, on_candidate)

    def advertise(self, raw: bytes, min_interval: float, max_interval: float) -> int:
        if self._active is not None:
            raise StartFailed("an advertisement is already active")
        self._active = self.air.broadcast(raw, self.manufacturer_id, owner=self)
        return self._active

    def stop(self, handle) -> None:
        if handle != self._active or not self.air.withdraw(handle):
            raise StopFailed(f"no active advertisement {handle}")
        self._active = None

    def close(self) -> None:
        if self._active is not None:
            self.air.withdraw(self._active)
            self._active = None
