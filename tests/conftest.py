import pytest

from transitbeacon.errors import ScanFailed, StartFailed, StopFailed
from transitbeacon.generator import GeneratorConfig, OriginGenerator
from transitbeacon.radio import Radio
from transitbeacon.relay import RelayConfig


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class ScriptedRadio(Radio):
    """Plays back one list of payloads per scan and records advertisements."""

    def __init__(self, scans=None):
        self.scans = list(scans or [])
        self.advertised = []
        self.stopped = []
        self.active = None
        self.fail_start = set()   # payloads whose advertise() fails
        self.fail_stop = False
        self.fail_scan = False
        self._handles = 0

    def scan(self, window_secs, on_candidate):
        assert self.active is None, "scan while advertising"
        payloads = self.scans.pop(0) if self.scans else []
        for payload in payloads:
            on_candidate(payload)
        if self.fail_scan:
            raise ScanFailed("adapter went away")

    def advertise(self, raw, min_interval, max_interval):
        assert self.active is None, "two advertisements live"
        if raw in self.fail_start:
            raise StartFailed("set_data failed")
        self._handles += 1
        self.active = self._handles
        self.advertised.append((raw, min_interval, max_interval))
        return self._handles

    def stop(self, handle):
        if self.fail_stop:
            self.active = None
            raise StopFailed("stop failed")
        assert handle == self.active
        self.stopped.append(handle)
        self.active = None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def generator():
    return OriginGenerator(GeneratorConfig())


@pytest.fixture
def fast_config():
    return RelayConfig(scan_window_ms=0, rebroadcast_dwell_ms=0, idle_delay_ms=0)
