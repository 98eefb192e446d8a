import random

import pytest

from conftest import ScriptedRadio
from transitbeacon.auth import AuthChain
from transitbeacon.errors import StartFailed
from transitbeacon.generator import GeneratorConfig, OriginGenerator, main
from transitbeacon.protocol import (
    NOTIFICATION_SIZE, TransportStatus, TransportType, decode, encode,
)


def test_create_fills_fields(generator):
    packet = generator.create(
        transport_type=TransportType.TRAIN,
        transport_status=TransportStatus.PASSING,
        event_id=10,
        destination_id=3,
        duration_secs=45,
    )
    assert packet.transport_type is TransportType.TRAIN
    assert packet.transport_status is TransportStatus.PASSING
    assert (packet.event_id, packet.destination_id) == (10, 3)
    assert packet.duration_secs == 45
    assert not packet.has_client_tag
    assert AuthChain().infra_verify(packet)
    assert encode(packet)[9] == 0xA3


def test_random_fields_in_range():
    gen = OriginGenerator(GeneratorConfig(duration_secs=12), rng=random.Random(7))
    batch = gen.create_batch(50)
    assert len({p.notification_id for p in batch}) == 50
    for packet in batch:
        assert 0 <= packet.event_id <= 15
        assert 0 <= packet.destination_id <= 15
        assert packet.duration_secs == 12
        assert decode(encode(packet)) == packet


def test_batch_uses_configured_count():
    gen = OriginGenerator(GeneratorConfig(count=3))
    assert len(gen.create_batch()) == 3


def test_broadcast_one_at_a_time(generator):
    packets = generator.create_batch(3)
    radio = ScriptedRadio()
    waits = []

    assert generator.broadcast(radio, packets, wait=waits.append) == 3
    assert [raw for raw, _, _ in radio.advertised] == [encode(p) for p in packets]
    assert radio.stopped == [1, 2, 3]
    assert waits == [generator.config.interval_sec] * 3


def test_broadcast_radio_error_propagates(generator):
    packet = generator.create()
    radio = ScriptedRadio()
    radio.fail_start.add(encode(packet))
    with pytest.raises(StartFailed):
        generator.broadcast(radio, [packet], wait=lambda s: None)


def test_main_dry_run(tmp_path, capsys):
    rc = main(['--config', str(tmp_path / 'missing.json'), '--dry-run', '--count', '2'])
    out = capsys.readouterr().out
    assert rc == 0
    assert out.count("round-trip parse OK") == 2
    assert f"payload({NOTIFICATION_SIZE} B)" in out


def test_config_file_round_trip(tmp_path):
    path = tmp_path / 'origin.json'
    GeneratorConfig(count=9, duration_secs=60).to_file(path)
    loaded = GeneratorConfig.from_file(path)
    assert loaded.count == 9
    assert loaded.duration_secs == 60
