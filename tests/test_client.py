import pytest

from transitbeacon.auth import AuthChain
from transitbeacon.client import NotificationReceiver, parse_notification
from transitbeacon.errors import TooShort
from transitbeacon.protocol import encode


def test_unsigned_notification_is_not_verified(generator):
    received = parse_notification(encode(generator.create()), rssi=-70)
    assert not received.client_verified
    assert received.rssi == -70


def test_relayed_notification_verifies(generator):
    relayed = AuthChain().ensure_client_tag(generator.create())
    received = parse_notification(encode(relayed))
    assert received.client_verified
    assert received.packet == relayed
    assert received.to_dict()['client_verified'] is True


def test_forged_client_tag_is_flagged(generator):
    forged = generator.create().with_tags(client_tag=b"\x11\x22\x33\x44")
    assert not parse_notification(encode(forged)).client_verified


def test_client_key_must_match(generator):
    relayed = AuthChain(client_key="relay-key").ensure_client_tag(generator.create())
    assert NotificationReceiver("relay-key").parse(encode(relayed)).client_verified
    assert not NotificationReceiver("app-key").parse(encode(relayed)).client_verified


def test_raw_is_truncated_to_packet(generator):
    data = encode(generator.create())
    assert parse_notification(data + b"\x00\x00").raw == data


def test_short_payload_raises():
    with pytest.raises(TooShort):
        parse_notification(b"\x01" * 10)
