import hashlib
import hmac

import pytest

from transitbeacon.auth import (
    DEFAULT_CLIENT_KEY, DEFAULT_INFRA_KEY, AuthChain, ClientVerifier,
    InfraAuthority, TagSigner,
)
from transitbeacon.errors import InfraTagMismatch
from transitbeacon.protocol import base_payload, decode, encode


@pytest.fixture
def auth():
    return AuthChain()


def test_tags_are_truncated_hmac_sha256():
    payload = b"\x01" * 13
    infra = InfraAuthority().infra_sign(payload)
    client = AuthChain().client_sign(payload)
    assert infra == hmac.new(DEFAULT_INFRA_KEY, payload, hashlib.sha256).digest()[:8]
    assert client == hmac.new(DEFAULT_CLIENT_KEY, payload, hashlib.sha256).digest()[:4]


def test_signer_rejects_empty_key():
    with pytest.raises(ValueError):
        TagSigner(b"", 8)


def test_generated_packets_verify(generator, auth):
    for packet in generator.create_batch(20):
        assert auth.infra_verify(packet)


def test_any_base_payload_change_breaks_infra_tag(generator, auth):
    data = encode(generator.create())
    for i in range(13):
        tampered = bytearray(data)
        tampered[i] ^= 0x01
        try:
            packet = decode(bytes(tampered))
        except Exception:
            continue  # version or enum byte no longer decodes
        assert not auth.infra_verify(packet)


def test_require_infra_raises(generator, auth):
    packet = generator.create()
    forged = packet.with_tags(infra_tag=bytes(8))
    auth.require_infra(packet)
    with pytest.raises(InfraTagMismatch):
        auth.require_infra(forged)


def test_wrong_infra_key_fails(generator):
    other = AuthChain(infra_key="some-other-key")
    assert not other.infra_verify(generator.create())


def test_ensure_client_tag_signs_once(generator, auth):
    packet = generator.create()
    assert not packet.has_client_tag

    signed = auth.ensure_client_tag(packet)
    assert signed.has_client_tag
    assert signed.client_tag == auth.client_sign(base_payload(packet))
    assert signed.infra_tag == packet.infra_tag

    # second relay with a different client key passes the tag through
    downstream = AuthChain(client_key="downstream-key")
    assert downstream.ensure_client_tag(signed) is signed


def test_client_verify(generator, auth):
    packet = generator.create()
    verifier = ClientVerifier()
    assert not verifier.client_verify(packet)
    signed = auth.ensure_client_tag(packet)
    assert verifier.client_verify(signed)
    assert auth.client_verify(signed)
    assert not verifier.client_verify(signed.with_tags(client_tag=b"\x01\x02\x03\x04"))
    assert not ClientVerifier("wrong").client_verify(signed)


def test_keys_accept_str_or_bytes(generator):
    packet = generator.create()
    assert AuthChain(infra_key=DEFAULT_INFRA_KEY.decode()).infra_verify(packet)
    assert AuthChain(infra_key=bytearray(DEFAULT_INFRA_KEY)).infra_verify(packet)
