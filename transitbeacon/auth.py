"""
Two-tier authentication chain.

    Infrastructure tier (8-byte tag):
        - Signed once by the origin holding the infrastructure key
        - Verified by every relay before a packet enters its store
        - Never modified in flight

    Client tier (4-byte tag):
        - Signed by the first relay that validates the packet
        - Passed through byte-for-byte by every later relay
        - Verified by the client application

Both tags are truncated HMAC-SHA256 over the same base payload.
"""

import hashlib
import hmac
import logging

from .errors import InfraTagMismatch
from .protocol import (
    CLIENT_TAG_LEN, INFRA_TAG_LEN, NotificationPacket, base_payload,
)

log = logging.getLogger('beacon-auth')

# Development keys. Production deployments configure their own.
DEFAULT_INFRA_KEY = b"infra-secret-key-efuse!!"
DEFAULT_CLIENT_KEY = b"client-secret-key-app!!!"


def _as_key(key) -> bytes:
    if isinstance(key, str):
        return key.encode('utf-8')
    return bytes(key)


class TagSigner:
    """Keyed HMAC-SHA256 producing a fixed-length truncated tag."""

    def __init__(self, key, tag_len: int):
        self._key = _as_key(key)
        if not self._key:
            raise ValueError("HMAC key must not be empty")
        self.tag_len = tag_len

    def sign(self, data: bytes) -> bytes:
        digest = hmac.new(self._key, data, hashlib.sha256).digest()
        return digest[:self.tag_len]

    def verify(self, data: bytes, tag: bytes) -> bool:
        return hmac.compare_digest(self.sign(data), bytes(tag))


class InfraAuthority:
    """Infrastructure-key signer, held only by the origin."""

    def __init__(self, key=DEFAULT_INFRA_KEY):
        self._signer = TagSigner(key, INFRA_TAG_LEN)

    def infra_sign(self, payload: bytes) -> bytes:
        return self._signer.sign(payload)

    def sign_packet(self, packet: NotificationPacket) -> NotificationPacket:
        """Return ``packet`` carrying a fresh infrastructure tag."""
        return packet.with_tags(infra_tag=self.infra_sign(base_payload(packet)))


class AuthChain:
    """
    Verification and client signing as performed by a relay.

    A relay is provisioned with the infrastructure key for verification only;
    signing a first infra tag is the origin's job (see InfraAuthority).
    """

    def __init__(self, infra_key=DEFAULT_INFRA_KEY, client_key=DEFAULT_CLIENT_KEY):
        self._infra = TagSigner(infra_key, INFRA_TAG_LEN)
        self._client = TagSigner(client_key, CLIENT_TAG_LEN)

    def infra_verify(self, packet: NotificationPacket) -> bool:
        return self._infra.verify(base_payload(packet), packet.infra_tag)

    def require_infra(self, packet: NotificationPacket) -> None:
        """Raise InfraTagMismatch unless the infrastructure tag is valid."""
        if not self.infra_verify(packet):
            raise InfraTagMismatch(
                f"infra tag mismatch for notification {packet.notification_id.hex().upper()}")

    def client_sign(self, payload: bytes) -> bytes:
        return self._client.sign(payload)

    def client_verify(self, packet: NotificationPacket) -> bool:
        """False when the tag is unset or does not match."""
        if not packet.has_client_tag:
            return False
        return self._client.verify(base_payload(packet), packet.client_tag)

    def ensure_client_tag(self, packet: NotificationPacket) -> NotificationPacket:
        """
        Sign the client tag if it is still unset.

        A tag that is already present is passed through untouched, even if it
        would not verify under this relay's client key.
        """
        if packet.has_client_tag:
            return packet
        tag = self.client_sign(base_payload(packet))
        log.debug(f"Signed client tag for {packet.notification_id.hex().upper()}")
        return packet.with_tags(client_tag=tag)


class ClientVerifier:
    """Client-key-only verifier for the receiving application."""

    def __init__(self, client_key=DEFAULT_CLIENT_KEY):
        self._client = TagSigner(client_key, CLIENT_TAG_LEN)

    def client_verify(self, packet: NotificationPacket) -> bool:
        if not packet.has_client_tag:
            return False
        return self._client.verify(base_payload(packet), packet.client_tag)
