"""Ed25519 agent identity.

Keys use the multiformat layout understood by Storacha tooling
(`w3 key create` and friends):

    varint(0x1300) ++ private key (32) ++ varint(0xed) ++ public key (32)

usually written as ``M``-prefixed padded base64. The agent is identified by
its ``did:key``.
"""

from __future__ import annotations

import libipld
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .cid import decode_varint, encode_varint
from .errors import ConfigError

ED25519_PRIVATE_CODE = 0x1300
ED25519_PUBLIC_CODE = 0xED
KEY_SIZE = 32


def _public_bytes(key: Ed25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def did_from_public_key(public_key: bytes) -> str:
    tagged = encode_varint(ED25519_PUBLIC_CODE) + public_key
    return "did:key:" + libipld.encode_multibase("z", tagged)


class Signer:
    """Signing capability of the agent: `did()`, `sign()`, `verify()`."""

    def __init__(self, private_key: Ed25519PrivateKey):
        self._key = private_key
        self._public = _public_bytes(private_key.public_key())

    @classmethod
    def generate(cls) -> "Signer":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def parse(cls, text: str) -> "Signer":
        """Parse a multibase encoded private key. Raises ConfigError."""
        text = (text or "").strip()
        if not text:
            raise ConfigError("Private key is required")
        try:
            _, raw = libipld.decode_multibase(text)
            raw = bytes(raw)
            code, pos = decode_varint(raw, 0)
            if code != ED25519_PRIVATE_CODE:
                raise ValueError(f"unexpected key type 0x{code:x}")
            secret = raw[pos:pos + KEY_SIZE]
            code, pos = decode_varint(raw, pos + KEY_SIZE)
            if code != ED25519_PUBLIC_CODE:
                raise ValueError(f"unexpected public key type 0x{code:x}")
            public = raw[pos:pos + KEY_SIZE]
            if len(secret) != KEY_SIZE or len(public) != KEY_SIZE or pos + KEY_SIZE != len(raw):
                raise ValueError("unexpected key length")
            signer = cls(Ed25519PrivateKey.from_private_bytes(secret))
        except Exception as e:
            raise ConfigError(f"Invalid private key: {e}") from e
        if signer.public_key != public:
            raise ConfigError("Invalid private key: public key does not match")
        return signer

    @property
    def public_key(self) -> bytes:
        return self._public

    def did(self) -> str:
        return did_from_public_key(self._public)

    def sign(self, payload: bytes) -> bytes:
        return self._key.sign(payload)

    def verify(self, payload: bytes, signature: bytes) -> bool:
        try:
            self._key.public_key().verify(signature, payload)
        except InvalidSignature:
            return False
        return True

    def format(self) -> str:
        """Encode the key back to its multibase text form."""
        secret = self._key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        raw = (
            encode_varint(ED25519_PRIVATE_CODE) + secret
            + encode_varint(ED25519_PUBLIC_CODE) + self._public
        )
        return libipld.encode_multibase("M", raw)

    def __repr__(self) -> str:
        return f"Signer({self.did()})"
