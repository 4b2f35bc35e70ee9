"""Content identifiers.

Parsing and string formatting are delegated to `libipld`; this module keeps
a small immutable value type so CIDs can be hashed, compared and turned back
into bytes for block containers.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Tuple

import libipld

# multicodec codes
RAW = 0x55
DAG_PB = 0x70
DAG_CBOR = 0x71
CAR = 0x0202

# multihash codes
IDENTITY = 0x00
SHA2_256 = 0x12


def encode_varint(value: int) -> bytes:
    """Unsigned LEB128."""
    if value < 0:
        raise ValueError("varint cannot be negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(buf: bytes, offset: int = 0) -> Tuple[int, int]:
    """Read an unsigned varint at `offset`. Returns (value, next offset)."""
    value = 0
    shift = 0
    pos = offset
    while True:
        if pos >= len(buf):
            raise ValueError("unexpected end of data while reading varint")
        byte = buf[pos]
        pos += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, pos
        shift += 7
        if shift > 63:
            raise ValueError("varint too long")


@dataclass(frozen=True)
class CID:
    version: int
    codec: int
    hash_code: int
    digest: bytes

    @classmethod
    def _from_info(cls, info: dict) -> "CID":
        mh = info["hash"]
        return cls(
            version=int(info["version"]),
            codec=int(info["codec"]),
            hash_code=int(mh["code"]),
            digest=bytes(mh["digest"]),
        )

    @classmethod
    def parse(cls, text: str) -> "CID":
        """Parse a CID string (v0 base58 or multibase v1). Raises ValueError."""
        if not text:
            raise ValueError("empty CID")
        try:
            info = libipld.decode_cid(text)
        except Exception as e:
            raise ValueError(f"invalid CID {text!r}: {e}") from e
        return cls._from_info(info)

    @classmethod
    def decode(cls, data: bytes) -> "CID":
        """Decode binary CID bytes. Raises ValueError."""
        try:
            info = libipld.decode_cid(bytes(data))
        except Exception as e:
            raise ValueError(f"invalid CID bytes: {e}") from e
        return cls._from_info(info)

    @classmethod
    def read(cls, buf: bytes, offset: int = 0) -> Tuple["CID", int]:
        """Read a binary CID embedded in a larger buffer."""
        if buf[offset:offset + 2] == b"\x12\x20":
            end = offset + 34
            if end > len(buf):
                raise ValueError("truncated CIDv0")
            return cls(0, DAG_PB, SHA2_256, bytes(buf[offset + 2:end])), end

        version, pos = decode_varint(buf, offset)
        if version != 1:
            raise ValueError(f"unsupported CID version {version}")
        codec, pos = decode_varint(buf, pos)
        hash_code, pos = decode_varint(buf, pos)
        size, pos = decode_varint(buf, pos)
        end = pos + size
        if end > len(buf):
            raise ValueError("truncated CID digest")
        return cls(version, codec, hash_code, bytes(buf[pos:end])), end

    @classmethod
    def create(cls, codec: int, block: bytes) -> "CID":
        """CIDv1 of `block` hashed with sha2-256."""
        return cls(1, codec, SHA2_256, hashlib.sha256(block).digest())

    @classmethod
    def coerce(cls, value: Any) -> "CID":
        """Accept a CID, its string form or its binary form."""
        if isinstance(value, CID):
            return value
        if isinstance(value, (bytes, bytearray, memoryview)):
            data = bytes(value)
            # dag-cbor links carry a leading multibase identity byte
            if data[:1] == b"\x00":
                data = data[1:]
            return cls.decode(data)
        return cls.parse(str(value))

    @property
    def multihash(self) -> bytes:
        return encode_varint(self.hash_code) + encode_varint(len(self.digest)) + self.digest

    @property
    def binary(self) -> bytes:
        if self.version == 0:
            return self.multihash
        return encode_varint(self.version) + encode_varint(self.codec) + self.multihash

    def verify(self, block: bytes) -> bool:
        """True if `block` hashes to this CID.

        Only sha2-256 and identity multihashes can be checked; other hash
        functions raise ValueError.
        """
        if self.hash_code == SHA2_256:
            return hashlib.sha256(block).digest() == self.digest
        if self.hash_code == IDENTITY:
            return bytes(block) == self.digest
        raise ValueError(f"unsupported multihash 0x{self.hash_code:x}")

    def __str__(self) -> str:
        return libipld.encode_cid(self.binary)
