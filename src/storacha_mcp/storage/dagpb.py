"""dag-pb nodes and the UnixFS data they carry.

Both are tiny protobuf schemas, encoded and decoded by hand:

    PBNode   { Data: 1 bytes, Links: 2 repeated PBLink }
    PBLink   { Hash: 1 bytes, Name: 2 string, Tsize: 3 uint64 }
    UnixFS   { Type: 1 enum, Data: 2 bytes, filesize: 3 uint64,
               blocksizes: 4 repeated uint64, hashType: 5 uint64,
               fanout: 6 uint64 }

Canonical dag-pb puts Links before Data and link fields in field order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, List, Optional, Tuple

from .cid import CID, decode_varint, encode_varint

_VARINT = 0
_FIXED64 = 1
_LEN = 2
_FIXED32 = 5


class DataType(IntEnum):
    RAW = 0
    DIRECTORY = 1
    FILE = 2
    METADATA = 3
    SYMLINK = 4
    HAMT_SHARD = 5


@dataclass
class PBLink:
    cid: CID
    name: str = ""
    tsize: Optional[int] = None


@dataclass
class PBNode:
    links: List[PBLink] = field(default_factory=list)
    data: Optional[bytes] = None


@dataclass
class UnixFSData:
    type: DataType
    data: Optional[bytes] = None
    filesize: Optional[int] = None
    blocksizes: List[int] = field(default_factory=list)
    hash_type: Optional[int] = None
    fanout: Optional[int] = None


def _fields(buf: bytes) -> Iterator[Tuple[int, int, object]]:
    """Yield (field number, wire type, value) triples."""
    pos = 0
    while pos < len(buf):
        key, pos = decode_varint(buf, pos)
        number, wire = key >> 3, key & 0x07
        if wire == _VARINT:
            value, pos = decode_varint(buf, pos)
            yield number, wire, value
        elif wire == _LEN:
            size, pos = decode_varint(buf, pos)
            end = pos + size
            if end > len(buf):
                raise ValueError("truncated length-delimited field")
            yield number, wire, bytes(buf[pos:end])
            pos = end
        elif wire == _FIXED64:
            pos += 8
        elif wire == _FIXED32:
            pos += 4
        else:
            raise ValueError(f"unsupported protobuf wire type {wire}")
        if pos > len(buf):
            raise ValueError("truncated protobuf field")


def _key(number: int, wire: int) -> bytes:
    return encode_varint((number << 3) | wire)


def _bytes_field(number: int, value: bytes) -> bytes:
    return _key(number, _LEN) + encode_varint(len(value)) + value


def _varint_field(number: int, value: int) -> bytes:
    return _key(number, _VARINT) + encode_varint(value)


def decode_node(block: bytes) -> PBNode:
    node = PBNode()
    for number, wire, value in _fields(block):
        if number == 1 and wire == _LEN:
            node.data = value
        elif number == 2 and wire == _LEN:
            node.links.append(_decode_link(value))
    return node


def _decode_link(buf: bytes) -> PBLink:
    cid: Optional[CID] = None
    name = ""
    tsize: Optional[int] = None
    for number, wire, value in _fields(buf):
        if number == 1 and wire == _LEN:
            cid, _ = CID.read(value)
        elif number == 2 and wire == _LEN:
            name = value.decode("utf-8")
        elif number == 3 and wire == _VARINT:
            tsize = value
    if cid is None:
        raise ValueError("dag-pb link without a hash")
    return PBLink(cid=cid, name=name, tsize=tsize)


def encode_node(node: PBNode) -> bytes:
    out = bytearray()
    for link in node.links:
        body = _bytes_field(1, link.cid.binary) + _bytes_field(2, link.name.encode("utf-8"))
        if link.tsize is not None:
            body += _varint_field(3, link.tsize)
        out += _bytes_field(2, body)
    if node.data is not None:
        out += _bytes_field(1, node.data)
    return bytes(out)


def decode_unixfs(buf: bytes) -> UnixFSData:
    kind: Optional[int] = None
    u = UnixFSData(type=DataType.RAW)
    for number, wire, value in _fields(buf):
        if number == 1 and wire == _VARINT:
            kind = value
        elif number == 2 and wire == _LEN:
            u.data = value
        elif number == 3 and wire == _VARINT:
            u.filesize = value
        elif number == 4 and wire == _VARINT:
            u.blocksizes.append(value)
        elif number == 4 and wire == _LEN:
            # packed encoding
            pos = 0
            while pos < len(value):
                size, pos = decode_varint(value, pos)
                u.blocksizes.append(size)
        elif number == 5 and wire == _VARINT:
            u.hash_type = value
        elif number == 6 and wire == _VARINT:
            u.fanout = value
    if kind is None:
        raise ValueError("UnixFS data without a type")
    u.type = DataType(kind)
    return u


def encode_unixfs(u: UnixFSData) -> bytes:
    out = bytearray(_varint_field(1, int(u.type)))
    if u.data is not None:
        out += _bytes_field(2, u.data)
    if u.filesize is not None:
        out += _varint_field(3, u.filesize)
    for size in u.blocksizes:
        out += _varint_field(4, size)
    if u.hash_type is not None:
        out += _varint_field(5, u.hash_type)
    if u.fanout is not None:
        out += _varint_field(6, u.fanout)
    return bytes(out)
