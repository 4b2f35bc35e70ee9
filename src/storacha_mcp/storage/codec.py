"""Base64 transcoding in two flavours.

* standard: RFC 4648 base64 with padding, what most consumers expect.
* multiformat: self-describing multibase base64, i.e. the unpadded
  alphabet behind a leading ``m`` marker.

Without a mode, decoding accepts both. Text beginning with the marker is
read as multiformat first, so a standard string that happens to start with
``m`` and carries no padding is ambiguous. Callers that know which flavour
produced the text pass ``use_multiformat`` and get a strict decode.
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Iterable, Optional

import libipld

from .errors import FormatError

MULTIBASE_MARKER = "m"

_DATA_URL_PREFIX = re.compile(r"^data:.*?;base64,")


def strip_data_url(text: str) -> str:
    return _DATA_URL_PREFIX.sub("", text, count=1)


def _decode_multiformat(text: str) -> bytes:
    if not text.startswith(MULTIBASE_MARKER):
        text = MULTIBASE_MARKER + text
    try:
        _, data = libipld.decode_multibase(text)
    except Exception as e:
        raise FormatError("Invalid multiformat base64 string") from e
    return bytes(data)


def _decode_standard(text: str) -> bytes:
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError("Invalid base64 string") from e
    # b64decode tolerates non-canonical trailing bits; the round trip does not
    if base64.b64encode(data).decode("ascii") != text:
        raise FormatError("Invalid base64 string")
    return data


def decode(text: str, use_multiformat: Optional[bool] = None) -> bytes:
    """Decode standard or multiformat base64 (optionally behind a data URL).

    With `use_multiformat` left as None both flavours are tried, multiformat
    first. True or False decodes strictly in that flavour.
    """
    cleaned = strip_data_url(text)
    if use_multiformat is True:
        return _decode_multiformat(cleaned)
    if use_multiformat is False:
        return _decode_standard(cleaned)
    try:
        return _decode_multiformat(cleaned)
    except FormatError:
        return _decode_standard(cleaned)


def encode(data: bytes, use_multiformat: bool = False) -> str:
    if use_multiformat:
        return libipld.encode_multibase(MULTIBASE_MARKER, bytes(data))
    return base64.b64encode(data).decode("ascii")


def stream_to_text(chunks: Iterable[bytes], use_multiformat: bool = False) -> str:
    """Drain `chunks` into memory and encode the result.

    The whole payload is buffered; retrieval payloads are expected to fit in
    memory.
    """
    buf = bytearray()
    for chunk in chunks:
        buf.extend(chunk)
    return encode(bytes(buf), use_multiformat)
