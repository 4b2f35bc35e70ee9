"""Tests for the Filecoin piece hasher."""

import pytest

from storacha_mcp.storage.cid import RAW, decode_varint
from storacha_mcp.storage.piece import PieceHasher, fr32_pad


class TestFr32:
    """Tests for fr32_pad()."""

    def test_expands_127_to_128(self):
        assert len(fr32_pad(b"\x00" * 127)) == 128
        assert len(fr32_pad(b"\x01" * 254)) == 256

    def test_zero_bits_inserted(self):
        """All ones in gives two cleared bits per 256 bit quad out."""
        out = fr32_pad(b"\xff" * 127)
        for quad in range(4):
            assert out[quad * 32 + 31] == 0x3F

    def test_rejects_unaligned_input(self):
        with pytest.raises(ValueError):
            fr32_pad(b"\x00" * 100)


class TestPieceHasher:
    """Tests for PieceHasher.digest()."""

    def test_piece_cid_shape(self):
        cid = PieceHasher().digest(b"hello world")
        assert cid.version == 1
        assert cid.codec == RAW
        assert cid.hash_code == 0x1011

        padding, pos = decode_varint(cid.digest, 0)
        assert padding == 127 - len(b"hello world")
        assert cid.digest[pos] == 2  # 128 bytes -> 4 leaves -> height 2
        assert len(cid.digest) == pos + 1 + 32

    def test_stable(self):
        payload = b"x" * 1000
        assert PieceHasher().digest(payload) == PieceHasher().digest(payload)

    def test_differs_by_content(self):
        assert PieceHasher().digest(b"a" * 200) != PieceHasher().digest(b"b" * 200)

    def test_height_grows_with_size(self):
        small = PieceHasher().digest(b"\x01" * 100)
        large = PieceHasher().digest(b"\x01" * 1000)
        _, p1 = decode_varint(small.digest, 0)
        _, p2 = decode_varint(large.digest, 0)
        assert large.digest[p2] > small.digest[p1]

    def test_root_is_truncated(self):
        cid = PieceHasher().digest(b"data" * 64)
        assert cid.digest[-1] & 0xC0 == 0
