"""Tests for the storacha-mcp CLI."""

import json
from unittest.mock import MagicMock, patch

import pytest

from conftest import b64
from storacha_mcp import cli
from storacha_mcp.storage.identity import Signer


def _run(argv):
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    return exc.value.code


@pytest.fixture
def configured(monkeypatch, signer, delegation_text):
    monkeypatch.setenv("PRIVATE_KEY", signer.format())
    monkeypatch.setenv("DELEGATION", delegation_text)
    monkeypatch.setenv("UPLOAD_SERVICE_URL", "https://up.example")
    return signer


class TestKeygen:
    """Tests for `storacha-mcp keygen`."""

    def test_prints_parseable_key(self, capsys):
        assert _run(["keygen"]) == 0
        key = capsys.readouterr().out.strip()
        assert Signer.parse(key).did().startswith("did:key:")


class TestIdentity:
    """Tests for `storacha-mcp identity`."""

    def test_shows_did(self, configured, capsys):
        assert _run(["identity"]) == 0
        assert capsys.readouterr().out.strip() == configured.did()

    def test_no_emoji_substitution(self, configured, capsys):
        """`:key:` inside a DID is printed literally."""
        assert _run(["identity"]) == 0
        captured = capsys.readouterr()
        assert "\N{KEY}" not in captured.out + captured.err
        assert "did:key:" in captured.out

    def test_missing_key(self, capsys):
        assert _run(["identity"]) == 2
        assert "PRIVATE_KEY" in capsys.readouterr().err


class TestUpload:
    """Tests for `storacha-mcp upload`."""

    def test_upload_file(self, configured, tmp_path, capsys):
        path = tmp_path / "note.txt"
        path.write_bytes(b"remember the milk")

        with patch("storacha_mcp.storage.client.HttpUploadService") as service_cls:
            service_cls.return_value = MagicMock()
            assert _run(["upload", str(path)]) == 0

        result = json.loads(capsys.readouterr().out)
        assert list(result["files"]) == ["note.txt"]

    def test_missing_file(self, configured, tmp_path):
        assert _run(["upload", str(tmp_path / "absent.txt")]) == 2


class TestRetrieve:
    """Tests for `storacha-mcp retrieve`."""

    def test_writes_output(self, configured, tmp_path):
        out = tmp_path / "out.txt"
        with patch("storacha_mcp.mcp.registry.StorageTools.retrieve") as retrieve:
            retrieve.return_value = {"data": b64(b"payload"), "type": "text/plain"}
            assert _run(["retrieve", "bafy/x.txt", "-o", str(out)]) == 0
        assert out.read_bytes() == b"payload"

    def test_output_keeps_marker_lookalike_bytes(self, configured, tmp_path):
        """Standard base64 that starts with "m" is not read as multibase."""
        out = tmp_path / "out.bin"
        with patch("storacha_mcp.mcp.registry.StorageTools.retrieve") as retrieve:
            retrieve.return_value = {"data": "mAAA", "type": "application/octet-stream"}
            assert _run(["retrieve", "bafy/x.bin", "-o", str(out)]) == 0
        assert out.read_bytes() == b"\x98\x00\x00"

    def test_output_multiformat(self, configured, tmp_path):
        out = tmp_path / "out.bin"
        with patch("storacha_mcp.mcp.registry.StorageTools.retrieve") as retrieve:
            retrieve.return_value = {"data": "mmAAA", "type": "application/octet-stream"}
            assert _run(["retrieve", "bafy/x.bin", "-o", str(out), "--multiformat"]) == 0
        assert out.read_bytes() == b"\x98\x00\x00"

    def test_error(self, configured, capsys):
        assert _run(["retrieve", "no-slash"]) == 1
        assert "Retrieve failed" in capsys.readouterr().err


class TestServe:
    """Tests for the default serve command."""

    def test_default_is_stdio(self, configured):
        with patch("storacha_mcp.mcp.server.serve_from_registry") as serve:
            assert _run([]) == 0
        assert serve.call_args.kwargs["transport"] == "stdio"

    def test_rest_transport(self, configured):
        with patch("storacha_mcp.mcp.rest.serve_rest") as serve:
            assert _run(["serve", "--transport", "rest"]) == 0
        serve.assert_called_once()

    def test_invalid_env_transport(self, configured, monkeypatch, capsys):
        monkeypatch.setenv("MCP_TRANSPORT_MODE", "smoke-signals")
        assert _run([]) == 2
        assert "Invalid transport mode" in capsys.readouterr().err
