"""Tests for the upload and retrieve pipelines."""

import threading
from dataclasses import replace
from unittest.mock import MagicMock, Mock, patch

import pytest

from conftest import b64, build_directory_car
from storacha_mcp.storage.cid import CID
from storacha_mcp.storage.client import (
    LinkCollector,
    StorageClient,
    StorageConfig,
    UploadFile,
    UploadOptions,
)
from storacha_mcp.storage.errors import (
    AbortError,
    BlockError,
    ConfigError,
    FormatError,
    HttpError,
    PathParseError,
    UnknownError,
)
from storacha_mcp.storage.unixfs import DirectoryEntryLink


def _response(status=200, reason="OK", content=b"", content_type=None):
    response = Mock()
    response.ok = 200 <= status < 300
    response.status_code = status
    response.reason = reason
    response.content = content
    response.headers = {"content-type": content_type} if content_type else {}
    return response


class TestInitialize:
    """Tests for StorageClient.initialize()."""

    def test_requires_signer(self, storage_config, fake_service):
        client = StorageClient(replace(storage_config, signer=None), service=fake_service)
        with pytest.raises(ConfigError) as exc:
            client.initialize()
        assert exc.value.message == "Private key is required"
        assert client.is_connected() is False

    def test_requires_delegation(self, storage_config, fake_service):
        client = StorageClient(replace(storage_config, delegation=None), service=fake_service)
        with pytest.raises(ConfigError) as exc:
            client.initialize()
        assert exc.value.message == "Delegation is required"

    def test_requires_service_url_without_injected_service(self, storage_config):
        client = StorageClient(replace(storage_config, service_url=""))
        with pytest.raises(ConfigError):
            client.initialize()

    def test_builds_http_service(self, storage_config):
        client = StorageClient(storage_config)
        client.initialize()
        assert client.is_connected() is True

    def test_idempotent(self, storage_config, fake_service):
        client = StorageClient(storage_config, service=fake_service)
        client.initialize()
        client.initialize()
        assert client.is_connected() is True

    def test_http_service_shares_session(self, storage_config):
        session = MagicMock()
        session.headers = {}
        client = StorageClient(storage_config, session=session)
        client.initialize()
        assert session.headers["X-Client"].startswith("Storacha/1")


class TestClose:
    """Tests for StorageClient.close()."""

    def test_closes_own_session(self, storage_config):
        with patch("storacha_mcp.storage.client.requests.Session") as session_cls:
            with StorageClient(storage_config):
                pass
        session_cls.return_value.close.assert_called_once()

    def test_leaves_caller_session_open(self, storage_config):
        session = Mock()
        StorageClient(storage_config, session=session).close()
        session.close.assert_not_called()


class TestUploadFiles:
    """Tests for StorageClient.upload_files()."""

    @pytest.fixture
    def client(self, storage_config, fake_service):
        client = StorageClient(storage_config, service=fake_service)
        client.initialize()
        return client

    def test_not_initialized(self, storage_config, fake_service):
        client = StorageClient(storage_config, service=fake_service)
        with pytest.raises(ConfigError) as exc:
            client.upload_files([UploadFile("a.txt", b64(b"a"))])
        assert exc.value.message == "Client not initialized"
        fake_service.store.assert_not_called()

    def test_aborted_signal_makes_no_calls(self, client, fake_service):
        signal = threading.Event()
        signal.set()
        with pytest.raises(AbortError) as exc:
            client.upload_files([UploadFile("a.txt", b64(b"a"))], UploadOptions(signal=signal))
        assert exc.value.message == "Upload aborted"
        fake_service.store.assert_not_called()

    def test_two_files(self, client, fake_service, storage_config):
        result = client.upload_files([
            UploadFile("a.txt", b64(b"first file")),
            UploadFile("b.txt", b64(b"second file")),
        ])

        assert set(result.files) == {"a.txt", "b.txt"}
        assert result.files["a.txt"] != result.files["b.txt"]
        assert result.url == f"https://gateway.example/ipfs/{result.root}"

        fake_service.store.assert_called_once()
        car = fake_service.store.call_args.args[0]
        kwargs = fake_service.store.call_args.kwargs
        assert kwargs["root"] == result.root
        assert kwargs["issuer"] is storage_config.signer
        assert kwargs["proofs"] == [storage_config.delegation]
        assert kwargs["retries"] == 3
        assert kwargs["piece"] is None
        assert isinstance(car, bytes)

    def test_to_dict(self, client):
        result = client.upload_files([UploadFile("a.txt", b64(b"x"))]).to_dict()
        assert set(result) == {"root", "url", "files"}
        assert isinstance(result["root"], str)
        assert isinstance(result["files"]["a.txt"], str)

    def test_retries_passed_through(self, client, fake_service):
        client.upload_files([UploadFile("a.txt", b64(b"x"))], UploadOptions(retries=7))
        assert fake_service.store.call_args.kwargs["retries"] == 7

    def test_publish_to_filecoin_attaches_piece(self, client, fake_service):
        files = [UploadFile("a.txt", b64(b"x"))]
        plain = client.upload_files(files)
        published = client.upload_files(files, UploadOptions(publish_to_filecoin=True))

        piece = fake_service.store.call_args.kwargs["piece"]
        assert isinstance(piece, CID)
        assert piece.hash_code == 0x1011
        assert published.root == plain.root

    def test_multiformat_content(self, client):
        from storacha_mcp.storage import codec

        standard = client.upload_files([UploadFile("a.txt", b64(b"same bytes"))])
        multi = client.upload_files([UploadFile("a.txt", codec.encode(b"same bytes", use_multiformat=True))])
        assert standard.root == multi.root

    def test_invalid_base64(self, client, fake_service):
        with pytest.raises(FormatError):
            client.upload_files([UploadFile("a.txt", "***")])
        fake_service.store.assert_not_called()

    def test_structured_error_propagates(self, client, fake_service):
        fake_service.store.side_effect = HttpError(503, "Service Unavailable", prefix="Error uploading file")
        with pytest.raises(HttpError) as exc:
            client.upload_files([UploadFile("a.txt", b64(b"x"))])
        assert exc.value.status == 503

    def test_unknown_error_keeps_message(self, client, fake_service):
        boom = RuntimeError("connection reset")
        fake_service.store.side_effect = boom
        with pytest.raises(UnknownError) as exc:
            client.upload_files([UploadFile("a.txt", b64(b"x"))])
        assert exc.value.message == "connection reset"
        assert exc.value.__cause__ is boom

    def test_unknown_error_without_message(self, client, fake_service):
        fake_service.store.side_effect = RuntimeError()
        with pytest.raises(UnknownError) as exc:
            client.upload_files([UploadFile("a.txt", b64(b"x"))])
        assert exc.value.message == "Unknown error"

    def test_failed_write_reports_no_files(self, client, fake_service):
        """Links are only handed out once the write succeeded."""
        fake_service.store.side_effect = RuntimeError("down")
        with pytest.raises(UnknownError):
            client.upload_files([UploadFile("a.txt", b64(b"x"))])
        fake_service.store.side_effect = None
        result = client.upload_files([UploadFile("b.txt", b64(b"y"))])
        assert set(result.files) == {"b.txt"}


class TestLinkCollector:
    """Tests for LinkCollector."""

    def test_drain_skips_root_and_clears(self):
        collector = LinkCollector()
        cid = CID.create(0x55, b"x")
        collector(DirectoryEntryLink("", cid, 1))
        collector(DirectoryEntryLink("a.txt", cid, 1))
        assert collector.drain() == {"a.txt": cid}
        assert collector.drain() == {}


class TestRetrieve:
    """Tests for StorageClient.retrieve()."""

    @pytest.fixture
    def stored(self):
        return build_directory_car({"a.txt": b"hello world", "dir/b.bin": bytes(range(200))}, chunk_size=64)

    def _client(self, response):
        session = Mock()
        session.get.return_value = response
        config = StorageConfig(gateway_url="https://gateway.example", timeout_s=5.0)
        return StorageClient(config, session=session), session

    def test_standard_base64(self, stored):
        root, car = stored
        client, session = self._client(_response(content=car, content_type="text/plain"))

        result = client.retrieve(f"{root}/a.txt")

        assert result.data == b64(b"hello world")
        assert result.type == "text/plain"
        session.get.assert_called_once_with(
            f"https://gateway.example/ipfs/{root}/a.txt?format=car",
            headers={"Accept": "application/vnd.ipld.car"},
            timeout=5.0,
        )

    def test_multiformat(self, stored):
        root, car = stored
        client, _ = self._client(_response(content=car))
        result = client.retrieve(f"ipfs://{root}/a.txt", use_multiformat_base64=True)
        assert result.data.startswith("m")
        assert result.type is None
        assert result.to_dict() == {"data": result.data}

    def test_nested_multi_chunk(self, stored):
        root, car = stored
        client, _ = self._client(_response(content=car))
        result = client.retrieve(f"/ipfs/{root}/dir/b.bin")
        assert result.data == b64(bytes(range(200)))

    def test_not_found(self, stored):
        root, _ = stored
        client, _ = self._client(_response(status=404, reason="Not Found"))
        with pytest.raises(HttpError) as exc:
            client.retrieve(f"{root}/a.txt")
        assert "404" in exc.value.message
        assert "Not Found" in exc.value.message
        assert exc.value.message == "Error fetching file: 404 Not Found"

    def test_bad_path_makes_no_request(self):
        client, session = self._client(_response())
        with pytest.raises(PathParseError):
            client.retrieve("no-slash-here")
        session.get.assert_not_called()

    def test_corrupt_body(self, stored):
        root, _ = stored
        client, _ = self._client(_response(content=b"<html>oops</html>"))
        with pytest.raises(BlockError):
            client.retrieve(f"{root}/a.txt")

    def test_transport_failure_normalized(self, stored):
        root, _ = stored
        client, session = self._client(_response())
        session.get.side_effect = ConnectionError("refused")
        with pytest.raises(UnknownError) as exc:
            client.retrieve(f"{root}/a.txt")
        assert exc.value.message == "refused"

    def test_no_identity_needed(self, stored):
        """Reading works without initialize()."""
        root, car = stored
        client, _ = self._client(_response(content=car))
        assert client.is_connected() is False
        assert client.retrieve(f"{root}/a.txt").data == b64(b"hello world")
