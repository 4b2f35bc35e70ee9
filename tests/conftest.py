"""Shared fixtures for the storage tests."""

import base64
import os
from unittest.mock import MagicMock, patch

import libipld
import pytest

from storacha_mcp.storage.car import write_car
from storacha_mcp.storage.cid import CID, DAG_CBOR
from storacha_mcp.storage.client import StorageConfig
from storacha_mcp.storage.delegation import parse_delegation
from storacha_mcp.storage.identity import Signer
from storacha_mcp.storage.unixfs import DirectoryEncoder, UnixFSFile


def build_delegation_car(capabilities=("space/blob/add", "upload/add")) -> bytes:
    """A minimal proof archive: one dag-cbor UCAN-shaped root block."""
    payload = {
        "iss": "did:key:z6MkIssuer",
        "aud": "did:key:z6MkAudience",
        "att": [{"can": can, "with": "did:key:z6MkSpace"} for can in capabilities],
        "exp": 1893456000,
    }
    block = libipld.encode_dag_cbor(payload)
    root = CID.create(DAG_CBOR, block)
    return write_car([root], [(root, block)])


def build_directory_car(files, chunk_size=None):
    """Encode `files` ({name: bytes}) as a directory and return (root, car)."""
    kwargs = {"chunk_size": chunk_size} if chunk_size else {}
    encoder = DirectoryEncoder(**kwargs)
    root = encoder.encode_directory([UnixFSFile(name, content) for name, content in files.items()])
    return root, write_car([root], encoder.blocks)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def signer():
    return Signer.generate()


@pytest.fixture
def delegation_text():
    return b64(build_delegation_car())


@pytest.fixture
def delegation(delegation_text):
    return parse_delegation(delegation_text)


@pytest.fixture
def storage_config(signer, delegation):
    return StorageConfig(
        signer=signer,
        delegation=delegation,
        gateway_url="https://gateway.example",
        service_url="https://up.example",
    )


@pytest.fixture
def fake_service():
    """An UploadService double that records every store() call."""
    return MagicMock(name="UploadService")


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep real config files and storage env vars out of the tests."""
    with patch.dict(os.environ):
        for name in (
            "PRIVATE_KEY",
            "DELEGATION",
            "GATEWAY_URL",
            "UPLOAD_SERVICE_URL",
            "MCP_SERVER_HOST",
            "MCP_SERVER_PORT",
            "MCP_CONNECTION_TIMEOUT",
            "MCP_TRANSPORT_MODE",
            "MAX_FILE_SIZE",
            "LOG_LEVEL",
        ):
            os.environ.pop(name, None)
        os.environ["XDG_CONFIG_HOME"] = str(tmp_path / "xdg")
        monkeypatch.chdir(tmp_path)
        yield
