from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .env import load_env_files
from .storage.client import StorageConfig
from .storage.delegation import parse_delegation
from .storage.errors import ConfigError
from .storage.identity import Signer
from .urls import DEFAULT_GATEWAY_URL, is_valid_url

APP = "storacha-mcp"

TRANSPORT_MODES = ("stdio", "sse", "streamable-http", "rest")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

logger = logging.getLogger(__name__)


def config_dir() -> Path:
    """
    Cross-platform config directory:
      - Windows: %APPDATA%\\storacha-mcp
      - macOS/Linux: $XDG_CONFIG_HOME/storacha-mcp or ~/.config/storacha-mcp
    """
    if os.name == "nt":
        base = os.environ.get("APPDATA") or str(Path.home())
        return Path(base) / APP
    return Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))) / APP


def config_path() -> Path:
    return config_dir() / "config.json"


def _int(name: str, raw: object) -> int:
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"Invalid {name}: {raw!r}") from None


@dataclass
class Settings:
    # storage
    private_key: str = ""
    delegation: str = ""
    gateway_url: str = DEFAULT_GATEWAY_URL
    service_url: str = ""
    # server
    host: str = "0.0.0.0"
    port: int = 3001
    connection_timeout_ms: int = 30000
    transport_mode: str = "stdio"
    max_file_size: int = 100 * 1024 * 1024
    log_level: str = "INFO"

    @staticmethod
    def load(path: Optional[Path] = None) -> "Settings":
        """config.json < .env files < environment variables."""
        path = path or config_path()

        load_env_files(config_dir())

        data: dict = {}
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise ConfigError(f"Cannot read {path}: {e}") from e

        s = Settings(
            private_key=str(data.get("private_key", Settings.private_key)),
            delegation=str(data.get("delegation", Settings.delegation)),
            gateway_url=str(data.get("gateway_url", Settings.gateway_url)),
            service_url=str(data.get("service_url", Settings.service_url)),
            host=str(data.get("host", Settings.host)),
            port=_int("port number", data.get("port", Settings.port)),
            connection_timeout_ms=_int(
                "connection timeout", data.get("connection_timeout_ms", Settings.connection_timeout_ms)
            ),
            transport_mode=str(data.get("transport_mode", Settings.transport_mode)),
            max_file_size=_int("max file size", data.get("max_file_size", Settings.max_file_size)),
            log_level=str(data.get("log_level", Settings.log_level)),
        )

        env = os.environ
        s.private_key = env.get("PRIVATE_KEY", s.private_key).strip()
        s.delegation = env.get("DELEGATION", s.delegation).strip()
        s.gateway_url = env.get("GATEWAY_URL", s.gateway_url).strip() or DEFAULT_GATEWAY_URL
        s.service_url = env.get("UPLOAD_SERVICE_URL", s.service_url).strip()
        s.host = env.get("MCP_SERVER_HOST", s.host).strip() or Settings.host
        if "MCP_SERVER_PORT" in env:
            s.port = _int("port number", env["MCP_SERVER_PORT"])
        if "MCP_CONNECTION_TIMEOUT" in env:
            s.connection_timeout_ms = _int("connection timeout", env["MCP_CONNECTION_TIMEOUT"])
        s.transport_mode = env.get("MCP_TRANSPORT_MODE", s.transport_mode).strip() or Settings.transport_mode
        if "MAX_FILE_SIZE" in env:
            s.max_file_size = _int("max file size", env["MAX_FILE_SIZE"])
        s.log_level = env.get("LOG_LEVEL", s.log_level).strip().upper() or Settings.log_level

        return s

    def validate(self) -> "Settings":
        if not 0 <= self.port <= 65535:
            raise ConfigError("Invalid port number")
        if self.connection_timeout_ms < 0:
            raise ConfigError("Invalid connection timeout")
        if self.transport_mode not in TRANSPORT_MODES:
            raise ConfigError("Invalid transport mode")
        if self.max_file_size < 0:
            raise ConfigError("Invalid max file size")
        if not is_valid_url(self.gateway_url):
            raise ConfigError(f"Invalid gateway URL: {self.gateway_url}")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Invalid log level: {self.log_level}")
        return self

    @property
    def timeout_s(self) -> float:
        return self.connection_timeout_ms / 1000.0


def load_storage_config(settings: Settings) -> StorageConfig:
    """Parse the signer and the default delegation once, at startup.

    The private key is required. The delegation is optional here: without
    one every upload request has to bring its own.
    """
    if not settings.private_key:
        raise ConfigError("PRIVATE_KEY environment variable is required")
    signer = Signer.parse(settings.private_key)

    delegation = None
    if settings.delegation:
        delegation = parse_delegation(settings.delegation)
    else:
        logger.warning("No DELEGATION configured; uploads must supply one per request")

    return StorageConfig(
        signer=signer,
        delegation=delegation,
        gateway_url=settings.gateway_url,
        service_url=settings.service_url,
        timeout_s=settings.timeout_s or 120.0,
    )
