"""Server configuration: listen address, body size limit and database path."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Any, Mapping, Union
from urllib.parse import urlsplit

import yaml


class ConfigError(ValueError):
    """Raised when a configuration value cannot be understood."""


@dataclass(frozen=True)
class TcpAddress:
    """An HTTP listen address made of an IP address and a port."""

    host: str
    port: int

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}"


@dataclass(frozen=True)
class UnixSocketPath:
    """A Unix domain socket to listen on."""

    path: Path

    def __str__(self) -> str:
        return f"unix://{self.path}"


ListenMode = Union[TcpAddress, UnixSocketPath]

_HTTP_DEFAULT_PORT = 80


def parse_listen_mode(text: str) -> ListenMode:
    """Parse ``http://IP:PORT`` or ``unix:///path/to/socket``."""
    try:
        parts = urlsplit(text)
    except ValueError as exc:
        raise ConfigError(f"invalid listen mode {text!r}: {exc}") from exc

    scheme = parts.scheme
    if scheme == "http":
        host = parts.hostname
        if not host:
            raise ConfigError("No host")
        try:
            port = parts.port
        except ValueError as exc:
            raise ConfigError(f"invalid port in {text!r}") from exc
        # The scheme's default port counts as no port at all.
        if port is None or port == _HTTP_DEFAULT_PORT:
            raise ConfigError("No port")
        try:
            address = ipaddress.ip_address(host)
        except ValueError as exc:
            raise ConfigError(f"invalid IP address {host!r}") from exc
        return TcpAddress(str(address), port)
    if scheme == "unix":
        return UnixSocketPath(Path(parts.path))
    raise ConfigError(f"Invalid scheme {scheme}")


@dataclass(frozen=True)
class ServerConfig:
    """Settings shared by the server and the command-line client."""

    listen_mode: ListenMode
    http_max_body_size: int
    database_path: Path

    @classmethod
    def from_mapping(cls, data: Any) -> ServerConfig:
        """Build a configuration from a parsed YAML document."""
        if not isinstance(data, Mapping):
            raise ConfigError("configuration must be a mapping")
        for key in ("listen_mode", "http_max_body_size", "database_path"):
            if key not in data:
                raise ConfigError(f"missing field `{key}`")

        listen_mode = data["listen_mode"]
        if not isinstance(listen_mode, str):
            raise ConfigError("listen_mode must be a string")

        body_size = data["http_max_body_size"]
        if isinstance(body_size, bool) or not isinstance(body_size, int) or body_size < 0:
            raise ConfigError("http_max_body_size must be a non-negative integer")

        database_path = data["database_path"]
        if not isinstance(database_path, str):
            raise ConfigError("database_path must be a string")

        return cls(
            listen_mode=parse_listen_mode(listen_mode),
            http_max_body_size=body_size,
            database_path=Path(database_path),
        )


def read_configuration(path: str | PathLike[str]) -> ServerConfig:
    """Read a YAML configuration file."""
    with open(path, encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    return ServerConfig.from_mapping(data)