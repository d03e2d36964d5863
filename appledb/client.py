"""HTTP client for the entitlement server."""

from __future__ import annotations

from typing import Any

import httpx

from appledb.config import ConfigError, ListenMode, TcpAddress
from appledb.models import IPSWEntitlements, OperatingSystem
from appledb.routes import ADMIN_ROUTES, POST_EXECUTABLE_ENTITLEMENTS_ROUTE, PublicRoutes


class ServerRequestError(Exception):
    """Raised when the server answers with an error or an unexpected body."""


def _unwrap(response: httpx.Response) -> Any:
    if response.status_code == httpx.codes.OK:
        try:
            return response.json()["data"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ServerRequestError(f"invalid server response: {exc}") from exc
    try:
        reason = response.json()["reason"]
    except (ValueError, KeyError, TypeError):
        raise ServerRequestError(
            f"unexpected server response ({response.status_code}): {response.text}"
        ) from None
    raise ServerRequestError(f"Server error: {reason}")


class ServerController:
    """Talks to the API over HTTP."""

    def __init__(
        self, listen_mode: ListenMode, transport: httpx.BaseTransport | None = None
    ) -> None:
        if not isinstance(listen_mode, TcpAddress):
            raise ConfigError("unix socket not supported yet")
        self._client = httpx.Client(base_url=str(listen_mode), transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ServerController:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def get_operating_systems(self) -> list[OperatingSystem]:
        """Every operating system known to the server."""
        path = PublicRoutes.route_prefix() + PublicRoutes.GET_OPERATING_SYSTEMS.value
        data = _unwrap(self._client.get(path))
        if not isinstance(data, list):
            raise ServerRequestError("invalid server response: expected a list")
        try:
            return [OperatingSystem.from_dict(item) for item in data]
        except ValueError as exc:
            raise ServerRequestError(f"invalid server response: {exc}") from exc

    def post_executable_entitlements(self, entitlements: IPSWEntitlements) -> str:
        """Upload the entitlements of a firmware image; returns the server's reply."""
        path = ADMIN_ROUTES + POST_EXECUTABLE_ENTITLEMENTS_ROUTE
        data = _unwrap(self._client.post(path, json=entitlements.to_dict()))
        if not isinstance(data, str):
            raise ServerRequestError("invalid server response: expected a string")
        return data