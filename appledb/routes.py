"""URL paths served by the API."""

from __future__ import annotations

from enum import Enum

ADMIN_ROUTES = "/api/admin"

# Admin routes
POST_OPERATING_SYSTEM_VERSION = "/operating_system_version"
POST_EXECUTABLE = "/executable"
POST_EXECUTABLE_ENTITLEMENTS_ROUTE = "/executable/entitlements"


class PublicRoutes(Enum):
    """Public read-only routes, relative to :meth:`route_prefix`."""

    GET_OPERATING_SYSTEMS = "/operating_systems/get"
    GET_OPERATING_SYSTEM_BY_ID = "/operating_systems/get/{id}"

    GET_OPERATING_SYSTEM_VERSIONS = "/operating_system_versions/get"
    GET_OPERATING_SYSTEM_VERSIONS_BY_ID = "/operating_system_versions/get/{id}"

    GET_EXECUTABLES = "/executables/get"
    GET_EXECUTABLES_BY_ID = "/executables/get/{id}"
    GET_EXECUTABLES_BY_NAME = "/executables/get_by_name/{id}"
    GET_EXECUTABLES_WITH_ENTITLEMENT = (
        "/executables/get/{operating_system_version_id}/{entitlement_key}"
    )

    GET_ENTITLEMENTS = "/entitlements/get"
    GET_ENTITLEMENTS_BY_ID = "/entitlements/get/{id}"
    GET_ENTITLEMENTS_FOR_EXECUTABLE = "/entitlements/executable/get/{id}"
    DIFF_ENTITLEMENTS_EXECUTABLES = (
        "/entitlements/diff/{from_executable_id}/{to_executable_id}"
    )

    @classmethod
    def route_prefix(cls) -> str:
        """Prefix under which every public route is mounted."""
        return "/api/v1"

    def __str__(self) -> str:
        return self.value