import pytest
from fastapi.testclient import TestClient

from appledb.database import DBController
from appledb.models import ExecutableEntitlement, IPSWEntitlements
from appledb.platform import Platform
from appledb.routes import (
    ADMIN_ROUTES,
    POST_EXECUTABLE,
    POST_EXECUTABLE_ENTITLEMENTS_ROUTE,
    POST_OPERATING_SYSTEM_VERSION,
    PublicRoutes,
)
from appledb.server import create_app, main

PREFIX = PublicRoutes.route_prefix()
BODY_LIMIT = 4096


@pytest.fixture
def client(tmp_path):
    with DBController(tmp_path / "server.db") as db:
        with TestClient(create_app(db, BODY_LIMIT)) as test_client:
            yield test_client


def _ipsw_payload():
    ipsw = IPSWEntitlements(Platform.IOS, "17.0")
    ipsw.add_executable_entitlements(
        "launchd",
        [
            ExecutableEntitlement("com.apple.private.security", "true"),
            ExecutableEntitlement("platform-application", "true"),
        ],
    )
    ipsw.add_executable_entitlements(
        "backboardd", [ExecutableEntitlement("platform-application", "true")]
    )
    return ipsw.to_dict()


def _public(route, **params):
    return PREFIX + route.value.format(**params)


def test_operating_systems_listing(client):
    response = client.get(_public(PublicRoutes.GET_OPERATING_SYSTEMS))
    assert response.status_code == 200
    names = [os["name"] for os in response.json()["data"]]
    assert names == ["ios", "macos", "watchos", "tvos"]

    first = response.json()["data"][0]
    by_id = client.get(_public(PublicRoutes.GET_OPERATING_SYSTEM_BY_ID, id=first["id"]))
    assert by_id.json() == {"data": first}


def test_post_entitlements_then_query(client):
    response = client.post(
        ADMIN_ROUTES + POST_EXECUTABLE_ENTITLEMENTS_ROUTE, json=_ipsw_payload()
    )
    assert response.status_code == 200
    assert response.json() == {"data": "ok"}

    executables = client.get(_public(PublicRoutes.GET_EXECUTABLES)).json()
    assert {e["name"] for e in executables} == {"launchd", "backboardd"}

    launchd = next(e for e in executables if e["name"] == "launchd")
    assert client.get(_public(PublicRoutes.GET_EXECUTABLES_BY_ID, id=launchd["id"])).json() == launchd

    by_name = client.get(_public(PublicRoutes.GET_EXECUTABLES_BY_NAME, id="launchd")).json()
    assert by_name == [launchd]

    ents = client.get(
        _public(PublicRoutes.GET_ENTITLEMENTS_FOR_EXECUTABLE, id=launchd["id"])
    ).json()
    assert {e["key"] for e in ents} == {"com.apple.private.security", "platform-application"}

    all_ents = client.get(_public(PublicRoutes.GET_ENTITLEMENTS)).json()
    assert len(all_ents) == 2
    one = all_ents[0]
    assert client.get(_public(PublicRoutes.GET_ENTITLEMENTS_BY_ID, id=one["id"])).json() == one

    with_key = client.get(
        _public(
            PublicRoutes.GET_EXECUTABLES_WITH_ENTITLEMENT,
            operating_system_version_id=launchd["operating_system_version_id"],
            entitlement_key="platform-application",
        )
    ).json()
    assert {e["name"] for e in with_key} == {"launchd", "backboardd"}

    diff = client.get(
        _public(
            PublicRoutes.DIFF_ENTITLEMENTS_EXECUTABLES,
            from_executable_id=launchd["id"],
            to_executable_id=launchd["id"],
        )
    ).json()
    assert diff["added"] == [] and diff["removed"] == []
    assert diff["unchanged"] == ents


def test_post_executable_and_os_version(client):
    os_id = client.get(_public(PublicRoutes.GET_OPERATING_SYSTEMS)).json()["data"][0]["id"]
    version = client.post(
        ADMIN_ROUTES + POST_OPERATING_SYSTEM_VERSION,
        json={"operating_system_id": os_id, "version": "16.4"},
    )
    version_id = version.json()["data"]
    fetched = client.get(
        _public(PublicRoutes.GET_OPERATING_SYSTEM_VERSIONS_BY_ID, id=version_id)
    ).json()
    assert fetched == {"id": version_id, "version": "16.4", "operating_system_id": os_id}

    request = {"name": "SpringBoard", "operating_system_version_id": version_id}
    first = client.post(ADMIN_ROUTES + POST_EXECUTABLE, json=request).json()["data"]
    second = client.post(ADMIN_ROUTES + POST_EXECUTABLE, json=request).json()["data"]
    assert second == {"AlreadyExists": first["Created"]}


def test_unknown_id_is_server_error(client):
    response = client.get(_public(PublicRoutes.GET_ENTITLEMENTS_BY_ID, id=77))
    assert response.status_code == 500
    assert response.json() == {"reason": "unknown entitlement id 77"}


def test_unparsable_id_is_bad_request(client):
    response = client.get(_public(PublicRoutes.GET_EXECUTABLES_BY_ID, id="abc"))
    assert response.status_code == 400


def test_body_over_limit_is_rejected(client):
    response = client.post(
        ADMIN_ROUTES + POST_EXECUTABLE,
        content=b" " * (BODY_LIMIT + 1),
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 413


def test_body_rejections(client):
    url = ADMIN_ROUTES + POST_EXECUTABLE
    not_json = client.post(
        url, content=b"{", headers={"content-type": "application/json"}
    )
    assert not_json.status_code == 400

    wrong_type = client.post(url, content=b"{}", headers={"content-type": "text/plain"})
    assert wrong_type.status_code == 415

    wrong_shape = client.post(url, json={"name": "x"})
    assert wrong_shape.status_code == 422


def test_openapi_documents_every_public_route(client):
    response = client.get(PREFIX + "/openapi.json")
    assert response.status_code == 200
    paths = set(response.json()["paths"])
    assert paths == {PREFIX + route.value for route in PublicRoutes}


def test_main_requires_config():
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 2


def test_main_reports_missing_config(tmp_path):
    assert main(["-c", str(tmp_path / "missing.yaml")]) == 1