import pytest

from appledb import handlers
from appledb.database import DBController
from appledb.handlers import AppError
from appledb.models import (
    CreateExecutable,
    CreateOperatingSystemVersion,
    ExecutableEntitlement,
    IPSWEntitlements,
)
from appledb.platform import Platform


@pytest.fixture
def db(tmp_path):
    with DBController(tmp_path / "handlers.db") as controller:
        yield controller


def _ipsw(version="17.0"):
    ipsw = IPSWEntitlements(Platform.IOS, version)
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
    return ipsw


def _executable_id(db, name, version):
    (os_version,) = [v for v in db.get_operating_system_versions() if v.version == version]
    (executable,) = [
        e
        for e in db.get_executables_by_name(name)
        if e.operating_system_version_id == os_version.id
    ]
    return executable.id


def test_post_executable_entitlements_stores_everything(db):
    assert handlers.post_executable_entitlements(db, _ipsw()) == {"data": "ok"}

    executables = handlers.get_executables(db)
    assert {e["name"] for e in executables} == {"launchd", "backboardd"}
    versions = handlers.get_operating_system_versions(db)
    assert [v["version"] for v in versions] == ["17.0"]
    assert {e["operating_system_version_id"] for e in executables} == {versions[0]["id"]}

    # The shared entitlement is stored only once.
    assert len(handlers.get_entitlements(db)) == 2

    launchd = _executable_id(db, "launchd", "17.0")
    keys = {e["key"] for e in handlers.get_entitlements_for_executable(db, launchd)}
    assert keys == {"com.apple.private.security", "platform-application"}


def test_post_executable_entitlements_twice_is_idempotent(db):
    handlers.post_executable_entitlements(db, _ipsw())
    before = handlers.get_entitlements(db)
    assert handlers.post_executable_entitlements(db, _ipsw()) == {"data": "ok"}
    assert handlers.get_entitlements(db) == before
    assert len(handlers.get_executables(db)) == 2


def test_get_entitlement_by_id_round_trip(db):
    handlers.post_executable_entitlements(db, _ipsw())
    for entitlement in handlers.get_entitlements(db):
        assert handlers.get_entitlement_by_id(db, entitlement["id"]) == entitlement


def test_unknown_ids_raise_app_error(db):
    with pytest.raises(AppError) as excinfo:
        handlers.get_entitlement_by_id(db, 999)
    assert excinfo.value.reason == "unknown entitlement id 999"

    with pytest.raises(AppError) as excinfo:
        handlers.get_executable_by_id(db, 42)
    assert excinfo.value.reason == "unknown executable id 42"

    with pytest.raises(AppError):
        handlers.get_entitlements_for_executable(db, 42)

    with pytest.raises(AppError) as excinfo:
        handlers.get_operating_system_version_by_id(db, 5)
    assert excinfo.value.reason == "Operating system version not found"


def test_diff_entitlements_between_versions(db):
    old = IPSWEntitlements(Platform.IOS, "17.0")
    old.add_executable_entitlements(
        "launchd",
        [ExecutableEntitlement("alpha", "true"), ExecutableEntitlement("beta", "true")],
    )
    new = IPSWEntitlements(Platform.IOS, "18.0")
    new.add_executable_entitlements(
        "launchd",
        [ExecutableEntitlement("beta", "true"), ExecutableEntitlement("gamma", "true")],
    )
    handlers.post_executable_entitlements(db, old)
    handlers.post_executable_entitlements(db, new)

    diff = handlers.diff_entitlements_for_executables(
        db, _executable_id(db, "launchd", "17.0"), _executable_id(db, "launchd", "18.0")
    )
    assert [e["key"] for e in diff["added"]] == ["gamma"]
    assert [e["key"] for e in diff["removed"]] == ["alpha"]
    assert [e["key"] for e in diff["unchanged"]] == ["beta"]


def test_diff_of_executable_with_itself_is_unchanged(db):
    handlers.post_executable_entitlements(db, _ipsw())
    launchd = _executable_id(db, "launchd", "17.0")
    diff = handlers.diff_entitlements_for_executables(db, launchd, launchd)
    assert diff["added"] == []
    assert diff["removed"] == []
    assert diff["unchanged"] == handlers.get_entitlements_for_executable(db, launchd)


def test_post_executable_reports_creation_then_existence(db):
    os_id = db.get_operating_systems()[0].id
    version_id = handlers.post_operating_system_version(
        db, CreateOperatingSystemVersion(os_id, "16.4")
    )["data"]
    request = CreateExecutable("SpringBoard", version_id)

    first = handlers.post_executable(db, request)["data"]
    second = handlers.post_executable(db, request)["data"]
    assert list(first) == ["Created"]
    assert second == {"AlreadyExists": first["Created"]}
    assert handlers.get_executable_by_id(db, first["Created"])["name"] == "SpringBoard"


def test_post_operating_system_version_round_trip(db):
    os_id = db.get_operating_systems()[1].id
    version_id = handlers.post_operating_system_version(
        db, CreateOperatingSystemVersion(os_id, "14.2")
    )["data"]
    assert handlers.get_operating_system_version_by_id(db, version_id) == {
        "id": version_id,
        "version": "14.2",
        "operating_system_id": os_id,
    }


def test_duplicate_operating_system_version_is_an_error(db):
    os_id = db.get_operating_systems()[0].id
    request = CreateOperatingSystemVersion(os_id, "1.0")
    handlers.post_operating_system_version(db, request)
    with pytest.raises(AppError):
        handlers.post_operating_system_version(db, request)


def test_operating_systems_are_wrapped(db):
    result = handlers.get_operating_systems(db)
    assert [os["name"] for os in result["data"]] == ["ios", "macos", "watchos", "tvos"]
    first = result["data"][0]
    assert handlers.get_operating_system_by_id(db, first["id"]) == {"data": first}


def test_executables_with_entitlement(db):
    handlers.post_executable_entitlements(db, _ipsw())
    version_id = handlers.get_operating_system_versions(db)[0]["id"]

    found = handlers.get_executables_with_entitlement_for_os_version(
        db, version_id, "platform-application"
    )
    assert {e["name"] for e in found} == {"launchd", "backboardd"}

    assert (
        handlers.get_executables_with_entitlement_for_os_version(db, version_id, "absent")
        == []
    )


def test_get_executables_by_name(db):
    handlers.post_executable_entitlements(db, _ipsw("17.0"))
    handlers.post_executable_entitlements(db, _ipsw("17.1"))
    found = handlers.get_executables_by_name(db, "launchd")
    assert len(found) == 2
    assert {e["name"] for e in found} == {"launchd"}


def test_app_error_body():
    assert AppError("boom").to_response_body() == {"reason": "boom"}
    assert AppError("boom").status_code == 500