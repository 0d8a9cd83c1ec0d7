import pytest
from fastapi.testclient import TestClient

from ldap_gateway.main import create_app

from .conftest import STAFF_OU


@pytest.fixture
def api(client):
    with TestClient(create_app(client), raise_server_exceptions=False) as c:
        yield c


def test_healthz(api):
    r = api.get("/ldap/healthz")
    assert r.status_code == 200
    assert r.json()["code"] == 0


def test_trace_id_is_echoed(api):
    r = api.get("/ldap/healthz", headers={"trace_id": "abc-123"})
    assert r.json()["trace_id"] == "abc-123"


def test_trace_id_is_generated(api):
    assert api.get("/ldap/healthz").json()["trace_id"].startswith("req_")


def test_get_user(api):
    r = api.get("/ldap/user/alice")
    body = r.json()
    assert r.status_code == 200
    assert body["message"] == "ok"
    assert body["data"]["user"]["sAMAccountName"] == "alice"
    assert body["data"]["user"]["objectSid"].startswith("S-1-5-21-")


def test_get_user_not_found(api):
    r = api.get("/ldap/user/nobody")
    body = r.json()
    assert r.status_code == 404
    assert body["code"] == 96
    assert body["data"] is None


def test_get_user_bad_guid(api):
    r = api.get("/ldap/user/xyz", params={"user_id_type": "objectGUID"})
    assert r.status_code == 400


def test_availability(api):
    assert api.get("/ldap/availability", params={"name": "dave"}).status_code == 200

    r = api.get("/ldap/availability", params={"name": "alice"})
    body = r.json()
    assert r.status_code == 409
    assert body["code"] == 68
    assert body["message"] == "name has been used"
    assert body["data"]["object"]["sAMAccountName"] == "alice"


def test_availability_reserved(api):
    r = api.get("/ldap/availability", params={"name": "Local Service"})
    assert r.status_code == 403
    assert r.json()["code"] == 1000


def test_create_user(api, directory):
    r = api.post(
        "/ldap/user",
        json={
            "sAMAccountName": " dave ",
            "displayName": "Dave Davis",
            "OU": STAFF_OU,
            "password": "Str0ng!Pass",
            "primaryDomain": "example.com",
        },
    )
    assert r.status_code == 200, r.text
    assert r.json()["data"]["user"]["userAccountControl"] == "512"
    assert directory.get(f"CN=dave,{STAFF_OU}") is not None


def test_create_user_weak_password(api):
    r = api.post(
        "/ldap/user",
        json={"sAMAccountName": "dave", "OU": STAFF_OU, "password": "weak", "primaryDomain": "example.com"},
    )
    assert r.status_code == 400
    assert "password is not strong enough" in r.json()["message"]


def test_create_user_without_domain(api):
    r = api.post("/ldap/user", json={"sAMAccountName": "dave", "OU": STAFF_OU, "password": "Str0ng!Pass"})
    assert r.status_code == 400
    assert r.json()["message"] == "unsupported domain: ''"


def test_invalid_json_body(api):
    r = api.post("/ldap/user", content=b"{not json", headers={"content-type": "application/json"})
    body = r.json()
    assert r.status_code == 400
    assert body["message"] == "invalid json body"


def test_set_password(api, directory):
    r = api.post("/ldap/user/alice/password", json={"password": "N3w!Secret"})
    assert r.status_code == 200
    assert directory.get(f"CN=alice,{STAFF_OU}").text("lockoutTime") == ["0"]


def test_patch_user(api):
    r = api.patch("/ldap/user/bob", json={"displayName": "Robert", "OU": "OU=Moved,DC=example,DC=com"})
    user = r.json()["data"]["user"]
    assert r.status_code == 200
    assert user["displayName"] == "Robert"
    assert user["distinguishedName"] == "CN=bob,OU=Moved,DC=example,DC=com"


def test_group_roundtrip(api):
    r = api.post("/ldap/group", json={"sAMAccountName": "ops", "OU": "OU=Groups,DC=example,DC=com"})
    assert r.status_code == 200, r.text

    r = api.put("/ldap/group/ops/member", json={"add_members": ["alice", "ghost"]})
    body = r.json()
    assert r.status_code == 200
    assert body["message"].startswith("ok;add failed")
    assert body["data"]["group"]["member"] == [f"CN=alice,{STAFF_OU}"]

    r = api.patch("/ldap/group/ops", json={"description": "Operations"})
    assert r.json()["data"]["group"]["description"] == "Operations"


def test_unexpected_errors_are_not_leaked(api, client, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("secret internals")

    monkeypatch.setattr(client, "get_user", boom)
    r = api.get("/ldap/user/alice")
    body = r.json()
    assert r.status_code == 500
    assert body["code"] == 1000
    assert body["message"] == "Internal Server Error"
    assert "secret" not in r.text
