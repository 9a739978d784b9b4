"""End-to-end tests for the HTTP surface."""

import pytest
from httpx import AsyncClient

PATIENT = {"resourceType": "Patient", "name": [{"family": "Doe", "given": ["Pat"]}]}
PASSWORD = "Sup3rSecret!"


async def _issue(client: AsyncClient, headers, email="p@x.com", resource_type="Patient", **params):
    return await client.post(
        f"/api/v1/resource/{resource_type}",
        params={"email": email, **params},
        json=PATIENT if resource_type == "Patient" else {"name": [{"family": "House"}]},
        headers=headers,
    )


async def _register(client: AsyncClient, code: str, email="p@x.com", password=PASSWORD):
    return await client.post(
        "/api/v1/register",
        json={"email": email, "password": password, "code": code, "name": "Pat Doe"},
    )


@pytest.mark.asyncio
async def test_full_onboarding_flow(async_client: AsyncClient, admin_headers):
    issued = await _issue(async_client, admin_headers)
    assert issued.status_code == 201
    body = issued.json()
    assert body["resource_type"] == "Patient"
    assert body["resource_id"]
    assert body["code"]

    registered = await _register(async_client, body["code"])
    assert registered.status_code == 201
    account = registered.json()
    assert account["role"] == "patient"
    assert account["resource_id"] == body["resource_id"]

    login = await async_client.post(
        "/api/v1/login", json={"email": "P@X.COM", "password": PASSWORD}
    )
    assert login.status_code == 200
    token = login.json()
    assert token["token_type"] == "bearer"
    assert token["account"]["linked_resource_id"] == body["resource_id"]
    assert "hashed_password" not in token["account"]

    set_cookie = login.headers.get("set-cookie")
    assert "HttpOnly" in set_cookie
    assert "SameSite=lax" in set_cookie

    me = await async_client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {token['access_token']}"}
    )
    assert me.status_code == 200
    assert me.json()["id"] == account["account_id"]


@pytest.mark.asyncio
async def test_issue_requires_admin(async_client: AsyncClient, make_account):
    await make_account("patient@x.com")
    login = await async_client.post(
        "/api/v1/login", json={"email": "patient@x.com", "password": PASSWORD}
    )
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    resp = await _issue(async_client, headers)
    assert resp.status_code == 403
    assert resp.json()["success"] is False

    async_client.cookies.clear()
    anonymous = await _issue(async_client, {})
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_register_error_mapping(async_client: AsyncClient, admin_headers):
    code = (await _issue(async_client, admin_headers)).json()["code"]

    missing = await _register(async_client, "NEVERISSUED")
    assert missing.status_code == 404
    assert missing.json()["error"] == "CodeNotFound"

    mismatch = await _register(async_client, code, email="other@x.com")
    assert mismatch.status_code == 409
    assert mismatch.json()["error"] == "EmailMismatch"

    weak = await _register(async_client, code, password="weak")
    assert weak.status_code == 400
    assert weak.json()["error"] == "WeakPassword"

    assert (await _register(async_client, code)).status_code == 201

    again = await _register(async_client, code)
    assert again.status_code == 409
    assert again.json()["error"] == "CodeAlreadyConsumed"


@pytest.mark.asyncio
async def test_login_does_not_reveal_accounts(async_client: AsyncClient, make_account):
    await make_account("jane@x.com")
    unknown = await async_client.post(
        "/api/v1/login", json={"email": "ghost@x.com", "password": PASSWORD}
    )
    wrong = await async_client.post(
        "/api/v1/login", json={"email": "jane@x.com", "password": "Wr0ng-password"}
    )
    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()
    assert unknown.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_disabled_account_gets_invalid_credentials(async_client: AsyncClient, admin_headers, make_account):
    jane = await make_account("jane@x.com")

    resp = await async_client.patch(
        f"/api/v1/auth/users/{jane.id}", json={"status": "disabled"}, headers=admin_headers
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "disabled"

    login = await async_client.post(
        "/api/v1/login", json={"email": "jane@x.com", "password": PASSWORD}
    )
    assert login.status_code == 401
    assert login.json()["error"] == "InvalidCredentials"


@pytest.mark.asyncio
async def test_issue_validation_errors(async_client: AsyncClient, admin_headers, fhir_server):
    bad_email = await _issue(async_client, admin_headers, email="nope")
    assert bad_email.status_code == 400
    assert bad_email.json()["error"] == "InvalidEmail"

    bad_ttl = await _issue(async_client, admin_headers, ttl_hours=100000)
    assert bad_ttl.status_code == 400
    assert bad_ttl.json()["error"] == "InvalidTTL"

    bad_type = await _issue(async_client, admin_headers, resource_type="Device")
    assert bad_type.status_code == 400

    fhir_server.reject_next = True
    rejected = await _issue(async_client, admin_headers)
    assert rejected.status_code == 502
    assert rejected.json()["error"] == "ResourceCreationFailed"


@pytest.mark.asyncio
async def test_reissue_endpoint(async_client: AsyncClient, admin_headers):
    first = (await _issue(async_client, admin_headers)).json()

    resp = await async_client.post(
        f"/api/v1/resource/Patient/{first['resource_id']}/access-code",
        params={"email": "p@x.com", "ttl_hours": 24},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["resource_id"] == first["resource_id"]

    missing = await async_client.post(
        "/api/v1/resource/Patient/999999/access-code",
        params={"email": "p@x.com"},
        headers=admin_headers,
    )
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_verify_endpoint_is_public_and_read_only(async_client: AsyncClient, admin_headers):
    code = (await _issue(async_client, admin_headers)).json()["code"]

    for _ in range(2):
        resp = await async_client.post("/api/v1/access-codes/verify", json={"code": code})
        assert resp.status_code == 200
        assert resp.json()["state"] == "active"
        assert resp.json()["resource_type"] == "Patient"

    await _register(async_client, code)
    used = await async_client.post("/api/v1/access-codes/verify", json={"code": code})
    assert used.status_code == 409


@pytest.mark.asyncio
async def test_list_and_sweep_codes(async_client: AsyncClient, admin_headers):
    a = (await _issue(async_client, admin_headers, email="a@x.com")).json()
    await _issue(async_client, admin_headers, email="b@x.com", resource_type="Practitioner")
    await _register(async_client, a["code"], email="a@x.com")

    listed = await async_client.get("/api/v1/access-codes", headers=admin_headers)
    assert listed.status_code == 200
    assert {c["state"] for c in listed.json()} == {"active", "consumed"}

    consumed = await async_client.get(
        "/api/v1/access-codes", params={"state": "consumed"}, headers=admin_headers
    )
    assert [c["code"] for c in consumed.json()] == [a["code"]]

    sweep = await async_client.post("/api/v1/access-codes/sweep", headers=admin_headers)
    assert sweep.status_code == 200
    assert sweep.json() == {"expired": 0}


@pytest.mark.asyncio
async def test_create_admin_account(async_client: AsyncClient, admin_headers):
    resp = await async_client.post(
        "/api/v1/auth/users",
        json={"email": "ops@x.com", "password": PASSWORD, "display_name": "Ops"},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["role"] == "admin"
    assert data["linked_resource_id"] is None

    dup = await async_client.post(
        "/api/v1/auth/users",
        json={"email": "OPS@x.com", "password": PASSWORD},
        headers=admin_headers,
    )
    assert dup.status_code == 400


@pytest.mark.asyncio
async def test_logout_clears_cookie(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/auth/logout")
    assert resp.status_code == 200
    assert "access_token" in resp.headers.get("set-cookie", "")


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient, fhir_server):
    up = await async_client.get("/api/v1/health")
    assert up.status_code == 200
    assert up.json()["status"] == "ok"
    assert up.json()["db"] is True
    assert up.json()["fhir"]["fhir_version"] == "4.0.1"

    fhir_server.down = True
    down = await async_client.get("/api/v1/health")
    assert down.status_code == 200
    assert down.json()["status"] == "degraded"
    assert down.json()["fhir"]["status"] == "unhealthy"
