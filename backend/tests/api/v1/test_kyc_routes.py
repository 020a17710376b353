"""
KYC Routes Tests

This module contains end-to-end tests for the KYC API endpoints, running
against the in-memory user store and the fake Smile ID provider.
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.auth.jwt import create_access_token
from app.schemas.kyc import KYCStatus

LINK_BASE = "https://links.sandbox.usesmileid.com/1234"


def _signed_headers(signer):
    timestamp, signature = signer.generate()
    return {"x-smileid-signature": signature, "x-smileid-timestamp": timestamp}


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.mark.asyncio
async def test_create_link_happy_path(client, user_headers, provider):
    response = await client.post("/kyc/create-link", json={"userId": "u1"}, headers=user_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["linkId"] == "L1"
    assert data["url"] == f"{LINK_BASE}/L1"
    assert data["personalUrl"] == f"{LINK_BASE}/L1"
    assert data["userId"] == "u1"

    expected = datetime.now(timezone.utc) + timedelta(days=60)
    assert abs(_parse(data["expiresAt"]) - expected) < timedelta(days=1)
    assert provider.json_bodies("POST")[0]["partner_params"]["created_by"] == "u1"


@pytest.mark.asyncio
async def test_create_link_unknown_user(client, user_headers, provider):
    response = await client.post("/kyc/create-link", json={"userId": "missing"}, headers=user_headers)

    assert response.status_code == 404
    assert response.json()["success"] is False
    assert provider.requests == []


@pytest.mark.asyncio
async def test_create_link_requires_bearer(client, provider):
    response = await client.post("/kyc/create-link", json={"userId": "u1"})

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Not authenticated"}
    assert provider.requests == []


@pytest.mark.asyncio
async def test_create_link_rejects_invalid_token(client):
    response = await client.post(
        "/kyc/create-link",
        json={"userId": "u1"},
        headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_link_rejects_expired_token(client, settings):
    token = create_access_token("u1", settings.auth, expires_delta=timedelta(minutes=-5))
    response = await client.post(
        "/kyc/create-link",
        json={"userId": "u1"},
        headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 401
    assert response.json()["message"] == "Token has expired"


@pytest.mark.asyncio
async def test_create_link_missing_user_id_is_400(client, user_headers):
    response = await client.post("/kyc/create-link", json={"name": "x"}, headers=user_headers)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Request validation failed"
    assert any("userId" in error["loc"] for error in body["error"])


@pytest.mark.asyncio
async def test_create_link_provider_error_is_400(client, user_headers, provider):
    provider.override = lambda request: httpx.Response(400, json={"message": "Invalid partner"})
    response = await client.post("/kyc/create-link", json={"userId": "u1"}, headers=user_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid partner"


@pytest.mark.asyncio
async def test_create_link_transport_error_is_500(client, user_headers, provider):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider.override = refuse
    response = await client.post("/kyc/create-link", json={"userId": "u1"}, headers=user_headers)

    assert response.status_code == 500
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_bulk_links_partial_failure(client, user_headers):
    response = await client.post(
        "/kyc/create-bulk-links",
        json={"links": [{"userId": "u1"}, {"userId": "missing"}, {"userId": "u2"}], "batchId": "B-7"},
        headers=user_headers
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["summary"] == {"total": 3, "successful": 2, "failed": 1, "batchId": "B-7"}
    assert data["failed"][0]["userId"] == "missing"
    assert [link["userId"] for link in data["successful"]] == ["u1", "u2"]


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [0, 51])
async def test_bulk_links_invalid_batch(client, user_headers, provider, count):
    response = await client.post(
        "/kyc/create-bulk-links",
        json={"links": [{"userId": "u1"}] * count},
        headers=user_headers
    )

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert provider.requests == []


@pytest.mark.asyncio
async def test_link_status(client, user_headers):
    created = await client.post("/kyc/create-link", json={"userId": "u1"}, headers=user_headers)
    link_id = created.json()["data"]["linkId"]

    response = await client.get(f"/kyc/link-status/{link_id}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["ref_id"] == link_id
    assert data["isExpired"] is False
    assert data["expiryStatus"] == "active"
    assert data["daysUntilExpiry"] >= 60


@pytest.mark.asyncio
async def test_link_status_unknown_link(client):
    response = await client.get("/kyc/link-status/does-not-exist")

    assert response.status_code == 404
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_update_link_requires_admin(client, user_headers, admin_headers, provider):
    created = await client.post("/kyc/create-link", json={"userId": "u1"}, headers=user_headers)
    link_id = created.json()["data"]["linkId"]

    forbidden = await client.put(f"/kyc/links/{link_id}", json={"name": "Renamed"}, headers=user_headers)
    assert forbidden.status_code == 403

    response = await client.put(
        f"/kyc/links/{link_id}",
        json={"name": "Renamed", "partner_id": "9999"},
        headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["data"]["name"] == "Renamed"
    assert provider.json_bodies("PUT")[-1]["partner_id"] == "1234"


@pytest.mark.asyncio
async def test_successful_webhook_then_monotonicity_guard(client, signer, user_headers):
    success = await client.post(
        "/kyc/webhook/smileid",
        json={"user_id": "u1", "result_code": "2814", "id_type": "NIN", "confidence": 99.7, "job_id": "J9"},
        headers=_signed_headers(signer)
    )

    assert success.status_code == 200
    ack = success.json()
    assert ack["success"] is True
    assert ack["message"]
    assert ack["timestamp"]

    status = (await client.get("/kyc/status", headers=user_headers)).json()["data"]
    assert status["kycStatus"] == KYCStatus.VERIFIED.value
    assert status["isVerified"] is True
    assert status["kycData"]["providerJobId"] == "J9"
    assert status["kycData"]["confidence"] == 99.7

    failure = await client.post(
        "/kyc/webhook/smileid",
        json={"user_id": "u1", "result_code": "2815"},
        headers=_signed_headers(signer)
    )

    assert failure.status_code == 200
    status = (await client.get("/kyc/status", headers=user_headers)).json()["data"]
    assert status["kycStatus"] == "verified"
    assert status["isVerified"] is True


@pytest.mark.asyncio
async def test_webhook_bad_signature(client, signer, users):
    headers = _signed_headers(signer)
    headers["x-smileid-signature"] = "tampered" + headers["x-smileid-signature"][8:]

    response = await client.post(
        "/kyc/webhook/smileid",
        content=json.dumps({"user_id": "u1", "result_code": "2814"}),
        headers={**headers, "Content-Type": "application/json"}
    )

    assert response.status_code == 401
    assert response.json()["success"] is False
    stored = await users.get_kyc_slice("u1")
    assert stored.kyc_status == KYCStatus.NOT_STARTED
    assert stored.is_verified is False


@pytest.mark.asyncio
async def test_webhook_generic_header_names(client, signer, users):
    timestamp, signature = signer.generate()
    response = await client.post(
        "/kyc/webhook/smileid",
        json={"partner_params": {"user_id": "u2"}, "ResultCode": "0810"},
        headers={"x-signature": signature, "x-timestamp": timestamp}
    )

    assert response.status_code == 200
    assert (await users.get_kyc_slice("u2")).kyc_status == KYCStatus.PENDING


@pytest.mark.asyncio
async def test_webhook_without_user_id_is_acknowledged(client):
    response = await client.post("/kyc/webhook/smileid", json={"result_code": "2814"})

    assert response.status_code == 200
    assert response.json()["success"] is True


@pytest.mark.asyncio
async def test_my_status_defaults_to_not_started(client, user_headers):
    response = await client.get("/kyc/status", headers=user_headers)

    assert response.status_code == 200
    assert response.json()["data"] == {
        "userId": "u1",
        "kycStatus": "not_started",
        "isVerified": False,
        "kycData": None
    }


@pytest.mark.asyncio
async def test_my_status_for_missing_user(client, admin_headers):
    response = await client.get("/kyc/status", headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_healthz_and_correlation_id(client):
    response = await client.get("/healthz", headers={"X-Correlation-ID": "corr-1"})

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Correlation-ID"] == "corr-1"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_metrics_endpoint(client, user_headers):
    await client.post("/kyc/create-link", json={"userId": "u1"}, headers=user_headers)
    response = await client.get("/metrics/")

    assert response.status_code == 200
    assert "kyc_links_created_total" in response.text


@pytest.mark.asyncio
async def test_unmatched_paths_share_one_metrics_label(client):
    response = await client.get("/no-such-page-7f3a")
    assert response.status_code == 404

    metrics = (await client.get("/metrics/")).text
    assert 'endpoint="unmatched"' in metrics
    assert "no-such-page-7f3a" not in metrics


@pytest.mark.asyncio
async def test_link_status_escapes_link_id(client, provider):
    response = await client.get("/kyc/link-status/abc%23frag")

    assert response.status_code == 404
    request = provider.requests[-1]
    assert request.url.raw_path.startswith(b"/v1/smile_links/abc%23frag?")
    assert request.url.fragment == ""
