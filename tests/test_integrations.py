"""
Tests for integration endpoints and platform webhooks.
"""
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from zapsocial.models.integration import Integration
from zapsocial.services.deauthorization import DeauthorizationService
from zapsocial.utils.security import decode_oauth_state, sign_oauth_state
from zapsocial.utils.signed_request import sign_request

FACEBOOK_TOKEN_PATH = "/v21.0/oauth/access_token"
LINKEDIN_TOKEN_PATH = "/oauth/v2/accessToken"


def redirect_params(response) -> dict[str, list[str]]:
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "http://app.test/integrations"
    return parse_qs(location.query)


async def integrations_for(db, user_id: str) -> list[Integration]:
    result = await db.execute(select(Integration).where(Integration.user_id == user_id))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_list_integrations(client: AsyncClient, auth_headers, make_integration):
    await make_integration(meta={"fb_user_id": "fb-1", "expired": True}, scopes=["pages_show_list"])

    response = await client.get("/api/v1/integrations", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["platform"] == "facebook"
    assert data[0]["expired"] is True
    assert data[0]["metadata"]["fb_user_id"] == "fb-1"
    assert "access_token" not in data[0]


@pytest.mark.asyncio
async def test_list_integrations_requires_auth(client: AsyncClient):
    response = await client.get("/api/v1/integrations")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_disconnect_integration(client: AsyncClient, db, auth_headers, test_user, make_integration):
    await make_integration(platform="linkedin", refresh_token="rt")

    response = await client.delete(
        "/api/v1/integrations", params={"platform": "linkedin"}, headers=auth_headers
    )

    assert response.status_code == 204
    assert await integrations_for(db, test_user.id) == []


@pytest.mark.asyncio
async def test_disconnect_requires_platform(client: AsyncClient, auth_headers):
    response = await client.delete("/api/v1/integrations", headers=auth_headers)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_disconnect_missing_integration(client: AsyncClient, auth_headers):
    response = await client.delete(
        "/api/v1/integrations", params={"platform": "facebook"}, headers=auth_headers
    )

    assert response.status_code == 404


# OAuth flow

@pytest.mark.asyncio
async def test_instagram_auth_url_uses_facebook_login(client: AsyncClient, auth_headers, test_user):
    response = await client.get("/api/v1/integrations/instagram/auth", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["auth_url"].startswith("https://www.facebook.com/v21.0/dialog/oauth?")
    assert "client_id=test-facebook-app" in data["auth_url"]
    assert decode_oauth_state(data["state"], "facebook") == test_user.id


@pytest.mark.asyncio
async def test_auth_url_requires_configuration(client: AsyncClient, auth_headers, settings):
    settings.linkedin_client_secret = ""

    response = await client.get("/api/v1/integrations/linkedin/auth", headers=auth_headers)

    assert response.status_code == 500


@pytest.mark.asyncio
async def test_linkedin_callback_connects_account(client: AsyncClient, db, provider, test_user):
    provider.add(
        LINKEDIN_TOKEN_PATH,
        200,
        {
            "access_token": "li-access",
            "expires_in": 5184000,
            "refresh_token": "li-refresh",
            "refresh_token_expires_in": 31536000,
            "scope": "openid,profile,w_member_social",
        },
    )
    provider.add("/v2/userinfo", 200, {"sub": "li-member-1", "name": "Test User"})

    response = await client.get(
        "/api/v1/integrations/linkedin/callback",
        params={"code": "auth-code", "state": sign_oauth_state(test_user.id, "linkedin")},
    )

    assert response.status_code == 302
    assert redirect_params(response) == {"connected": ["linkedin"]}

    [integration] = await integrations_for(db, test_user.id)
    assert integration.platform == "linkedin"
    assert integration.access_token == "li-access"
    assert integration.refresh_token == "li-refresh"
    assert integration.external_user_id == "li-member-1"
    assert integration.scopes == ["openid", "profile", "w_member_social"]
    assert integration.meta["expired"] is False
    assert integration.meta["refresh_token_expires_in"] == 31536000


@pytest.mark.asyncio
async def test_facebook_callback_reconnect_clears_expired(
    client: AsyncClient, db, provider, test_user, make_integration
):
    existing = await make_integration(meta={"expired": True, "fb_user_id": "fb-old"})
    provider.add(FACEBOOK_TOKEN_PATH, 200, {"access_token": "short-lived", "expires_in": 3600})
    provider.add(FACEBOOK_TOKEN_PATH, 200, {"access_token": "long-lived", "expires_in": 5184000})
    provider.add("/v21.0/me", 200, {"id": "fb-1"})
    provider.add(
        "/v21.0/me/accounts",
        200,
        {
            "data": [
                {
                    "id": "page-1",
                    "name": "My Page",
                    "instagram_business_account": {"id": "ig-1", "username": "mypage"},
                }
            ]
        },
    )

    response = await client.get(
        "/api/v1/integrations/facebook/callback",
        params={"code": "auth-code", "state": sign_oauth_state(test_user.id, "facebook")},
    )

    assert redirect_params(response) == {"connected": ["facebook"]}

    [integration] = await integrations_for(db, test_user.id)
    assert integration.id == existing.id
    assert integration.access_token == "long-lived"
    assert integration.external_user_id == "fb-1"
    assert integration.meta["expired"] is False
    assert integration.meta["fb_user_id"] == "fb-1"
    assert integration.meta["pages"] == [
        {
            "id": "page-1",
            "name": "My Page",
            "instagram_account": {"id": "ig-1", "username": "mypage"},
        }
    ]


@pytest.mark.asyncio
async def test_callback_rejects_state_for_other_platform(client: AsyncClient, provider, test_user):
    response = await client.get(
        "/api/v1/integrations/linkedin/callback",
        params={"code": "auth-code", "state": sign_oauth_state(test_user.id, "facebook")},
    )

    assert redirect_params(response) == {"error": ["invalid_state"]}
    assert provider.requests == []


@pytest.mark.asyncio
async def test_callback_with_provider_error(client: AsyncClient):
    response = await client.get(
        "/api/v1/integrations/facebook/callback", params={"error": "access_denied"}
    )

    assert redirect_params(response) == {"error": ["facebook_oauth_access_denied"]}


@pytest.mark.asyncio
async def test_callback_missing_code(client: AsyncClient):
    response = await client.get("/api/v1/integrations/linkedin/callback")

    assert redirect_params(response) == {"error": ["missing_params"]}


@pytest.mark.asyncio
async def test_callback_token_exchange_failure(client: AsyncClient, db, provider, test_user):
    provider.add(LINKEDIN_TOKEN_PATH, 400, {"error": "invalid_request", "error_description": "Bad code"})

    response = await client.get(
        "/api/v1/integrations/linkedin/callback",
        params={"code": "bad-code", "state": sign_oauth_state(test_user.id, "linkedin")},
    )

    assert redirect_params(response) == {"error": ["token_exchange_failed"]}
    assert await integrations_for(db, test_user.id) == []


# Manual refresh

@pytest.mark.asyncio
async def test_refresh_token_success(client: AsyncClient, auth_headers, provider, make_integration):
    integration = await make_integration()
    provider.add(FACEBOOK_TOKEN_PATH, 200, {"access_token": "new-token", "expires_in": 5184000})

    response = await client.post(
        "/api/v1/integrations/facebook/refresh-token",
        json={"integration_id": integration.id},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["expires_in"] == 5184000
    assert data["expires_at"] is not None


@pytest.mark.asyncio
async def test_refresh_token_not_found(client: AsyncClient, auth_headers):
    response = await client.post(
        "/api/v1/integrations/facebook/refresh-token",
        json={"integration_id": "missing"},
        headers=auth_headers,
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Integration not found"


@pytest.mark.asyncio
async def test_refresh_token_requires_integration_id(client: AsyncClient, auth_headers):
    response = await client.post(
        "/api/v1/integrations/facebook/refresh-token",
        json={"integration_id": ""},
        headers=auth_headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_refresh_token_without_credential(
    client: AsyncClient, auth_headers, provider, make_integration
):
    integration = await make_integration(platform="linkedin", refresh_token=None)

    response = await client.post(
        "/api/v1/integrations/linkedin/refresh-token",
        json={"integration_id": integration.id},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "No refresh token found to refresh"
    assert provider.requests == []


@pytest.mark.asyncio
async def test_refresh_token_expired_credential(
    client: AsyncClient, auth_headers, provider, make_integration
):
    integration = await make_integration()
    provider.add(
        FACEBOOK_TOKEN_PATH,
        400,
        {"error": {"message": "Error validating access token: Session has expired", "code": 190}},
    )

    response = await client.post(
        "/api/v1/integrations/facebook/refresh-token",
        json={"integration_id": integration.id},
        headers=auth_headers,
    )

    assert response.status_code == 401
    assert response.json()["detail"] == {
        "error": "Token expired. Please reconnect your account.",
        "expired": True,
    }
    assert integration.meta["expired"] is True


@pytest.mark.asyncio
async def test_refresh_token_provider_failure(
    client: AsyncClient, auth_headers, provider, make_integration
):
    integration = await make_integration()
    provider.add(FACEBOOK_TOKEN_PATH, 400, {"error": {"message": "Invalid client_secret", "code": 1}})

    response = await client.post(
        "/api/v1/integrations/facebook/refresh-token",
        json={"integration_id": integration.id},
        headers=auth_headers,
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "Invalid client_secret"


# Batch refresh

@pytest.mark.asyncio
async def test_refresh_all(client: AsyncClient, provider, make_integration):
    await make_integration(token_expires_at=datetime.now(timezone.utc) + timedelta(days=3))
    provider.add(FACEBOOK_TOKEN_PATH, 200, {"access_token": "new-token", "expires_in": 5184000})

    response = await client.post("/api/v1/integrations/facebook/refresh-all")

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "total": 1,
        "refreshed": 1,
        "failed": 0,
        "errors": [],
    }


@pytest.mark.asyncio
async def test_refresh_all_checks_cron_secret(client: AsyncClient, settings):
    settings.cron_secret = "cron-secret"

    missing = await client.post("/api/v1/integrations/linkedin/refresh-all")
    wrong = await client.post(
        "/api/v1/integrations/linkedin/refresh-all",
        headers={"Authorization": "Bearer nope"},
    )
    valid = await client.post(
        "/api/v1/integrations/linkedin/refresh-all",
        headers={"Authorization": "Bearer cron-secret"},
    )

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert valid.status_code == 200
    assert valid.json()["total"] == 0


# Facebook webhooks

@pytest.mark.asyncio
async def test_deauthorize_deletes_facebook_integration(
    client: AsyncClient, db, settings, test_user, make_integration
):
    await make_integration(external_user_id="fb-1")
    await make_integration(platform="linkedin", refresh_token="rt", external_user_id="fb-1")

    response = await client.post(
        "/api/v1/integrations/facebook/deauthorize",
        data={"signed_request": sign_request({"user_id": "fb-1"}, settings.facebook_app_secret)},
    )

    assert response.status_code == 200
    assert response.text == "OK"
    remaining = await integrations_for(db, test_user.id)
    assert [i.platform for i in remaining] == ["linkedin"]


@pytest.mark.asyncio
async def test_deauthorize_unknown_user(client: AsyncClient, settings):
    response = await client.post(
        "/api/v1/integrations/facebook/deauthorize",
        data={"signed_request": sign_request({"user_id": "nobody"}, settings.facebook_app_secret)},
    )

    assert response.status_code == 200
    assert response.text == "OK"


@pytest.mark.asyncio
async def test_deauthorize_rejects_forged_request(
    client: AsyncClient, db, test_user, make_integration
):
    await make_integration(external_user_id="fb-1")

    response = await client.post(
        "/api/v1/integrations/facebook/deauthorize",
        data={"signed_request": sign_request({"user_id": "fb-1"}, "wrong-secret")},
    )

    assert response.status_code == 400
    assert response.text == "Invalid signed_request"
    assert len(await integrations_for(db, test_user.id)) == 1


@pytest.mark.asyncio
async def test_deauthorize_missing_signed_request(client: AsyncClient):
    response = await client.post("/api/v1/integrations/facebook/deauthorize", data={})

    assert response.status_code == 400
    assert response.text == "Missing required parameter"


@pytest.mark.asyncio
async def test_deauthorize_without_user_id(client: AsyncClient, settings):
    response = await client.post(
        "/api/v1/integrations/facebook/deauthorize",
        data={"signed_request": sign_request({"algorithm": "HMAC-SHA256"}, settings.facebook_app_secret)},
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_deauthorize_without_app_secret(client: AsyncClient, settings):
    signed = sign_request({"user_id": "fb-1"}, settings.facebook_app_secret)
    settings.facebook_app_secret = ""

    response = await client.post(
        "/api/v1/integrations/facebook/deauthorize",
        data={"signed_request": signed},
    )

    assert response.status_code == 500


@pytest.mark.asyncio
async def test_data_deletion_removes_meta_integrations(
    client: AsyncClient, db, settings, test_user, make_integration
):
    await make_integration(external_user_id="fb-1")
    await make_integration(platform="instagram")
    await make_integration(platform="linkedin", refresh_token="rt")

    response = await client.post(
        "/api/v1/integrations/facebook/data-deletion",
        data={"signed_request": sign_request({"user_id": "fb-1"}, settings.facebook_app_secret)},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["url"].startswith("http://app.test/settings?data_deletion=completed")
    assert f"code={data['confirmation_code']}" in data["url"]

    remaining = await integrations_for(db, test_user.id)
    assert [i.platform for i in remaining] == ["linkedin"]


@pytest.mark.asyncio
async def test_data_deletion_unknown_user(client: AsyncClient, settings):
    response = await client.post(
        "/api/v1/integrations/facebook/data-deletion",
        data={"signed_request": sign_request({"user_id": "nobody"}, settings.facebook_app_secret)},
    )

    assert response.status_code == 200
    assert response.json()["url"] == "http://app.test/settings?data_deletion=not_found"


@pytest.mark.asyncio
async def test_data_deletion_rejects_forged_request(client: AsyncClient):
    response = await client.post(
        "/api/v1/integrations/facebook/data-deletion",
        data={"signed_request": sign_request({"user_id": "fb-1"}, "wrong-secret")},
    )

    assert response.status_code == 400


async def failing_service_call(self, facebook_user_id: str):
    raise RuntimeError("database unavailable")


@pytest.mark.asyncio
async def test_deauthorize_acknowledges_internal_failure(client: AsyncClient, settings, monkeypatch):
    monkeypatch.setattr(DeauthorizationService, "deauthorize", failing_service_call)

    response = await client.post(
        "/api/v1/integrations/facebook/deauthorize",
        data={"signed_request": sign_request({"user_id": "fb-1"}, settings.facebook_app_secret)},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "OK"


@pytest.mark.asyncio
async def test_data_deletion_reports_internal_failure(client: AsyncClient, settings, monkeypatch):
    monkeypatch.setattr(DeauthorizationService, "delete_user_data", failing_service_call)

    response = await client.post(
        "/api/v1/integrations/facebook/data-deletion",
        data={"signed_request": sign_request({"user_id": "fb-1"}, settings.facebook_app_secret)},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["url"] == "http://app.test/settings?data_deletion=error"
    assert data["confirmation_code"]


@pytest.mark.asyncio
async def test_refresh_all_rejects_non_ascii_authorization(client: AsyncClient, settings):
    settings.cron_secret = "cron-secret"

    response = await client.post(
        "/api/v1/integrations/facebook/refresh-all",
        headers={"Authorization": "Bearer café".encode("utf-8")},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_linkedin_callback_with_null_scope(client: AsyncClient, db, provider, test_user):
    provider.add(
        LINKEDIN_TOKEN_PATH,
        200,
        {"access_token": "li-access", "expires_in": 5184000, "scope": None},
    )
    provider.add("/v2/userinfo", 200, {"sub": "li-member-1"})

    response = await client.get(
        "/api/v1/integrations/linkedin/callback",
        params={"code": "auth-code", "state": sign_oauth_state(test_user.id, "linkedin")},
    )

    assert redirect_params(response) == {"connected": ["linkedin"]}
    [integration] = await integrations_for(db, test_user.id)
    assert integration.scopes == ["openid", "profile", "email", "w_member_social"]
