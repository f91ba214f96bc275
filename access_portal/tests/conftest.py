"""
Pytest configuration for access_portal. A stub identity provider and platform exchange
are served through httpx.MockTransport so no test touches the network.
"""
import asyncio
import os

import httpx
import pytest

# In-memory pending-login store for the module-level app
os.environ["STATE_STORE_URL"] = ""

from access_portal.config import IdpSettings, PlatformSettings

TOKEN_ENDPOINT = "https://idp.test/token"
AUTHORIZATION_ENDPOINT = "https://idp.test/authorize"
PLATFORM_BASE_URL = "https://platform.test"
EXCHANGE_URL = f"{PLATFORM_BASE_URL}/authentication/api/v1/exchange/id-porten"


@pytest.fixture
def idp_settings():
    return IdpSettings(
        client_id="portal-client",
        client_secret="portal-secret",
        scopes="openid profile",
        redirect_uri="https://portal.test/callback",
        authorization_endpoint=AUTHORIZATION_ENDPOINT,
        token_endpoint=TOKEN_ENDPOINT,
        auth_method="client_secret_post",
        ui_locales="nb",
    )


@pytest.fixture
def platform_settings():
    return PlatformSettings(base_url=PLATFORM_BASE_URL)


class StubUpstream:
    """Records requests; answers the token endpoint and the platform exchange from canned values."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_body: dict = {
            "access_token": "AT1",
            "refresh_token": "RT1",
            "token_type": "Bearer",
            "expires_in": 3600,
        }
        self.platform_status = 200
        self.platform_body = "PT1"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == TOKEN_ENDPOINT:
            if self.token_status >= 400:
                return httpx.Response(
                    self.token_status,
                    json={"error": "invalid_grant", "error_description": "upstream secret detail"},
                )
            return httpx.Response(self.token_status, json=self.token_body)
        if url == EXCHANGE_URL:
            return httpx.Response(self.platform_status, text=self.platform_body)
        return httpx.Response(404)

    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == TOKEN_ENDPOINT]

    def platform_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == EXCHANGE_URL]


@pytest.fixture
def upstream():
    return StubUpstream()


@pytest.fixture
def http(upstream):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    yield client
    asyncio.run(client.aclose())
