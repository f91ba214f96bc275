"""Tests for token endpoint calls and client authentication strategies."""
import asyncio
import base64
from dataclasses import replace
from urllib.parse import parse_qs

import httpx
import pytest

from access_portal.errors import ConfigurationError, RefreshFailed, TokenExchangeFailed
from access_portal.token_client import (
    AuthMethod,
    ClientSecretBasic,
    ClientSecretPost,
    TokenEndpointClient,
    TokenRefresher,
    TokenSet,
    build_client_auth,
)


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def _client(http, settings) -> TokenEndpointClient:
    return TokenEndpointClient(http, settings, build_client_auth(settings))


# --- build_client_auth ---


def test_client_secret_post_selected(idp_settings):
    auth = build_client_auth(idp_settings)
    assert isinstance(auth, ClientSecretPost)
    assert auth.method is AuthMethod.CLIENT_SECRET_POST


def test_client_secret_basic_selected(idp_settings):
    auth = build_client_auth(replace(idp_settings, auth_method="client_secret_basic"))
    assert isinstance(auth, ClientSecretBasic)


def test_private_key_jwt_is_configuration_error(idp_settings):
    with pytest.raises(ConfigurationError):
        build_client_auth(replace(idp_settings, auth_method="private_key_jwt"))


def test_unknown_auth_method_is_configuration_error(idp_settings):
    with pytest.raises(ConfigurationError):
        build_client_auth(replace(idp_settings, auth_method="client_secret_jwt"))


def test_basic_without_secret_is_configuration_error(idp_settings):
    with pytest.raises(ConfigurationError):
        build_client_auth(replace(idp_settings, auth_method="client_secret_basic", client_secret=None))


# --- request shapes ---


def test_exchange_code_client_secret_post(http, upstream, idp_settings):
    token_set = asyncio.run(_client(http, idp_settings).exchange_code("abc", "the-verifier"))
    assert token_set.access_token == "AT1"
    (req,) = upstream.token_requests()
    assert req.method == "POST"
    form = _form(req)
    assert form == {
        "grant_type": "authorization_code",
        "code": "abc",
        "redirect_uri": "https://portal.test/callback",
        "code_verifier": "the-verifier",
        "client_id": "portal-client",
        "client_secret": "portal-secret",
    }
    assert "authorization" not in req.headers
    assert req.headers["accept"] == "application/json"


def test_exchange_code_public_client_sends_no_secret(http, upstream, idp_settings):
    settings = replace(idp_settings, client_secret=None)
    asyncio.run(_client(http, settings).exchange_code("abc", "v"))
    form = _form(upstream.token_requests()[0])
    assert form["client_id"] == "portal-client"
    assert "client_secret" not in form


def test_exchange_code_client_secret_basic(http, upstream, idp_settings):
    settings = replace(idp_settings, auth_method="client_secret_basic")
    asyncio.run(_client(http, settings).exchange_code("abc", "v"))
    req = upstream.token_requests()[0]
    expected = base64.b64encode(b"portal-client:portal-secret").decode("ascii")
    assert req.headers["authorization"] == f"Basic {expected}"
    assert "client_secret" not in _form(req)


def test_refresh_request_shape(http, upstream, idp_settings):
    token_set = asyncio.run(_client(http, idp_settings).refresh("RT0"))
    assert token_set is not None
    form = _form(upstream.token_requests()[0])
    assert form["grant_type"] == "refresh_token"
    assert form["refresh_token"] == "RT0"
    assert form["client_secret"] == "portal-secret"
    assert "code_verifier" not in form


# --- failures ---


def test_exchange_code_non_2xx_raises(http, upstream, idp_settings):
    upstream.token_status = 400
    with pytest.raises(TokenExchangeFailed) as exc:
        asyncio.run(_client(http, idp_settings).exchange_code("abc", "v"))
    # Upstream body must not leak into the browser-facing description
    assert "upstream secret detail" not in exc.value.description
    assert exc.value.error == "token_exchange_failed"


def test_exchange_code_missing_access_token_raises(http, upstream, idp_settings):
    upstream.token_body = {"token_type": "Bearer", "expires_in": 60}
    with pytest.raises(TokenExchangeFailed):
        asyncio.run(_client(http, idp_settings).exchange_code("abc", "v"))


def test_exchange_code_transport_error_raises(idp_settings):
    def boom(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(boom))
    with pytest.raises(TokenExchangeFailed):
        asyncio.run(_client(http, idp_settings).exchange_code("abc", "v"))


def test_refresher_raises_refresh_failed(http, upstream, idp_settings):
    upstream.token_status = 400
    refresher = TokenRefresher(_client(http, idp_settings))
    with pytest.raises(RefreshFailed):
        asyncio.run(refresher.refresh("RT1"))


def test_refresher_returns_token_set(http, upstream, idp_settings):
    upstream.token_body = {"access_token": "AT2", "expires_in": 1200}
    token_set = asyncio.run(TokenRefresher(_client(http, idp_settings)).refresh("RT1"))
    assert token_set.access_token == "AT2"
    assert token_set.refresh_token is None
    assert token_set.expires_in == 1200


# --- TokenSet parsing ---


def test_token_set_defaults():
    t = TokenSet.from_response({"access_token": "at"})
    assert t.token_type == "Bearer"
    assert t.expires_in == 0
    assert t.id_token is None and t.refresh_token is None and t.scope is None


def test_token_set_full():
    t = TokenSet.from_response(
        {
            "access_token": "at",
            "id_token": "it",
            "refresh_token": "rt",
            "token_type": "bearer",
            "expires_in": "120",
            "scope": "openid profile",
        }
    )
    assert (t.id_token, t.refresh_token, t.token_type, t.expires_in, t.scope) == (
        "it",
        "rt",
        "bearer",
        120,
        "openid profile",
    )


@pytest.mark.parametrize("body", [{}, {"access_token": ""}, ["access_token"]])
def test_token_set_rejects_unusable_body(body):
    with pytest.raises(ValueError):
        TokenSet.from_response(body)
