"""
Token endpoint calls (authorization_code and refresh_token grants).
Client authentication (RFC 6749 §2.3.1) is one strategy per configured method,
picked once at startup by build_client_auth().
"""
import base64
import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from access_portal.config import IdpSettings
from access_portal.errors import ConfigurationError, RefreshFailed, TokenExchangeFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    id_token: str | None = None
    refresh_token: str | None = None
    scope: str | None = None

    @classmethod
    def from_response(cls, data: dict) -> "TokenSet":
        """Parse token endpoint JSON. Raises ValueError when access_token is missing."""
        if not isinstance(data, dict):
            raise ValueError("token response is not a JSON object")
        access_token = data.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ValueError("token response has no access_token")
        try:
            expires_in = int(data.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        return cls(
            access_token=access_token,
            token_type=data.get("token_type") or "Bearer",
            expires_in=expires_in,
            id_token=data.get("id_token") or None,
            refresh_token=data.get("refresh_token") or None,
            scope=data.get("scope") or None,
        )


class AuthMethod(str, Enum):
    CLIENT_SECRET_POST = "client_secret_post"
    CLIENT_SECRET_BASIC = "client_secret_basic"
    PRIVATE_KEY_JWT = "private_key_jwt"


class ClientAuth:
    """Adds client credentials to a token request (form body and headers, mutated in place)."""

    method: AuthMethod

    def __init__(self, client_id: str):
        self.client_id = client_id

    def apply(self, form: dict[str, str], headers: dict[str, str]) -> None:
        form["client_id"] = self.client_id


class ClientSecretPost(ClientAuth):
    method = AuthMethod.CLIENT_SECRET_POST

    def __init__(self, client_id: str, client_secret: str | None):
        super().__init__(client_id)
        self.client_secret = client_secret

    def apply(self, form: dict[str, str], headers: dict[str, str]) -> None:
        super().apply(form, headers)
        # No secret = public client; PKCE alone binds the code
        if self.client_secret:
            form["client_secret"] = self.client_secret


class ClientSecretBasic(ClientAuth):
    method = AuthMethod.CLIENT_SECRET_BASIC

    def __init__(self, client_id: str, client_secret: str):
        super().__init__(client_id)
        self.client_secret = client_secret

    def apply(self, form: dict[str, str], headers: dict[str, str]) -> None:
        super().apply(form, headers)
        raw = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"


class PrivateKeyJwt(ClientAuth):
    method = AuthMethod.PRIVATE_KEY_JWT

    def __init__(self, client_id: str):
        raise ConfigurationError("auth_method private_key_jwt is not supported yet")


def build_client_auth(settings: IdpSettings) -> ClientAuth:
    """Resolve the configured auth_method to its strategy. Raises ConfigurationError for unusable settings."""
    try:
        method = AuthMethod(settings.auth_method)
    except ValueError:
        raise ConfigurationError(f"Unknown auth_method: {settings.auth_method!r}") from None
    if method is AuthMethod.CLIENT_SECRET_POST:
        return ClientSecretPost(settings.client_id, settings.client_secret)
    if method is AuthMethod.CLIENT_SECRET_BASIC:
        if not settings.client_secret:
            raise ConfigurationError("client_secret_basic requires a client_secret")
        return ClientSecretBasic(settings.client_id, settings.client_secret)
    return PrivateKeyJwt(settings.client_id)


class TokenEndpointClient:
    def __init__(self, http: httpx.AsyncClient, settings: IdpSettings, client_auth: ClientAuth):
        self._http = http
        self._settings = settings
        self._client_auth = client_auth

    async def exchange_code(self, code: str, code_verifier: str) -> TokenSet:
        """authorization_code grant. Raises TokenExchangeFailed on any upstream problem."""
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._settings.redirect_uri,
            "code_verifier": code_verifier,
        }
        token_set = await self._request(form)
        if token_set is None:
            raise TokenExchangeFailed()
        logger.info("Exchanged authorization code for tokens (expires_in=%s)", token_set.expires_in)
        return token_set

    async def refresh(self, refresh_token: str) -> TokenSet | None:
        """refresh_token grant; None on any upstream problem."""
        return await self._request({"grant_type": "refresh_token", "refresh_token": refresh_token})

    async def _request(self, form: dict[str, str]) -> TokenSet | None:
        headers = {"Accept": "application/json"}
        self._client_auth.apply(form, headers)
        grant = form["grant_type"]
        try:
            r = await self._http.post(self._settings.token_endpoint, data=form, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Token request (%s) failed: %s", grant, e)
            return None
        if not r.is_success:
            # Upstream body goes to the log only, never back to the browser
            logger.error("Token request (%s) failed with status %s: %s", grant, r.status_code, r.text)
            return None
        try:
            return TokenSet.from_response(r.json())
        except ValueError as e:
            logger.error("Token request (%s) returned an unusable body: %s", grant, e)
            return None


class TokenRefresher:
    """Exchanges a refresh token for a fresh TokenSet; failure is fatal to the session."""

    def __init__(self, token_client: TokenEndpointClient):
        self._token_client = token_client

    async def refresh(self, refresh_token: str) -> TokenSet:
        token_set = await self._token_client.refresh(refresh_token)
        if token_set is None:
            raise RefreshFailed()
        logger.info("Refreshed tokens (expires_in=%s)", token_set.expires_in)
        return token_set
