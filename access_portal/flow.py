"""
OIDC login flow: /login builds the authorization request, /callback validates state and
exchanges the code, /refresh renews the token set, /logout clears the session.

    NoSession -> LoginInitiated -> AwaitingCallback -> Authenticated
    AwaitingCallback -> Failed          (callback validation error)
    Authenticated -> NoSession          (logout or failed refresh)

The controller returns cookies and redirect targets; routes in main.py write them out.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

import jwt
from starlette.concurrency import run_in_threadpool

from access_portal.config import IdpSettings, REFRESH_WINDOW_SECONDS
from access_portal.errors import (
    InvalidOrExpiredState,
    MalformedCallback,
    RefreshFailed,
    UpstreamAuthError,
)
from access_portal.flow_store import PendingAuthorization, StateStore
from access_portal.pkce import build_authorize_url, derive_challenge, generate_opaque_token, generate_verifier
from access_portal.platform_exchange import PlatformTokenExchanger
from access_portal.session import Cookie, Session, SessionMaterializer
from access_portal.token_client import TokenEndpointClient, TokenRefresher, TokenSet

logger = logging.getLogger(__name__)

DEFAULT_RETURN_URL = "/"


@dataclass
class CallbackResult:
    redirect_url: str
    cookies: list[Cookie] = field(default_factory=list)


@dataclass
class RefreshResult:
    expires_in: int
    cookies: list[Cookie] = field(default_factory=list)


def safe_return_url(return_url: str | None) -> str | None:
    """Keep only local paths ("/x", not "//host" or "https://..."), so login can't redirect off-site."""
    if not return_url:
        return None
    if not return_url.startswith("/") or return_url.startswith("//") or "\\" in return_url:
        logger.warning("Ignoring non-local returnUrl")
        return None
    return return_url


def append_query(url: str, query: str) -> str:
    """Append an encoded query string, joining with & when url already has one."""
    return f"{url}{'&' if '?' in url else '?'}{query}"


class OidcFlowController:
    def __init__(
        self,
        settings: IdpSettings,
        store: StateStore,
        token_client: TokenEndpointClient,
        platform: PlatformTokenExchanger,
        materializer: SessionMaterializer | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings
        self._store = store
        self._token_client = token_client
        self._refresher = TokenRefresher(token_client)
        self._platform = platform
        self._materializer = materializer or SessionMaterializer(clock=clock)
        self._clock = clock

    def begin_login(self, return_url: str | None = None) -> str:
        """
        Generate verifier/challenge, state and nonce; store the pending login; return the IdP URL.
        """
        code_verifier = generate_verifier()
        state = generate_opaque_token()
        nonce = generate_opaque_token()
        self._store.put(
            PendingAuthorization(
                state=state,
                code_verifier=code_verifier,
                nonce=nonce,
                return_url=safe_return_url(return_url),
                created_at=self._clock(),
            )
        )
        logger.info("Login initiated; redirecting to identity provider")
        return build_authorize_url(
            authorization_endpoint=self._settings.authorization_endpoint,
            client_id=self._settings.client_id,
            redirect_uri=self._settings.redirect_uri,
            scope=self._settings.scopes,
            state=state,
            nonce=nonce,
            code_challenge=derive_challenge(code_verifier),
            ui_locales=self._settings.ui_locales,
        )

    async def handle_callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> CallbackResult:
        """Validate the IdP redirect and establish the session. Raises AuthFlowError subclasses."""
        if error:
            logger.warning("Identity provider returned error: %s - %s", error, error_description)
            raise UpstreamAuthError(error, error_description)
        if not code or not state:
            logger.warning("Missing code or state parameter in callback")
            raise MalformedCallback()

        # Store backends may block (SqlStateStore); keep them off the event loop
        pending = await run_in_threadpool(self._store.take_and_validate, state)
        if pending is None:
            logger.warning("Invalid or expired state parameter")
            raise InvalidOrExpiredState()

        token_set = await self._token_client.exchange_code(code, pending.code_verifier)
        self._check_nonce(token_set, pending.nonce)
        cookies = await self._materialize(token_set, fresh_login=True)
        logger.info("User authenticated via identity provider")
        target = pending.return_url or DEFAULT_RETURN_URL
        return CallbackResult(redirect_url=append_query(target, "login=success"), cookies=cookies)

    async def refresh(self, session: Session) -> RefreshResult:
        """
        Renew tokens with the session's refresh token. Raises RefreshFailed; the caller clears
        every session cookie in that case (see clear_session).
        """
        if not session.refresh_token:
            logger.warning("No refresh token available")
            raise RefreshFailed("No refresh token available")
        token_set = await self._refresher.refresh(session.refresh_token)
        cookies = await self._materialize(token_set, fresh_login=False)
        return RefreshResult(expires_in=token_set.expires_in, cookies=cookies)

    def logout(self) -> list[Cookie]:
        logger.info("User logging out")
        return self.clear_session()

    def clear_session(self) -> list[Cookie]:
        return self._materializer.clear()

    def status(self, session: Session) -> dict:
        """Computed from cookies only; no network call."""
        return {
            "isAuthenticated": session.is_authenticated,
            "hasPlatformToken": session.platform_token is not None,
            "hasRefreshToken": session.refresh_token is not None,
            "needsRefresh": session.needs_refresh(self._clock(), REFRESH_WINDOW_SECONDS),
            "message": "User is authenticated" if session.is_authenticated else "User is not authenticated",
        }

    async def _materialize(self, token_set: TokenSet, *, fresh_login: bool) -> list[Cookie]:
        # Shared by callback and refresh so both keep identical cookie/expiry bookkeeping
        platform_token = await self._platform.exchange(token_set.access_token)
        return self._materializer.materialize(token_set, platform_token, fresh_login=fresh_login)

    @staticmethod
    def _check_nonce(token_set: TokenSet, expected: str) -> None:
        if not token_set.id_token:
            return
        try:
            claims = jwt.decode(token_set.id_token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            logger.warning("ID token could not be decoded; nonce not checked")
            return
        if claims.get("nonce") != expected:
            logger.warning("ID token nonce does not match the pending login")
