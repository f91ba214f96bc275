"""
Access Portal — browser login via the national identity provider (OIDC code flow + PKCE).
GET /login, /callback, /logout, /status; POST /refresh. Tokens live in cookies only.
"""
import logging
from contextlib import asynccontextmanager
from typing import Annotated
from urllib.parse import urlencode

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from access_portal.config import (
    ERROR_REDIRECT,
    HTTP_TIMEOUT_SECONDS,
    STATE_STORE_URL,
    IdpSettings,
    PlatformSettings,
    idp_settings_from_env,
    platform_settings_from_env,
)
from access_portal.errors import AuthFlowError, RefreshFailed
from access_portal.flow import OidcFlowController, append_query
from access_portal.flow_store import InMemoryStateStore, StateStore
from access_portal.platform_exchange import PlatformTokenExchanger
from access_portal.session import Session, apply_cookies, get_session
from access_portal.token_client import TokenEndpointClient, build_client_auth

logger = logging.getLogger(__name__)


def build_state_store(url: str = STATE_STORE_URL) -> StateStore:
    """In-memory unless a database URL is configured (needed when running more than one instance)."""
    if not url:
        return InMemoryStateStore()
    from access_portal.database import SqlStateStore, make_engine

    logger.info("Using SQL store for pending logins")
    return SqlStateStore(make_engine(url))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """One shared HTTP client for the token endpoint and the platform exchange."""
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as http:
        app.state.http = http
        yield


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http


def get_controller(
    request: Request,
    http: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> OidcFlowController:
    """Per-request controller; only the state store is shared between requests."""
    state = request.app.state
    return OidcFlowController(
        settings=state.idp_settings,
        store=state.store,
        token_client=TokenEndpointClient(http, state.idp_settings, state.client_auth),
        platform=PlatformTokenExchanger(http, state.platform_settings),
    )


Controller = Annotated[OidcFlowController, Depends(get_controller)]
CurrentSession = Annotated[Session, Depends(get_session)]


def _redirect_error(error: str, error_description: str) -> RedirectResponse:
    params = {"error": error, "error_description": error_description}
    return RedirectResponse(url=append_query(ERROR_REDIRECT, urlencode(params)), status_code=302)


def create_app(
    idp_settings: IdpSettings | None = None,
    platform_settings: PlatformSettings | None = None,
    store: StateStore | None = None,
) -> FastAPI:
    """Build the app. Raises ConfigurationError for an unusable client auth method."""
    idp_settings = idp_settings or idp_settings_from_env()
    application = FastAPI(title="Access Portal", version="0.1.0", lifespan=lifespan)
    application.state.idp_settings = idp_settings
    application.state.platform_settings = platform_settings or platform_settings_from_env()
    application.state.client_auth = build_client_auth(idp_settings)
    application.state.store = store if store is not None else build_state_store()

    @application.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "access_portal"}

    @application.get("/login")
    def login(controller: Controller, return_url: str | None = Query(None, alias="returnUrl")):
        """Start login: store pending state and redirect to the IdP. Sets no cookies."""
        return RedirectResponse(url=controller.begin_login(return_url), status_code=302)

    @application.get("/callback")
    async def callback(
        controller: Controller,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ):
        """
        IdP redirect target. Success: cookies + redirect to returnUrl?login=success.
        Failure: redirect carrying error/error_description; cookies untouched.
        """
        try:
            result = await controller.handle_callback(code, state, error, error_description)
        except AuthFlowError as e:
            return _redirect_error(e.error, e.description)
        response = RedirectResponse(url=result.redirect_url, status_code=302)
        apply_cookies(response, result.cookies)
        return response

    @application.get("/logout")
    def logout(controller: Controller):
        """Clear all session cookies. Idempotent."""
        response = RedirectResponse(url="/?logout=success", status_code=302)
        apply_cookies(response, controller.logout())
        return response

    @application.get("/status")
    def status(controller: Controller, session: CurrentSession):
        return controller.status(session)

    @application.post("/refresh")
    async def refresh(controller: Controller, session: CurrentSession):
        """Renew tokens. Any failure clears the whole session and returns 401."""
        try:
            result = await controller.refresh(session)
        except RefreshFailed as e:
            response = JSONResponse({"message": e.description}, status_code=401)
            apply_cookies(response, controller.clear_session())
            return response
        response = JSONResponse({"message": "Tokens refreshed successfully", "expiresIn": result.expires_in})
        apply_cookies(response, result.cookies)
        return response

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "access_portal.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
