"""
Browser session carried in cookies.
Session is built once per request from the cookie jar; SessionMaterializer turns a
TokenSet into the cookies that make up that session (and clears them again).
"""
import logging
import time
from dataclasses import dataclass
from typing import Annotated, Callable, Mapping

from fastapi import Depends, HTTPException, Request, Response, status

from access_portal.config import REFRESH_WINDOW_SECONDS, SESSION_COOKIE_MAX_AGE
from access_portal.token_client import TokenSet

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"
ID_TOKEN_COOKIE = "id_token"
PLATFORM_TOKEN_COOKIE = "platform_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
EXPIRES_AT_COOKIE = "token_expires_at"

SESSION_COOKIES = (
    ACCESS_TOKEN_COOKIE,
    ID_TOKEN_COOKIE,
    PLATFORM_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    EXPIRES_AT_COOKIE,
)


@dataclass(frozen=True)
class Cookie:
    """One Set-Cookie instruction. max_age == 0 means delete."""

    name: str
    value: str
    max_age: int
    httponly: bool = True

    @property
    def is_deletion(self) -> bool:
        return self.max_age == 0


@dataclass(frozen=True)
class Session:
    access_token: str | None = None
    id_token: str | None = None
    platform_token: str | None = None
    refresh_token: str | None = None
    expires_at: int | None = None

    @classmethod
    def from_cookies(cls, cookies: Mapping[str, str]) -> "Session":
        raw_expiry = cookies.get(EXPIRES_AT_COOKIE)
        try:
            expires_at = int(raw_expiry) if raw_expiry else None
        except ValueError:
            expires_at = None
        return cls(
            access_token=cookies.get(ACCESS_TOKEN_COOKIE) or None,
            id_token=cookies.get(ID_TOKEN_COOKIE) or None,
            platform_token=cookies.get(PLATFORM_TOKEN_COOKIE) or None,
            refresh_token=cookies.get(REFRESH_TOKEN_COOKIE) or None,
            expires_at=expires_at,
        )

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    def needs_refresh(self, now: float, window_seconds: int = REFRESH_WINDOW_SECONDS) -> bool:
        """True when the recorded expiry is past or within window_seconds. No expiry recorded -> False."""
        if self.expires_at is None:
            return False
        return self.expires_at <= now + window_seconds


class SessionMaterializer:
    def __init__(self, max_age: int = SESSION_COOKIE_MAX_AGE, clock: Callable[[], float] = time.time):
        self._max_age = max_age
        self._clock = clock

    def materialize(
        self,
        token_set: TokenSet,
        platform_token: str | None = None,
        *,
        fresh_login: bool = True,
    ) -> list[Cookie]:
        """
        Cookies for a new token set. Whatever the browser held before never outlives it:
        an absent platform token is always deleted, and on a fresh login so are an absent
        id_token and refresh_token. On refresh (fresh_login=False) an IdP that does not
        rotate leaves the existing refresh_token and id_token in place.
        """
        cookies = [Cookie(ACCESS_TOKEN_COOKIE, token_set.access_token, self._max_age)]
        cookies.append(self._optional(ID_TOKEN_COOKIE, token_set.id_token, delete_if_absent=fresh_login))
        cookies.append(self._optional(PLATFORM_TOKEN_COOKIE, platform_token, delete_if_absent=True))
        cookies.append(
            self._optional(REFRESH_TOKEN_COOKIE, token_set.refresh_token, delete_if_absent=fresh_login)
        )
        cookies = [c for c in cookies if c is not None]
        expires_at = int(self._clock()) + token_set.expires_in
        # Readable by client script so it can schedule a refresh
        cookies.append(Cookie(EXPIRES_AT_COOKIE, str(expires_at), self._max_age, httponly=False))
        return cookies

    def _optional(self, name: str, value: str | None, *, delete_if_absent: bool) -> Cookie | None:
        if value:
            return Cookie(name, value, self._max_age)
        if delete_if_absent:
            return Cookie(name, "", 0)
        return None

    def clear(self) -> list[Cookie]:
        return [Cookie(name, "", 0, httponly=name != EXPIRES_AT_COOKIE) for name in SESSION_COOKIES]


def apply_cookies(response: Response, cookies: list[Cookie]) -> None:
    """Write cookies onto a Starlette response. Always Secure + SameSite=Lax."""
    for c in cookies:
        if c.is_deletion:
            response.delete_cookie(c.name, path="/", secure=True, httponly=c.httponly, samesite="lax")
        else:
            response.set_cookie(
                c.name,
                c.value,
                max_age=c.max_age,
                expires=c.max_age,
                path="/",
                secure=True,
                httponly=c.httponly,
                samesite="lax",
            )


def get_session(request: Request) -> Session:
    """Dependency: the request's session, read from cookies once."""
    return Session.from_cookies(request.cookies)


def require_session(session: Annotated[Session, Depends(get_session)]) -> Session:
    """
    Dependency: authenticated session or 401. For the downstream resource routers
    (metadata, roles, delegations); the login routes in main.py do not need it.
    """
    if not session.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "login_required", "error_description": "User is not authenticated"},
        )
    return session


def require_platform_session(session: Annotated[Session, Depends(require_session)]) -> Session:
    """
    Dependency for downstream routers that call the platform with the platform token
    (mounted by those routers, not by main.py). A login whose platform exchange failed has
    no platform token; such calls are refused instead of going out unauthenticated.
    """
    if not session.platform_token:
        logger.info("Refusing platform call: session has no platform token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "platform_token_missing",
                "error_description": "No platform token for this session; log in again",
            },
        )
    return session
