"""
Platform token exchange: present the IdP access token as a bearer credential and
receive a platform (Altinn) token back. Best-effort; failures become None.
"""
import logging

import httpx

from access_portal.config import PlatformSettings
from access_portal.errors import PlatformExchangeFailed

logger = logging.getLogger(__name__)


class PlatformTokenExchanger:
    def __init__(self, http: httpx.AsyncClient, settings: PlatformSettings):
        self._http = http
        self._settings = settings

    async def exchange(self, idp_access_token: str) -> str | None:
        """Return the platform token, or None if the exchange failed (logged, never raised)."""
        try:
            token = await self._request_token(idp_access_token)
        except PlatformExchangeFailed as e:
            logger.warning("Continuing without platform token: %s", e.description)
            return None
        logger.info("Exchanged IdP access token for platform token")
        return token

    async def _request_token(self, idp_access_token: str) -> str:
        try:
            r = await self._http.get(
                self._settings.exchange_url,
                headers={"Authorization": f"Bearer {idp_access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error("Platform token exchange request failed: %s", e)
            raise PlatformExchangeFailed("Platform exchange unreachable") from e
        if not r.is_success:
            logger.error("Platform token exchange failed. Status: %s, Error: %s", r.status_code, r.text)
            raise PlatformExchangeFailed(f"Platform exchange returned {r.status_code}")
        # Body is the bare token; some gateways wrap it as a JSON string
        token = r.text.strip().strip('"')
        if not token:
            raise PlatformExchangeFailed("Platform exchange returned an empty body")
        return token
