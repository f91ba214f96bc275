"""
Access portal configuration. Identity provider (ID-porten) and platform (Altinn) settings from env.
No secrets in this file; the client secret comes from the environment only.
"""
import os
from dataclasses import dataclass

# Client registered at the identity provider
IDPORTEN_CLIENT_ID = os.environ.get("IDPORTEN_CLIENT_ID", "access-portal")

# Confidential clients only; empty = public client (PKCE alone)
IDPORTEN_CLIENT_SECRET = os.environ.get("IDPORTEN_CLIENT_SECRET", "") or None

IDPORTEN_SCOPES = os.environ.get("IDPORTEN_SCOPES", "openid profile altinn:portal/enduser")

# Callback URL where the IdP redirects after login; must be registered for the client
IDPORTEN_REDIRECT_URI = os.environ.get("IDPORTEN_REDIRECT_URI", "http://127.0.0.1:8000/callback")

IDPORTEN_AUTHORIZATION_ENDPOINT = os.environ.get(
    "IDPORTEN_AUTHORIZATION_ENDPOINT", "https://login.test.idporten.no/authorize"
)
IDPORTEN_TOKEN_ENDPOINT = os.environ.get("IDPORTEN_TOKEN_ENDPOINT", "https://test.idporten.no/token")

# client_secret_post | client_secret_basic | private_key_jwt (last one is rejected at startup)
IDPORTEN_AUTH_METHOD = os.environ.get("IDPORTEN_AUTH_METHOD", "client_secret_post")

# Locale hint passed to the login page (Norwegian Bokmål)
IDPORTEN_UI_LOCALES = os.environ.get("IDPORTEN_UI_LOCALES", "nb")

# Platform token exchange (IdP access token -> platform token)
PLATFORM_BASE_URL = os.environ.get("PLATFORM_BASE_URL", "https://platform.tt02.altinn.no").rstrip("/")
PLATFORM_EXCHANGE_PATH = os.environ.get(
    "PLATFORM_EXCHANGE_PATH", "/authentication/api/v1/exchange/id-porten"
)

# Pending-login store: empty = in-process memory; any SQLAlchemy URL = shared table
STATE_STORE_URL = os.environ.get("STATE_STORE_URL", "").strip()

# Pending logins older than this are reaped (user has 10 minutes to finish at the IdP)
STATE_TTL_SECONDS = 600

# All session cookies share this lifetime, independent of the access token's expires_in
SESSION_COOKIE_MAX_AGE = 72 * 3600

# Status reports needsRefresh when the recorded expiry is within this window
REFRESH_WINDOW_SECONDS = 300

# Timeout for calls to the token endpoint and the platform exchange
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "10"))

# Where failed logins are redirected (with ?error=...&error_description=...)
ERROR_REDIRECT = os.environ.get("ERROR_REDIRECT", "/")


@dataclass(frozen=True)
class IdpSettings:
    client_id: str
    client_secret: str | None
    scopes: str
    redirect_uri: str
    authorization_endpoint: str
    token_endpoint: str
    auth_method: str = "client_secret_post"
    ui_locales: str = "nb"


@dataclass(frozen=True)
class PlatformSettings:
    base_url: str
    exchange_path: str = "/authentication/api/v1/exchange/id-porten"

    @property
    def exchange_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.exchange_path}"


def idp_settings_from_env() -> IdpSettings:
    return IdpSettings(
        client_id=IDPORTEN_CLIENT_ID,
        client_secret=IDPORTEN_CLIENT_SECRET,
        scopes=IDPORTEN_SCOPES,
        redirect_uri=IDPORTEN_REDIRECT_URI,
        authorization_endpoint=IDPORTEN_AUTHORIZATION_ENDPOINT,
        token_endpoint=IDPORTEN_TOKEN_ENDPOINT,
        auth_method=IDPORTEN_AUTH_METHOD,
        ui_locales=IDPORTEN_UI_LOCALES,
    )


def platform_settings_from_env() -> PlatformSettings:
    return PlatformSettings(base_url=PLATFORM_BASE_URL, exchange_path=PLATFORM_EXCHANGE_PATH)
