"""
PKCE (RFC 7636) and authorization request helpers for login initiation.
S256 only; state and nonce are independent random tokens.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import urlencode

CHALLENGE_METHOD = "S256"


def _b64url(raw: bytes) -> str:
    return urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_verifier() -> str:
    """
    PKCE code_verifier: 32 random bytes -> 43 chars base64url (256 bits entropy).
    """
    return _b64url(secrets.token_bytes(32))


def derive_challenge(verifier: str) -> str:
    """code_challenge for S256: base64url(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_opaque_token(length: int = 32) -> str:
    """Random value for state (CSRF) or nonce (ID token binding). Call once per value."""
    return _b64url(secrets.token_bytes(length))


def build_authorize_url(
    *,
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    nonce: str,
    code_challenge: str,
    ui_locales: str | None = None,
) -> str:
    """Build the IdP /authorize URL with required and optional params."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scope,
        "state": state,
        "nonce": nonce,
        "code_challenge": code_challenge,
        "code_challenge_method": CHALLENGE_METHOD,
    }
    if ui_locales:
        params["ui_locales"] = ui_locales
    sep = "&" if "?" in authorization_endpoint else "?"
    return f"{authorization_endpoint}{sep}{urlencode(params)}"
