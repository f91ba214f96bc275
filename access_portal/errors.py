"""
Error taxonomy for the login flow. Each error carries an OAuth-style machine code
and a short description that is safe to show in a redirect (never an upstream body).
"""


class ConfigurationError(Exception):
    """Settings that cannot work (e.g. an unimplemented client auth method). Raised at startup."""


class AuthFlowError(Exception):
    error = "server_error"
    default_description = "Authentication failed"

    def __init__(self, description: str | None = None, *, error: str | None = None):
        self.description = description or self.default_description
        if error:
            self.error = error
        super().__init__(f"{self.error}: {self.description}")


class UpstreamAuthError(AuthFlowError):
    """The IdP redirected back with ?error=...; the code is propagated verbatim."""

    def __init__(self, error: str, description: str | None = None):
        super().__init__(description or "", error=error)


class MalformedCallback(AuthFlowError):
    error = "invalid_callback"
    default_description = "Missing required parameters"


class InvalidOrExpiredState(AuthFlowError):
    # Unknown, replayed and expired states all map here on purpose
    error = "invalid_state"
    default_description = "State parameter is invalid or expired"


class TokenExchangeFailed(AuthFlowError):
    error = "token_exchange_failed"
    default_description = "Failed to exchange authorization code"


class PlatformExchangeFailed(AuthFlowError):
    """Non-fatal: caught inside the platform exchanger and turned into a missing token."""

    error = "platform_exchange_failed"
    default_description = "Failed to exchange token for platform token"


class RefreshFailed(AuthFlowError):
    error = "refresh_failed"
    default_description = "Failed to refresh tokens. Please log in again."
