"""Custom exception types for aadtoken.

All exceptions follow the same message standard:
- What failed (specific operation or component)
- Why it failed (the specific condition, provider code when available)
- How to fix it (actionable guidance)

The hierarchy lets callers tell apart "bad credentials" (ProviderError),
"network unreachable" (NetworkError) and "user did not finish the interactive
step in time" (AuthTimeoutError / FlowCancelledError).
"""


class AadTokenError(Exception):
    """Base exception for all aadtoken errors."""

    pass


class ConfigurationError(AadTokenError):
    """Raised when request parameters are missing, ambiguous or contradictory.

    Attributes:
        fields: Names of the parameters involved, when known
    """

    def __init__(self, message: str, fields: tuple[str, ...] = ()):
        super().__init__(message)
        self.fields = fields


class ConfigValidationError(AadTokenError):
    """Raised when the YAML config file fails Pydantic validation."""

    pass


class ConfigLoadError(AadTokenError):
    """Raised when the YAML config file cannot be loaded (not found, parse error)."""

    pass


class ProviderError(AadTokenError):
    """Raised when the identity provider returns an error response.

    Attributes:
        error_code: OAuth error code (e.g. 'invalid_grant', 'invalid_client')
        description: Provider's error_description, if any
        status_code: HTTP status code of the response
        error_codes: AADSTS numeric codes reported by Azure AD
        correlation_id: Azure AD correlation id, useful for support requests
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        description: str | None = None,
        status_code: int | None = None,
        error_codes: list[int] | None = None,
        correlation_id: str | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.description = description
        self.status_code = status_code
        self.error_codes = error_codes or []
        self.correlation_id = correlation_id


class AuthTimeoutError(AadTokenError, TimeoutError):
    """Raised when an interactive step was not completed in time.

    Covers the authorization-code redirect capture timeout and device-code
    expiry. Fatal to the current acquisition.
    """

    pass


class FlowCancelledError(AadTokenError):
    """Raised when the caller cancels an interactive flow."""

    pass


class NetworkError(AadTokenError):
    """Raised on transport failures (DNS, connection refused, read timeout).

    The core never retries these; the caller decides.
    """

    pass


class ManagedIdentityUnavailableError(AadTokenError):
    """Raised when no managed identity endpoint is reachable.

    This means the process is not running on a managed-identity-capable host
    (Azure VM, App Service, Functions, Container Apps). Not retryable.
    """

    pass


class CacheError(AadTokenError):
    """Raised when the token cache cannot be read, written or decoded.

    Attributes:
        path: Cache file or directory involved
    """

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path
