"""
Authentication error taxonomy.

Every failure surfaced by the identity provider adapter, the profile service
client and the SessionManager is one of these exceptions. botocore errors are
translated into them in a single place (``identity_provider.translate_client_error``)
so callers never inspect provider error strings.
"""

from typing import Optional


class AuthError(Exception):
    """Base exception for authentication failures.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        provider_code: Original provider error code, when there is one
    """

    error_code = "AUTH_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        provider_code: Optional[str] = None,
    ):
        self.message = message
        self.error_code = error_code or self.error_code
        self.provider_code = provider_code
        super().__init__(self.message)


class InvalidCredentialsError(AuthError):
    """Raised when the provider rejects the identifier/secret pair."""

    error_code = "INVALID_CREDENTIALS"


class InvalidCodeError(AuthError):
    """Raised when a one-time or confirmation code is wrong or expired."""

    error_code = "INVALID_CODE"


class InvalidStateError(AuthError):
    """Raised when an operation is called out of sequence."""

    error_code = "INVALID_STATE"


class ProviderUnavailableError(AuthError):
    """Raised on network or provider-side failures."""

    error_code = "PROVIDER_UNAVAILABLE"


class ProviderRequestError(AuthError):
    """Raised when the provider refuses a well-formed request (username taken, weak password...)."""

    error_code = "PROVIDER_REQUEST_REJECTED"


class ProfileLookupError(AuthError):
    """Raised when the profile service returns an error instead of a profile."""

    error_code = "PROFILE_LOOKUP_FAILED"


class UnauthenticatedError(AuthError):
    """Raised when there is no usable session, or no known identity at all."""

    error_code = "UNAUTHENTICATED"
