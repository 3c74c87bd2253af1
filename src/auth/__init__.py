"""
Authentication modules for the Cognito session client.

This package contains modules for:
- Session establishment, refresh and logout (SessionManager)
- One SessionManager per HTTP caller (SessionRegistry)
- Identity provider access (Cognito user pool via boto3)
- Profile service lookup
- Local session persistence (file or DynamoDB)
- MFA enrollment
"""

from auth.exceptions import (
    AuthError,
    InvalidCredentialsError,
    InvalidCodeError,
    InvalidStateError,
    ProviderUnavailableError,
    ProviderRequestError,
    ProfileLookupError,
    UnauthenticatedError,
)
from auth.models import (
    AuthStatus,
    EstablishResult,
    MfaResult,
    MfaProvisioning,
    NextStep,
    Profile,
    RegistrationFields,
    RegistrationResult,
    RegistrationStatus,
    Session,
    StoredState,
)
from auth.identity_provider import CognitoIdentityProvider, CognitoConfig
from auth.profile_service import ProfileServiceClient, ProfileServiceConfig
from auth.storage import (
    SessionStore,
    FileSessionStore,
    DynamoDBSessionStore,
    StorageConfig,
    create_session_store,
)
from auth.session_manager import SessionManager
from auth.session_registry import SessionRegistry
from auth.mfa import MfaEnrollmentService

__all__ = [
    # Errors
    "AuthError",
    "InvalidCredentialsError",
    "InvalidCodeError",
    "InvalidStateError",
    "ProviderUnavailableError",
    "ProviderRequestError",
    "ProfileLookupError",
    "UnauthenticatedError",
    # Models
    "AuthStatus",
    "EstablishResult",
    "MfaResult",
    "MfaProvisioning",
    "NextStep",
    "Profile",
    "RegistrationFields",
    "RegistrationResult",
    "RegistrationStatus",
    "Session",
    "StoredState",
    # Collaborators
    "CognitoIdentityProvider",
    "CognitoConfig",
    "ProfileServiceClient",
    "ProfileServiceConfig",
    "SessionStore",
    "FileSessionStore",
    "DynamoDBSessionStore",
    "StorageConfig",
    "create_session_store",
    # Session Management
    "SessionManager",
    "SessionRegistry",
    "MfaEnrollmentService",
]
