"""
Data models for the Cognito session client.

Covers the transient credential types, the provider's token bundle, the
Session/Profile pair owned by SessionManager, the record persisted locally,
and the tagged outcome types returned by the identity provider adapter.
"""

from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Optional, Dict, Any, List, Literal, Union

from pydantic import BaseModel, Field


# ============================================================
# Status Enums
# ============================================================

class AuthStatus(str, Enum):
    """Outcome of an authentication attempt."""
    SUCCESS = "success"
    MFA_REQUIRED = "mfa_required"
    REJECTED = "rejected"


class RegistrationStatus(str, Enum):
    """Outcome of a registration or confirmation request."""
    SUCCESS = "success"
    REJECTED = "rejected"


class NextStep(str, Enum):
    """Step the caller should present after a registration request."""
    CONFIRM_ACCOUNT = "confirm_account"
    SETUP_MFA = "setup_mfa"


class ChallengeName(str, Enum):
    """Cognito challenge names this client knows how to handle."""
    SOFTWARE_TOKEN_MFA = "SOFTWARE_TOKEN_MFA"
    SMS_MFA = "SMS_MFA"
    SELECT_MFA_TYPE = "SELECT_MFA_TYPE"
    MFA_SETUP = "MFA_SETUP"
    NEW_PASSWORD_REQUIRED = "NEW_PASSWORD_REQUIRED"


MFA_CHALLENGES = frozenset({ChallengeName.SOFTWARE_TOKEN_MFA, ChallengeName.SMS_MFA})


# ============================================================
# Credentials and Tokens
# ============================================================

class Credentials(BaseModel):
    """Identifier/secret pair held only for one authentication attempt."""
    identifier: str = Field(..., min_length=1, description="Username or email")
    secret: str = Field(..., min_length=1, description="Password")

    class Config:
        frozen = True

    def __repr__(self) -> str:
        return f"Credentials(identifier={self.identifier!r}, secret='***')"


class AuthTokens(BaseModel):
    """Token bundle returned by a successful provider challenge."""
    access_token: str
    id_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    token_type: str = "Bearer"

    class Config:
        frozen = True


class PendingMfaState(BaseModel):
    """Credentials held between an MFA challenge and the code submission.

    Lives in memory only and is discarded after one challenge resolution.
    """
    identifier: str
    secret: str
    challenge_name: ChallengeName = ChallengeName.SOFTWARE_TOKEN_MFA

    class Config:
        frozen = True

    def __repr__(self) -> str:
        return (
            f"PendingMfaState(identifier={self.identifier!r}, "
            f"challenge_name={self.challenge_name.value!r})"
        )


# ============================================================
# Session and Profile
# ============================================================

class Session(BaseModel):
    """Token-bearing proof of an authenticated identity.

    Attributes:
        username: Provider username owning the session
        access_token: Access token for provider user operations
        id_token: ID token presented to the profile service
        refresh_token: Refresh token, when the provider issued one
        expires_at: Unix timestamp when the access token expires
    """
    username: str = Field(..., description="Owning identity")
    access_token: str = Field(..., description="Provider access token")
    id_token: str = Field(..., description="Provider ID token")
    refresh_token: Optional[str] = Field(default=None, description="Provider refresh token")
    expires_at: int = Field(..., description="Unix timestamp of access token expiry")

    class Config:
        frozen = True

    @classmethod
    def from_tokens(
        cls,
        username: str,
        tokens: AuthTokens,
        refresh_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Session":
        """Build a session from a token bundle.

        ``refresh_token`` is used when the bundle carries none, which is the
        case for tokens obtained through REFRESH_TOKEN_AUTH.
        """
        now = now or datetime.now(timezone.utc)
        return cls(
            username=username,
            access_token=tokens.access_token,
            id_token=tokens.id_token,
            refresh_token=tokens.refresh_token or refresh_token,
            expires_at=int((now + timedelta(seconds=tokens.expires_in)).timestamp()),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the access token has expired."""
        now = now or datetime.now(timezone.utc)
        return int(now.timestamp()) >= self.expires_at

    def time_until_expiry(self, now: Optional[datetime] = None) -> timedelta:
        """Get the time remaining until the access token expires.

        Returns:
            Timedelta until expiry (negative if already expired)
        """
        expiry_time = datetime.fromtimestamp(self.expires_at, tz=timezone.utc)
        return expiry_time - (now or datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return f"Session(username={self.username!r}, expires_at={self.expires_at})"


class Profile(BaseModel):
    """Account profile built from provider attributes and the profile service.

    Attributes:
        username: Provider username
        user_id: Provider ``sub`` attribute
        email: User's email address
        display_name: ``name`` attribute
        company: ``custom:Company`` attribute
        plan: ``custom:Plan`` attribute
        tier: ``custom:Tier`` attribute
        role: ``custom:Role`` attribute
        attributes: Every provider attribute, sorted by name
        profile_image: Profile image URL from the profile service
        image_expires: Image URL expiry from the profile service
        account_expired: Whether the business account has expired
        access_token: Bearer token used against the business API
        extra: Remaining profile service fields
    """
    username: str
    user_id: str
    email: str = ""
    display_name: str = ""
    company: str = ""
    plan: Optional[str] = None
    tier: Optional[str] = None
    role: Optional[str] = None
    attributes: Dict[str, str] = Field(default_factory=dict)
    profile_image: Optional[str] = None
    image_expires: Optional[Any] = None
    account_expired: bool = False
    access_token: str
    extra: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert profile to a dictionary for API responses, without the token."""
        return {
            "username": self.username,
            "userId": self.user_id,
            "email": self.email,
            "name": self.display_name,
            "company": self.company,
            "plan": self.plan,
            "tier": self.tier,
            "role": self.role,
            "attributes": dict(self.attributes),
            "profileImage": self.profile_image,
            "imageExpires": self.image_expires,
            "accountExpired": self.account_expired,
            "extra": dict(self.extra),
        }


class StoredState(BaseModel):
    """Record persisted under the fixed storage key.

    ``session`` is None after a logout that kept the cached profile.
    """
    identifier: str
    session: Optional[Session] = None
    profile: Optional[Profile] = None


class ProviderUser(BaseModel):
    """User data returned by the provider's GetUser call."""
    username: str
    attributes: Dict[str, str] = Field(default_factory=dict)
    preferred_mfa: Optional[str] = None
    mfa_settings: List[str] = Field(default_factory=list)


# ============================================================
# Provider Outcomes (tagged variants)
# ============================================================

class AuthSuccess(BaseModel):
    """The provider accepted the challenge and issued tokens."""
    kind: Literal["success"] = "success"
    tokens: AuthTokens


class MfaChallenge(BaseModel):
    """The provider requires a second factor before issuing tokens."""
    kind: Literal["mfa_required"] = "mfa_required"
    challenge_name: ChallengeName
    session: str
    parameters: Dict[str, str] = Field(default_factory=dict)


class ChallengeRequired(BaseModel):
    """The provider requires a non-MFA challenge (new password, MFA type selection...)."""
    kind: Literal["challenge"] = "challenge"
    challenge_name: str
    session: str
    parameters: Dict[str, str] = Field(default_factory=dict)


class Rejected(BaseModel):
    """The provider refused the credentials."""
    kind: Literal["rejected"] = "rejected"
    reason: str
    provider_code: Optional[str] = None


AuthOutcome = Union[AuthSuccess, MfaChallenge, ChallengeRequired, Rejected]


# ============================================================
# Operation Results
# ============================================================

class EstablishResult(BaseModel):
    """Result of SessionManager.establish."""
    status: AuthStatus
    reason: Optional[str] = None


class MfaResult(BaseModel):
    """Result of SessionManager.complete_mfa."""
    status: Literal[AuthStatus.SUCCESS, AuthStatus.REJECTED]
    reason: Optional[str] = None


class RegistrationFields(BaseModel):
    """Fields submitted by a new-account request."""
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    company: str = ""

    def __repr__(self) -> str:
        return f"RegistrationFields(email={self.email!r}, company={self.company!r})"


class RegistrationResult(BaseModel):
    """Result of a registration or confirmation request."""
    status: RegistrationStatus
    next_step: Optional[NextStep] = None
    error_message: Optional[str] = None


class MfaProvisioning(BaseModel):
    """Software token provisioning data for MFA enrollment."""
    secret_code: Optional[str] = None
    provisioning_uri: Optional[str] = None
    already_enabled: bool = False
