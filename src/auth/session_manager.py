"""
Session Management Module for Cognito Authentication.

This module owns the current Session, Profile and pending MFA challenge of one
caller and keeps them consistent with local persistence. The three values are
a single unit: establishing a session replaces all of them, and a failure
part-way through leaves nothing half-written.

Features:
- Password sign-in with optional TOTP/SMS step-up challenge
- Session refresh from local persistence (refresh token when expired)
- Logout with optional local cleanup
- Registration, confirmation and password reset flows
- Profile resolution from provider attributes plus the profile service

Usage:
    from auth.session_manager import SessionManager

    manager = SessionManager(provider, profile_service, store)

    result = await manager.establish("user@example.com", "secret")
    if result.status == AuthStatus.MFA_REQUIRED:
        result = await manager.complete_mfa("123456")

    session = await manager.refresh()
    await manager.logout(clear_local=True)
"""

import time
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable, Tuple

from auth.exceptions import (
    InvalidCodeError,
    InvalidCredentialsError,
    InvalidStateError,
    ProfileLookupError,
    ProviderRequestError,
    UnauthenticatedError,
)
from auth.identity_provider import CognitoIdentityProvider
from auth.models import (
    AuthOutcome,
    AuthStatus,
    AuthSuccess,
    ChallengeName,
    ChallengeRequired,
    Credentials,
    EstablishResult,
    MfaChallenge,
    MfaResult,
    NextStep,
    PendingMfaState,
    Profile,
    ProviderUser,
    RegistrationFields,
    RegistrationResult,
    RegistrationStatus,
    Rejected,
    Session,
    StoredState,
)
from auth.profile_service import ProfileServiceClient
from auth.storage import SessionStore


logger = logging.getLogger(__name__)


# Profile service fields that map onto dedicated Profile fields
BUSINESS_FIELDS = ("ProfileImage", "ImageExpires", "AccountExpired")

FREE_TRIAL_OFFER = "free-trial"


# ============================================================
# Profile and Registration Helpers
# ============================================================

def build_profile(user: ProviderUser, customer: Dict[str, Any], session: Session) -> Profile:
    """Merge provider attributes, profile service fields and session values.

    Provider attributes are authoritative for identity fields, the profile
    service for business fields; remaining service fields land in ``extra``
    and never override identity fields.

    Raises:
        ProfileLookupError: If neither source identifies the user
    """
    attributes = dict(sorted(user.attributes.items()))
    user_id = attributes.get("sub") or customer.get("Id")
    if not user_id:
        raise ProfileLookupError("Neither the provider nor the profile service returned a user id")

    extra = {
        key: value
        for key, value in sorted(customer.items())
        if key not in BUSINESS_FIELDS
    }

    return Profile(
        username=user.username,
        user_id=str(user_id),
        email=attributes.get("email", ""),
        display_name=attributes.get("name", ""),
        company=attributes.get("custom:Company", ""),
        plan=attributes.get("custom:Plan"),
        tier=attributes.get("custom:Tier"),
        role=attributes.get("custom:Role"),
        attributes=attributes,
        profile_image=customer.get("ProfileImage"),
        image_expires=customer.get("ImageExpires"),
        account_expired=bool(customer.get("AccountExpired", False)),
        access_token=session.id_token,
        extra=extra,
    )


def resolve_plan(offer_type: Optional[str]) -> str:
    """Map a marketplace offer type onto a subscription plan."""
    if not offer_type or offer_type == FREE_TRIAL_OFFER:
        return "Free"
    return "Paid"


def build_registration_attributes(
    fields: RegistrationFields,
    offer_type: Optional[str],
    created_at: float,
) -> Dict[str, str]:
    """Build the fixed attribute set submitted with a new-account request."""
    attributes = {
        "email": fields.email,
        "name": fields.name,
    }

    names = fields.name.split()
    if len(names) > 1:
        attributes["family_name"] = names[-1]

    attributes.update({
        "custom:Tier": "1",
        "custom:Plan": resolve_plan(offer_type),
        "custom:Role": "Admin",
    })
    if fields.company:
        attributes["custom:Company"] = fields.company
    attributes["custom:Created"] = str(int(created_at))
    return attributes


# ============================================================
# Session Manager
# ============================================================

class SessionManager:
    """Manages one caller's Cognito session, profile and pending MFA challenge.

    Example:
        manager = SessionManager(
            provider=CognitoIdentityProvider(),
            profile_service=ProfileServiceClient(),
            store=FileSessionStore("/tmp/state.json"),
        )

        result = await manager.establish("user@example.com", "secret")
        if result.status == AuthStatus.MFA_REQUIRED:
            await manager.complete_mfa("123456")

        profile = manager.profile
    """

    def __init__(
        self,
        provider: CognitoIdentityProvider,
        profile_service: ProfileServiceClient,
        store: SessionStore,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the session manager.

        Args:
            provider: Identity provider adapter
            profile_service: Profile service client
            store: Local persistence for the session record
            clock: Returns the current unix time (defaults to time.time)
        """
        self.provider = provider
        self.profile_service = profile_service
        self.store = store
        self._clock = clock or time.time

        self._session: Optional[Session] = None
        self._profile: Optional[Profile] = None
        self._pending: Optional[PendingMfaState] = None
        self._identifier: Optional[str] = None
        # Target of registration confirmation and password reset flows
        self._account_identifier: Optional[str] = None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def profile(self) -> Optional[Profile]:
        return self._profile

    @property
    def identifier(self) -> Optional[str]:
        return self._identifier

    @property
    def has_pending_mfa(self) -> bool:
        return self._pending is not None

    # --------------------------------------------------------
    # Internal state transitions
    # --------------------------------------------------------

    async def _answer_mfa_selection(self, username: str, outcome: AuthOutcome) -> AuthOutcome:
        if (
            isinstance(outcome, ChallengeRequired)
            and outcome.challenge_name == ChallengeName.SELECT_MFA_TYPE.value
        ):
            return await self.provider.select_mfa_type(username, outcome.session)
        return outcome

    async def _validated_user(self, access_token: str) -> ProviderUser:
        try:
            return await self.provider.get_user(access_token)
        except InvalidCredentialsError as e:
            raise UnauthenticatedError(
                "Session rejected by the identity provider",
                provider_code=e.provider_code,
            ) from e

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def _resolve_profile(self, session: Session, user: ProviderUser) -> Profile:
        customer = await self.profile_service.get_customer(session.id_token)
        return build_profile(user, customer, session)

    async def _commit(self, identifier: str, session: Session, profile: Profile) -> None:
        """Replace the stored and in-memory session and profile."""
        await self.store.save(StoredState(identifier=identifier, session=session, profile=profile))

        self._session = session
        self._profile = profile
        self._identifier = identifier
        logger.info(
            f"Session stored: username={session.username}, "
            f"expires_at={session.expires_at}"
        )

    async def _adopt_tokens(self, identifier: str, outcome: AuthSuccess) -> None:
        """Make freshly issued tokens the current session.

        The previous record is removed before the profile lookup so a lookup
        failure leaves nothing persisted.
        """
        user = await self._validated_user(outcome.tokens.access_token)
        session = Session.from_tokens(user.username, outcome.tokens, now=self._now())
        await self._drop_session()
        profile = await self._resolve_profile(session, user)
        await self._commit(identifier, session, profile)
        # Account flows now target the signed-in user
        self._account_identifier = None

    async def _drop_session(self) -> None:
        await self.store.clear()
        self._session = None
        self._profile = None

    def _resolve_identifier(self, identifier: Optional[str]) -> str:
        resolved = identifier or self._account_identifier or self._identifier
        if not resolved:
            raise InvalidStateError("No user identifier known for this operation")
        return resolved

    async def _active_session(self) -> Session:
        if self._session is not None and not self._session.is_expired(self._now()):
            return self._session
        return await self.refresh()

    # --------------------------------------------------------
    # Session establishment
    # --------------------------------------------------------

    async def establish(self, identifier: str, secret: str) -> EstablishResult:
        """Sign in with an identifier and password.

        Args:
            identifier: Username or email
            secret: Password

        Returns:
            EstablishResult with status success, mfa_required or rejected

        Raises:
            ValueError: If identifier or secret is empty
            ProfileLookupError: If the profile service fails after sign-in
            ProviderUnavailableError: If the provider cannot be reached
        """
        if not identifier or not secret:
            raise ValueError("identifier and secret must be non-empty")
        credentials = Credentials(identifier=identifier, secret=secret)

        # A new attempt invalidates any earlier pending challenge
        self._pending = None

        logger.info(f"Establishing session: identifier={identifier}")
        outcome = await self.provider.initiate_password_auth(credentials.identifier, credentials.secret)
        outcome = await self._answer_mfa_selection(credentials.identifier, outcome)

        if isinstance(outcome, AuthSuccess):
            await self._adopt_tokens(credentials.identifier, outcome)
            return EstablishResult(status=AuthStatus.SUCCESS)

        if isinstance(outcome, MfaChallenge):
            await self._drop_session()
            self._pending = PendingMfaState(
                identifier=credentials.identifier,
                secret=credentials.secret,
                challenge_name=outcome.challenge_name,
            )
            logger.info(
                f"Second factor required: identifier={identifier}, "
                f"challenge={outcome.challenge_name.value}"
            )
            return EstablishResult(status=AuthStatus.MFA_REQUIRED)

        if isinstance(outcome, Rejected):
            logger.warning(f"Sign-in rejected: identifier={identifier}, code={outcome.provider_code}")
            return EstablishResult(status=AuthStatus.REJECTED, reason=outcome.reason)

        logger.warning(f"Sign-in requires unsupported challenge: {outcome.challenge_name}")
        return EstablishResult(status=AuthStatus.REJECTED, reason=outcome.challenge_name)

    async def complete_mfa(self, code: str) -> MfaResult:
        """Answer the pending second-factor challenge.

        A wrong or expired code keeps the pending challenge so the caller can
        retry; credentials rejected on replay discard it.

        Raises:
            InvalidStateError: If no establish() call is awaiting a code
            ProfileLookupError: If the profile service fails after sign-in
        """
        pending = self._pending
        if pending is None:
            raise InvalidStateError("No pending MFA challenge")
        if not code:
            raise ValueError("code must be non-empty")

        outcome = await self.provider.initiate_password_auth(pending.identifier, pending.secret)
        outcome = await self._answer_mfa_selection(pending.identifier, outcome)

        if isinstance(outcome, Rejected):
            self._pending = None
            logger.warning(f"MFA replay rejected credentials: identifier={pending.identifier}")
            return MfaResult(status=AuthStatus.REJECTED, reason=outcome.reason)

        if isinstance(outcome, ChallengeRequired):
            self._pending = None
            return MfaResult(status=AuthStatus.REJECTED, reason=outcome.challenge_name)

        if isinstance(outcome, MfaChallenge):
            try:
                outcome = await self.provider.respond_to_mfa(pending.identifier, outcome, code)
            except InvalidCodeError as e:
                logger.info(f"MFA code rejected: identifier={pending.identifier}")
                return MfaResult(status=AuthStatus.REJECTED, reason=e.message)

            # The challenge session was refused; the next attempt replays a fresh one
            if isinstance(outcome, Rejected):
                return MfaResult(status=AuthStatus.REJECTED, reason=outcome.reason)
            if isinstance(outcome, MfaChallenge):
                return MfaResult(status=AuthStatus.REJECTED, reason=outcome.challenge_name.value)
            if isinstance(outcome, ChallengeRequired):
                return MfaResult(status=AuthStatus.REJECTED, reason=outcome.challenge_name)

        self._pending = None
        await self._adopt_tokens(pending.identifier, outcome)
        return MfaResult(status=AuthStatus.SUCCESS)

    async def refresh(self) -> Session:
        """Restore the session without prompting for credentials.

        Uses the in-memory session or the stored record, exchanges the refresh
        token when the access token has expired, validates the session with
        the provider and re-derives the profile. The record is replaced only
        once the profile is resolved; a profile lookup failure leaves the
        session and the previous profile untouched.

        Returns:
            The current Session

        Raises:
            UnauthenticatedError: If no session exists or the provider rejects it
            ProfileLookupError: If the profile service fails
        """
        session, user, identifier = await self._validated_session()
        try:
            profile = await self._resolve_profile(session, user)
        except ProfileLookupError:
            logger.warning(f"Profile lookup failed, keeping session: identifier={identifier}")
            raise

        await self._commit(identifier or user.username, session, profile)
        return session

    async def _validated_session(self) -> Tuple[Session, ProviderUser, Optional[str]]:
        """Load the current session, exchanging an expired access token.

        Returns:
            Tuple of (session, provider user, identifier)

        Raises:
            UnauthenticatedError: If no session exists or the provider rejects
                it; the stale record is cleared
        """
        session = self._session
        identifier = self._identifier
        if session is None:
            state = await self.store.load()
            if state is None or state.session is None:
                raise UnauthenticatedError("No session to refresh")
            session = state.session
            identifier = state.identifier
            self._identifier = identifier

        try:
            if session.is_expired(self._now()):
                if not session.refresh_token:
                    raise UnauthenticatedError("Session expired")
                tokens = await self.provider.refresh_tokens(session.username, session.refresh_token)
                session = Session.from_tokens(
                    session.username, tokens, refresh_token=session.refresh_token, now=self._now()
                )
                logger.info(f"Access token refreshed: username={session.username}")
            user = await self._validated_user(session.access_token)
        except UnauthenticatedError:
            logger.warning(f"Stored session rejected, clearing: identifier={identifier}")
            await self._drop_session()
            raise

        return session, user, identifier

    async def is_logged_in(self) -> bool:
        """Check whether the provider still accepts the session.

        Only the provider session is checked; the profile is not re-derived.
        """
        try:
            await self._validated_session()
        except UnauthenticatedError:
            return False
        return True

    async def logout(self, clear_local: bool = True) -> None:
        """Sign out with the provider.

        Calling without an active session is a no-op as long as an identity is
        still known.

        Args:
            clear_local: Also erase the cached identifier and profile

        Raises:
            UnauthenticatedError: If no user identity is known at all
            ProviderUnavailableError: If the provider cannot be reached
        """
        state = None
        if self._session is None or self._identifier is None:
            state = await self.store.load()

        identifier = (
            self._identifier
            or (self._pending.identifier if self._pending else None)
            or (state.identifier if state else None)
        )
        if not identifier:
            raise UnauthenticatedError("No user identity known")

        session = self._session or (state.session if state else None)
        profile = self._profile or (state.profile if state else None)

        if session is not None:
            await self.provider.global_sign_out(session.access_token)

        self._session = None
        self._pending = None

        if clear_local:
            await self.store.clear()
            self._profile = None
            self._identifier = None
            self._account_identifier = None
        else:
            await self.store.save(StoredState(identifier=identifier, profile=profile))
            self._profile = profile
            self._identifier = identifier

        logger.info(f"Logged out: identifier={identifier}, clear_local={clear_local}")

    # --------------------------------------------------------
    # Registration
    # --------------------------------------------------------

    async def register(self, fields: RegistrationFields, offer_type: Optional[str] = None) -> RegistrationResult:
        """Submit a new-account request.

        Does not establish a session; on success the caller moves on to the
        account confirmation step.

        Args:
            fields: Name, email, password and company of the new account
            offer_type: Marketplace offer type hint ("free-trial" or a paid offer)
        """
        attributes = build_registration_attributes(fields, offer_type, self._clock())
        try:
            await self.provider.sign_up(fields.email, fields.password, attributes)
        except (ProviderRequestError, InvalidCredentialsError) as e:
            logger.warning(f"Registration rejected: email={fields.email}, code={e.provider_code}")
            return RegistrationResult(status=RegistrationStatus.REJECTED, error_message=e.message)

        self._account_identifier = fields.email
        logger.info(f"Registration submitted: email={fields.email}, plan={attributes['custom:Plan']}")
        return RegistrationResult(status=RegistrationStatus.SUCCESS, next_step=NextStep.CONFIRM_ACCOUNT)

    async def confirm_registration(self, code: str, identifier: Optional[str] = None) -> RegistrationResult:
        """Confirm a registration with the emailed code."""
        username = self._resolve_identifier(identifier)
        try:
            await self.provider.confirm_sign_up(username, code)
        except (InvalidCodeError, ProviderRequestError, InvalidCredentialsError) as e:
            return RegistrationResult(status=RegistrationStatus.REJECTED, error_message=e.message)

        logger.info(f"Registration confirmed: identifier={username}")
        return RegistrationResult(status=RegistrationStatus.SUCCESS, next_step=NextStep.SETUP_MFA)

    async def resend_confirmation_code(self, identifier: Optional[str] = None) -> Dict[str, Any]:
        username = self._resolve_identifier(identifier)
        return await self.provider.resend_confirmation_code(username)

    # --------------------------------------------------------
    # Password management
    # --------------------------------------------------------

    async def forgot_password(self, identifier: Optional[str] = None) -> Dict[str, Any]:
        """Start a password reset; the provider delivers a verification code."""
        username = self._resolve_identifier(identifier)
        delivery = await self.provider.forgot_password(username)
        self._account_identifier = username
        return delivery

    async def confirm_password(self, code: str, new_password: str, identifier: Optional[str] = None) -> None:
        """Finish a password reset.

        Raises:
            InvalidCodeError: If the verification code is wrong or expired
        """
        username = self._resolve_identifier(identifier)
        await self.provider.confirm_forgot_password(username, code, new_password)
        logger.info(f"Password reset confirmed: identifier={username}")

    async def change_password(self, old_password: str, new_password: str) -> None:
        """Change the password of the signed-in user.

        Raises:
            UnauthenticatedError: If there is no session
            InvalidCredentialsError: If the old password is wrong
        """
        session = await self._active_session()
        await self.provider.change_password(session.access_token, old_password, new_password)
        logger.info(f"Password changed: username={session.username}")

    async def change_temporary_password(
        self,
        identifier: str,
        temporary_password: str,
        new_password: str,
    ) -> Optional[ProviderUser]:
        """Replace an administrator-issued temporary password.

        Does not establish a session.

        Returns:
            The provider's user data, or None when the new password was accepted
            but a further challenge stands between it and the tokens

        Raises:
            InvalidCredentialsError: If the temporary password is rejected
            InvalidStateError: If another challenge blocks the password change
        """
        outcome = await self.provider.initiate_password_auth(identifier, temporary_password)

        if isinstance(outcome, Rejected):
            raise InvalidCredentialsError(outcome.reason, provider_code=outcome.provider_code)

        if (
            isinstance(outcome, ChallengeRequired)
            and outcome.challenge_name == ChallengeName.NEW_PASSWORD_REQUIRED.value
        ):
            outcome = await self.provider.respond_new_password(identifier, outcome.session, new_password)
            if not isinstance(outcome, AuthSuccess):
                logger.info(f"Temporary password replaced, further challenge pending: identifier={identifier}")
                return None
        elif isinstance(outcome, AuthSuccess):
            await self.provider.change_password(outcome.tokens.access_token, temporary_password, new_password)
        else:
            name = outcome.challenge_name.value if isinstance(outcome, MfaChallenge) else outcome.challenge_name
            raise InvalidStateError(f"Challenge {name} must be answered before the password can be changed")

        logger.info(f"Temporary password replaced: identifier={identifier}")
        return await self.provider.get_user(outcome.tokens.access_token)

    # --------------------------------------------------------
    # MFA status
    # --------------------------------------------------------

    async def fetch_mfa_status(self) -> bool:
        """Check whether the signed-in user has a preferred MFA factor."""
        session = await self._active_session()
        user = await self._validated_user(session.access_token)
        return bool(user.preferred_mfa)
