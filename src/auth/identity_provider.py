"""
Identity Provider Module for Amazon Cognito.

This module adapts the Cognito user pool API (boto3 ``cognito-idp``) to a
uniform asynchronous request/response contract. Each public coroutine performs
exactly one provider round trip and either returns a value or raises one of
the exceptions in ``auth.exceptions``; botocore errors never escape.

Challenge responses are returned as tagged outcomes (``AuthSuccess``,
``MfaChallenge``, ``ChallengeRequired``, ``Rejected``) so callers branch on
``outcome.kind`` instead of inspecting provider error strings.

Usage:
    from auth.identity_provider import CognitoIdentityProvider, CognitoConfig

    provider = CognitoIdentityProvider(config=CognitoConfig(client_id="abc123"))

    outcome = await provider.initiate_password_auth("user@example.com", "secret")
    if outcome.kind == "mfa_required":
        outcome = await provider.respond_to_mfa("user@example.com", outcome, "123456")
"""

import os
import hmac
import base64
import asyncio
import hashlib
import logging
import functools
from typing import Optional, Dict, Any
from dataclasses import dataclass, field

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from auth.exceptions import (
    AuthError,
    InvalidCodeError,
    InvalidCredentialsError,
    ProviderRequestError,
    ProviderUnavailableError,
    UnauthenticatedError,
)
from auth.models import (
    AuthOutcome,
    AuthSuccess,
    AuthTokens,
    ChallengeName,
    ChallengeRequired,
    MFA_CHALLENGES,
    MfaChallenge,
    ProviderUser,
    Rejected,
)


logger = logging.getLogger(__name__)


CREDENTIAL_ERROR_CODES = frozenset({
    "NotAuthorizedException",
    "UserNotFoundException",
    "UserNotConfirmedException",
    "PasswordResetRequiredException",
})

CODE_ERROR_CODES = frozenset({
    "CodeMismatchException",
    "ExpiredCodeException",
    "EnableSoftwareTokenMFAException",
})

UNAVAILABLE_ERROR_CODES = frozenset({
    "TooManyRequestsException",
    "InternalErrorException",
    "ServiceUnavailable",
    "ThrottlingException",
})


def translate_client_error(error: ClientError) -> AuthError:
    """Map a botocore ClientError onto the authentication error taxonomy.

    Args:
        error: The ClientError raised by boto3

    Returns:
        The matching AuthError subclass instance
    """
    details = error.response.get("Error", {})
    code = details.get("Code", "Unknown")
    message = details.get("Message") or code

    if code in CREDENTIAL_ERROR_CODES:
        return InvalidCredentialsError(message, provider_code=code)
    if code in CODE_ERROR_CODES:
        return InvalidCodeError(message, provider_code=code)
    if code in UNAVAILABLE_ERROR_CODES:
        return ProviderUnavailableError(message, provider_code=code)
    return ProviderRequestError(message, provider_code=code)


# ============================================================
# Configuration
# ============================================================

@dataclass
class CognitoConfig:
    """Configuration for the Cognito user pool client.

    Attributes:
        client_id: User pool app client ID
        client_secret: App client secret (only for clients created with one)
        user_pool_id: User pool ID, used for logging and issuer names
        region: AWS region of the user pool
        endpoint_url: Optional endpoint URL (for local emulators)
    """
    client_id: str = field(default_factory=lambda: os.getenv(
        "COGNITO_CLIENT_ID", ""
    ))
    client_secret: Optional[str] = field(default_factory=lambda: os.getenv(
        "COGNITO_CLIENT_SECRET"
    ))
    user_pool_id: Optional[str] = field(default_factory=lambda: os.getenv(
        "COGNITO_USER_POOL_ID"
    ))
    region: str = field(default_factory=lambda: os.getenv(
        "AWS_DEFAULT_REGION", "us-east-1"
    ))
    endpoint_url: Optional[str] = field(default_factory=lambda: os.getenv(
        "COGNITO_ENDPOINT_URL"
    ))

    @classmethod
    def from_env(cls) -> "CognitoConfig":
        """Create configuration from environment variables.

        Environment variables:
            COGNITO_CLIENT_ID: App client ID
            COGNITO_CLIENT_SECRET: Optional app client secret
            COGNITO_USER_POOL_ID: User pool ID
            AWS_DEFAULT_REGION: AWS region
            COGNITO_ENDPOINT_URL: Optional endpoint URL for local dev
        """
        return cls()


# ============================================================
# Identity Provider
# ============================================================

class CognitoIdentityProvider:
    """Asynchronous adapter around the Cognito user pool API.

    Blocking boto3 calls run in the default executor, so each coroutine is a
    single awaitable round trip. No call is retried.
    """

    def __init__(self, config: Optional[CognitoConfig] = None):
        """Initialize the identity provider.

        Args:
            config: Cognito configuration (uses defaults if not provided)
        """
        self.config = config or CognitoConfig.from_env()
        self._client = None

        logger.info(
            f"CognitoIdentityProvider initialized: pool={self.config.user_pool_id}, "
            f"region={self.config.region}"
        )

    @property
    def client(self):
        """Lazy initialization of the cognito-idp client."""
        if self._client is None:
            self._client = boto3.client(
                "cognito-idp",
                region_name=self.config.region,
                endpoint_url=self.config.endpoint_url
            )
        return self._client

    def secret_hash(self, username: str) -> Optional[str]:
        """Compute the SECRET_HASH parameter for app clients with a secret."""
        if not self.config.client_secret:
            return None
        digest = hmac.new(
            self.config.client_secret.encode("utf-8"),
            (username + self.config.client_id).encode("utf-8"),
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode("utf-8")

    def _with_secret_hash(self, username: str, params: Dict[str, str]) -> Dict[str, str]:
        secret_hash = self.secret_hash(username)
        if secret_hash:
            params["SECRET_HASH"] = secret_hash
        return params

    async def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        """Run one cognito-idp operation and translate its failures.

        Raises:
            AuthError: Translated provider error
        """
        method = getattr(self.client, operation)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(method, **kwargs))
        except ClientError as e:
            error = translate_client_error(e)
            logger.warning(
                f"Cognito {operation} failed: {error.provider_code}",
                extra={"operation": operation, "error_code": error.error_code}
            )
            raise error from e
        except BotoCoreError as e:
            logger.error(f"Cognito {operation} unreachable: {e}")
            raise ProviderUnavailableError(str(e)) from e

    @staticmethod
    def _parse_auth_response(response: Dict[str, Any]) -> AuthOutcome:
        result = response.get("AuthenticationResult")
        if result:
            return AuthSuccess(tokens=AuthTokens(
                access_token=result["AccessToken"],
                id_token=result["IdToken"],
                refresh_token=result.get("RefreshToken"),
                expires_in=int(result.get("ExpiresIn", 3600)),
                token_type=result.get("TokenType", "Bearer"),
            ))

        challenge = response.get("ChallengeName")
        session = response.get("Session") or ""
        parameters = response.get("ChallengeParameters") or {}
        if challenge in {c.value for c in MFA_CHALLENGES}:
            return MfaChallenge(
                challenge_name=ChallengeName(challenge),
                session=session,
                parameters=parameters,
            )
        if challenge:
            return ChallengeRequired(
                challenge_name=challenge,
                session=session,
                parameters=parameters,
            )
        raise ProviderRequestError("Provider returned neither tokens nor a challenge")

    # --------------------------------------------------------
    # Challenge/response authentication
    # --------------------------------------------------------

    async def initiate_password_auth(self, username: str, password: str) -> AuthOutcome:
        """Start a USER_PASSWORD_AUTH challenge.

        Returns:
            AuthSuccess, MfaChallenge, ChallengeRequired, or Rejected when the
            provider refuses the credentials

        Raises:
            ProviderUnavailableError: If the provider cannot be reached
            ProviderRequestError: For any other provider refusal
        """
        params = self._with_secret_hash(username, {
            "USERNAME": username,
            "PASSWORD": password,
        })
        try:
            response = await self._call(
                "initiate_auth",
                AuthFlow="USER_PASSWORD_AUTH",
                ClientId=self.config.client_id,
                AuthParameters=params,
            )
        except InvalidCredentialsError as e:
            return Rejected(reason=e.message, provider_code=e.provider_code)
        return self._parse_auth_response(response)

    async def respond_to_challenge(
        self,
        username: str,
        challenge_name: str,
        session: str,
        responses: Dict[str, str],
    ) -> AuthOutcome:
        """Answer a pending provider challenge.

        Raises:
            InvalidCodeError: If the supplied code is wrong or expired
            ProviderUnavailableError: If the provider cannot be reached
        """
        challenge_responses = self._with_secret_hash(username, {
            "USERNAME": username,
            **responses,
        })
        try:
            response = await self._call(
                "respond_to_auth_challenge",
                ClientId=self.config.client_id,
                ChallengeName=challenge_name,
                Session=session,
                ChallengeResponses=challenge_responses,
            )
        except InvalidCredentialsError as e:
            return Rejected(reason=e.message, provider_code=e.provider_code)
        return self._parse_auth_response(response)

    async def respond_to_mfa(self, username: str, challenge: MfaChallenge, code: str) -> AuthOutcome:
        """Answer a SOFTWARE_TOKEN_MFA or SMS_MFA challenge with a one-time code."""
        name = challenge.challenge_name.value
        return await self.respond_to_challenge(
            username, name, challenge.session, {f"{name}_CODE": code}
        )

    async def select_mfa_type(
        self,
        username: str,
        session: str,
        mfa_type: ChallengeName = ChallengeName.SOFTWARE_TOKEN_MFA,
    ) -> AuthOutcome:
        """Answer a SELECT_MFA_TYPE challenge."""
        return await self.respond_to_challenge(
            username, ChallengeName.SELECT_MFA_TYPE.value, session, {"ANSWER": mfa_type.value}
        )

    async def respond_new_password(self, username: str, session: str, new_password: str) -> AuthOutcome:
        """Answer a NEW_PASSWORD_REQUIRED challenge."""
        return await self.respond_to_challenge(
            username, ChallengeName.NEW_PASSWORD_REQUIRED.value, session, {"NEW_PASSWORD": new_password}
        )

    async def refresh_tokens(self, username: str, refresh_token: str) -> AuthTokens:
        """Exchange a refresh token for fresh access and ID tokens.

        Raises:
            UnauthenticatedError: If the refresh token is expired or revoked
        """
        params = self._with_secret_hash(username, {"REFRESH_TOKEN": refresh_token})
        try:
            response = await self._call(
                "initiate_auth",
                AuthFlow="REFRESH_TOKEN_AUTH",
                ClientId=self.config.client_id,
                AuthParameters=params,
            )
        except InvalidCredentialsError as e:
            raise UnauthenticatedError(e.message, provider_code=e.provider_code) from e

        outcome = self._parse_auth_response(response)
        if not isinstance(outcome, AuthSuccess):
            raise UnauthenticatedError("Refresh did not return tokens")
        return outcome.tokens

    # --------------------------------------------------------
    # Session attributes and sign-out
    # --------------------------------------------------------

    async def get_user(self, access_token: str) -> ProviderUser:
        """Fetch the attributes and MFA settings of the token's owner.

        Raises:
            InvalidCredentialsError: If the access token is expired or revoked
        """
        response = await self._call("get_user", AccessToken=access_token)
        attributes = {
            attr["Name"]: attr.get("Value", "")
            for attr in response.get("UserAttributes", [])
        }
        return ProviderUser(
            username=response["Username"],
            attributes=attributes,
            preferred_mfa=response.get("PreferredMfaSetting"),
            mfa_settings=response.get("UserMFASettingList", []),
        )

    async def global_sign_out(self, access_token: str) -> bool:
        """Invalidate every token issued to the session's owner.

        Returns:
            True if the provider signed the user out, False if the token was
            already invalid
        """
        try:
            await self._call("global_sign_out", AccessToken=access_token)
        except InvalidCredentialsError:
            logger.info("Global sign-out skipped: token already invalid")
            return False
        return True

    # --------------------------------------------------------
    # Registration
    # --------------------------------------------------------

    async def sign_up(self, username: str, password: str, attributes: Dict[str, str]) -> Dict[str, Any]:
        """Submit a new-account request.

        Returns:
            Dictionary with ``user_sub``, ``confirmed`` and ``delivery`` keys
        """
        kwargs = {
            "ClientId": self.config.client_id,
            "Username": username,
            "Password": password,
            "UserAttributes": [
                {"Name": name, "Value": value} for name, value in attributes.items()
            ],
        }
        secret_hash = self.secret_hash(username)
        if secret_hash:
            kwargs["SecretHash"] = secret_hash

        response = await self._call("sign_up", **kwargs)
        return {
            "user_sub": response.get("UserSub"),
            "confirmed": bool(response.get("UserConfirmed", False)),
            "delivery": response.get("CodeDeliveryDetails", {}),
        }

    async def confirm_sign_up(self, username: str, code: str) -> None:
        """Confirm a registration with the emailed code."""
        kwargs = {
            "ClientId": self.config.client_id,
            "Username": username,
            "ConfirmationCode": code,
            "ForceAliasCreation": True,
        }
        secret_hash = self.secret_hash(username)
        if secret_hash:
            kwargs["SecretHash"] = secret_hash
        await self._call("confirm_sign_up", **kwargs)

    async def resend_confirmation_code(self, username: str) -> Dict[str, Any]:
        kwargs = {"ClientId": self.config.client_id, "Username": username}
        secret_hash = self.secret_hash(username)
        if secret_hash:
            kwargs["SecretHash"] = secret_hash
        response = await self._call("resend_confirmation_code", **kwargs)
        return response.get("CodeDeliveryDetails", {})

    # --------------------------------------------------------
    # Password management
    # --------------------------------------------------------

    async def forgot_password(self, username: str) -> Dict[str, Any]:
        kwargs = {"ClientId": self.config.client_id, "Username": username}
        secret_hash = self.secret_hash(username)
        if secret_hash:
            kwargs["SecretHash"] = secret_hash
        response = await self._call("forgot_password", **kwargs)
        return response.get("CodeDeliveryDetails", {})

    async def confirm_forgot_password(self, username: str, code: str, new_password: str) -> None:
        kwargs = {
            "ClientId": self.config.client_id,
            "Username": username,
            "ConfirmationCode": code,
            "Password": new_password,
        }
        secret_hash = self.secret_hash(username)
        if secret_hash:
            kwargs["SecretHash"] = secret_hash
        await self._call("confirm_forgot_password", **kwargs)

    async def change_password(self, access_token: str, previous_password: str, proposed_password: str) -> None:
        await self._call(
            "change_password",
            AccessToken=access_token,
            PreviousPassword=previous_password,
            ProposedPassword=proposed_password,
        )

    # --------------------------------------------------------
    # MFA preference
    # --------------------------------------------------------

    async def associate_software_token(self, access_token: str) -> str:
        """Request a TOTP provisioning secret for the token's owner."""
        response = await self._call("associate_software_token", AccessToken=access_token)
        return response["SecretCode"]

    async def verify_software_token(self, access_token: str, code: str, device_name: str) -> str:
        """Verify a TOTP code against the associated secret.

        Returns:
            The provider status, ``SUCCESS`` or ``ERROR``
        """
        response = await self._call(
            "verify_software_token",
            AccessToken=access_token,
            UserCode=code,
            FriendlyDeviceName=device_name,
        )
        return response.get("Status", "ERROR")

    async def set_mfa_preference(
        self,
        access_token: str,
        software_token: Optional[Dict[str, bool]] = None,
        sms: Optional[Dict[str, bool]] = None,
    ) -> None:
        """Set the user's MFA preference. Omitted factors are left unchanged."""
        kwargs: Dict[str, Any] = {"AccessToken": access_token}
        if software_token is not None:
            kwargs["SoftwareTokenMfaSettings"] = software_token
        if sms is not None:
            kwargs["SMSMfaSettings"] = sms
        await self._call("set_user_mfa_preference", **kwargs)
