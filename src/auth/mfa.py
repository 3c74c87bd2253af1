"""
MFA enrollment for already-registered users.

Each operation is a self-contained request/response round trip that starts
with a fresh password authentication; nothing is kept between calls and the
SessionManager state is never touched.
"""

import os
import logging
from typing import Optional, Tuple

import pyotp

from auth.exceptions import InvalidCodeError, InvalidCredentialsError, InvalidStateError
from auth.identity_provider import CognitoIdentityProvider
from auth.models import (
    AuthOutcome,
    AuthSuccess,
    ChallengeName,
    ChallengeRequired,
    MfaChallenge,
    MfaProvisioning,
    Rejected,
)


logger = logging.getLogger(__name__)


ENABLED_PREFERRED = {"Enabled": True, "PreferredMfa": True}
NOT_PREFERRED = {"PreferredMfa": False}
DISABLED = {"Enabled": False, "PreferredMfa": False}


class MfaEnrollmentService:
    """Enables and disables software-token (or SMS) MFA for a user.

    Example:
        service = MfaEnrollmentService(provider, issuer_name="Example")

        provisioning = await service.begin("user@example.com", "secret")
        # user scans provisioning.provisioning_uri into an authenticator app
        await service.confirm("user@example.com", "secret", "123456", "My phone")
    """

    def __init__(self, provider: CognitoIdentityProvider, issuer_name: Optional[str] = None):
        self.provider = provider
        self.issuer_name = issuer_name or os.getenv("MFA_ISSUER_NAME", "Cognito")

    async def _authenticate(self, identifier: str, password: str) -> AuthOutcome:
        outcome = await self.provider.initiate_password_auth(identifier, password)
        if isinstance(outcome, Rejected):
            raise InvalidCredentialsError(outcome.reason, provider_code=outcome.provider_code)
        if (
            isinstance(outcome, ChallengeRequired)
            and outcome.challenge_name == ChallengeName.SELECT_MFA_TYPE.value
        ):
            outcome = await self.provider.select_mfa_type(identifier, outcome.session)
        return outcome

    @staticmethod
    def _require_tokens(outcome: AuthOutcome) -> AuthSuccess:
        if not isinstance(outcome, AuthSuccess):
            name = getattr(outcome, "challenge_name", outcome.kind)
            raise InvalidStateError(f"Cannot manage MFA while challenge {name} is pending")
        return outcome

    def provisioning_uri(self, identifier: str, secret_code: str) -> str:
        """Build the otpauth:// URI authenticator apps scan as a QR code."""
        return pyotp.TOTP(secret_code).provisioning_uri(name=identifier, issuer_name=self.issuer_name)

    async def begin(self, identifier: str, password: str) -> MfaProvisioning:
        """Authenticate and request a TOTP provisioning secret.

        Returns:
            MfaProvisioning with the secret and URI, or ``already_enabled``
            when the account already answers an MFA challenge

        Raises:
            InvalidCredentialsError: If the password is rejected
        """
        outcome = await self._authenticate(identifier, password)
        if isinstance(outcome, MfaChallenge):
            logger.info(f"MFA already enabled: identifier={identifier}")
            return MfaProvisioning(already_enabled=True)

        tokens = self._require_tokens(outcome).tokens
        secret_code = await self.provider.associate_software_token(tokens.access_token)
        logger.info(f"Software token associated: identifier={identifier}")
        return MfaProvisioning(
            secret_code=secret_code,
            provisioning_uri=self.provisioning_uri(identifier, secret_code),
        )

    async def confirm(
        self,
        identifier: str,
        password: str,
        code: str,
        device_name: str,
        sms: bool = False,
    ) -> bool:
        """Verify a TOTP code and make the chosen factor the preferred one.

        SMS and software-token preferences are mutually exclusive: the chosen
        factor becomes enabled and preferred, the other loses its preference.

        Returns:
            True once the preference is set; also True when the account
            already answers an MFA challenge

        Raises:
            InvalidCredentialsError: If the password is rejected
            InvalidCodeError: If the code does not match the provisioning secret
        """
        outcome = await self._authenticate(identifier, password)
        if isinstance(outcome, MfaChallenge):
            logger.info(f"MFA already enabled: identifier={identifier}")
            return True

        tokens = self._require_tokens(outcome).tokens
        status = await self.provider.verify_software_token(tokens.access_token, code, device_name)
        if status != "SUCCESS":
            raise InvalidCodeError("Software token verification failed")

        software_token, sms_settings = self._preferences(sms)
        await self.provider.set_mfa_preference(tokens.access_token, software_token=software_token, sms=sms_settings)
        logger.info(f"MFA enabled: identifier={identifier}, factor={'sms' if sms else 'totp'}")
        return True

    @staticmethod
    def _preferences(sms: bool) -> Tuple[dict, dict]:
        if sms:
            return dict(NOT_PREFERRED), dict(ENABLED_PREFERRED)
        return dict(ENABLED_PREFERRED), dict(NOT_PREFERRED)

    async def disable(self, identifier: str, password: str, code: str) -> bool:
        """Authenticate, satisfy an active MFA challenge, then clear the preference.

        Raises:
            InvalidCredentialsError: If the password is rejected
            InvalidCodeError: If the MFA code is wrong or expired
        """
        outcome = await self._authenticate(identifier, password)
        if isinstance(outcome, MfaChallenge):
            outcome = await self.provider.respond_to_mfa(identifier, outcome, code)
            if isinstance(outcome, Rejected):
                raise InvalidCredentialsError(outcome.reason, provider_code=outcome.provider_code)

        tokens = self._require_tokens(outcome).tokens
        await self.provider.set_mfa_preference(tokens.access_token, software_token=dict(DISABLED))
        logger.info(f"MFA disabled: identifier={identifier}")
        return True
