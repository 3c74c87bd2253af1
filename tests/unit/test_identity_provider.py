"""
Unit tests for the Cognito identity provider adapter.

Tests cover:
- ClientError translation into the error taxonomy
- Challenge response parsing into tagged outcomes
- SECRET_HASH computation for app clients with a secret
- Token refresh, sign-out and MFA preference calls
"""
import hmac
import base64
import hashlib
import pytest
from botocore.exceptions import EndpointConnectionError

from tests.fixtures.mock_cognito import auth_result, challenge, client_error, user_response


class TestTranslateClientError:
    """Tests for translate_client_error."""

    @pytest.mark.parametrize("code,expected", [
        ("NotAuthorizedException", "InvalidCredentialsError"),
        ("UserNotFoundException", "InvalidCredentialsError"),
        ("UserNotConfirmedException", "InvalidCredentialsError"),
        ("CodeMismatchException", "InvalidCodeError"),
        ("ExpiredCodeException", "InvalidCodeError"),
        ("TooManyRequestsException", "ProviderUnavailableError"),
        ("InternalErrorException", "ProviderUnavailableError"),
        ("InvalidPasswordException", "ProviderRequestError"),
        ("UsernameExistsException", "ProviderRequestError"),
    ])
    def test_maps_codes(self, code, expected):
        from auth.identity_provider import translate_client_error

        error = translate_client_error(client_error(code, "Provider said no"))

        assert type(error).__name__ == expected
        assert error.provider_code == code
        assert error.message == "Provider said no"

    def test_missing_message_falls_back_to_code(self):
        from botocore.exceptions import ClientError
        from auth.identity_provider import translate_client_error

        error = translate_client_error(ClientError({"Error": {"Code": "LimitExceededException"}}, "SignUp"))

        assert error.message == "LimitExceededException"
        assert error.error_code == "PROVIDER_REQUEST_REJECTED"


class TestSecretHash:
    """Tests for SECRET_HASH handling."""

    @pytest.fixture
    def secret_provider(self, cognito_client):
        from auth.identity_provider import CognitoIdentityProvider, CognitoConfig

        provider = CognitoIdentityProvider(config=CognitoConfig(
            client_id="test-client",
            client_secret="client-secret",
            region="us-east-1",
        ))
        provider._client = cognito_client
        return provider

    def test_without_secret_returns_none(self, provider):
        assert provider.secret_hash("test@example.com") is None

    def test_matches_hmac_of_username_and_client(self, secret_provider):
        expected = base64.b64encode(hmac.new(
            b"client-secret",
            b"test@example.comtest-client",
            hashlib.sha256,
        ).digest()).decode("utf-8")

        assert secret_provider.secret_hash("test@example.com") == expected

    @pytest.mark.asyncio
    async def test_included_in_auth_parameters(self, secret_provider, cognito_client):
        cognito_client.initiate_auth.return_value = auth_result()

        await secret_provider.initiate_password_auth("test@example.com", "Secret123!")

        params = cognito_client.initiate_auth.call_args.kwargs["AuthParameters"]
        assert params["SECRET_HASH"] == secret_provider.secret_hash("test@example.com")

    @pytest.mark.asyncio
    async def test_included_in_sign_up(self, secret_provider, cognito_client):
        cognito_client.sign_up.return_value = {"UserSub": "sub-new"}

        await secret_provider.sign_up("jane@example.com", "Secret123!", {"email": "jane@example.com"})

        assert cognito_client.sign_up.call_args.kwargs["SecretHash"] == secret_provider.secret_hash("jane@example.com")


class TestInitiatePasswordAuth:
    """Tests for initiate_password_auth outcome parsing."""

    @pytest.mark.asyncio
    async def test_success_returns_tokens(self, provider, cognito_client):
        cognito_client.initiate_auth.return_value = auth_result(expires_in=900)

        outcome = await provider.initiate_password_auth("test@example.com", "Secret123!")

        assert outcome.kind == "success"
        assert outcome.tokens.access_token == "access-1"
        assert outcome.tokens.id_token == "id-1"
        assert outcome.tokens.refresh_token == "refresh-1"
        assert outcome.tokens.expires_in == 900

    @pytest.mark.asyncio
    async def test_software_token_challenge(self, provider, cognito_client):
        from auth.models import ChallengeName

        cognito_client.initiate_auth.return_value = challenge("SOFTWARE_TOKEN_MFA", session="s-1")

        outcome = await provider.initiate_password_auth("test@example.com", "Secret123!")

        assert outcome.kind == "mfa_required"
        assert outcome.challenge_name == ChallengeName.SOFTWARE_TOKEN_MFA
        assert outcome.session == "s-1"

    @pytest.mark.asyncio
    async def test_other_challenge(self, provider, cognito_client):
        cognito_client.initiate_auth.return_value = challenge("MFA_SETUP")

        outcome = await provider.initiate_password_auth("test@example.com", "Secret123!")

        assert outcome.kind == "challenge"
        assert outcome.challenge_name == "MFA_SETUP"

    @pytest.mark.asyncio
    async def test_refused_credentials_are_an_outcome(self, provider, cognito_client):
        cognito_client.initiate_auth.side_effect = client_error("NotAuthorizedException", "Incorrect password")

        outcome = await provider.initiate_password_auth("test@example.com", "wrong")

        assert outcome.kind == "rejected"
        assert outcome.reason == "Incorrect password"
        assert outcome.provider_code == "NotAuthorizedException"

    @pytest.mark.asyncio
    async def test_other_errors_raise(self, provider, cognito_client):
        from auth.exceptions import ProviderRequestError

        cognito_client.initiate_auth.side_effect = client_error("InvalidParameterException")

        with pytest.raises(ProviderRequestError):
            await provider.initiate_password_auth("test@example.com", "Secret123!")

    @pytest.mark.asyncio
    async def test_empty_response_raises(self, provider, cognito_client):
        from auth.exceptions import ProviderRequestError

        cognito_client.initiate_auth.return_value = {}

        with pytest.raises(ProviderRequestError):
            await provider.initiate_password_auth("test@example.com", "Secret123!")

    @pytest.mark.asyncio
    async def test_connection_failure_raises_unavailable(self, provider, cognito_client):
        from auth.exceptions import ProviderUnavailableError

        cognito_client.initiate_auth.side_effect = EndpointConnectionError(endpoint_url="https://cognito.test")

        with pytest.raises(ProviderUnavailableError):
            await provider.initiate_password_auth("test@example.com", "Secret123!")


class TestRespondToMfa:
    """Tests for respond_to_mfa."""

    @pytest.mark.asyncio
    async def test_wrong_code_raises(self, provider, cognito_client):
        from auth.exceptions import InvalidCodeError
        from auth.models import MfaChallenge, ChallengeName

        cognito_client.respond_to_auth_challenge.side_effect = client_error(
            "CodeMismatchException", operation="RespondToAuthChallenge"
        )
        pending = MfaChallenge(challenge_name=ChallengeName.SOFTWARE_TOKEN_MFA, session="s-1")

        with pytest.raises(InvalidCodeError):
            await provider.respond_to_mfa("test@example.com", pending, "000000")


class TestRefreshTokens:
    """Tests for refresh_tokens."""

    @pytest.mark.asyncio
    async def test_returns_new_tokens(self, provider, cognito_client):
        cognito_client.initiate_auth.return_value = auth_result(access_token="access-2", refresh_token=None)

        tokens = await provider.refresh_tokens("user-123", "refresh-1")

        assert tokens.access_token == "access-2"
        assert tokens.refresh_token is None
        kwargs = cognito_client.initiate_auth.call_args.kwargs
        assert kwargs["AuthFlow"] == "REFRESH_TOKEN_AUTH"

    @pytest.mark.asyncio
    async def test_revoked_token_raises_unauthenticated(self, provider, cognito_client):
        from auth.exceptions import UnauthenticatedError

        cognito_client.initiate_auth.side_effect = client_error("NotAuthorizedException")

        with pytest.raises(UnauthenticatedError):
            await provider.refresh_tokens("user-123", "refresh-1")


class TestUserOperations:
    """Tests for get_user, global_sign_out and MFA preference calls."""

    @pytest.mark.asyncio
    async def test_get_user_parses_attributes(self, provider, cognito_client):
        cognito_client.get_user.return_value = user_response(preferred_mfa="SOFTWARE_TOKEN_MFA")

        user = await provider.get_user("access-1")

        assert user.username == "user-123"
        assert user.attributes["custom:Company"] == "Acme"
        assert user.preferred_mfa == "SOFTWARE_TOKEN_MFA"
        assert user.mfa_settings == ["SOFTWARE_TOKEN_MFA"]

    @pytest.mark.asyncio
    async def test_get_user_with_revoked_token_raises(self, provider, cognito_client):
        from auth.exceptions import InvalidCredentialsError

        cognito_client.get_user.side_effect = client_error("NotAuthorizedException", operation="GetUser")

        with pytest.raises(InvalidCredentialsError):
            await provider.get_user("access-1")

    @pytest.mark.asyncio
    async def test_global_sign_out(self, provider, cognito_client):
        assert await provider.global_sign_out("access-1") is True
        cognito_client.global_sign_out.assert_called_once_with(AccessToken="access-1")

    @pytest.mark.asyncio
    async def test_global_sign_out_with_invalid_token(self, provider, cognito_client):
        cognito_client.global_sign_out.side_effect = client_error("NotAuthorizedException", operation="GlobalSignOut")

        assert await provider.global_sign_out("access-1") is False

    @pytest.mark.asyncio
    async def test_verify_software_token_status(self, provider, cognito_client):
        cognito_client.verify_software_token.return_value = {"Status": "SUCCESS"}

        status = await provider.verify_software_token("access-1", "123456", "Phone")

        assert status == "SUCCESS"
        cognito_client.verify_software_token.assert_called_once_with(
            AccessToken="access-1",
            UserCode="123456",
            FriendlyDeviceName="Phone",
        )

    @pytest.mark.asyncio
    async def test_set_mfa_preference_omits_unset_factors(self, provider, cognito_client):
        await provider.set_mfa_preference("access-1", software_token={"Enabled": False, "PreferredMfa": False})

        cognito_client.set_user_mfa_preference.assert_called_once_with(
            AccessToken="access-1",
            SoftwareTokenMfaSettings={"Enabled": False, "PreferredMfa": False},
        )

    @pytest.mark.asyncio
    async def test_sign_up_returns_summary(self, provider, cognito_client):
        cognito_client.sign_up.return_value = {
            "UserSub": "sub-new",
            "UserConfirmed": False,
            "CodeDeliveryDetails": {"DeliveryMedium": "EMAIL"},
        }

        result = await provider.sign_up("jane@example.com", "Secret123!", {"email": "jane@example.com"})

        assert result == {
            "user_sub": "sub-new",
            "confirmed": False,
            "delivery": {"DeliveryMedium": "EMAIL"},
        }
        assert "SecretHash" not in cognito_client.sign_up.call_args.kwargs
