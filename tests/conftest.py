"""
Shared pytest fixtures for the Cognito session service tests.

Provides a CognitoIdentityProvider backed by a mocked boto3 client, a mock
profile service, a file store in a temporary directory, a SessionManager
wired to all three, and a SessionRegistry sharing the same collaborators.
"""
import os
import sys
import pytest
from unittest.mock import MagicMock

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))


@pytest.fixture
def mock_aws_env(monkeypatch):
    """Set up mock AWS environment variables."""
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")


@pytest.fixture
def cognito_client():
    """Mocked boto3 cognito-idp client."""
    return MagicMock()


@pytest.fixture
def provider(cognito_client):
    """CognitoIdentityProvider using the mocked client."""
    from auth.identity_provider import CognitoIdentityProvider, CognitoConfig

    provider = CognitoIdentityProvider(config=CognitoConfig(
        client_id="test-client",
        client_secret=None,
        user_pool_id="us-east-1_test",
        region="us-east-1",
    ))
    provider._client = cognito_client
    return provider


@pytest.fixture
def profile_backend():
    """Mock profile service returning the default customer payload."""
    from tests.fixtures.mock_cognito import MockProfileService
    return MockProfileService()


@pytest.fixture
def profile_service(profile_backend):
    from auth.profile_service import ProfileServiceClient, ProfileServiceConfig

    return ProfileServiceClient(
        config=ProfileServiceConfig(base_url="http://profile.test", path="/customer"),
        http_client=profile_backend.client(),
    )


@pytest.fixture
def store(tmp_path):
    """File store in a temporary directory."""
    from auth.storage import FileSessionStore
    return FileSessionStore(str(tmp_path / "state.json"))


@pytest.fixture
def session_manager(provider, profile_service, store):
    """SessionManager wired to the mocked collaborators with a fixed clock."""
    from auth.session_manager import SessionManager
    return SessionManager(
        provider=provider,
        profile_service=profile_service,
        store=store,
        clock=lambda: 1700000000.5,
    )


@pytest.fixture
def session_registry(provider, profile_service, tmp_path):
    """SessionRegistry keeping per-caller records in one temporary file."""
    from auth.session_registry import SessionRegistry
    from auth.storage import StorageConfig
    return SessionRegistry(
        provider=provider,
        profile_service=profile_service,
        storage_config=StorageConfig(
            backend="file",
            key="userData",
            path=str(tmp_path / "sessions.json"),
        ),
        clock=lambda: 1700000000.5,
    )
