"""
Unit tests for the profile service client.
"""
import httpx
import pytest

from tests.fixtures.mock_cognito import DEFAULT_CUSTOMER, MockProfileService


def make_client(handler):
    from auth.profile_service import ProfileServiceClient, ProfileServiceConfig

    return ProfileServiceClient(
        config=ProfileServiceConfig(base_url="http://profile.test", path="/customer"),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://profile.test"),
    )


class TestGetCustomer:
    """Tests for ProfileServiceClient.get_customer."""

    @pytest.mark.asyncio
    async def test_returns_customer_fields(self):
        backend = MockProfileService()
        client = make_client(backend.handler)

        customer = await client.get_customer("id-1")

        assert customer == DEFAULT_CUSTOMER
        request = backend.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/customer"
        assert request.headers["Authorization"] == "Bearer id-1"

    @pytest.mark.asyncio
    async def test_error_payload_raises(self):
        from auth.exceptions import ProfileLookupError

        client = make_client(MockProfileService(payload={"Error": "Token expired"}).handler)

        with pytest.raises(ProfileLookupError) as exc_info:
            await client.get_customer("id-1")

        assert exc_info.value.message == "Token expired"
        assert exc_info.value.error_code == "PROFILE_LOOKUP_FAILED"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        from auth.exceptions import ProfileLookupError

        client = make_client(MockProfileService(payload={"message": "boom"}, status_code=500).handler)

        with pytest.raises(ProfileLookupError, match="HTTP 500"):
            await client.get_customer("id-1")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        from auth.exceptions import ProfileLookupError

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(ProfileLookupError, match="unreachable"):
            await client.get_customer("id-1")

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        from auth.exceptions import ProfileLookupError

        client = make_client(lambda request: httpx.Response(200, text="<html>not json</html>"))

        with pytest.raises(ProfileLookupError, match="invalid JSON"):
            await client.get_customer("id-1")

    @pytest.mark.asyncio
    async def test_non_object_payload_raises(self):
        from auth.exceptions import ProfileLookupError

        client = make_client(lambda request: httpx.Response(200, json=["not", "an", "object"]))

        with pytest.raises(ProfileLookupError):
            await client.get_customer("id-1")

    @pytest.mark.asyncio
    async def test_aclose_closes_http_client(self):
        client = make_client(MockProfileService().handler)

        await client.aclose()

        assert client._http_client.is_closed


class TestProfileServiceConfig:
    """Tests for ProfileServiceConfig."""

    def test_from_env(self, monkeypatch):
        from auth.profile_service import ProfileServiceConfig

        monkeypatch.setenv("PROFILE_SERVICE_URL", "https://api.example.com")
        monkeypatch.setenv("PROFILE_SERVICE_TIMEOUT", "5")
        monkeypatch.delenv("PROFILE_SERVICE_PATH", raising=False)

        config = ProfileServiceConfig.from_env()

        assert config.base_url == "https://api.example.com"
        assert config.path == "/customer"
        assert config.timeout_seconds == 5.0
