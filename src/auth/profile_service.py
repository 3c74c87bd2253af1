"""
Profile Service Client.

Reads the business profile (profile image, image expiry, account-expired flag
and any other customer fields) of the authenticated user from the external
profile service. The service answers either with the profile or with an error
payload ``{"Error": "..."}``; both an error payload and any transport failure
surface as ``ProfileLookupError``.

Usage:
    from auth.profile_service import ProfileServiceClient, ProfileServiceConfig

    client = ProfileServiceClient(ProfileServiceConfig(base_url="https://api.example.com"))
    customer = await client.get_customer(id_token)
    await client.aclose()
"""

import os
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass, field

import httpx

from auth.exceptions import ProfileLookupError


logger = logging.getLogger(__name__)


@dataclass
class ProfileServiceConfig:
    """Configuration for the profile service client.

    Attributes:
        base_url: Base URL of the profile service
        path: Path of the customer lookup endpoint
        timeout_seconds: Request timeout in seconds
    """
    base_url: str = field(default_factory=lambda: os.getenv(
        "PROFILE_SERVICE_URL", "http://localhost:8080"
    ))
    path: str = field(default_factory=lambda: os.getenv(
        "PROFILE_SERVICE_PATH", "/customer"
    ))
    timeout_seconds: float = field(default_factory=lambda: float(os.getenv(
        "PROFILE_SERVICE_TIMEOUT", "30"
    )))

    @classmethod
    def from_env(cls) -> "ProfileServiceConfig":
        """Create configuration from environment variables.

        Environment variables:
            PROFILE_SERVICE_URL: Base URL of the profile service
            PROFILE_SERVICE_PATH: Customer lookup path (default: /customer)
            PROFILE_SERVICE_TIMEOUT: Request timeout in seconds (default: 30)
        """
        return cls()


class ProfileServiceClient:
    """HTTP client for the business profile service."""

    def __init__(
        self,
        config: Optional[ProfileServiceConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or ProfileServiceConfig.from_env()
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client for connection reuse."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
            )
        return self._http_client

    async def get_customer(self, token: str) -> Dict[str, Any]:
        """Fetch the customer profile for the bearer of ``token``.

        Args:
            token: Bearer token of the current session

        Returns:
            The customer fields as returned by the service

        Raises:
            ProfileLookupError: On error payloads, HTTP errors or transport failures
        """
        client = await self._get_http_client()
        try:
            response = await client.get(
                self.config.path,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Profile lookup failed: HTTP {e.response.status_code}")
            raise ProfileLookupError(
                f"Profile service returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Profile lookup failed: {e}")
            raise ProfileLookupError(f"Profile service unreachable: {e}") from e
        except ValueError as e:
            raise ProfileLookupError("Profile service returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise ProfileLookupError("Profile service returned an unexpected payload")
        if "Error" in payload:
            logger.warning(f"Profile lookup returned error payload: {payload['Error']}")
            raise ProfileLookupError(str(payload["Error"]))

        logger.debug("Customer profile retrieved")
        return payload

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
