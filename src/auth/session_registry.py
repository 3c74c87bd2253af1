"""
Per-caller SessionManager registry.

The HTTP layer identifies each caller by an opaque session id carried in a
cookie. Every id maps to its own SessionManager whose record is persisted
under its own storage key (``<key>:<session id>``), so one caller's session,
profile and pending MFA challenge are never visible to another.

Usage:
    from auth.session_registry import SessionRegistry

    registry = SessionRegistry.from_env()

    session_id, manager = registry.create()
    await manager.establish("user@example.com", "secret")

    manager = await registry.resolve(session_id)
"""

import uuid
import logging
import dataclasses
from typing import Optional, Dict, Callable, Tuple

from auth.identity_provider import CognitoIdentityProvider, CognitoConfig
from auth.profile_service import ProfileServiceClient, ProfileServiceConfig
from auth.session_manager import SessionManager
from auth.storage import StorageConfig, create_session_store


logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps session ids onto SessionManager instances.

    The provider adapter and the profile service client are shared; each
    manager gets its own store.
    """

    def __init__(
        self,
        provider: CognitoIdentityProvider,
        profile_service: ProfileServiceClient,
        storage_config: StorageConfig,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.provider = provider
        self.profile_service = profile_service
        self.storage_config = storage_config
        self._clock = clock
        self._managers: Dict[str, SessionManager] = {}

    @classmethod
    def from_env(cls) -> "SessionRegistry":
        """Create a registry with every collaborator configured from the environment."""
        return cls(
            provider=CognitoIdentityProvider(CognitoConfig.from_env()),
            profile_service=ProfileServiceClient(ProfileServiceConfig.from_env()),
            storage_config=StorageConfig.from_env(),
        )

    def _build(self, session_id: str) -> SessionManager:
        config = dataclasses.replace(
            self.storage_config,
            key=f"{self.storage_config.key}:{session_id}",
        )
        return SessionManager(
            provider=self.provider,
            profile_service=self.profile_service,
            store=create_session_store(config),
            clock=self._clock,
        )

    def create(self) -> Tuple[str, SessionManager]:
        """Allocate a new session id and its manager."""
        session_id = str(uuid.uuid4())
        manager = self._build(session_id)
        self._managers[session_id] = manager
        logger.debug(f"Session manager created: session_id={session_id}")
        return session_id, manager

    async def resolve(self, session_id: Optional[str]) -> Optional[SessionManager]:
        """Return the manager for ``session_id``.

        A manager not held in memory is restored only when a record exists
        under its storage key, so unknown ids resolve to None.
        """
        if not session_id:
            return None
        manager = self._managers.get(session_id)
        if manager is not None:
            return manager

        manager = self._build(session_id)
        if await manager.store.load() is None:
            return None
        self._managers[session_id] = manager
        logger.info(f"Session manager restored from storage: session_id={session_id}")
        return manager

    def discard(self, session_id: str) -> None:
        """Forget the manager for ``session_id``."""
        self._managers.pop(session_id, None)

    async def aclose(self) -> None:
        """Release the shared profile service connection pool."""
        await self.profile_service.aclose()
