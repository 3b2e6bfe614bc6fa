from __future__ import annotations

from typing import Dict, Optional

from .entitlements import DEFAULT_CODE_PREFIX, EntitlementStore
from .models import EntitlementPolicy, UserSession
from .storage import KeyValueStorage, MemoryStorage, NamespacedStorage


class SessionStore:
    """Per-user chat sessions, each with its own isolated entitlement state."""

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        policy: Optional[EntitlementPolicy] = None,
        code_prefix: str = DEFAULT_CODE_PREFIX,
    ) -> None:
        self._storage: KeyValueStorage = storage if storage is not None else MemoryStorage()
        self._policy = policy or EntitlementPolicy()
        self._code_prefix = code_prefix
        self._sessions: Dict[int, UserSession] = {}
        self._entitlements: Dict[int, EntitlementStore] = {}

    def configure(
        self,
        storage: KeyValueStorage,
        policy: EntitlementPolicy,
        code_prefix: str = DEFAULT_CODE_PREFIX,
    ) -> None:
        self._storage = storage
        self._policy = policy
        self._code_prefix = code_prefix
        self._sessions.clear()
        self._entitlements.clear()

    def get(self, user_id: int) -> UserSession:
        if user_id not in self._sessions:
            self._sessions[user_id] = UserSession(user_id=user_id)
        return self._sessions[user_id]

    def entitlement(self, user_id: int) -> EntitlementStore:
        if user_id not in self._entitlements:
            self._entitlements[user_id] = EntitlementStore(
                NamespacedStorage(self._storage, f"user:{user_id}"),
                policy=self._policy,
                code_prefix=self._code_prefix,
            )
        return self._entitlements[user_id]

    def reset(self, user_id: int) -> UserSession:
        self._sessions[user_id] = UserSession(user_id=user_id)
        self.entitlement(user_id).reset_message_count()
        return self._sessions[user_id]


session_store = SessionStore()
