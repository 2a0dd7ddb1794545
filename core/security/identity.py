"""Actor identity resolution.

Authentication lives outside this system; callers present a user id (and,
for customers, an invite token) and an IdentityProvider resolves it to an
Actor carrying a role.

Providers:
- StaticIdentityProvider: fixed user -> role table, for development/testing
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from core.errors import Unauthorized


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    OPS = "OPS"
    CUSTOMER = "CUSTOMER"
    WAREHOUSE = "WAREHOUSE"
    SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class Actor:
    """The principal requesting an action."""
    user_id: str
    role: UserRole
    invite_token: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.role.value}:{self.user_id}"


SYSTEM_ACTOR = Actor(user_id="system", role=UserRole.SYSTEM)


class IdentityProvider(ABC):
    """Abstract base class for identity providers."""

    @abstractmethod
    def resolve(self, user_id: str, invite_token: Optional[str] = None) -> Actor:
        """Resolve a user id to an Actor.

        Raises:
            Unauthorized: If the user is unknown
        """
        pass


class StaticIdentityProvider(IdentityProvider):
    """Identity provider backed by an in-memory user -> role table."""

    def __init__(self, users: Optional[Dict[str, UserRole]] = None):
        self._users: Dict[str, UserRole] = dict(users or {})
        self._lock = threading.Lock()

    def register(self, user_id: str, role: UserRole) -> None:
        with self._lock:
            self._users[user_id] = UserRole(role)

    def resolve(self, user_id: str, invite_token: Optional[str] = None) -> Actor:
        if not user_id:
            raise Unauthorized("Missing user id")
        with self._lock:
            role = self._users.get(user_id)
        if role is None:
            raise Unauthorized(f"Unknown user: {user_id}", {"user_id": user_id})
        if role == UserRole.SYSTEM:
            raise Unauthorized("SYSTEM identity cannot be presented by a caller")
        return Actor(user_id=user_id, role=role, invite_token=invite_token)
