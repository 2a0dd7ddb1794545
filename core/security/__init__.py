"""Security module - actor identity and roles."""

from core.security.identity import (
    Actor,
    IdentityProvider,
    StaticIdentityProvider,
    SYSTEM_ACTOR,
    UserRole,
)

__all__ = [
    "Actor",
    "IdentityProvider",
    "StaticIdentityProvider",
    "SYSTEM_ACTOR",
    "UserRole",
]
