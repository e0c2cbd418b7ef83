"""Identity (authentication) services."""

from household_ledger.services.identity.interface import (
    AuthError,
    AuthErrorKind,
    IdentityProviderInterface,
    Session,
)
from household_ledger.services.identity.firebase_auth import FirebaseIdentityProvider

__all__ = [
    "AuthError",
    "AuthErrorKind",
    "FirebaseIdentityProvider",
    "IdentityProviderInterface",
    "Session",
]
