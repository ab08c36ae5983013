"""Service layer: token lifecycle, resolution and the token authority."""

from .base_service import SessionManagedService
from .token_authority import (
    LocalTokenAuthority,
    RemoteTokenAuthority,
    TokenAuthority,
    create_token_authority,
)
from .token_lifecycle_service import TokenLifecycleService
from .token_resolution_service import TokenResolutionService

__all__ = [
    "SessionManagedService",
    "TokenLifecycleService",
    "TokenResolutionService",
    "TokenAuthority",
    "LocalTokenAuthority",
    "RemoteTokenAuthority",
    "create_token_authority",
]
