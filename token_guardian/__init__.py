"""
Token guardian: vendor-facing tokens for school entities.

Students, teachers, courses, sections and assignments are exposed to LMS
vendors only as opaque ``PREFIX_HASH_CHECKSUM`` tokens. This package issues,
rotates, revokes, expires and resolves those tokens.
"""

from .config import AppConfig, get_config, reset_config, set_config
from .enums import TokenStatus, TokenType
from .services.token_authority import (
    LocalTokenAuthority,
    RemoteTokenAuthority,
    TokenAuthority,
    create_token_authority,
)
from .services.token_lifecycle_service import TokenLifecycleService
from .services.token_resolution_service import TokenResolutionService
from .utils.token_codec import TokenCodec

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "get_config",
    "set_config",
    "reset_config",
    "TokenType",
    "TokenStatus",
    "TokenCodec",
    "TokenLifecycleService",
    "TokenResolutionService",
    "TokenAuthority",
    "LocalTokenAuthority",
    "RemoteTokenAuthority",
    "create_token_authority",
]
