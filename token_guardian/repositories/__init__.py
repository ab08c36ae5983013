"""Repositories: data access over a caller-owned session."""

from .base_repository import BaseRepository
from .token_repository import TokenRepository

__all__ = ["BaseRepository", "TokenRepository"]
