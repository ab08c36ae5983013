"""Adapters for external systems."""

from .remote_authority_client import RemoteAuthorityClient

__all__ = ["RemoteAuthorityClient"]
