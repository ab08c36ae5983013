"""
Token authority: the one entry point callers use for token operations.

The strategy is chosen once at start-up. ``LocalTokenAuthority`` serves every
operation from the local store. ``RemoteTokenAuthority`` asks the remote
tokenization authority first and, on any failure, answers from the local
authority instead; callers never see remote errors.
"""

import abc
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar

from sqlalchemy.orm import Session

from ..adapters.remote_authority_client import RemoteAuthorityClient
from ..config import AppConfig, get_config
from ..constants import AuthorityMode, DependencyStatus
from ..db.db_token_models import GuardianToken
from ..enums import TokenType
from ..exceptions import TokenNotFoundError
from ..schemas.token_schemas import TokenRead
from ..utils.logger import get_logger
from .token_lifecycle_service import TokenLifecycleService
from .token_resolution_service import TokenResolutionService

R = TypeVar("R")


class TokenAuthority(abc.ABC):
    """Token operations as seen by callers."""

    mode: AuthorityMode

    @abc.abstractmethod
    def generate_token(
        self,
        token_type: TokenType,
        entity_id: int,
        vendor_scope: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> TokenRead:
        pass

    @abc.abstractmethod
    def get_or_create_token(
        self,
        token_type: TokenType,
        entity_id: int,
        vendor_scope: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> TokenRead:
        pass

    @abc.abstractmethod
    def generate_tokens_bulk(
        self,
        token_type: TokenType,
        entity_ids: Iterable[int],
        vendor_scope: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[int, TokenRead]:
        pass

    @abc.abstractmethod
    def rotate_token(self, token_value: str, rotated_by: Optional[str] = None) -> TokenRead:
        pass

    @abc.abstractmethod
    def revoke_token(self, token_value: str, revoked_by: Optional[str] = None) -> TokenRead:
        pass

    @abc.abstractmethod
    def resolve_to_entity_id(
        self, token_value: str, expected_type: Optional[TokenType] = None
    ) -> int:
        pass

    @abc.abstractmethod
    def find_token_for_entity(
        self, token_type: TokenType, entity_id: int, vendor_scope: Optional[str] = None
    ) -> Optional[TokenRead]:
        pass

    @abc.abstractmethod
    def resolve_tokens_bulk(self, token_values: Iterable[str]) -> Dict[str, int]:
        pass

    @abc.abstractmethod
    def health(self) -> Dict[str, Any]:
        pass


def _to_read(token: GuardianToken) -> TokenRead:
    return TokenRead.model_validate(token)


class LocalTokenAuthority(TokenAuthority):
    """Serves every operation from the local token store."""

    mode = AuthorityMode.STANDALONE

    def __init__(
        self,
        lifecycle: TokenLifecycleService,
        resolution: TokenResolutionService,
    ):
        self.lifecycle = lifecycle
        self.resolution = resolution

    def generate_token(self, token_type, entity_id, vendor_scope=None, created_by=None):
        return _to_read(
            self.lifecycle.generate_token(token_type, entity_id, vendor_scope, created_by)
        )

    def get_or_create_token(self, token_type, entity_id, vendor_scope=None, created_by=None):
        return _to_read(
            self.lifecycle.get_or_create_token(token_type, entity_id, vendor_scope, created_by)
        )

    def generate_tokens_bulk(self, token_type, entity_ids, vendor_scope=None, created_by=None):
        tokens = self.lifecycle.generate_tokens_bulk(
            token_type, entity_ids, vendor_scope, created_by
        )
        return {entity_id: _to_read(token) for entity_id, token in tokens.items()}

    def rotate_token(self, token_value, rotated_by=None):
        return _to_read(self.lifecycle.rotate_token(self._require(token_value), rotated_by))

    def revoke_token(self, token_value, revoked_by=None):
        return _to_read(self.lifecycle.revoke_token(self._require(token_value), revoked_by))

    def resolve_to_entity_id(self, token_value, expected_type=None):
        return self.resolution.resolve_to_entity_id(token_value, expected_type)

    def find_token_for_entity(self, token_type, entity_id, vendor_scope=None):
        token = self.resolution.find_token_for_entity(token_type, entity_id, vendor_scope)
        return _to_read(token) if token is not None else None

    def resolve_tokens_bulk(self, token_values):
        return self.resolution.resolve_tokens_bulk(token_values)

    def health(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "remote_tokenization": "disabled",
            "available": True,
            "fallback": "local-tokens",
        }

    def _require(self, token_value: str) -> GuardianToken:
        token = self.lifecycle.find_token_by_value(token_value)
        if token is None:
            raise TokenNotFoundError(token_value=token_value)
        return token


class RemoteTokenAuthority(TokenAuthority):
    """
    Delegates to the remote authority with transparent local fallback.

    Each operation is attempted remotely exactly once; any exception is
    logged at warning level and the same operation is served locally.
    """

    mode = AuthorityMode.INTEGRATED

    def __init__(self, client: RemoteAuthorityClient, fallback: LocalTokenAuthority):
        self.client = client
        self.fallback = fallback
        self.logger = get_logger()

    def _delegate(
        self, operation_name: str, remote_call: Callable[[], R], local_call: Callable[[], R]
    ) -> R:
        try:
            return remote_call()
        except Exception as e:
            self.logger.warning(
                f"Remote {operation_name} failed, using local tokens",
                extra={"operation": operation_name, "error_type": type(e).__name__},
            )
        return local_call()

    def generate_token(self, token_type, entity_id, vendor_scope=None, created_by=None):
        return self._delegate(
            "generate_token",
            lambda: self.client.generate_token(token_type, entity_id, vendor_scope, created_by),
            lambda: self.fallback.generate_token(token_type, entity_id, vendor_scope, created_by),
        )

    def get_or_create_token(self, token_type, entity_id, vendor_scope=None, created_by=None):
        return self._delegate(
            "get_or_create_token",
            lambda: self.client.generate_token(
                token_type, entity_id, vendor_scope, created_by, create_if_missing=True
            ),
            lambda: self.fallback.get_or_create_token(
                token_type, entity_id, vendor_scope, created_by
            ),
        )

    def generate_tokens_bulk(self, token_type, entity_ids, vendor_scope=None, created_by=None):
        ids = list(entity_ids)
        return self._delegate(
            "generate_tokens_bulk",
            lambda: self.client.generate_tokens_bulk(token_type, ids, vendor_scope, created_by),
            lambda: self.fallback.generate_tokens_bulk(token_type, ids, vendor_scope, created_by),
        )

    def rotate_token(self, token_value, rotated_by=None):
        return self._delegate(
            "rotate_token",
            lambda: self.client.rotate_token(token_value, rotated_by),
            lambda: self.fallback.rotate_token(token_value, rotated_by),
        )

    def revoke_token(self, token_value, revoked_by=None):
        return self._delegate(
            "revoke_token",
            lambda: self.client.revoke_token(token_value, revoked_by),
            lambda: self.fallback.revoke_token(token_value, revoked_by),
        )

    def resolve_to_entity_id(self, token_value, expected_type=None):
        return self._delegate(
            "resolve_to_entity_id",
            lambda: self.client.resolve_to_entity_id(token_value, expected_type),
            lambda: self.fallback.resolve_to_entity_id(token_value, expected_type),
        )

    def find_token_for_entity(self, token_type, entity_id, vendor_scope=None):
        return self._delegate(
            "find_token_for_entity",
            lambda: self.client.find_token_for_entity(token_type, entity_id, vendor_scope),
            lambda: self.fallback.find_token_for_entity(token_type, entity_id, vendor_scope),
        )

    def resolve_tokens_bulk(self, token_values):
        values = list(token_values)
        return self._delegate(
            "resolve_tokens_bulk",
            lambda: self.client.resolve_tokens_bulk(values),
            lambda: self.fallback.resolve_tokens_bulk(values),
        )

    def health(self) -> Dict[str, Any]:
        """Report remote availability; informational only."""
        try:
            remote = self.client.health()
            available = remote.status == "UP"
        except Exception as e:
            self.logger.warning(
                "Remote authority health check failed",
                extra={"error_type": type(e).__name__},
            )
            available = False

        return {
            "mode": self.mode.value,
            "remote_tokenization": "connected" if available else "unreachable",
            "available": available,
            "status": (
                DependencyStatus.AVAILABLE.value if available else DependencyStatus.DEGRADED.value
            ),
            "fallback": "local-tokens",
        }


def create_token_authority(
    session: Session,
    config: Optional[AppConfig] = None,
    client: Optional[RemoteAuthorityClient] = None,
    **service_kwargs: Any,
) -> TokenAuthority:
    """
    Build the token authority for this process.

    Args:
        session: Session for the local services
        config: Application config; the global config by default
        client: Remote client to use when the remote authority is enabled
        **service_kwargs: Passed to both local services (e.g. clock, logger)

    Returns:
        RemoteTokenAuthority when the remote authority is enabled, else LocalTokenAuthority
    """
    config = config or get_config()
    lifecycle = TokenLifecycleService(session=session, config=config.token, **service_kwargs)
    resolution = TokenResolutionService(
        session=session, config=config.token, codec=lifecycle.codec, **service_kwargs
    )
    local = LocalTokenAuthority(lifecycle, resolution)

    if not config.remote.enabled:
        get_logger().info("Token authority running standalone")
        return local

    get_logger().info(
        "Token authority integrated with remote authority",
        extra={"base_url": config.remote.base_url},
    )
    return RemoteTokenAuthority(client or RemoteAuthorityClient(config.remote), fallback=local)
