"""
Token resolution: map vendor-facing tokens back to real entity ids.

Checks run in a fixed order (format, checksum, existence, status, expiry,
type) so the error a caller sees is deterministic. Every successful
resolution bumps the token's usage counter and ``last_used_at``.
"""

from typing import Callable, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ..config import TokenConfig, get_config
from ..context.operation_context import operation
from ..db.db_token_models import GuardianToken
from ..enums import TokenStatus, TokenType
from ..exceptions import (
    BaseError,
    InvalidTokenFormatError,
    TokenExpiredError,
    TokenInactiveError,
    TokenNotFoundError,
    TokenTypeMismatchError,
)
from ..repositories.token_repository import TokenRepository
from ..schemas.token_schemas import TokenRead, TokenValidationResult
from ..utils.token_codec import TokenCodec
from .base_service import Clock, SessionManagedService

AuditSink = Callable[[GuardianToken, str], None]


class TokenResolutionService(SessionManagedService):
    """Resolves token values to entities and records usage."""

    def __init__(
        self,
        session: Optional[Session] = None,
        config: Optional[TokenConfig] = None,
        codec: Optional[TokenCodec] = None,
        audit_sink: Optional[AuditSink] = None,
        logger=None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(session=session, logger=logger, clock=clock)
        self.config = config or get_config().token
        self.codec = codec or TokenCodec(self.config)
        self.repository = TokenRepository(self.session, self.logger)
        self.audit_sink = audit_sink

    def validate_token(self, token_value: Optional[str]) -> TokenValidationResult:
        """
        Check a token without raising and without recording usage.

        Returns:
            A successful result carrying the token, or a failure with a reason
        """
        if not token_value or not token_value.strip():
            return TokenValidationResult.failure(token_value, "Token value is required")

        try:
            token = self._check(token_value)
        except BaseError as e:
            return TokenValidationResult.failure(token_value, e.message)

        return TokenValidationResult.success(TokenRead.model_validate(token))

    @operation()
    def resolve_token(
        self, token_value: str, expected_type: Optional[TokenType] = None
    ) -> GuardianToken:
        """
        Resolve a token value to its row, recording one use.

        Raises:
            InvalidTokenFormatError: Malformed value or checksum mismatch
            UnknownTokenTypeError: Unknown prefix
            TokenNotFoundError: No such token
            TokenInactiveError: Token is REVOKED, ROTATED or EXPIRED
            TokenExpiredError: Token is ACTIVE but past its expiry
            TokenTypeMismatchError: Token is not of the expected type
        """
        token = self._check(token_value, expected_type)

        with self.transaction():
            self.repository.record_usage(token, self.now())

        if self.audit_sink is not None:
            self.audit_sink(token, token_value)

        self.logger.debug(
            "Resolved token",
            extra={"token_value": token_value, "entity_id": token.entity_id},
        )
        return token

    def resolve_to_entity_id(
        self, token_value: str, expected_type: Optional[TokenType] = None
    ) -> int:
        """Resolve a token value to the real entity id; see resolve_token for errors."""
        return self.resolve_token(token_value, expected_type).entity_id

    def find_token_for_entity(
        self, token_type: TokenType, entity_id: int, vendor_scope: Optional[str] = None
    ) -> Optional[GuardianToken]:
        """The ACTIVE token for an entity, without creating one or recording usage."""
        return self.repository.find_active_for_entity(
            token_type.entity_type, entity_id, vendor_scope or None
        )

    @operation()
    def resolve_tokens_bulk(self, token_values: Iterable[str]) -> Dict[str, int]:
        """
        Resolve many tokens; values that fail any check are left out.

        A value repeated in the input is resolved, and counted, once.
        """
        resolved: Dict[str, int] = {}
        failed = 0
        for token_value in token_values:
            if token_value in resolved:
                continue
            try:
                resolved[token_value] = self.resolve_to_entity_id(token_value)
            except BaseError:
                failed += 1

        self.logger.info(
            "Bulk resolution complete",
            extra={"resolved": len(resolved), "failed": failed},
        )
        return resolved

    def _check(
        self, token_value: str, expected_type: Optional[TokenType] = None
    ) -> GuardianToken:
        parsed = self.codec.parse(token_value)
        if not self.codec.is_valid_checksum(token_value):
            raise InvalidTokenFormatError("Invalid token checksum", token_value=token_value)

        token = self.repository.find_by_value(token_value)
        if token is None:
            raise TokenNotFoundError(token_value=token_value)

        if token.status != TokenStatus.ACTIVE:
            raise TokenInactiveError(
                f"Token is {token.status.value.lower()}",
                token_value=token_value,
                status=token.status.value,
            )

        if token.is_expired(self.now()):
            raise TokenExpiredError(token_value=token_value)

        if expected_type is not None and parsed.token_type != expected_type:
            raise TokenTypeMismatchError(
                f"Expected {expected_type.value} token, got {parsed.token_type.value}",
                token_value=token_value,
                expected_type=expected_type.value,
                actual_type=parsed.token_type.value,
            )

        return token
