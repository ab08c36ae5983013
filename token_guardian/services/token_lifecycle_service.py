"""
Token lifecycle: generation, rotation, revocation and housekeeping.

Generation is get-or-create per (entity type, entity id, vendor scope). The
store's partial unique index guarantees at most one ACTIVE row per key; a
writer that loses a race rolls back and returns the winner's row.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..config import TokenConfig, get_config
from ..context.operation_context import operation
from ..db.db_token_models import GuardianToken
from ..enums import TokenStatus, TokenType
from ..exceptions import (
    BaseError,
    DuplicateTokenError,
    InvalidTokenStateError,
    RepositoryError,
    TokenGenerationExhaustedError,
)
from ..repositories.token_repository import TokenRepository
from ..schemas.token_schemas import TokenUsageStatistics
from ..utils.token_codec import TokenCodec, current_school_year, generate_salt
from .base_service import Clock, SessionManagedService


class TokenLifecycleService(SessionManagedService):
    """Issues tokens and moves them through ACTIVE -> ROTATED / REVOKED / EXPIRED."""

    def __init__(
        self,
        session: Optional[Session] = None,
        config: Optional[TokenConfig] = None,
        codec: Optional[TokenCodec] = None,
        logger=None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(session=session, logger=logger, clock=clock)
        self.config = config or get_config().token
        self.codec = codec or TokenCodec(self.config)
        self.repository = TokenRepository(self.session, self.logger)

    # ==================== GENERATION ====================

    @operation()
    def generate_token(
        self,
        token_type: TokenType,
        entity_id: int,
        vendor_scope: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> GuardianToken:
        """
        Return the ACTIVE token for the entity, creating one if there is none.

        Args:
            token_type: Kind of entity
            entity_id: Real entity id
            vendor_scope: Vendor the token is restricted to; None for all vendors
            created_by: Recorded on a newly created row

        Raises:
            TokenGenerationExhaustedError: No unique value found within the attempt bound
        """
        vendor_scope = vendor_scope or None
        existing = self.repository.find_active_for_entity(
            token_type.entity_type, entity_id, vendor_scope
        )
        if existing is not None:
            if not existing.is_expired(self.now()):
                return existing
            self._expire_stale(existing)

        return self._create_token(token_type, entity_id, vendor_scope, created_by)

    def get_or_create_token(
        self,
        token_type: TokenType,
        entity_id: int,
        vendor_scope: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> GuardianToken:
        """Alias of generate_token; existing ACTIVE tokens are returned unchanged."""
        return self.generate_token(token_type, entity_id, vendor_scope, created_by)

    @operation()
    def generate_tokens_bulk(
        self,
        token_type: TokenType,
        entity_ids: Iterable[int],
        vendor_scope: Optional[str] = None,
        created_by: Optional[str] = None,
        skip_failures: bool = False,
    ) -> Dict[int, GuardianToken]:
        """
        Get or create tokens for many entities, committing each one independently.

        By default the first failure propagates and tokens created before it stay
        committed. With ``skip_failures`` failing ids are logged and left out of
        the result. Generation exhaustion always propagates.
        """
        results: Dict[int, GuardianToken] = {}
        for entity_id in entity_ids:
            if entity_id in results:
                continue
            try:
                results[entity_id] = self.get_or_create_token(
                    token_type, entity_id, vendor_scope, created_by
                )
            except TokenGenerationExhaustedError:
                raise
            except BaseError as e:
                if not skip_failures:
                    raise
                self.logger.warning(
                    "Skipping entity in bulk token generation",
                    extra={
                        "token_type": token_type.value,
                        "entity_id": entity_id,
                        "error_code": e.error_code.value,
                    },
                )

        self.logger.info(
            "Bulk token generation complete",
            extra={
                "token_type": token_type.value,
                "vendor_scope": vendor_scope,
                "tokens": len(results),
            },
        )
        return results

    def _create_token(
        self,
        token_type: TokenType,
        entity_id: int,
        vendor_scope: Optional[str],
        created_by: Optional[str],
    ) -> GuardianToken:
        for attempt in range(1, self.config.max_generation_attempts + 1):
            token_value = self.codec.generate(token_type)
            if self.repository.exists_by_value(token_value):
                continue

            token = self._build_token(token_type, entity_id, vendor_scope, token_value, created_by)
            try:
                self.repository.insert(token)
                self.session.commit()
            except DuplicateTokenError:
                self.session.rollback()
                winner = self.repository.find_active_for_entity(
                    token_type.entity_type, entity_id, vendor_scope
                )
                if winner is not None:
                    self.logger.debug(
                        "Concurrent generation won by another writer",
                        extra={"token_value": winner.token_value, "attempt": attempt},
                    )
                    return winner
                continue
            except RepositoryError:
                self.session.rollback()
                raise

            self.logger.info(
                "Generated token",
                extra={
                    "token_value": token.token_value,
                    "token_type": token_type.value,
                    "vendor_scope": vendor_scope,
                    "attempts": attempt,
                },
            )
            self.logger.debug(
                "Token issued for entity",
                extra={"token_value": token.token_value, "entity_id": entity_id},
            )
            return token

        raise TokenGenerationExhaustedError(
            f"Could not generate a unique {token_type.value} token after "
            f"{self.config.max_generation_attempts} attempts",
            token_type=token_type.value,
            max_attempts=self.config.max_generation_attempts,
        )

    def _build_token(
        self,
        token_type: TokenType,
        entity_id: int,
        vendor_scope: Optional[str],
        token_value: str,
        created_by: Optional[str],
        rotation_count: int = 0,
    ) -> GuardianToken:
        now = self.now()
        return GuardianToken(
            token_value=token_value,
            token_type=token_type,
            entity_id=entity_id,
            entity_type=token_type.entity_type,
            vendor_scope=vendor_scope,
            school_year=current_school_year(now, self.config.rotation_month),
            salt=generate_salt(),
            checksum=self.codec.parse(token_value).checksum,
            status=TokenStatus.ACTIVE,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=self.config.expiration_days),
            rotation_count=rotation_count,
            usage_count=0,
            created_by=created_by,
        )

    def _expire_stale(self, token: GuardianToken) -> None:
        # ACTIVE past expiry, not yet swept; free the key for a new token
        with self.transaction():
            token.status = TokenStatus.EXPIRED
            self.repository.save(token, self.now())
        self.logger.info("Expired stale token", extra={"token_value": token.token_value})

    # ==================== ROTATION / REVOCATION ====================

    @operation()
    def rotate_token(
        self, old_token: GuardianToken, rotated_by: Optional[str] = None
    ) -> GuardianToken:
        """
        Replace an ACTIVE token with a fresh value for the same entity and scope.

        The old row becomes ROTATED and points at the new row; both writes commit
        together.

        Raises:
            InvalidTokenStateError: If the token is not ACTIVE or already expired
            TokenGenerationExhaustedError: No unique value found within the attempt bound
        """
        self._require_active(old_token, "rotate")

        for attempt in range(1, self.config.max_generation_attempts + 1):
            token_value = self.codec.generate(old_token.token_type)
            if self.repository.exists_by_value(token_value):
                continue

            now = self.now()
            new_token = self._build_token(
                old_token.token_type,
                old_token.entity_id,
                old_token.vendor_scope,
                token_value,
                rotated_by or old_token.created_by,
                rotation_count=(old_token.rotation_count or 0) + 1,
            )
            try:
                # Old row leaves ACTIVE first so the new row can take the key
                old_token.status = TokenStatus.ROTATED
                self.repository.save(old_token, now)
                self.repository.insert(new_token)
                old_token.mark_rotated(new_token.id, now)
                self.repository.save(old_token)
                self.session.commit()
            except DuplicateTokenError:
                self.session.rollback()
                self._require_active(old_token, "rotate")
                continue
            except RepositoryError:
                self.session.rollback()
                raise

            self.logger.info(
                "Rotated token",
                extra={
                    "old_token": old_token.token_value,
                    "new_token": new_token.token_value,
                    "rotation_count": new_token.rotation_count,
                    "rotated_by": rotated_by,
                    "attempts": attempt,
                },
            )
            return new_token

        raise TokenGenerationExhaustedError(
            f"Could not generate a unique rotation token after "
            f"{self.config.max_generation_attempts} attempts",
            token_value=old_token.token_value,
            max_attempts=self.config.max_generation_attempts,
        )

    @operation()
    def revoke_token(self, token: GuardianToken, revoked_by: Optional[str] = None) -> GuardianToken:
        """
        Revoke an ACTIVE token; it can never be resolved again.

        Raises:
            InvalidTokenStateError: If the token is not ACTIVE
        """
        if token.status != TokenStatus.ACTIVE:
            raise InvalidTokenStateError(
                f"Cannot revoke token in status {token.status.value}",
                token_value=token.token_value,
                status=token.status.value,
            )

        with self.transaction():
            token.revoke(self.now())
            self.repository.save(token)

        self.logger.info(
            "Revoked token", extra={"token_value": token.token_value, "revoked_by": revoked_by}
        )
        return token

    def _require_active(self, token: GuardianToken, action: str) -> None:
        if token.status != TokenStatus.ACTIVE:
            raise InvalidTokenStateError(
                f"Cannot {action} token in status {token.status.value}",
                token_value=token.token_value,
                status=token.status.value,
            )
        if token.is_expired(self.now()):
            raise InvalidTokenStateError(
                f"Cannot {action} an expired token",
                token_value=token.token_value,
                status=TokenStatus.EXPIRED.value,
            )

    # ==================== HOUSEKEEPING ====================

    @operation()
    def expire_old_tokens(self) -> int:
        """Mark every ACTIVE token past its expiry as EXPIRED."""
        with self.transaction():
            count = self.repository.expire_old_tokens(self.now())
        self.logger.info("Expired old tokens", extra={"expired": count})
        return count

    @operation()
    def cleanup_old_tokens(self, retention_days: Optional[int] = None) -> int:
        """Delete ROTATED/REVOKED tokens untouched for longer than the retention period."""
        if retention_days is None:
            retention_days = self.config.cleanup_retention_days
        cutoff = self.now() - timedelta(days=retention_days)

        with self.transaction():
            count = self.repository.cleanup_old_tokens(cutoff)
        self.logger.info(
            "Cleaned up old tokens",
            extra={"deleted": count, "retention_days": retention_days},
        )
        return count

    @operation()
    def rotate_expiring_tokens(
        self, warning_days: Optional[int] = None, rotated_by: Optional[str] = "system"
    ) -> List[GuardianToken]:
        """
        Rotate every ACTIVE token that expires within the warning window.

        Tokens that changed state in the meantime are skipped.

        Returns:
            The newly created tokens
        """
        rotated = []
        for token in self.find_tokens_needing_rotation(warning_days):
            try:
                rotated.append(self.rotate_token(token, rotated_by=rotated_by))
            except InvalidTokenStateError:
                self.logger.warning(
                    "Skipping token that is no longer rotatable",
                    extra={"token_value": token.token_value},
                )

        self.logger.info("Rotated expiring tokens", extra={"rotated": len(rotated)})
        return rotated

    # ==================== QUERIES ====================

    def find_token_by_value(self, token_value: str) -> Optional[GuardianToken]:
        return self.repository.find_by_value(token_value)

    def find_tokens_for_entity(self, token_type: TokenType, entity_id: int) -> List[GuardianToken]:
        """Full token history for an entity, newest first."""
        return self.repository.find_all_for_entity(token_type.entity_type, entity_id)

    def find_active_tokens_for_entities(
        self,
        token_type: TokenType,
        entity_ids: Iterable[int],
        vendor_scope: Optional[str] = None,
    ) -> Dict[int, GuardianToken]:
        tokens = self.repository.bulk_find_active_for_entities(
            token_type.entity_type, entity_ids, vendor_scope or None
        )
        return {token.entity_id: token for token in tokens}

    def find_tokens_by_vendor_scope(
        self, vendor_scope: Optional[str], status: TokenStatus = TokenStatus.ACTIVE
    ) -> List[GuardianToken]:
        return self.repository.find_by_vendor_scope_and_status(vendor_scope or None, status)

    def find_expiring_before(self, before: datetime) -> List[GuardianToken]:
        return self.repository.find_expiring_before(before)

    def find_tokens_needing_rotation(
        self, warning_days: Optional[int] = None
    ) -> List[GuardianToken]:
        if warning_days is None:
            warning_days = self.config.rotation_warning_days
        now = self.now()
        return self.repository.find_tokens_needing_rotation(
            now, now + timedelta(days=warning_days)
        )

    def find_active_tokens_by_school_year(
        self, school_year: Optional[str] = None
    ) -> List[GuardianToken]:
        """ACTIVE tokens issued in a school year; the current one by default."""
        if school_year is None:
            school_year = current_school_year(self.now(), self.config.rotation_month)
        return self.repository.find_active_by_school_year(school_year)

    def count_by_status(self) -> Dict[TokenStatus, int]:
        counts = {status: 0 for status in TokenStatus}
        counts.update(self.repository.count_by_status())
        return counts

    def count_by_type(self) -> Dict[TokenType, int]:
        """ACTIVE token counts per token type."""
        counts = {token_type: 0 for token_type in TokenType}
        counts.update(self.repository.count_active_by_type())
        return counts

    def get_usage_statistics(self) -> TokenUsageStatistics:
        return self.repository.get_usage_statistics()

    def find_most_used_tokens(self, limit: int = 10) -> List[GuardianToken]:
        return self.repository.find_most_used(limit)
