"""
Token store.

Persists guardian tokens and answers the lookups the lifecycle and resolution
services need. All writes flush but never commit.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ..constants import TokenDefaults
from ..db.db_token_models import GuardianToken
from ..enums import TokenStatus, TokenType
from ..schemas.token_schemas import TokenUsageStatistics
from .base_repository import BaseRepository


def _scope_key(vendor_scope: Optional[str]) -> str:
    return vendor_scope or TokenDefaults.UNIVERSAL_SCOPE_KEY


class TokenRepository(BaseRepository[GuardianToken]):
    """Repository for guardian tokens."""

    def __init__(self, session: Session, logger=None):
        super().__init__(session, GuardianToken, logger)

    # ==================== WRITES ====================

    def insert(self, token: GuardianToken) -> GuardianToken:
        """
        Insert a new token row.

        Raises:
            DuplicateTokenError: If the token value or the active key already exists
        """
        with self._session_operation("insert"):
            self.session.add(token)
        return token

    def save(self, token: GuardianToken, now: Optional[datetime] = None) -> GuardianToken:
        """Flush pending changes on an existing token."""
        with self._session_operation("save", token.id):
            if now is not None:
                token.updated_at = now
        return token

    def expire_old_tokens(self, now: datetime) -> int:
        """
        Mark every ACTIVE token whose expiry has passed as EXPIRED.

        Returns:
            Number of rows updated
        """
        with self._session_operation("expire_old_tokens") as session:
            result = session.execute(
                update(GuardianToken)
                .where(GuardianToken.status == TokenStatus.ACTIVE)
                .where(GuardianToken.expires_at <= now)
                .values(status=TokenStatus.EXPIRED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    def cleanup_old_tokens(self, cutoff: datetime) -> int:
        """
        Delete ROTATED and REVOKED tokens last updated before the cutoff.

        Returns:
            Number of rows deleted
        """
        with self._session_operation("cleanup_old_tokens") as session:
            result = session.execute(
                delete(GuardianToken)
                .where(GuardianToken.status.in_([TokenStatus.ROTATED, TokenStatus.REVOKED]))
                .where(GuardianToken.updated_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount or 0

    def record_usage(self, token: GuardianToken, now: datetime) -> GuardianToken:
        """
        Count one use of the token and stamp ``last_used_at``.

        The increment happens in the database so concurrent resolutions of
        the same token are all counted; the row is refreshed afterwards.
        """
        with self._session_operation("record_usage", token.id) as session:
            session.execute(
                update(GuardianToken)
                .where(GuardianToken.id == token.id)
                .values(
                    usage_count=GuardianToken.usage_count + 1,
                    last_used_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            session.refresh(token, ["usage_count", "last_used_at", "updated_at"])
        return token

    # ==================== LOOKUPS ====================

    def find_by_id(self, token_id: int) -> Optional[GuardianToken]:
        with self._session_operation("find_by_id", token_id, is_read_only=True):
            return self._get_by_id(token_id)

    def find_by_value(self, token_value: str) -> Optional[GuardianToken]:
        with self._session_operation("find_by_value", is_read_only=True) as session:
            return session.execute(
                select(GuardianToken).where(GuardianToken.token_value == token_value)
            ).scalar_one_or_none()

    def exists_by_value(self, token_value: str) -> bool:
        with self._session_operation("exists_by_value", is_read_only=True) as session:
            found = session.execute(
                select(GuardianToken.id).where(GuardianToken.token_value == token_value)
            ).first()
        return found is not None

    def find_active_for_entity(
        self, entity_type: str, entity_id: int, vendor_scope: Optional[str] = None
    ) -> Optional[GuardianToken]:
        """
        Find the ACTIVE token for an entity.

        A None vendor scope selects the universal token only; a named scope
        selects the token issued for that vendor only.
        """
        with self._session_operation("find_active_for_entity", is_read_only=True) as session:
            return session.execute(
                select(GuardianToken)
                .where(GuardianToken.entity_type == entity_type)
                .where(GuardianToken.entity_id == entity_id)
                .where(GuardianToken.vendor_scope_key == _scope_key(vendor_scope))
                .where(GuardianToken.status == TokenStatus.ACTIVE)
            ).scalar_one_or_none()

    def find_all_for_entity(self, entity_type: str, entity_id: int) -> List[GuardianToken]:
        """All tokens ever issued for an entity, newest first."""
        with self._session_operation("find_all_for_entity", is_read_only=True) as session:
            return list(
                session.execute(
                    select(GuardianToken)
                    .where(GuardianToken.entity_type == entity_type)
                    .where(GuardianToken.entity_id == entity_id)
                    .order_by(GuardianToken.created_at.desc(), GuardianToken.id.desc())
                ).scalars()
            )

    def bulk_find_active_for_entities(
        self, entity_type: str, entity_ids: Iterable[int], vendor_scope: Optional[str] = None
    ) -> List[GuardianToken]:
        ids = list(entity_ids)
        if not ids:
            return []
        with self._session_operation(
            "bulk_find_active_for_entities", is_read_only=True
        ) as session:
            return list(
                session.execute(
                    select(GuardianToken)
                    .where(GuardianToken.entity_type == entity_type)
                    .where(GuardianToken.entity_id.in_(ids))
                    .where(GuardianToken.vendor_scope_key == _scope_key(vendor_scope))
                    .where(GuardianToken.status == TokenStatus.ACTIVE)
                ).scalars()
            )

    def find_by_vendor_scope_and_status(
        self, vendor_scope: Optional[str], status: TokenStatus
    ) -> List[GuardianToken]:
        with self._session_operation(
            "find_by_vendor_scope_and_status", is_read_only=True
        ) as session:
            return list(
                session.execute(
                    select(GuardianToken)
                    .where(GuardianToken.vendor_scope_key == _scope_key(vendor_scope))
                    .where(GuardianToken.status == status)
                    .order_by(GuardianToken.id)
                ).scalars()
            )

    def find_active_by_school_year(self, school_year: str) -> List[GuardianToken]:
        with self._session_operation("find_active_by_school_year", is_read_only=True) as session:
            return list(
                session.execute(
                    select(GuardianToken)
                    .where(GuardianToken.school_year == school_year)
                    .where(GuardianToken.status == TokenStatus.ACTIVE)
                    .order_by(GuardianToken.id)
                ).scalars()
            )

    def find_expiring_before(self, before: datetime) -> List[GuardianToken]:
        """ACTIVE tokens whose expiry falls before the given moment."""
        with self._session_operation("find_expiring_before", is_read_only=True) as session:
            return list(
                session.execute(
                    select(GuardianToken)
                    .where(GuardianToken.status == TokenStatus.ACTIVE)
                    .where(GuardianToken.expires_at < before)
                    .order_by(GuardianToken.expires_at)
                ).scalars()
            )

    def find_tokens_needing_rotation(
        self, now: datetime, warning_date: datetime
    ) -> List[GuardianToken]:
        """ACTIVE tokens that have not expired yet but will before the warning date."""
        with self._session_operation(
            "find_tokens_needing_rotation", is_read_only=True
        ) as session:
            return list(
                session.execute(
                    select(GuardianToken)
                    .where(GuardianToken.status == TokenStatus.ACTIVE)
                    .where(GuardianToken.expires_at > now)
                    .where(GuardianToken.expires_at < warning_date)
                    .order_by(GuardianToken.expires_at)
                ).scalars()
            )

    def find_most_used(self, limit: int = 10) -> List[GuardianToken]:
        with self._session_operation("find_most_used", is_read_only=True) as session:
            return list(
                session.execute(
                    select(GuardianToken)
                    .where(GuardianToken.status == TokenStatus.ACTIVE)
                    .order_by(GuardianToken.usage_count.desc(), GuardianToken.id)
                    .limit(limit)
                ).scalars()
            )

    # ==================== AGGREGATES ====================

    def count_by_status(self) -> Dict[TokenStatus, int]:
        with self._session_operation("count_by_status", is_read_only=True) as session:
            rows = session.execute(
                select(GuardianToken.status, func.count(GuardianToken.id)).group_by(
                    GuardianToken.status
                )
            ).all()
        return {status: count for status, count in rows}

    def count_active_by_type(self) -> Dict[TokenType, int]:
        with self._session_operation("count_active_by_type", is_read_only=True) as session:
            rows = session.execute(
                select(GuardianToken.token_type, func.count(GuardianToken.id))
                .where(GuardianToken.status == TokenStatus.ACTIVE)
                .group_by(GuardianToken.token_type)
            ).all()
        return {token_type: count for token_type, count in rows}

    def get_usage_statistics(self) -> TokenUsageStatistics:
        with self._session_operation("get_usage_statistics", is_read_only=True) as session:
            row = session.execute(
                select(
                    func.count(GuardianToken.id),
                    func.coalesce(func.sum(GuardianToken.usage_count), 0),
                    func.coalesce(func.max(GuardianToken.usage_count), 0),
                    func.count(GuardianToken.id).filter(GuardianToken.usage_count == 0),
                ).where(GuardianToken.status == TokenStatus.ACTIVE)
            ).one()

        active, total, maximum, never_used = row
        return TokenUsageStatistics(
            active_tokens=active,
            total_usage=total,
            average_usage=(total / active) if active else 0.0,
            max_usage=maximum,
            never_used=never_used,
        )
