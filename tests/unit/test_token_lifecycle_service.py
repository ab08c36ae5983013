"""
Tests for the token lifecycle service.

Generation, rotation, revocation, expiry sweep, cleanup and the admin queries,
run against the in-memory database with a frozen clock.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from token_guardian.config import TokenConfig
from token_guardian.enums import TokenStatus, TokenType
from token_guardian.exceptions import (
    DuplicateTokenError,
    InvalidTokenStateError,
    TokenGenerationExhaustedError,
)
from token_guardian.services.token_lifecycle_service import TokenLifecycleService
from token_guardian.utils.token_codec import current_school_year
from tests.fixtures.factories import GuardianTokenFactory


class TestGenerateToken:
    """Test token generation."""

    def test_generates_active_token(self, lifecycle_service, codec, clock):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 12345, created_by="sis")

        assert token.id is not None
        assert token.status == TokenStatus.ACTIVE
        assert token.token_value.startswith("STU_")
        assert codec.is_valid_checksum(token.token_value)
        assert token.checksum == token.token_value.split("_")[2]
        assert token.entity_id == 12345
        assert token.entity_type == "STUDENT"
        assert token.vendor_scope is None
        assert token.school_year == current_school_year(clock.now)
        assert len(token.salt) == 64
        assert token.rotation_count == 0
        assert token.usage_count == 0
        assert token.created_by == "sis"

    def test_expiry_follows_config(self, db_session, clock):
        service = TokenLifecycleService(
            session=db_session, config=TokenConfig(expiration_days=30), clock=clock
        )
        token = service.generate_token(TokenType.COURSE, 1)

        expected = clock.now + timedelta(days=30)
        assert abs(token.expires_at.replace(tzinfo=None) - expected.replace(tzinfo=None)) < (
            timedelta(seconds=1)
        )

    def test_existing_active_token_is_returned_unchanged(self, lifecycle_service):
        first = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        second = lifecycle_service.generate_token(TokenType.STUDENT, 1)

        assert second.id == first.id
        assert second.token_value == first.token_value
        assert len(lifecycle_service.find_tokens_for_entity(TokenType.STUDENT, 1)) == 1

    def test_get_or_create_is_idempotent(self, lifecycle_service):
        values = {
            lifecycle_service.get_or_create_token(TokenType.TEACHER, 9, "CANVAS").token_value
            for _ in range(3)
        }
        assert len(values) == 1

    def test_vendor_scopes_get_distinct_tokens(self, lifecycle_service):
        universal = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        canvas = lifecycle_service.generate_token(TokenType.STUDENT, 1, vendor_scope="CANVAS")
        google = lifecycle_service.generate_token(TokenType.STUDENT, 1, vendor_scope="GOOGLE")

        assert len({universal.token_value, canvas.token_value, google.token_value}) == 3
        assert canvas.vendor_scope == "CANVAS"

    def test_empty_scope_means_universal(self, lifecycle_service):
        universal = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        assert lifecycle_service.generate_token(TokenType.STUDENT, 1, "").id == universal.id

    def test_same_entity_id_different_types_are_separate(self, lifecycle_service):
        student = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        teacher = lifecycle_service.generate_token(TokenType.TEACHER, 1)

        assert student.id != teacher.id
        assert teacher.token_value.startswith("TCH_")

    def test_stale_active_token_is_expired_and_replaced(self, lifecycle_service, clock):
        first = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        first_id = first.id
        clock.advance(days=366)

        second = lifecycle_service.generate_token(TokenType.STUDENT, 1)

        assert second.id != first_id
        assert lifecycle_service.repository.find_by_id(first_id).status == TokenStatus.EXPIRED

    def test_existing_value_is_skipped(self, lifecycle_service):
        taken = GuardianTokenFactory(entity_id=500)
        fresh = lifecycle_service.codec.generate(TokenType.STUDENT)

        with patch.object(
            lifecycle_service.codec, "generate", side_effect=[taken.token_value, fresh]
        ):
            token = lifecycle_service.generate_token(TokenType.STUDENT, 1)

        assert token.token_value == fresh

    def test_value_collision_on_insert_retries(self, lifecycle_service):
        taken = GuardianTokenFactory(entity_id=500)
        fresh = lifecycle_service.codec.generate(TokenType.STUDENT)

        # Pretend the value was free when checked but taken by the time of insert
        with patch.object(
            lifecycle_service.codec, "generate", side_effect=[taken.token_value, fresh]
        ), patch.object(lifecycle_service.repository, "exists_by_value", return_value=False):
            token = lifecycle_service.generate_token(TokenType.STUDENT, 1)

        assert token.token_value == fresh
        assert token.entity_id == 1

    def test_lost_race_returns_winner(self, lifecycle_service):
        winner = GuardianTokenFactory(entity_id=77)
        repository = lifecycle_service.repository
        original_find = repository.find_active_for_entity
        calls = []

        def find_active(*args, **kwargs):
            calls.append(args)
            # First lookup happens "before" the other writer commits
            if len(calls) == 1:
                return None
            return original_find(*args, **kwargs)

        with patch.object(repository, "find_active_for_entity", side_effect=find_active):
            token = lifecycle_service.generate_token(TokenType.STUDENT, 77)

        assert token.id == winner.id
        assert len(lifecycle_service.find_tokens_for_entity(TokenType.STUDENT, 77)) == 1

    def test_exhaustion_raises(self, db_session, clock):
        service = TokenLifecycleService(
            session=db_session, config=TokenConfig(max_generation_attempts=5), clock=clock
        )
        with patch.object(service.repository, "exists_by_value", return_value=True):
            with pytest.raises(TokenGenerationExhaustedError) as exc_info:
                service.generate_token(TokenType.STUDENT, 1)

        assert exc_info.value.status_code == 500
        assert exc_info.value.context["max_attempts"] == 5

    def test_exhaustion_with_tiny_keyspace(self, db_session, clock):
        config = TokenConfig(hash_charset="AB", hash_length=1, max_generation_attempts=20)
        service = TokenLifecycleService(session=db_session, config=config, clock=clock)

        service.generate_token(TokenType.STUDENT, 1)
        service.generate_token(TokenType.STUDENT, 2)
        with pytest.raises(TokenGenerationExhaustedError):
            service.generate_token(TokenType.STUDENT, 3)


class TestGenerateTokensBulk:
    """Test bulk generation."""

    def test_bulk_creates_and_reuses(self, lifecycle_service):
        existing = lifecycle_service.generate_token(TokenType.STUDENT, 2)

        tokens = lifecycle_service.generate_tokens_bulk(TokenType.STUDENT, [1, 2, 3, 2])

        assert sorted(tokens) == [1, 2, 3]
        assert tokens[2].id == existing.id
        assert len({t.token_value for t in tokens.values()}) == 3

    def test_bulk_fails_fast_and_keeps_earlier_tokens(self, lifecycle_service):
        original = lifecycle_service.get_or_create_token

        def flaky(token_type, entity_id, *args):
            if entity_id == 2:
                raise DuplicateTokenError("store hiccup")
            return original(token_type, entity_id, *args)

        with patch.object(lifecycle_service, "get_or_create_token", side_effect=flaky):
            with pytest.raises(DuplicateTokenError):
                lifecycle_service.generate_tokens_bulk(TokenType.STUDENT, [1, 2, 3])

        assert lifecycle_service.find_tokens_for_entity(TokenType.STUDENT, 1)
        assert not lifecycle_service.find_tokens_for_entity(TokenType.STUDENT, 3)

    def test_bulk_skip_failures_omits_failed_ids(self, lifecycle_service):
        original = lifecycle_service.get_or_create_token

        def flaky(token_type, entity_id, *args):
            if entity_id == 2:
                raise DuplicateTokenError("store hiccup")
            return original(token_type, entity_id, *args)

        with patch.object(lifecycle_service, "get_or_create_token", side_effect=flaky):
            tokens = lifecycle_service.generate_tokens_bulk(
                TokenType.STUDENT, [1, 2, 3], skip_failures=True
            )

        assert sorted(tokens) == [1, 3]

    def test_bulk_never_skips_exhaustion(self, lifecycle_service):
        with patch.object(
            lifecycle_service,
            "get_or_create_token",
            side_effect=TokenGenerationExhaustedError(),
        ):
            with pytest.raises(TokenGenerationExhaustedError):
                lifecycle_service.generate_tokens_bulk(
                    TokenType.STUDENT, [1, 2], skip_failures=True
                )


class TestRotateToken:
    """Test rotation."""

    def test_rotation_links_old_and_new(self, lifecycle_service):
        old = lifecycle_service.generate_token(TokenType.STUDENT, 1, "CANVAS")
        old_value = old.token_value

        new = lifecycle_service.rotate_token(old, rotated_by="admin")

        assert new.token_value != old_value
        assert new.status == TokenStatus.ACTIVE
        assert new.rotation_count == 1
        assert new.usage_count == 0
        assert new.entity_id == 1
        assert new.vendor_scope == "CANVAS"
        assert new.created_by == "admin"
        assert old.status == TokenStatus.ROTATED
        assert old.replaced_by_id == new.id

        current = lifecycle_service.generate_token(TokenType.STUDENT, 1, "CANVAS")
        assert current.id == new.id

    def test_rotation_count_accumulates(self, lifecycle_service):
        token = lifecycle_service.generate_token(TokenType.SECTION, 3)
        for expected in (1, 2, 3):
            token = lifecycle_service.rotate_token(token)
            assert token.rotation_count == expected

    def test_rotate_requires_active(self, lifecycle_service):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.revoke_token(token)

        with pytest.raises(InvalidTokenStateError):
            lifecycle_service.rotate_token(token)

    def test_rotate_rejects_expired(self, lifecycle_service, clock):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        clock.advance(days=400)

        with pytest.raises(InvalidTokenStateError):
            lifecycle_service.rotate_token(token)

    def test_rotated_value_is_never_reused(self, lifecycle_service):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        seen = {token.token_value}
        for _ in range(5):
            token = lifecycle_service.rotate_token(token)
            assert token.token_value not in seen
            seen.add(token.token_value)

    def test_collision_during_rotation_retries(self, lifecycle_service):
        taken = GuardianTokenFactory(entity_id=500)
        old = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        fresh = lifecycle_service.codec.generate(TokenType.STUDENT)

        with patch.object(
            lifecycle_service.codec, "generate", side_effect=[taken.token_value, fresh]
        ), patch.object(lifecycle_service.repository, "exists_by_value", return_value=False):
            new = lifecycle_service.rotate_token(old)

        assert new.token_value == fresh
        assert old.status == TokenStatus.ROTATED
        assert old.replaced_by_id == new.id


class TestRevokeToken:
    """Test revocation."""

    def test_revoke_active(self, lifecycle_service):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.revoke_token(token, revoked_by="admin")

        assert token.status == TokenStatus.REVOKED

    def test_revoke_twice_raises(self, lifecycle_service):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.revoke_token(token)

        with pytest.raises(InvalidTokenStateError) as exc_info:
            lifecycle_service.revoke_token(token)
        assert exc_info.value.status_code == 409

    def test_revoked_entity_gets_new_token(self, lifecycle_service):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.revoke_token(token)

        replacement = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        assert replacement.id != token.id
        assert replacement.status == TokenStatus.ACTIVE


class TestHousekeeping:
    """Test expiry sweep, cleanup and automatic rotation."""

    def test_expire_old_tokens(self, lifecycle_service, clock):
        lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.generate_token(TokenType.STUDENT, 2)
        assert lifecycle_service.expire_old_tokens() == 0

        clock.advance(days=366)
        assert lifecycle_service.expire_old_tokens() == 2
        assert lifecycle_service.expire_old_tokens() == 0

        counts = lifecycle_service.count_by_status()
        assert counts[TokenStatus.EXPIRED] == 2
        assert counts[TokenStatus.ACTIVE] == 0

    def test_cleanup_uses_retention(self, lifecycle_service, clock):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.revoke_token(token)

        assert lifecycle_service.cleanup_old_tokens() == 0

        clock.advance(days=366)
        assert lifecycle_service.cleanup_old_tokens() == 1

    def test_cleanup_with_explicit_retention(self, lifecycle_service, clock):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.rotate_token(token)
        clock.advance(days=2)

        assert lifecycle_service.cleanup_old_tokens(retention_days=1) == 1
        assert lifecycle_service.count_by_status()[TokenStatus.ACTIVE] == 1

    def test_rotate_expiring_tokens(self, lifecycle_service, clock):
        lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.generate_token(TokenType.STUDENT, 2)

        assert lifecycle_service.rotate_expiring_tokens(warning_days=30) == []

        clock.advance(days=340)
        rotated = lifecycle_service.rotate_expiring_tokens(warning_days=30)

        assert len(rotated) == 2
        assert all(t.rotation_count == 1 for t in rotated)
        assert all(t.created_by == "system" for t in rotated)
        assert lifecycle_service.count_by_status()[TokenStatus.ROTATED] == 2


class TestQueries:
    """Test admin queries."""

    def test_count_by_type_includes_zeroes(self, lifecycle_service):
        lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.generate_token(TokenType.COURSE, 1)

        counts = lifecycle_service.count_by_type()
        assert counts[TokenType.STUDENT] == 1
        assert counts[TokenType.COURSE] == 1
        assert counts[TokenType.ASSIGNMENT] == 0

    def test_find_token_by_value(self, lifecycle_service):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        assert lifecycle_service.find_token_by_value(token.token_value).id == token.id

    def test_find_tokens_for_entity_history(self, lifecycle_service):
        token = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.rotate_token(token)

        history = lifecycle_service.find_tokens_for_entity(TokenType.STUDENT, 1)
        assert {t.status for t in history} == {TokenStatus.ACTIVE, TokenStatus.ROTATED}

    def test_find_active_tokens_for_entities(self, lifecycle_service):
        lifecycle_service.generate_tokens_bulk(TokenType.STUDENT, [1, 2, 3], "CANVAS")
        lifecycle_service.generate_token(TokenType.STUDENT, 4)

        found = lifecycle_service.find_active_tokens_for_entities(
            TokenType.STUDENT, [1, 2, 3, 4], "CANVAS"
        )
        assert sorted(found) == [1, 2, 3]

    def test_find_tokens_by_vendor_scope(self, lifecycle_service):
        lifecycle_service.generate_token(TokenType.STUDENT, 1, "CANVAS")
        revoked = lifecycle_service.generate_token(TokenType.STUDENT, 2, "CANVAS")
        lifecycle_service.revoke_token(revoked)

        assert len(lifecycle_service.find_tokens_by_vendor_scope("CANVAS")) == 1
        assert (
            len(lifecycle_service.find_tokens_by_vendor_scope("CANVAS", TokenStatus.REVOKED))
            == 1
        )

    def test_find_expiring_before(self, lifecycle_service, clock):
        lifecycle_service.generate_token(TokenType.STUDENT, 1)
        assert lifecycle_service.find_expiring_before(clock.now + timedelta(days=30)) == []
        assert len(lifecycle_service.find_expiring_before(clock.now + timedelta(days=400))) == 1

    def test_find_tokens_needing_rotation_uses_config_window(self, lifecycle_service, clock):
        lifecycle_service.generate_token(TokenType.STUDENT, 1)
        assert lifecycle_service.find_tokens_needing_rotation() == []

        clock.advance(days=350)
        assert len(lifecycle_service.find_tokens_needing_rotation()) == 1

    def test_find_active_tokens_by_school_year(self, lifecycle_service, clock):
        lifecycle_service.generate_token(TokenType.STUDENT, 1)

        assert len(lifecycle_service.find_active_tokens_by_school_year()) == 1
        assert lifecycle_service.find_active_tokens_by_school_year("1999-2000") == []

    def test_usage_statistics_and_most_used(self, lifecycle_service):
        first = lifecycle_service.generate_token(TokenType.STUDENT, 1)
        lifecycle_service.generate_token(TokenType.STUDENT, 2)
        first.record_usage()
        first.record_usage()
        lifecycle_service.repository.save(first)
        lifecycle_service.commit()

        stats = lifecycle_service.get_usage_statistics()
        assert stats.active_tokens == 2
        assert stats.total_usage == 2
        assert stats.never_used == 1

        assert lifecycle_service.find_most_used_tokens(limit=1)[0].id == first.id
