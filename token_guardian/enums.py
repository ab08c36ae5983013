"""
Enums used across the token_guardian package.

This module contains enum definitions that are used by multiple modules
to avoid circular import issues.
"""

import enum


class TokenType(enum.Enum):
    """
    Kind of entity a token stands in for.

    Each member carries the 3-character prefix used in the token value and the
    entity type name stored alongside the token.
    """

    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    COURSE = "COURSE"
    SECTION = "SECTION"
    ASSIGNMENT = "ASSIGNMENT"

    @property
    def prefix(self) -> str:
        return _PREFIXES[self]

    @property
    def entity_type(self) -> str:
        return self.value

    @classmethod
    def from_prefix(cls, prefix: str) -> "TokenType":
        """
        Get the token type for a token prefix (case-insensitive).

        Raises:
            ValueError: If the prefix is not known
        """
        normalized = (prefix or "").upper()
        for token_type, token_prefix in _PREFIXES.items():
            if token_prefix == normalized:
                return token_type
        raise ValueError(f"Unknown token prefix: {prefix}")

    @classmethod
    def from_entity_type(cls, entity_type: str) -> "TokenType":
        """
        Get the token type for an entity type name (case-insensitive).

        Raises:
            ValueError: If the entity type is not known
        """
        normalized = (entity_type or "").upper()
        for token_type in cls:
            if token_type.entity_type == normalized:
                return token_type
        raise ValueError(f"Unknown entity type: {entity_type}")


_PREFIXES = {
    TokenType.STUDENT: "STU",
    TokenType.TEACHER: "TCH",
    TokenType.COURSE: "CRS",
    TokenType.SECTION: "SEC",
    TokenType.ASSIGNMENT: "ASN",
}


class TokenStatus(enum.Enum):
    """Lifecycle status of a token row."""

    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    ROTATED = "ROTATED"

    @property
    def is_terminal(self) -> bool:
        return self is not TokenStatus.ACTIVE
