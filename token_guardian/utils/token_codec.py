"""
Token string codec.

Tokens look like ``STU_H7K9P3M2_X4`` (``PREFIX_HASH_CHECKSUM``). The prefix
names the token type, the hash is random over a configurable charset, and the
checksum is a positional digest of ``PREFIX_HASH`` written in the same charset.

The checksum detects typos and truncation. It is not an integrity mechanism:
anyone who knows the charset can compute it.
"""

import secrets
from datetime import datetime
from typing import Optional

from ..config import TokenConfig, get_config
from ..constants import TokenDefaults
from ..enums import TokenType
from ..exceptions import InvalidTokenFormatError, UnknownTokenTypeError
from ..schemas.token_schemas import ParsedToken


class TokenCodec:
    """Encode, parse and generate token values for one token configuration."""

    def __init__(self, config: Optional[TokenConfig] = None):
        config = config or get_config().token
        self.charset = config.hash_charset
        self.hash_length = config.hash_length
        self.checksum_length = config.checksum_length
        self._charset_lookup = set(self.charset)

    def encode(self, prefix: str, hash_value: str) -> str:
        """
        Compute the checksum segment for a prefix and hash.

        Args:
            prefix: Token type prefix (e.g. "STU")
            hash_value: Hash segment

        Returns:
            Checksum of ``checksum_length`` charset characters
        """
        base = len(self.charset)
        modulus = base**self.checksum_length

        acc = 0
        for ch in f"{prefix}{TokenDefaults.SEPARATOR}{hash_value}":
            acc = (acc + ord(ch)) % modulus

        digits = []
        for _ in range(self.checksum_length):
            acc, digit = divmod(acc, base)
            digits.append(self.charset[digit])
        return "".join(reversed(digits))

    def format(self, prefix: str, hash_value: str) -> str:
        """Assemble a full token value from prefix and hash."""
        checksum = self.encode(prefix, hash_value)
        return TokenDefaults.SEPARATOR.join((prefix, hash_value, checksum))

    def parse(self, token_value: str) -> ParsedToken:
        """
        Split and validate a token value.

        Raises:
            InvalidTokenFormatError: Wrong segment count, lengths or characters
            UnknownTokenTypeError: Well-formed token with an unknown prefix
        """
        if not token_value:
            raise InvalidTokenFormatError("Token value is empty")

        parts = token_value.split(TokenDefaults.SEPARATOR)
        if len(parts) != 3:
            raise InvalidTokenFormatError(
                "Token must have three segments", token_value=token_value
            )

        prefix, hash_value, checksum = parts
        if len(hash_value) != self.hash_length:
            raise InvalidTokenFormatError(
                f"Hash segment must be {self.hash_length} characters", token_value=token_value
            )
        if len(checksum) != self.checksum_length:
            raise InvalidTokenFormatError(
                f"Checksum segment must be {self.checksum_length} characters",
                token_value=token_value,
            )
        if not self._in_charset(hash_value) or not self._in_charset(checksum):
            raise InvalidTokenFormatError(
                "Token contains characters outside the charset", token_value=token_value
            )

        try:
            token_type = TokenType.from_prefix(prefix)
        except ValueError as e:
            raise UnknownTokenTypeError(
                f"Unknown token prefix: {prefix}", token_value=token_value, cause=e
            ) from e

        return ParsedToken(
            prefix=prefix, hash=hash_value, checksum=checksum, token_type=token_type
        )

    def is_valid_checksum(self, token_value: str) -> bool:
        """Return True if the token parses and its checksum matches (case-insensitive)."""
        try:
            parsed = self._split(token_value)
        except ValueError:
            return False
        if parsed is None:
            return False

        prefix, hash_value, checksum = parsed
        expected = self.encode(prefix, hash_value)
        return expected.upper() == checksum.upper()

    def generate(self, token_type: TokenType) -> str:
        """Generate a random token value for a token type."""
        hash_value = "".join(secrets.choice(self.charset) for _ in range(self.hash_length))
        return self.format(token_type.prefix, hash_value)

    def extract_token_type(self, token_value: str) -> Optional[TokenType]:
        """Return the token type named by the prefix, or None if there is none."""
        if not token_value or TokenDefaults.SEPARATOR not in token_value:
            return None
        prefix = token_value.split(TokenDefaults.SEPARATOR, 1)[0]
        try:
            return TokenType.from_prefix(prefix)
        except ValueError:
            return None

    def _in_charset(self, segment: str) -> bool:
        return all(ch in self._charset_lookup for ch in segment)

    def _split(self, token_value: str):
        # Non-raising structural check used by is_valid_checksum
        if not token_value:
            return None
        parts = token_value.split(TokenDefaults.SEPARATOR)
        if len(parts) != 3:
            return None
        prefix, hash_value, checksum = parts
        if len(hash_value) != self.hash_length or len(checksum) != self.checksum_length:
            return None
        if not self._in_charset(hash_value):
            return None
        TokenType.from_prefix(prefix)
        return prefix, hash_value, checksum


def generate_salt() -> str:
    """Return a fresh hex-encoded random salt."""
    return secrets.token_hex(TokenDefaults.SALT_BYTES)


def current_school_year(now: datetime, rotation_month: int = TokenDefaults.ROTATION_MONTH) -> str:
    """
    School year label for a moment in time.

    Before the rotation month the year started last calendar year
    (``2024-2025`` for March 2025); from the rotation month on it started this
    calendar year (``2025-2026`` for September 2025).
    """
    year = now.year
    if now.month < rotation_month:
        return f"{year - 1}-{year}"
    return f"{year}-{year + 1}"
