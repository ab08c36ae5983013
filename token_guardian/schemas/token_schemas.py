"""
Pydantic schemas for guardian tokens.

Read models handed out by the token authority, results of parsing and
validation, usage statistics, and the payloads exchanged with the remote
tokenization authority.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..enums import TokenStatus, TokenType


class ParsedToken(BaseModel):
    """The three segments of a token value plus the type named by its prefix."""

    prefix: str
    hash: str
    checksum: str
    token_type: TokenType

    model_config = ConfigDict(frozen=True)


class TokenRead(BaseModel):
    """Schema for reading a guardian token."""

    id: Optional[int] = Field(None, description="Local row id; None for remote tokens")
    token_value: str = Field(..., description="PREFIX_HASH_CHECKSUM token value")
    token_type: TokenType = Field(..., description="Token type")
    entity_id: int = Field(..., description="Real entity id the token stands in for")
    entity_type: str = Field(..., description="Entity type name")
    vendor_scope: Optional[str] = Field(None, description="Vendor the token is scoped to")
    school_year: Optional[str] = Field(None, description="School year label")
    status: TokenStatus = Field(..., description="Lifecycle status")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    expires_at: Optional[datetime] = Field(None, description="Expiry timestamp")
    last_used_at: Optional[datetime] = Field(None, description="Last successful resolution")
    rotation_count: int = Field(default=0, ge=0, description="Times the entity was rotated")
    usage_count: int = Field(default=0, ge=0, description="Successful resolutions")
    replaced_by_id: Optional[int] = Field(None, description="Successor row after rotation")
    created_by: Optional[str] = Field(None, description="Creator")

    model_config = ConfigDict(from_attributes=True)


class TokenValidationResult(BaseModel):
    """Outcome of validating a token value without raising."""

    valid: bool
    token_value: Optional[str] = None
    token_type: Optional[TokenType] = None
    entity_id: Optional[int] = None
    error_message: Optional[str] = None
    token: Optional[TokenRead] = None

    @classmethod
    def success(cls, token: TokenRead) -> "TokenValidationResult":
        return cls(
            valid=True,
            token_value=token.token_value,
            token_type=token.token_type,
            entity_id=token.entity_id,
            token=token,
        )

    @classmethod
    def failure(cls, token_value: Optional[str], error_message: str) -> "TokenValidationResult":
        return cls(valid=False, token_value=token_value, error_message=error_message)


class TokenUsageStatistics(BaseModel):
    """Aggregate usage of ACTIVE tokens."""

    active_tokens: int = 0
    total_usage: int = 0
    average_usage: float = 0.0
    max_usage: int = 0
    never_used: int = 0


# ==================== REMOTE AUTHORITY PAYLOADS ====================


class RemoteGenerateRequest(BaseModel):
    token_type: TokenType
    entity_id: int
    vendor_scope: Optional[str] = None
    created_by: Optional[str] = None
    create_if_missing: bool = True


class RemoteBulkGenerateRequest(BaseModel):
    token_type: TokenType
    entity_ids: List[int]
    vendor_scope: Optional[str] = None
    created_by: Optional[str] = None


class RemoteResolveRequest(BaseModel):
    token_value: str
    expected_type: Optional[TokenType] = None


class RemoteBulkResolveRequest(BaseModel):
    token_values: List[str]


class RemoteResolveResponse(BaseModel):
    entity_id: int


class RemoteBulkGenerateResponse(BaseModel):
    tokens: Dict[int, TokenRead]


class RemoteBulkResolveResponse(BaseModel):
    resolved: Dict[str, int]


class RemoteHealthResponse(BaseModel):
    """Health payload reported by the remote authority."""

    status: str = Field(..., min_length=1)
    version: Optional[str] = None

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v):
        return v.upper()
