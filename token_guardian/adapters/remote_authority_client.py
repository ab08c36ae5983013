"""
HTTP client for the remote tokenization authority.

Every call is synchronous with a bounded (connect, read) timeout and no retry.
Any transport failure, non-2xx status or unexpected body surfaces as
RemoteUnavailableError; the caller decides whether to fall back.
"""

from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import RemoteAuthorityConfig, get_config
from ..enums import TokenType
from ..exceptions import RemoteUnavailableError
from ..schemas.token_schemas import (
    RemoteBulkGenerateRequest,
    RemoteBulkGenerateResponse,
    RemoteBulkResolveRequest,
    RemoteBulkResolveResponse,
    RemoteGenerateRequest,
    RemoteHealthResponse,
    RemoteResolveRequest,
    RemoteResolveResponse,
    TokenRead,
)
from ..utils.logger import get_logger

API_PREFIX = "/api/v1/tokens"


class RemoteAuthorityClient:
    """Thin requests-based client; one method per remote endpoint."""

    def __init__(
        self,
        config: Optional[RemoteAuthorityConfig] = None,
        http: Optional[requests.Session] = None,
    ):
        self.config = config or get_config().remote
        if not self.config.base_url:
            raise ValueError("RemoteAuthorityClient requires a base_url")
        self.base_url = self.config.base_url.rstrip("/")
        self.http = http or requests.Session()
        self.logger = get_logger()

    def _get_headers(self) -> Dict[str, str]:
        """Get request headers."""
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.config.api_key:
            headers["X-API-Key"] = self.config.api_key
        return headers

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[BaseModel] = None,
        params: Optional[Dict[str, Any]] = None,
        read_timeout: Optional[float] = None,
    ) -> Any:
        url = f"{self.base_url}{API_PREFIX}{path}"
        timeout = (
            self.config.connect_timeout_seconds,
            read_timeout or self.config.read_timeout_seconds,
        )
        try:
            response = self.http.request(
                method,
                url,
                headers=self._get_headers(),
                json=body.model_dump(mode="json") if body is not None else None,
                params=params,
                timeout=timeout,
                verify=self.config.verify_ssl,
            )
        except requests.RequestException as e:
            raise RemoteUnavailableError(
                f"Remote call failed: {method} {path}", url=url, cause=e
            ) from e

        if not 200 <= response.status_code < 300:
            raise RemoteUnavailableError(
                f"Remote call returned HTTP {response.status_code}: {method} {path}",
                url=url,
                http_status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise RemoteUnavailableError(
                f"Remote call returned a non-JSON body: {method} {path}", url=url, cause=e
            ) from e

    @staticmethod
    def _parse(model, payload: Any, path: str):
        try:
            return model.model_validate(payload)
        except PydanticValidationError as e:
            raise RemoteUnavailableError(
                f"Unexpected response body from {path}", cause=e
            ) from e

    # ==================== ENDPOINTS ====================

    def health(self) -> RemoteHealthResponse:
        payload = self._request(
            "GET", "/health", read_timeout=self.config.health_check_timeout_seconds
        )
        return self._parse(RemoteHealthResponse, payload, "/health")

    def generate_token(
        self,
        token_type: TokenType,
        entity_id: int,
        vendor_scope: Optional[str] = None,
        created_by: Optional[str] = None,
        create_if_missing: bool = True,
    ) -> TokenRead:
        body = RemoteGenerateRequest(
            token_type=token_type,
            entity_id=entity_id,
            vendor_scope=vendor_scope,
            created_by=created_by,
            create_if_missing=create_if_missing,
        )
        return self._parse(TokenRead, self._request("POST", "", body=body), "")

    def generate_tokens_bulk(
        self,
        token_type: TokenType,
        entity_ids: List[int],
        vendor_scope: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[int, TokenRead]:
        body = RemoteBulkGenerateRequest(
            token_type=token_type,
            entity_ids=entity_ids,
            vendor_scope=vendor_scope,
            created_by=created_by,
        )
        payload = self._request("POST", "/bulk", body=body)
        return self._parse(RemoteBulkGenerateResponse, payload, "/bulk").tokens

    def resolve_to_entity_id(
        self, token_value: str, expected_type: Optional[TokenType] = None
    ) -> int:
        body = RemoteResolveRequest(token_value=token_value, expected_type=expected_type)
        payload = self._request("POST", "/resolve", body=body)
        return self._parse(RemoteResolveResponse, payload, "/resolve").entity_id

    def resolve_tokens_bulk(self, token_values: List[str]) -> Dict[str, int]:
        body = RemoteBulkResolveRequest(token_values=token_values)
        payload = self._request("POST", "/resolve/bulk", body=body)
        return self._parse(RemoteBulkResolveResponse, payload, "/resolve/bulk").resolved

    def find_token_for_entity(
        self, token_type: TokenType, entity_id: int, vendor_scope: Optional[str] = None
    ) -> Optional[TokenRead]:
        path = f"/entity/{token_type.value}/{entity_id}"
        params = {"vendor_scope": vendor_scope} if vendor_scope else None
        payload = self._request("GET", path, params=params)
        if payload is None:
            return None
        return self._parse(TokenRead, payload, path)

    def rotate_token(self, token_value: str, rotated_by: Optional[str] = None) -> TokenRead:
        path = f"/{token_value}/rotate"
        params = {"by": rotated_by} if rotated_by else None
        return self._parse(TokenRead, self._request("POST", path, params=params), path)

    def revoke_token(self, token_value: str, revoked_by: Optional[str] = None) -> TokenRead:
        path = f"/{token_value}/revoke"
        params = {"by": revoked_by} if revoked_by else None
        return self._parse(TokenRead, self._request("POST", path, params=params), path)

    def close(self) -> None:
        self.http.close()
