"""
Pydantic schemas for the connector and sync API.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


# ═══════════════════════════════════════════════════════════════════════════════
# Sync runs
# ═══════════════════════════════════════════════════════════════════════════════


class SyncResult(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SyncOutcome(BaseModel):
    """Result of one sync run against one data source."""

    tenant_id: str
    source_id: str
    result: SyncResult
    item_count: int = 0
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.result == SyncResult.SUCCEEDED


# ═══════════════════════════════════════════════════════════════════════════════
# Source management requests
# ═══════════════════════════════════════════════════════════════════════════════


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class WebsiteOptions(_CamelModel):
    max_depth: int = Field(default=2, ge=0, le=10, alias="maxDepth")
    max_pages: int = Field(default=10, ge=1, le=1000, alias="maxPages")
    scope_path: str = Field(default="", alias="scopePath")
    exclude_paths: List[str] = Field(default_factory=list, alias="excludePaths")
    filter_keywords: List[str] = Field(default_factory=list, alias="filterKeywords")


class WebsiteSourceRequest(_CamelModel):
    url: HttpUrl
    name: Optional[str] = None
    options: WebsiteOptions = Field(default_factory=WebsiteOptions)


class ApiKeySourceRequest(_CamelModel):
    type: str
    name: str = Field(..., min_length=1, max_length=200)
    api_key: str = Field(..., min_length=1, alias="apiKey")
    email: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class RenameRequest(_CamelModel):
    name: str = Field(..., min_length=1, max_length=200)


# ═══════════════════════════════════════════════════════════════════════════════
# Billing webhook
# ═══════════════════════════════════════════════════════════════════════════════


class CheckoutMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(..., min_length=1, alias="tenantId")
    plan: str = Field(..., min_length=1)
