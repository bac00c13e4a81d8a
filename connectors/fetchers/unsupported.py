"""
Placeholder fetcher for source types that can be registered but whose
content API is not integrated yet.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from connectors.errors import ConnectorNotImplementedError
from connectors.fetchers.base import BaseFetcher, RawDocument


class UnsupportedFetcher(BaseFetcher):
    requires_credential = False

    def __init__(self, source_type: str):
        super().__init__()
        self._source_type = source_type

    @property
    def source_type(self) -> str:
        return self._source_type

    async def fetch(self, source: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> List[RawDocument]:
        raise ConnectorNotImplementedError(self._source_type)
