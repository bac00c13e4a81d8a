"""
Chunk tagging through an LLM provider.

Tagging is best effort: a provider error, a malformed response or a
timeout yields an empty tag list and a log line, never an exception.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Iterable, List, Optional

from config.settings import config
from utils.llm_providers import BaseLLMProvider, get_llm_provider

logger = logging.getLogger(__name__)

MAX_TAGS = 8
_TAG_RE = re.compile(r"[^a-z0-9 +#./-]")

TAG_PROMPT = """You label knowledge-base passages used to answer RFPs and security questionnaires.
Return up to {max_tags} short lowercase keywords (1-3 words each) describing the
topics of the passage below: products, capabilities, compliance frameworks,
industries. Do not invent topics that are not present.

Passage:
\"\"\"
{text}
\"\"\"
"""

TAG_SCHEMA = {"tags": ["keyword"]}


def normalize_tags(tags: Iterable[Any]) -> List[str]:
    """Lowercase, strip, drop empties and duplicates, sort."""
    cleaned = set()
    for tag in tags:
        if not isinstance(tag, str):
            continue
        tag = _TAG_RE.sub("", tag.strip().lower()).strip()
        if tag:
            cleaned.add(tag)
    return sorted(cleaned)


class ContentTagger:
    """Requests a tag set for one chunk of text."""

    def __init__(
        self,
        provider: Optional[BaseLLMProvider] = None,
        *,
        enabled: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._provider = provider
        self.enabled = config.tagging_enabled if enabled is None else enabled
        self.timeout_seconds = config.tag_timeout_seconds if timeout_seconds is None else timeout_seconds

    def _get_provider(self) -> BaseLLMProvider:
        if self._provider is None:
            self._provider = get_llm_provider(config.tagging_provider, default_model=config.tagging_model)
        return self._provider

    async def tag(self, text: str) -> List[str]:
        if not self.enabled or not text.strip():
            return []
        try:
            result = await asyncio.wait_for(
                self._get_provider().generate(
                    TAG_PROMPT.format(max_tags=MAX_TAGS, text=text[:6000]),
                    output_schema=TAG_SCHEMA,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Tagging timed out after %ss; storing chunk without tags", self.timeout_seconds)
            return []
        except Exception as exc:
            logger.warning("Tagging failed (%s: %s); storing chunk without tags", type(exc).__name__, exc)
            return []

        tags = result.get("tags") if isinstance(result, dict) else None
        if not isinstance(tags, list):
            logger.warning("Tagging returned no tag list; storing chunk without tags")
            return []
        return normalize_tags(tags)[:MAX_TAGS]
