"""
Thin adapter layer over LLM provider SDKs (OpenAI, Anthropic).

Each provider exposes the same ``generate`` interface so the tagging
capability never imports provider-specific code.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from config.settings import config

logger = logging.getLogger(__name__)


def _schema_instruction(output_schema: Dict[str, Any]) -> str:
    return f"\n\nRespond ONLY with valid JSON matching this schema:\n{json.dumps(output_schema, indent=2)}"


def _parse_json(text: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("LLM did not return valid JSON; returning raw text")
        return {"raw": text}
    return parsed if isinstance(parsed, dict) else {"raw": parsed}


class BaseLLMProvider(ABC):
    """Common interface that every concrete provider implements."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        model: str | None = None,
        max_tokens: int = 256,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any] | str:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# OpenAI
# ═══════════════════════════════════════════════════════════════════════════════


class OpenAIProvider(BaseLLMProvider):
    def __init__(self, api_key: str, default_model: str = "gpt-4o-mini"):
        from openai import AsyncOpenAI

        self.client = AsyncOpenAI(api_key=api_key)
        self.default_model = default_model

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        model: str | None = None,
        max_tokens: int = 256,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any] | str:
        kwargs: Dict[str, Any] = {}
        if output_schema is not None:
            kwargs["response_format"] = {"type": "json_object"}
            prompt += _schema_instruction(output_schema)

        response = await self.client.chat.completions.create(
            model=model or self.default_model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs,
        )
        text = response.choices[0].message.content or ""
        return _parse_json(text) if output_schema is not None else text


# ═══════════════════════════════════════════════════════════════════════════════
# Anthropic
# ═══════════════════════════════════════════════════════════════════════════════


class AnthropicProvider(BaseLLMProvider):
    def __init__(self, api_key: str, default_model: str = "claude-3-5-haiku-latest"):
        from anthropic import AsyncAnthropic

        self.client = AsyncAnthropic(api_key=api_key)
        self.default_model = default_model

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.0,
        model: str | None = None,
        max_tokens: int = 256,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any] | str:
        if output_schema is not None:
            prompt += _schema_instruction(output_schema)

        response = await self.client.messages.create(
            model=model or self.default_model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        text = response.content[0].text
        return _parse_json(text) if output_schema is not None else text


# ═══════════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════════

_provider_cache: Dict[str, BaseLLMProvider] = {}


def get_llm_provider(
    provider_name: str,
    *,
    api_key: str | None = None,
    default_model: str | None = None,
) -> BaseLLMProvider:
    """
    Return (and cache) an LLM provider instance.

    Parameters
    ----------
    provider_name : "openai" | "anthropic"
    api_key       : explicit key; if omitted, read from config.
    default_model : override the default model for this provider instance.
    """
    cache_key = f"{provider_name}:{default_model or 'default'}"
    if cache_key in _provider_cache:
        return _provider_cache[cache_key]

    if provider_name == "openai":
        instance: BaseLLMProvider = OpenAIProvider(
            api_key=api_key or config.openai_api_key,
            default_model=default_model or "gpt-4o-mini",
        )
    elif provider_name == "anthropic":
        instance = AnthropicProvider(
            api_key=api_key or config.anthropic_api_key or "",
            default_model=default_model or "claude-3-5-haiku-latest",
        )
    else:
        raise ValueError(f"Unsupported LLM provider: {provider_name}")

    _provider_cache[cache_key] = instance
    return instance
