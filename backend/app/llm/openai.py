"""
OpenAI Chat Completions provider.

Search-augmented models (``*search*``) only speak plain chat completions:
no ``response_format``, so structured output for them goes through the
node executor's text-and-parse fallback.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from openai import AsyncOpenAI, OpenAIError

from app.config import Settings
from app.errors import ProviderError
from app.llm.base import ModelProvider, StructuredGeneration, TextGeneration, Usage
from app.services.json_extract import extract_json

if TYPE_CHECKING:
    from app.services.schema_compiler import CompiledSchema

logger = logging.getLogger(__name__)


def requires_chat_completions(model: str) -> bool:
    """Models that reject response_format and must use plain chat."""
    return "search" in model.lower()


def _usage(response) -> Optional[Usage]:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    return Usage(
        input_tokens=usage.prompt_tokens or 0,
        output_tokens=usage.completion_tokens or 0,
    )


def _content(response) -> str:
    if not response.choices:
        return ""
    return response.choices[0].message.content or ""


class OpenAIProvider(ModelProvider):
    name = "openai"

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = Settings.openai_api_key()
            if not api_key:
                raise ProviderError("OpenAI API key not configured")
            self._client = AsyncOpenAI(api_key=api_key)
        return self._client

    def supports_structured_output(self, model: str) -> bool:
        return not requires_chat_completions(model)

    async def generate_text(
        self,
        model: str,
        prompt: str,
        web_search_options: Optional[dict[str, Any]] = None,
    ) -> TextGeneration:
        extra: dict[str, Any] = {}
        if web_search_options:
            extra["web_search_options"] = web_search_options
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                **extra,
            )
        except OpenAIError as e:
            raise ProviderError(f"OpenAI request failed for {model}: {e}") from e
        return TextGeneration(text=_content(response), usage=_usage(response))

    async def generate_structured(
        self,
        model: str,
        prompt: str,
        schema: "CompiledSchema",
    ) -> StructuredGeneration:
        response_format = {
            "type": "json_schema",
            "json_schema": {"name": schema.name, "schema": schema.json_schema()},
        }
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                response_format=response_format,
            )
        except OpenAIError as e:
            raise ProviderError(f"OpenAI request failed for {model}: {e}") from e

        content = _content(response) or "{}"
        return StructuredGeneration(object=extract_json(content), usage=_usage(response))
