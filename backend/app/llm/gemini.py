from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from google import genai
from google.genai import errors, types

from app.config import Settings
from app.errors import ProviderError
from app.llm.base import ModelProvider, StructuredGeneration, TextGeneration, Usage
from app.services.json_extract import extract_json

if TYPE_CHECKING:
    from app.services.schema_compiler import CompiledSchema

logger = logging.getLogger(__name__)


def _usage(response) -> Optional[Usage]:
    meta = getattr(response, "usage_metadata", None)
    if meta is None:
        return None
    return Usage(
        input_tokens=meta.prompt_token_count or 0,
        output_tokens=meta.candidates_token_count or 0,
    )


class GeminiProvider(ModelProvider):
    """Google Gemini models (``gemini-*``) through google-genai."""

    name = "gemini"

    def __init__(self, client: Optional[genai.Client] = None):
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            api_key = Settings.gemini_api_key()
            if not api_key:
                raise ProviderError("Gemini API key not configured")
            self._client = genai.Client(api_key=api_key)
        return self._client

    def supports_structured_output(self, model: str) -> bool:
        return True

    async def generate_text(
        self,
        model: str,
        prompt: str,
        web_search_options: Optional[dict[str, Any]] = None,
    ) -> TextGeneration:
        config = None
        if web_search_options:
            config = types.GenerateContentConfig(
                tools=[types.Tool(google_search=types.GoogleSearch())],
            )
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=config,
            )
        except errors.APIError as e:
            raise ProviderError(f"Gemini request failed for {model}: {e}") from e
        return TextGeneration(text=response.text or "", usage=_usage(response))

    async def generate_structured(
        self,
        model: str,
        prompt: str,
        schema: "CompiledSchema",
    ) -> StructuredGeneration:
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_json_schema=schema.json_schema(),
                ),
            )
        except errors.APIError as e:
            raise ProviderError(f"Gemini request failed for {model}: {e}") from e
        return StructuredGeneration(object=extract_json(response.text or "{}"), usage=_usage(response))
