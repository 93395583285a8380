"""
Model-provider capability boundary.

The engine treats a provider as a black box: given a model id and a prompt
(and optionally a compiled output schema) it returns text or a parsed object
plus token usage when the provider reports it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from app.errors import ProviderError

if TYPE_CHECKING:
    from app.services.schema_compiler import CompiledSchema


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class TextGeneration:
    text: str
    usage: Optional[Usage] = None


@dataclass
class StructuredGeneration:
    object: Any
    usage: Optional[Usage] = None


class ModelProvider(ABC):
    """A chat/completion backend."""

    name: str = "provider"

    @abstractmethod
    async def generate_text(
        self,
        model: str,
        prompt: str,
        web_search_options: Optional[dict[str, Any]] = None,
    ) -> TextGeneration: ...

    async def generate_structured(
        self,
        model: str,
        prompt: str,
        schema: "CompiledSchema",
    ) -> StructuredGeneration:
        raise ProviderError(f"{self.name} does not support structured output for {model}")

    def supports_structured_output(self, model: str) -> bool:
        """Whether ``generate_structured`` can be used for ``model``."""
        return False
