"""
Tests for provider routing, request shaping and cost estimates.

The SDK clients are replaced with small async fakes; no network calls.
"""

from types import SimpleNamespace

import pytest
from openai import OpenAIError

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from app.errors import ProviderError
from app.llm import get_provider
from app.llm.gemini import GeminiProvider
from app.llm.openai import OpenAIProvider, requires_chat_completions
from app.llm.pricing import MODEL_RATES, cheapest_rate, estimate_cost
from app.services.schema_compiler import compile_schema


class FakeCompletions:
    def __init__(self, content="hello", error=None):
        self.content = content
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
        )


def openai_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


class FakeGeminiModels:
    def __init__(self, text="hi"):
        self.text = text
        self.requests = []

    async def generate_content(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(
            text=self.text,
            usage_metadata=SimpleNamespace(prompt_token_count=7, candidates_token_count=2),
        )


class TestRouting:
    def test_gemini_models(self):
        assert isinstance(get_provider("gemini-2.5-flash"), GeminiProvider)

    def test_everything_else_is_openai(self):
        assert isinstance(get_provider("gpt-4o-mini"), OpenAIProvider)
        assert isinstance(get_provider("gpt-4o-search-preview"), OpenAIProvider)

    def test_search_models_need_chat_completions(self):
        assert requires_chat_completions("gpt-4o-mini-search-preview")
        assert not requires_chat_completions("gpt-4o-mini")


class TestOpenAIProvider:
    @pytest.mark.asyncio
    async def test_generate_text(self):
        completions = FakeCompletions("A reply")
        provider = OpenAIProvider(client=openai_client(completions))

        result = await provider.generate_text("gpt-4o-mini", "Say something")

        assert result.text == "A reply"
        assert result.usage.input_tokens == 12
        assert result.usage.output_tokens == 3
        assert completions.requests[0]["messages"] == [{"role": "user", "content": "Say something"}]
        assert "web_search_options" not in completions.requests[0]

    @pytest.mark.asyncio
    async def test_web_search_options_forwarded(self):
        completions = FakeCompletions()
        provider = OpenAIProvider(client=openai_client(completions))

        await provider.generate_text("gpt-4o-search-preview", "News?", {"search_context_size": "high"})

        assert completions.requests[0]["web_search_options"] == {"search_context_size": "high"}

    @pytest.mark.asyncio
    async def test_structured_uses_json_schema(self):
        completions = FakeCompletions('{"title": "Hi"}')
        provider = OpenAIProvider(client=openai_client(completions))
        schema = compile_schema({"name": "Post", "properties": [{"name": "title", "type": "STR"}]})

        result = await provider.generate_structured("gpt-4o-mini", "Title", schema)

        assert result.object == {"title": "Hi"}
        response_format = completions.requests[0]["response_format"]
        assert response_format["type"] == "json_schema"
        assert response_format["json_schema"]["name"] == "Post"
        assert "title" in response_format["json_schema"]["schema"]["properties"]

    def test_structured_support(self):
        provider = OpenAIProvider(client=openai_client(FakeCompletions()))
        assert provider.supports_structured_output("gpt-4o-mini")
        assert not provider.supports_structured_output("gpt-4o-search-preview")

    @pytest.mark.asyncio
    async def test_sdk_errors_wrapped(self):
        provider = OpenAIProvider(client=openai_client(FakeCompletions(error=OpenAIError("rate limit"))))

        with pytest.raises(ProviderError, match="rate limit"):
            await provider.generate_text("gpt-4o-mini", "x")

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        provider = OpenAIProvider()

        with pytest.raises(ProviderError, match="API key"):
            await provider.generate_text("gpt-4o-mini", "x")


class TestGeminiProvider:
    @pytest.mark.asyncio
    async def test_generate_text(self):
        models = FakeGeminiModels("Gemini says hi")
        provider = GeminiProvider(client=SimpleNamespace(aio=SimpleNamespace(models=models)))

        result = await provider.generate_text("gemini-2.5-flash", "Hello")

        assert result.text == "Gemini says hi"
        assert result.usage.input_tokens == 7
        assert models.requests[0]["contents"] == "Hello"
        assert models.requests[0]["config"] is None

    @pytest.mark.asyncio
    async def test_search_enables_google_search_tool(self):
        models = FakeGeminiModels()
        provider = GeminiProvider(client=SimpleNamespace(aio=SimpleNamespace(models=models)))

        await provider.generate_text("gemini-2.5-flash", "News?", {"enabled": True})

        tools = models.requests[0]["config"].tools
        assert len(tools) == 1
        assert tools[0].google_search is not None

    @pytest.mark.asyncio
    async def test_structured(self):
        models = FakeGeminiModels('{"title": "Hi"}')
        provider = GeminiProvider(client=SimpleNamespace(aio=SimpleNamespace(models=models)))
        schema = compile_schema({"properties": [{"name": "title", "type": "STR"}]})

        result = await provider.generate_structured("gemini-2.5-flash", "Title", schema)

        assert result.object == {"title": "Hi"}
        config = models.requests[0]["config"]
        assert config.response_mime_type == "application/json"
        assert config.response_json_schema == schema.json_schema()

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)

        with pytest.raises(ProviderError, match="API key"):
            await GeminiProvider().generate_text("gemini-2.5-flash", "x")


class TestPricing:
    def test_known_model(self):
        input_rate, output_rate = MODEL_RATES["gpt-4o-mini"]
        assert estimate_cost("gpt-4o-mini", 1000, 500) == pytest.approx(1000 * input_rate + 500 * output_rate)

    def test_unknown_model_uses_cheapest_rate(self):
        input_rate, output_rate = cheapest_rate()
        assert estimate_cost("some-new-model", 100, 100) == pytest.approx(100 * input_rate + 100 * output_rate)

    def test_zero_tokens(self):
        assert estimate_cost("gpt-4o", 0, 0) == 0
