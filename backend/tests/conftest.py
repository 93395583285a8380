"""
Shared fixtures: an in-memory store, a scripted model provider and an API
client with authentication, store and provider overridden.
"""

import asyncio
import json
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from app.auth.access import AccessContext
from app.auth.dependencies import User, get_current_user
from app.db.store import MemoryStore, Store, get_store, new_id
from app.llm import get_model_provider
from app.llm.base import ModelProvider, StructuredGeneration, TextGeneration, Usage
from app.models.workflow import Workflow

# Test users
TEST_USER_1_ID = "11111111-1111-1111-1111-111111111111"
TEST_USER_2_ID = "22222222-2222-2222-2222-222222222222"


class FakeProvider(ModelProvider):
    """
    Scripted provider.

    ``responses`` are consumed one per call: strings are returned as text,
    other values as JSON (text path) or as the object (structured path), and
    exceptions are raised. Once exhausted, calls answer ``"response <n>"``.
    """

    name = "fake"

    def __init__(
        self,
        responses: Optional[list[Any]] = None,
        *,
        structured: bool = False,
        delay: float = 0.0,
        usage: Optional[Usage] = None,
    ):
        self.responses = list(responses or [])
        self.structured = structured
        self.delay = delay
        self.usage = usage if usage is not None else Usage(input_tokens=100, output_tokens=50)
        self.calls: list[dict[str, Any]] = []

    async def _next(self, call: dict[str, Any]) -> Any:
        self.calls.append(call)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            return f"response {len(self.calls)}"
        value = self.responses.pop(0)
        if isinstance(value, BaseException):
            raise value
        return value

    async def generate_text(self, model, prompt, web_search_options=None):
        value = await self._next({
            "kind": "text",
            "model": model,
            "prompt": prompt,
            "web_search_options": web_search_options,
        })
        text = value if isinstance(value, str) else json.dumps(value)
        return TextGeneration(text=text, usage=self.usage)

    async def generate_structured(self, model, prompt, schema):
        value = await self._next({"kind": "structured", "model": model, "prompt": prompt, "schema": schema})
        return StructuredGeneration(object=value, usage=self.usage)

    def supports_structured_output(self, model):
        return self.structured


def input_node(text: str = "", node_id: str = "input-1", x: float = 100) -> dict[str, Any]:
    return {
        "id": node_id,
        "type": "input",
        "position": {"x": x, "y": 200},
        "data": {"textInput": text, "workflowId": "wf"},
    }


def ai_node(node_id: str, x: float, prompt: str = "Summarize", **data: Any) -> dict[str, Any]:
    return {
        "id": node_id,
        "type": "ai",
        "position": {"x": x, "y": 200},
        "data": {"prompt": prompt, "model": "gpt-4o-mini", "outputFormat": "text", **data},
    }


def edge(source: str, target: str) -> dict[str, Any]:
    return {"id": f"e-{source}-{target}", "source": source, "target": target}


def save_workflow(
    store: Store,
    nodes: list[dict[str, Any]],
    edges: Optional[list[dict[str, Any]]] = None,
    owner_id: str = TEST_USER_1_ID,
) -> Workflow:
    return store.create_workflow(Workflow(
        id=new_id(),
        name="Test Workflow",
        nodes=nodes,
        edges=edges or [],
        owner_id=owner_id,
    ))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def access():
    return AccessContext(owner_id=TEST_USER_1_ID)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(store, provider):
    from app.main import app

    app.dependency_overrides[get_current_user] = lambda: User(
        sub=TEST_USER_1_ID, email="test1@example.com", role="authenticated"
    )
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_model_provider] = lambda: provider
    yield TestClient(app)
    app.dependency_overrides.clear()
