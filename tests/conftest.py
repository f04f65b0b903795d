"""
Pytest configuration and fixtures for icracy tests.

This module provides sample catalog data, an in-memory store and helpers for
testing the assembly without making actual API calls.
"""

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from icracy.engine.events import EventBus
from icracy.engine.models import DelegateOutcome
from icracy.errors import DelegateCallFailed
from icracy.storage.store import Store

# =============================================================================
# Sample Catalog Data
# =============================================================================

SAMPLE_TIMESTAMP = "2026-01-05T12:00:00.000Z"

SAMPLE_DELEGATES = [
    ("openai/gpt-4o-mini", "GPT-4o Mini", "openai"),
    ("anthropic/claude-3.5-sonnet", "Claude Sonnet", "anthropic"),
    ("google/gemini-2.0-flash", "Gemini Flash", "google"),
    ("meta-llama/llama-3.1-70b-instruct", "Llama 3.1 70B", "meta-llama"),
    ("mistralai/mistral-large", "Mistral Large", "mistralai"),
    ("deepseek/deepseek-chat", "DeepSeek V3", "deepseek"),
    ("x-ai/grok-2", "Grok 2", "x-ai"),
]

SAMPLE_MODEL_IDS = [model_id for model_id, _, _ in SAMPLE_DELEGATES]

SAMPLE_RANKINGS_HTML = """
<div class="ranking">
  <a href="/openai/gpt-4o-mini">GPT-4o-mini</a>
  <span>by openai</span>
  <div>1.2B<!-- --> tokens</div>
</div>
<div class="ranking">
  <a href="/deepseek/deepseek-chat">DeepSeek: V3</a>
  <div>850M<!-- --> tokens</div>
</div>
<div class="ranking">
  <a href="/openai/gpt-4o-mini">GPT-4o-mini (again)</a>
  <div>1.2B<!-- --> tokens</div>
</div>
<div class="ranking">
  <a href="/google/gemini-2.0-flash">Gemini 2.0 Flash</a>
  <div>12.5K<!-- --> tokens</div>
</div>
"""

SAMPLE_MODEL_CATALOG = [
    {
        "id": "openai/gpt-4o-mini",
        "name": "OpenAI: GPT-4o-mini",
        "context_length": 128000,
        "pricing": {"prompt": "0.00000015", "completion": "0.0000006"},
    },
    {
        "id": "deepseek/deepseek-chat:free",
        "name": "DeepSeek: V3 (free)",
        "context_length": 64000,
        "pricing": {"prompt": "0", "completion": "0"},
    },
]

SAMPLE_JSON_OUTPUT = json.dumps(
    {
        "vote": "Idiotic",
        "confidence": 72,
        "argument": "Enforcement would be uneven across member states.",
        "rebuttal": "Supporters cite reduced ocean pollution.",
    }
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def offline_delegates():
    """Force the offline delegate path unless a test opts in to OpenRouter."""
    with patch("icracy.engine.delegates.OPENROUTER_API_KEY", None):
        yield


@pytest.fixture
def store() -> Store:
    """Return an empty in-memory store with the schema created."""
    store = Store("sqlite://")
    store.create_all()
    yield store
    store.dispose()


@pytest.fixture
def seeded_store(store: Store) -> Store:
    """Return a store with the sample catalog and one user."""
    store.upsert_delegate_models(make_catalog_rows(SAMPLE_DELEGATES))
    store.ensure_user("user-1", "alice", "Alice")
    return store


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def mock_query_delegate():
    """
    Fixture that patches query_delegate in the orchestrator.

    Usage:
        def test_something(mock_query_delegate):
            mock_query_delegate.side_effect = scripted_delegates({...})
    """
    with patch("icracy.engine.debate.query_delegate", new_callable=AsyncMock) as mock:
        yield mock


# =============================================================================
# Helper Functions
# =============================================================================


def make_catalog_rows(delegates: list[tuple[str, str, str]]) -> list[dict[str, Any]]:
    """Create catalog rows ranked in list order."""
    return [
        {
            "id": model_id,
            "slug": model_id,
            "display_name": name,
            "provider": provider,
            "weekly_tokens": None,
            "weekly_tokens_text": "n/a",
            "context_length": None,
            "prompt_price": None,
            "completion_price": None,
            "rank_position": rank,
            "source_updated_at": SAMPLE_TIMESTAMP,
        }
        for rank, (model_id, name, provider) in enumerate(delegates, start=1)
    ]


def make_outcome(model_id: str, vote: str, confidence: int, argument: str = "") -> DelegateOutcome:
    """Create a successful delegate outcome."""
    return DelegateOutcome(
        model_id=model_id,
        vote=vote,
        confidence=confidence,
        argument=argument or f"{model_id} votes {vote}.",
        rebuttal="",
        raw=json.dumps({"vote": vote, "confidence": confidence}),
    )


def scripted_delegates(script: dict[str, Any]):
    """
    Build a query_delegate side effect from a script.

    Each model id maps to a (vote, confidence) tuple, an exception to raise,
    or a float delay paired with a result: (delay, (vote, confidence)).
    """

    async def fake(model_id: str, title: str, body: str) -> DelegateOutcome:
        entry = script[model_id]
        if isinstance(entry, tuple) and len(entry) == 2 and isinstance(entry[0], float):
            delay, entry = entry
            await asyncio.sleep(delay)
        if isinstance(entry, BaseException):
            raise entry
        vote, confidence = entry
        return make_outcome(model_id, vote, confidence)

    return fake


def fail(model_id: str, reason: str = "HTTP 502 upstream error") -> DelegateCallFailed:
    return DelegateCallFailed(model_id, reason)


def make_http_response(status_code: int = 200, json_data: Any = None, text: str = "") -> MagicMock:
    """Create a mock httpx response."""
    response = MagicMock()
    response.status_code = status_code
    response.text = text or (json.dumps(json_data) if json_data is not None else "")
    response.json.return_value = json_data
    response.raise_for_status = MagicMock()
    return response


def mock_async_client(mock_client: MagicMock, **methods: Any) -> AsyncMock:
    """Wire a patched httpx.AsyncClient so `async with` yields an instance with ``methods``."""
    instance = AsyncMock()
    for name, value in methods.items():
        setattr(instance, name, value)
    mock_client.return_value.__aenter__.return_value = instance
    return instance
