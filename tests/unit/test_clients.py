"""
Tests for the LLM and embedding clients with mocked provider SDKs.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from ragchat.shared.embeddings import EmbeddingClient
from ragchat.shared.exceptions import EmbeddingError, GenerationError
from ragchat.shared.llm import SYSTEM_PROMPT, LLMClient


def openai_response(text, prompt_tokens=120, completion_tokens=11):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


@pytest.fixture
def openai_llm():
    llm = LLMClient(provider="openai", model="gpt-4o-mini", api_key="test-key")
    llm.client = MagicMock()
    llm.client.chat.completions.create = AsyncMock(
        return_value=openai_response("The Road-150 costs $3578.27.")
    )
    return llm


@pytest.mark.asyncio
async def test_openai_completion_reports_usage(openai_llm):
    completion = await openai_llm.complete('{"name": "Road-150"}', "\nHow much?", session_id="s1")

    assert completion.text == "The Road-150 costs $3578.27."
    assert completion.prompt_tokens == 120
    assert completion.completion_tokens == 11

    kwargs = openai_llm.client.chat.completions.create.await_args.kwargs
    assert kwargs["messages"][0] == {
        "role": "system", "content": SYSTEM_PROMPT + '\n{"name": "Road-150"}'
    }
    assert kwargs["messages"][1] == {"role": "user", "content": "\nHow much?"}
    assert kwargs["user"] == "s1"


@pytest.mark.asyncio
async def test_openai_failure_is_generation_error(openai_llm):
    openai_llm.client.chat.completions.create.side_effect = RuntimeError("429 rate limited")

    with pytest.raises(GenerationError):
        await openai_llm.complete("", "hi")


@pytest.mark.asyncio
async def test_summarize_strips_label(openai_llm):
    openai_llm.client.chat.completions.create.return_value = openai_response(" Touring bikes\n")

    assert await openai_llm.summarize("What touring bikes do you have?") == "Touring bikes"


@pytest.mark.asyncio
async def test_anthropic_completion_reports_usage():
    llm = LLMClient(provider="anthropic", model="claude-3-5-haiku-latest", api_key="test-key")
    llm.client = MagicMock()
    llm.client.messages.create = AsyncMock(return_value=SimpleNamespace(
        content=[SimpleNamespace(text="We sell three touring bikes.")],
        usage=SimpleNamespace(input_tokens=200, output_tokens=7),
    ))

    completion = await llm.complete("records", "\nWhat touring bikes?")

    assert completion.prompt_tokens == 200
    assert completion.completion_tokens == 7
    assert llm.client.messages.create.await_args.kwargs["system"] == SYSTEM_PROMPT + "\nrecords"


def test_unknown_provider():
    with pytest.raises(GenerationError):
        LLMClient(provider="cohere", api_key="test-key")


@pytest.mark.asyncio
async def test_openai_embedding_returns_vector_and_tokens():
    embedder = EmbeddingClient(provider="openai", model="text-embedding-ada-002", api_key="test-key")
    embedder.client = MagicMock()
    embedder.client.embeddings.create = AsyncMock(return_value=SimpleNamespace(
        data=[SimpleNamespace(embedding=[0.1, 0.2, 0.3])],
        usage=SimpleNamespace(prompt_tokens=5),
    ))

    vector, tokens = await embedder.embed("touring bikes")

    assert vector == [0.1, 0.2, 0.3]
    assert tokens == 5


@pytest.mark.asyncio
async def test_embedding_failure_is_embedding_error():
    embedder = EmbeddingClient(provider="openai", api_key="test-key")
    embedder.client = MagicMock()
    embedder.client.embeddings.create = AsyncMock(side_effect=RuntimeError("unavailable"))

    with pytest.raises(EmbeddingError):
        await embedder.embed("touring bikes")
