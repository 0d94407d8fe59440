"""
Unit tests for the OpenAI wrapper.
"""

from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock

from prcast.services.llm_client import LLMClient
from prcast.utils.resilience import CircuitBreaker, CircuitBreakerOpenError


def openai_settings(**overrides):
    values = dict(
        openai_api_key="test_key",
        azure_openai_endpoint=None,
        azure_openai_api_key=None,
        azure_openai_deployment=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def llm_client():
    client = LLMClient(settings=openai_settings())
    client.client = MagicMock()
    client.client.chat.completions.create = AsyncMock(return_value=completion('  {"progress": 40}  '))
    client.client.audio.speech.create = AsyncMock(return_value=SimpleNamespace(content=b"ID3audio"))
    return client


@pytest.mark.asyncio
async def test_complete_json_mode(llm_client):
    result = await llm_client.complete("system", "user", model="gpt-4o-mini", max_tokens=50,
                                       temperature=0.3, json_mode=True)

    assert result == '{"progress": 40}'
    kwargs = llm_client.client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["messages"][0] == {"role": "system", "content": "system"}


@pytest.mark.asyncio
async def test_complete_without_content(llm_client):
    llm_client.client.chat.completions.create.return_value = completion(None)

    assert await llm_client.complete("s", "u", model="m", max_tokens=10, temperature=0) == ""
    assert "response_format" not in llm_client.client.chat.completions.create.call_args.kwargs


@pytest.mark.asyncio
async def test_synthesize_speech_writes_file(llm_client, tmp_path):
    output = tmp_path / "voice.mp3"

    await llm_client.synthesize_speech("Hello", output, model="gpt-4o-mini-tts", voice="alloy")

    assert output.read_bytes() == b"ID3audio"
    kwargs = llm_client.client.audio.speech.create.call_args.kwargs
    assert kwargs["voice"] == "alloy"
    assert kwargs["response_format"] == "mp3"


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures(llm_client):
    llm_client.circuit_breaker = CircuitBreaker(failure_threshold=2, timeout=60, name="test")
    llm_client.client.chat.completions.create.side_effect = Exception("500")

    for _ in range(2):
        with pytest.raises(Exception):
            await llm_client.complete("s", "u", model="m", max_tokens=10, temperature=0)

    with pytest.raises(CircuitBreakerOpenError):
        await llm_client.complete("s", "u", model="m", max_tokens=10, temperature=0)


def test_azure_uses_deployment_name():
    client = LLMClient(settings=openai_settings(
        azure_openai_endpoint="https://example.openai.azure.com",
        azure_openai_api_key="azure_key",
        azure_openai_deployment="gpt4o-prod",
    ))

    assert client.is_azure is True
    assert client._model("gpt-4o-mini") == "gpt4o-prod"
