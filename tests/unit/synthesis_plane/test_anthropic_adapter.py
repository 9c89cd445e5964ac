"""
Unit tests for the Anthropic chat adapter.

Coverage:
- Request payload mapping (system prompt, tools, temperature).
- Response normalization for text, tool_use blocks, stop reasons, usage.
- Error normalization and missing-credential handling.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from types import SimpleNamespace

import pytest

from ralph_orchestrator.config.schema import LLMConfig
from ralph_orchestrator.domain.models import TokenUsage
from ralph_orchestrator.synthesis_plane.providers.anthropic_adapter import (
    AnthropicChatProvider,
    map_stop_reason,
)
from ralph_orchestrator.synthesis_plane.providers.base import (
    ChatMessage,
    FinishReason,
    MessageRole,
    ProviderAuthenticationError,
    ProviderError,
    ToolDefinition,
)


@dataclass(slots=True)
class _ScriptedAnthropicMessages:
    outcomes: deque[object | Exception]
    calls: list[dict[str, object]] = field(default_factory=list)

    async def create(self, **kwargs: object) -> object:
        self.calls.append(dict(kwargs))
        if not self.outcomes:
            raise RuntimeError("scripted anthropic outcomes exhausted")
        outcome = self.outcomes.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass(slots=True)
class _FakeAnthropicClient:
    messages: _ScriptedAnthropicMessages


def _provider(
    *outcomes: object | Exception,
) -> tuple[AnthropicChatProvider, _FakeAnthropicClient]:
    client = _FakeAnthropicClient(_ScriptedAnthropicMessages(deque(outcomes)))
    provider = AnthropicChatProvider.from_config(
        LLMConfig(enabled=True, model="claude-test", max_tokens=256, temperature=0.0),
        client=client,
    )
    return provider, client


_MESSAGES = (
    ChatMessage(MessageRole.SYSTEM, "be careful"),
    ChatMessage(MessageRole.USER, "do the task"),
)
_TOOLS = (ToolDefinition(name="read_file", description="Read", parameters={"type": "object"}),)


@pytest.mark.unit
async def test_payload_maps_system_and_tools() -> None:
    provider, client = _provider({"content": [], "stop_reason": "end_turn"})

    await provider.chat(_MESSAGES, _TOOLS)

    [call] = client.messages.calls
    assert call["model"] == "claude-test"
    assert call["max_tokens"] == 256
    assert call["temperature"] == 0.0
    assert call["system"] == "be careful"
    assert call["messages"] == [{"role": "user", "content": "do the task"}]
    assert call["tools"] == [
        {"name": "read_file", "description": "Read", "input_schema": {"type": "object"}}
    ]


@pytest.mark.unit
async def test_response_normalization_from_sdk_objects() -> None:
    raw = SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text="Writing the file."),
            SimpleNamespace(
                type="tool_use",
                id="toolu_1",
                name="write_file",
                input={"path": "src/a.ts", "content": "x"},
            ),
        ],
        stop_reason="tool_use",
        usage=SimpleNamespace(input_tokens=120, output_tokens=30),
    )
    provider, _ = _provider(raw)

    response = await provider.chat(_MESSAGES, _TOOLS)

    assert response.content == "Writing the file."
    assert response.finish_reason is FinishReason.TOOL_CALLS
    assert [(c.name, c.call_id) for c in response.tool_calls] == [("write_file", "toolu_1")]
    assert response.tool_calls[0].arguments == {"path": "src/a.ts", "content": "x"}
    assert response.usage == TokenUsage(input_tokens=120, output_tokens=30)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("stop_reason", "expected"),
    [
        ("end_turn", FinishReason.STOP),
        ("stop_sequence", FinishReason.STOP),
        ("tool_use", FinishReason.TOOL_CALLS),
        ("max_tokens", FinishReason.LENGTH),
        ("refusal", FinishReason.ERROR),
        (None, FinishReason.ERROR),
    ],
)
def test_map_stop_reason(stop_reason: str | None, expected: FinishReason) -> None:
    assert map_stop_reason(stop_reason) is expected


@pytest.mark.unit
async def test_transport_errors_are_normalized() -> None:
    provider, _ = _provider(ConnectionError("socket   closed"))

    with pytest.raises(ProviderError) as excinfo:
        await provider.chat(_MESSAGES, _TOOLS)

    assert excinfo.value.code == "request_failed"
    assert excinfo.value.detail == "socket closed"


@pytest.mark.unit
async def test_missing_api_key_is_authentication_error(monkeypatch: pytest.MonkeyPatch) -> None:
    pytest.importorskip("anthropic")
    monkeypatch.delenv("RALPH_TEST_MISSING_KEY", raising=False)
    provider = AnthropicChatProvider(model="claude-test", api_key_env="RALPH_TEST_MISSING_KEY")

    with pytest.raises(ProviderAuthenticationError):
        await provider.chat(_MESSAGES, _TOOLS)


@pytest.mark.unit
def test_constructor_validation() -> None:
    with pytest.raises(ValueError, match="model"):
        AnthropicChatProvider(model="  ")
    with pytest.raises(ValueError, match="max_tokens"):
        AnthropicChatProvider(model="m", max_tokens=0)
