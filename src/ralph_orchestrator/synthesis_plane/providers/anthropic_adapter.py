"""
ralph-orchestrator — Anthropic provider adapter

Purpose
- Chat provider over the Anthropic messages API.

What should be included in this file
- Lazy SDK import (``anthropic`` is an optional extra) with injected client support.
- Message mapping: system messages become the top-level ``system`` field.
- Stop-reason and token-usage mapping onto the provider-neutral contract.

Non-functional requirements
- No secrets in logs; the API key is read from the configured env var only.
"""

from __future__ import annotations

import importlib
import os
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Protocol, cast

import structlog

from ralph_orchestrator.domain.models import JSONValue, TokenUsage
from ralph_orchestrator.synthesis_plane.providers.base import (
    ChatMessage,
    ChatResponse,
    FinishReason,
    MessageRole,
    ProviderAuthenticationError,
    ProviderError,
    ProviderUnavailableError,
    ToolCall,
    ToolDefinition,
)

if TYPE_CHECKING:
    from ralph_orchestrator.config.schema import LLMConfig

_STOP_REASONS: dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_use": FinishReason.TOOL_CALLS,
    "max_tokens": FinishReason.LENGTH,
}

logger = structlog.get_logger(__name__)


class _AnthropicMessagesAPI(Protocol):
    async def create(self, **kwargs: object) -> object: ...


class _AnthropicClient(Protocol):
    messages: _AnthropicMessagesAPI


class AnthropicChatProvider:
    """Anthropic messages adapter with optional SDK dependency and injected client support."""

    provider_name = "anthropic"

    def __init__(
        self,
        *,
        model: str,
        api_key_env: str = "ANTHROPIC_API_KEY",
        max_tokens: int = 4096,
        temperature: float | None = None,
        client: _AnthropicClient | None = None,
    ) -> None:
        if not model.strip():
            raise ValueError("model cannot be empty")
        if max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        self.model = model.strip()
        self._api_key_env = api_key_env
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client = client

    @classmethod
    def from_config(
        cls, llm: LLMConfig, *, client: _AnthropicClient | None = None
    ) -> AnthropicChatProvider:
        return cls(
            model=llm.model,
            api_key_env=llm.api_key_env,
            max_tokens=llm.max_tokens,
            temperature=llm.temperature,
            client=client,
        )

    async def chat(
        self, messages: Sequence[ChatMessage], tools: Sequence[ToolDefinition]
    ) -> ChatResponse:
        client = self._ensure_client()
        payload = self._build_payload(messages, tools)
        try:
            raw = await client.messages.create(**payload)
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001 - normalize SDK/transport failures.
            raise ProviderError(
                _exception_detail(exc), provider=self.provider_name, code="request_failed"
            ) from exc
        response = _normalize_response(raw)
        logger.debug(
            "provider_chat_completed",
            provider=self.provider_name,
            model=self.model,
            finish_reason=response.finish_reason.value,
            tool_calls=len(response.tool_calls),
        )
        return response

    def _ensure_client(self) -> _AnthropicClient:
        if self._client is not None:
            return self._client
        self._client = self._create_default_client()
        return self._client

    def _create_default_client(self) -> _AnthropicClient:
        try:
            anthropic_module = importlib.import_module("anthropic")
        except ImportError as exc:
            raise ProviderUnavailableError(
                "anthropic SDK is not installed", provider=self.provider_name
            ) from exc

        async_anthropic = getattr(anthropic_module, "AsyncAnthropic", None)
        if async_anthropic is None:
            raise ProviderUnavailableError(
                "anthropic SDK does not expose AsyncAnthropic", provider=self.provider_name
            )
        api_key = os.getenv(self._api_key_env)
        if api_key is None or not api_key.strip():
            raise ProviderAuthenticationError(
                f"missing Anthropic API key in configured env var {self._api_key_env}",
                provider=self.provider_name,
            )
        return cast("_AnthropicClient", async_anthropic(api_key=api_key))

    def _build_payload(
        self, messages: Sequence[ChatMessage], tools: Sequence[ToolDefinition]
    ) -> dict[str, object]:
        system_parts: list[str] = []
        api_messages: list[dict[str, object]] = []
        for message in messages:
            if message.role is MessageRole.SYSTEM:
                system_parts.append(message.content)
            else:
                api_messages.append({"role": message.role.value, "content": message.content})

        payload: dict[str, object] = {
            "model": self.model,
            "max_tokens": self._max_tokens,
            "messages": api_messages,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if self._temperature is not None:
            payload["temperature"] = self._temperature
        if tools:
            payload["tools"] = [_tool_definition_payload(tool) for tool in tools]
        return payload


def map_stop_reason(stop_reason: str | None) -> FinishReason:
    if stop_reason is None:
        return FinishReason.ERROR
    return _STOP_REASONS.get(stop_reason, FinishReason.ERROR)


def _tool_definition_payload(tool: ToolDefinition) -> dict[str, object]:
    return {
        "name": tool.name,
        "description": tool.description,
        "input_schema": dict(tool.parameters),
    }


def _normalize_response(raw: object) -> ChatResponse:
    text_chunks: list[str] = []
    tool_calls: list[ToolCall] = []
    for item in _read_sequence(raw, "content"):
        item_type = (_read_str(item, "type") or "").lower()
        if item_type == "text":
            text = _read_str(item, "text")
            if text:
                text_chunks.append(text)
        elif item_type == "tool_use":
            name = _read_str(item, "name")
            if name is None:
                raise ProviderError(
                    "tool_use block missing name", provider="anthropic", code="bad_response"
                )
            arguments = _read_value(item, "input")
            tool_calls.append(
                ToolCall(
                    name=name,
                    arguments=(
                        cast("Mapping[str, JSONValue]", arguments)
                        if isinstance(arguments, Mapping)
                        else {}
                    ),
                    call_id=_read_str(item, "id"),
                )
            )

    return ChatResponse(
        content="\n".join(text_chunks),
        tool_calls=tuple(tool_calls),
        finish_reason=map_stop_reason(_read_str(raw, "stop_reason")),
        usage=_normalize_usage(raw),
    )


def _normalize_usage(raw: object) -> TokenUsage | None:
    usage = _read_value(raw, "usage")
    if usage is None:
        return None
    return TokenUsage(
        input_tokens=_read_int(usage, "input_tokens") or 0,
        output_tokens=_read_int(usage, "output_tokens") or 0,
    )


def _exception_detail(exc: BaseException) -> str:
    text = str(exc).strip()
    if text:
        return " ".join(text.split())
    return exc.__class__.__name__


def _read_value(value: object, key: str) -> object | None:
    if isinstance(value, Mapping):
        return cast("object | None", value.get(key))
    return cast("object | None", getattr(value, key, None))


def _read_sequence(value: object, key: str) -> tuple[object, ...]:
    candidate = _read_value(value, key)
    if isinstance(candidate, Sequence) and not isinstance(candidate, (str, bytes, bytearray)):
        return tuple(candidate)
    return ()


def _read_str(value: object, key: str) -> str | None:
    candidate = _read_value(value, key)
    if isinstance(candidate, str) and candidate.strip():
        return candidate
    return None


def _read_int(value: object, key: str) -> int | None:
    candidate = _read_value(value, key)
    if isinstance(candidate, int) and not isinstance(candidate, bool):
        return candidate
    return None


__all__ = ["AnthropicChatProvider", "map_stop_reason"]
