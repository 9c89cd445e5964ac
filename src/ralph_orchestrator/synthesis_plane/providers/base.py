"""
ralph-orchestrator — provider base models

Purpose
- Provider-neutral chat contract used by the iteration driver: messages, tool
  definitions, tool calls, normalized responses and errors.

Functional requirements
- ``FinishReason`` is closed: stop, tool_calls, length, error.
- Providers raise ``ProviderError`` subclasses; the loop converts any provider
  exception into a failed iteration.

Non-functional requirements
- Adding a provider must not require touching the loop.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol, runtime_checkable

from ralph_orchestrator.domain.models import JSONValue, TokenUsage

LLMUsage = TokenUsage


def _validate_non_empty_str(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} cannot be empty")
    return normalized


class MessageRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(StrEnum):
    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: MessageRole
    content: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", MessageRole(self.role))
        if not isinstance(self.content, str):
            raise TypeError("ChatMessage.content must be a string")


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Tool contract exposed to providers that support tool calling."""

    name: str
    description: str
    parameters: Mapping[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _validate_non_empty_str(self.name, "ToolDefinition.name"))


@dataclass(frozen=True, slots=True)
class ToolCall:
    """Normalized tool call emitted by providers."""

    name: str
    arguments: Mapping[str, JSONValue] = field(default_factory=dict)
    call_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _validate_non_empty_str(self.name, "ToolCall.name"))
        if not isinstance(self.arguments, Mapping):
            raise TypeError("ToolCall.arguments must be a mapping")

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {"name": self.name, "arguments": dict(self.arguments)}
        if self.call_id is not None:
            payload["call_id"] = self.call_id
        return payload


@dataclass(frozen=True, slots=True)
class ChatResponse:
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    finish_reason: FinishReason = FinishReason.STOP
    usage: LLMUsage | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        object.__setattr__(self, "finish_reason", FinishReason(self.finish_reason))


@runtime_checkable
class ChatProvider(Protocol):
    """Structural interface every chat provider implements."""

    async def chat(
        self, messages: Sequence[ChatMessage], tools: Sequence[ToolDefinition]
    ) -> ChatResponse: ...


class ProviderError(RuntimeError):
    """Normalized provider error with a machine-readable code."""

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        code: str = "provider_error",
        retryable: bool = False,
    ) -> None:
        self.provider = provider
        self.code = code
        self.detail = " ".join(detail.split()) or code
        self.retryable = retryable
        super().__init__(f"{provider}: {self.detail}")


class ProviderUnavailableError(ProviderError):
    """Raised when the provider runtime or SDK is unavailable."""

    def __init__(self, detail: str, *, provider: str = "provider") -> None:
        super().__init__(detail, provider=provider, code="unavailable")


class ProviderAuthenticationError(ProviderError):
    def __init__(self, detail: str, *, provider: str = "provider") -> None:
        super().__init__(detail, provider=provider, code="authentication")


__all__ = [
    "ChatMessage",
    "ChatProvider",
    "ChatResponse",
    "FinishReason",
    "LLMUsage",
    "MessageRole",
    "ProviderAuthenticationError",
    "ProviderError",
    "ProviderUnavailableError",
    "ToolCall",
    "ToolDefinition",
]
