"""Chat provider contract and adapters."""

from ralph_orchestrator.synthesis_plane.providers.anthropic_adapter import AnthropicChatProvider
from ralph_orchestrator.synthesis_plane.providers.base import (
    ChatMessage,
    ChatProvider,
    ChatResponse,
    FinishReason,
    LLMUsage,
    MessageRole,
    ProviderAuthenticationError,
    ProviderError,
    ProviderUnavailableError,
    ToolCall,
    ToolDefinition,
)

__all__ = [
    "AnthropicChatProvider",
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
