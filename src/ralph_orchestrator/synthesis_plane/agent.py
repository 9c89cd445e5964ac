"""
ralph-orchestrator — LLM iteration driver

Purpose
- Run one model-driven iteration: build prompts, call the provider, execute
  tool calls through the executor, interpret the outcome.

Functional requirements
- ``interpret_response`` precedence: task_complete > task_blocked > error
  finish reason > stop without tool calls > length > default continue.
- Missing spec or agent-instruction files are not errors.
- ``create_provider`` returns ``None`` when the LLM is disabled.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from ralph_orchestrator.domain.models import (
    IterationBlocked,
    IterationComplete,
    IterationContinue,
    IterationFailed,
    IterationResult,
)
from ralph_orchestrator.synthesis_plane.prompts import (
    build_iteration_prompt,
    build_system_prompt,
    prompt_hash,
)
from ralph_orchestrator.synthesis_plane.providers.anthropic_adapter import AnthropicChatProvider
from ralph_orchestrator.synthesis_plane.providers.base import (
    ChatMessage,
    ChatProvider,
    ChatResponse,
    FinishReason,
    MessageRole,
    ProviderUnavailableError,
    ToolCall,
)
from ralph_orchestrator.synthesis_plane.tools import (
    AGENT_TOOLS,
    TASK_BLOCKED,
    TASK_COMPLETE,
    ToolExecutor,
    artifacts_argument,
    blocker_argument,
    execute_tool_call,
)

if TYPE_CHECKING:
    from ralph_orchestrator.config.schema import LLMConfig
    from ralph_orchestrator.domain.models import Action, Task, TokenUsage

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TaskContext:
    spec_content: str | None = None
    agent_instructions: str | None = None


@dataclass(frozen=True, slots=True)
class LLMIterationOutcome:
    result: IterationResult
    actions: tuple[Action, ...]
    usage: TokenUsage | None = None


def interpret_response(
    response: ChatResponse, executed_calls: Sequence[ToolCall]
) -> IterationResult:
    usage = response.usage
    complete = next((call for call in executed_calls if call.name == TASK_COMPLETE), None)
    if complete is not None:
        return IterationComplete(artifacts=artifacts_argument(complete.arguments), usage=usage)
    blocked = next((call for call in executed_calls if call.name == TASK_BLOCKED), None)
    if blocked is not None:
        return IterationBlocked(blocker=blocker_argument(blocked.arguments), usage=usage)

    if response.finish_reason is FinishReason.ERROR:
        return IterationFailed(error=response.content or "LLM returned an error", usage=usage)
    if response.finish_reason is FinishReason.STOP and not executed_calls:
        return IterationContinue(
            reason=response.content or "LLM stopped without actions", usage=usage
        )
    if response.finish_reason is FinishReason.LENGTH:
        return IterationContinue(reason="Response truncated due to token limit", usage=usage)
    return IterationContinue(reason=response.content or "Actions executed, continuing", usage=usage)


async def load_task_context(
    executor: ToolExecutor, task: Task, agent_instructions_path: str | None = None
) -> TaskContext:
    spec_content: str | None = None
    agent_instructions: str | None = None
    if task.spec:
        try:
            spec_content = await executor.read_file(task.spec)
        except OSError as exc:
            logger.debug("task_spec_unavailable", task_id=task.id, spec=task.spec, error=str(exc))
    if agent_instructions_path:
        try:
            agent_instructions = await executor.read_file(agent_instructions_path)
        except OSError as exc:
            logger.debug(
                "agent_instructions_unavailable", path=agent_instructions_path, error=str(exc)
            )
    return TaskContext(spec_content=spec_content, agent_instructions=agent_instructions)


async def execute_llm_iteration(
    provider: ChatProvider,
    executor: ToolExecutor,
    task: Task,
    iteration: int,
    *,
    context: TaskContext | None = None,
    previous_result: str | None = None,
    history: Sequence[ChatMessage] = (),
) -> LLMIterationOutcome:
    """Call the provider once and execute the returned tool calls in order."""

    ctx = context if context is not None else TaskContext()
    user_prompt = build_iteration_prompt(
        task,
        iteration,
        spec_content=ctx.spec_content,
        agent_instructions=ctx.agent_instructions,
        previous_result=previous_result,
    )
    messages = [
        ChatMessage(MessageRole.SYSTEM, build_system_prompt()),
        *history,
        ChatMessage(MessageRole.USER, user_prompt),
    ]
    logger.debug(
        "llm_iteration_prompt",
        task_id=task.id,
        iteration=iteration,
        prompt_sha256=prompt_hash(user_prompt),
    )

    response = await provider.chat(messages, AGENT_TOOLS)

    actions: list[Action] = []
    executed: list[ToolCall] = []
    for call in response.tool_calls:
        executed.append(call)
        execution = await execute_tool_call(executor, call)
        actions.append(execution.action)

    result = interpret_response(response, executed)
    return LLMIterationOutcome(result=result, actions=tuple(actions), usage=response.usage)


def create_provider(llm: LLMConfig) -> ChatProvider | None:
    if not llm.enabled:
        return None
    if llm.provider == "anthropic":
        return AnthropicChatProvider.from_config(llm)
    raise ProviderUnavailableError(f"unsupported provider {llm.provider!r}", provider=llm.provider)


__all__ = [
    "LLMIterationOutcome",
    "TaskContext",
    "create_provider",
    "execute_llm_iteration",
    "interpret_response",
    "load_task_context",
]
