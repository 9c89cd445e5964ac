"""Model-driven iteration strategy: provider contract, tools, prompts, driver."""

from ralph_orchestrator.synthesis_plane.agent import (
    LLMIterationOutcome,
    TaskContext,
    create_provider,
    execute_llm_iteration,
    interpret_response,
    load_task_context,
)
from ralph_orchestrator.synthesis_plane.tools import AGENT_TOOLS, ToolExecution, execute_tool_call

__all__ = [
    "AGENT_TOOLS",
    "LLMIterationOutcome",
    "TaskContext",
    "ToolExecution",
    "create_provider",
    "execute_llm_iteration",
    "execute_tool_call",
    "interpret_response",
    "load_task_context",
]
