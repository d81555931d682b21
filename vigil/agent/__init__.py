"""Agent invocation: the runner contract, its Claude adapter and the task runner."""

from vigil.agent.runner import (
    CHAT_CAPABILITIES,
    SYSTEM_CAPABILITIES,
    AgentEvent,
    AgentRequest,
    AgentRunner,
    Capability,
    ClaudeAgentRunner,
    parse_capabilities,
    resolve_capabilities,
)
from vigil.agent.task_runner import AgentTask, ProgressReporter, TaskResult, TaskRunner

__all__ = [
    "AgentEvent",
    "AgentRequest",
    "AgentRunner",
    "AgentTask",
    "CHAT_CAPABILITIES",
    "Capability",
    "ClaudeAgentRunner",
    "ProgressReporter",
    "SYSTEM_CAPABILITIES",
    "TaskResult",
    "TaskRunner",
    "parse_capabilities",
    "resolve_capabilities",
]
