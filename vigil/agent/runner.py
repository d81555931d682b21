"""Agent runner contract and the claude-agent-sdk implementation.

The core only sees AgentRunner.invoke(): a finite, non-restartable async
stream of AgentEvent values. ClaudeAgentRunner translates SDK messages
into that stream:

- ToolUseBlock                      -> AgentEvent(type="tool_start")
- TextBlock                         -> AgentEvent(type="text")
- SystemMessage(init)/ResultMessage -> AgentEvent(type="session")
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Protocol

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKError,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolUseBlock,
    query,
)

from vigil.config import Settings
from vigil.errors import AgentInvocationError, ConfigurationError

logger = logging.getLogger(__name__)

AgentEventType = Literal["tool_start", "text", "session"]


class Capability(str, Enum):
    """Agent tools a call may use."""

    BASH = "Bash"
    READ = "Read"
    EDIT = "Edit"
    WRITE = "Write"
    GLOB = "Glob"
    GREP = "Grep"
    TASK = "Task"
    WEB_FETCH = "WebFetch"
    WEB_SEARCH = "WebSearch"
    SKILL = "Skill"
    ASK_USER_QUESTION = "AskUserQuestion"
    NOTEBOOK_EDIT = "NotebookEdit"


# Unattended runs cannot ask the user anything.
SYSTEM_CAPABILITIES: frozenset[Capability] = frozenset(
    {
        Capability.BASH,
        Capability.READ,
        Capability.EDIT,
        Capability.WRITE,
        Capability.GLOB,
        Capability.GREP,
        Capability.TASK,
        Capability.WEB_FETCH,
        Capability.WEB_SEARCH,
        Capability.SKILL,
    }
)
CHAT_CAPABILITIES: frozenset[Capability] = frozenset(Capability)


def parse_capabilities(names: Iterable[str]) -> frozenset[Capability]:
    """Map tool names to capabilities; unknown names raise ValueError."""
    result: set[Capability] = set()
    for name in names:
        try:
            result.add(Capability(name))
        except ValueError:
            raise ValueError(f"Unsupported agent capability: {name!r}") from None
    return frozenset(result)


def resolve_capabilities(names: str, default: frozenset[Capability]) -> frozenset[Capability]:
    """Comma-separated tool names from settings, or default when empty."""
    parts = [n.strip() for n in names.split(",") if n.strip()]
    if not parts:
        return default
    try:
        return parse_capabilities(parts)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


@dataclass
class AgentRequest:
    prompt: str
    working_directory: str
    session_handle: str | None = None
    capabilities: frozenset[Capability] = field(default_factory=lambda: SYSTEM_CAPABILITIES)


@dataclass
class AgentEvent:
    """A single element of the agent stream."""

    type: AgentEventType
    text: str = ""
    tool_name: str = ""
    session_handle: str = ""


class AgentRunner(Protocol):
    def invoke(self, request: AgentRequest) -> AsyncIterator[AgentEvent]: ...


class ClaudeAgentRunner:
    """Runs requests through claude_agent_sdk.query()."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _build_options(self, request: AgentRequest) -> ClaudeAgentOptions:
        options = ClaudeAgentOptions(
            cwd=request.working_directory,
            allowed_tools=sorted(c.value for c in request.capabilities),
            permission_mode="bypassPermissions",
        )
        if request.session_handle:
            options.resume = request.session_handle
        if self._settings.agent_model:
            options.model = self._settings.agent_model
        return options

    async def invoke(self, request: AgentRequest) -> AsyncIterator[AgentEvent]:
        options = self._build_options(request)
        try:
            async for message in query(prompt=request.prompt, options=options):
                for event in _translate(message):
                    yield event
        except ClaudeSDKError as exc:
            raise AgentInvocationError(f"Agent call failed: {exc}") from exc


def _translate(message: object) -> list[AgentEvent]:
    """Map one SDK message to zero or more AgentEvents."""
    if isinstance(message, SystemMessage):
        if message.subtype == "init":
            session_id = (message.data or {}).get("session_id")
            if session_id:
                return [AgentEvent(type="session", session_handle=session_id)]
        return []

    if isinstance(message, AssistantMessage):
        events: list[AgentEvent] = []
        for block in message.content:
            if isinstance(block, ToolUseBlock):
                events.append(AgentEvent(type="tool_start", tool_name=block.name))
            elif isinstance(block, TextBlock):
                events.append(AgentEvent(type="text", text=block.text))
        return events

    if isinstance(message, ResultMessage):
        if message.is_error:
            raise AgentInvocationError(f"Agent reported an error: {message.result or message.subtype}")
        if message.session_id:
            return [AgentEvent(type="session", session_handle=message.session_id)]
        return []

    # User/tool-result echoes and stream deltas carry nothing we track.
    return []
