"""Loop driver for one secondary-agent session.

A session owns its transcript and runs strictly sequentially:

    BUILD_SYSTEM_PROMPT -> AWAIT_MODEL -> PARSE -> DISPATCH_TOOL | HANDLE_REFUSAL | HANDLE_NO_CALL
                        ^___________________________________________|            -> DONE | ERROR

Every pass through AWAIT_MODEL consumes one turn, and the loop can never run
past ``turn_limit`` turns. On the last allowed turn a reply without a tool call
is accepted as final even without the completion marker.
"""
from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Callable, Optional

from subagent_delegate.agent.dispatcher import ToolDispatcher
from subagent_delegate.agent.grammar import has_completion_marker, parse_tool_call, strip_turn_markers
from subagent_delegate.agent.prompt_builder import build_system_prompt, build_task_message
from subagent_delegate.agent.refusal import REFUSAL_CORRECTION, RefusalDetector
from subagent_delegate.config import DelegationConfig
from subagent_delegate.domain.contracts import ChatClient
from subagent_delegate.domain.transcript import SessionResult, SessionState
from subagent_delegate.observability.structured_log import log_json, log_json_warning
from subagent_delegate.providers.chat_completions import ChatTransportError
from subagent_delegate.tools import ToolContext, ToolRegistry, build_tool_registry
from subagent_delegate.util import preview, truncate

logger = logging.getLogger(__name__)

NO_CALL_NUDGE = (
    "SYSTEM NOTICE: No tool call detected. If you are finished, output 'TASK_COMPLETED'. "
    "If not, call a tool (e.g. save_file, read_file) to proceed."
)
MAX_TOOL_OUTPUT_CHARS = 20_000

RegistryFactory = Callable[[DelegationConfig, bool], ToolRegistry]


class AgentSession:
    """Runs one delegated task against a chat-completion endpoint."""

    def __init__(
        self,
        client: ChatClient,
        config: DelegationConfig,
        registry_factory: RegistryFactory = build_tool_registry,
        refusal_detector: Optional[RefusalDetector] = None,
    ) -> None:
        self._client = client
        self._config = config
        self._registry_factory = registry_factory
        self._refusal = refusal_detector or RefusalDetector()

    async def run(
        self,
        persona: str,
        task: str,
        context: str = "",
        turn_limit: int = 8,
        force_tools_enabled: bool = False,
        working_directory: Optional[Path] = None,
        allow_tools: bool = False,
    ) -> SessionResult:
        workspace = (working_directory or Path.cwd()).expanduser().resolve()
        session_id = uuid.uuid4().hex[:12]
        tools_enabled = bool(allow_tools or force_tools_enabled)
        registry = self._registry_factory(self._config, tools_enabled)
        allowed = registry.enabled_names() if tools_enabled else []
        dispatcher = ToolDispatcher(
            registry,
            ToolContext(
                workspace_root=workspace,
                code_timeout_sec=self._config.code_timeout_sec,
                session_id=session_id,
            ),
        )

        state = SessionState(turn_limit=max(1, int(turn_limit)))
        state.append(
            "system",
            build_system_prompt(
                working_directory=workspace,
                persona=persona,
                profiles=self._config.profiles,
                allowed_tools=allowed,
                tool_lines=registry.describe_enabled() if allowed else None,
            ),
        )
        state.append("user", build_task_message(task, context, allowed))
        log_json(
            logger,
            "subagent.session.started",
            session_id=session_id,
            persona=persona,
            turn_limit=state.turn_limit,
            tools_enabled=tools_enabled,
            allowed_tools=allowed,
            workspace=str(workspace),
        )

        last_reply = ""
        while state.turns_used < state.turn_limit:
            try:
                raw = await self._client.complete(state.payload())
            except ChatTransportError as exc:
                log_json_warning(
                    logger,
                    "subagent.session.failed",
                    session_id=session_id,
                    turn=state.turns_used + 1,
                    error=str(exc),
                )
                return SessionResult(
                    response="",
                    files_modified=state.files_modified.to_list(),
                    error=str(exc) or type(exc).__name__,
                    turns_used=state.turns_used,
                )
            text = strip_turn_markers(raw)
            last_reply = text
            log_json(
                logger,
                "subagent.turn.model_reply",
                session_id=session_id,
                turn=state.turns_used + 1,
                preview=preview(text),
            )

            if not tools_enabled:
                state.turns_used += 1
                state.final_text = text
                break

            phrase = self._refusal.matched_phrase(text)
            if phrase is not None:
                log_json(logger, "subagent.turn.refusal", session_id=session_id, phrase=phrase)
                state.append("assistant", text)
                state.append("system", REFUSAL_CORRECTION)
                state.turns_used += 1
                continue

            call = parse_tool_call(text)
            if call is not None:
                log_json(
                    logger,
                    "subagent.turn.tool_call",
                    session_id=session_id,
                    turn=state.turns_used + 1,
                    tool=call.tool_name,
                )
                state.append("assistant", text)
                result = await dispatcher.dispatch(call)
                state.files_modified.update(result.modified)
                state.append("user", f"Tool Output: {truncate(result.output, MAX_TOOL_OUTPUT_CHARS)}")
                state.turns_used += 1
                continue

            if has_completion_marker(text) or state.last_allowed_turn:
                state.turns_used += 1
                state.final_text = text
                break

            log_json(logger, "subagent.turn.no_call", session_id=session_id, turn=state.turns_used + 1)
            state.append("assistant", text)
            state.append("system", NO_CALL_NUDGE)
            state.turns_used += 1

        if state.final_text is None:
            # Budget spent on tool calls or refusals; the last reply is all we have.
            state.final_text = last_reply
        log_json(
            logger,
            "subagent.session.finished",
            session_id=session_id,
            turns_used=state.turns_used,
            files_modified=state.files_modified.to_list(),
        )
        return SessionResult(
            response=state.final_text,
            files_modified=state.files_modified.to_list(),
            turns_used=state.turns_used,
        )
