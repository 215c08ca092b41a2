"""End-to-end delegation: primary session, artifact extraction, optional review.

``Delegator.delegate`` is what a primary agent (through
``consult_secondary_agent``), the CLI and the local API all call. It never
raises for model, tool or extraction failures; the caller always gets a
``DelegationResult``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from subagent_delegate.agent.auto_debug import AutoDebugOrchestrator, build_review_task, format_report
from subagent_delegate.agent.extractor import CodeArtifactExtractor
from subagent_delegate.agent.history import HistoryLogger
from subagent_delegate.agent.session import AgentSession
from subagent_delegate.config import DelegationConfig
from subagent_delegate.domain.contracts import ChatClient, HistoryRecorder
from subagent_delegate.domain.transcript import OrderedPathSet
from subagent_delegate.observability.structured_log import log_json
from subagent_delegate.providers.chat_completions import ChatCompletionsClient

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "general"
DISABLED_ERROR = "Secondary agent is disabled."
GENERATED_FILES_LABEL = "[GENERATED_FILES]"
HIDDEN_CODE_MARKER = (
    "\n[System: Code Block Hidden for Brevity. The code has been handled/saved by the sub-agent. "
    "Do NOT request it again. Proceed.]\n"
)
_FENCED_BLOCK_RE = re.compile(r"```.*?```", re.DOTALL)


@dataclass
class DelegationResult:
    response: str = ""
    generated_files: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {"response": self.response, "generated_files": list(self.generated_files)}


def absolute_paths(files: List[str], working_directory: Path) -> List[str]:
    out: List[str] = []
    for item in files:
        path = Path(item)
        out.append(str(path if path.is_absolute() else working_directory / path))
    return out


def hide_code_blocks(text: str) -> str:
    return _FENCED_BLOCK_RE.sub(HIDDEN_CODE_MARKER, text or "")


def render_generated_code(files: List[str], working_directory: Path) -> str:
    rendered = "\n\n### Generated Code Content:\n"
    for rel in files:
        try:
            content = (working_directory / rel).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        ext = rel.rsplit(".", 1)[-1] if "." in rel else "txt"
        rendered += f"\n**{rel}**\n```{ext}\n{content}\n```\n"
    return rendered


class Delegator:
    def __init__(
        self,
        config: DelegationConfig,
        client: ChatClient,
        session: Optional[AgentSession] = None,
        extractor: Optional[CodeArtifactExtractor] = None,
        history: Optional[HistoryRecorder] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._session = session or AgentSession(client, config)
        self._extractor = extractor or CodeArtifactExtractor()
        self._history = history or HistoryLogger()
        self._auto_debug = AutoDebugOrchestrator(self._session, turn_limit=config.review_turn_limit)

    @classmethod
    def from_config(cls, config: DelegationConfig) -> "Delegator":
        return cls(config=config, client=ChatCompletionsClient.from_config(config))

    @property
    def config(self) -> DelegationConfig:
        return self._config

    async def health(self) -> Dict[str, Any]:
        provider = await self._client.health()
        return {
            "enabled": self._config.enabled,
            "provider": provider,
            "capabilities": {
                "filesystem": self._config.allow_filesystem,
                "web": self._config.allow_web,
                "code": self._config.allow_code,
            },
            "auto_save": self._config.auto_save,
            "auto_debug": self._config.auto_debug,
        }

    async def aclose(self) -> None:
        close = getattr(self._client, "aclose", None)
        if close is not None:
            await close()

    async def delegate(
        self,
        task: str,
        agent_role: str = DEFAULT_ROLE,
        context: str = "",
        allow_tools: bool = False,
        working_directory: Optional[Path] = None,
        auto_debug: Optional[bool] = None,
    ) -> DelegationResult:
        config = self._config
        if not config.enabled:
            return DelegationResult(error=DISABLED_ERROR)
        workspace = (working_directory or Path.cwd()).expanduser().resolve()

        primary = await self._session.run(
            persona=agent_role or DEFAULT_ROLE,
            task=task,
            context=context or "",
            turn_limit=config.primary_turn_limit,
            force_tools_enabled=False,
            working_directory=workspace,
            allow_tools=allow_tools,
        )
        if not primary.ok:
            log_json(logger, "subagent.delegate.finished", ok=False, error=primary.error)
            return DelegationResult(error=primary.error)

        response = primary.response
        files = OrderedPathSet(primary.files_modified)
        if config.auto_save and config.allow_filesystem:
            extraction = self._extractor.extract(response, workspace)
            response = extraction.updated_text
            files.update(extraction.files_modified)
        await self._record(task, files.to_list(), workspace)

        if (config.auto_debug if auto_debug is None else auto_debug) and len(files):
            review = await self._auto_debug.review(files.to_list(), workspace)
            response += format_report(review)
            if review.reviewer_files:
                await self._record(build_review_task(files.to_list()), review.reviewer_files, workspace)
            files.update(review.files_modified)

        generated = files.to_list()
        if generated:
            response += f"\n\n{GENERATED_FILES_LABEL}: {', '.join(absolute_paths(generated, workspace))}"
            if config.show_full_code:
                response += render_generated_code(generated, workspace)
        if not config.show_full_code:
            response = hide_code_blocks(response)

        log_json(logger, "subagent.delegate.finished", ok=True, generated_files=generated)
        return DelegationResult(response=response, generated_files=generated)

    async def _record(self, task: str, files: List[str], workspace: Path) -> None:
        if files and self._config.allow_filesystem:
            await self._history.record(task, files, workspace)
