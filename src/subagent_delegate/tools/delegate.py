"""Primary-agent facing entry point into the delegation engine.

Registered in a *primary* agent's registry only. Secondary sessions build
their registries through ``build_tool_registry``, which never includes this
tool, so a secondary agent cannot delegate again.
"""
from __future__ import annotations

import json
from typing import TYPE_CHECKING

from subagent_delegate.tools.base import ToolContext, ToolRequest, ToolResult

if TYPE_CHECKING:
    from subagent_delegate.agent.delegation import Delegator

CAPABILITY_DELEGATION = "delegation"
DEFAULT_ROLE = "general"
_TRUE_STRINGS = {"1", "true", "yes", "on"}


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUE_STRINGS


class ConsultSecondaryAgentTool:
    name = "consult_secondary_agent"
    description = (
        "Delegate a self-contained task to a secondary agent. "
        "Code it writes is saved to the workspace and listed under [GENERATED_FILES]."
    )
    capability = CAPABILITY_DELEGATION
    required_args = ("task",)
    path_args = ()

    def __init__(self, delegator: "Delegator") -> None:
        self._delegator = delegator

    async def run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        task = str(request.args.get("task") or "").strip()
        if not task:
            return ToolResult(ok=False, output="Error: 'task' is required.")
        role = str(request.args.get("agent_role") or "").strip() or DEFAULT_ROLE
        result = await self._delegator.delegate(
            task=task,
            agent_role=role,
            context=str(request.args.get("context") or ""),
            allow_tools=_as_bool(request.args.get("allow_tools")),
            working_directory=context.workspace_root,
        )
        return ToolResult(
            ok=result.ok,
            output=json.dumps(result.to_dict(), ensure_ascii=False),
            modified=tuple(result.generated_files),
        )
