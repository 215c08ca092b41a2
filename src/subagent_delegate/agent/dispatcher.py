from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping

from subagent_delegate.agent.grammar import ToolCall
from subagent_delegate.observability.structured_log import log_json
from subagent_delegate.tools.base import ToolContext, ToolRegistry, ToolRequest, ToolResult, resolve_workspace_path
from subagent_delegate.util import preview

logger = logging.getLogger(__name__)


class ToolDispatcher:
    """Runs normalized tool calls against a session's registry.

    Never raises: disallowed tools, missing arguments, paths outside the
    workspace and handler crashes all come back as ``ok=False`` results whose
    output is shown to the model.
    """

    def __init__(self, registry: ToolRegistry, context: ToolContext) -> None:
        self._registry = registry
        self._context = context

    @property
    def context(self) -> ToolContext:
        return self._context

    async def dispatch(self, call: ToolCall) -> ToolResult:
        descriptor = self._registry.get(call.tool_name)
        if descriptor is None:
            return self._blocked(call, f"Error: Tool '{call.tool_name}' not found/allowed.")
        if not descriptor.enabled:
            return self._blocked(call, f"Error: Tool '{call.tool_name}' is not enabled for this session.")
        tool = descriptor.tool
        args = dict(call.args or {})

        missing = _missing_required(getattr(tool, "required_args", ()) or (), args)
        if missing:
            return self._blocked(
                call,
                f"Error: Missing required argument(s) for '{descriptor.name}': {', '.join(missing)}.",
            )
        for raw_path in _path_values(getattr(tool, "path_args", ()) or (), args):
            try:
                resolve_workspace_path(self._context.workspace_root, raw_path)
            except ValueError:
                return self._blocked(
                    call,
                    f"Error: Access Denied: Path '{raw_path}' is outside the workspace.",
                )

        try:
            result = await tool.run(ToolRequest(name=descriptor.name, args=args), self._context)
        except Exception as exc:
            logger.exception("dispatcher: tool %s raised", descriptor.name)
            result = ToolResult(ok=False, output=f"Error: {exc}")
        log_json(
            logger,
            "subagent.tool.dispatched",
            session_id=self._context.session_id,
            tool=descriptor.name,
            ok=result.ok,
            modified=list(result.modified),
            preview=preview(result.output, 120),
        )
        return result

    def _blocked(self, call: ToolCall, message: str) -> ToolResult:
        log_json(
            logger,
            "subagent.tool.blocked",
            session_id=self._context.session_id,
            tool=call.tool_name,
            reason=message,
        )
        return ToolResult(ok=False, output=message)


def _missing_required(required: Iterable[str], args: Mapping[str, Any]) -> List[str]:
    missing: List[str] = []
    for requirement in required:
        alternatives = [key for key in requirement.split("|") if key]
        if not any(args.get(key) is not None for key in alternatives):
            missing.append(" or ".join(alternatives))
    return missing


def _path_values(path_args: Iterable[str], args: Mapping[str, Any]) -> List[str]:
    keys = list(path_args)
    values: List[str] = []
    sources: List[Mapping[str, Any]] = [args]
    files = args.get("files")
    if isinstance(files, list):
        sources.extend(entry for entry in files if isinstance(entry, dict))
    for source in sources:
        for key in keys:
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                values.append(value)
    return values
