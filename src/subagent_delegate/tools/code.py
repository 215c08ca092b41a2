from __future__ import annotations

import asyncio
import sys
from typing import Dict, List, Tuple

from subagent_delegate.tools.base import CAPABILITY_CODE, ToolContext, ToolRequest, ToolResult
from subagent_delegate.util import truncate

MAX_OUTPUT_CHARS = 4000


async def run_interpreter(argv: List[str], source: str, context: ToolContext) -> ToolResult:
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(context.workspace_root),
        )
    except FileNotFoundError:
        return ToolResult(ok=False, output=f"Error: interpreter not found: {argv[0]}")
    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(source.encode("utf-8")),
            timeout=max(1, context.code_timeout_sec),
        )
    except asyncio.TimeoutError:
        proc.kill()
        await proc.communicate()
        return ToolResult(ok=False, output=f"Error: execution timed out after {context.code_timeout_sec}s.")
    out = stdout.decode("utf-8", errors="replace") if stdout else ""
    err = stderr.decode("utf-8", errors="replace") if stderr else ""
    if proc.returncode != 0 or err.strip():
        detail = (err.strip() or out.strip() or f"exit code {proc.returncode}")
        return ToolResult(ok=False, output=f"Error: {truncate(detail, MAX_OUTPUT_CHARS)}")
    return ToolResult(ok=True, output=truncate(out, MAX_OUTPUT_CHARS) if out.strip() else "(no output)")


class RunPythonTool:
    name = "run_python"
    description = "Run a Python snippet in the workspace and return stdout (stderr is reported as an error)."
    capability = CAPABILITY_CODE
    required_args = ("python",)
    path_args: Tuple[str, ...] = ()

    async def run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        return await run_interpreter([sys.executable, "-"], str(request.args.get("python") or ""), context)


class RunJavascriptTool:
    name = "run_javascript"
    description = "Run a JavaScript snippet with node in the workspace and return stdout."
    capability = CAPABILITY_CODE
    required_args = ("javascript",)
    path_args: Tuple[str, ...] = ()

    async def run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        return await run_interpreter(["node", "-"], str(request.args.get("javascript") or ""), context)


CODE_TOOLS: Dict[str, type] = {
    RunPythonTool.name: RunPythonTool,
    RunJavascriptTool.name: RunJavascriptTool,
}
