from typing import TYPE_CHECKING, Optional

import httpx

from subagent_delegate.config import DelegationConfig
from subagent_delegate.tools.base import (
    CAPABILITY_CODE,
    CAPABILITY_FILESYSTEM,
    CAPABILITY_WEB,
    Tool,
    ToolContext,
    ToolDescriptor,
    ToolRegistry,
    ToolRequest,
    ToolResult,
    resolve_workspace_path,
)
from subagent_delegate.tools.code import CODE_TOOLS, RunJavascriptTool, RunPythonTool
from subagent_delegate.tools.delegate import ConsultSecondaryAgentTool
from subagent_delegate.tools.files import (
    FILESYSTEM_TOOLS,
    CopyFileTool,
    DeleteFilesByPatternTool,
    ListDirectoryTool,
    MakeDirectoryTool,
    MoveFileTool,
    ReadFileTool,
    ReplaceTextInFileTool,
    SaveFileTool,
    SearchFileContentTool,
)
from subagent_delegate.tools.web import WEB_TOOLS, DuckDuckGoSearchTool, FetchWebContentTool

if TYPE_CHECKING:
    from subagent_delegate.agent.delegation import Delegator


def capability_enabled(config: DelegationConfig, capability: str) -> bool:
    if capability == CAPABILITY_FILESYSTEM:
        return config.allow_filesystem
    if capability == CAPABILITY_WEB:
        return config.allow_web
    if capability == CAPABILITY_CODE:
        return config.allow_code
    return False


def build_tool_registry(
    config: DelegationConfig,
    tools_enabled: bool,
    web_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ToolRegistry:
    """Build the registry for one secondary-agent session.

    Every known tool is registered; ``enabled`` is resolved here, once, from
    ``tools_enabled`` and the capability flags.
    """
    registry = ToolRegistry()
    tools = [cls() for cls in FILESYSTEM_TOOLS.values()]
    tools.append(DuckDuckGoSearchTool())
    tools.append(FetchWebContentTool(transport=web_transport))
    tools.extend(cls() for cls in CODE_TOOLS.values())
    for tool in tools:
        registry.register(tool, enabled=tools_enabled and capability_enabled(config, tool.capability))
    return registry


def register_delegation_tool(registry: ToolRegistry, delegator: "Delegator") -> ToolRegistry:
    """Expose delegation to a primary agent. Secondary registries never get this tool."""
    registry.register(ConsultSecondaryAgentTool(delegator))
    return registry


__all__ = [
    "CAPABILITY_CODE",
    "CAPABILITY_FILESYSTEM",
    "CAPABILITY_WEB",
    "CODE_TOOLS",
    "FILESYSTEM_TOOLS",
    "WEB_TOOLS",
    "Tool",
    "ToolContext",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolRequest",
    "ToolResult",
    "resolve_workspace_path",
    "ReadFileTool",
    "ListDirectoryTool",
    "SaveFileTool",
    "ReplaceTextInFileTool",
    "DeleteFilesByPatternTool",
    "MakeDirectoryTool",
    "MoveFileTool",
    "CopyFileTool",
    "SearchFileContentTool",
    "DuckDuckGoSearchTool",
    "FetchWebContentTool",
    "RunPythonTool",
    "RunJavascriptTool",
    "ConsultSecondaryAgentTool",
    "build_tool_registry",
    "capability_enabled",
    "register_delegation_tool",
]
