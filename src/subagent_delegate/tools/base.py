from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

CAPABILITY_FILESYSTEM = "filesystem"
CAPABILITY_WEB = "web"
CAPABILITY_CODE = "code"


@dataclass(frozen=True)
class ToolRequest:
    name: str
    args: Dict[str, object]


@dataclass(frozen=True)
class ToolContext:
    workspace_root: Path
    code_timeout_sec: int = 30
    session_id: str = ""


@dataclass(frozen=True)
class ToolResult:
    ok: bool
    output: str
    modified: Tuple[str, ...] = ()


class Tool(Protocol):
    name: str
    description: str
    capability: str
    required_args: Tuple[str, ...]
    path_args: Tuple[str, ...]

    async def run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        ...


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    enabled: bool
    tool: Tool = field(compare=False)


def resolve_workspace_path(workspace_root: Path, raw_path: str) -> Path:
    raw = (raw_path or "").strip()
    if not raw:
        raise ValueError("Empty path.")
    candidate = Path(raw).expanduser()
    target = candidate.resolve() if candidate.is_absolute() else (workspace_root / raw).resolve()
    workspace = workspace_root.resolve()
    if target != workspace and workspace not in target.parents:
        raise ValueError("Path escapes workspace root.")
    return target


def workspace_relative(workspace_root: Path, target: Path) -> str:
    try:
        return target.resolve().relative_to(workspace_root.resolve()).as_posix()
    except ValueError:
        return str(target)


class ToolRegistry:
    """Name -> descriptor mapping. Enablement is fixed at registration."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDescriptor] = {}

    def register(self, tool: Tool, enabled: bool = True) -> None:
        name = (getattr(tool, "name", "") or "").strip().lower()
        if not name:
            raise ValueError("Tool name is required.")
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = ToolDescriptor(name=name, enabled=bool(enabled), tool=tool)

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get((name or "").strip().lower())

    def names(self) -> List[str]:
        return sorted(self._tools.keys())

    def enabled_names(self) -> List[str]:
        return [name for name in self.names() if self._tools[name].enabled]

    def describe_enabled(self) -> List[str]:
        lines: List[str] = []
        for name in self.enabled_names():
            tool = self._tools[name].tool
            required = ", ".join(getattr(tool, "required_args", ()) or ()) or "none"
            lines.append(f"- {name}: {getattr(tool, 'description', '')} (required args: {required})")
        return lines
