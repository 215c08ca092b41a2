from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from subagent_delegate.tools.base import (
    CAPABILITY_FILESYSTEM,
    ToolContext,
    ToolRequest,
    ToolResult,
    resolve_workspace_path,
    workspace_relative,
)

MAX_READ_BYTES = 200_000
MAX_WRITE_BYTES = 500_000
MAX_SEARCH_MATCHES = 50
MAX_SEARCH_FILE_BYTES = 1_000_000
_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv"}

FILE_NAME_KEYS = ("file_name", "name", "path")
CONTENT_KEYS = ("content", "data")


def first_arg(args: Mapping[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = args.get(key)
        if value is not None and value != "":
            return value
    return None


class _FileTool:
    """Filesystem tools do blocking I/O off the event loop."""

    name = ""
    description = ""
    capability = CAPABILITY_FILESYSTEM
    required_args: Tuple[str, ...] = ()
    path_args: Tuple[str, ...] = ()

    async def run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        try:
            return await asyncio.to_thread(self._run, request, context)
        except ValueError as exc:
            return ToolResult(ok=False, output=f"Error: {exc}")
        except OSError as exc:
            return ToolResult(ok=False, output=f"Error: {self.name} failed: {exc}")

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        raise NotImplementedError


def write_workspace_file(workspace_root: Path, raw_path: str, content: str) -> Path:
    if len(content.encode("utf-8")) > MAX_WRITE_BYTES:
        raise ValueError("content exceeds max bytes.")
    target = resolve_workspace_path(workspace_root, raw_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return target


class ReadFileTool(_FileTool):
    name = "read_file"
    description = "Read a text file from the workspace."
    required_args = ("file_name|path",)
    path_args = ("file_name", "path")

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        raw_path = str(first_arg(request.args, "file_name", "path") or "")
        target = resolve_workspace_path(context.workspace_root, raw_path)
        if not target.is_file():
            return ToolResult(ok=False, output=f"Error: file not found: {raw_path}")
        data = target.read_bytes()[:MAX_READ_BYTES]
        return ToolResult(ok=True, output=data.decode("utf-8", errors="replace"))


class ListDirectoryTool(_FileTool):
    name = "list_directory"
    description = "List entries of a workspace directory (default: workspace root)."
    path_args = ("path",)

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        raw_path = str(request.args.get("path") or ".")
        target = resolve_workspace_path(context.workspace_root, raw_path)
        if not target.is_dir():
            return ToolResult(ok=False, output=f"Error: not a directory: {raw_path}")
        entries = sorted(
            (child.name + "/" if child.is_dir() else child.name) for child in target.iterdir()
        )
        return ToolResult(ok=True, output=json.dumps(entries))


class SaveFileTool(_FileTool):
    name = "save_file"
    description = (
        "Write a file: {file_name, content}. Batch form: {files: [{file_name, content}, ...]}. "
        "Overwrites existing files."
    )
    path_args = ("file_name", "name", "path")

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        files = request.args.get("files")
        if isinstance(files, list):
            return self._save_batch(files, context)
        file_name = first_arg(request.args, *FILE_NAME_KEYS)
        content = first_arg(request.args, *CONTENT_KEYS)
        if not isinstance(file_name, str) or not isinstance(content, str):
            return ToolResult(
                ok=False,
                output="Error: Missing 'file_name' (or 'name', 'path') or 'content' (or 'data') arguments.",
            )
        target = write_workspace_file(context.workspace_root, file_name, content)
        rel = workspace_relative(context.workspace_root, target)
        return ToolResult(ok=True, output=f"Success: File saved to {target}", modified=(rel,))

    def _save_batch(self, files: List[Any], context: ToolContext) -> ToolResult:
        saved: List[str] = []
        errors: List[str] = []
        for entry in files:
            if not isinstance(entry, dict):
                continue
            file_name = first_arg(entry, *FILE_NAME_KEYS)
            content = first_arg(entry, *CONTENT_KEYS)
            if not isinstance(file_name, str) or not isinstance(content, str):
                continue
            try:
                target = write_workspace_file(context.workspace_root, file_name, content)
            except (ValueError, OSError) as exc:
                errors.append(f"{file_name}: {exc}")
                continue
            saved.append(workspace_relative(context.workspace_root, target))
        if not saved:
            detail = f" ({'; '.join(errors)})" if errors else ""
            return ToolResult(ok=False, output=f"Error: No valid files found in batch.{detail}")
        output = f"Success: Saved {len(saved)} files: {', '.join(saved)}"
        if errors:
            output += f"\nSkipped: {'; '.join(errors)}"
        return ToolResult(ok=True, output=output, modified=tuple(saved))


class ReplaceTextInFileTool(_FileTool):
    name = "replace_text_in_file"
    description = "Replace exactly one occurrence of old_string with new_string in a workspace file."
    required_args = ("file_name|path", "old_string", "new_string")
    path_args = ("file_name", "path")

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        raw_path = str(first_arg(request.args, "file_name", "path") or "")
        old = str(request.args.get("old_string") or "")
        new = str(request.args.get("new_string") if request.args.get("new_string") is not None else "")
        if not old:
            return ToolResult(ok=False, output="Error: 'old_string' must not be empty.")
        target = resolve_workspace_path(context.workspace_root, raw_path)
        if not target.is_file():
            return ToolResult(ok=False, output=f"Error: file not found: {raw_path}")
        content = target.read_text(encoding="utf-8")
        count = content.count(old)
        if count == 0:
            return ToolResult(ok=False, output="Error: 'old_string' not found exactly.")
        if count > 1:
            return ToolResult(ok=False, output=f"Error: Found {count} occurrences. Be more specific.")
        target.write_text(content.replace(old, new, 1), encoding="utf-8")
        rel = workspace_relative(context.workspace_root, target)
        return ToolResult(ok=True, output="Success: Text replaced.", modified=(rel,))


class DeleteFilesByPatternTool(_FileTool):
    name = "delete_files_by_pattern"
    description = "Delete files in the workspace root whose names match a regular expression."
    required_args = ("pattern",)

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        raw = str(request.args.get("pattern") or "")
        try:
            regex = re.compile(raw)
        except re.error as exc:
            return ToolResult(ok=False, output=f"Error: invalid pattern: {exc}")
        deleted: List[str] = []
        for child in sorted(context.workspace_root.iterdir()):
            if not child.is_file() or not regex.search(child.name):
                continue
            resolve_workspace_path(context.workspace_root, child.name)
            child.unlink()
            deleted.append(child.name)
        return ToolResult(ok=True, output=f"Deleted {len(deleted)} files: {', '.join(deleted)}")


class MakeDirectoryTool(_FileTool):
    name = "make_directory"
    description = "Create a directory (and parents) inside the workspace."
    required_args = ("path",)
    path_args = ("path",)

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        target = resolve_workspace_path(context.workspace_root, str(request.args.get("path") or ""))
        target.mkdir(parents=True, exist_ok=True)
        return ToolResult(ok=True, output=f"Success: Directory ready at {target}")


class MoveFileTool(_FileTool):
    name = "move_file"
    description = "Move or rename a file inside the workspace."
    required_args = ("source", "destination")
    path_args = ("source", "destination")

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        src = resolve_workspace_path(context.workspace_root, str(request.args.get("source") or ""))
        dst = resolve_workspace_path(context.workspace_root, str(request.args.get("destination") or ""))
        if not src.exists():
            return ToolResult(ok=False, output=f"Error: source not found: {request.args.get('source')}")
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(src), str(dst))
        rel = workspace_relative(context.workspace_root, dst)
        return ToolResult(ok=True, output=f"Success: Moved to {dst}", modified=(rel,))


class CopyFileTool(_FileTool):
    name = "copy_file"
    description = "Copy a file inside the workspace."
    required_args = ("source", "destination")
    path_args = ("source", "destination")

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        src = resolve_workspace_path(context.workspace_root, str(request.args.get("source") or ""))
        dst = resolve_workspace_path(context.workspace_root, str(request.args.get("destination") or ""))
        if not src.is_file():
            return ToolResult(ok=False, output=f"Error: source not found: {request.args.get('source')}")
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(str(src), str(dst))
        rel = workspace_relative(context.workspace_root, dst)
        return ToolResult(ok=True, output=f"Success: Copied to {dst}", modified=(rel,))


class SearchFileContentTool(_FileTool):
    name = "search_file_content"
    description = "Find lines containing a literal query in workspace files."
    required_args = ("query",)
    path_args = ("path",)

    def _run(self, request: ToolRequest, context: ToolContext) -> ToolResult:
        query = str(request.args.get("query") or "")
        root = resolve_workspace_path(context.workspace_root, str(request.args.get("path") or "."))
        matches: List[str] = []
        for path in _iter_files(root):
            try:
                if path.stat().st_size > MAX_SEARCH_FILE_BYTES:
                    continue
                text = path.read_text(encoding="utf-8", errors="ignore")
            except OSError:
                continue
            rel = workspace_relative(context.workspace_root, path)
            for lineno, line in enumerate(text.splitlines(), start=1):
                if query in line:
                    matches.append(f"{rel}:{lineno}: {line.strip()[:200]}")
                    if len(matches) >= MAX_SEARCH_MATCHES:
                        return ToolResult(ok=True, output="\n".join(matches) + "\n(more matches omitted)")
        if not matches:
            return ToolResult(ok=True, output=f"No matches for: {query}")
        return ToolResult(ok=True, output="\n".join(matches))


def _iter_files(root: Path):
    if root.is_file():
        yield root
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS and not d.startswith("."))
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


FILESYSTEM_TOOLS: Dict[str, type] = {
    tool.name: tool
    for tool in (
        ReadFileTool,
        ListDirectoryTool,
        SaveFileTool,
        ReplaceTextInFileTool,
        DeleteFilesByPatternTool,
        MakeDirectoryTool,
        MoveFileTool,
        CopyFileTool,
        SearchFileContentTool,
    )
}
