"""Turns fenced code blocks in a session's final answer into workspace files.

The walk is single-threaded and strictly back-to-front: every block's span is
taken from the original text in one regex pass, and replacing block *i* only
changes characters at or after its own start, so the spans of blocks before it
stay valid without recomputation.

A block is only written when a filename can be read off the text (a heading,
bold, backtick or ``filename:`` label just before it, or a path comment on its
first line). Nothing is ever saved under an invented name. When several blocks
name the same path, the last one in the text wins.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Tuple

from subagent_delegate.domain.transcript import OrderedPathSet
from subagent_delegate.observability.structured_log import log_json
from subagent_delegate.tools.files import write_workspace_file
from subagent_delegate.tools.base import resolve_workspace_path, workspace_relative

logger = logging.getLogger(__name__)

MIN_BLOCK_CHARS = 50
LOOKBACK_CHARS = 500
SHELL_LANGUAGES = {"bash", "sh", "shell", "cmd", "powershell", "ps1", "console", "zsh", "terminal", "bat"}
KNOWN_EXTENSIONS = (
    "tsx", "ts", "jsx", "js", "mjs", "cjs", "html", "css", "scss", "json", "md", "py", "sh",
    "java", "kt", "rs", "go", "rb", "php", "sql", "yaml", "yml", "toml", "ini", "cfg",
    "c", "cpp", "h", "hpp", "cs", "swift", "txt", "xml", "vue",
)
_EXT = "|".join(sorted(KNOWN_EXTENSIONS, key=len, reverse=True))

CODE_BLOCK_RE = re.compile(r"```[ \t]*([\w+#.-]*)[^\n`]*\n?(.*?)```", re.DOTALL)
_LOOKBACK_NAME_RE = re.compile(
    r"(?:`|\*\*|#{1,6}[ \t]|filename:|file:)[ \t]*([\w\-./\\]+\.(?:" + _EXT + r"))\b",
    re.IGNORECASE,
)
_FIRST_LINE_NAME_RE = re.compile(
    r"^(?://|#|<!--|;|--|/\*)\s*(?:filename:|file:)?\s*([\w\-./\\]+\.(?:" + _EXT + r"))\b",
    re.IGNORECASE,
)
_MARKER_RE = re.compile(r"\[System: [^\]\n]*\]")
BATCH_NAME_KEYS = ("path", "file_name", "name")
BATCH_CONTENT_KEYS = ("content", "data", "code")


@dataclass(frozen=True)
class CodeBlock:
    language: str
    body: str
    span: Tuple[int, int]


@dataclass
class ExtractionResult:
    updated_text: str
    files_modified: List[str] = field(default_factory=list)


def find_code_blocks(text: str) -> List[CodeBlock]:
    return [
        CodeBlock(
            language=(match.group(1) or "txt").strip().lower(),
            body=match.group(2),
            span=(match.start(), match.end()),
        )
        for match in CODE_BLOCK_RE.finditer(text or "")
    ]


def saved_marker(file_name: str) -> str:
    return f"\n[System: File '{file_name}' created successfully.]\n"


def batch_marker(count: int) -> str:
    return f"\n[System: Successfully extracted and saved {count} files from JSON block.]\n"


def superseded_marker(file_name: str) -> str:
    return f"\n[System: Earlier draft of '{file_name}' superseded by a later block.]\n"


def infer_file_name(text: str, block: CodeBlock, floor: int = 0) -> Optional[str]:
    start = block.span[0]
    lookback = text[max(0, floor, start - LOOKBACK_CHARS):start]
    # Nearest label wins; labels before the previous block or a marker left by
    # an earlier pass belong to that block.
    markers = list(_MARKER_RE.finditer(lookback))
    if markers:
        lookback = lookback[markers[-1].end():]
    matches = list(_LOOKBACK_NAME_RE.finditer(lookback))
    if matches:
        return _clean_name(matches[-1].group(1))
    first_line = block.body.split("\n", 1)[0].strip()
    match = _FIRST_LINE_NAME_RE.match(first_line)
    if match:
        return _clean_name(match.group(1))
    return None


def _clean_name(raw: str) -> str:
    return raw.strip().strip("`*").replace("\\", "/")


def _batch_entries(block: CodeBlock) -> Optional[List[Tuple[str, str]]]:
    if block.language != "json":
        return None
    try:
        parsed: Any = json.loads(block.body)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, list):
        return None
    entries: List[Tuple[str, str]] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        name = next((item[k] for k in BATCH_NAME_KEYS if isinstance(item.get(k), str) and item[k]), None)
        content = next((item[k] for k in BATCH_CONTENT_KEYS if isinstance(item.get(k), str) and item[k]), None)
        if name and content:
            entries.append((name, content))
    return entries


class CodeArtifactExtractor:
    def __init__(self, min_block_chars: int = MIN_BLOCK_CHARS) -> None:
        self._min_block_chars = min_block_chars

    def extract(self, final_text: str, working_directory: Path) -> ExtractionResult:
        text = final_text or ""
        workspace = working_directory.expanduser().resolve()
        written = OrderedPathSet()
        updated = text

        blocks = find_code_blocks(text)
        for index in range(len(blocks) - 1, -1, -1):
            block = blocks[index]
            start, end = block.span
            entries = _batch_entries(block)
            if entries:
                saved = self._write_batch(entries, workspace, written)
                if saved:
                    written.update(saved)
                    updated = updated[:start] + batch_marker(len(saved)) + updated[end:]
                    continue

            if len(block.body.strip()) < self._min_block_chars:
                continue
            floor = blocks[index - 1].span[1] if index else 0
            file_name = infer_file_name(text, block, floor)
            if file_name is None:
                log_json(
                    logger,
                    "subagent.extract.skipped",
                    reason="shell_without_name" if block.language in SHELL_LANGUAGES else "no_filename",
                    language=block.language,
                    offset=start,
                )
                continue
            rel = self._contained(file_name, workspace)
            if rel is None:
                continue
            if rel in written:
                # A later block already wrote this path; drop the older draft so
                # a second pass over the output cannot resurrect it.
                log_json(logger, "subagent.extract.skipped", reason="duplicate", file=rel, offset=start)
                updated = updated[:start] + superseded_marker(file_name) + updated[end:]
                continue
            if not self._write(workspace, rel, block.body):
                continue
            written.add(rel)
            updated = updated[:start] + saved_marker(file_name) + updated[end:]

        # Reverse walk collected last-to-first; report in text order.
        files = list(reversed(written.to_list()))
        return ExtractionResult(updated_text=updated, files_modified=files)

    def _write_batch(
        self,
        entries: List[Tuple[str, str]],
        workspace: Path,
        written: OrderedPathSet,
    ) -> List[str]:
        saved: List[str] = []
        for name, content in reversed(entries):
            rel = self._contained(name, workspace)
            if rel is None or rel in saved or rel in written:
                continue
            if self._write(workspace, rel, content):
                saved.append(rel)
        return saved

    def _contained(self, file_name: str, workspace: Path) -> Optional[str]:
        try:
            target = resolve_workspace_path(workspace, file_name)
        except ValueError as exc:
            log_json(logger, "subagent.extract.skipped", reason=str(exc), file=file_name)
            return None
        return workspace_relative(workspace, target)

    def _write(self, workspace: Path, rel: str, content: str) -> bool:
        try:
            write_workspace_file(workspace, rel, content)
        except (ValueError, OSError) as exc:
            logger.warning("extractor: failed to write %s: %s", rel, exc)
            return False
        log_json(logger, "subagent.extract.saved", file=rel, chars=len(content))
        return True


def extract(final_text: str, working_directory: Path) -> ExtractionResult:
    return CodeArtifactExtractor().extract(final_text, working_directory)
