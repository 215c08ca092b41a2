from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from subagent_delegate.agent.prompt_builder import PROJECT_INFO_FILE
from subagent_delegate.observability.structured_log import log_json_warning

logger = logging.getLogger(__name__)

HISTORY_HEADER = "# Project History"
TASK_PREVIEW_CHARS = 50


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def format_entry(task: str, files_modified: List[str], timestamp: str) -> str:
    return f'\n- **[{timestamp}]** Task: "{(task or "")[:TASK_PREVIEW_CHARS]}..." | Modified: {", ".join(files_modified)}'


class HistoryLogger:
    """Append-only project log shared with later sessions' system prompts.

    ``record`` never raises; a failed append is logged and dropped.
    """

    def __init__(self, file_name: str = PROJECT_INFO_FILE, clock: Optional[Callable[[], str]] = None) -> None:
        self._file_name = file_name
        self._clock = clock or _utc_now

    def path_for(self, working_directory: Path) -> Path:
        return working_directory / self._file_name

    async def record(self, task: str, files_modified: List[str], working_directory: Path) -> None:
        if not files_modified:
            return
        path = self.path_for(working_directory)
        entry = format_entry(task, files_modified, self._clock())
        try:
            await asyncio.to_thread(self._append, path, entry)
        except (OSError, ValueError) as exc:
            log_json_warning(logger, "subagent.history.append_failed", path=str(path), error=str(exc))

    @staticmethod
    def _append(path: Path, entry: str) -> None:
        data = entry.encode("utf-8")
        if path.exists():
            with path.open("ab") as handle:
                handle.write(data)
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(f"{HISTORY_HEADER}\n".encode("utf-8") + data)
