from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from subagent_delegate.agent.session import AgentSession
from subagent_delegate.domain.transcript import OrderedPathSet
from subagent_delegate.observability.structured_log import log_json
from subagent_delegate.tools.base import resolve_workspace_path

logger = logging.getLogger(__name__)

REVIEWER_ROLE = "reviewer"
REPORT_HEADING = "\n\n--- Auto-Debug Report ---\n"
EMPTY_REPORT = "Debug pass completed."


@dataclass
class ReviewResult:
    response: str = ""
    files_modified: List[str] = field(default_factory=list)
    reviewer_files: List[str] = field(default_factory=list)
    error: Optional[str] = None


def build_review_task(files_modified: List[str]) -> str:
    return (
        f"Review the code in these files: {', '.join(files_modified)}. "
        "Check for bugs, syntax errors, or logic flaws. "
        "If you find any, use 'save_file' to FIX them. If they are correct, confirm it."
    )


def build_review_context(files_modified: List[str], working_directory: Path) -> str:
    context = "Here is the content of the created files:\n"
    for rel in files_modified:
        try:
            content = resolve_workspace_path(working_directory, rel).read_text(encoding="utf-8")
        except (ValueError, OSError, UnicodeDecodeError):
            logger.debug("auto-debug: skipping unreadable file %s", rel)
            continue
        context += f"\n--- {rel} ---\n{content}\n"
    return context


def format_report(review: ReviewResult) -> str:
    report = REPORT_HEADING + (review.response or EMPTY_REPORT)
    if review.reviewer_files:
        report += f"\n(The reviewer fixed these files: {', '.join(review.reviewer_files)})"
    return report


class AutoDebugOrchestrator:
    """Second, smaller session that reviews and fixes what the first one wrote.

    The reviewer can only change files through tool calls; its final text is
    not swept for code blocks.
    """

    def __init__(self, session: AgentSession, turn_limit: int = 5) -> None:
        self._session = session
        self._turn_limit = turn_limit

    async def review(self, files_modified: List[str], working_directory: Path) -> ReviewResult:
        if not files_modified:
            return ReviewResult()
        workspace = working_directory.expanduser().resolve()
        log_json(logger, "subagent.review.started", files=list(files_modified), turn_limit=self._turn_limit)
        result = await self._session.run(
            persona=REVIEWER_ROLE,
            task=build_review_task(files_modified),
            context=build_review_context(files_modified, workspace),
            turn_limit=self._turn_limit,
            force_tools_enabled=True,
            working_directory=workspace,
        )
        union = OrderedPathSet(files_modified)
        union.update(result.files_modified)
        review = ReviewResult(
            response=result.response if result.ok else f"Review failed: {result.error}",
            files_modified=union.to_list(),
            reviewer_files=list(result.files_modified),
            error=result.error,
        )
        log_json(
            logger,
            "subagent.review.finished",
            ok=result.ok,
            turns_used=result.turns_used,
            reviewer_files=review.reviewer_files,
        )
        return review
