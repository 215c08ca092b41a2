from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from subagent_delegate.agent.grammar import describe_tool_call_format

INSTRUCTIONS_FILE = "SUB_AGENT_INSTRUCTIONS.md"
PROJECT_INFO_FILE = "PROJECT_INFO.md"
DEFAULT_BASE_PROMPT = "You are a helpful assistant."
REVIEWER_PERSONA = (
    "You are a Senior Code Reviewer. Your job is to analyze code, find bugs, security issues, "
    "or logic errors, and FIX them.\n\n"
    "IMPORTANT: To fix a file, you MUST use the 'save_file' tool with the complete, corrected content "
    "(or 'replace_text_in_file' for a small, exact edit). Do not answer with diffs."
)
_MAX_CONTEXT_FILE_CHARS = 20_000


def read_optional_text(path: Path) -> str:
    """Best-effort read of a project context file; missing or unreadable is ''."""
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return ""
    return text[:_MAX_CONTEXT_FILE_CHARS]


def resolve_persona(persona: str, profiles: Dict[str, str]) -> Optional[str]:
    text = (profiles or {}).get(persona)
    if text and text.strip():
        return text.strip()
    if persona == "reviewer":
        return REVIEWER_PERSONA
    return None


def build_system_prompt(
    working_directory: Path,
    persona: str,
    profiles: Dict[str, str],
    allowed_tools: List[str],
    tool_lines: Optional[List[str]] = None,
) -> str:
    instructions = read_optional_text(working_directory / INSTRUCTIONS_FILE).strip()
    parts: List[str] = [instructions or DEFAULT_BASE_PROMPT]

    project_info = read_optional_text(working_directory / PROJECT_INFO_FILE).strip()
    if project_info:
        parts.append(f"## Current Project Info ({PROJECT_INFO_FILE})\n{project_info}")

    parts.append(
        "## Current Workspace\n"
        f"Your current working directory is: {working_directory}\n"
        "Always assume relative paths are from this directory."
    )

    persona_text = resolve_persona(persona, profiles)
    if persona_text:
        parts.append(f"## Your Persona\n{persona_text}")

    if allowed_tools:
        section = (
            "## Allowed Tools\n"
            f"You have access to the following tools via JSON output: {', '.join(allowed_tools)}."
        )
        if tool_lines:
            section += "\n" + "\n".join(tool_lines)
        section += "\n\n" + describe_tool_call_format(allowed_tools)
        parts.append(section)

    return "\n\n".join(parts)


def build_task_message(task: str, context: str, allowed_tools: List[str]) -> str:
    message = f"Task: {task}\n\nContext: {context}"
    if allowed_tools:
        message += (
            f"\n\n[SYSTEM REMINDER: You have access to tools: {', '.join(allowed_tools)}. "
            "If you need information you don't have, USE A TOOL. Do not refuse.]"
        )
    return message
