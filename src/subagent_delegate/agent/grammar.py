"""Tool-call grammar for secondary agents.

Models are asked to answer with one JSON object per turn, but in practice
three shapes show up and all of them are accepted (first match wins):

1. ``{"tool": "<name>", "args": {...}}``          canonical
2. ``{"name": "<name>", "arguments": {...}}``     vendor function-call shape
3. a bare arguments value plus a ``to=<dotted.name>`` token elsewhere in the
   text, e.g. ``to=functions.save_file {"file_name": ...}``

Each raw shape is decoded into its own small type first and then normalized
into exactly one ``ToolCall``. Only the first JSON value in the text is looked
at; anything that fails to decode means "no call".
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

COMPLETION_MARKER = "TASK_COMPLETED"

_TURN_MARKER_RE = re.compile(r"<\|.*?\|>", re.DOTALL)
_DOTTED_TARGET_RE = re.compile(r"to=([A-Za-z0-9_.]+)")
_FUNCTIONS_PREFIX = "functions."
_DECODER = json.JSONDecoder()


@dataclass(frozen=True)
class ToolCall:
    tool_name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CanonicalShape:
    tool: str
    args: Any


@dataclass(frozen=True)
class VendorShape:
    name: str
    arguments: Any


@dataclass(frozen=True)
class DottedTargetShape:
    target: str
    payload: Any


RawToolCall = Union[CanonicalShape, VendorShape, DottedTargetShape]


def strip_turn_markers(text: str) -> str:
    """Drop ``<|...|>`` end-of-turn/channel tokens some local models leak."""
    return _TURN_MARKER_RE.sub("", text or "").strip()


def has_completion_marker(text: str) -> bool:
    return COMPLETION_MARKER in (text or "")


def first_json_value(text: str) -> Optional[Any]:
    """Decode the JSON object that starts at the first ``{``.

    An array of objects opening before that brace (batch payloads) wins over
    it. Returns None when there is no opener or the object is malformed.
    """
    brace = text.find("{")
    bracket = text.find("[")
    if bracket != -1 and (brace == -1 or bracket < brace):
        try:
            value, _end = _DECODER.raw_decode(text, bracket)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list) and value and all(isinstance(item, dict) for item in value):
            return value
    if brace == -1:
        return None
    try:
        value, _end = _DECODER.raw_decode(text, brace)
    except json.JSONDecodeError:
        return None
    return value


def classify(text: str) -> Optional[RawToolCall]:
    value = first_json_value(text)
    if value is None:
        return None
    if isinstance(value, dict):
        tool = value.get("tool")
        if isinstance(tool, str) and tool.strip() and "args" in value:
            return CanonicalShape(tool=tool.strip(), args=value.get("args"))
        name = value.get("name")
        if isinstance(name, str) and name.strip() and "arguments" in value:
            return VendorShape(name=name.strip(), arguments=value.get("arguments"))
    match = _DOTTED_TARGET_RE.search(text)
    if match and isinstance(value, (dict, list)):
        return DottedTargetShape(target=match.group(1), payload=value)
    return None


def normalize(raw: RawToolCall) -> Optional[ToolCall]:
    if isinstance(raw, CanonicalShape):
        name, payload = raw.tool, raw.args
    elif isinstance(raw, VendorShape):
        name, payload = raw.name, _decode_arguments(raw.arguments)
    else:
        name = raw.target
        if name.startswith(_FUNCTIONS_PREFIX):
            name = name[len(_FUNCTIONS_PREFIX):]
        payload = raw.payload
    name = name.strip()
    if not name:
        return None
    if name == "save_file":
        return ToolCall(tool_name=name, args=normalize_save_file_args(payload))
    if not isinstance(payload, dict):
        return None
    return ToolCall(tool_name=name, args=dict(payload))


def normalize_save_file_args(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, list):
        return {"files": list(payload)}
    if not isinstance(payload, dict):
        return {}
    args = dict(payload)
    if args.get("path") and not args.get("file_name"):
        args["file_name"] = args.pop("path")
    if args.get("data") and not args.get("content"):
        args["content"] = args.pop("data")
    return args


def _decode_arguments(arguments: Any) -> Any:
    # Function-calling APIs often send arguments as a JSON-encoded string.
    if isinstance(arguments, str):
        try:
            return json.loads(arguments)
        except json.JSONDecodeError:
            return None
    return arguments


def parse_tool_call(text: str) -> Optional[ToolCall]:
    raw = classify(text or "")
    if raw is None:
        return None
    return normalize(raw)


def describe_tool_call_format(tool_names: List[str]) -> str:
    example = tool_names[0] if tool_names else "read_file"
    return (
        "To call a tool, reply with a single JSON object and nothing else, e.g.\n"
        f'{{"tool": "{example}", "args": {{...}}}}\n'
        f"When the task is finished, reply with your final answer and the word {COMPLETION_MARKER}."
    )
