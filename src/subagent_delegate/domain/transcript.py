from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

ALLOWED_ROLES = {"system", "user", "assistant"}


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ALLOWED_ROLES:
            raise ValueError(f"Unsupported message role: {self.role!r}")

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class OrderedPathSet:
    """Insertion-ordered set of workspace-relative paths."""

    def __init__(self, items: Iterable[str] = ()) -> None:
        self._items: Dict[str, None] = {}
        self.update(items)

    def add(self, path: str) -> None:
        key = (path or "").strip()
        if key:
            self._items.setdefault(key, None)

    def update(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.add(path)

    def __contains__(self, path: object) -> bool:
        return path in self._items

    def __iter__(self):
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def to_list(self) -> List[str]:
        return list(self._items)


@dataclass
class SessionState:
    turn_limit: int
    messages: List[Message] = field(default_factory=list)
    turns_used: int = 0
    files_modified: OrderedPathSet = field(default_factory=OrderedPathSet)
    final_text: Optional[str] = None

    def append(self, role: str, content: str) -> None:
        self.messages.append(Message(role=role, content=content))

    def payload(self) -> List[Dict[str, str]]:
        return [m.to_payload() for m in self.messages]

    @property
    def last_allowed_turn(self) -> bool:
        return self.turns_used >= self.turn_limit - 1


@dataclass(frozen=True)
class SessionResult:
    response: str = ""
    files_modified: List[str] = field(default_factory=list)
    error: Optional[str] = None
    turns_used: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None
