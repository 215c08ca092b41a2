from typing import Any, Dict, List, Protocol, Sequence


class ChatClient(Protocol):
    async def complete(self, messages: Sequence[Dict[str, str]]) -> str:
        ...

    async def health(self) -> Dict[str, Any]:
        ...


class HistoryRecorder(Protocol):
    async def record(self, task: str, files_modified: List[str], working_directory: Any) -> None:
        ...
