import json
from datetime import datetime, timezone
from logging import Logger
from typing import Any, Dict


def _encode(event: str, fields: Dict[str, Any]) -> str:
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    payload.update(fields)
    return json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str)


def log_json(logger: Logger, event: str, **fields: Any) -> None:
    logger.info(_encode(event, fields))


def log_json_warning(logger: Logger, event: str, **fields: Any) -> None:
    logger.warning(_encode(event, fields))
