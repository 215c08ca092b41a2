import json
import logging
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "subagent-delegate"

MAIN_MODEL_ENDPOINT = "http://localhost:1234/v1"
MAIN_MODEL_ID = "local-model"

ENABLED_KEY = "SUBAGENT_ENABLED"
ENDPOINT_KEY = "SUBAGENT_ENDPOINT"
MODEL_KEY = "SUBAGENT_MODEL"
API_KEY_KEY = "SUBAGENT_API_KEY"
USE_MAIN_MODEL_KEY = "SUBAGENT_USE_MAIN_MODEL"
TEMPERATURE_KEY = "SUBAGENT_TEMPERATURE"
TIMEOUT_KEY = "SUBAGENT_TIMEOUT_SEC"
TRANSPORT_ATTEMPTS_KEY = "SUBAGENT_TRANSPORT_ATTEMPTS"
ALLOW_FILESYSTEM_KEY = "SUBAGENT_ALLOW_FILESYSTEM"
ALLOW_WEB_KEY = "SUBAGENT_ALLOW_WEB"
ALLOW_CODE_KEY = "SUBAGENT_ALLOW_CODE"
AUTO_SAVE_KEY = "SUBAGENT_AUTO_SAVE"
AUTO_DEBUG_KEY = "SUBAGENT_AUTO_DEBUG"
SHOW_FULL_CODE_KEY = "SUBAGENT_SHOW_FULL_CODE"
PROFILES_KEY = "SUBAGENT_PROFILES"
PRIMARY_TURN_LIMIT_KEY = "SUBAGENT_PRIMARY_TURN_LIMIT"
REVIEW_TURN_LIMIT_KEY = "SUBAGENT_REVIEW_TURN_LIMIT"
CODE_TIMEOUT_KEY = "SUBAGENT_CODE_TIMEOUT_SEC"
LOCAL_API_KEY_KEY = "SUBAGENT_LOCAL_API_KEY"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class DelegationConfig:
    enabled: bool = True
    endpoint: str = MAIN_MODEL_ENDPOINT
    model: str = MAIN_MODEL_ID
    api_key: str = ""
    temperature: float = 0.7
    timeout_sec: int = 120
    transport_attempts: int = 2
    allow_filesystem: bool = True
    allow_web: bool = False
    allow_code: bool = False
    auto_save: bool = True
    auto_debug: bool = False
    show_full_code: bool = False
    profiles: Dict[str, str] = field(default_factory=dict)
    primary_turn_limit: int = 8
    review_turn_limit: int = 5
    code_timeout_sec: int = 30
    local_api_key: str = ""

    def with_overrides(self, **changes) -> "DelegationConfig":
        return replace(self, **changes)


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip()
    except Exception as exc:
        print(f"Failed to read .env: {exc}", file=sys.stderr)
    return data


def get_env_value(key: str, env_file: Mapping[str, str]) -> Optional[str]:
    return os.environ.get(key) or env_file.get(key)


def apply_env_defaults(env_file: Dict[str, str], target_env: Optional[Dict[str, str]] = None) -> int:
    """Populate missing process env vars from .env-style mapping.

    Existing environment values are never overwritten.
    Returns the number of keys applied.
    """
    target = target_env if target_env is not None else os.environ  # type: ignore[assignment]
    applied = 0
    for raw_key, raw_value in (env_file or {}).items():
        key = str(raw_key or "").strip()
        if not key:
            continue
        if key in target and str(target.get(key) or "").strip():
            continue
        target[key] = str(raw_value or "")
        applied += 1
    return applied


def get_env_path(config_dir: Path) -> Path:
    return config_dir / ".env"


def load_env_with_fallback(config_dir: Path) -> Dict[str, str]:
    data = load_env_file(get_env_path(config_dir))
    if data:
        return data
    legacy = Path.cwd() / ".env"
    return load_env_file(legacy)


def _env_bool(source: Mapping[str, str], key: str, default: bool) -> bool:
    raw = str(source.get(key) or "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    return default


def _env_int(source: Mapping[str, str], key: str, default: int) -> int:
    raw = str(source.get(key) or "").strip()
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        return default


def _env_float(source: Mapping[str, str], key: str, default: float) -> float:
    raw = str(source.get(key) or "").strip()
    if not raw:
        return default
    try:
        return max(0.0, float(raw))
    except ValueError:
        return default


def parse_profiles(raw: Optional[str]) -> Dict[str, str]:
    text = (raw or "").strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed %s (expected a JSON object).", PROFILES_KEY)
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(k): str(v) for k, v in parsed.items() if str(v or "").strip()}


def config_from_mapping(source: Mapping[str, str]) -> DelegationConfig:
    endpoint = str(source.get(ENDPOINT_KEY) or MAIN_MODEL_ENDPOINT).strip().rstrip("/")
    model = str(source.get(MODEL_KEY) or MAIN_MODEL_ID).strip()
    if _env_bool(source, USE_MAIN_MODEL_KEY, False):
        endpoint = MAIN_MODEL_ENDPOINT
        model = MAIN_MODEL_ID
    primary_limit = _env_int(source, PRIMARY_TURN_LIMIT_KEY, 8)
    review_limit = _env_int(source, REVIEW_TURN_LIMIT_KEY, 5)
    if review_limit >= primary_limit:
        review_limit = max(1, primary_limit - 1)
    return DelegationConfig(
        enabled=_env_bool(source, ENABLED_KEY, True),
        endpoint=endpoint or MAIN_MODEL_ENDPOINT,
        model=model or MAIN_MODEL_ID,
        api_key=str(source.get(API_KEY_KEY) or "").strip(),
        temperature=_env_float(source, TEMPERATURE_KEY, 0.7),
        timeout_sec=_env_int(source, TIMEOUT_KEY, 120),
        transport_attempts=_env_int(source, TRANSPORT_ATTEMPTS_KEY, 2),
        allow_filesystem=_env_bool(source, ALLOW_FILESYSTEM_KEY, True),
        allow_web=_env_bool(source, ALLOW_WEB_KEY, False),
        allow_code=_env_bool(source, ALLOW_CODE_KEY, False),
        auto_save=_env_bool(source, AUTO_SAVE_KEY, True),
        auto_debug=_env_bool(source, AUTO_DEBUG_KEY, False),
        show_full_code=_env_bool(source, SHOW_FULL_CODE_KEY, False),
        profiles=parse_profiles(source.get(PROFILES_KEY)),
        primary_turn_limit=primary_limit,
        review_turn_limit=review_limit,
        code_timeout_sec=_env_int(source, CODE_TIMEOUT_KEY, 30),
        local_api_key=str(source.get(LOCAL_API_KEY_KEY) or "").strip(),
    )


def load_config(config_dir: Path = DEFAULT_CONFIG_DIR) -> DelegationConfig:
    merged: Dict[str, str] = dict(os.environ)
    apply_env_defaults(load_env_with_fallback(config_dir), merged)
    return config_from_mapping(merged)
