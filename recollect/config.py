from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/recollect/config.json").expanduser()
DEFAULT_DB_PATH = Path("~/.recollect/memory.sqlite").expanduser()

EMBEDDING_PROVIDERS = ("local", "openai", "ollama")
INJECTION_FORMATS = ("timeline", "bullets", "structured")

CONFIG_ENV_OVERRIDES = {
    "db_path": "RECOLLECT_DB",
    "host": "RECOLLECT_HOST",
    "port": "RECOLLECT_PORT",
    "log_path": "RECOLLECT_LOG",
    "maintenance_interval_s": "RECOLLECT_MAINTENANCE_INTERVAL_S",
    "embedding_provider": "RECOLLECT_EMBEDDING_PROVIDER",
    "embedding_model": "RECOLLECT_EMBEDDING_MODEL",
    "embedding_dimensions": "RECOLLECT_EMBEDDING_DIMENSIONS",
    "embedding_api_key": "RECOLLECT_EMBEDDING_API_KEY",
    "embedding_base_url": "RECOLLECT_EMBEDDING_BASE_URL",
    "embeddings_disabled": "RECOLLECT_EMBEDDING_DISABLED",
    "capture_enabled": "RECOLLECT_CAPTURE",
    "capture_messages": "RECOLLECT_CAPTURE_MESSAGES",
    "injection_budget_tokens": "RECOLLECT_INJECTION_BUDGET",
    "injection_format": "RECOLLECT_INJECTION_FORMAT",
    "privacy_enabled": "RECOLLECT_PRIVACY",
    "retention_days": "RECOLLECT_RETENTION_DAYS",
    "max_memories": "RECOLLECT_MAX_MEMORIES",
}

_INT_RANGES: dict[str, tuple[int, int]] = {
    "port": (0, 65535),
    "maintenance_interval_s": (0, 7 * 24 * 3600),
    "embedding_dimensions": (64, 4096),
    "capture_min_importance": (0, 10),
    "injection_budget_tokens": (100, 4000),
    "retention_days": (1, 365),
    "max_memories": (100, 100000),
}

_BOOL_KEYS = {
    "embeddings_disabled",
    "capture_enabled",
    "capture_tool_use",
    "capture_messages",
    "capture_phase_changes",
    "privacy_enabled",
    "privacy_private_tags",
}

_FLOAT_KEYS = {"hybrid_fts_weight", "hybrid_vector_weight"}

_LIST_KEYS = {"capture_skip_tools", "injection_priority_types"}

_CHOICES: dict[str, tuple[str, ...]] = {
    "embedding_provider": EMBEDDING_PROVIDERS,
    "injection_format": INJECTION_FORMATS,
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("RECOLLECT_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class RecollectConfig:
    db_path: str = str(DEFAULT_DB_PATH)
    host: str = "127.0.0.1"
    port: int = 37777
    log_path: str | None = None
    maintenance_interval_s: int = 3600

    embedding_provider: str = "local"
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dimensions: int = 384
    embedding_api_key: str | None = None
    embedding_base_url: str | None = None
    embeddings_disabled: bool = False

    capture_enabled: bool = True
    capture_tool_use: bool = True
    capture_messages: bool = False
    capture_phase_changes: bool = True
    capture_min_importance: int = 4
    # Compared after lowercasing and dropping an "mcp_" prefix.
    capture_skip_tools: list[str] = field(
        default_factory=lambda: [
            "read",
            "glob",
            "grep",
            "bash",
            "memory_save",
            "memory_search",
            "memory_note",
            "memory_decision",
            "memory_forget",
        ]
    )

    injection_budget_tokens: int = 800
    injection_format: str = "timeline"
    injection_priority_types: list[str] = field(
        default_factory=lambda: ["decision", "observation", "todo"]
    )

    privacy_enabled: bool = True
    privacy_private_tags: bool = True
    retention_days: int = 90
    max_memories: int = 10000

    hybrid_fts_weight: float = 0.4
    hybrid_vector_weight: float = 0.6


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    bounds = _INT_RANGES.get(key)
    if bounds and not bounds[0] <= parsed <= bounds[1]:
        warnings.warn(
            f"Out of range {key}: {parsed} (expected {bounds[0]}..{bounds[1]})",
            RuntimeWarning,
            stacklevel=2,
        )
        return default
    return parsed


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if parsed < 0:
        warnings.warn(f"Negative weight for {key}: {parsed}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_str_list(value: object, *, key: str) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, list):
        items: list[str] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                items.append(item.strip())
        return items
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    warnings.warn(f"Invalid list for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return None


def _coerce_choice(value: object, default: str, *, key: str) -> str:
    choices = _CHOICES[key]
    if isinstance(value, str) and value.strip().lower() in choices:
        return value.strip().lower()
    warnings.warn(
        f"Invalid {key}: {value!r} (expected one of {', '.join(choices)})",
        RuntimeWarning,
        stacklevel=2,
    )
    return default


def _apply_value(cfg: RecollectConfig, key: str, value: object) -> None:
    current = getattr(cfg, key)
    if key in _INT_RANGES:
        setattr(cfg, key, _parse_int(value, current, key=key))
    elif key in _BOOL_KEYS:
        setattr(cfg, key, _coerce_bool(value, current, key=key))
    elif key in _FLOAT_KEYS:
        setattr(cfg, key, _parse_float(value, current, key=key))
    elif key in _LIST_KEYS:
        parsed = _coerce_str_list(value, key=key)
        if parsed is not None:
            setattr(cfg, key, [item.lower() for item in parsed])
    elif key in _CHOICES:
        setattr(cfg, key, _coerce_choice(value, current, key=key))
    elif value is None or isinstance(value, str):
        setattr(cfg, key, value)
    else:
        warnings.warn(f"Invalid string for {key}: {value!r}", RuntimeWarning, stacklevel=2)


def load_config(path: Path | None = None) -> RecollectConfig:
    cfg = RecollectConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def _apply_dict(cfg: RecollectConfig, data: dict[str, Any]) -> RecollectConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        _apply_value(cfg, key, value)
    return cfg


def _apply_env(cfg: RecollectConfig) -> RecollectConfig:
    for key, value in get_env_overrides().items():
        _apply_value(cfg, key, value)
    return cfg
