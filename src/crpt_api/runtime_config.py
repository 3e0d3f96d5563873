"""Runtime configuration loader (config-first, flag-overrides)."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "runtime.toml"
DEFAULT_LOCAL_OVERRIDE_PATH = Path(__file__).resolve().parents[2] / "config" / "runtime.local.toml"

DEFAULT_BASE_URL = "https://ismp.crpt.ru"
DEFAULT_TIMEOUT_S = 10.0
DEFAULT_WINDOW_UNIT = "second"
DEFAULT_MAX_REQUESTS_PER_WINDOW = 5


@dataclass(frozen=True)
class RuntimeConfig:
    """Materialized runtime configuration."""

    config_path: Path | None
    api_base_url: str
    api_timeout_s: float
    signature_file: Path | None
    rate_limit_window_unit: str
    rate_limit_max_requests: int


_CURRENT_RUNTIME_CONFIG: RuntimeConfig | None = None


def set_current_runtime_config(config: RuntimeConfig | None) -> None:
    global _CURRENT_RUNTIME_CONFIG
    _CURRENT_RUNTIME_CONFIG = config


def current_runtime_config() -> RuntimeConfig:
    config = _CURRENT_RUNTIME_CONFIG
    if config is not None:
        return config
    loaded = load_runtime_config()
    set_current_runtime_config(loaded)
    return loaded


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in overlay.items():
        existing = out.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            out[key] = _deep_merge(existing, value)
        else:
            out[key] = value
    return out


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        payload = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RuntimeError(f"failed reading runtime config: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise RuntimeError(f"invalid runtime config TOML: {path}") from exc
    if not isinstance(payload, dict):
        raise RuntimeError(f"runtime config root must be a table: {path}")
    return payload


def _as_table(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RuntimeError(f"runtime config section [{key}] must be a table")
    return value


def _as_str(value: Any, *, default: str) -> str:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
    return default


def _as_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def _as_float(value: Any, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return default
    return default


def _resolve_optional_path(raw: Any, *, base_dir: Path) -> Path | None:
    value = _as_str(raw, default="")
    if not value:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    return path


def load_runtime_config(config_path: Path | None = None) -> RuntimeConfig:
    """Load runtime config from `config/runtime.toml` plus optional local override.

    An explicit ``config_path`` must exist. Without one, a missing default file
    yields built-in defaults.
    """
    source = (config_path or DEFAULT_CONFIG_PATH).expanduser().resolve()
    if not source.exists():
        if config_path is not None:
            raise RuntimeError(f"runtime config file not found: {source}")
        payload: dict[str, Any] = {}
        resolved_source: Path | None = None
    else:
        payload = _read_toml(source)
        resolved_source = source
    if config_path is None and DEFAULT_LOCAL_OVERRIDE_PATH.exists():
        payload = _deep_merge(payload, _read_toml(DEFAULT_LOCAL_OVERRIDE_PATH))

    api = _as_table(payload, "api")
    rate_limit = _as_table(payload, "rate_limit")
    base_dir = source.parent

    return RuntimeConfig(
        config_path=resolved_source,
        api_base_url=_as_str(api.get("base_url"), default=DEFAULT_BASE_URL),
        api_timeout_s=_as_float(api.get("timeout_s"), default=DEFAULT_TIMEOUT_S),
        signature_file=_resolve_optional_path(api.get("signature_file"), base_dir=base_dir),
        rate_limit_window_unit=_as_str(rate_limit.get("window_unit"), default=DEFAULT_WINDOW_UNIT),
        rate_limit_max_requests=_as_int(
            rate_limit.get("max_requests_per_window"),
            default=DEFAULT_MAX_REQUESTS_PER_WINDOW,
        ),
    )


def runtime_env_overrides(config: RuntimeConfig) -> dict[str, str]:
    """Project runtime config onto the `CRPT_` env keys read by `Settings`."""
    out = {
        "CRPT_BASE_URL": config.api_base_url,
        "CRPT_TIMEOUT_S": str(config.api_timeout_s),
        "CRPT_WINDOW_UNIT": config.rate_limit_window_unit,
        "CRPT_MAX_REQUESTS_PER_WINDOW": str(config.rate_limit_max_requests),
    }
    if config.signature_file is not None:
        out["CRPT_SIGNATURE_FILE"] = str(config.signature_file)
    return out
