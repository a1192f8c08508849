"""
Runtime settings for the bridge.

The upstream terminal URL is the only mandatory value. Everything else has a
default tuned for a single local terminal. Values are resolved in this order:

1. Keyword overrides passed to :func:`load_settings`.
2. Environment variables (``THETADATA_BASE_URL``, ``THETA_BRIDGE_*``).
3. The ``[bridge]`` table of a TOML file: ``THETA_BRIDGE_CONFIG`` if set,
   otherwise ``.theta-bridge/config.toml`` in the working directory or the
   project root.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CONNECT_ATTEMPTS = 2
DEFAULT_IDLE_DELAY = 0.05
DEFAULT_EVICTION_AGE = 600.0
DEFAULT_SWEEP_INTERVAL = 600.0

_ENV_CONFIG_PATH = "THETA_BRIDGE_CONFIG"
_ENV_KEYS: Mapping[str, str] = {
    "base_url": "THETADATA_BASE_URL",
    "request_timeout": "THETA_BRIDGE_REQUEST_TIMEOUT",
    "connect_attempts": "THETA_BRIDGE_CONNECT_ATTEMPTS",
    "idle_delay": "THETA_BRIDGE_IDLE_DELAY",
    "eviction_age": "THETA_BRIDGE_EVICTION_AGE",
    "sweep_interval": "THETA_BRIDGE_SWEEP_INTERVAL",
    "protect_in_flight": "THETA_BRIDGE_PROTECT_IN_FLIGHT",
    "handlers_file": "THETA_BRIDGE_HANDLERS_FILE",
}


class ConfigurationError(RuntimeError):
    """Raised when required settings are missing or malformed."""


@dataclass(slots=True)
class BridgeSettings:
    """
    Resolved bridge configuration.

    Attributes
    ----------
    base_url:
        Root URL of the upstream terminal, e.g. ``http://127.0.0.1:25503``.
    request_timeout:
        Per-request timeout (seconds) enforced by the HTTP client.
    connect_attempts:
        Total attempts when the TCP connection cannot be established.
    idle_delay:
        Seconds the drain worker waits when no item is pending.
    eviction_age:
        Items older than this many seconds are removed by the sweeper.
    sweep_interval:
        Seconds between eviction sweeps.
    protect_in_flight:
        When ``True`` the sweeper skips ``processing`` items.
    handlers_file:
        Optional YAML file overriding handler registration order.
    source_path:
        TOML file the settings were read from, if any.
    """

    base_url: str
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    connect_attempts: int = DEFAULT_CONNECT_ATTEMPTS
    idle_delay: float = DEFAULT_IDLE_DELAY
    eviction_age: float = DEFAULT_EVICTION_AGE
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    protect_in_flight: bool = False
    handlers_file: Optional[Path] = None
    source_path: Optional[Path] = None


def _discover_project_root() -> Optional[Path]:
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return None


def _candidate_paths() -> Iterable[Path]:
    env_override = os.getenv(_ENV_CONFIG_PATH)
    if env_override:
        yield Path(env_override).expanduser()
        return

    roots = [Path.cwd()]
    project_root = _discover_project_root()
    if project_root and project_root not in roots:
        roots.append(project_root)
    for root in roots:
        yield root / ".theta-bridge" / "config.toml"


def _load_toml_section(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as handle:
            payload = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Failed to parse '{path}': {exc}") from exc
    section = payload.get("bridge", {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{path}' must define [bridge] as a table.")
    return section


def _as_float(key: str, value: Any) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Setting '{key}' must be a number, got {value!r}.") from None
    if result < 0:
        raise ConfigurationError(f"Setting '{key}' must not be negative.")
    return result


def _as_int(key: str, value: Any) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Setting '{key}' must be an integer, got {value!r}.") from None
    if result < 1:
        raise ConfigurationError(f"Setting '{key}' must be at least 1.")
    return result


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off", ""}:
        return False
    raise ConfigurationError(f"Setting '{key}' must be a boolean, got {value!r}.")


def _as_path(key: str, value: Any) -> Optional[Path]:
    text = str(value).strip()
    return Path(text).expanduser() if text else None


_COERCERS: Mapping[str, Callable[[str, Any], Any]] = {
    "request_timeout": _as_float,
    "connect_attempts": _as_int,
    "idle_delay": _as_float,
    "eviction_age": _as_float,
    "sweep_interval": _as_float,
    "protect_in_flight": _as_bool,
    "handlers_file": _as_path,
}


def load_settings(**overrides: Any) -> BridgeSettings:
    """
    Resolve :class:`BridgeSettings` from overrides, environment and TOML.

    Raises
    ------
    ConfigurationError
        When no upstream base URL is configured or a value cannot be coerced.
    """

    known = {item.name for item in fields(BridgeSettings)} - {"source_path"}
    unknown = set(overrides) - known
    if unknown:
        raise ConfigurationError(f"Unknown setting(s): {', '.join(sorted(unknown))}.")

    raw: Dict[str, Any] = {}
    source_path: Optional[Path] = None
    for candidate in _candidate_paths():
        if candidate.is_file():
            raw.update({key: value for key, value in _load_toml_section(candidate).items() if key in known})
            source_path = candidate
            break

    for key, env_name in _ENV_KEYS.items():
        value = os.getenv(env_name)
        if value is not None and value.strip():
            raw[key] = value

    raw.update({key: value for key, value in overrides.items() if value is not None})

    base_url = str(raw.pop("base_url", "") or "").strip()
    if not base_url:
        raise ConfigurationError(f"Missing upstream base URL. Set {_ENV_KEYS['base_url']} or base_url under [bridge].")

    resolved = {key: _COERCERS[key](key, value) for key, value in raw.items()}
    return BridgeSettings(base_url=base_url.rstrip("/"), source_path=source_path, **resolved)
