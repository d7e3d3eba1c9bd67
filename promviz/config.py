"""Configuration loading for promviz.

Loads settings from TOML config files merged over defaults.
Search order: explicit --config path → ./promviz.toml → ~/.config/promviz/config.toml.
"""

from __future__ import annotations

import json
import sys
import tomllib
from pathlib import Path
from typing import Any

from promviz.backends.base import Query

SUPPORTED_BACKENDS: tuple[str, ...] = ("prometheus", "influxdb", "influxdb1", "mock")

DEFAULT_CONFIG: dict[str, Any] = {
    "backend": "prometheus",
    "refresh_interval": 5.0,
    "connect_timeout": 5.0,
    "query_timeout": 3.0,
    "prometheus": {"url": ""},
    "influxdb": {"url": "", "token": "", "org": "", "bucket": ""},
    "influxdb1": {"url": "", "username": "", "password": "", "database": ""},
    "mock": {"seed": 0},
    "queries": [],
}

# Fields each backend cannot run without, in the order they are reported.
REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "prometheus": ("url",),
    "influxdb": ("url", "token", "org", "bucket"),
    "influxdb1": ("url", "database"),
    "mock": (),
}

_LOCAL_PATH = Path("promviz.toml")
_DEFAULT_PATH = Path.home() / ".config" / "promviz" / "config.toml"


class ConfigError(ValueError):
    """Configuration is missing, malformed or inconsistent."""


class UnsupportedBackendError(ConfigError):
    def __init__(self, backend: str) -> None:
        super().__init__(
            f"unsupported backend: {backend} "
            f"(supported: {', '.join(SUPPORTED_BACKENDS)})"
        )
        self.backend = backend


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Check a merged config and normalise the backend name.

    Raises:
        ConfigError: On the first problem found.
    """
    backend = config.get("backend") or "prometheus"
    if backend not in SUPPORTED_BACKENDS:
        raise UnsupportedBackendError(str(backend))
    config["backend"] = backend

    section = config.get(backend) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"[{backend}] must be a table")
    for name in REQUIRED_FIELDS[backend]:
        if not section.get(name):
            raise ConfigError(f"{backend}.{name} is required")

    for key in ("refresh_interval", "connect_timeout", "query_timeout"):
        value = config.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigError(f"{key} must be a positive number")

    queries = config.get("queries") or []
    if not isinstance(queries, list) or not queries:
        raise ConfigError("at least one query is required")
    for i, query in enumerate(queries):
        if not isinstance(query, dict) or not query.get("name"):
            raise ConfigError(f"query {i}: name is required")
        if not query.get("expr"):
            raise ConfigError(f"query {i}: expr is required")

    return config


def get_queries(config: dict[str, Any]) -> list[Query]:
    """Build the ordered query list from a validated config."""
    return [Query(name=str(q["name"]), expr=str(q["expr"])) for q in config["queries"]]


def find_config_path(path: Path | None = None) -> Path | None:
    """Resolve which config file to read, or None if nothing is available."""
    if path is not None:
        return path
    for candidate in (_LOCAL_PATH, _DEFAULT_PATH):
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults and validating it.

    Args:
        path: Config file path (from --config or find_config_path()).

    Returns:
        Merged, validated configuration dict.

    Raises:
        SystemExit: If the file doesn't exist, can't be parsed or is invalid.
    """
    if not path.is_file():
        print(f"promviz: config file not found: {path}", file=sys.stderr)
        raise SystemExit(1)
    try:
        user_config = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        print(f"promviz: invalid TOML in {path}: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    try:
        return validate_config(_deep_merge(DEFAULT_CONFIG, user_config))
    except ConfigError as e:
        print(f"promviz: invalid configuration in {path}: {e}", file=sys.stderr)
        raise SystemExit(1) from e


_EXAMPLES: dict[str, tuple[dict[str, Any], list[tuple[str, str]]]] = {
    "prometheus": (
        {"url": "http://localhost:9090"},
        [
            ("CPU Usage", 'rate(node_cpu_seconds_total{mode="user"}[5m])'),
            ("Memory Usage", "node_memory_MemAvailable_bytes / node_memory_MemTotal_bytes"),
        ],
    ),
    "influxdb": (
        {
            "url": "http://localhost:8086",
            "token": "your-token",
            "org": "your-org",
            "bucket": "metrics",
        },
        [("CPU Usage", 'r._measurement == "cpu" and r._field == "usage_percent"')],
    ),
    "influxdb1": (
        {
            "url": "http://localhost:8086",
            "username": "admin",
            "password": "password",
            "database": "telegraf",
        },
        [("CPU Usage", 'SELECT mean("usage_idle") FROM "cpu" WHERE time >= now() - 5m')],
    ),
    "mock": (
        {"seed": 42},
        [
            ("CPU Usage", "cpu_usage"),
            ("Memory Usage", "memory_usage"),
            ("Disk Usage", "disk_usage"),
            ("Network", "network_bytes"),
        ],
    ),
}


def _toml_value(value: Any) -> str:
    if isinstance(value, str):
        # Literal strings keep PromQL/Flux quoting readable.
        return f"'{value}'" if '"' in value and "'" not in value else json.dumps(value)
    return str(value)


def dump_example_config(backend: str = "prometheus") -> str:
    """Return an example configuration for *backend* as a TOML string."""
    if backend not in _EXAMPLES:
        raise UnsupportedBackendError(backend)
    section, queries = _EXAMPLES[backend]

    lines = [
        "# promviz configuration",
        f"# Place this file at ./{_LOCAL_PATH} or ~/.config/promviz/config.toml",
        "",
        f'backend = "{backend}"',
        f"refresh_interval = {DEFAULT_CONFIG['refresh_interval']}",
        f"connect_timeout = {DEFAULT_CONFIG['connect_timeout']}",
        f"query_timeout = {DEFAULT_CONFIG['query_timeout']}",
        "",
        f"[{backend}]",
    ]
    for key, value in section.items():
        lines.append(f"{key} = {_toml_value(value)}")
    lines.append("")

    for name, expr in queries:
        lines.append("[[queries]]")
        lines.append(f"name = {_toml_value(name)}")
        lines.append(f"expr = {_toml_value(expr)}")
        lines.append("")

    return "\n".join(lines) + "\n"
