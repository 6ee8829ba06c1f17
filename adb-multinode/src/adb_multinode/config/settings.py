"""Handshake settings.

Precedence, lowest to highest:

  built-in defaults -> config file (YAML/JSON) -> $ADB_MULTINODE_* -> explicit overrides

The merged result is validated against `schemas/settings_schema.json` before
it becomes a `MultiNodeSettings`, so bad values coming from the environment
are reported the same way as bad values in a file.
"""

from __future__ import annotations

import json
import os
import socket
from dataclasses import asdict, dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from jsonschema import Draft202012Validator

ENV_PREFIX = "ADB_MULTINODE_"
SETTINGS_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "settings_schema.json"

_MAX_ERRORS = 20

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigValidationError(RuntimeError):
    pass


@dataclass(frozen=True)
class MultiNodeSettings:
    adb_path: str = "adb"
    adb_timeout_s: float = 30.0
    tcpip_port: int = 5555
    interfaces: Tuple[str, ...] = ("wlan0", "eth0")
    tcpip_timeout_s: float = 300.0
    poll_interval_s: float = 5.0
    connect_attempts: int = 10
    wait_for_device_timeout_s: float = 300.0
    boot_timeout_s: float = 600.0
    publish_message_id: str = "adb-tcpip-address"
    done_message_id: str = "adb-tcpip-done"
    role: Optional[str] = None
    worker_id: Optional[str] = None
    release_local_adb: bool = True
    require_all: bool = False
    cache_path: str = "/tmp/lava_multi_node_cache.txt"
    lava_sync: str = "lava-sync"
    lava_send: str = "lava-send"
    lava_wait_all: str = "lava-wait-all"
    multinode_timeout_s: Optional[float] = None
    source: Optional[str] = field(default=None, compare=False)

    @property
    def local_worker_id(self) -> str:
        return self.worker_id or socket.gethostname()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("source", None)
        data["interfaces"] = list(self.interfaces)
        return data


_FIELD_TYPES: Dict[str, str] = {
    "adb_path": "str",
    "adb_timeout_s": "float",
    "tcpip_port": "int",
    "interfaces": "list",
    "tcpip_timeout_s": "float",
    "poll_interval_s": "float",
    "connect_attempts": "int",
    "wait_for_device_timeout_s": "float",
    "boot_timeout_s": "float",
    "publish_message_id": "str",
    "done_message_id": "str",
    "role": "optional_str",
    "worker_id": "optional_str",
    "release_local_adb": "bool",
    "require_all": "bool",
    "cache_path": "str",
    "lava_sync": "str",
    "lava_send": "str",
    "lava_wait_all": "str",
    "multinode_timeout_s": "optional_float",
}


def _coerce_env_value(name: str, kind: str, raw: str) -> Any:
    text = raw.strip()
    try:
        if kind == "int":
            return int(text)
        if kind == "float":
            return float(text)
        if kind == "optional_float":
            return float(text) if text else None
    except ValueError as e:
        raise ConfigValidationError(f"- ${ENV_PREFIX}{name.upper()}: not a number: {raw!r}") from e
    if kind == "bool":
        lowered = text.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigValidationError(f"- ${ENV_PREFIX}{name.upper()}: not a boolean: {raw!r}")
    if kind == "list":
        return [p.strip() for p in text.split(",") if p.strip()]
    if kind == "optional_str":
        return text or None
    return text


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    env = os.environ if environ is None else environ
    out: Dict[str, Any] = {}
    for name, kind in _FIELD_TYPES.items():
        key = ENV_PREFIX + name.upper()
        if key in env:
            out[name] = _coerce_env_value(name, kind, env[key])
    return out


def read_settings_file(path: Path) -> Dict[str, Any]:
    """Read a YAML or JSON settings file; an empty YAML file means no settings."""

    if not path.exists():
        raise FileNotFoundError(path)

    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if data is None:
            data = {}
    elif path.suffix.lower() == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
    else:
        raise ValueError(f"Unsupported settings file extension: {path}")

    if not isinstance(data, dict):
        raise ConfigValidationError(f"Top-level settings must be a mapping: {path}")
    return data


@lru_cache(maxsize=1)
def _settings_validator() -> Draft202012Validator:
    return Draft202012Validator(json.loads(SETTINGS_SCHEMA_PATH.read_text(encoding="utf-8")))


def validate_settings(
    data: Mapping[str, Any],
    *,
    origins: Optional[Mapping[str, str]] = None,
    default_origin: str = "settings",
) -> None:
    """Check `data` against the bundled schema.

    Each error is labelled with where its key came from (`origins`, e.g.
    `site.yaml:tcpip_port` or `$ADB_MULTINODE_TCPIP_PORT`), falling back to
    `default_origin` for keys with no recorded origin and for whole-object errors.
    """

    origins = origins or {}
    errors = sorted(_settings_validator().iter_errors(dict(data)), key=lambda e: list(e.path))
    if not errors:
        return
    msgs = []
    for e in errors[:_MAX_ERRORS]:
        path = [str(p) for p in e.path]
        if path:
            label = origins.get(path[0], f"{default_origin}:{path[0]}")
            label = "/".join([label] + path[1:])
        else:
            label = default_origin
        msgs.append(f"- {label}: {e.message}")
    if len(errors) > _MAX_ERRORS:
        msgs.append(f"... ({len(errors) - _MAX_ERRORS} more)")
    raise ConfigValidationError("\n".join(msgs))


def load_settings(
    *,
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> MultiNodeSettings:
    merged: Dict[str, Any] = MultiNodeSettings().to_dict()
    origins: Dict[str, str] = {}

    if config_path is not None:
        data = read_settings_file(config_path)
        validate_settings(data, default_origin=str(config_path))
        merged.update(data)
        origins.update({key: f"{config_path}:{key}" for key in data})

    env_values = settings_from_env(environ)
    merged.update(env_values)
    origins.update({key: f"${ENV_PREFIX}{key.upper()}" for key in env_values})

    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = list(value) if isinstance(value, tuple) else value
            origins[key] = key

    validate_settings(merged, origins=origins)

    known = {f.name for f in fields(MultiNodeSettings)}
    kwargs = {k: v for k, v in merged.items() if k in known}
    kwargs["interfaces"] = tuple(kwargs["interfaces"])
    return MultiNodeSettings(
        **kwargs,
        source=str(config_path) if config_path is not None else None,
    )
