"""Device-to-worker mapping file.

One record per line, `device_address;worker_host_id`. The host worker writes
it once per run after the handshake; later test steps read it to find out
which worker physically owns a device.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

SEPARATOR = ";"


class MappingFormatError(ValueError):
    pass


@dataclass(frozen=True)
class DeviceMapping:
    device: str
    worker: str

    def to_line(self) -> str:
        return f"{self.device}{SEPARATOR}{self.worker}"


def check_field(value: str, *, name: str) -> str:
    """Return `value` stripped, or raise if it cannot be one side of a record."""

    value = str(value).strip()
    if not value:
        raise MappingFormatError(f"empty {name} in mapping record")
    if SEPARATOR in value or "\n" in value:
        raise MappingFormatError(f"{name} must not contain {SEPARATOR!r} or newlines: {value!r}")
    return value


def dedupe(mappings: Iterable[DeviceMapping]) -> List[DeviceMapping]:
    """Drop repeated devices; the first record for a device wins."""

    seen: set[str] = set()
    out: list[DeviceMapping] = []
    for m in mappings:
        if m.device in seen:
            continue
        seen.add(m.device)
        out.append(m)
    return out


def parse_mapping(txt: str, *, where: str = "<mapping>") -> List[DeviceMapping]:
    out: list[DeviceMapping] = []
    for lineno, raw in enumerate(txt.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        parts = line.split(SEPARATOR)
        if len(parts) != 2:
            raise MappingFormatError(f"{where}:{lineno}: expected 'device;worker', got {line!r}")
        try:
            device = check_field(parts[0], name="device")
            worker = check_field(parts[1], name="worker")
        except MappingFormatError as e:
            raise MappingFormatError(f"{where}:{lineno}: {e}") from e
        out.append(DeviceMapping(device=device, worker=worker))
    return dedupe(out)


def read_mapping(path: Path) -> List[DeviceMapping]:
    if not path.exists():
        raise FileNotFoundError(path)
    return parse_mapping(path.read_text(encoding="utf-8"), where=str(path))


def write_mapping(path: Path, mappings: Iterable[DeviceMapping]) -> Path:
    records = dedupe(
        DeviceMapping(
            device=check_field(m.device, name="device"),
            worker=check_field(m.worker, name="worker"),
        )
        for m in mappings
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.parent / (path.name + ".tmp")
    tmp_path.write_text("".join(r.to_line() + "\n" for r in records), encoding="utf-8")
    tmp_path.replace(path)
    return path


def as_dict(mappings: Iterable[DeviceMapping]) -> Dict[str, str]:
    return {m.device: m.worker for m in mappings}


def worker_for(mappings: Iterable[DeviceMapping], device: str) -> Optional[str]:
    for m in mappings:
        if m.device == device:
            return m.worker
    return None
