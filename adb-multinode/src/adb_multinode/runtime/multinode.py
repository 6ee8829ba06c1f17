"""LAVA MultiNode client.

Wraps the MultiNode helper binaries that LAVA installs into every job of a
MultiNode group:

  lava-sync <message_id>                       barrier across the whole group
  lava-send <message_id> key=value ...         publish key/value pairs
  lava-wait-all <message_id> [<role>]          wait for every sender

After `lava-wait-all` LAVA writes the received data to the cache file
(`/tmp/lava_multi_node_cache.txt`) as `<sender>:<key>=<value>` lines; a plain
`lava-wait` omits the sender prefix.
"""

from __future__ import annotations

import logging
import re
import subprocess
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CACHE_PATH = Path("/tmp/lava_multi_node_cache.txt")

_KEY_RE = re.compile(r"^[^\s=:]+$")


class MultiNodeError(RuntimeError):
    """Raised when a MultiNode primitive fails or a message is malformed."""


@dataclass(frozen=True)
class CacheRecord:
    sender: Optional[str]
    key: str
    value: str


def parse_cache(txt: str) -> List[CacheRecord]:
    records: list[CacheRecord] = []
    for raw in txt.splitlines():
        line = raw.strip()
        if not line or "=" not in line:
            continue
        head, value = line.split("=", 1)
        sender: Optional[str] = None
        key = head
        if ":" in head:
            sender, key = head.split(":", 1)
            sender = sender.strip() or None
        key = key.strip()
        if not key:
            continue
        records.append(CacheRecord(sender=sender, key=key, value=value.strip()))
    return records


def read_cache(path: Path = DEFAULT_CACHE_PATH) -> List[CacheRecord]:
    if not path.exists():
        raise MultiNodeError(f"MultiNode cache file not found: {path}")
    return parse_cache(path.read_text(encoding="utf-8"))


def group_by_sender(records: Iterable[CacheRecord]) -> "OrderedDict[Optional[str], Dict[str, str]]":
    """Group cache records by sender, preserving first-seen order.

    A later value for the same sender/key replaces the earlier one.
    """

    grouped: "OrderedDict[Optional[str], Dict[str, str]]" = OrderedDict()
    for rec in records:
        grouped.setdefault(rec.sender, {})[rec.key] = rec.value
    return grouped


def format_message_args(values: Dict[str, object]) -> List[str]:
    args: list[str] = []
    for key, value in values.items():
        if not _KEY_RE.match(str(key)):
            raise MultiNodeError(f"invalid MultiNode message key: {key!r}")
        text = str(value)
        if not text or any(ch.isspace() for ch in text):
            raise MultiNodeError(f"invalid MultiNode message value for {key}: {text!r}")
        args.append(f"{key}={text}")
    return args


class LavaMultiNode:
    """Thin wrapper around the lava-sync/lava-send/lava-wait-all helpers."""

    def __init__(
        self,
        *,
        sync_cmd: str = "lava-sync",
        send_cmd: str = "lava-send",
        wait_all_cmd: str = "lava-wait-all",
        cache_path: Path = DEFAULT_CACHE_PATH,
        timeout_s: float | None = None,
    ) -> None:
        self._sync_cmd = sync_cmd
        self._send_cmd = send_cmd
        self._wait_all_cmd = wait_all_cmd
        self._cache_path = Path(cache_path)
        self._timeout_s = timeout_s

    @property
    def cache_path(self) -> Path:
        return self._cache_path

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        logger.debug("running: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
            )
        except FileNotFoundError as e:
            raise MultiNodeError(
                f"MultiNode helper not found: {cmd[0]} (not running inside a LAVA MultiNode job?)"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise MultiNodeError(
                f"MultiNode helper timed out after {self._timeout_s}s: {' '.join(cmd)}"
            ) from e
        if proc.returncode != 0:
            raise MultiNodeError(
                f"MultiNode helper failed (rc={proc.returncode}): {' '.join(cmd)}\n"
                f"stdout: {proc.stdout}\n"
                f"stderr: {proc.stderr}"
            )
        return proc

    def sync(self, message_id: str) -> None:
        logger.info("lava-sync %s", message_id)
        self._run([self._sync_cmd, message_id])

    def send(self, message_id: str, **values: object) -> None:
        args = format_message_args(values)
        logger.info("lava-send %s %s", message_id, " ".join(args))
        self._run([self._send_cmd, message_id, *args])

    def wait_all(self, message_id: str, role: Optional[str] = None) -> List[CacheRecord]:
        cmd = [self._wait_all_cmd, message_id]
        if role:
            cmd.append(role)
        logger.info("lava-wait-all %s%s", message_id, f" {role}" if role else "")
        self._run(cmd)
        return read_cache(self._cache_path)
