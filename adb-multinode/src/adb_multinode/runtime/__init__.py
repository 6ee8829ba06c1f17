"""Thin wrappers around the external tools (adb, LAVA MultiNode) and retry loops."""

from __future__ import annotations

from adb_multinode.runtime.android.controller import AdbController, AdbControllerError
from adb_multinode.runtime.multinode import LavaMultiNode, MultiNodeError
from adb_multinode.runtime.retry import poll_until, retry

__all__ = [
    "AdbController",
    "AdbControllerError",
    "LavaMultiNode",
    "MultiNodeError",
    "poll_until",
    "retry",
]
