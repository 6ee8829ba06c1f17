from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Dict

from adb_multinode.config.settings import MultiNodeSettings, load_settings
from adb_multinode.runtime.android.controller import AdbController
from adb_multinode.runtime.multinode import LavaMultiNode

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=os.environ.get("ADB_MULTINODE_CONFIG"),
        help="YAML/JSON settings file (default: $ADB_MULTINODE_CONFIG)",
    )
    parser.add_argument(
        "--adb_path",
        type=str,
        default=None,
        help="Path to adb binary (default: adb or $ADB_MULTINODE_ADB_PATH)",
    )
    parser.add_argument(
        "--serial",
        type=str,
        default=os.environ.get("ANDROID_SERIAL"),
        help="Local adb device serial (default: $ANDROID_SERIAL)",
    )
    parser.add_argument(
        "--worker_id",
        type=str,
        default=None,
        help="Identifier of this worker host (default: host name)",
    )
    parser.add_argument(
        "--role",
        type=str,
        default=None,
        help=(
            "MultiNode role of the device workers. Without it lava-wait-all also waits "
            "for this host, which never publishes, so set it here or in the config"
        ),
    )
    parser.add_argument(
        "--log_level",
        type=str,
        default=os.environ.get("ADB_MULTINODE_LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO or $ADB_MULTINODE_LOG_LEVEL)",
    )


def setup_logging(level: str) -> None:
    logging.basicConfig(level=str(level).upper(), format=LOG_FORMAT)


def settings_from_args(args: argparse.Namespace, **extra: Any) -> MultiNodeSettings:
    overrides: Dict[str, Any] = {
        "adb_path": args.adb_path,
        "worker_id": args.worker_id,
        "role": args.role,
    }
    overrides.update(extra)
    return load_settings(config_path=args.config, overrides=overrides)


def build_controller(settings: MultiNodeSettings, serial: str | None = None) -> AdbController:
    return AdbController(
        adb_path=settings.adb_path,
        serial=serial,
        timeout_s=settings.adb_timeout_s,
    )


def build_multinode(settings: MultiNodeSettings) -> LavaMultiNode:
    return LavaMultiNode(
        sync_cmd=settings.lava_sync,
        send_cmd=settings.lava_send,
        wait_all_cmd=settings.lava_wait_all,
        cache_path=Path(settings.cache_path),
        timeout_s=settings.multinode_timeout_s,
    )
