from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Optional, Sequence

from adb_multinode.cli._common import (
    add_common_args,
    build_controller,
    build_multinode,
    settings_from_args,
    setup_logging,
)
from adb_multinode.config.settings import ConfigValidationError
from adb_multinode.handshake import HandshakeError, connect_remote_devices
from adb_multinode.runtime.android.controller import AdbControllerError
from adb_multinode.runtime.multinode import MultiNodeError


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description=(
            "Host worker: collect the device addresses published by the MultiNode "
            "group, connect to each over adb and write the device;worker mapping."
        )
    )
    add_common_args(parser)
    parser.add_argument(
        "--mapping_file",
        type=Path,
        default=os.environ.get("ADB_MULTINODE_MAPPING_FILE"),
        help="Where to write the device;worker mapping (default: $ADB_MULTINODE_MAPPING_FILE)",
    )
    parser.add_argument(
        "--connect_attempts",
        type=int,
        default=None,
        help="adb connect attempts per device (default: 10)",
    )
    parser.add_argument(
        "--require_all",
        action="store_true",
        help="Fail if any published device cannot be connected",
    )
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    extra = {"connect_attempts": args.connect_attempts}
    if args.require_all:
        extra["require_all"] = True

    try:
        settings = settings_from_args(args, **extra)
        mappings = connect_remote_devices(
            build_controller(settings),
            build_multinode(settings),
            settings,
            mapping_file=args.mapping_file,
        )
    except (FileNotFoundError, ConfigValidationError, ValueError) as e:
        raise SystemExit(f"Invalid configuration:\n{e}")
    except (AdbControllerError, MultiNodeError, HandshakeError) as e:
        raise SystemExit(f"Connecting devices failed: {e}")

    for m in mappings:
        print(m.to_line())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
