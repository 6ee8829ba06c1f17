from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import List, Optional, Sequence

from adb_multinode.cli._common import (
    add_common_args,
    build_controller,
    build_multinode,
    settings_from_args,
    setup_logging,
)
from adb_multinode.config.settings import ConfigValidationError
from adb_multinode.handshake import release_workers
from adb_multinode.mapping import DeviceMapping, read_mapping
from adb_multinode.runtime.android.controller import AdbControllerError
from adb_multinode.runtime.multinode import MultiNodeError


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description=(
            "Host worker: disconnect the network devices listed in the mapping file "
            "and release the device workers waiting on the MultiNode barrier."
        )
    )
    add_common_args(parser)
    parser.add_argument(
        "--mapping_file",
        type=Path,
        default=os.environ.get("ADB_MULTINODE_MAPPING_FILE"),
        help="Mapping written by adb-multinode-connect (optional)",
    )
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        settings = settings_from_args(args)
        mappings: List[DeviceMapping] = []
        if args.mapping_file is not None and args.mapping_file.exists():
            mappings = read_mapping(args.mapping_file)
        release_workers(
            build_controller(settings),
            build_multinode(settings),
            settings,
            mappings,
        )
    except (FileNotFoundError, ConfigValidationError, ValueError) as e:
        raise SystemExit(f"Invalid input:\n{e}")
    except (AdbControllerError, MultiNodeError) as e:
        raise SystemExit(f"Releasing workers failed: {e}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
