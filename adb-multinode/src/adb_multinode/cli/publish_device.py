from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from adb_multinode.cli._common import (
    add_common_args,
    build_controller,
    build_multinode,
    settings_from_args,
    setup_logging,
)
from adb_multinode.config.settings import ConfigValidationError
from adb_multinode.handshake import HandshakeError, publish_device
from adb_multinode.runtime.android.controller import AdbControllerError
from adb_multinode.runtime.multinode import MultiNodeError

logger = logging.getLogger(__name__)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description=(
            "Device worker: enable adb over TCP/IP on the local device, publish its "
            "address to the MultiNode group and wait until the host worker is done."
        )
    )
    add_common_args(parser)
    parser.add_argument("--port", type=int, default=None, help="adb TCP/IP port (default: 5555)")
    parser.add_argument(
        "--timeout_s",
        type=float,
        default=None,
        help="How long to wait for the device to become reachable (default: 300)",
    )
    parser.add_argument(
        "--keep_local_adb",
        action="store_true",
        help="Do not disconnect/kill the local adb server after publishing",
    )
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    extra = {"tcpip_port": args.port, "tcpip_timeout_s": args.timeout_s}
    if args.keep_local_adb:
        extra["release_local_adb"] = False

    try:
        settings = settings_from_args(args, **extra)
        address = publish_device(
            build_controller(settings, args.serial),
            build_multinode(settings),
            settings,
        )
    except (FileNotFoundError, ConfigValidationError, ValueError) as e:
        raise SystemExit(f"Invalid configuration:\n{e}")
    except (AdbControllerError, MultiNodeError, HandshakeError) as e:
        raise SystemExit(f"Publishing the device failed: {e}")

    logger.info("published %s", address)
    print(address)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
