from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Optional, Sequence

from adb_multinode.config.settings import ConfigValidationError, load_settings


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Validate an adb-multinode settings file.")
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="YAML/JSON settings file",
    )
    parser.add_argument(
        "--print_effective",
        action="store_true",
        help="Print the merged settings (file + $ADB_MULTINODE_* environment) as JSON",
    )
    args = parser.parse_args(argv)

    try:
        settings = load_settings(config_path=args.config)
    except (FileNotFoundError, ConfigValidationError, ValueError) as e:
        raise SystemExit(f"Config validation failed for {args.config}:\n{e}")

    if args.print_effective:
        print(json.dumps(settings.to_dict(), indent=2, sort_keys=True))
    else:
        print(f"OK: {args.config}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
