from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Optional, Sequence

from adb_multinode.mapping import MappingFormatError, as_dict, read_mapping, worker_for


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Print a device;worker mapping file, or the worker owning one device."
    )
    parser.add_argument(
        "--mapping_file",
        type=Path,
        default=os.environ.get("ADB_MULTINODE_MAPPING_FILE"),
        help="Mapping file (default: $ADB_MULTINODE_MAPPING_FILE)",
    )
    parser.add_argument("--device", type=str, default=None, help="Only print this device's worker")
    parser.add_argument("--json", action="store_true", help="Print the mapping as a JSON object")
    args = parser.parse_args(argv)

    if args.mapping_file is None:
        raise SystemExit("Pass --mapping_file or set $ADB_MULTINODE_MAPPING_FILE.")

    try:
        mappings = read_mapping(args.mapping_file)
    except FileNotFoundError:
        raise SystemExit(f"Mapping file not found: {args.mapping_file}")
    except MappingFormatError as e:
        raise SystemExit(f"Malformed mapping file:\n{e}")

    if args.device is not None:
        worker = worker_for(mappings, args.device)
        if worker is None:
            raise SystemExit(f"Device not in mapping: {args.device}")
        print(worker)
        return 0

    if args.json:
        print(json.dumps(as_dict(mappings), indent=2, ensure_ascii=False))
        return 0

    for m in mappings:
        print(m.to_line())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
