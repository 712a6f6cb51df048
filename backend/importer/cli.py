import argparse
import json
import sys
from typing import List, Optional

from app_logging import setup_logging
from services.services import (
    ServiceError,
    import_firmware_countries,
    import_firmware_log,
    import_legacy_log,
)

COMMANDS = {
    "legacy": import_legacy_log,
    "firmware": import_firmware_log,
    "countries": import_firmware_countries,
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import release logs into the release tracking database.")
    parser.add_argument("command", choices=sorted(COMMANDS), help="Which import to run")
    parser.add_argument("path", nargs="?", help="Input file (defaults to the configured log path)")
    parser.add_argument("--brief", action="store_true", help="Print statistics only")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    try:
        summary = COMMANDS[args.command](args.path)
    except ServiceError as e:
        body = {"ok": False, "error": str(e)}
        body.update(e.payload)
        print(json.dumps(body, indent=2, default=str), file=sys.stderr)
        return 1

    if args.brief:
        summary = {"ok": summary["ok"], "run_id": summary.get("run_id"), "statistics": summary["statistics"]}
    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
