"""CLI helper for finding and removing duplicate pending payments."""

from __future__ import annotations

import argparse
import datetime as dt
import sys
from typing import Any, Dict, List, Optional

from dlob_core.errors import DlobError
from dlob_core.loader import DataStore


def _format_member(result: Dict[str, Any]) -> str:
    lines = [f"{result['memberName']}: {len(result['actions'])} duplicate(s)"]
    for action in result["actions"]:
        lines.append(f"  - {action['paymentId']}: {action['reason']}")
    return "\n".join(lines)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--member", dest="member_id", help="Only check this member id")
    parser.add_argument("--month", help="Month to check as YYYY-MM (defaults to the current month)")
    parser.add_argument("--apply", action="store_true", help="Delete the duplicates instead of listing them")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    month = None
    if args.month:
        try:
            month = dt.date.fromisoformat(f"{args.month}-01")
        except ValueError:
            print(f"ERROR: invalid month '{args.month}'", file=sys.stderr)
            return 1

    store = DataStore()
    try:
        summary = store.cleanup_duplicates(member_id=args.member_id, dry_run=not args.apply, month=month)
    except DlobError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    mode = "DRY RUN" if summary["dryRun"] else "APPLIED"
    print(f"{mode} {summary['month']}: {summary['membersWithDuplicates']} of {summary['totalMembers']} members")
    for result in summary["results"]:
        print()
        print(_format_member(result))
    if not summary["dryRun"]:
        print()
        print(f"Removed {summary['removed']} payment(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
