#!/usr/bin/env python3
"""
Batch Matching Script - recompute and persist top matches for many users.

Each invocation creates a BatchMatchingRun record (running -> completed |
failed) in the data directory. The weight version is fixed at run start.

Usage:
    # Daily run over every user
    python run_batch_matching.py --run-type daily

    # Event-driven run for users whose profiles changed
    python run_batch_matching.py --run-type event --user-ids u_101 u_102

    # Manual run with a candidate weight version
    python run_batch_matching.py --weights-json config/weight_versions.json --weight-version v2-semantic
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import List

from api.converters import batch_run_to_response, dump
from core import BatchMatchingRun, MatchingError, MatchingSettings, configure_logging
from core.constants import BATCH_RUN_TYPES
from matching_service import open_service

DEFAULT_DATA_DIR = Path("data")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recompute and persist top co-founder matches.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Daily batch for all users
  python run_batch_matching.py --run-type daily

  # Only a few users, top 10 each
  python run_batch_matching.py --run-type event --user-ids u_101 u_102 --top-k 10

  # Users from a JSON file ({"user_ids": [...]} or [...])
  python run_batch_matching.py --user-ids-json changed_users.json

  # List previous runs
  python run_batch_matching.py --list-runs
        """
    )

    parser.add_argument(
        "--data-dir",
        type=Path,
        default=DEFAULT_DATA_DIR,
        help=f"Data directory (default: {DEFAULT_DATA_DIR})",
    )
    parser.add_argument(
        "--run-type",
        choices=list(BATCH_RUN_TYPES),
        default="manual",
        help="Run type recorded on the batch run (default: manual)",
    )

    users_group = parser.add_mutually_exclusive_group()
    users_group.add_argument(
        "--user-ids",
        nargs="+",
        help="Only recompute matches for these users",
    )
    users_group.add_argument(
        "--user-ids-json",
        type=Path,
        help='JSON file with user IDs (expects {"user_ids": [...]} or [...])',
    )

    parser.add_argument(
        "--weight-version",
        type=str,
        default=None,
        help="Weight version for the run (default: MATCHING_WEIGHT_VERSION or v1)",
    )
    parser.add_argument(
        "--weights-json",
        type=Path,
        default=None,
        help="JSON file with additional weight versions",
    )
    parser.add_argument(
        "--top-k",
        type=int,
        default=None,
        help="Matches persisted per user (default: BATCH_TOP_K or 5)",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Concurrent scoring workers (default: BATCH_MAX_WORKERS or 4)",
    )
    parser.add_argument(
        "--list-runs",
        action="store_true",
        help="Print previous batch runs and exit",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress progress output",
    )

    return parser.parse_args()


def load_user_ids_from_json(json_path: Path) -> List[str]:
    """Load user IDs from a JSON file.

    Supports two formats:
    - {"user_ids": ["u_1", "u_2", ...]}
    - ["u_1", "u_2", ...]
    """
    with open(json_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, list):
        return data
    if isinstance(data, dict) and "user_ids" in data:
        return data["user_ids"]
    raise ValueError(
        f"Invalid JSON format in '{json_path}'. Expected list or dict with 'user_ids' key, "
        f"but got {type(data).__name__}."
    )


def print_run(run: BatchMatchingRun) -> None:
    """Print a batch run summary."""
    print("\n" + "=" * 60)
    print(f"BATCH RUN #{run.id} ({run.run_type})")
    print("=" * 60)
    print(f"Status: {run.status}")
    print(f"Weight version: {run.algorithm_version}")
    print(f"Started: {run.started_at.isoformat()}")
    if run.completed_at:
        print(f"Completed: {run.completed_at.isoformat()}")
    print(f"Users processed: {run.total_users}")
    print(f"Matches generated: {run.matches_generated}")
    metrics = run.run_metrics
    if metrics:
        print(f"Average score: {metrics.get('average_score', 0.0):.4f}")
        print(f"Processing time: {metrics.get('processing_ms', 0)} ms")
        failed = metrics.get("failed_users") or []
        if failed:
            print(f"Failed users ({len(failed)}): {', '.join(failed)}")
    if run.error:
        print(f"Error: {run.error}")


def main() -> int:
    args = parse_args()

    settings = MatchingSettings.from_env()
    if args.weight_version:
        settings = replace(settings, weight_version=args.weight_version)
    configure_logging("WARNING" if args.quiet else settings.log_level)

    user_ids = args.user_ids
    if args.user_ids_json:
        try:
            user_ids = load_user_ids_from_json(args.user_ids_json)
        except (OSError, ValueError) as e:
            print(f"Error loading JSON: {e}", file=sys.stderr)
            return 1

    try:
        service = open_service(args.data_dir, settings, args.weights_json)
    except MatchingError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    with service:
        if args.list_runs:
            runs = service.store.list_batch_runs()
            print(json.dumps(dump([batch_run_to_response(r) for r in runs]), ensure_ascii=False, indent=2))
            return 0

        try:
            run = service.run_batch_matching(
                run_type=args.run_type,
                user_ids=user_ids,
                top_k=args.top_k,
                max_workers=args.max_workers,
                show_progress=not args.quiet,
            )
        except (MatchingError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            service.store.save(args.data_dir)

        if not args.quiet:
            print_run(run)
            print(f"\nSaved data directory {args.data_dir}")

    return 1 if run.run_metrics.get("failed_users") else 0


if __name__ == "__main__":
    sys.exit(main())
