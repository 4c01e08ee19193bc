#!/usr/bin/env python3
"""
Co-founder Match Scoring Script.

Rank candidate co-founders for one or more users of a data directory, with
explanations and risk hints.

Usage:
    # Rank candidates for a single user
    python run_matching.py --user-id u_101

    # Rank for several users and persist the results as matches
    python run_matching.py --user-ids u_101 u_102 --save-matches

    # Use an experimental weight version from a weights file
    python run_matching.py --user-id u_101 --weights-json config/weight_versions.json --weight-version v2-semantic

    # Import profiles and preferences before ranking
    python run_matching.py --import-profiles new_profiles.json --import-preferences new_prefs.json --all
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List

from api.converters import dump, ranked_list_to_response
from core import MatchingError, MatchingSettings, RankedCandidate, configure_logging
from core.data_io import read_json_list, write_json
from matching_service import MatchingService, open_service

DEFAULT_DATA_DIR = Path("data")
ADMIN_ACTOR = "admin"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Rank co-founder candidates with explanations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Rank candidates for a single user
  python run_matching.py --user-id u_101

  # Top 10 for every user, written to a directory
  python run_matching.py --all --limit 10 --output-dir output/rankings

  # Persist ranked candidates as matches and record impressions
  python run_matching.py --user-id u_101 --save-matches --record-impressions

  # Compare a second weight version
  python run_matching.py --user-id u_101 --weights-json config/weight_versions.json --weight-version v2-semantic
        """
    )

    input_group = parser.add_mutually_exclusive_group()
    input_group.add_argument(
        "--user-id",
        type=str,
        help="Single user to rank candidates for",
    )
    input_group.add_argument(
        "--user-ids",
        nargs="+",
        help="Several users to rank candidates for",
    )
    input_group.add_argument(
        "--all",
        action="store_true",
        help="Rank candidates for every stored user",
    )

    parser.add_argument(
        "--data-dir",
        type=Path,
        default=DEFAULT_DATA_DIR,
        help=f"Directory with profiles.json, preferences.json, ... (default: {DEFAULT_DATA_DIR})",
    )
    parser.add_argument(
        "--import-profiles",
        type=Path,
        help="JSON list of profiles to validate and upsert first",
    )
    parser.add_argument(
        "--import-preferences",
        type=Path,
        help="JSON list of preferences to validate and upsert first",
    )
    parser.add_argument(
        "--embed",
        action="store_true",
        help="Compute embeddings for imported profiles that have none",
    )

    parser.add_argument(
        "--weight-version",
        type=str,
        default=None,
        help="Weight version to score with (default: MATCHING_WEIGHT_VERSION or v1)",
    )
    parser.add_argument(
        "--weights-json",
        type=Path,
        default=None,
        help="JSON file with additional weight versions",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum candidates per user (default: MATCH_CANDIDATE_LIMIT or 20)",
    )
    parser.add_argument(
        "--save-matches",
        action="store_true",
        help="Persist ranked candidates as matches in the data directory",
    )
    parser.add_argument(
        "--record-impressions",
        action="store_true",
        help="Record ranked candidates as 'view' interactions",
    )

    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Write one <user_id>_ranking.json per user to this directory",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print rankings as JSON to stdout",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress console output",
    )

    return parser.parse_args()


def import_records(service: MatchingService, profiles_path: Path, preferences_path: Path) -> int:
    """Validate and upsert profile/preference files as an administrator.

    Returns:
        Number of records rejected
    """
    rejected = 0
    if profiles_path:
        for item in read_json_list(profiles_path):
            try:
                service.upsert_profile(ADMIN_ACTOR, item, is_admin=True)
            except MatchingError as e:
                print(f"  Rejected profile {item.get('user_id', '?')}: {e}", file=sys.stderr)
                rejected += 1
    if preferences_path:
        for item in read_json_list(preferences_path):
            try:
                service.upsert_preferences(ADMIN_ACTOR, item, is_admin=True)
            except MatchingError as e:
                print(f"  Rejected preferences {item.get('user_id', '?')}: {e}", file=sys.stderr)
                rejected += 1
    return rejected


def print_ranking(user_id: str, ranked: List[RankedCandidate]) -> None:
    """Pretty print a ranked candidate list."""
    print("\n" + "=" * 70)
    print(f"Candidates for {user_id}")
    print("=" * 70)

    if not ranked:
        print("  (no candidates above the minimum score)")
        return

    for candidate in ranked:
        b = candidate.breakdown
        print(
            f"\n  #{candidate.rank} {candidate.user_id} ({candidate.profile.role_intent}, "
            f"{candidate.profile.seniority})  total={b.total_score:.3f}"
        )
        print(f"     hard={b.hard_score:.3f}  semantic={b.semantic_score:.3f}  behavior={b.behavior_score:.3f}")
        for reason in b.reasons:
            detail = f" [{reason.detail}]" if reason.detail else ""
            print(f"     + {reason.label_zh} / {reason.label_en}{detail}  ({reason.contribution:.3f})")
        for hint in b.risk_hints:
            print(f"     ! {hint}")


def main() -> int:
    args = parse_args()

    settings = MatchingSettings.from_env()
    if args.weight_version:
        settings = replace(settings, weight_version=args.weight_version)
    configure_logging("WARNING" if args.quiet else settings.log_level)

    if not (args.user_id or args.user_ids or args.all or args.import_profiles or args.import_preferences):
        print("Error: nothing to do (pass --user-id, --user-ids, --all or an import file)", file=sys.stderr)
        return 1

    try:
        service = open_service(args.data_dir, settings, args.weights_json, with_embedder=args.embed)
    except MatchingError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    with service:
        rejected = import_records(service, args.import_profiles, args.import_preferences)

        if args.all:
            user_ids = [p.user_id for p in service.store.list_profiles()]
        else:
            user_ids = args.user_ids or ([args.user_id] if args.user_id else [])

        if not args.quiet:
            print(f"Ranking candidates for {len(user_ids)} users with version {settings.weight_version}")

        rankings: Dict[str, Any] = {}
        failed = 0
        for user_id in user_ids:
            try:
                ranked = service.score_candidates_for_user(
                    user_id,
                    limit=args.limit,
                    record_impressions=args.record_impressions,
                )
            except MatchingError as e:
                print(f"Error ranking {user_id}: {e}", file=sys.stderr)
                failed += 1
                continue

            if args.save_matches:
                service.create_matches(user_id, ranked)

            rankings[user_id] = dump(ranked_list_to_response(user_id, settings.weight_version, ranked))
            if not args.quiet:
                print_ranking(user_id, ranked)

        if args.output_dir:
            args.output_dir.mkdir(parents=True, exist_ok=True)
            for user_id, ranking in rankings.items():
                write_json(ranking, args.output_dir / f"{user_id}_ranking.json")
            if not args.quiet:
                print(f"\nSaved {len(rankings)} rankings to {args.output_dir}")
        if args.json:
            print(json.dumps(rankings, ensure_ascii=False, indent=2))

        if args.save_matches or args.record_impressions or args.import_profiles or args.import_preferences:
            service.store.save(args.data_dir)
            if not args.quiet:
                print(f"Saved data directory {args.data_dir}")

    return 1 if failed or rejected else 0


if __name__ == "__main__":
    sys.exit(main())
