#!/usr/bin/env python3
"""
Matching Analytics Script.

System metrics, per-user insights and algorithm recommendations over a data
directory.

Usage:
    # System metrics for the last 30 days
    python run_analytics.py --metrics

    # Weekly metrics plus insights for two users
    python run_analytics.py --metrics --time-range week --user-ids u_101 u_102

    # Algorithm recommendations for one weight version
    python run_analytics.py --algorithm --weight-version v1

    # Everything, as JSON
    python run_analytics.py --metrics --algorithm --all-users --output output/analytics.json
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict

from api.converters import (
    algorithm_recommendations_to_response,
    dump,
    insights_to_response,
    metrics_to_response,
)
from core import (
    AlgorithmRecommendations,
    MatchingError,
    MatchingMetrics,
    MatchingSettings,
    UserMatchingInsights,
    configure_logging,
)
from core.constants import TIME_RANGE_DAYS
from core.data_io import write_json
from matching_service import open_service

DEFAULT_DATA_DIR = Path("data")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Matching analytics: system metrics, user insights, algorithm recommendations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Monthly system metrics
  python run_analytics.py --metrics

  # Quarterly metrics as JSON
  python run_analytics.py --metrics --time-range quarter --output output/metrics.json

  # Insights for specific users
  python run_analytics.py --user-ids u_101 u_102

  # Algorithm recommendations, restricted to one version's matches
  python run_analytics.py --algorithm --weight-version v1
        """
    )

    parser.add_argument(
        "--data-dir",
        type=Path,
        default=DEFAULT_DATA_DIR,
        help=f"Data directory (default: {DEFAULT_DATA_DIR})",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Compute system metrics",
    )
    parser.add_argument(
        "--time-range",
        choices=list(TIME_RANGE_DAYS),
        default="month",
        help="Metrics window (default: month)",
    )

    users_group = parser.add_mutually_exclusive_group()
    users_group.add_argument(
        "--user-ids",
        nargs="+",
        help="Compute insights for these users",
    )
    users_group.add_argument(
        "--all-users",
        action="store_true",
        help="Compute insights for every stored user",
    )

    parser.add_argument(
        "--algorithm",
        action="store_true",
        help="Compute algorithm recommendations from recent feedback",
    )
    parser.add_argument(
        "--weight-version",
        type=str,
        default=None,
        help="Restrict algorithm recommendations to matches of this version",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write all results to this JSON file",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only print the JSON results (unless --output is given)",
    )

    return parser.parse_args()


def print_metrics(metrics: MatchingMetrics) -> None:
    print("\n" + "=" * 60)
    print(f"SYSTEM METRICS ({metrics.time_range})")
    print("=" * 60)
    print(f"Window: {metrics.window_start.date()} .. {metrics.window_end.date()}")
    print(f"Total matches: {metrics.total_matches}")
    print(f"Successful matches: {metrics.successful_matches}")
    print(f"Success rate: {metrics.average_success_rate:.1%}")
    print(f"Engagement rate: {metrics.engagement_rate:.1%}")
    print(f"Conversion to messaging: {metrics.conversion_to_messaging:.1%}")
    if metrics.top_matching_factors:
        print(f"Top matching factors: {', '.join(metrics.top_matching_factors)}")
    if metrics.not_computed:
        print(f"Not computed: {', '.join(metrics.not_computed)}")


def print_insights(insights: UserMatchingInsights) -> None:
    print(f"\n--- {insights.user_id} ---")
    print(f"  Profile completeness: {insights.profile_completeness:.0f}%")
    activity = ", ".join(f"{action}={count}" for action, count in sorted(insights.activity.items()))
    print(f"  Activity: {activity or 'none'}")
    print(f"  Engaged matches: {insights.matches}")
    print(f"  Match rate: {insights.match_rate:.1%}")
    for rec in insights.recommendations:
        print(f"  * {rec.message_zh} / {rec.message_en}")


def print_algorithm(recs: AlgorithmRecommendations) -> None:
    print("\n" + "=" * 60)
    print("ALGORITHM RECOMMENDATIONS")
    print("=" * 60)
    print(f"Feedback (30 days): {recs.feedback_count}")
    print(f"Current performance: {recs.current_performance:.1f}")
    if recs.feedback_count:
        print(f"Average rating: {recs.average_rating:.2f}")
        print(f"Meet rate: {recs.meet_rate:.1%}")
        print(f"Continue rate: {recs.continue_rate:.1%}")
    for adjustment in recs.recommended_adjustments:
        print(f"  - adjust: {adjustment}")
    for test in recs.test_suggestions:
        print(f"  - A/B test: {test}")


def main() -> int:
    args = parse_args()

    settings = MatchingSettings.from_env()
    configure_logging("WARNING" if args.quiet else settings.log_level)

    if not (args.metrics or args.user_ids or args.all_users or args.algorithm):
        args.metrics = True

    try:
        service = open_service(args.data_dir, settings)
    except MatchingError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    results: Dict[str, Any] = {}
    failed = 0

    with service:
        if args.metrics:
            metrics = service.get_system_metrics(args.time_range)
            results["metrics"] = dump(metrics_to_response(metrics))
            if not args.quiet:
                print_metrics(metrics)

        user_ids = args.user_ids or []
        if args.all_users:
            user_ids = [p.user_id for p in service.store.list_profiles()]
        if user_ids:
            results["insights"] = {}
            if not args.quiet:
                print("\n" + "=" * 60)
                print("USER INSIGHTS")
                print("=" * 60)
            for user_id in user_ids:
                try:
                    insights = service.get_user_insights(user_id)
                except MatchingError as e:
                    print(f"Error for {user_id}: {e}", file=sys.stderr)
                    failed += 1
                    continue
                results["insights"][user_id] = dump(insights_to_response(insights))
                if not args.quiet:
                    print_insights(insights)

        if args.algorithm:
            recs = service.get_algorithm_recommendations(args.weight_version)
            results["algorithm"] = dump(algorithm_recommendations_to_response(recs))
            if not args.quiet:
                print_algorithm(recs)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        write_json(results, args.output)
        if not args.quiet:
            print(f"\nSaved: {args.output}")
    elif args.quiet:
        print(json.dumps(results, ensure_ascii=False, indent=2))

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
