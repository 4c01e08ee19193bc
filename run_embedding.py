#!/usr/bin/env python3
"""
Profile Embedding Script - generate profile embeddings for a data directory.

Uses an OpenAI-compatible embeddings API when EMBEDDING_API_KEY (or
OPENAI_API_KEY) is set, otherwise deterministic synthetic embeddings.
Vectors are written to profile_embeddings.npy with a user_id mapping.

Usage:
    # Embed every profile without an embedding
    python run_embedding.py

    # Re-embed everything
    python run_embedding.py --force

    # Specific users only
    python run_embedding.py --user-ids u_101 u_102 --force

    # Offline (synthetic) embeddings even when an API key is configured
    python run_embedding.py --synthetic
"""

import argparse
import json
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from core import MatchingSettings, configure_logging
from core.data_io import EMBEDDINGS_FILE
from match_store import MatchStore
from profile_embedding import (
    DEFAULT_BATCH_SIZE,
    ProfileEmbedder,
    embeddings_by_user,
    print_embedding_summary,
)

DEFAULT_DATA_DIR = Path("data")


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Generate profile embeddings for co-founder matching.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Embed profiles that have no embedding yet
  python run_embedding.py --data-dir data

  # Re-embed all profiles with 1536 dimensions
  python run_embedding.py --force --dimensions 1536

  # Specific users
  python run_embedding.py --user-ids u_101 u_102 --force

  # Synthetic embeddings (no API calls)
  python run_embedding.py --synthetic --quiet
        """
    )

    parser.add_argument(
        "--data-dir",
        type=Path,
        default=DEFAULT_DATA_DIR,
        help=f"Data directory with profiles.json (default: {DEFAULT_DATA_DIR})",
    )
    parser.add_argument(
        "--user-ids",
        nargs="+",
        help="Specific user IDs to embed",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-embed profiles that already have an embedding",
    )
    parser.add_argument(
        "--dimensions",
        type=int,
        default=None,
        help="Embedding dimensions (default: EMBEDDING_DIMENSIONS or 768)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Batch size for API requests (default: {DEFAULT_BATCH_SIZE})",
    )
    parser.add_argument(
        "--synthetic",
        action="store_true",
        help="Use synthetic embeddings even if an API key is configured",
    )
    parser.add_argument(
        "--no-fallback",
        action="store_true",
        help="Leave profiles unembedded instead of falling back to synthetic vectors",
    )
    parser.add_argument(
        "--limit",
        type=int,
        help="Limit number of profiles to process (for testing)",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress progress output",
    )

    return parser.parse_args()


def main() -> int:
    """Main entry point."""
    args = parse_args()

    settings = MatchingSettings.from_env()
    if args.dimensions:
        settings = replace(settings, embedding_dimensions=args.dimensions)
    if args.synthetic:
        settings = replace(settings, embedding_api_key=None)
    configure_logging("WARNING" if args.quiet else settings.log_level)

    store = MatchStore.load(args.data_dir)
    profiles = store.list_profiles()
    if not args.quiet:
        print(f"Loaded {len(profiles)} profiles from {args.data_dir}")

    if args.user_ids:
        wanted = set(args.user_ids)
        profiles = [p for p in profiles if p.user_id in wanted]
        missing = wanted - {p.user_id for p in profiles}
        if missing:
            print(f"Warning: unknown user IDs: {', '.join(sorted(missing))}", file=sys.stderr)

    if not args.force:
        profiles = [p for p in profiles if not p.has_embedding()]

    if args.limit:
        profiles = profiles[:args.limit]

    if not profiles:
        if not args.quiet:
            print("All selected profiles already have embeddings. Nothing to do.")
        return 0

    try:
        embedder = ProfileEmbedder.from_settings(
            settings,
            batch_size=args.batch_size,
            fallback_to_synthetic=not args.no_fallback,
        )
        if not args.quiet:
            print("\nConfiguration:")
            print(f"  Source: {'API (' + embedder.model + ')' if embedder.uses_api else 'synthetic'}")
            print(f"  Dimensions: {embedder.dimensions}")
            print(f"  Batch size: {embedder.batch_size}")
            print(f"  Profiles: {len(profiles)}")
            print()

        start_time = datetime.now()
        results = embedder.embed_profiles(profiles, show_progress=not args.quiet)
        end_time = datetime.now()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    vectors = embeddings_by_user(results)
    for profile in profiles:
        if profile.user_id in vectors:
            profile.embedding = vectors[profile.user_id]
            store.upsert_profile(profile)

    store.save(args.data_dir)

    metadata = {
        "source": "api" if embedder.uses_api else "synthetic",
        "model": embedder.model,
        "dimensions": embedder.dimensions,
        "start_time": start_time.isoformat(),
        "end_time": end_time.isoformat(),
        "duration_seconds": (end_time - start_time).total_seconds(),
        "profiles_total": len(results),
        "profiles_embedded": len(vectors),
        "total_tokens_used": embedder.total_tokens_used,
    }
    metadata_path = args.data_dir / "embedding_run_metadata.json"
    with open(metadata_path, "w", encoding="utf-8") as f:
        json.dump(metadata, f, ensure_ascii=False, indent=2)

    if not args.quiet:
        print(f"Saved NPY: {args.data_dir / EMBEDDINGS_FILE}")
        print(f"Saved metadata: {metadata_path}")
        print_embedding_summary(results)
        print(f"\nTotal time: {metadata['duration_seconds']:.1f}s")

    return 0 if len(vectors) == len(results) else 1


if __name__ == "__main__":
    sys.exit(main())
