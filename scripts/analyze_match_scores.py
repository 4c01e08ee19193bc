#!/usr/bin/env python3
"""
匹配分数分布分析脚本 - Match score distribution report.

Reads matches.json from a data directory and plots:
1. 总分分布 - total score histogram per weight version
2. 分项得分 - hard / semantic / behavior component boxplots
3. 阶段分布 - match stage counts
4. 理由频次 - how often each feature appears as a reason

Usage:
    python scripts/analyze_match_scores.py --data-dir data
    python scripts/analyze_match_scores.py --data-dir data --output output/match_scores.png --csv output/match_scores.csv
"""

import argparse
import sys
from collections import Counter
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pandas as pd

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.constants import FEATURE_LABELS, MATCH_STAGES
from core.data_io import MATCHES_FILE, load_matches

# 设置中文字体支持
plt.rcParams["font.sans-serif"] = ["Arial Unicode MS", "SimHei", "DejaVu Sans"]
plt.rcParams["axes.unicode_minus"] = False

COMPONENT_COLUMNS = ["hard_score", "semantic_score", "behavior_score"]


def load_frame(data_dir: Path) -> pd.DataFrame:
    matches = load_matches(data_dir / MATCHES_FILE)
    rows = [
        {
            "match_id": m.id,
            "user_id": m.user_id,
            "target_user_id": m.target_user_id,
            "algorithm_version": m.algorithm_version,
            "stage": m.stage,
            "total_score": m.total_score,
            "hard_score": m.hard_score,
            "semantic_score": m.semantic_score,
            "behavior_score": m.behavior_score,
            "reasons": "|".join(r.feature for r in m.reasons),
            "created_at": m.created_at,
        }
        for m in matches
    ]
    return pd.DataFrame(rows)


def plot_report(df: pd.DataFrame, output_path: Path) -> None:
    fig, axes = plt.subplots(2, 2, figsize=(14, 10))
    fig.suptitle("匹配分数分布 (Match Score Distribution)", fontsize=16, fontweight="bold")

    # 1. Total score histogram per version
    ax1 = axes[0, 0]
    for version, group in df.groupby("algorithm_version"):
        ax1.hist(group["total_score"], bins=20, range=(0, 1), alpha=0.6, label=version)
    ax1.set_xlabel("总分 (Total score)")
    ax1.set_ylabel("数量 (Count)")
    ax1.set_title("总分分布 (Total score)", fontsize=12)
    ax1.legend()

    # 2. Component boxplots
    ax2 = axes[0, 1]
    ax2.boxplot([df[c] for c in COMPONENT_COLUMNS])
    ax2.set_xticks([1, 2, 3], ["hard", "semantic", "behavior"])
    ax2.set_ylim(0, 1)
    ax2.set_title("分项得分 (Component scores)", fontsize=12)

    # 3. Stage counts
    ax3 = axes[1, 0]
    stage_counts = df["stage"].value_counts().reindex(list(MATCH_STAGES), fill_value=0)
    bars3 = ax3.bar(stage_counts.index, stage_counts.values, color="steelblue")
    ax3.set_title("阶段分布 (Stage)", fontsize=12)
    for bar in bars3:
        ax3.text(bar.get_x() + bar.get_width() / 2, bar.get_height() + 0.5,
                 str(int(bar.get_height())), ha="center", fontsize=9)

    # 4. Reason frequency
    reason_counts = Counter()
    for reasons in df["reasons"].dropna():
        for feature in reasons.split("|"):
            if feature:
                reason_counts[feature] += 1
    ax4 = axes[1, 1]
    if reason_counts:
        items = reason_counts.most_common()
        labels = [FEATURE_LABELS.get(f, {}).get("zh", f) for f, _ in items]
        ax4.barh(labels, [count for _, count in items], color="seagreen")
        ax4.invert_yaxis()
    ax4.set_title("理由频次 (Reason frequency)", fontsize=12)

    plt.tight_layout()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def main() -> int:
    parser = argparse.ArgumentParser(description="Plot match score distributions")
    parser.add_argument("--data-dir", type=Path, default=Path("data"))
    parser.add_argument("--output", type=Path, default=Path("output/match_scores.png"))
    parser.add_argument("--csv", type=Path, default=None, help="Also write the flattened table as CSV")
    args = parser.parse_args()

    df = load_frame(args.data_dir)
    if df.empty:
        print(f"No matches found in {args.data_dir / MATCHES_FILE}")
        return 0

    print(f"总匹配数: {len(df)}")
    print("\n各版本统计 (per version):")
    print(df.groupby("algorithm_version")[["total_score"] + COMPONENT_COLUMNS].describe().round(3).to_string())

    plot_report(df, args.output)
    print(f"\n图表已保存: {args.output}")

    if args.csv:
        args.csv.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(args.csv, index=False, encoding="utf-8")
        print(f"CSV 已保存: {args.csv}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
