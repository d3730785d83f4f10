#!/usr/bin/env python3
"""
Plot board activity from the CSV written by the server monitor (--report-csv).

Expected columns (any missing ones are ignored gracefully):
  - timestamp (e.g. "2025-09-15 12:34:56")
  - avg_dispatch_ms, p50_ms, p90_ms, p99_ms
  - board_size, total_received, active_connections

Usage:
  python plotting/activity.py --csv report.csv --out activity.png --logy
"""

import argparse
import sys
import pandas as pd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

DEFAULT_LATENCY_METRICS = ["avg_dispatch_ms", "p50_ms", "p90_ms", "p99_ms"]
DEFAULT_COUNT_METRICS = ["board_size", "total_received", "active_connections"]


def load_report(path: str, timecol: str = "timestamp") -> pd.DataFrame:
    """Read the report and add a seconds_since_start column.

    Raises ValueError if the time column is missing or holds no valid rows.
    """
    df = pd.read_csv(path)
    if timecol not in df.columns:
        raise ValueError(
            f"CSV missing time column '{timecol}'. Columns: {list(df.columns)}"
        )

    df[timecol] = pd.to_datetime(df[timecol], errors="coerce")
    df = df.dropna(subset=[timecol]).sort_values(timecol)
    if df.empty:
        raise ValueError("No valid timestamp rows after parsing.")

    t0 = df[timecol].iloc[0]
    df["seconds_since_start"] = (df[timecol] - t0).dt.total_seconds()
    return df


def main():
    ap = argparse.ArgumentParser(description="Plot message board activity from CSV.")
    ap.add_argument("--csv", required=True, help="Path to CSV file (e.g., report.csv)")
    ap.add_argument("--out", default="activity.png", help="Output image file (PNG/SVG)")
    ap.add_argument("--timecol", default="timestamp", help="Timestamp column name")
    ap.add_argument(
        "--metrics",
        nargs="*",
        default=DEFAULT_LATENCY_METRICS,
        help=f"Latency metrics to plot (default: {', '.join(DEFAULT_LATENCY_METRICS)})",
    )
    ap.add_argument(
        "--xmax",
        type=float,
        default=None,
        help="Cap x-axis (seconds since start), e.g. 150",
    )
    ap.add_argument("--logy", action="store_true", help="Use log scale for latencies")
    ap.add_argument("--title", default="Message Board Activity", help="Plot title")
    args = ap.parse_args()

    try:
        df = load_report(args.csv, args.timecol)
    except (OSError, ValueError) as e:
        print(f"Failed to load '{args.csv}': {e}", file=sys.stderr)
        sys.exit(1)

    present = [m for m in args.metrics if m in df.columns]
    missing = [m for m in args.metrics if m not in df.columns]
    counts = [m for m in DEFAULT_COUNT_METRICS if m in df.columns]
    if not present and not counts:
        print(f"No requested metrics found. Missing: {missing}", file=sys.stderr)
        print(f"Available columns: {list(df.columns)}", file=sys.stderr)
        sys.exit(1)
    if missing:
        print(f"Warning: missing metrics (will skip): {missing}", file=sys.stderr)

    fig, (ax_lat, ax_cnt) = plt.subplots(2, 1, figsize=(10, 8), sharex=True)
    x = df["seconds_since_start"]
    for m in present:
        ax_lat.plot(x, df[m], label=m)
    ax_lat.set_ylabel("Dispatch Time (ms)")
    if args.logy:
        ax_lat.set_yscale("log")
    ax_lat.legend(title="Latency metrics")

    for m in counts:
        ax_cnt.plot(x, df[m], label=m)
    ax_cnt.set_ylabel("Count")
    ax_cnt.set_xlabel("Seconds Since Start")
    ax_cnt.legend(title="Board counters")

    for ax in (ax_lat, ax_cnt):
        ax.grid(True, which="both", linestyle="--", alpha=0.6)
    if args.xmax is not None:
        ax_cnt.set_xlim(0, args.xmax)

    fig.suptitle(args.title)
    fig.tight_layout()
    fig.savefig(args.out, dpi=150)
    print(f"Saved plot to {args.out}")


if __name__ == "__main__":
    main()
