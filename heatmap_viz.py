"""Render saved heatmap data as calendar heatmap images.

Reads heatmap_stats.json (written by heatmap_summary.py) and draws the
most recent months as week x weekday grids coloured by intensity level.
"""

from __future__ import annotations

import argparse
import calendar
import json

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns


def calendar_frame(month: dict) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Lay a month view out as a week-row by weekday-column grid.

    Args:
        month: A month view dict (see ``analytics.build_month_view``).

    Returns:
        A pair of DataFrames with the same shape: intensity levels (NaN
        for grid slots outside the month) and day-of-month labels (empty
        strings outside the month).
    """
    slots = month["leading_blanks"] + len(month["days"])
    weeks = -(-slots // 7)
    levels = [[float("nan")] * 7 for _ in range(weeks)]
    labels = [[""] * 7 for _ in range(weeks)]

    for cell in month["days"]:
        pos = month["leading_blanks"] + cell["day"] - 1
        levels[pos // 7][pos % 7] = cell["level"]
        labels[pos // 7][pos % 7] = str(cell["day"])

    return pd.DataFrame(levels), pd.DataFrame(labels)


def _weekday_labels(month: dict) -> list[str]:
    week_start = (calendar.weekday(month["year"], month["month"], 1) - month["leading_blanks"]) % 7
    return [calendar.day_abbr[(week_start + i) % 7][:2] for i in range(7)]


def render_heatmap(stats: dict, path: str, months: int = 6) -> int:
    """Draw the *months* most recent months into one image.

    Args:
        stats: The saved ``calculate_stats`` structure.
        path: Output image path.
        months: Maximum number of months to draw.

    Returns:
        Number of months drawn.
    """
    selected = list(reversed(stats["calendar_months"][:months]))
    if not selected:
        return 0

    cols = min(len(selected), 3)
    rows = -(-len(selected) // cols)
    fig, axes = plt.subplots(rows, cols, figsize=(4.5 * cols, 4 * rows), squeeze=False)

    for ax in axes.flat[len(selected):]:
        ax.axis("off")

    for ax, month in zip(axes.flat, selected):
        levels, labels = calendar_frame(month)
        sns.heatmap(
            levels,
            ax=ax,
            cmap="RdPu",
            vmin=0,
            vmax=4,
            annot=labels,
            fmt="",
            cbar=False,
            linewidths=1,
            linecolor="white",
            square=True,
        )
        ax.set_title(
            f"{calendar.month_name[month['month']]} {month['year']} "
            f"({month['total_messages']:,} msgs)",
            fontsize=11,
        )
        ax.set_xticklabels(_weekday_labels(month))
        ax.set_yticks([])

    fig.suptitle(
        f"{stats['total_messages']:,} messages over {stats['active_days']:,} active days",
        fontsize=14,
    )
    fig.tight_layout()
    fig.savefig(path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return len(selected)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Render a calendar heatmap from heatmap_stats.json")
    parser.add_argument('stats_file', nargs='?', default='heatmap_output/heatmap_stats.json')
    parser.add_argument('--output', '-o', default='heatmap_output/calendar_heatmap.png')
    parser.add_argument('--months', '-m', type=int, default=6, help='Number of recent months to draw')
    args = parser.parse_args(argv)

    with open(args.stats_file, 'r', encoding='utf-8') as f:
        stats = json.load(f)

    drawn = render_heatmap(stats, args.output, months=args.months)
    print(f"Rendered {drawn} month(s) to '{args.output}'")


if __name__ == '__main__':
    main()
