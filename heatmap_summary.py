"""heatmap_summary.py

Print a chat activity summary for SillyTavern and save the heatmap data.

By default every character on the server is read.  Use `--character` to
read one character's chats, or `--chat-file` to summarize a single local
.jsonl chat log without contacting the server.

Outputs heatmap_stats.json and daily_counts.csv into `--output-dir`; run
heatmap_viz.py afterwards to render the calendar as an image.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

import config
from analytics import (
    GLOBAL_SCOPE,
    INTENSITY_PRESETS,
    RANGE_END_CHOICES,
    CalendarRangeError,
    calculate_stats,
    load_scope_messages,
    print_summary_report,
    save_stats_files,
)
from st_client import ChatStoreError
from st_history import load_chat_file

logger = logging.getLogger(__name__)


def _make_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TextColumn("({task.completed}/{task.total})"),
        TimeElapsedColumn(),
        transient=True,
    )


def _load_messages(args: argparse.Namespace) -> list[dict]:
    """Load raw chat records for the mode selected on the command line."""
    if args.chat_file:
        return load_chat_file(args.chat_file)
    if args.character:
        return asyncio.run(
            load_scope_messages(args.character, character=True, base_url=args.base_url)
        )

    with _make_progress() as progress:
        # Total is unknown until the character list has been fetched.
        task_id = progress.add_task("Reading characters", total=None)

        def on_progress(completed: int, total: int) -> None:
            progress.update(task_id, completed=completed, total=total)

        return asyncio.run(
            load_scope_messages(GLOBAL_SCOPE, base_url=args.base_url, on_progress=on_progress)
        )


def _report_title(args: argparse.Namespace) -> str:
    if args.chat_file:
        return f"Chat Heatmap: {args.chat_file}"
    if args.character:
        return f"Chat Heatmap: {args.character}"
    return "Chat Heatmap: all characters"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Summarize SillyTavern chat activity as a heatmap")
    source = parser.add_mutually_exclusive_group()
    source.add_argument('--character', '-c', metavar='AVATAR',
                        help='Only read chats of the character with this avatar file name')
    source.add_argument('--chat-file', '-f', metavar='PATH',
                        help='Summarize one local .jsonl chat log instead of the server')
    parser.add_argument('--base-url', default=config.ST_BASE_URL,
                        help=f'SillyTavern server URL (default: {config.ST_BASE_URL})')
    parser.add_argument('--intensity', choices=sorted(INTENSITY_PRESETS),
                        default=config.INTENSITY_PRESET,
                        help='Heatmap intensity threshold preset')
    parser.add_argument('--range-end', choices=RANGE_END_CHOICES, default=config.RANGE_END,
                        help='End the calendar at the last message ("last") or today ("now")')
    parser.add_argument('--week-start', type=int, choices=range(7), default=config.WEEK_START,
                        help='First weekday of the grid, 0=Monday .. 6=Sunday')
    parser.add_argument('--output-dir', '-o', default='heatmap_output',
                        help='Directory for heatmap_stats.json and daily_counts.csv')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: load chats, aggregate, save files and print a report."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        messages = _load_messages(args)
    except FileNotFoundError:
        logger.error("Chat file not found: %s", args.chat_file)
        sys.exit(1)
    except ChatStoreError as e:
        logger.error("Could not read chats from %s: %s", args.base_url, e)
        sys.exit(1)

    try:
        stats = calculate_stats(
            messages,
            thresholds=args.intensity,
            range_end=args.range_end,
            week_start=args.week_start,
        )
    except CalendarRangeError as e:
        logger.error("Cannot build calendar: %s", e)
        sys.exit(1)
    except ValueError as e:
        # argparse does not check defaults taken from the environment.
        logger.error("Invalid heatmap setting: %s", e)
        sys.exit(1)

    if stats is None:
        print("No chat history with valid dates found.")
        sys.exit(1)

    save_stats_files(stats, args.output_dir)
    print_summary_report(stats, title=_report_title(args))
    print(f"\nHeatmap data has been saved to the '{args.output_dir}' directory:")
    print("1. heatmap_stats.json - Summary statistics and calendar months")
    print("2. daily_counts.csv - Messages and characters per day")
    print("\nRun 'python heatmap_viz.py' to render the calendar heatmap.")


if __name__ == '__main__':
    main()
