"""
Inspect or reset the moderation failure map used to block scene prompts.

Usage:
    python scripts/prompt_failures.py summary
    python scripts/prompt_failures.py reset "a child flying a kite on a hill"
    python scripts/prompt_failures.py reset-all
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure project root is on the Python path.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from colorbook.common import GenerationSettings  # noqa: E402
from colorbook.pipeline import PromptFailureTracker  # noqa: E402


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage the ColorBook failed prompt map.")
    parser.add_argument("--data-dir", default=None, help="Override COLORBOOK_DATA_DIR.")
    parser.add_argument(
        "--path",
        default=None,
        help="Explicit failed prompt map file (default: <data-dir>/failed-prompts.json).",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    summary = commands.add_parser("summary", help="List tracked prompts, most failed first.")
    summary.add_argument("--limit", type=int, default=20, help="Number of prompts to list (default: 20).")
    reset = commands.add_parser("reset", help="Forget the failures of one prompt.")
    reset.add_argument("prompt", help="Exact prompt text.")
    commands.add_parser("reset-all", help="Forget every tracked failure.")
    return parser.parse_args(argv)


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    settings = GenerationSettings.from_env(data_dir=Path(args.data_dir) if args.data_dir else None)
    tracker = PromptFailureTracker(
        args.path or settings.failure_map_path,
        threshold=settings.failure_threshold,
    )

    match args.command:
        case "summary":
            report = tracker.summary()
            print(f"Tracked prompts: {report.total}")
            print(f"Blocked: {report.blocked}")
            print(f"Near threshold: {report.warning}")
            for item in report.prompts[: args.limit]:
                marker = "BLOCKED" if item.blocked else "       "
                print(f"  {marker} {item.count:>3}/{tracker.threshold}  {item.prompt}")
        case "reset":
            if not tracker.reset(args.prompt):
                print("Prompt is not tracked.")
                return 1
            print("Prompt reset.")
        case "reset-all":
            tracker.reset_all()
            print("All prompt failures reset.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
