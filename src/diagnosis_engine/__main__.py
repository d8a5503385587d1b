"""CLI entry point for the diagnosis engine."""

from __future__ import annotations

import argparse
import json
import sys

from diagnosis_engine.errors import ActionableError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="diagnosis-engine",
        description="Personality diagnosis scoring, similarity, and refinement",
    )
    parser.add_argument(
        "--settings",
        type=str,
        default=None,
        help="Path to settings.toml (default: config/settings.toml if present)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Also write a timestamped log file to this directory",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # -- score ---------------------------------------------------------------
    score_p = sub.add_parser("score", help="Score an answer set and print the diagnosis")
    score_p.add_argument("--questions", required=True, help="JSON file of questions")
    score_p.add_argument("--answers", required=True, help="JSON file of answers")
    score_p.add_argument("--user", default="cli-user", help="User id for the diagnosis")
    score_p.add_argument(
        "--previous-version",
        default=None,
        metavar="VERSION",
        help="Version of the user's previous diagnosis (output is its successor)",
    )

    # -- compare -------------------------------------------------------------
    compare_p = sub.add_parser("compare", help="Compare two bigFive vectors")
    compare_p.add_argument("first", help="JSON file with the first bigFive vector")
    compare_p.add_argument("second", help="JSON file with the second bigFive vector")
    compare_p.add_argument(
        "--max-delta", type=float, default=None, help="Euclidean per-dimension spread"
    )
    compare_p.add_argument(
        "--threshold", type=float, default=None, help="Differing-factor threshold"
    )

    # -- health --------------------------------------------------------------
    sub.add_parser("health", help="Check Ollama connectivity and model availability")

    return parser


def main(argv: list[str] | None = None) -> int:
    from diagnosis_engine.cli import handle_compare, handle_health, handle_score
    from diagnosis_engine.logging import configure_file_logging

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.log_dir:
        configure_file_logging(args.log_dir)

    handlers = {
        "score": handle_score,
        "compare": handle_compare,
        "health": handle_health,
    }
    try:
        handlers[args.command](args)
    except ActionableError as exc:
        print(json.dumps(exc.to_dict(), indent=2, ensure_ascii=False), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
