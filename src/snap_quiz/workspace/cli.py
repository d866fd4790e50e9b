"""``snapquiz init``: create the data directory used by every command."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Sequence

from snap_quiz.core import workspace as workspace_mod


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapquiz init",
        description="Create the snap-quiz data directory (config, logs, state).",
    )
    parser.add_argument(
        "--path",
        type=Path,
        help=(
            f"Data directory to use instead of ${workspace_mod.WORKSPACE_ENV} "
            "or ~/.snap-quiz-data."
        ),
    )
    parser.add_argument(
        "--quiet", action="store_true", help="Print nothing on success."
    )
    return parser


def describe_layout(layout: workspace_mod.WorkspaceLayout) -> List[str]:
    """Human-readable summary lines for ``layout``."""

    def state(key: str) -> str:
        return "created" if layout.created.get(key) else "exists"

    lines = [f"Workspace ready at {layout.home} ({state('home')})", "Subdirectories:"]
    pad = max(len(name) for name in layout.directories)
    lines.extend(
        f"  {name:<{pad}}  {directory} ({state(name)})"
        for name, directory in layout.items()
    )
    return lines


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    try:
        layout = workspace_mod.ensure_workspace(path=args.path)
    except workspace_mod.WorkspaceError as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return 2
    if not args.quiet:
        sys.stdout.write("\n".join(describe_layout(layout)) + "\n")
    return 0


if __name__ == "__main__":  # pragma: no cover - module CLI guard
    raise SystemExit(main())
