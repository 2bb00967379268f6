"""
Format or lint-check agent-llm with ruff.

    uv run python scripts/format.py           # rewrite files in place
    uv run python scripts/format.py --check   # report only, for CI
"""

from __future__ import annotations

import argparse
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent

# Whitespace and blank-line rules only; these never change behaviour
LAYOUT_RULES = "W291,W293,E3"


def targets(root: Path = ROOT) -> list[str]:
    # Tests sit at the repository root next to conftest.py
    modules = sorted(p.name for p in root.glob("*.py"))
    return ["agent_llm", "scripts", *modules]


def commands(check: bool = False, root: Path = ROOT) -> list[list[str]]:
    paths = targets(root)
    ruff = ["uv", "run", "ruff"]
    if check:
        return [
            [*ruff, "format", "--check", "--diff", *paths],
            [*ruff, "check", *paths],
        ]
    return [
        [*ruff, "format", *paths],
        [*ruff, "check", "--preview", "--fix", "--unsafe-fixes", "--select", LAYOUT_RULES, *paths],
        [*ruff, "check", "--fix", "--ignore", "E501", *paths],
    ]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--check", action="store_true", help="report problems without fixing")
    args = parser.parse_args(argv)

    for command in commands(check=args.check):
        result = subprocess.run(command, cwd=ROOT)
        if result.returncode != 0:
            print(f"❌ {' '.join(command[2:4])} failed", file=sys.stderr)
            return result.returncode
    return 0


if __name__ == "__main__":
    sys.exit(main())
