#!/usr/bin/env python3
"""Run pytest in Qt offscreen mode with a hard wall-clock limit.

Usage:
  python scripts/run_tests_offscreen.py [--timeout SECONDS] [--per-test SECONDS] [--] [pytest args...]

Examples:
  python scripts/run_tests_offscreen.py tests/test_export_tracker.py
  python scripts/run_tests_offscreen.py -- -k supervisor -q
"""

from __future__ import annotations

import argparse
import os
import shlex
import subprocess
import sys


def main() -> int:
    p = argparse.ArgumentParser(description="Run pytest with Qt offscreen mode")
    p.add_argument("--timeout", type=int, default=300, help="Maximum seconds for the whole pytest run")
    p.add_argument("--per-test", type=int, default=60, help="pytest-timeout limit for a single test")
    p.add_argument("--verbose", action="store_true", help="Don't use -q (quiet)")
    p.add_argument("pytest_args", nargs=argparse.REMAINDER, help="Additional pytest args")
    args = p.parse_args()

    env = os.environ.copy()
    env.setdefault("QT_QPA_PLATFORM", "offscreen")
    # Keep test runs quiet unless the caller asked for more.
    env.setdefault("WATERMARK_LOG_LEVEL", "warning")

    cmd = ["uv", "run", "python", "-m", "pytest"]
    if not args.verbose:
        cmd += ["-q", "-x", "--maxfail=1"]
    cmd.append(f"--timeout={min(args.per_test, args.timeout)}")
    cmd += [a for a in args.pytest_args if a != "--"]

    print("Running:", " ".join(shlex.quote(c) for c in cmd))
    try:
        completed = subprocess.run(cmd, env=env, check=False, timeout=args.timeout)
    except subprocess.TimeoutExpired:
        print(f"pytest run timed out after {args.timeout} seconds", file=sys.stderr)
        return 124
    return completed.returncode


if __name__ == "__main__":
    raise SystemExit(main())
