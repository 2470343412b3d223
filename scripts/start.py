#!/usr/bin/env python3
"""
Container entry point for the intake service.

Migrates and seeds (scripts/release.py), then execs gunicorn serving
app.wsgi:app so the server takes over this PID and receives signals directly.

Environment:
    PORT             listen port (default 8080)
    WEB_CONCURRENCY  gunicorn worker count (default 2)
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _int_env(name: str, default: int, *, low: int, high: int) -> int:
    raw = os.environ.get(name, "").strip() or str(default)
    try:
        value = int(raw)
    except ValueError:
        value = -1
    if not low <= value <= high:
        raise SystemExit(f"ERROR: {name}={raw!r} must be an integer in {low}..{high}")
    return value


def gunicorn_argv(port: int, workers: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        f"--bind=0.0.0.0:{port}",
        f"--workers={workers}",
        "--timeout=60",
        "--preload",
        "--access-logfile=-",
        "--error-logfile=-",
    ]


def main() -> None:
    port = _int_env("PORT", 8080, low=1, high=65535)
    workers = _int_env("WEB_CONCURRENCY", 2, low=1, high=64)

    from scripts.release import run_release

    print("intake: release phase", flush=True)
    try:
        run_release()
    except Exception as e:
        raise SystemExit(f"intake: release failed: {e}")

    argv = gunicorn_argv(port, workers)
    print(f"intake: exec {' '.join(argv)}", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
