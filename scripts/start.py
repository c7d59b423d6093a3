#!/usr/bin/env python3
"""
Container entrypoint: run the release phase, then hand the process over to
gunicorn serving app.wsgi:app.

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.openmics.config import load_settings
from scripts.release import run_release

DEFAULT_WORKERS = 2


def parse_port(raw: str) -> int:
    try:
        port = int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid PORT value {raw!r}. Must be integer 1-65535.") from None
    if not 1 <= port <= 65535:
        raise ValueError(f"Invalid PORT value {raw!r}. Must be integer 1-65535.")
    return port


def parse_workers(raw: str | None) -> int:
    if raw is None or not raw.strip():
        return DEFAULT_WORKERS
    workers = int(raw)
    if workers < 1:
        raise ValueError(f"WEB_CONCURRENCY must be at least 1, got {raw!r}.")
    return workers


def gunicorn_argv(port: int, workers: int) -> list[str]:
    # --preload builds the app once; the engine is disposed in each forked worker.
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", "60",
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    settings = load_settings()
    try:
        port = parse_port(settings.port)
        workers = parse_workers(os.environ.get("WEB_CONCURRENCY"))
    except ValueError as e:
        print(f"ERROR: {e}", flush=True)
        sys.exit(1)

    try:
        run_release(settings)
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"=== Starting gunicorn on 0.0.0.0:{port} with {workers} workers ===", flush=True)
    # exec so gunicorn becomes PID 1 and receives signals directly
    os.execvp("gunicorn", gunicorn_argv(port, workers))


if __name__ == "__main__":
    main()
