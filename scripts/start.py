#!/usr/bin/env python3
"""
Container entry point: release, then exec gunicorn serving app.wsgi:app.

Environment:
  PORT             listen port (default 8080)
  WEB_CONCURRENCY  gunicorn workers (default 2)
  SKIP_RELEASE=1   skip migrations and seeding; the position column is still checked
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _int_env(name: str, default: int, lo: int, hi: int) -> int:
    raw = (os.environ.get(name) or "").strip() or str(default)
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"{name} must be an integer, got {raw!r}") from None
    if not lo <= value <= hi:
        raise SystemExit(f"{name} must be between {lo} and {hi}, got {value}")
    return value


def gunicorn_argv(port: int, workers: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", "60",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _int_env("PORT", 8080, 1, 65535)
    workers = _int_env("WEB_CONCURRENCY", 2, 1, 64)

    from scripts.release import run_release

    skip = (os.environ.get("SKIP_RELEASE") or "").strip() == "1"
    try:
        run_release(check_only=skip)
    except RuntimeError as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"Starting gunicorn on :{port} with {workers} workers", flush=True)
    argv = gunicorn_argv(port, workers)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
