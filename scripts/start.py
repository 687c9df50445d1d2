#!/usr/bin/env python3
"""
Container entrypoint: run the release step, then hand the process over to gunicorn.

Reads PORT (default 8080) and WEB_CONCURRENCY (default 2). Set SKIP_RELEASE=1 to
boot straight into gunicorn, e.g. for extra web replicas after the first one migrated.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _int_env(name: str, default: int, *, lo: int, hi: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SystemExit(f"{name} must be an integer, got {raw!r}")
    if not lo <= value <= hi:
        raise SystemExit(f"{name} must be between {lo} and {hi}, got {value}")
    return value


def gunicorn_argv(port: int, workers: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        # Cashfree and the invoice service are called inline from verify-order.
        "--timeout", "90",
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _int_env("PORT", 8080, lo=1, hi=65535)
    workers = _int_env("WEB_CONCURRENCY", 2, lo=1, hi=64)

    if (os.environ.get("SKIP_RELEASE") or "").strip().lower() not in ("1", "true", "yes"):
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"[start] release failed: {e}", flush=True)
            sys.exit(1)

    argv = gunicorn_argv(port, workers)
    print("[start] exec " + " ".join(argv), flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
