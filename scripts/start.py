#!/usr/bin/env python3
"""
Container entry point: migrate + seed, then exec gunicorn on $PORT.

Env: PORT (default 8080), WEB_CONCURRENCY (workers, default 2),
GUNICORN_TIMEOUT (seconds, default 60).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 8080


def resolve_port(raw: str | None) -> int:
    raw = (raw or "").strip()
    if not raw:
        return DEFAULT_PORT
    port = int(raw)
    if not 1 <= port <= 65535:
        raise ValueError(f"port {port} out of range")
    return port


def gunicorn_argv(port: int, env: dict[str, str] | None = None) -> list[str]:
    env = os.environ if env is None else env
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(env.get("WEB_CONCURRENCY") or 2),
        "--timeout", str(env.get("GUNICORN_TIMEOUT") or 60),
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    try:
        port = resolve_port(os.environ.get("PORT"))
    except ValueError:
        print(f"ERROR: PORT must be an integer 1-65535, got {os.environ.get('PORT')!r}", flush=True)
        sys.exit(1)

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    argv = gunicorn_argv(port)
    print(f"Starting: {' '.join(argv)}", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
