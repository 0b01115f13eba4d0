#!/usr/bin/env python
"""Session status CLI: inspect or reset the request governor's shared state.

Usage:
    python scripts/session_status.py --dir ~/.autotrader show
    python scripts/session_status.py --dir ~/.autotrader reset
"""
import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from autotrader.rate_limit_policy import (
    FileSessionStore,
    SessionInfo,
    normalize_path,
    requests_per_second,
)


def show_session(store):
    """Print the last request time, cooldown flag and per-endpoint tiers."""
    try:
        last = store.load_last_request()
    except (OSError, ValueError) as e:
        last = None
        print(f"Last request: unreadable ({e})")
    else:
        if last is None:
            print("Last request: (none)")
        else:
            print(f"Last request: {datetime.fromtimestamp(last, tz=timezone.utc).isoformat()}")

    try:
        info = store.load_info()
        source = str(store.info_file)
    except (OSError, ValueError, KeyError, TypeError):
        info = SessionInfo()
        source = "built-in defaults"

    print(f"Source: {source}")
    print(f"Cooldown: {'yes' if info.cooldown else 'no'}")
    print(f"\n{'Path':<32} {'Intensity':<10} {'Req/s':<8}")
    print("-" * 52)
    for call in info.calls:
        print(f"{call.path:<32} {call.intensity:<10} {requests_per_second(call.intensity):<8.3f}")


def reset_session(store, path=None):
    """Reset one endpoint (or everything) to the built-in defaults."""
    if path is None:
        store.save_info(SessionInfo())
        print("Session reset to defaults")
        return
    try:
        info = store.load_info()
    except (OSError, ValueError, KeyError, TypeError):
        info = SessionInfo()
    path = normalize_path(path)
    info.calls = [c for c in info.calls if c.path != path]
    info.cooldown = False
    store.save_info(info)
    print(f"Endpoint reset: {path}")


def main():
    parser = argparse.ArgumentParser(description="Request governor session CLI")
    parser.add_argument("--dir", default="~/.autotrader", help="Session directory")
    parser.add_argument("--name", default="bittrex", help="Session name (exchange)")

    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("show")
    reset = sub.add_parser("reset")
    reset.add_argument("--path", help="Only reset this endpoint")

    args = parser.parse_args()

    store = FileSessionStore(Path(args.dir), args.name)

    if args.cmd == "show":
        show_session(store)
    elif args.cmd == "reset":
        reset_session(store, args.path)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
