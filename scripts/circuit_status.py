#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

import httpx


def main() -> None:
    ap = argparse.ArgumentParser(description="Show or reset circuit breakers of a running gateway")
    ap.add_argument("action", choices=["show", "reset"])
    ap.add_argument("--name", default="addEvent", help="circuit to reset")
    ap.add_argument("--url", default="http://localhost:3000")
    ns = ap.parse_args()
    base = ns.url.rstrip("/")
    with httpx.Client(timeout=5.0) as cli:
        if ns.action == "reset":
            r = cli.post(f"{base}/circuits/{ns.name}/reset")
        else:
            r = cli.get(f"{base}/circuits")
        r.raise_for_status()
        print(json.dumps(r.json(), indent=2))


if __name__ == "__main__":
    main()
