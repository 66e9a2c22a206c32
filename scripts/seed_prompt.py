#!/usr/bin/env python3
"""Seed the initial active system prompt into Poiesis.

Skips seeding when a prompt is already active.

Usage:
    python scripts/seed_prompt.py
    python scripts/seed_prompt.py --base-url http://localhost:8400 --admin-id ops
"""

from __future__ import annotations

import argparse
import sys

import httpx

DEFAULT_PROMPT = "You are a helpful AI assistant. Please respond to the user's request."


def seed_via_api(base_url: str, admin_id: str, text: str) -> int:
    """Create and activate the default prompt through the admin API."""
    headers = {"X-User-ID": admin_id, "X-User-Type": "admin"}
    with httpx.Client(base_url=base_url, headers=headers, timeout=10.0) as client:
        resp = client.get("/api/v1/admin/prompts/active")
        if resp.status_code == 200:
            active = resp.json()
            print(f"  Skipped (active prompt exists): {active['id']} v{active['version']}")
            return 0

        resp = client.post("/api/v1/admin/prompts", json={"text": text, "active": True})
        if resp.status_code == 201:
            print(f"  Created active prompt: {resp.json()['id']}")
            return 0

        print(f"  FAILED: {resp.status_code} {resp.text}", file=sys.stderr)
        return 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the default system prompt into Poiesis")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8400",
        help="Poiesis API base URL (default: http://localhost:8400)",
    )
    parser.add_argument("--admin-id", default="seed-script", help="Admin user id to act as")
    parser.add_argument("--text", default=DEFAULT_PROMPT, help="Prompt text to seed")
    args = parser.parse_args()

    print(f"Seeding default prompt to {args.base_url} ...")
    code = seed_via_api(args.base_url, args.admin_id, args.text)
    print("Done." if code == 0 else "Failed.")
    sys.exit(code)


if __name__ == "__main__":
    main()
