#!/usr/bin/env python3
"""
serverdeck — CLI for the serverdeck dashboard API.

Usage:
    serverdeck status
    serverdeck start [--type PAPER --version 1.21]
    serverdeck stop
    serverdeck refresh
    serverdeck watch
"""

from __future__ import annotations

import argparse
import os
import sys
import time

import httpx

API_BASE = "http://localhost:8000"

STATUS_COLOR = {"RUNNING": "32", "STOPPED": "31", "PENDING": "33", "STOPPING": "33"}


def _headers() -> dict:
    api_key = os.getenv("SERVERDECK_API_KEY", "")
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


def _fail(resp: httpx.Response):
    try:
        detail = resp.json().get("detail", resp.text)
    except ValueError:
        detail = resp.text
    print(f"\033[31m✗ Error: {detail}\033[0m")
    sys.exit(1)


def _print_view(state: dict):
    view = state["view"]
    color = STATUS_COLOR.get(view["status"], "33")
    print(f"\033[{color}m● {view['status']}\033[0m")
    print(f"  Server:  {view['server_id'] or '—'}")
    config = view.get("config") or {}
    if config.get("type") or config.get("version"):
        print(f"  Config:  {config.get('type', '')} {config.get('version', '')}".rstrip())
    if view.get("public_ip"):
        print(f"  Address: {view['public_ip']}")
    if state.get("is_starting"):
        print("  Starting…")
    if state.get("is_stopping"):
        print("  Stopping…")


def show_status(args):
    """Show the current server view."""
    resp = httpx.get(f"{API_BASE}/api/server", headers=_headers())
    if resp.status_code != 200:
        _fail(resp)
    _print_view(resp.json())


def start_server(args):
    """Start a new server."""
    payload = {}
    if args.type:
        payload["type"] = args.type
    if args.version:
        payload["version"] = args.version

    resp = httpx.post(f"{API_BASE}/api/server/start", json=payload or None, headers=_headers())
    if resp.status_code == 409:
        print("\033[33m● Server is already running\033[0m")
        sys.exit(1)
    if resp.status_code != 202:
        _fail(resp)
    data = resp.json()
    print("\033[32m✓ Server startup initiated\033[0m")
    print(f"  Server: {data['server_id']}")
    print("  This may take a few minutes… run `serverdeck watch` to follow it.")


def stop_server(args):
    """Stop the tracked server."""
    resp = httpx.post(f"{API_BASE}/api/server/stop", headers=_headers())
    if resp.status_code != 202:
        _fail(resp)
    print("\033[32m✓ Server shutdown initiated\033[0m")


def refresh_server(args):
    """Force one describe of the tracked server."""
    resp = httpx.post(f"{API_BASE}/api/server/refresh", headers=_headers())
    if resp.status_code != 202:
        _fail(resp)
    print("Refresh requested.")


def watch_server(args):
    """Follow the server view until it settles."""
    print("Watching server status (Ctrl+C to stop)...")
    last_status = None
    try:
        while True:
            resp = httpx.get(f"{API_BASE}/api/server", headers=_headers())
            if resp.status_code != 200:
                _fail(resp)
            state = resp.json()
            status = state["view"]["status"]
            if status != last_status:
                _print_view(state)
                last_status = status
            if status in ("RUNNING", "STOPPED") and not (state["is_starting"] or state["is_stopping"]):
                break
            time.sleep(args.interval)
    except KeyboardInterrupt:
        print("\nStopped watching.")


def main():
    global API_BASE

    parser = argparse.ArgumentParser(
        prog="serverdeck",
        description="serverdeck CLI — start, stop and watch your game server",
    )
    parser.add_argument("--api", default=API_BASE, help="Dashboard API base URL")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", aliases=["ls"], help="Show server status")

    start_parser = subparsers.add_parser("start", help="Start a new server")
    start_parser.add_argument("--type", help="Server type, e.g. PAPER")
    start_parser.add_argument("--version", help="Game version, e.g. 1.21")

    subparsers.add_parser("stop", help="Stop the server")
    subparsers.add_parser("refresh", help="Re-check server status now")

    watch_parser = subparsers.add_parser("watch", help="Follow status until it settles")
    watch_parser.add_argument("--interval", type=float, default=2.0, help="Seconds between checks")

    args = parser.parse_args()

    API_BASE = args.api.rstrip("/")

    if args.command in ("status", "ls"):
        show_status(args)
    elif args.command == "start":
        start_server(args)
    elif args.command == "stop":
        stop_server(args)
    elif args.command == "refresh":
        refresh_server(args)
    elif args.command == "watch":
        watch_server(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
