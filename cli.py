from __future__ import annotations

import argparse
import json
import os
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _add_target(p: argparse.ArgumentParser) -> None:
    p.add_argument("--server", default=None, help="Target host (default: the API host's computer name)")
    p.add_argument("--instance", required=True, help="Instance name, e.g. MSSQLSERVER")
    p.add_argument("--option", required=True, help="Configuration option display name")


def _add_desired(p: argparse.ArgumentParser) -> None:
    _add_target(p)
    p.add_argument("--value", type=int, required=True)
    p.add_argument("--restart-service", action="store_true", help="Restart the instance if the option is not dynamic")
    p.add_argument("--restart-timeout", type=int, default=120)
    p.add_argument("--active-node-only", action="store_true", help="Skip evaluation unless this is the active node")


def _desired_payload(args: argparse.Namespace) -> dict:
    return {
        "server_name": args.server,
        "instance_name": args.instance,
        "option_name": args.option,
        "option_value": args.value,
        "restart_service": args.restart_service,
        "restart_timeout": args.restart_timeout,
        "process_only_on_active_node": args.active_node_only,
    }


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="SQL Server Option Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--user", default=os.getenv("SQLOPT_API_USER", "admin"))
    p.add_argument("--password", default=os.getenv("SQLOPT_API_PASSWORD", "change-me"))
    sub = p.add_subparsers(dest="cmd", required=True)

    s_get = sub.add_parser("get", help="Read the current value of an option")
    _add_target(s_get)

    s_test = sub.add_parser("test", help="Check whether an option holds the desired value")
    _add_desired(s_test)

    s_set = sub.add_parser("set", help="Apply the desired value")
    _add_desired(s_set)

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_runs = sub.add_parser("runs", help="Show reconciliation runs")
    s_runs.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    auth = (args.user, args.password)

    if args.cmd == "get":
        payload = {"server_name": args.server, "instance_name": args.instance, "option_name": args.option}
        r = requests.post(f"{base}/configuration/read", json=payload, auth=auth, timeout=60)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "test":
        r = requests.post(f"{base}/configuration/test", json=_desired_payload(args), auth=auth, timeout=60)
        body = r.json()
        _print(body)
        # not_applicable counts as "nothing to do".
        return 0 if r.ok and body.get("in_desired_state") else 1

    if args.cmd == "set":
        payload = _desired_payload(args)
        # Leave room for the restart wait on top of the request itself.
        r = requests.post(f"{base}/configuration/apply", json=payload, auth=auth, timeout=60 + args.restart_timeout)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd in {"events", "runs"}:
        _print(requests.get(f"{base}/{args.cmd}", params={"limit": args.limit}, auth=auth, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
