from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="GitOps Rollout Engine CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("resources", help="List managed resources and their sync status")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--resource")

    s_pub = sub.add_parser("publish", help="Publish a full desired state for a resource")
    s_pub.add_argument("--resource", required=True)
    s_pub.add_argument("--image", required=True)
    s_pub.add_argument("--replicas", type=int, default=1)
    s_pub.add_argument("--internal-port", type=int, default=8080)
    s_pub.add_argument("--cpu", default="100m", help="CPU request and limit")
    s_pub.add_argument("--memory", default="128Mi", help="Memory request and limit")
    s_pub.add_argument("--health-path", default="/health")
    s_pub.add_argument("--initial-delay-s", type=float, default=0.0)
    s_pub.add_argument("--period-s", type=float, default=5.0)

    s_img = sub.add_parser("image", help="Publish a new image for an existing resource")
    s_img.add_argument("--resource", required=True)
    src = s_img.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", help="Full image reference (name:tag)")
    src.add_argument("--commit", help="Commit sha; tag is derived from it (needs --repository)")
    s_img.add_argument("--repository")
    s_img.add_argument("--replicas", type=int)

    s_st = sub.add_parser("status", help="Show sync status of a resource")
    s_st.add_argument("--resource", required=True)

    s_hist = sub.add_parser("history", help="Show published revisions of a resource")
    s_hist.add_argument("--resource", required=True)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "resources":
        _print(requests.get(f"{base}/resources", timeout=10).json())
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.resource:
            params["resource"] = args.resource
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    if args.cmd == "publish":
        quantities = {"cpu": args.cpu, "memory": args.memory}
        payload = {
            "image_reference": args.image,
            "replica_count": args.replicas,
            "requests": quantities,
            "limits": quantities,
            "health_check": {
                "path": args.health_path,
                "initial_delay_s": args.initial_delay_s,
                "period_s": args.period_s,
            },
            "internal_port": args.internal_port,
        }
        r = requests.post(f"{base}/resources/{args.resource}/revisions", json=payload, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "image":
        if args.commit and not args.repository:
            p.error("--commit requires --repository")
        payload = {
            "image_reference": args.image,
            "repository": args.repository,
            "commit_sha": args.commit,
            "replica_count": args.replicas,
        }
        r = requests.post(f"{base}/resources/{args.resource}/image", json=payload, timeout=30)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "status":
        r = requests.get(f"{base}/resources/{args.resource}/status", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "history":
        r = requests.get(f"{base}/resources/{args.resource}/revisions", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
