#!/usr/bin/env python3
"""Operate on cached token pairs from the command line.

Usage:
    # Mint a pair (prints signed tokens as JSON):
    python scripts/tokenctl.py issue --subject device-42 --role 2

    # Inspect, renew or revoke using the signed tokens:
    python scripts/tokenctl.py status --access-token <jwt> [--claimed-subject device-42]
    python scripts/tokenctl.py renew --refresh-token <jwt>
    python scripts/tokenctl.py revoke --access-token <jwt> --refresh-token <jwt>

Environment Variables:
    REDIS_URL: Redis connection string used as the token cache
    ACCESS_TOKEN_SECRET / REFRESH_TOKEN_SECRET: signing secrets shared with the service
    ACCESS_TOKEN_TTL_SECONDS / REFRESH_TOKEN_TTL_SECONDS: lifetimes for issued pairs
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def run_command(args: argparse.Namespace) -> dict[str, Any]:
    # Import here to avoid loading config before env vars are set
    from tokencache.service.runtime import get_runtime

    runtime = get_runtime()
    try:
        if args.command == "issue":
            return await runtime.auth.login(args.subject, args.role)
        if args.command == "renew":
            return await runtime.auth.refresh_tokens(args.refresh_token)
        if args.command == "revoke":
            await runtime.auth.logout(f"Bearer {args.access_token}", args.refresh_token)
            return {"revoked": True}
        identity, status = await runtime.auth.inspect(
            f"Bearer {args.access_token}", args.claimed_subject
        )
        return {"subject": identity.subject, "access_id": identity.unique_id, **status.as_dict()}
    finally:
        await runtime.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Issue, inspect, renew and revoke cached token pairs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--log-level", default=None, help="override LOG_LEVEL for this invocation (e.g. WARNING)"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    issue = sub.add_parser("issue", help="mint a new token pair")
    issue.add_argument("--subject", required=True, help="account or device identifier")
    issue.add_argument("--role", type=int, default=0, help="numeric role (default 0)")

    status = sub.add_parser("status", help="report the cache state of an access token")
    status.add_argument("--access-token", required=True)
    status.add_argument("--claimed-subject", default=None)

    renew = sub.add_parser("renew", help="exchange a refresh token for a new pair")
    renew.add_argument("--refresh-token", required=True)

    revoke = sub.add_parser("revoke", help="delete both records of a pair")
    revoke.add_argument("--access-token", required=True)
    revoke.add_argument("--refresh-token", required=True)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "issue" and args.role < 0:
        print("Error: --role must be >= 0")
        return 1

    from tokencache.logging import configure_logging
    from tokencache.service.errors import ServiceError

    if args.log_level:
        configure_logging(log_level=args.log_level)

    try:
        result = asyncio.run(run_command(args))
    except ServiceError as exc:
        print(f"Error: {exc.message} ({exc.error_code})")
        return 1
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
