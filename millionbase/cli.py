"""
MillionBase command line.

Usage:
    millionbase serve [--host H] [--port P]
    millionbase status
    millionbase check INDEX
    millionbase claim INDEX --as CLAIMANT
    millionbase assist INDEX --beneficiary ID --operator ID
    millionbase watch [--after N]

All client commands take --url (default REGISTRY_URL, http://127.0.0.1:8600).
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from millionbase.client.registry_client import RegistryClient
from millionbase.client.session import ClaimSession
from millionbase.core.config import get_settings
from millionbase.core.exceptions import ClaimError, MillionBaseError
from millionbase.core.logging_config import setup_logging

READ_ONLY_CLAIMANT = "anonymous"


# =============================================================================
# Commands
# =============================================================================


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings().registry
    uvicorn.run(
        "apps.services.registry.app:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level="info",
    )
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    async with RegistryClient(args.url, claimant=READ_ONLY_CLAIMANT) as client:
        supply = await client.supply()
    print(f"Minted {supply.total_claimed} / {supply.capacity}")
    if supply.sold_out:
        print("All cells claimed!")
    else:
        print(f"{supply.remaining} cells remaining")
    return 0


async def cmd_check(args: argparse.Namespace) -> int:
    async with RegistryClient(args.url, claimant=READ_ONLY_CLAIMANT) as client:
        cell = await client.get_cell(args.index)
    if cell.claimed:
        print(f"Cell {cell.cell_index}: claimed by {cell.claimant}")
    else:
        print(f"Cell {cell.cell_index}: unclaimed")
    return 0


async def cmd_claim(args: argparse.Namespace) -> int:
    client = RegistryClient(args.url, claimant=args.claimant)
    async with ClaimSession(client, follow_events=False) as session:
        outcome = await session.submit_claim(args.index)
    if outcome.succeeded:
        print(f"Claimed cell {args.index} (#{outcome.record.order})")
        if session.supply is not None:
            print(f"Minted {session.supply.total_claimed} / {session.supply.capacity}")
        return 0
    reason = outcome.reason.value if outcome.reason else outcome.status.value
    retry = " (safe to retry)" if outcome.retryable else ""
    print(f"Claim failed [{reason}]: {outcome.message}{retry}", file=sys.stderr)
    return 1


async def cmd_assist(args: argparse.Namespace) -> int:
    async with RegistryClient(args.url, claimant=args.operator, operator=args.operator) as client:
        try:
            record = await client.assisted_claim(args.index, args.beneficiary)
        except ClaimError as e:
            print(f"Assisted claim failed [{e.reason.value}]: {e.message}", file=sys.stderr)
            return 1
    print(f"Cell {record.cell_index} claimed for {record.claimant} by {record.assisted_by} (#{record.order})")
    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    async with RegistryClient(args.url, claimant=READ_ONLY_CLAIMANT) as client:
        async for record in client.stream_events(after=args.after):
            via = f" via {record.assisted_by}" if record.assisted_by else ""
            print(f"#{record.order} cell={record.cell_index} claimant={record.claimant}{via}", flush=True)
    return 0


# =============================================================================
# Entry point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="millionbase", description="MillionBase claim registry")
    parser.add_argument("--url", default=None, help="Registry service URL (default: REGISTRY_URL)")
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the registry service")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(handler=cmd_serve, is_async=False)

    status = sub.add_parser("status", help="Show claimed count against the cap")
    status.set_defaults(handler=cmd_status, is_async=True)

    check = sub.add_parser("check", help="Show whether a cell is claimed")
    check.add_argument("index", type=int)
    check.set_defaults(handler=cmd_check, is_async=True)

    claim = sub.add_parser("claim", help="Claim a cell")
    claim.add_argument("index", type=int)
    claim.add_argument("--as", dest="claimant", required=True, help="Claimant identity")
    claim.set_defaults(handler=cmd_claim, is_async=True)

    assist = sub.add_parser("assist", help="Operator claim on behalf of someone else")
    assist.add_argument("index", type=int)
    assist.add_argument("--beneficiary", required=True)
    assist.add_argument("--operator", required=True)
    assist.set_defaults(handler=cmd_assist, is_async=True)

    watch = sub.add_parser("watch", help="Print claims as they happen")
    watch.add_argument("--after", type=int, default=0, help="Replay claims after this order")
    watch.set_defaults(handler=cmd_watch, is_async=True)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command != "serve":
        setup_logging(service_name="cli", level=args.log_level or "WARNING", log_to_file=False)

    if not args.is_async:
        return args.handler(args)
    try:
        return asyncio.run(args.handler(args))
    except MillionBaseError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
