"""
Administrative commands.

    tableside grant-staff owner@example.com --create
    tableside sweep
    tableside purge-declined --as owner@example.com
    tableside serve --port 8000

Every command reads its settings from TABLESIDE_* environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from kungfu import Error, Ok

from tableside.config import Config
from tableside.identity import grant_staff
from tableside.service import Restaurant, with_database

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════════════════════


async def _grant_staff(restaurant: Restaurant, args: argparse.Namespace) -> int:
    match await grant_staff(restaurant.identities, args.email, create=args.create):
        case Error(e):
            print(f"error: {e}", file=sys.stderr)
            return 1
        case Ok(actor):
            print(f"{actor.email} ({actor.user_id}) is now staff")
            return 0


async def _sweep(restaurant: Restaurant, args: argparse.Namespace) -> int:
    match await restaurant.bookings.sweep_past_bookings():
        case Error(e):
            print(f"error: {e}", file=sys.stderr)
            return 1
        case Ok(moved):
            for booking in moved:
                print(f"{booking.id} -> {booking.status.value}")
            print(f"retired {len(moved)} bookings")
            return 0


async def _purge_declined(restaurant: Restaurant, args: argparse.Namespace) -> int:
    match await restaurant.identities.by_email(args.as_email.strip().lower()):
        case Error(e):
            print(f"error: {e}", file=sys.stderr)
            return 1
        case Ok(None):
            print(f"error: no user {args.as_email}", file=sys.stderr)
            return 1
        case Ok(actor):
            pass

    match await restaurant.bookings.purge_declined(actor):
        case Error(e):
            print(f"error: {e}", file=sys.stderr)
            return 1
        case Ok(deleted):
            print(f"deleted {deleted} declined bookings")
            return 0


async def _serve(restaurant: Restaurant, args: argparse.Namespace) -> int:
    import uvicorn

    from tableside.api import create_app

    server = uvicorn.Server(
        uvicorn.Config(create_app(restaurant), host=args.host, port=args.port, log_config=None)
    )
    await server.serve()
    return 0


COMMANDS = {
    "grant-staff": _grant_staff,
    "sweep": _sweep,
    "purge-declined": _purge_declined,
    "serve": _serve,
}


async def _run(args: argparse.Namespace) -> int:
    restaurant = await with_database(Config.from_env())
    try:
        return await COMMANDS[args.command](restaurant, args)
    finally:
        await restaurant.close()


# ═══════════════════════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════════════════════


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tableside", description="Restaurant back office")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG")
    sub = parser.add_subparsers(dest="command", required=True)

    grant = sub.add_parser("grant-staff", help="Give a user the staff claim")
    grant.add_argument("email")
    grant.add_argument(
        "--create", action="store_true", help="Create the identity if the email is unknown"
    )

    sub.add_parser("sweep", help="Move started paid/cancelled bookings to past")

    purge = sub.add_parser("purge-declined", help="Delete every declined booking")
    purge.add_argument(
        "--as", dest="as_email", required=True, help="Email of the staff member doing it"
    )

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", "-p", type=int, default=8000)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
