"""
Operator commands.

┌──────────────────────────────────────────────────────────────────────────┐
│  COMMAND                          WHAT IT DOES                           │
├──────────────────────────────────────────────────────────────────────────┤
│  init-db                          create the schema                      │
│  replay-webhooks [--limit N]      re-run received / failed events        │
│  regenerate-licenses ORDER [-i]   rebuild license documents              │
└──────────────────────────────────────────────────────────────────────────┘

Settings come from TRACKLEASE_* environment variables.
"""

import argparse
import asyncio
import sys
from collections.abc import Sequence

from kungfu import Error, Ok

from tracklease.app import Services, build_services
from tracklease.config import Settings
from tracklease.log import configure_logging, get_logger

log = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tracklease", description="License-sale fulfillment operations")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="create database tables")

    replay = commands.add_parser("replay-webhooks", help="retry unprocessed webhook events")
    replay.add_argument("--limit", type=int, default=100)

    regenerate = commands.add_parser("regenerate-licenses", help="rebuild license documents for an order")
    regenerate.add_argument("order_id")
    regenerate.add_argument("-i", "--item", dest="order_item_id", default=None)

    return parser


# ═══════════════════════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════════════════════

async def init_db(services: Services, args: argparse.Namespace) -> int:
    # build_services already ran create_all
    print(f"schema ready at {services.settings.database_url}")
    return 0


async def replay_webhooks(services: Services, args: argparse.Namespace) -> int:
    acks = await services.reconciler.replay_pending(limit=args.limit)
    for ack in acks:
        print(f"{ack.event_id}  {ack.event_type:<32} {ack.status.value:<10} {ack.detail}")
    print(f"{len(acks)} event(s) replayed")
    return 0


async def regenerate_licenses(services: Services, args: argparse.Namespace) -> int:
    match await services.generator.regenerate(args.order_id, args.order_item_id):
        case Ok(report):
            for document in report.generated:
                print(f"generated  {document.order_item_id}  {document.storage_path}")
            for failure in report.failed:
                print(f"failed     {failure.order_item_id}  {failure.error.message}")
            return 0 if report.complete else 1
        case Error(e):
            print(f"error: {e}", file=sys.stderr)
            return 2


COMMANDS = {
    "init-db": init_db,
    "replay-webhooks": replay_webhooks,
    "regenerate-licenses": regenerate_licenses,
}


async def run(argv: Sequence[str] | None = None, settings: Settings | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.json_logs)

    services = await build_services(settings, background=False)
    try:
        return await COMMANDS[args.command](services, args)
    finally:
        await services.close()


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
