import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import uvicorn
from xrpl.asyncio.clients import AsyncJsonRpcClient

from distributor.config import load_config
from distributor.errors import DistributorError, InsufficientFundsError
from distributor.logging_config import setup_logging
from distributor.models import Participant
from distributor.xrpl_adapters import build_distributor

log = logging.getLogger("distributor.cli")


def positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return n


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="distributor")
    parser.add_argument("-c", "--config",
                        type=Path,
                        help="Path to an alternate config.toml.",
                        )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the funding service.")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)

    fund = sub.add_parser("fund", help="Fund accounts once and exit.")
    fund.add_argument("-n", "--transactions",
                      type=positive_int,
                      required=True,
                      help="Load-test transactions each account must afford.",
                      )
    fund.add_argument("-a", "--accounts",
                      type=Path,
                      required=True,
                      help="JSON list of addresses or [address, seed] pairs.",
                      )
    return parser.parse_args(argv)


def load_accounts(path: Path) -> list[Participant]:
    entries = json.loads(path.read_text())
    return [Participant(e[0] if isinstance(e, list) else e) for e in entries]


async def run_fund(args) -> int:
    cfg = load_config(args.config)
    funding = Participant(cfg["funding_account"]["address"])
    participants = [p for p in load_accounts(args.accounts) if p.address != funding.address]

    d = build_distributor(cfg, AsyncJsonRpcClient(cfg["rpc_url"]))
    try:
        eligible = await d.distribute([funding, *participants], args.transactions)
    except InsufficientFundsError as e:
        log.error("%s", e)
        return 2
    except DistributorError as e:
        log.error("Funding run aborted during %s: %s", e.phase, e)
        return 1

    for account in eligible:
        print(account.address)
    log.info("%s/%s accounts eligible", len(eligible), len(participants))
    return 0


def main(argv=None):
    args = parse_args(argv)
    if args.config is not None:
        os.environ["DISTRIBUTOR_CONFIG"] = str(args.config)
    setup_logging()

    if args.command == "serve":
        uvicorn.run("distributor.app:app", host=args.host, port=args.port, lifespan="on")
        return
    sys.exit(asyncio.run(run_fund(args)))


if __name__ == "__main__":
    main()
