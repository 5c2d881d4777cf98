"""Protean Engine runner for the marketplace domain.

Starts the Engine (event handlers for notifications when event processing
is async) alongside the periodic sweeps:
- escrow auto-release for payments whose hold period has elapsed
- reconciliation flags for payments stuck in processing

Usage:
    python src/server.py                       # Engine + sweeps every 60s
    python src/server.py --sweep-interval 300  # Sweep every five minutes
    python src/server.py --sweep-only --once   # Run the sweeps once and exit
"""

import argparse
import asyncio

import structlog
from protean.server.engine import Engine

from marketplace.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


def _get_domain():
    from marketplace.domain import marketplace

    marketplace.init()
    return marketplace


def run_sweeps(domain) -> dict:
    """Release due escrows and flag stale payments, once."""
    from marketplace.payment.orchestrator import flag_stale_payments, release_due_escrows

    with domain.domain_context():
        released = release_due_escrows()
        flagged = flag_stale_payments()

    return {"released": released, "flagged": flagged}


async def sweep_forever(domain, interval: int):
    while True:
        try:
            await asyncio.to_thread(run_sweeps, domain)
        except Exception:
            logger.exception("Sweep failed, will retry on next interval")
        await asyncio.sleep(interval)


async def run(sweep_interval: int, sweep_only: bool):
    domain = _get_domain()
    tasks = [sweep_forever(domain, sweep_interval)]
    if not sweep_only:
        tasks.append(Engine(domain).run())

    await asyncio.gather(*tasks)


def main():
    parser = argparse.ArgumentParser(description="Marketplace Engine runner")
    parser.add_argument(
        "--sweep-interval",
        type=int,
        default=60,
        help="Seconds between escrow/reconciliation sweeps (default: 60)",
    )
    parser.add_argument(
        "--sweep-only",
        action="store_true",
        help="Run only the periodic sweeps, not the event Engine",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the sweeps once and exit",
    )
    args = parser.parse_args()

    configure_logging()

    if args.once:
        result = run_sweeps(_get_domain())
        print(f"Released {len(result['released'])} escrow(s), flagged {len(result['flagged'])} payment(s).")
        return

    asyncio.run(run(args.sweep_interval, args.sweep_only))


if __name__ == "__main__":
    main()
