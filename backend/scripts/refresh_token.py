import argparse
import asyncio

from loguru import logger

from app.core.config import get_settings
from app.db import init_db
from app.errors import BrokerError, ConfigError
from pricefeed.scheduler import FetchOutcome
from pricefeed.service import build_price_feed
from pricefeed.tokens import describe_broker_failure


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh the Kite Connect access token")
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--request-token",
        default=None,
        help="Request token from the Kite login redirect (defaults to KITE_REQUEST_TOKEN)",
    )
    group.add_argument(
        "--access-token",
        default=None,
        help="Install this access token directly without asking the broker",
    )
    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Skip the quote fetch that confirms the new token works",
    )
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> int:
    init_db()
    feed = build_price_feed(get_settings())
    try:
        try:
            if args.access_token:
                await feed.tokens.set_access_token_directly(args.access_token)
            else:
                await feed.tokens.regenerate(args.request_token)
        except ConfigError as exc:
            logger.error("{}", exc)
            return 2
        except BrokerError as exc:
            logger.error("Token refresh failed: {}", describe_broker_failure(exc))
            return 1

        if args.no_verify:
            logger.info("Token stored; verification skipped")
            return 0

        try:
            outcome = await feed.scheduler.trigger_immediate_fetch()
        except ConfigError as exc:
            logger.error("Token stored but cannot be verified: {}", exc)
            return 2
        snapshot = feed.state.snapshot()
        if outcome is not FetchOutcome.FETCHED:
            logger.error("Token stored but quote fetch ended with {}: {}", outcome.value, snapshot.last_error)
            return 1
        logger.info(
            "Token verified: last={} close={}", snapshot.current_price, snapshot.last_close_price
        )
        return 0
    finally:
        await feed.client.aclose()


def main() -> None:
    raise SystemExit(asyncio.run(_run(parse_args())))


if __name__ == "__main__":
    main()
