#!/usr/bin/env python
"""Buy ladder CLI: open limit buys at the given (or best-bid) price levels.

Usage:
    python scripts/buy.py --market BTC-ETH --size 0.5 --price 0.031 --price 0.030
    python scripts/buy.py --market BTC-ETH --size 0.5 --top 4 --agg 0.0005
"""
import argparse
import sys
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from autotrader.bittrex_adapter import BittrexAdapter
from autotrader.config import TradingConfig
from autotrader.exchange import ExchangeError
from autotrader.ladder import BuyLadder
from autotrader.logging_setup import logger, setup_logging
from autotrader.markets import MarketCache, aggregate_book
from autotrader.models import BuyCalls
from autotrader.rate_limit_policy import RequestGovernor
from autotrader.secrets import load_credentials


def book_levels(markets, market, top, agg):
    """Price levels of the `top` biggest aggregated bids."""
    bids = markets.book(market, "bids")
    levels = aggregate_book(bids, agg, markets.price_precision(market))
    levels.sort(key=lambda e: e.size, reverse=True)
    return [e.price for e in levels[:top]]


def main():
    parser = argparse.ArgumentParser(description="Bittrex buy ladder")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--market", required=True, help="v1 market name, e.g. BTC-ETH")
    parser.add_argument("--size", required=True, help="Size per level")
    parser.add_argument("--price", action="append", default=[], help="Level price (repeatable)")
    parser.add_argument("--top", type=int, default=4, help="Levels from the book when no --price given")
    parser.add_argument("--agg", default="0", help="Book aggregation step")
    parser.add_argument("--dev", default="1", help="Price deviation multiplier")
    parser.add_argument("--keep", action="store_true", help="Do not cancel existing buys")

    args = parser.parse_args()

    config = TradingConfig.from_yaml(args.config) if args.config else TradingConfig()
    setup_logging(log_file=config.logging.log_file, level=config.logging.log_level, serialize=config.logging.json_logs)

    try:
        credentials = load_credentials()
    except ValueError as e:
        logger.error(f"Failed to load credentials: {e}")
        sys.exit(1)

    client = BittrexAdapter.from_credentials(
        credentials,
        governor=RequestGovernor.for_directory(Path(config.session.directory)),
        base_url=config.exchange.base_url,
        timeout=config.exchange.timeout,
    )
    markets = MarketCache(client)
    market = args.market.upper()

    try:
        if args.price:
            prices = [Decimal(p) for p in args.price]
        else:
            prices = book_levels(markets, market, args.top, Decimal(args.agg))
        ladder = BuyLadder(client, markets=markets)
        placed = ladder.place(
            market,
            BuyCalls.from_prices(prices),
            Decimal(args.size),
            cancel=not args.keep,
            deviation=Decimal(args.dev),
        )
    except ExchangeError as e:
        logger.error(f"Buy ladder failed: {e}")
        sys.exit(1)

    print(f"Placed {len(placed)} buy order(s) on {market}")
    for order in placed:
        print(f"  {order.id:<40} {order.limit:<16} {order.quantity}")


if __name__ == "__main__":
    main()
