#!/usr/bin/env python
"""Sell loop CLI: watch fills and place the configured sell orders, forever.

Usage:
    python scripts/sell.py --config config.yaml
    python scripts/sell.py --config config.yaml --strategy stop-loss --dca
"""
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from autotrader.config import TradingConfig
from autotrader.engine import build_loop
from autotrader.logging_setup import logger, setup_logging
from autotrader.notify import LogSocialPoster
from autotrader.secrets import load_credentials


def main():
    parser = argparse.ArgumentParser(description="Bittrex sell loop")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--strategy", choices=["standard", "stop-loss"], help="Override strategy.name")
    parser.add_argument("--dca", action="store_true", help="Buy 2.2x after a stop-loss fires")
    parser.add_argument("--hold", default="", help="Comma-separated markets to keep a reserve in, e.g. BTC-ETH")
    parser.add_argument("--tweet", action="store_true", help="Post fills to the social sink")

    args = parser.parse_args()

    config = TradingConfig.from_yaml(args.config) if args.config else TradingConfig()
    if args.strategy:
        config.strategy.name = args.strategy
    if args.dca:
        config.strategy.dca = True
    if args.hold:
        config.strategy.hold = [m.strip().upper() for m in args.hold.split(",") if m.strip()]

    setup_logging(log_file=config.logging.log_file, level=config.logging.log_level, serialize=config.logging.json_logs)

    try:
        credentials = load_credentials()
    except ValueError as e:
        logger.error(f"Failed to load credentials: {e}")
        sys.exit(1)

    try:
        loop = build_loop(config, credentials, poster=LogSocialPoster() if args.tweet else None)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    try:
        loop.run()
    except KeyboardInterrupt:
        logger.info("Sell loop stopped")


if __name__ == "__main__":
    main()
