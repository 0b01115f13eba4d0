"""Cached market metadata with on-demand refresh for new listings."""
from decimal import ROUND_FLOOR, Decimal
from typing import Dict, List, Optional, Tuple

from .exchange import ExchangeClient, UnknownMarketError
from .logging_setup import logger
from .models import BookEntry, Market, MarketSummary, join_market, split_market
from .pricing import SIZE_PRECISION, round_to

DEFAULT_PRICE_PRECISION = 8


def format_market(base: str, quote: str) -> str:
    """v1 market name (QUOTE-BASE)."""
    return join_market(base, quote, 1)


def convert_market(name: str) -> str:
    """v1 market name -> v3 market symbol: BTC-ETH -> ETH-BTC."""
    base, quote = split_market(name, 1)
    return join_market(base, quote, 3)


class MarketCache:
    """Market list fetched once and kept until a lookup misses.

    Market names passed in and returned are v1 names.
    """

    def __init__(self, client: ExchangeClient):
        self.client = client
        self._markets: Optional[List[Market]] = None

    def refresh(self) -> List[Market]:
        self._markets = self.client.get_markets()
        logger.debug(f"Markets refreshed | count={len(self._markets)}")
        return self._markets

    def all(self, cached: bool = True) -> List[Market]:
        if self._markets is None or not cached:
            self.refresh()
        return list(self._markets)

    def online(self, cached: bool = True) -> List[Market]:
        return [m for m in self.all(cached) if m.online]

    def find(self, name: str, cached: bool = True) -> Optional[Market]:
        for market in self.all(cached):
            if market.market_name == name:
                return market
        return None

    def parse(self, name: str) -> Tuple[str, str]:
        """(base, quote) of an online market, refreshing once on a miss.

        Raises:
            UnknownMarketError: If the market is still unknown after refresh
        """
        for cached in (True, False):
            for market in self.online(cached):
                if market.market_name == name:
                    return market.base, market.quote
            if cached:
                logger.info(f"Unknown market, refreshing market list | market={name}")
        raise UnknownMarketError(f"market {name} does not exist", code="MARKET_DOES_NOT_EXIST")

    def price_precision(self, name: str) -> int:
        market = self.find(name)
        if market is None:
            return DEFAULT_PRICE_PRECISION
        return market.precision

    def size_precision(self, name: str) -> int:
        return SIZE_PRECISION

    def min_trade_size(self, name: str) -> Decimal:
        """Minimum trade size from a fresh market list."""
        market = self.find(name, cached=False)
        if market is None:
            raise UnknownMarketError(f"market {name} does not exist", code="MARKET_DOES_NOT_EXIST")
        return market.min_trade_size

    def tweet_market(self, name: str) -> str:
        market = self.find(name)
        if market is None:
            return name
        return f"{market.base}/{market.quote}"

    # --- market data ---
    def ticker(self, name: str) -> Decimal:
        """Last trade rate of a v1 market."""
        return self.client.get_ticker(convert_market(name))

    def summary_24h(self, name: str) -> MarketSummary:
        summary = self.client.get_market_summary(convert_market(name))
        return MarketSummary(market=name, high=summary.high, low=summary.low, quote_volume=summary.quote_volume)

    def book(self, name: str, side: str) -> List[BookEntry]:
        """One side of the order book, `bids` or `asks`."""
        bids, asks = self.client.get_order_book(convert_market(name), 500)
        if side == "bids":
            return bids
        if side == "asks":
            return asks
        raise ValueError(f"non-exhaustive match: {side}")


def aggregate_book(entries: List[BookEntry], agg: Decimal, prec: int) -> List[BookEntry]:
    """Group book levels onto multiples of `agg` (rounded down), summing sizes.

    Keeps first-seen order of the aggregated price levels.
    """
    out: Dict[Decimal, Decimal] = {}
    for entry in entries:
        price = entry.price
        if agg > 0:
            price = (price / agg).to_integral_value(rounding=ROUND_FLOOR) * agg
        price = round_to(price, prec)
        out[price] = out.get(price, Decimal("0")) + entry.size
    return [BookEntry(price=p, size=s) for p, s in out.items()]
