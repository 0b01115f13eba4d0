"""Buy ladder: keep a set of limit buy levels open on one market."""
from decimal import Decimal
from typing import List, Optional

from .composer import OrderComposer
from .exchange import ExchangeClient, MinTradeSizeError
from .logging_setup import logger
from .markets import MarketCache, convert_market
from .models import BuyCall, BuyCalls, Order, OrderSide, OrderType
from .pricing import multiply


class BuyLadder:
    def __init__(self, client: ExchangeClient, markets: Optional[MarketCache] = None, composer: Optional[OrderComposer] = None):
        self.client = client
        self.markets = markets or MarketCache(client)
        self.composer = composer or OrderComposer(client)

    def cancel_stale_buys(self, market: str, calls: BuyCalls, size: Decimal) -> int:
        """Cancel open buys that no level asks for; mark matching levels as skip.

        A level whose price and size are already resting on the book keeps
        that order and is not placed again.
        """
        for call in calls:
            call.skip = False
        cancelled = 0
        for order in self.client.get_open_orders(convert_market(market)):
            if order.side != OrderSide.BUY:
                continue
            index = calls.index_by_price(order.price)
            if index > -1 and order.quantity == size:
                calls[index].skip = True
                continue
            self.client.cancel_order(order.id)
            cancelled += 1
        return cancelled

    def place(
        self,
        market: str,
        calls: BuyCalls,
        size: Decimal,
        *,
        cancel: bool = True,
        deviation: Decimal = Decimal("1"),
        kind: OrderType = OrderType.LIMIT,
    ) -> List[Order]:
        """Place every level not marked skip; returns the orders placed.

        On a minimum-trade-size rejection the batch is retried once with the
        market's minimum trade size. With `cancel` the retry starts over
        (orders placed at the rejected size are cancelled as stale); without
        it, levels already placed are kept and only the rest are retried.
        """
        placed: List[Order] = []
        done: List[BuyCall] = []
        try:
            self._place(market, calls, size, cancel, deviation, kind, placed, done)
            return placed
        except MinTradeSizeError:
            min_size = self.markets.min_trade_size(market)
            if min_size == size:
                raise
            logger.warning(f"Below minimum trade size, retrying | market={market} size={size} min={min_size}")
        if cancel:
            retry, placed = calls, []
        else:
            retry = BuyCalls(call for call in calls if not any(call is d for d in done))
        self._place(market, retry, min_size, cancel, deviation, kind, placed, [])
        return placed

    def _place(self, market, calls, size, cancel, deviation, kind, placed, done) -> None:
        if cancel:
            self.cancel_stale_buys(market, calls, size)
        prec = self.markets.price_precision(market) if deviation != 1 else None
        for call in calls:
            if call.skip:
                continue
            limit = call.price
            if deviation != 1:
                limit = multiply(call.price, deviation, prec)
            placed.append(self.composer.place_order(OrderSide.BUY, market, size, limit, kind))
            done.append(call)
