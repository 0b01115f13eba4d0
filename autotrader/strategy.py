"""
Fill detection and the sell strategies that react to fills.

Every order id present in the fresh history poll but absent from the
previous one is a fill, reacted to exactly once:

    BUY filled  -> place a take-profit limit sell at price * mult
                   (standard) or a limit sell plus a stop at price * stop
                   (stop-loss, OCO pair)
    SELL filled -> notify; with stop-loss + DCA, a stop that fired (market
                   fill) is answered with a market buy of 2.2x its size

The history poll replaces the stored one even when a reaction fails, so a
failing fill is reported once and never retried on later cycles.
"""

import json
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional

from .composer import OrderComposer
from .exchange import ALL_MARKETS, ExchangeClient, SelfTradeError
from .logging_setup import logger
from .markets import MarketCache, format_market
from .models import Order, OrderSide, Orders, OrderType
from .notify import LEVEL_DEFAULT, Frequency, Kind, Notifier, SocialPoster, can_send, safe_post, safe_send
from .pricing import format_multiplier, max_sell_size, multiply, round_to
from .snapshots import SnapshotStore

DCA_MULTIPLIER = Decimal("2.2")


class Strategy(Enum):
    STANDARD = "standard"
    STOP_LOSS = "stop-loss"

    @classmethod
    def parse(cls, name: str) -> "Strategy":
        for strategy in cls:
            if strategy.value == name:
                return strategy
        raise ValueError(f"strategy not implemented: {name}")


class StrategyError(Exception):
    """Reacting to a fill failed. Carries the order for the error report."""

    def __init__(self, order: Order, cause: Exception):
        super().__init__(f"{cause}\t{json.dumps(order.to_dict())}")
        self.order = order
        self.cause = cause


class SelfTradeLimitExceeded(Exception):
    pass


def detect_fills(old: Orders, new: Orders) -> List[Order]:
    return [order for order in new if not old.has(order.id)]


class FillProcessor:
    """Reacts to newly filled orders according to the configured strategy."""

    def __init__(
        self,
        client: ExchangeClient,
        strategy: Strategy,
        *,
        markets: Optional[MarketCache] = None,
        composer: Optional[OrderComposer] = None,
        hold: Iterable[str] = (),
        dca: bool = False,
        max_self_trade_retries: Optional[int] = 50,
        service: Optional[Notifier] = None,
        poster: Optional[SocialPoster] = None,
    ):
        self.client = client
        self.strategy = strategy
        self.markets = markets or MarketCache(client)
        self.composer = composer or OrderComposer(client)
        self.hold = {market.upper() for market in hold}
        self.dca = dca
        self.max_self_trade_retries = max_self_trade_retries
        self.service = service
        self.poster = poster

    def process(self, store: SnapshotStore, mult: Decimal, stop: Decimal, level: int = LEVEL_DEFAULT) -> List[Order]:
        """Poll the order history and react to each new fill.

        Returns:
            The fills detected this cycle

        Raises:
            ExchangeError: If the history poll fails (stored history kept)
            StrategyError: If reacting to a fill fails (stored history replaced)
        """
        new = self.client.get_order_history(ALL_MARKETS)
        fills = detect_fills(store.history, new)
        try:
            for order in fills:
                try:
                    self.on_fill(order, mult, stop, level)
                except Exception as e:
                    raise StrategyError(order, e) from e
        finally:
            store.history = new
        return fills

    def on_fill(self, order: Order, mult: Decimal, stop: Decimal, level: int = LEVEL_DEFAULT) -> None:
        logger.info("[FILLED] " + json.dumps(order.to_dict()))

        side = order.side
        if side == OrderSide.UNRECOGNIZED:
            return

        stop_fired = (
            side == OrderSide.SELL
            and self.strategy == Strategy.STOP_LOSS
            and order.order_type == OrderType.MARKET
        )

        if can_send(level, Kind.FILLED):
            title = f"Bittrex - Done {side.title}"
            if side == OrderSide.SELL:
                title = f"{title} {format_multiplier(stop if stop_fired else mult)}"
            safe_send(self.service, order, title, Frequency.ALWAYS)
            safe_post(
                self.poster,
                f"Done {side.title}. {self.markets.tweet_market(order.market_name)} priced at {order.price} #Bittrex",
            )

        if side == OrderSide.SELL:
            if stop_fired and self.dca:
                self.buy_the_dip(order)
        elif side == OrderSide.BUY:
            self.place_take_profit(order, mult, stop)

    def place_take_profit(self, order: Order, mult: Decimal, stop: Decimal) -> None:
        name = order.market_name

        bought = order.price
        if bought == 0:
            bought = self.markets.ticker(name)

        base, quote = self.markets.parse(name)
        prec = self.markets.price_precision(name)
        qty = max_sell_size(
            order.fill_quantity,
            format_market(base, quote) in self.hold,
            mult,
            self.markets.size_precision(name),
        )
        if qty <= 0:
            logger.info(f"Nothing to sell | order_id={order.id} market={name}")
            return

        target = multiply(bought, mult, prec)
        if self.strategy == Strategy.STOP_LOSS:
            self.composer.place_oco(name, qty, target, multiply(bought, stop, prec))
        else:
            self.composer.place_order(OrderSide.SELL, name, qty, target, OrderType.LIMIT)

    def buy_the_dip(self, order: Order) -> None:
        """Market-buy 2.2x a fired stop's size, clearing own sells that block it.

        A SELF_TRADE rejection means the buy would match one of our own
        resting sells: the lowest-priced one is cancelled (with its stop),
        its quantity added to the buy, and the buy retried.
        """
        name = order.market_name
        prec = self.markets.size_precision(name)
        size = DCA_MULTIPLIER * order.fill_quantity
        attempts = 0
        while True:
            try:
                self.composer.place_order(OrderSide.BUY, name, round_to(size, prec), Decimal("0"), OrderType.MARKET)
                return
            except SelfTradeError:
                attempts += 1
                if self.max_self_trade_retries is not None and attempts > self.max_self_trade_retries:
                    raise SelfTradeLimitExceeded(
                        f"buy on {name} still self-trading after {attempts - 1} cancellations"
                    )
                sells = [o for o in self.client.get_open_orders(order.market_symbol) if o.side == OrderSide.SELL]
                if not sells:
                    raise
                sells.sort(key=lambda o: o.price)
                lowest = sells[0]
                logger.warning(
                    f"Self trade, cancelling lowest sell | market={name} order_id={lowest.id} price={lowest.price} qty={lowest.quantity}"
                )
                size += lowest.quantity
                self.composer.cancel_with_conditional(lowest)
