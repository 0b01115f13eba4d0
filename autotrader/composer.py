"""
Order composer: turns (side, type, size, price) into exchange requests.

Market orders go out immediate-or-cancel, limit orders good-til-cancelled.
Callers speak v1 market names (QUOTE-BASE); the composer converts to the
v3 symbols (BASE-QUOTE) the order endpoints expect.

An OCO pair is two dependent calls: the protective limit sell, then a
conditional market sell that fires at the stop price and cancels the limit
sell. If the limit sell fills before the conditional can reference it the
exchange answers INVALID_CANCEL_ORDER; that case is logged and the pair is
simply left without a stop. Any other conditional failure propagates and
leaves the limit sell live on its own.
"""

from decimal import Decimal
from typing import Optional

from .exchange import ExchangeClient, OrderAlreadyClosedError
from .logging_setup import logger
from .markets import convert_market
from .models import ConditionalOrder, Order, OrderSide, OrderType, TimeInForce

STOP_OPERAND = "LTE"


def time_in_force_for(kind: OrderType) -> TimeInForce:
    if kind == OrderType.MARKET:
        return TimeInForce.IOC
    return TimeInForce.GTC


class OrderComposer:
    def __init__(self, client: ExchangeClient):
        self.client = client

    def place_order(self, side: OrderSide, market: str, size: Decimal, price: Decimal, kind: OrderType) -> Order:
        """Place a single order on a v1 market.

        Raises:
            ValueError: If side is UNRECOGNIZED
            ExchangeError: On any exchange rejection
        """
        if side == OrderSide.UNRECOGNIZED:
            raise ValueError("cannot place an order without a side")
        symbol = convert_market(market)
        limit = Decimal("0") if kind == OrderType.MARKET else price
        order = self.client.create_order(symbol, side, kind, size, limit, time_in_force_for(kind))
        logger.info(
            f"Order placed | id={order.id} market={market} side={side.value} type={kind.value} size={size} price={limit}"
        )
        return order

    def place_oco(self, market: str, size: Decimal, price: Decimal, stop: Decimal) -> Optional[ConditionalOrder]:
        """Limit sell at `price` protected by a market sell triggered at `stop`.

        Returns:
            The conditional order, or None if the limit sell filled first
        """
        order = self.place_order(OrderSide.SELL, market, size, price, OrderType.LIMIT)
        symbol = convert_market(market)
        payload = {
            "marketSymbol": symbol,
            "direction": OrderSide.SELL.value,
            "type": OrderType.MARKET.value,
            "quantity": str(size),
            "timeInForce": TimeInForce.IOC.value,
        }
        try:
            conditional = self.client.create_conditional_order(symbol, STOP_OPERAND, stop, payload, order.id)
        except OrderAlreadyClosedError as e:
            logger.error(f"Stop not attached, limit sell already closed | order_id={order.id} error={e}")
            return None
        logger.info(f"Stop attached | order_id={order.id} conditional_id={conditional.id} stop={stop}")
        return conditional

    def cancel_with_conditional(self, order: Order) -> Decimal:
        """Cancel `order` and any conditional order referencing it.

        Returns:
            Trigger price of the referencing conditional order, 0 if none
        """
        trigger_price = Decimal("0")
        for conditional in self.client.get_open_conditional_orders(order.market_symbol):
            if conditional.order_to_cancel_id == order.id:
                trigger_price = conditional.trigger_price
                self.client.cancel_conditional_order(conditional.id)
                logger.info(f"Conditional cancelled | id={conditional.id} parent={order.id}")
        self.client.cancel_order(order.id)
        logger.info(f"Order cancelled | id={order.id} market={order.market_symbol}")
        return trigger_price

    def cancel_side(self, market: str, side: OrderSide) -> int:
        """Cancel every open order of `side` on a v1 market; returns how many."""
        count = 0
        for order in self.client.get_open_orders(convert_market(market)):
            if order.side == side:
                self.client.cancel_order(order.id)
                count += 1
        return count
