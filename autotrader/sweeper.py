"""Stale-order sweeper: cancel and re-open orders before the exchange purges them.

Bittrex removes orders older than 28 days. Once per interval, every open
order at least `reopen_after_days` old is cancelled (with the stop
referencing it) and placed again at the same side, price and quantity.
"""
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from .composer import OrderComposer
from .logging_setup import logger
from .models import Order, OrderSide, OrderType, Orders
from .notify import LEVEL_DEFAULT, Frequency, Kind, Notifier, can_send, report_error, safe_send

REOPEN_AFTER_DAYS = 21


class StaleOrderSweeper:
    def __init__(
        self,
        composer: OrderComposer,
        *,
        reopen_after_days: int = REOPEN_AFTER_DAYS,
        interval_minutes: int = 60,
        service: Optional[Notifier] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.composer = composer
        self.reopen_after = timedelta(days=reopen_after_days)
        self.interval = interval_minutes * 60
        self.service = service
        self.clock = clock
        self.now = now
        self.last_sweep = clock()

    def due(self) -> bool:
        return self.clock() - self.last_sweep > self.interval

    def sweep_if_due(self, open_orders: Orders, level: int = LEVEL_DEFAULT) -> List[Order]:
        if not self.due():
            return []
        reopened = self.sweep(open_orders, level)
        self.last_sweep = self.clock()
        return reopened

    def sweep(self, open_orders: Orders, level: int = LEVEL_DEFAULT) -> List[Order]:
        """Reopen every stale order; failures are reported and skipped.

        Returns:
            The stale orders that were cancelled and placed again
        """
        reopened = []
        for order in open_orders:
            side = order.side
            if side == OrderSide.UNRECOGNIZED:
                continue
            try:
                opened_at = order.opened_at()
            except ValueError as e:
                report_error(f"{e}\t{order.id}", level, self.service)
                continue
            if self.now() - opened_at < self.reopen_after:
                continue
            try:
                self.reopen(order, side, level)
            except Exception as e:
                report_error(f"Reopen failed | order_id={order.id} error={e}", level, self.service)
                continue
            reopened.append(order)
        return reopened

    def reopen(self, order: Order, side: OrderSide, level: int) -> None:
        msg = (
            f"Cancelling (and reopening) limit {side.value.lower()} {order.id} "
            f"(market: {order.market_name}, price: {order.price}, qty: {order.quantity}, opened at {order.created_at}) "
            f"because it is older than {self.reopen_after.days} days."
        )
        logger.info(msg)
        if can_send(level, Kind.INFO):
            safe_send(self.service, msg, "Bittrex - INFO", Frequency.ALWAYS)

        trigger_price = self.composer.cancel_with_conditional(order)
        if trigger_price > 0:
            self.composer.place_oco(order.market_name, order.quantity, order.price, trigger_price)
        else:
            self.composer.place_order(side, order.market_name, order.quantity, order.price, OrderType.LIMIT)
