"""
Open-order listener: diffs successive open-order polls.

An order that disappears from the open orders was either filled or
cancelled. Fills are recognised by the history poll (which the loop runs
first), so an order gone from the open list and absent from history is
classified as cancelled. An order that appears in the open list is newly
opened.
"""
import json
from dataclasses import dataclass, field
from typing import List, Optional

from .exchange import ALL_MARKETS, ExchangeClient
from .logging_setup import logger
from .models import Order, OrderSide, Orders
from .notify import LEVEL_DEFAULT, LEVEL_VERBOSE, Frequency, Kind, Notifier, can_send, safe_send


@dataclass
class OpenOrderChanges:
    cancelled: List[Order] = field(default_factory=list)
    opened: List[Order] = field(default_factory=list)


def diff_open_orders(
    old: Orders,
    new: Orders,
    history: Orders,
    service: Optional[Notifier] = None,
    level: int = LEVEL_DEFAULT,
) -> OpenOrderChanges:
    """Classify cancelled and newly opened orders and notify about them."""
    changes = OpenOrderChanges()

    for order in old:
        if new.has(order.id) or history.has(order.id):
            continue
        changes.cancelled.append(order)
        logger.info("[CANCELLED] " + json.dumps(order.to_dict()))
        side = order.side
        if side != OrderSide.UNRECOGNIZED and can_send(level, Kind.CANCELLED):
            safe_send(service, order, f"Bittrex - Done {side.title} (Reason: Cancelled)", Frequency.ALWAYS)

    for order in new:
        if old.has(order.id):
            continue
        changes.opened.append(order)
        logger.info("[OPEN] " + json.dumps(order.to_dict()))
        side = order.side
        if side == OrderSide.UNRECOGNIZED:
            continue
        # the exchange sometimes re-announces an already-sold order as open
        already_sold = side == OrderSide.SELL and history.index_by_id_and_side(order.id, OrderSide.SELL) > -1
        if already_sold and level < LEVEL_VERBOSE:
            continue
        if can_send(level, Kind.OPENED) or (level == LEVEL_DEFAULT and side == OrderSide.SELL):
            safe_send(service, order, f"Bittrex - Open {side.title}", Frequency.ALWAYS)

    return changes


def listen(
    client: ExchangeClient,
    old: Orders,
    history: Orders,
    service: Optional[Notifier] = None,
    level: int = LEVEL_DEFAULT,
) -> Orders:
    """Poll open orders, report changes against `old`, return the new poll.

    Raises:
        ExchangeError: If the poll fails; the caller keeps `old`
    """
    new = client.get_open_orders(ALL_MARKETS)
    diff_open_orders(old, new, history, service, level)
    return new
