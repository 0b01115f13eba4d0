"""
Exchange capability used by the trading engine.

ExchangeClient is the narrow interface the engine needs (orders,
conditional orders, market metadata). BittrexAdapter satisfies it over
HTTP; InMemoryExchange satisfies it for tests and dry runs.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from .models import (
    BookEntry,
    ConditionalOrder,
    Market,
    MarketSummary,
    Order,
    OrderSide,
    Orders,
    OrderType,
    TimeInForce,
    format_time,
)

ALL_MARKETS = "all"


class ExchangeError(Exception):
    """Transport or exchange-reported failure.

    Attributes:
        code: Exchange error code (e.g. SELF_TRADE), if any
        path: Request path the failure belongs to, if known
    """

    def __init__(self, message: str, code: Optional[str] = None, path: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.path = path

    @staticmethod
    def from_code(code: Optional[str], message: str, path: Optional[str] = None) -> "ExchangeError":
        cls = ERROR_CODES.get(code or "", ExchangeError)
        return cls(message, code=code, path=path)


class RateLimitError(ExchangeError):
    """The exchange rejected the call for exceeding its rate limit."""


class SelfTradeError(ExchangeError):
    """The order would have traded against the account's own resting order."""


class MinTradeSizeError(ExchangeError):
    """The order is below the market's minimum trade size."""


class UnknownMarketError(ExchangeError):
    pass


class OrderAlreadyClosedError(ExchangeError):
    """The order a conditional order should cancel is no longer open."""


ERROR_CODES: Dict[str, type] = {
    "TOO_MANY_REQUESTS": RateLimitError,
    "SELF_TRADE": SelfTradeError,
    "MIN_TRADE_REQUIREMENT_NOT_MET": MinTradeSizeError,
    "MARKET_DOES_NOT_EXIST": UnknownMarketError,
    "INVALID_CANCEL_ORDER": OrderAlreadyClosedError,
}


class ExchangeClient(Protocol):
    """Operations the engine performs against an exchange.

    Market symbols are v3 symbols (BASE-QUOTE). Any object exposing these
    methods satisfies the protocol.
    """

    def get_markets(self) -> List[Market]: ...

    def get_ticker(self, symbol: str) -> Decimal: ...

    def get_market_summary(self, symbol: str) -> MarketSummary: ...

    def get_order_book(self, symbol: str, depth: int = 500) -> Tuple[List[BookEntry], List[BookEntry]]: ...

    def create_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Decimal,
        limit: Decimal,
        time_in_force: TimeInForce,
    ) -> Order: ...

    def cancel_order(self, order_id: str) -> None: ...

    def get_open_orders(self, symbol: str = ALL_MARKETS) -> Orders: ...

    def get_order_history(self, symbol: str = ALL_MARKETS) -> Orders: ...

    def create_conditional_order(
        self,
        symbol: str,
        operand: str,
        trigger_price: Decimal,
        order_to_create: dict,
        order_to_cancel_id: Optional[str] = None,
    ) -> ConditionalOrder: ...

    def cancel_conditional_order(self, conditional_id: str) -> None: ...

    def get_open_conditional_orders(self, symbol: str) -> List[ConditionalOrder]: ...


class InMemoryExchange:
    """A simple exchange double used for tests that records calls and lets tests drive state.

    Limit orders rest in `open_orders` until a test fills or cancels them;
    market orders fill immediately at the ticker price. Errors queued with
    `fail_next()` are raised by the next call of that method.
    """

    def __init__(self, markets: Optional[List[Market]] = None, now: Optional[Callable[[], datetime]] = None):
        self.markets: List[Market] = list(markets or [])
        self.tickers: Dict[str, Decimal] = {}
        self.summaries: Dict[str, MarketSummary] = {}
        self.books: Dict[str, Tuple[List[BookEntry], List[BookEntry]]] = {}
        self.open_orders: Orders = Orders()
        self.history: Orders = Orders()
        self.conditionals: List[ConditionalOrder] = []
        self.calls: List[Tuple[str, tuple]] = []
        self._errors: Dict[str, List[Exception]] = {}
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.next_id = 1

    def _gen_id(self) -> str:
        oid = f"m{self.next_id}"
        self.next_id += 1
        return oid

    def _enter(self, method: str, *args) -> None:
        self.calls.append((method, args))
        queued = self._errors.get(method)
        if queued:
            raise queued.pop(0)

    def fail_next(self, method: str, error: Exception) -> None:
        self._errors.setdefault(method, []).append(error)

    def calls_to(self, method: str) -> List[tuple]:
        return [args for name, args in self.calls if name == method]

    # --- test drivers ---
    def add_open(self, order: Order) -> Order:
        self.open_orders.append(order)
        return order

    def fill(self, order_id: str) -> Order:
        """Move an open order to history as fully filled at its limit price."""
        idx = self.open_orders.index_by_id(order_id)
        order = self.open_orders.pop(idx)
        filled = Order.from_dict({
            **order.to_dict(),
            "fillQuantity": str(order.quantity),
            "proceeds": str(order.quantity * order.limit),
            "status": "CLOSED",
            "closedAt": format_time(self._now()),
        })
        self.history.insert(0, filled)
        return filled

    # --- ExchangeClient ---
    def get_markets(self) -> List[Market]:
        self._enter("get_markets")
        return list(self.markets)

    def get_ticker(self, symbol: str) -> Decimal:
        self._enter("get_ticker", symbol)
        return self.tickers.get(symbol, Decimal("0"))

    def get_market_summary(self, symbol: str) -> MarketSummary:
        self._enter("get_market_summary", symbol)
        return self.summaries[symbol]

    def get_order_book(self, symbol: str, depth: int = 500) -> Tuple[List[BookEntry], List[BookEntry]]:
        self._enter("get_order_book", symbol, depth)
        return self.books.get(symbol, ([], []))

    def create_order(self, symbol, side, order_type, quantity, limit, time_in_force) -> Order:
        self._enter("create_order", symbol, side, order_type, quantity, limit, time_in_force)
        order = Order(
            id=self._gen_id(),
            market_symbol=symbol,
            direction=side.value,
            type=order_type.value,
            quantity=quantity,
            limit=limit,
            time_in_force=time_in_force.value,
            status="OPEN",
            created_at=format_time(self._now()),
        )
        if order_type == OrderType.MARKET:
            price = self.tickers.get(symbol, Decimal("0"))
            order = Order.from_dict({
                **order.to_dict(),
                "fillQuantity": str(quantity),
                "proceeds": str(quantity * price),
                "status": "CLOSED",
                "closedAt": order.created_at,
            })
            self.history.insert(0, order)
        else:
            self.open_orders.append(order)
        return order

    def cancel_order(self, order_id: str) -> None:
        self._enter("cancel_order", order_id)
        idx = self.open_orders.index_by_id(order_id)
        if idx == -1:
            raise ExchangeError(f"order {order_id} not found", code="ORDER_NOT_OPEN")
        self.open_orders.pop(idx)

    def get_open_orders(self, symbol: str = ALL_MARKETS) -> Orders:
        self._enter("get_open_orders", symbol)
        return Orders(o for o in self.open_orders if symbol == ALL_MARKETS or o.market_symbol == symbol)

    def get_order_history(self, symbol: str = ALL_MARKETS) -> Orders:
        self._enter("get_order_history", symbol)
        return Orders(o for o in self.history if symbol == ALL_MARKETS or o.market_symbol == symbol)

    def create_conditional_order(self, symbol, operand, trigger_price, order_to_create, order_to_cancel_id=None) -> ConditionalOrder:
        self._enter("create_conditional_order", symbol, operand, trigger_price, order_to_create, order_to_cancel_id)
        if order_to_cancel_id and not self.open_orders.has(order_to_cancel_id):
            raise OrderAlreadyClosedError(
                f"order {order_to_cancel_id} is not open", code="INVALID_CANCEL_ORDER"
            )
        conditional = ConditionalOrder(
            id=self._gen_id(),
            market_symbol=symbol,
            operand=operand,
            trigger_price=trigger_price,
            order_to_create=order_to_create,
            order_to_cancel_id=order_to_cancel_id,
        )
        self.conditionals.append(conditional)
        return conditional

    def cancel_conditional_order(self, conditional_id: str) -> None:
        self._enter("cancel_conditional_order", conditional_id)
        self.conditionals = [c for c in self.conditionals if c.id != conditional_id]

    def get_open_conditional_orders(self, symbol: str) -> List[ConditionalOrder]:
        self._enter("get_open_conditional_orders", symbol)
        return [c for c in self.conditionals if c.market_symbol == symbol]
