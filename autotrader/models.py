"""
Order, market and ladder types shared by the trading engine.

All prices and quantities are Decimal. Orders are compared by exchange id
only: two polls of the same order are the same order regardless of field
changes, and life-cycle events are derived from presence/absence across
polls.

Market names come in two encodings:
    v1 ("name"):   QUOTE-BASE, e.g. BTC-ETH
    v3 ("symbol"): BASE-QUOTE, e.g. ETH-BTC

Examples:
    >>> order = Order.from_dict({"id": "o1", "marketSymbol": "ETH-BTC", "direction": "BUY"})
    >>> order.side
    <OrderSide.BUY: 'BUY'>
    >>> order.market_name
    'BTC-ETH'
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

TIME_FORMATS = ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: str) -> datetime:
    """Parse a Bittrex timestamp (UTC, trailing Z) into an aware datetime.

    Raises:
        ValueError: If the string matches none of the exchange formats
    """
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            continue
    raise ValueError(f"cannot parse time {value!r}")


def format_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-4] + "Z"


def _dec(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


class OrderSide(Enum):
    """Order side. Unknown directions map to UNRECOGNIZED, never to BUY/SELL."""

    BUY = "BUY"
    SELL = "SELL"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def parse(cls, direction: Optional[str]) -> "OrderSide":
        if direction == cls.BUY.value:
            return cls.BUY
        if direction == cls.SELL.value:
            return cls.SELL
        return cls.UNRECOGNIZED

    @property
    def title(self) -> str:
        return self.value.capitalize()


class OrderType(Enum):
    LIMIT = "LIMIT"
    MARKET = "MARKET"


class TimeInForce(Enum):
    GTC = "GOOD_TIL_CANCELLED"
    IOC = "IMMEDIATE_OR_CANCEL"


def split_market(market: str, version: int) -> tuple:
    """Split a market into (base, quote) according to its encoding version."""
    symbols = market.split("-")
    if len(symbols) > 1:
        if version >= 3:
            return symbols[0], symbols[1]
        return symbols[1], symbols[0]
    raise ValueError(f"cannot parse market {market}")


def join_market(base: str, quote: str, version: int) -> str:
    if version >= 3:
        return f"{base}-{quote}".upper()
    return f"{quote}-{base}".upper()


@dataclass(frozen=True)
class Order:
    """A single exchange order as returned by one poll.

    Attributes:
        id: Exchange-assigned order id (identity)
        market_symbol: v3 market symbol (BASE-QUOTE)
        direction: Raw direction string from the exchange
        type: Raw order type string (LIMIT / MARKET)
        quantity: Ordered quantity
        limit: Limit price (0 for market orders)
        fill_quantity: Quantity filled so far
        proceeds: Quote amount exchanged by the fills
    """

    id: str
    market_symbol: str = ""
    direction: str = ""
    type: str = OrderType.LIMIT.value
    quantity: Decimal = Decimal("0")
    limit: Decimal = Decimal("0")
    time_in_force: str = ""
    fill_quantity: Decimal = Decimal("0")
    proceeds: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")
    status: str = ""
    created_at: str = ""
    updated_at: str = ""
    closed_at: str = ""

    @property
    def side(self) -> OrderSide:
        return OrderSide.parse(self.direction)

    @property
    def order_type(self) -> OrderType:
        if self.type == OrderType.MARKET.value:
            return OrderType.MARKET
        return OrderType.LIMIT

    @property
    def price(self) -> Decimal:
        """Limit price, or the average fill price for market orders."""
        if self.limit > 0:
            return self.limit
        if self.fill_quantity > 0:
            return self.proceeds / self.fill_quantity
        return Decimal("0")

    @property
    def market_name(self) -> str:
        base, quote = split_market(self.market_symbol, 3)
        return join_market(base, quote, 1)

    def opened_at(self) -> datetime:
        return parse_time(self.created_at)

    def closed_at_time(self) -> datetime:
        return parse_time(self.closed_at)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Order":
        return cls(
            id=d["id"],
            market_symbol=d.get("marketSymbol", ""),
            direction=d.get("direction", ""),
            type=d.get("type", OrderType.LIMIT.value),
            quantity=_dec(d.get("quantity")),
            limit=_dec(d.get("limit")),
            time_in_force=d.get("timeInForce", ""),
            fill_quantity=_dec(d.get("fillQuantity")),
            proceeds=_dec(d.get("proceeds")),
            commission=_dec(d.get("commission")),
            status=d.get("status", ""),
            created_at=d.get("createdAt", ""),
            updated_at=d.get("updatedAt", ""),
            closed_at=d.get("closedAt", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "marketSymbol": self.market_symbol,
            "direction": self.direction,
            "type": self.type,
            "quantity": str(self.quantity),
            "limit": str(self.limit),
            "timeInForce": self.time_in_force,
            "fillQuantity": str(self.fill_quantity),
            "proceeds": str(self.proceeds),
            "commission": str(self.commission),
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "closedAt": self.closed_at,
        }


class Orders(list):
    """One poll's worth of orders, in exchange order."""

    def index_by_id(self, order_id: str) -> int:
        for i, order in enumerate(self):
            if order.id == order_id:
                return i
        return -1

    def index_by_id_and_side(self, order_id: str, side: OrderSide) -> int:
        for i, order in enumerate(self):
            if order.id == order_id and order.side == side:
                return i
        return -1

    def has(self, order_id: str) -> bool:
        return self.index_by_id(order_id) > -1


@dataclass(frozen=True)
class ConditionalOrder:
    """Server-side trigger order, optionally cancelling a parent order when it fires."""

    id: str
    market_symbol: str
    operand: str
    trigger_price: Decimal
    order_to_create: Dict[str, Any] = field(default_factory=dict)
    order_to_cancel_id: Optional[str] = None
    status: str = "OPEN"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ConditionalOrder":
        to_cancel = d.get("orderToCancel") or {}
        return cls(
            id=d["id"],
            market_symbol=d.get("marketSymbol", ""),
            operand=d.get("operand", ""),
            trigger_price=_dec(d.get("triggerPrice")),
            order_to_create=d.get("orderToCreate") or {},
            order_to_cancel_id=to_cancel.get("id"),
            status=d.get("status", "OPEN"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "id": self.id,
            "marketSymbol": self.market_symbol,
            "operand": self.operand,
            "triggerPrice": str(self.trigger_price),
            "orderToCreate": self.order_to_create,
            "status": self.status,
        }
        if self.order_to_cancel_id:
            out["orderToCancel"] = {"type": "ORDER", "id": self.order_to_cancel_id}
        return out


@dataclass(frozen=True)
class Market:
    symbol: str
    base: str
    quote: str
    status: str = "ONLINE"
    min_trade_size: Decimal = Decimal("0")
    precision: int = 8

    @property
    def online(self) -> bool:
        return self.status == "ONLINE"

    @property
    def market_name(self) -> str:
        return join_market(self.base, self.quote, 1)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Market":
        return cls(
            symbol=d["symbol"],
            base=d.get("baseCurrencySymbol", ""),
            quote=d.get("quoteCurrencySymbol", ""),
            status=d.get("status", "ONLINE"),
            min_trade_size=_dec(d.get("minTradeSize")),
            precision=int(d.get("precision", 8)),
        )


@dataclass(frozen=True)
class MarketSummary:
    market: str
    high: Decimal
    low: Decimal
    quote_volume: Decimal


@dataclass(frozen=True)
class BookEntry:
    price: Decimal
    size: Decimal


@dataclass
class BuyCall:
    """One target price level of a buy ladder."""

    price: Decimal
    skip: bool = False


class BuyCalls(list):
    def index_by_price(self, price: Decimal) -> int:
        for i, call in enumerate(self):
            if call.price == price:
                return i
        return -1

    @classmethod
    def from_prices(cls, prices: Iterable[Decimal]) -> "BuyCalls":
        return cls(BuyCall(price=Decimal(str(p))) for p in prices)


def is_leveraged_token(name: str) -> bool:
    upper = name.upper()
    return len(name) > 4 and (upper.endswith("BEAR") or upper.endswith("BULL"))


def orders_from(items: Optional[List[Dict[str, Any]]]) -> Orders:
    return Orders(Order.from_dict(item) for item in (items or []))
