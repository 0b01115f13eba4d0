from decimal import Decimal

import pytest

from autotrader.exchange import ExchangeError, InMemoryExchange, SelfTradeError
from autotrader.models import Market, Order, Orders, OrderSide, OrderType
from autotrader.notify import LEVEL_DEFAULT, LEVEL_ERRORS
from autotrader.snapshots import SnapshotStore
from autotrader.strategy import (
    FillProcessor,
    SelfTradeLimitExceeded,
    Strategy,
    StrategyError,
    detect_fills,
)

MULT = Decimal("1.05")
STOP = Decimal("0.95")


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send_message(self, message, title, frequency=None):
        self.sent.append((title, message))


class RecordingPoster:
    def __init__(self):
        self.posts = []

    def post(self, text):
        self.posts.append(text)


def make_exchange():
    return InMemoryExchange(markets=[Market(symbol="ETH-BTC", base="ETH", quote="BTC", precision=2)])


def open_buy(exchange, oid="b1", qty="10", limit="100"):
    return exchange.add_open(Order(
        id=oid,
        market_symbol="ETH-BTC",
        direction="BUY",
        type="LIMIT",
        quantity=Decimal(qty),
        limit=Decimal(limit),
        status="OPEN",
    ))


def stop_fill(oid="s1", qty="5", proceeds="475"):
    """A conditional stop that fired: market sell, fully filled."""
    return Order(
        id=oid,
        market_symbol="ETH-BTC",
        direction="SELL",
        type="MARKET",
        quantity=Decimal(qty),
        fill_quantity=Decimal(qty),
        proceeds=Decimal(proceeds),
        status="CLOSED",
    )


def test_detect_fills_is_id_difference():
    old = Orders([Order(id="a"), Order(id="b")])
    new = Orders([Order(id="c"), Order(id="a"), Order(id="b")])

    assert [o.id for o in detect_fills(old, new)] == ["c"]
    assert detect_fills(new, new) == []


def test_strategy_parse():
    assert Strategy.parse("standard") == Strategy.STANDARD
    assert Strategy.parse("stop-loss") == Strategy.STOP_LOSS
    with pytest.raises(ValueError, match="strategy not implemented"):
        Strategy.parse("trailing")


def test_buy_fill_places_take_profit_sell():
    exchange = make_exchange()
    store = SnapshotStore(history=exchange.get_order_history())
    open_buy(exchange)
    exchange.fill("b1")
    processor = FillProcessor(exchange, Strategy.STANDARD)

    fills = processor.process(store, MULT, STOP)

    assert [o.id for o in fills] == ["b1"]
    symbol, side, kind, qty, limit, _ = exchange.calls_to("create_order")[0]
    assert (symbol, side, kind) == ("ETH-BTC", OrderSide.SELL, OrderType.LIMIT)
    assert qty == Decimal("10")
    assert str(limit) == "105.00"
    assert exchange.conditionals == []


def test_buy_fill_with_stop_loss_places_oco():
    exchange = make_exchange()
    store = SnapshotStore()
    open_buy(exchange)
    exchange.fill("b1")
    processor = FillProcessor(exchange, Strategy.STOP_LOSS)

    processor.process(store, MULT, STOP)

    sell = exchange.open_orders[0]
    assert sell.limit == Decimal("105.00")
    conditional = exchange.conditionals[0]
    assert str(conditional.trigger_price) == "95.00"
    assert conditional.order_to_cancel_id == sell.id
    assert conditional.order_to_create["type"] == "MARKET"


def test_fill_is_handled_once():
    exchange = make_exchange()
    store = SnapshotStore()
    open_buy(exchange)
    exchange.fill("b1")
    processor = FillProcessor(exchange, Strategy.STANDARD)

    processor.process(store, MULT, STOP)
    assert processor.process(store, MULT, STOP) == []

    assert len(exchange.calls_to("create_order")) == 1


def test_fill_notification_and_post():
    exchange = make_exchange()
    service = RecordingNotifier()
    poster = RecordingPoster()
    sold = Order(id="s1", market_symbol="ETH-BTC", direction="SELL", quantity=Decimal("10"), limit=Decimal("105.00"))
    exchange.history.append(sold)

    FillProcessor(exchange, Strategy.STANDARD, service=service, poster=poster).process(SnapshotStore(), MULT, STOP)

    assert service.sent == [("Bittrex - Done Sell +5%", sold)]
    assert poster.posts == ["Done Sell. ETH/BTC priced at 105.00 #Bittrex"]


def test_stop_fill_notification_uses_stop_multiplier():
    exchange = make_exchange()
    service = RecordingNotifier()
    exchange.history.append(stop_fill())

    FillProcessor(exchange, Strategy.STOP_LOSS, service=service).process(SnapshotStore(), MULT, STOP)

    assert service.sent[0][0] == "Bittrex - Done Sell -5%"
    # no DCA configured, so nothing is bought back
    assert exchange.calls_to("create_order") == []


def test_fill_notification_respects_level():
    exchange = make_exchange()
    service = RecordingNotifier()
    exchange.history.append(stop_fill())

    FillProcessor(exchange, Strategy.STANDARD, service=service).process(SnapshotStore(), MULT, STOP, LEVEL_ERRORS)

    assert service.sent == []


def test_hold_market_keeps_reserve():
    exchange = make_exchange()
    open_buy(exchange, qty="10.5")
    exchange.fill("b1")
    processor = FillProcessor(exchange, Strategy.STANDARD, hold=["BTC-ETH"])

    processor.process(SnapshotStore(), MULT, STOP)

    assert exchange.calls_to("create_order")[0][3] == Decimal("10")


def test_market_buy_without_price_uses_ticker():
    exchange = make_exchange()
    exchange.tickers["ETH-BTC"] = Decimal("50")
    exchange.history.append(Order(
        id="mb", market_symbol="ETH-BTC", direction="BUY", type="MARKET",
        quantity=Decimal("2"), fill_quantity=Decimal("2"), proceeds=Decimal("0"),
    ))

    FillProcessor(exchange, Strategy.STANDARD).process(SnapshotStore(), MULT, STOP)

    assert str(exchange.calls_to("create_order")[0][4]) == "52.50"


def test_unrecognized_fill_places_nothing():
    exchange = make_exchange()
    exchange.history.append(Order(id="x", market_symbol="ETH-BTC", direction="???"))

    fills = FillProcessor(exchange, Strategy.STANDARD).process(SnapshotStore(), MULT, STOP)

    assert len(fills) == 1
    assert exchange.calls_to("create_order") == []


def test_stop_fill_with_dca_buys_the_dip():
    exchange = make_exchange()
    exchange.history.append(stop_fill(qty="5"))

    FillProcessor(exchange, Strategy.STOP_LOSS, dca=True).process(SnapshotStore(), MULT, STOP, LEVEL_DEFAULT)

    symbol, side, kind, qty, limit, _ = exchange.calls_to("create_order")[0]
    assert (side, kind) == (OrderSide.BUY, OrderType.MARKET)
    assert qty == Decimal("11")
    assert limit == Decimal("0")


def test_dca_cancels_lowest_own_sell_on_self_trade():
    exchange = make_exchange()
    exchange.add_open(Order(id="high", market_symbol="ETH-BTC", direction="SELL", quantity=Decimal("7"), limit=Decimal("120")))
    exchange.add_open(Order(id="low", market_symbol="ETH-BTC", direction="SELL", quantity=Decimal("3"), limit=Decimal("99")))
    exchange.add_open(Order(id="bid", market_symbol="ETH-BTC", direction="BUY", quantity=Decimal("1"), limit=Decimal("90")))
    exchange.fail_next("create_order", SelfTradeError("would self trade", code="SELF_TRADE"))
    processor = FillProcessor(exchange, Strategy.STOP_LOSS, dca=True)

    processor.buy_the_dip(stop_fill(qty="5"))

    sizes = [args[3] for args in exchange.calls_to("create_order")]
    assert sizes == [Decimal("11"), Decimal("14")]
    assert exchange.calls_to("cancel_order") == [("low",)]
    assert exchange.open_orders.has("high")


def test_dca_self_trade_without_sells_reraises():
    exchange = make_exchange()
    exchange.fail_next("create_order", SelfTradeError("would self trade", code="SELF_TRADE"))
    processor = FillProcessor(exchange, Strategy.STOP_LOSS, dca=True)

    with pytest.raises(SelfTradeError):
        processor.buy_the_dip(stop_fill())


def test_dca_self_trade_retries_are_bounded():
    exchange = make_exchange()
    for oid in ("a", "b", "c"):
        exchange.add_open(Order(id=oid, market_symbol="ETH-BTC", direction="SELL", quantity=Decimal("1"), limit=Decimal("100")))
    for _ in range(3):
        exchange.fail_next("create_order", SelfTradeError("would self trade", code="SELF_TRADE"))
    processor = FillProcessor(exchange, Strategy.STOP_LOSS, dca=True, max_self_trade_retries=2)

    with pytest.raises(SelfTradeLimitExceeded):
        processor.buy_the_dip(stop_fill())

    assert len(exchange.calls_to("cancel_order")) == 2


def test_failed_reaction_still_consumes_history():
    exchange = make_exchange()
    store = SnapshotStore()
    open_buy(exchange)
    exchange.fill("b1")
    exchange.fail_next("create_order", ExchangeError("insufficient funds", code="INSUFFICIENT_FUNDS"))
    processor = FillProcessor(exchange, Strategy.STANDARD)

    with pytest.raises(StrategyError) as exc_info:
        processor.process(store, MULT, STOP)

    assert exc_info.value.order.id == "b1"
    assert store.history.has("b1")
    assert processor.process(store, MULT, STOP) == []


def test_history_poll_failure_keeps_previous_snapshot():
    exchange = make_exchange()
    store = SnapshotStore(history=Orders([Order(id="old")]))
    exchange.fail_next("get_order_history", ExchangeError("timeout"))

    with pytest.raises(ExchangeError):
        FillProcessor(exchange, Strategy.STANDARD).process(store, MULT, STOP)

    assert [o.id for o in store.history] == ["old"]


def test_unknown_market_fill_is_reported_as_strategy_error():
    exchange = InMemoryExchange(markets=[])
    exchange.history.append(Order(id="b9", market_symbol="NEW-BTC", direction="BUY", quantity=Decimal("1"), limit=Decimal("1")))

    with pytest.raises(StrategyError, match="does not exist"):
        FillProcessor(exchange, Strategy.STANDARD).process(SnapshotStore(), MULT, STOP)


def test_hold_markets_match_regardless_of_case():
    exchange = make_exchange()
    open_buy(exchange, qty="10.5")
    exchange.fill("b1")
    processor = FillProcessor(exchange, Strategy.STANDARD, hold=["btc-eth"])

    processor.process(SnapshotStore(), MULT, STOP)

    assert exchange.calls_to("create_order")[0][3] == Decimal("10")
