import pytest

from autotrader.exchange import ExchangeError, InMemoryExchange
from autotrader.listener import diff_open_orders, listen
from autotrader.models import Order, Orders
from autotrader.notify import LEVEL_DEFAULT, LEVEL_ERRORS, LEVEL_VERBOSE


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send_message(self, message, title, frequency=None):
        self.sent.append((title, message))

    @property
    def titles(self):
        return [title for title, _ in self.sent]


def buy(oid):
    return Order(id=oid, market_symbol="ETH-BTC", direction="BUY")


def sell(oid):
    return Order(id=oid, market_symbol="ETH-BTC", direction="SELL")


def test_order_gone_and_not_filled_is_cancelled():
    service = RecordingNotifier()

    changes = diff_open_orders(Orders([buy("a")]), Orders(), Orders(), service, LEVEL_VERBOSE)

    assert [o.id for o in changes.cancelled] == ["a"]
    assert service.titles == ["Bittrex - Done Buy (Reason: Cancelled)"]


def test_filled_order_is_not_cancelled():
    changes = diff_open_orders(Orders([buy("a")]), Orders(), Orders([buy("a")]))

    assert changes.cancelled == []


def test_cancel_notification_needs_verbose():
    service = RecordingNotifier()

    changes = diff_open_orders(Orders([sell("a")]), Orders(), Orders(), service, LEVEL_DEFAULT)

    assert len(changes.cancelled) == 1
    assert service.sent == []


def test_new_order_is_opened():
    service = RecordingNotifier()

    changes = diff_open_orders(Orders([buy("a")]), Orders([buy("a"), buy("b")]), Orders(), service, LEVEL_VERBOSE)

    assert [o.id for o in changes.opened] == ["b"]
    assert changes.cancelled == []
    assert service.titles == ["Bittrex - Open Buy"]


def test_open_sell_is_notified_at_default_level():
    service = RecordingNotifier()

    diff_open_orders(Orders(), Orders([buy("a"), sell("b")]), Orders(), service, LEVEL_DEFAULT)

    assert service.titles == ["Bittrex - Open Sell"]


def test_open_notifications_muted_at_errors_level():
    service = RecordingNotifier()

    diff_open_orders(Orders(), Orders([sell("b")]), Orders(), service, LEVEL_ERRORS)

    assert service.sent == []


def test_already_sold_order_is_suppressed_below_verbose():
    service = RecordingNotifier()
    history = Orders([sell("s")])

    diff_open_orders(Orders(), Orders([sell("s")]), history, service, LEVEL_DEFAULT)
    assert service.sent == []

    diff_open_orders(Orders(), Orders([sell("s")]), history, service, LEVEL_VERBOSE)
    assert service.titles == ["Bittrex - Open Sell"]


def test_unrecognized_side_is_never_notified():
    service = RecordingNotifier()
    odd = Order(id="x", market_symbol="ETH-BTC", direction="???")

    changes = diff_open_orders(Orders([odd]), Orders([Order(id="y", direction="")]), Orders(), service, LEVEL_VERBOSE)

    assert len(changes.cancelled) == 1
    assert len(changes.opened) == 1
    assert service.sent == []


def test_notifier_failure_does_not_break_diff():
    class BrokenNotifier:
        def send_message(self, message, title, frequency=None):
            raise RuntimeError("push service down")

    changes = diff_open_orders(Orders(), Orders([sell("b")]), Orders(), BrokenNotifier(), LEVEL_VERBOSE)

    assert len(changes.opened) == 1


def test_listen_returns_new_poll():
    exchange = InMemoryExchange()
    exchange.add_open(buy("a"))

    new = listen(exchange, Orders(), Orders())

    assert [o.id for o in new] == ["a"]
    assert exchange.calls_to("get_open_orders") == [("all",)]


def test_listen_poll_failure_propagates():
    exchange = InMemoryExchange()
    exchange.fail_next("get_open_orders", ExchangeError("timeout"))

    with pytest.raises(ExchangeError):
        listen(exchange, Orders([buy("a")]), Orders())
