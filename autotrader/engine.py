"""
Sell loop: the long-running driver of the autotrader.

Each iteration, in order:
    1. read the dynamic settings (level, mult, stop)
    2. react to new fills in the order history
    3. diff the open orders (cancelled / opened)
    4. at most once per interval, reopen stale orders

A failing iteration is logged and notified (at most once per minute) and
the loop moves on; it never exits on a single failed cycle. Clock and
sleep are injectable so tests can drive iterations without delays.
"""
import time
from pathlib import Path
from typing import Callable, Optional

from .bittrex_adapter import BittrexAdapter
from .composer import OrderComposer
from .config import DynamicSettings, SettingsProvider, TradingConfig
from .exchange import ALL_MARKETS, ExchangeClient
from .listener import listen
from .logging_setup import logger
from .markets import MarketCache
from .notify import LEVEL_DEFAULT, LogNotifier, Notifier, SocialPoster, ThrottledNotifier, report_error
from .rate_limit_policy import RequestGovernor
from .secrets import BittrexCredentials
from .snapshots import SnapshotStore
from .strategy import FillProcessor, Strategy
from .sweeper import StaleOrderSweeper


class TradingLoop:
    def __init__(
        self,
        client: ExchangeClient,
        fills: FillProcessor,
        sweeper: StaleOrderSweeper,
        settings: Callable[[], DynamicSettings] = DynamicSettings,
        *,
        service: Optional[Notifier] = None,
        store: Optional[SnapshotStore] = None,
        poll_interval: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.fills = fills
        self.sweeper = sweeper
        self.settings = settings
        self.service = service
        self.store = store or SnapshotStore()
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.iterations = 0

    def start(self) -> None:
        """Take the initial polls; everything already in them is old news."""
        self.store.history = self.client.get_order_history(ALL_MARKETS)
        self.store.open_orders = self.client.get_open_orders(ALL_MARKETS)
        logger.info(
            f"Sell loop started | strategy={self.fills.strategy.value} history={len(self.store.history)} open={len(self.store.open_orders)}"
        )

    def run_once(self) -> bool:
        """One iteration. Returns False if it failed (already reported)."""
        self.iterations += 1
        level = LEVEL_DEFAULT
        try:
            settings = self.settings()
            level = settings.level
            self.fills.process(self.store, settings.mult, settings.stop, level)
            self.store.open_orders = listen(
                self.client, self.store.open_orders, self.store.history, self.service, level
            )
            self.sweeper.sweep_if_due(self.store.open_orders, level)
        except Exception as e:
            report_error(e, level, self.service)
            return False
        return True

    def run(self, iterations: Optional[int] = None) -> None:
        """Start and loop forever, or for `iterations` iterations."""
        self.start()
        done = 0
        while iterations is None or done < iterations:
            self.run_once()
            done += 1
            if self.poll_interval > 0:
                self.sleep(self.poll_interval)


def build_loop(
    config: TradingConfig,
    credentials: BittrexCredentials,
    *,
    service: Optional[Notifier] = None,
    poster: Optional[SocialPoster] = None,
) -> TradingLoop:
    """Wire a TradingLoop against the live exchange from configuration.

    Raises:
        ValueError: If the configured strategy is not implemented
    """
    strategy = Strategy.parse(config.strategy.name)
    service = ThrottledNotifier(service or LogNotifier())

    governor = RequestGovernor.for_directory(Path(config.session.directory))
    client = BittrexAdapter.from_credentials(
        credentials,
        governor=governor,
        base_url=config.exchange.base_url,
        timeout=config.exchange.timeout,
        max_retries=config.exchange.max_retries,
        max_rate_limit_retries=config.exchange.max_rate_limit_retries,
    )
    markets = MarketCache(client)
    composer = OrderComposer(client)
    fills = FillProcessor(
        client,
        strategy,
        markets=markets,
        composer=composer,
        hold=config.strategy.hold,
        dca=config.strategy.dca,
        max_self_trade_retries=config.strategy.max_self_trade_retries,
        service=service,
        poster=poster,
    )
    sweeper = StaleOrderSweeper(
        composer,
        reopen_after_days=config.sweeper.reopen_after_days,
        interval_minutes=config.sweeper.interval_minutes,
        service=service,
    )
    return TradingLoop(
        client,
        fills,
        sweeper,
        SettingsProvider(config.loop.settings_file),
        service=service,
        poll_interval=config.loop.poll_interval_seconds,
    )
