"""
Bittrex Autotrader.

A long-running background agent that turns a sell strategy into order
placement decisions by polling the Bittrex v3 REST API:
- Fill detection by diffing successive order-history polls
- Take-profit limit sells, or OCO pairs (limit sell + conditional stop)
- Dollar-cost-averaging re-buy after a stop fires, with self-trade recovery
- Cancelled/opened order notifications from open-order polls
- Hourly reopening of orders before the exchange's 28-day purge
- Buy ladder maintenance without needless cancel/replace churn
- Adaptive per-endpoint throttling shared across processes via a file lock
- Structured logging via loguru
- Configuration-driven (YAML), hot-reloaded dynamic settings

Core Modules:
    models: Orders, markets, conditional orders, ladder levels
    exchange: ExchangeClient protocol, error taxonomy, in-memory exchange
    rate_limit_policy: Request governor and persisted session state
    bittrex_adapter: Bittrex v3 REST client
    markets: Market cache and market data reads
    composer: Single and OCO order composition
    listener: Cancelled/opened order detection
    strategy: Fill detection and sell strategies
    sweeper: Stale-order reopening
    ladder: Buy ladder maintenance
    engine: The sell loop
    config: Configuration loading and dynamic settings
    secrets: Credential management

Example:
    >>> from autotrader.config import TradingConfig
    >>> from autotrader.engine import build_loop
    >>> from autotrader.secrets import load_credentials
    >>>
    >>> loop = build_loop(TradingConfig.from_yaml("config.yaml"), load_credentials())
    >>> loop.run()
"""

__version__ = "0.1.0"
__all__ = [
    "models",
    "exchange",
    "rate_limit_policy",
    "bittrex_adapter",
    "markets",
    "pricing",
    "composer",
    "snapshots",
    "listener",
    "strategy",
    "sweeper",
    "ladder",
    "notify",
    "engine",
    "config",
    "secrets",
]
