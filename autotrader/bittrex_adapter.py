import hashlib
import hmac
import json
import time
from contextlib import nullcontext
from decimal import Decimal
from typing import List, Optional, Tuple
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exchange import ALL_MARKETS, ExchangeError, RateLimitError
from .logging_setup import logger
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
    orders_from,
)
from .rate_limit_policy import RequestGovernor
from .secrets import BittrexCredentials


class BittrexAdapter:
    """Bittrex v3 REST client with request signing, governed throttling and rate-limit feedback.

    Features:
    - Request signing (Api-Key / Api-Timestamp / Api-Content-Hash / Api-Signature, HMAC-SHA512).
    - Every call runs inside RequestGovernor.throttle(), so all processes
      sharing a session directory share one request budget.
    - 429 / TOO_MANY_REQUESTS responses are reported to the governor (slower
      endpoint tier + cooldown) and retried up to `max_rate_limit_retries` times.
    - Automatic urllib3 retry for 5xx on idempotent methods only; order
      placement is never re-sent by the transport.

    Notes:
    - Without credentials only public endpoints (markets, tickers, books) work.
    - Market symbols are v3 symbols (BASE-QUOTE).
    """

    def __init__(
        self,
        api_key: str = "",
        secret: str = "",
        *,
        governor: Optional[RequestGovernor] = None,
        base_url: str = "https://api.bittrex.com/v3",
        timeout: int = 10,
        max_retries: int = 5,
        max_rate_limit_retries: int = 1,
    ):
        self.api_key = api_key
        self.secret = secret
        self.governor = governor
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_rate_limit_retries = max_rate_limit_retries

        self.session = requests.Session()
        retries = Retry(total=max_retries, backoff_factor=0.5, status_forcelist=(500, 502, 503, 504), allowed_methods=frozenset(["GET", "DELETE"]))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session.mount("http://", HTTPAdapter(max_retries=retries))

    @classmethod
    def from_credentials(cls, credentials: BittrexCredentials, **kwargs) -> "BittrexAdapter":
        """Create BittrexAdapter from BittrexCredentials (loaded via secrets module)."""
        return cls(api_key=credentials.api_key, secret=credentials.api_secret, **kwargs)

    def _sign(self, method: str, url: str, body: str) -> dict:
        headers = {"Content-Type": "application/json"}
        if not self.api_key:
            return headers
        timestamp = str(int(time.time() * 1000))
        content_hash = hashlib.sha512(body.encode("utf-8")).hexdigest()
        message = timestamp + url + method.upper() + content_hash
        signature = hmac.new(self.secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha512).hexdigest()
        headers.update({
            "Api-Key": self.api_key,
            "Api-Timestamp": timestamp,
            "Api-Content-Hash": content_hash,
            "Api-Signature": signature,
        })
        return headers

    @staticmethod
    def _error_code(resp: requests.Response) -> Optional[str]:
        try:
            payload = resp.json()
        except ValueError:
            return None
        if isinstance(payload, dict):
            return payload.get("code")
        return None

    def _throttle(self, path: str):
        if self.governor is None:
            return nullcontext(False)
        return self.governor.throttle(path)

    def _request(self, method: str, path: str, body: Optional[dict] = None, params: Optional[dict] = None, attempt: int = 0):
        request_path = path if path.startswith("/") else f"/{path}"
        query = f"?{urlencode(params)}" if params else ""
        url = f"{self.base_url}{request_path}{query}"
        body_str = json.dumps(body) if body is not None else ""

        with self._throttle(request_path + query) as cooled:
            try:
                resp = self.session.request(method, url, headers=self._sign(method, url, body_str), data=body_str or None, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise ExchangeError(f"{method} {request_path} failed: {e}", path=request_path) from e

            code = None if resp.ok else self._error_code(resp)
            rate_limited = resp.status_code == 429 or code == "TOO_MANY_REQUESTS"
            if rate_limited and self.governor is not None:
                self.governor.handle_rate_limit_error(request_path, cooled)

        if rate_limited:
            if attempt < self.max_rate_limit_retries:
                logger.warning(f"Rate limited, retrying | path={request_path} attempt={attempt + 1}")
                return self._request(method, path, body=body, params=params, attempt=attempt + 1)
            raise RateLimitError(f"{resp.status_code}: {resp.text}", code=code or "TOO_MANY_REQUESTS", path=request_path)

        if not resp.ok:
            raise ExchangeError.from_code(code, f"{method} {request_path} {resp.status_code}: {resp.text}", path=request_path)

        if resp.text:
            return resp.json()
        return None

    @staticmethod
    def _market_params(symbol: str) -> Optional[dict]:
        if symbol == ALL_MARKETS:
            return None
        return {"marketSymbol": symbol}

    # --- market data ---
    def get_markets(self) -> List[Market]:
        return [Market.from_dict(m) for m in self._request("GET", "/markets") or []]

    def get_ticker(self, symbol: str) -> Decimal:
        res = self._request("GET", f"/markets/{symbol}/ticker")
        return Decimal(str(res.get("lastTradeRate", "0")))

    def get_market_summary(self, symbol: str) -> MarketSummary:
        res = self._request("GET", f"/markets/{symbol}/summary")
        return MarketSummary(
            market=res.get("symbol", symbol),
            high=Decimal(str(res.get("high", "0"))),
            low=Decimal(str(res.get("low", "0"))),
            quote_volume=Decimal(str(res.get("quoteVolume", "0"))),
        )

    def get_order_book(self, symbol: str, depth: int = 500) -> Tuple[List[BookEntry], List[BookEntry]]:
        res = self._request("GET", f"/markets/{symbol}/orderbook", params={"depth": depth})

        def entries(side: str) -> List[BookEntry]:
            return [BookEntry(price=Decimal(str(e["rate"])), size=Decimal(str(e["quantity"]))) for e in res.get(side, [])]

        return entries("bid"), entries("ask")

    # --- orders ---
    def create_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Decimal,
        limit: Decimal,
        time_in_force: TimeInForce,
    ) -> Order:
        body = {
            "marketSymbol": symbol,
            "direction": side.value,
            "type": order_type.value,
            "quantity": str(quantity),
            "timeInForce": time_in_force.value,
        }
        if order_type == OrderType.LIMIT:
            body["limit"] = str(limit)
        return Order.from_dict(self._request("POST", "/orders", body=body))

    def cancel_order(self, order_id: str) -> None:
        self._request("DELETE", f"/orders/{order_id}")

    def get_open_orders(self, symbol: str = ALL_MARKETS) -> Orders:
        return orders_from(self._request("GET", "/orders/open", params=self._market_params(symbol)))

    def get_order_history(self, symbol: str = ALL_MARKETS) -> Orders:
        return orders_from(self._request("GET", "/orders/closed", params=self._market_params(symbol)))

    # --- conditional orders ---
    def create_conditional_order(
        self,
        symbol: str,
        operand: str,
        trigger_price: Decimal,
        order_to_create: dict,
        order_to_cancel_id: Optional[str] = None,
    ) -> ConditionalOrder:
        body = {
            "marketSymbol": symbol,
            "operand": operand,
            "triggerPrice": str(trigger_price),
            "orderToCreate": order_to_create,
        }
        if order_to_cancel_id:
            body["orderToCancel"] = {"type": "ORDER", "id": order_to_cancel_id}
        return ConditionalOrder.from_dict(self._request("POST", "/conditional-orders", body=body))

    def cancel_conditional_order(self, conditional_id: str) -> None:
        self._request("DELETE", f"/conditional-orders/{conditional_id}")

    def get_open_conditional_orders(self, symbol: str) -> List[ConditionalOrder]:
        res = self._request("GET", "/conditional-orders/open", params=self._market_params(symbol))
        return [ConditionalOrder.from_dict(c) for c in res or []]
