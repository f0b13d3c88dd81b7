"""Price fetching (CoinGecko API) and the throttled current-price slot."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests
import structlog

from dca_tracker.config.constants import (
    COINGECKO_API_KEY,
    COINGECKO_API_KEY_HEADER,
    COINGECKO_MARKET_CHART_URL,
    COINGECKO_SIMPLE_PRICE_URL,
    DEFAULT_CURRENCY,
    HISTORY_DAYS,
    HISTORY_WINDOW_MS,
    PRICE_REFRESH_SECONDS,
    PRICE_TIMEOUT_SECONDS,
    RETRY_AFTER_DEFAULT_SECONDS,
    RETRY_AFTER_MAX_SECONDS,
    RETRY_AFTER_MIN_SECONDS,
)
from dca_tracker.errors import (
    HttpError,
    MalformedResponseError,
    PriceSourceError,
    PriceTimeoutError,
)
from dca_tracker.models.core import Comparisons, PriceSnapshot
from dca_tracker.services.metrics import price_change

logger = structlog.get_logger(__name__)

COINGECKO_ASSET_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "PAXG": "pax-gold",
}


def retry_after_seconds(header: Optional[str]) -> int:
    """Wait time for a 429: Retry-After seconds clamped to [1, 10], default 2."""
    try:
        wait = int(str(header).strip()) if header is not None else RETRY_AFTER_DEFAULT_SECONDS
    except ValueError:
        wait = RETRY_AFTER_DEFAULT_SECONDS
    return min(max(wait, RETRY_AFTER_MIN_SECONDS), RETRY_AFTER_MAX_SECONDS)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


class CoinGeckoClient:
    """
    Minimal CoinGecko market-data client.

    Every call is a GET with a timeout and, when configured, the demo API key
    header. A 429 is retried exactly once after the server's Retry-After hint;
    anything else that is not 2xx raises HttpError.

    Example:
        >>> client = CoinGeckoClient()
        >>> client.fetch_btc_spot("usd")
        67012.0
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = PRICE_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = COINGECKO_API_KEY if api_key is None else api_key
        self.session = session or requests.Session()
        self.timeout = timeout
        self._sleep = sleep

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers[COINGECKO_API_KEY_HEADER] = self.api_key
        return headers

    def _send(self, url: str, params: Dict[str, Any]) -> requests.Response:
        try:
            return self.session.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as e:
            raise PriceTimeoutError("Price request timed out", details={"url": url, "timeout": self.timeout}, cause=e) from e
        except requests.RequestException as e:
            raise PriceSourceError("Price request failed", details={"url": url}, cause=e) from e

    def _get_json(self, url: str, params: Dict[str, Any]) -> Any:
        response = self._send(url, params)
        if response.status_code == 429:
            wait = retry_after_seconds(response.headers.get("Retry-After"))
            logger.warning("price_rate_limited", url=url, wait_seconds=wait)
            self._sleep(wait)
            response = self._send(url, params)
        if not 200 <= response.status_code < 300:
            raise HttpError(response.status_code, response.text or "")
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError("Malformed response data", details={"url": url}, cause=e) from e

    def _simple_price(self, ids: List[str], currency: str) -> Dict[str, float]:
        c = currency.lower()
        data = self._get_json(COINGECKO_SIMPLE_PRICE_URL, {"ids": ",".join(ids), "vs_currencies": c})
        if not isinstance(data, dict):
            raise MalformedResponseError("Expected a JSON object", details={"ids": ids})
        prices: Dict[str, float] = {}
        for coin_id in ids:
            quote = data.get(coin_id)
            value = _number(quote.get(c)) if isinstance(quote, dict) else None
            if value is None:
                raise MalformedResponseError("Missing price in response", details={"id": coin_id, "currency": c})
            prices[coin_id] = value
        return prices

    def fetch_btc_spot(self, currency: str = DEFAULT_CURRENCY) -> float:
        """Current BTC price in the given currency."""
        return self._simple_price([COINGECKO_ASSET_IDS["BTC"]], currency)[COINGECKO_ASSET_IDS["BTC"]]

    def fetch_btc_history_24h(self, currency: str = DEFAULT_CURRENCY) -> List[float]:
        """
        Prices over roughly the last 24h.

        Fetches 2 days of market chart and keeps points no older than 24h
        before the most recent point. Rows with fewer than two values are
        skipped.
        """
        data = self._get_json(
            COINGECKO_MARKET_CHART_URL,
            {"vs_currency": currency.lower(), "days": HISTORY_DAYS},
        )
        rows = data.get("prices") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise MalformedResponseError("Missing prices array in market chart")

        points = []
        for row in rows:
            if not isinstance(row, list) or len(row) < 2:
                continue
            ts = _number(row[0])
            price = _number(row[1])
            points.append((int(ts) if ts is not None else 0, price if price is not None else 0.0))
        if not points:
            return []
        cutoff = points[-1][0] - HISTORY_WINDOW_MS
        return [p for ts, p in points if ts >= cutoff]

    def fetch_comparisons(self, currency: str = DEFAULT_CURRENCY) -> Comparisons:
        """BTC, ETH and gold (PAXG) spot prices in one request."""
        ids = [COINGECKO_ASSET_IDS["BTC"], COINGECKO_ASSET_IDS["ETH"], COINGECKO_ASSET_IDS["PAXG"]]
        prices = self._simple_price(ids, currency)
        return Comparisons(btc=prices[ids[0]], eth=prices[ids[1]], paxg=prices[ids[2]])


class PriceTracker:
    """
    Holds the last known BTC price and refreshes it on demand or on a timer.

    Fetch errors are recorded in last_error and logged; the previous price
    is kept. The tracker never touches the ledger.

    Use start()/stop() (or a with-block) for the background loop; stop()
    must be called when the consumer goes away so the thread ends.
    """

    def __init__(
        self,
        client: CoinGeckoClient,
        currency: str = DEFAULT_CURRENCY,
        min_interval: float = PRICE_REFRESH_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.currency = currency
        self.min_interval = min_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._fetching = threading.Lock()
        self._spot: Optional[float] = None
        self._history: tuple[float, ...] = ()
        self._comparisons: Optional[Comparisons] = None
        self._fetched_at: Optional[float] = None
        self._comparisons_at: Optional[float] = None
        self._last_error: Optional[str] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # --- slot ---

    @property
    def spot(self) -> Optional[float]:
        return self._spot

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def fetched_at(self) -> Optional[float]:
        return self._fetched_at

    def snapshot(self) -> PriceSnapshot:
        with self._lock:
            return PriceSnapshot(
                currency=self.currency,
                spot=self._spot,
                history=self._history,
                change=price_change(self._history),
                comparisons=self._comparisons,
                fetched_at=self._fetched_at,
                error=self._last_error,
            )

    def set_currency(self, currency: str) -> None:
        """Switch quote currency; cached values are dropped since they no longer apply."""
        with self._lock:
            if currency == self.currency:
                return
            self.currency = currency
            self._spot = None
            self._history = ()
            self._comparisons = None
            self._fetched_at = None
            self._comparisons_at = None

    def _is_fresh(self, at: Optional[float]) -> bool:
        return at is not None and self._clock() - at < self.min_interval

    def _record_error(self, action: str, error: PriceSourceError) -> None:
        with self._lock:
            self._last_error = str(error)
        logger.warning("price_refresh_failed", action=action, currency=self.currency, error=str(error))

    # --- refresh ---

    def refresh(self, force: bool = False) -> Optional[float]:
        """
        Fetch the spot price unless the last success is younger than min_interval.

        Returns the current (possibly unchanged) price, or None if no price
        has ever been fetched.
        """
        if not force and self._is_fresh(self._fetched_at):
            return self._spot
        if not self._fetching.acquire(blocking=force):
            return self._spot
        try:
            price = self.client.fetch_btc_spot(self.currency)
        except PriceSourceError as e:
            self._record_error("spot", e)
            return self._spot
        finally:
            self._fetching.release()
        with self._lock:
            self._spot = price
            self._fetched_at = self._clock()
            self._last_error = None
        logger.debug("price_refreshed", currency=self.currency, spot=price)
        return price

    def refresh_market(self, include_comparisons: bool = False, force: bool = False) -> PriceSnapshot:
        """Fetch 24h history and spot together; optionally the comparison prices too."""
        with self._fetching:
            try:
                history = self.client.fetch_btc_history_24h(self.currency)
                spot = self.client.fetch_btc_spot(self.currency)
            except PriceSourceError as e:
                self._record_error("market", e)
            else:
                with self._lock:
                    self._history = tuple(history)
                    self._spot = spot
                    self._fetched_at = self._clock()
                    self._last_error = None

            if include_comparisons and (force or not self._is_fresh(self._comparisons_at)):
                try:
                    comparisons = self.client.fetch_comparisons(self.currency)
                except PriceSourceError as e:
                    self._record_error("comparisons", e)
                else:
                    with self._lock:
                        self._comparisons = comparisons
                        self._comparisons_at = self._clock()
        return self.snapshot()

    # --- background loop ---

    def _run(self, interval: float, market: bool, include_comparisons: bool) -> None:
        while not self._stop.is_set():
            if market:
                self.refresh_market(include_comparisons=include_comparisons)
            else:
                self.refresh(force=True)
            self._stop.wait(interval)

    def start(self, interval: float = PRICE_REFRESH_SECONDS, market: bool = False, include_comparisons: bool = False) -> None:
        """Start the periodic refresh thread (no-op if already running)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(interval, market, include_comparisons),
            name="price-refresh",
            daemon=True,
        )
        self._thread.start()
        logger.info("price_refresh_started", interval=interval, currency=self.currency)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to end and wait for the thread. Safe to call repeatedly."""
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout)
            logger.info("price_refresh_stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> "PriceTracker":
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()
