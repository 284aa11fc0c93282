"""
Price oracle client.

Fetches the reference price of the underlying asset from the Binance
ticker endpoint and returns it as an 8-decimal fixed-point value.
Fails loudly: never returns a stale or zero price.
"""
import logging

import requests

from core.exceptions import PriceFetchError
from core.fixed_point import FixedPoint

logger = logging.getLogger(__name__)


class PriceOracleClient:
    """
    Reads `GET {url}?symbol={symbol}` -> {"symbol": "BNBUSDT", "price": "612.34000000"}.

    The price string is parsed with Decimal, so no float rounding is involved.
    """

    def __init__(
        self,
        url: str = "https://api.binance.com/api/v3/ticker/price",
        symbol: str = "BNBUSDT",
        timeout_s: float = 5.0,
        session: requests.Session = None,
    ):
        self._url = url
        self._symbol = symbol
        self._timeout = timeout_s
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings) -> "PriceOracleClient":
        return cls(
            url=settings.price_feed_url,
            symbol=settings.price_symbol,
            timeout_s=settings.oracle_timeout_s,
        )

    @property
    def symbol(self) -> str:
        return self._symbol

    def get_price(self) -> FixedPoint:
        """
        Fetch the current price.

        Raises:
            PriceFetchError: network error, non-200 status, bad payload or non-positive price
        """
        try:
            resp = self._session.get(
                self._url,
                params={"symbol": self._symbol},
                timeout=self._timeout,
            )
        except requests.exceptions.Timeout as e:
            raise PriceFetchError(f"Price feed timed out after {self._timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise PriceFetchError(f"Price feed request failed: {e}") from e

        if resp.status_code != 200:
            raise PriceFetchError(f"Price feed returned HTTP {resp.status_code}")

        try:
            data = resp.json()
            raw_price = data["price"]
        except (ValueError, KeyError, TypeError) as e:
            raise PriceFetchError(f"Unexpected price feed payload: {e}") from e

        if not isinstance(raw_price, str):
            raise PriceFetchError(f"Price must be a decimal string, got {raw_price!r}")

        try:
            price = FixedPoint.from_decimal(raw_price)
        except ValueError as e:
            raise PriceFetchError(str(e)) from e

        if price.raw <= 0:
            raise PriceFetchError(f"Price feed returned non-positive price {raw_price}")

        logger.debug(f"Fetched {self._symbol} price {price}")
        return price
