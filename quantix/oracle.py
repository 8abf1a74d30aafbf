"""
Price feeds and the adapter that turns their reports into internal prices.

Feeds report 8-decimal fixed-point prices; the manager works with
18-decimal prices.
"""
import time
import logging
from decimal import Decimal, InvalidOperation

import requests

from quantix.errors import InvalidPrice, OracleError, StalePrice, UnknownPriceFeed

logger = logging.getLogger(__name__)

FEED_DECIMALS = 8
PRICE_DECIMALS = 18
FEED_TO_PRICE = 10 ** (PRICE_DECIMALS - FEED_DECIMALS)


class PriceFeed:
    """A source of (price, timestamp) reports with FEED_DECIMALS precision."""

    def latest_price(self) -> tuple[int, int]:
        raise NotImplementedError


class StaticPriceFeed(PriceFeed):
    """In-process feed whose price is set explicitly."""

    def __init__(self, price: int, timestamp: int = 0):
        self.price = price
        self.timestamp = timestamp

    def set_price(self, price: int, timestamp: int = None):
        self.price = price
        if timestamp is not None:
            self.timestamp = timestamp

    def latest_price(self) -> tuple[int, int]:
        return self.price, self.timestamp


class HttpPriceFeed(PriceFeed):
    """
    Feed backed by a JSON price endpoint.

    `path` lists the keys leading to the price inside the response, e.g.
    ("ethereum", "usd") for {"ethereum": {"usd": 2000.5}}.
    """

    def __init__(self, url: str, path: tuple, timeout: float = 5.0, session=None):
        self.url = url
        self.path = tuple(path)
        self.timeout = timeout
        self.session = session or requests.Session()

    def latest_price(self) -> tuple[int, int]:
        try:
            r = self.session.get(self.url, timeout=self.timeout)
            r.raise_for_status()
            value = r.json()
            for key in self.path:
                value = value[key]
            price = Decimal(str(value))
        except requests.RequestException as e:
            logger.warning(f"Price endpoint {self.url} unreachable: {e}")
            raise OracleError(f"Price feed unavailable: {e}") from e
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise OracleError(f"Malformed price response from {self.url}") from e

        return int(price * (10 ** FEED_DECIMALS)), int(time.time())


class OracleAdapter:
    """Reads a configured feed and returns an 18-decimal price."""

    def __init__(self, feeds: dict = None, max_age: int = 0):
        self.feeds = dict(feeds or {})
        self.max_age = max_age

    def register(self, oracle_ref: str, feed: PriceFeed):
        self.feeds[oracle_ref] = feed

    def get_price(self, oracle_ref: str, now: int = 0) -> int:
        feed = self.feeds.get(oracle_ref)
        if feed is None:
            raise UnknownPriceFeed(f"No price feed registered as {oracle_ref!r}")

        price, updated_at = feed.latest_price()
        if price <= 0:
            raise InvalidPrice(f"Feed {oracle_ref!r} reported non-positive price {price}")

        if self.max_age and now - updated_at > self.max_age:
            raise StalePrice(
                f"Feed {oracle_ref!r} report is {now - updated_at}s old "
                f"(max: {self.max_age}s)"
            )

        return price * FEED_TO_PRICE
