"""
Rolling-window average price per collateral symbol.

Each symbol keeps the last TWAP_WINDOW observed prices in a ring buffer.
The average is the truncating integer mean of the populated slots, so a
skewed price only dominates after it has been observed across several
operations.
"""
from quantix.collateral import symbol_key
from quantix.state import PendingState

TWAP_WINDOW = 10


class PriceHistory:
    """Fixed-capacity ring buffer of observed prices (18-decimal)."""

    def __init__(self, window: int = TWAP_WINDOW):
        if window <= 0:
            raise ValueError("TWAP window must be positive")
        self.prices = [0] * window
        self.count = 0
        self.cursor = 0

    @property
    def window(self) -> int:
        return len(self.prices)

    def update(self, price: int):
        """Record a price at the cursor and advance it."""
        self.prices[self.cursor] = price
        self.cursor = (self.cursor + 1) % self.window
        if self.count < self.window:
            self.count += 1

    def twap(self) -> int:
        if self.count == 0:
            return 0
        # Slots fill from 0 upward, so the first `count` slots are populated.
        return sum(self.prices[:self.count]) // self.count

    def to_dict(self) -> dict:
        return {
            'prices': [str(p) for p in self.prices],
            'count': self.count,
            'cursor': self.cursor,
        }

    @staticmethod
    def from_dict(data: dict) -> 'PriceHistory':
        history = PriceHistory(len(data['prices']))
        history.prices = [int(p) for p in data['prices']]
        history.count = data['count']
        history.cursor = data['cursor']
        return history

    def __repr__(self) -> str:
        return f"PriceHistory(count={self.count}, cursor={self.cursor}, twap={self.twap()})"


class TWAPAggregator:
    """Loads and stores price histories; one record per symbol."""

    PREFIX = b'PRICE_HISTORY:'

    def __init__(self, window: int = TWAP_WINDOW):
        self.window = window

    def _key(self, symbol: str) -> bytes:
        return self.PREFIX + symbol_key(symbol)

    def get_history(self, state: PendingState, symbol: str) -> PriceHistory:
        data = state.get_record(self._key(symbol))
        if data:
            return PriceHistory.from_dict(data)
        return PriceHistory(self.window)

    def update(self, state: PendingState, symbol: str, price: int) -> int:
        """Record a price observation and return the resulting TWAP."""
        history = self.get_history(state, symbol)
        history.update(price)
        state.set_record(self._key(symbol), history.to_dict())
        return history.twap()

    def read(self, state: PendingState, symbol: str) -> int:
        return self.get_history(state, symbol).twap()
