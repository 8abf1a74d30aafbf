"""
Circuit breaker for collateral operations.

The breaker runs after an operation's effects are in place. A trip never
fails that operation: it reports reasons, and the manager halts the system
so that only later operations are blocked.
"""
import logging
from dataclasses import dataclass, asdict

from quantix.state import PendingState

logger = logging.getLogger(__name__)

REASON_SINGLE_WITHDRAWAL = "single withdrawal too large"
REASON_SINGLE_MINT = "single mint too large"
REASON_BLOCK_WITHDRAWAL = "block withdrawal limit exceeded"
REASON_BLOCK_MINT = "block mint limit exceeded"
REASON_PRICE_DROP = "oracle price drop"


@dataclass
class BreakerLimits:
    """Thresholds; 0 disables a check. Values are quote units except the drop (percent)."""
    max_single_withdrawal: int = 0
    max_single_mint: int = 0
    max_block_withdrawal: int = 0
    max_block_mint: int = 0
    max_price_drop: int = 0

    def to_dict(self) -> dict:
        return {k: str(v) for k, v in asdict(self).items()}

    @staticmethod
    def from_dict(data: dict) -> 'BreakerLimits':
        return BreakerLimits(**{k: int(v) for k, v in data.items()})


class CircuitBreaker:
    """Per-symbol block counters and last prices, plus the global block index."""

    def __init__(self, limits: BreakerLimits = None):
        self.limits = limits or BreakerLimits()
        self.last_block = 0
        self.block_withdrawals = {}
        self.block_mints = {}
        self.last_price = {}

    def check(self, symbols: list, symbol: str, block: int,
              withdrawal_value: int, mint_amount: int, price: int) -> list:
        """
        Account for one operation and return the reasons it trips the breaker.

        `symbols` is the registry's symbol list; the first operation in a new
        block zeroes every symbol's counters.
        """
        limits = self.limits
        reasons = []

        if block != self.last_block:
            for s in symbols:
                self.block_withdrawals[s] = 0
                self.block_mints[s] = 0
            self.last_block = block

        if limits.max_single_withdrawal > 0 and withdrawal_value > limits.max_single_withdrawal:
            reasons.append(REASON_SINGLE_WITHDRAWAL)

        if limits.max_single_mint > 0 and mint_amount > limits.max_single_mint:
            reasons.append(REASON_SINGLE_MINT)

        withdrawn = self.block_withdrawals.get(symbol, 0) + withdrawal_value
        minted = self.block_mints.get(symbol, 0) + mint_amount
        self.block_withdrawals[symbol] = withdrawn
        self.block_mints[symbol] = minted

        if limits.max_block_withdrawal > 0 and withdrawn > limits.max_block_withdrawal:
            reasons.append(REASON_BLOCK_WITHDRAWAL)

        if limits.max_block_mint > 0 and minted > limits.max_block_mint:
            reasons.append(REASON_BLOCK_MINT)

        previous = self.last_price.get(symbol, 0)
        if previous > 0 and limits.max_price_drop > 0:
            drop = (previous - price) * 100 // previous if price < previous else 0
            if drop >= limits.max_price_drop:
                reasons.append(REASON_PRICE_DROP)

        self.last_price[symbol] = price

        for reason in reasons:
            logger.warning(f"CIRCUIT BREAKER TRIPPED ({symbol}): {reason}")
        return reasons

    def to_dict(self) -> dict:
        return {
            'limits': self.limits.to_dict(),
            'last_block': self.last_block,
            'block_withdrawals': {s: str(v) for s, v in self.block_withdrawals.items()},
            'block_mints': {s: str(v) for s, v in self.block_mints.items()},
            'last_price': {s: str(v) for s, v in self.last_price.items()},
        }

    @staticmethod
    def from_dict(data: dict) -> 'CircuitBreaker':
        cb = CircuitBreaker(BreakerLimits.from_dict(data['limits']))
        cb.last_block = data.get('last_block', 0)
        cb.block_withdrawals = {s: int(v) for s, v in data.get('block_withdrawals', {}).items()}
        cb.block_mints = {s: int(v) for s, v in data.get('block_mints', {}).items()}
        cb.last_price = {s: int(v) for s, v in data.get('last_price', {}).items()}
        return cb


class CircuitBreakerStore:
    KEY = b'CIRCUIT_BREAKER'

    def __init__(self, default_limits: BreakerLimits = None):
        self.default_limits = default_limits or BreakerLimits()

    def get(self, state: PendingState) -> CircuitBreaker:
        data = state.get_record(self.KEY)
        if data:
            return CircuitBreaker.from_dict(data)
        return CircuitBreaker(BreakerLimits(**asdict(self.default_limits)))

    def put(self, state: PendingState, cb: CircuitBreaker):
        state.set_record(self.KEY, cb.to_dict())
