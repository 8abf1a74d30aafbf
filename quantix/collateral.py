"""Collateral type configuration and the registry that stores it."""
from dataclasses import dataclass
from typing import Optional, Union

from quantix.errors import (
    CollateralDisabled,
    CollateralExists,
    InvalidParameter,
    UnknownCollateral,
)
from quantix.state import PendingState

SYMBOL_SIZE = 32
RATIO_BASE = 100  # ratio, penalty and fee are all percentages


@dataclass(frozen=True)
class NativeAsset:
    """The chain's native coin."""

    def to_dict(self) -> dict:
        return {'kind': 'native'}

    @property
    def key(self) -> bytes:
        return b'native'


@dataclass(frozen=True)
class ExternalAsset:
    """A token held in the asset bank under `ref`."""
    ref: str

    def to_dict(self) -> dict:
        return {'kind': 'external', 'ref': self.ref}

    @property
    def key(self) -> bytes:
        return b'external:' + self.ref.encode()


Asset = Union[NativeAsset, ExternalAsset]


def asset_from_dict(data: dict) -> Asset:
    if data['kind'] == 'native':
        return NativeAsset()
    if data['kind'] == 'external':
        return ExternalAsset(data['ref'])
    raise ValueError(f"Unknown asset kind: {data['kind']}")


def symbol_key(symbol: str) -> bytes:
    """Fixed-width key for a collateral symbol."""
    raw = symbol.encode('utf-8')
    if not raw or len(raw) > SYMBOL_SIZE:
        raise InvalidParameter(f"Symbol must be 1-{SYMBOL_SIZE} bytes: {symbol!r}")
    return raw.ljust(SYMBOL_SIZE, b'\x00')


@dataclass
class CollateralType:
    """Per-symbol collateral configuration."""
    symbol: str
    asset: Asset
    oracle: str
    min_ratio: int
    decimals: int
    enabled: bool = True
    liquidation_penalty: int = 0
    protocol_fee: int = 0

    @property
    def unit(self) -> int:
        """One whole unit of the asset in its native precision."""
        return 10 ** self.decimals

    @property
    def is_native(self) -> bool:
        return isinstance(self.asset, NativeAsset)

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'asset': self.asset.to_dict(),
            'oracle': self.oracle,
            'min_ratio': self.min_ratio,
            'decimals': self.decimals,
            'enabled': self.enabled,
            'liquidation_penalty': self.liquidation_penalty,
            'protocol_fee': self.protocol_fee,
        }

    @staticmethod
    def from_dict(data: dict) -> 'CollateralType':
        return CollateralType(
            symbol=data['symbol'],
            asset=asset_from_dict(data['asset']),
            oracle=data['oracle'],
            min_ratio=data['min_ratio'],
            decimals=data['decimals'],
            enabled=data['enabled'],
            liquidation_penalty=data['liquidation_penalty'],
            protocol_fee=data['protocol_fee'],
        )


def _validate(min_ratio: int, penalty: int, fee: int, decimals: int = 0):
    # Penalty and fee are checked on their own; their sum may exceed 100.
    if min_ratio <= 0:
        raise InvalidParameter(f"Minimum ratio must be positive, got {min_ratio}")
    if not 0 <= penalty <= RATIO_BASE:
        raise InvalidParameter(f"Liquidation penalty must be 0-{RATIO_BASE}, got {penalty}")
    if not 0 <= fee <= RATIO_BASE:
        raise InvalidParameter(f"Protocol fee must be 0-{RATIO_BASE}, got {fee}")
    if decimals < 0:
        raise InvalidParameter(f"Decimals must be non-negative, got {decimals}")


class CollateralRegistry:
    """
    Collateral types keyed by symbol, plus the append-only symbol list.

    Types are never deleted. Disabling keeps the data and the list entry.
    """

    PREFIX = b'COLLATERAL:'
    LIST_KEY = b'COLLATERAL_LIST'

    def _key(self, symbol: str) -> bytes:
        return self.PREFIX + symbol_key(symbol)

    def get(self, state: PendingState, symbol: str) -> Optional[CollateralType]:
        data = state.get_record(self._key(symbol))
        if data:
            return CollateralType.from_dict(data)
        return None

    def require(self, state: PendingState, symbol: str) -> CollateralType:
        ctype = self.get(state, symbol)
        if ctype is None:
            raise UnknownCollateral(f"Unknown collateral type {symbol!r}")
        return ctype

    def require_enabled(self, state: PendingState, symbol: str) -> CollateralType:
        ctype = self.require(state, symbol)
        if not ctype.enabled:
            raise CollateralDisabled(f"Collateral type {symbol!r} is disabled")
        return ctype

    def symbols(self, state: PendingState) -> list:
        return state.get_record(self.LIST_KEY) or []

    def _put(self, state: PendingState, ctype: CollateralType):
        state.set_record(self._key(ctype.symbol), ctype.to_dict())

    def add(self, state: PendingState, symbol: str, asset: Asset, oracle: str,
            min_ratio: int, decimals: int, penalty: int, fee: int) -> CollateralType:
        existing = self.get(state, symbol)
        if existing is not None and existing.enabled:
            raise CollateralExists(f"Collateral type {symbol!r} already exists")
        _validate(min_ratio, penalty, fee, decimals)

        ctype = CollateralType(
            symbol=symbol,
            asset=asset,
            oracle=oracle,
            min_ratio=min_ratio,
            decimals=decimals,
            enabled=True,
            liquidation_penalty=penalty,
            protocol_fee=fee,
        )
        self._put(state, ctype)

        symbols = self.symbols(state)
        if symbol not in symbols:
            symbols.append(symbol)
            state.set_record(self.LIST_KEY, symbols)
        return ctype

    def update(self, state: PendingState, symbol: str, min_ratio: int,
               enabled: bool, penalty: int, fee: int) -> CollateralType:
        ctype = self.require(state, symbol)
        _validate(min_ratio, penalty, fee)
        ctype.min_ratio = min_ratio
        ctype.enabled = enabled
        ctype.liquidation_penalty = penalty
        ctype.protocol_fee = fee
        self._put(state, ctype)
        return ctype

    def disable(self, state: PendingState, symbol: str) -> CollateralType:
        ctype = self.require(state, symbol)
        ctype.enabled = False
        self._put(state, ctype)
        return ctype
