"""
Vault accounting: per (owner, symbol) collateral and debt.

Collateral is kept in the asset's own precision, debt in 18-decimal stable
units. Vaults exist implicitly: an unknown vault reads as all zeros.
"""
from dataclasses import dataclass

from quantix.collateral import RATIO_BASE, symbol_key
from quantix.state import PendingState

STABLE_DECIMALS = 18
STABLE_UNIT = 10 ** STABLE_DECIMALS

# Reported for vaults without debt.
MAX_RATIO = 2 ** 256 - 1


def collateral_value(collateral: int, price: int, decimals: int) -> int:
    """Value of `collateral` at an 18-decimal price, in 18-decimal quote units."""
    return collateral * price // (10 ** decimals)


def collateral_ratio(collateral: int, debt: int, price: int, decimals: int) -> int:
    """
    Collateralization ratio as a percentage.

    ratio = collateral * price * 100 / (debt * 10**decimals), truncated.
    """
    if debt == 0:
        return MAX_RATIO
    return (collateral * price * RATIO_BASE) // (debt * 10 ** decimals)


def is_safe(collateral: int, debt: int, price: int, decimals: int, min_ratio: int) -> bool:
    if debt == 0:
        return True
    return collateral_ratio(collateral, debt, price, decimals) >= min_ratio


@dataclass
class Vault:
    owner: bytes
    symbol: str
    collateral: int = 0
    debt: int = 0

    @property
    def is_empty(self) -> bool:
        return self.collateral == 0 and self.debt == 0

    def ratio(self, price: int, decimals: int) -> int:
        return collateral_ratio(self.collateral, self.debt, price, decimals)

    def is_safe(self, price: int, decimals: int, min_ratio: int) -> bool:
        return is_safe(self.collateral, self.debt, price, decimals, min_ratio)

    def clear(self):
        self.collateral = 0
        self.debt = 0

    def to_dict(self) -> dict:
        return {
            'collateral': str(self.collateral),
            'debt': str(self.debt),
        }

    @staticmethod
    def from_dict(owner: bytes, symbol: str, data: dict) -> 'Vault':
        return Vault(
            owner=owner,
            symbol=symbol,
            collateral=int(data['collateral']),
            debt=int(data['debt']),
        )

    def __repr__(self) -> str:
        return (
            f"Vault(owner={self.owner.hex()[:8]}, symbol={self.symbol}, "
            f"collateral={self.collateral}, debt={self.debt})"
        )


class VaultLedger:
    PREFIX = b'VAULT:'

    def _key(self, symbol: str, owner: bytes) -> bytes:
        return self.PREFIX + symbol_key(symbol) + owner

    def get(self, state: PendingState, symbol: str, owner: bytes) -> Vault:
        data = state.get_record(self._key(symbol, owner))
        if data:
            return Vault.from_dict(owner, symbol, data)
        return Vault(owner=owner, symbol=symbol)

    def put(self, state: PendingState, vault: Vault):
        key = self._key(vault.symbol, vault.owner)
        if vault.is_empty:
            state.delete(key)
        else:
            state.set_record(key, vault.to_dict())
