"""
The pegged stable unit (QTX): balances, supply and the minter capability.
"""
import logging
from decimal import Decimal

from quantix.errors import InsufficientBalance, InvalidAmount, Unauthorized
from quantix.state import PendingState
from quantix.vault import STABLE_UNIT

logger = logging.getLogger(__name__)


class SupplyState:
    """Tracks total minted and burned stable units."""

    def __init__(self, data: dict = None):
        if data is None:
            data = {'total_minted': '0', 'total_burned': '0'}
        self.total_minted = int(data['total_minted'])
        self.total_burned = int(data['total_burned'])
        if self.total_minted < 0 or self.total_burned < 0:
            raise ValueError("Minted/burned cannot be negative")

    @property
    def circulating_supply(self) -> int:
        return max(0, self.total_minted - self.total_burned)

    def to_dict(self) -> dict:
        return {
            'total_minted': str(self.total_minted),
            'total_burned': str(self.total_burned),
        }

    def __repr__(self) -> str:
        supply = Decimal(self.circulating_supply) / Decimal(STABLE_UNIT)
        return (
            f"SupplyState("
            f"minted={self.total_minted}, "
            f"burned={self.total_burned}, "
            f"circulating={supply} QTX)"
        )


class StableToken:
    """
    Stable-unit ledger. Only accounts holding the minter capability may mint
    or burn; only the admin grants or revokes it.
    """

    BALANCE_PREFIX = b'QTX:'
    MINTER_PREFIX = b'QTX_MINTER:'
    SUPPLY_KEY = b'QTX_SUPPLY'

    def __init__(self, admin: bytes):
        self.admin = admin

    def _balance_key(self, account: bytes) -> bytes:
        return self.BALANCE_PREFIX + account

    def balance_of(self, state: PendingState, account: bytes) -> int:
        raw = state.get(self._balance_key(account))
        return int(raw.decode()) if raw else 0

    def _set_balance(self, state: PendingState, account: bytes, amount: int):
        if amount == 0:
            state.delete(self._balance_key(account))
        else:
            state.set(self._balance_key(account), str(amount).encode())

    def get_supply(self, state: PendingState) -> SupplyState:
        return SupplyState(state.get_record(self.SUPPLY_KEY))

    def total_supply(self, state: PendingState) -> int:
        return self.get_supply(state).circulating_supply

    # ------------------------------------------------------------------ #
    # Minter capability
    # ------------------------------------------------------------------ #
    def is_minter(self, state: PendingState, account: bytes) -> bool:
        return state.get(self.MINTER_PREFIX + account) is not None

    def grant_minter(self, state: PendingState, caller: bytes, account: bytes):
        if caller != self.admin:
            raise Unauthorized("Only the token admin can grant the minter role")
        state.set(self.MINTER_PREFIX + account, b'1')
        logger.info(f"Minter role granted to {account.hex()}")

    def revoke_minter(self, state: PendingState, caller: bytes, account: bytes):
        if caller != self.admin:
            raise Unauthorized("Only the token admin can revoke the minter role")
        state.delete(self.MINTER_PREFIX + account)
        logger.info(f"Minter role revoked from {account.hex()}")

    def _require_minter(self, state: PendingState, minter: bytes):
        if not self.is_minter(state, minter):
            raise Unauthorized(f"{minter.hex()} does not hold the minter role")

    # ------------------------------------------------------------------ #
    # Supply changes
    # ------------------------------------------------------------------ #
    def mint(self, state: PendingState, minter: bytes, to: bytes, amount: int):
        self._require_minter(state, minter)
        if amount < 0:
            raise InvalidAmount("Cannot mint a negative amount")
        if amount == 0:
            return
        self._set_balance(state, to, self.balance_of(state, to) + amount)
        supply = self.get_supply(state)
        supply.total_minted += amount
        state.set_record(self.SUPPLY_KEY, supply.to_dict())

    def burn(self, state: PendingState, minter: bytes, account: bytes, amount: int):
        self._require_minter(state, minter)
        if amount < 0:
            raise InvalidAmount("Cannot burn a negative amount")
        if amount == 0:
            return
        balance = self.balance_of(state, account)
        if balance < amount:
            raise InsufficientBalance(
                f"Insufficient QTX balance to burn: has {balance}, needs {amount}"
            )
        self._set_balance(state, account, balance - amount)
        supply = self.get_supply(state)
        supply.total_burned += amount
        state.set_record(self.SUPPLY_KEY, supply.to_dict())

    def transfer(self, state: PendingState, sender: bytes, recipient: bytes, amount: int):
        if amount < 0:
            raise InvalidAmount("Cannot transfer a negative amount")
        balance = self.balance_of(state, sender)
        if balance < amount:
            raise InsufficientBalance(
                f"Insufficient QTX balance: has {balance}, needs {amount}"
            )
        if amount == 0 or sender == recipient:
            return
        self._set_balance(state, sender, balance - amount)
        self._set_balance(state, recipient, self.balance_of(state, recipient) + amount)
