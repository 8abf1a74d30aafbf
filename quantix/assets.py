"""
Balances of collateral assets (native coin and external tokens) per account.
"""
import logging
from typing import Callable

from quantix.collateral import Asset, NativeAsset
from quantix.errors import InvalidAmount, NativeTransferFailed, TransferFailed
from quantix.state import PendingState

logger = logging.getLogger(__name__)


class AssetBank:
    """
    Ledger of collateral asset holdings.

    Native transfers run the recipient's receive hook, if one is registered.
    A hook may call back into anything, including the collateral manager.
    """

    PREFIX = b'BALANCE:'

    def __init__(self):
        self.receivers = {}

    def _key(self, asset: Asset, account: bytes) -> bytes:
        return self.PREFIX + asset.key + b':' + account

    def register_receiver(self, account: bytes, hook: Callable):
        """hook(sender, amount) runs when `account` receives native funds."""
        self.receivers[account] = hook

    def remove_receiver(self, account: bytes):
        self.receivers.pop(account, None)

    def balance_of(self, state: PendingState, asset: Asset, account: bytes) -> int:
        raw = state.get(self._key(asset, account))
        return int(raw.decode()) if raw else 0

    def _set_balance(self, state: PendingState, asset: Asset, account: bytes, amount: int):
        key = self._key(asset, account)
        if amount == 0:
            state.delete(key)
        else:
            state.set(key, str(amount).encode())

    def credit(self, state: PendingState, asset: Asset, account: bytes, amount: int):
        """Mint balance out of thin air. Used for genesis funding only."""
        if amount < 0:
            raise InvalidAmount("Cannot credit a negative amount")
        self._set_balance(state, asset, account, self.balance_of(state, asset, account) + amount)

    def transfer(self, state: PendingState, asset: Asset, sender: bytes,
                 recipient: bytes, amount: int):
        native = isinstance(asset, NativeAsset)
        failure = NativeTransferFailed if native else TransferFailed

        if amount < 0:
            raise failure(f"Negative transfer amount {amount}")
        if amount == 0:
            return

        balance = self.balance_of(state, asset, sender)
        if balance < amount:
            raise failure(
                f"Insufficient {asset.key.decode()} balance: "
                f"has {balance}, needs {amount}"
            )

        self._set_balance(state, asset, sender, balance - amount)
        self._set_balance(
            state, asset, recipient,
            self.balance_of(state, asset, recipient) + amount,
        )

        if native:
            hook = self.receivers.get(recipient)
            if hook is not None:
                try:
                    hook(sender, amount)
                except Exception as e:
                    logger.warning(f"Receive hook of {recipient.hex()} rejected {amount}: {e}")
                    raise NativeTransferFailed(f"Recipient rejected native transfer: {e}") from e
