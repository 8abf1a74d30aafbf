"""
Successor side of vault migration.
"""
import logging

logger = logging.getLogger(__name__)


class MigrationTarget:
    """
    A successor that accepts migrated vaults.

    receive_migrated_vault returns True when it takes over the vault. Returning
    False or raising makes the migration fail.
    """

    address: bytes

    def receive_migrated_vault(self, owner: bytes, symbol: str,
                               collateral: int, debt: int) -> bool:
        raise NotImplementedError


class SuccessorRegistry(MigrationTarget):
    """Successor that keeps migrated positions in memory, keyed by (owner, symbol)."""

    def __init__(self, address: bytes, accepting: bool = True):
        self.address = address
        self.accepting = accepting
        self.vaults = {}

    def receive_migrated_vault(self, owner: bytes, symbol: str,
                               collateral: int, debt: int) -> bool:
        if not self.accepting:
            logger.info(f"Successor {self.address.hex()} declined vault of {owner.hex()}")
            return False
        collateral_total, debt_total = self.vaults.get((owner, symbol), (0, 0))
        self.vaults[(owner, symbol)] = (collateral_total + collateral, debt_total + debt)
        logger.info(
            f"Successor {self.address.hex()} received {symbol} vault of {owner.hex()}: "
            f"collateral={collateral}, debt={debt}"
        )
        return True
