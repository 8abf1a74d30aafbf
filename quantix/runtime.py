"""
Single-threaded host that authenticates signed transactions and applies
them to the collateral manager one at a time.
"""
import time
import logging
from dataclasses import dataclass, field
from typing import Optional

from quantix.assets import AssetBank
from quantix.circuit_breaker import BreakerLimits
from quantix.collateral import Asset, asset_from_dict
from quantix.config import Config
from quantix.db import DB
from quantix.errors import ValidationError
from quantix.manager import Caller, CollateralManager
from quantix.monitoring import Monitor
from quantix.oracle import OracleAdapter
from quantix.state import PendingState
from quantix.token import StableToken
from quantix.transaction import Transaction

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class Receipt:
    tx_id: bytes
    success: bool
    error: Optional[str] = None
    events: list = field(default_factory=list)


def _address(value: Optional[str]) -> Optional[bytes]:
    return bytes.fromhex(value) if value else None


def _flag(value) -> bool:
    """Accept a bool or the strings "true" / "false"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValueError(f"Expected a boolean flag, got {value!r}")


class Runtime:
    NONCE_PREFIX = b'NONCE:'

    def __init__(self, db: DB, manager: CollateralManager, token: StableToken,
                 bank: AssetBank, chain_id: int = 1, monitor: Monitor = None):
        self.db = db
        self.manager = manager
        self.token = token
        self.bank = bank
        self.chain_id = chain_id
        self.monitor = monitor
        self.block_number = 0
        self.timestamp = 0
        self._events = []
        manager.subscribe(self._events.append)

        self.handlers = {
            'DEPOSIT_AND_MINT': self._deposit_and_mint,
            'BURN_AND_WITHDRAW': self._burn_and_withdraw,
            'LIQUIDATE': self._liquidate,
            'MIGRATE_VAULT': self._migrate_vault,
            'TRANSFER_QTX': self._transfer_qtx,
            'ADD_COLLATERAL_TYPE': self._add_collateral_type,
            'UPDATE_COLLATERAL_TYPE': self._update_collateral_type,
            'DISABLE_COLLATERAL_TYPE': self._disable_collateral_type,
            'SET_CIRCUIT_BREAKER': self._set_circuit_breaker,
            'SET_RESERVE': self._set_reserve,
            'SET_MIGRATION_CONTRACT': self._set_migration_contract,
            'PAUSE': lambda caller, data: self.manager.pause(caller),
            'UNPAUSE': lambda caller, data: self.manager.unpause(caller),
            'EMERGENCY_WITHDRAW': self._emergency_withdraw,
            'TRANSFER_OWNERSHIP': self._transfer_ownership,
        }

    @classmethod
    def from_config(cls, config: Config, owner: bytes,
                    oracle: OracleAdapter = None) -> 'Runtime':
        """Open the database and wire token, asset bank, oracle and manager."""
        db = DB(
            config.database.path,
            write_buffer_size=config.database.write_buffer_size,
            max_open_files=config.database.max_open_files,
        )
        oracle = oracle or OracleAdapter()
        oracle.max_age = config.manager.oracle_max_age

        bank = AssetBank()
        token = StableToken(admin=owner)
        cb = config.circuit_breaker
        limits = BreakerLimits(cb.max_single_withdrawal, cb.max_single_mint,
                               cb.max_block_withdrawal, cb.max_block_mint,
                               cb.max_price_drop)
        manager = CollateralManager(db, token, bank, oracle, owner,
                                    config=config.manager, breaker_limits=limits)

        state = PendingState(db)
        if not token.is_minter(state, manager.address):
            token.grant_minter(state, owner, manager.address)
            state.commit()

        monitor = None
        if config.monitoring.enabled:
            monitor = Monitor(manager, config.monitoring.host, config.monitoring.port)
            monitor.start_server()

        return cls(db, manager, token, bank, chain_id=config.chain_id, monitor=monitor)

    def close(self):
        if self.monitor:
            self.monitor.stop_server()
        self.db.close()

    # ------------------------------------------------------------------ #
    # Host state
    # ------------------------------------------------------------------ #
    def start_block(self, timestamp: int = None) -> int:
        self.block_number += 1
        self.timestamp = int(time.time()) if timestamp is None else timestamp
        self.manager.set_block(self.block_number, self.timestamp)
        if self.monitor:
            self.monitor.update()
        return self.block_number

    def fund(self, asset: Asset, account: bytes, amount: int):
        """Credit a genesis balance of a collateral asset."""
        state = PendingState(self.db)
        self.bank.credit(state, asset, account, amount)
        state.commit()

    def get_nonce(self, address: bytes) -> int:
        raw = self.db.get(self.NONCE_PREFIX + address)
        return int(raw.decode()) if raw else 0

    def _bump_nonce(self, address: bytes):
        self.db.put(self.NONCE_PREFIX + address, str(self.get_nonce(address) + 1).encode())

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def submit(self, tx: Transaction) -> Receipt:
        """
        Apply a signed transaction.

        A transaction that passes authentication always consumes its nonce;
        if the operation itself fails, none of its effects persist.
        """
        start = time.time()
        tx_id = tx.id

        valid, reason = tx.validate_basic()
        if not valid:
            return self._reject(tx, tx_id, reason, start)
        if tx.chain_id != self.chain_id:
            return self._reject(
                tx, tx_id, f"Wrong chain ID. Expected {self.chain_id}, got {tx.chain_id}", start
            )

        if self.db.held:
            return self._reject(
                tx, tx_id, "ReentrantCall: a manager operation is in progress", start
            )

        sender = tx.sender
        expected = self.get_nonce(sender)
        if tx.nonce != expected:
            return self._reject(
                tx, tx_id, f"Invalid nonce. Expected {expected}, got {tx.nonce}", start
            )

        self._bump_nonce(sender)
        self._events.clear()
        caller = Caller(sender, tx.value)

        try:
            self.handlers[tx.tx_type](caller, tx.data)
        except ValidationError as e:
            logger.warning(f"{tx.tx_type} from {sender.hex()} failed: {type(e).__name__}: {e}")
            return self._reject(tx, tx_id, f"{type(e).__name__}: {e}", start)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"{tx.tx_type} from {sender.hex()} has malformed data: {e}")
            return self._reject(tx, tx_id, f"Malformed transaction data: {e}", start)

        events = list(self._events)
        self._events.clear()
        if self.monitor:
            self.monitor.record_tx(tx.tx_type, 'success', time.time() - start)
        return Receipt(tx_id, True, events=events)

    def _reject(self, tx: Transaction, tx_id: bytes, reason: str, start: float) -> Receipt:
        if self.monitor:
            self.monitor.record_tx(tx.tx_type, 'failed', time.time() - start)
        return Receipt(tx_id, False, error=reason)

    def _deposit_and_mint(self, caller: Caller, data: dict):
        self.manager.deposit_and_mint(caller, data['symbol'], int(data['deposit']), int(data['mint']))

    def _burn_and_withdraw(self, caller: Caller, data: dict):
        self.manager.burn_and_withdraw(caller, data['symbol'], int(data['burn']), int(data['withdraw']))

    def _liquidate(self, caller: Caller, data: dict):
        self.manager.liquidate(caller, data['symbol'], _address(data['target']))

    def _migrate_vault(self, caller: Caller, data: dict):
        self.manager.migrate_vault(caller, data['symbol'])

    def _transfer_qtx(self, caller: Caller, data: dict):
        state = PendingState(self.db)
        self.token.transfer(state, caller.address, _address(data['to']), int(data['amount']))
        state.commit()

    def _add_collateral_type(self, caller: Caller, data: dict):
        self.manager.add_collateral_type(
            caller, data['symbol'], asset_from_dict(data['asset']), data['oracle'],
            int(data['min_ratio']), int(data['decimals']),
            int(data['penalty']), int(data['fee']),
        )

    def _update_collateral_type(self, caller: Caller, data: dict):
        self.manager.update_collateral_type(
            caller, data['symbol'], int(data['min_ratio']), _flag(data['enabled']),
            int(data['penalty']), int(data['fee']),
        )

    def _disable_collateral_type(self, caller: Caller, data: dict):
        self.manager.disable_collateral_type(caller, data['symbol'])

    def _set_circuit_breaker(self, caller: Caller, data: dict):
        self.manager.set_circuit_breaker_params(
            caller,
            int(data['max_single_withdrawal']), int(data['max_single_mint']),
            int(data['max_block_withdrawal']), int(data['max_block_mint']),
            int(data['max_price_drop']),
        )

    def _set_reserve(self, caller: Caller, data: dict):
        self.manager.set_reserve(caller, _address(data['reserve']))

    def _set_migration_contract(self, caller: Caller, data: dict):
        self.manager.set_migration_contract(caller, _address(data['target']), _flag(data['enabled']))

    def _emergency_withdraw(self, caller: Caller, data: dict):
        self.manager.emergency_withdraw(caller, _address(data['to']), data['symbol'])

    def _transfer_ownership(self, caller: Caller, data: dict):
        self.manager.transfer_ownership(caller, _address(data['new_owner']))
