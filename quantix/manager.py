"""
Collateral manager: vault issuance, liquidation, migration and the owner
controls around them.

Every state-changing entry point runs inside `_operation`: a reentrancy
guard plus a PendingState that is committed only if the entry point returns
normally. The ledger is held for the duration, so code called out to mid-way
(receive hooks, successors) cannot write around the operation. Events are
published to listeners after the commit.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Optional

from quantix.assets import AssetBank
from quantix.circuit_breaker import BreakerLimits, CircuitBreakerStore
from quantix.collateral import RATIO_BASE, Asset, CollateralRegistry, CollateralType
from quantix.config import ManagerConfig
from quantix.db import DB
from quantix.errors import (
    BurnExceedsDebt,
    EmptyVault,
    InsufficientCollateral,
    InvalidAmount,
    InvalidParameter,
    MigrationDisabled,
    MigrationFailed,
    NotHalted,
    ReentrantCall,
    ReserveNotSet,
    SystemHalted,
    Unauthorized,
    VaultIsSafe,
    WithdrawExceedsCollateral,
    WouldBeUndercollateralized,
)
from quantix.migration import MigrationTarget
from quantix.oracle import OracleAdapter
from quantix.state import PendingState
from quantix.token import StableToken
from quantix.twap import TWAPAggregator
from quantix.vault import (
    MAX_RATIO,
    Vault,
    VaultLedger,
    collateral_ratio,
    collateral_value,
    is_safe,
)

logger = logging.getLogger(__name__)

MANAGER_ADDRESS = b'\x00' * 19 + b'\x20'


@dataclass(frozen=True)
class Caller:
    """Authenticated caller of an entry point and the native funds sent with the call."""
    address: bytes
    value: int = 0


@dataclass
class Event:
    name: str
    args: dict = field(default_factory=dict)

    def __getitem__(self, key):
        return self.args[key]


class ManagerSettings:
    """Owner, reserve, halt flag and migration target."""

    def __init__(self, data: dict):
        self.owner = data['owner']
        self.reserve = data.get('reserve')
        self.paused = data.get('paused', False)
        self.migration_enabled = data.get('migration_enabled', False)
        self.migration_target = data.get('migration_target')

    def to_dict(self) -> dict:
        return {
            'owner': self.owner,
            'reserve': self.reserve,
            'paused': self.paused,
            'migration_enabled': self.migration_enabled,
            'migration_target': self.migration_target,
        }


class _Operation:
    def __init__(self, state: PendingState, settings: ManagerSettings):
        self.state = state
        self.settings = settings
        self.events = []

    def emit(self, name: str, **args):
        self.events.append(Event(name, args))


class CollateralManager:
    SETTINGS_KEY = b'MANAGER_SETTINGS'

    def __init__(self, db: DB, token: StableToken, bank: AssetBank,
                 oracle: OracleAdapter, owner: bytes,
                 config: ManagerConfig = None,
                 breaker_limits: BreakerLimits = None,
                 address: bytes = MANAGER_ADDRESS):
        self.db = db
        self.token = token
        self.bank = bank
        self.oracle = oracle
        self.address = address
        self.config = config or ManagerConfig()

        self.registry = CollateralRegistry()
        self.vaults = VaultLedger()
        self.twap = TWAPAggregator(self.config.twap_window)
        self.breakers = CircuitBreakerStore(breaker_limits)

        self.block_number = 0
        self.timestamp = 0
        self.listeners = []
        self.successors = {}
        self._entered = False

        state = PendingState(db)
        if state.get_record(self.SETTINGS_KEY) is None:
            state.set_record(self.SETTINGS_KEY, ManagerSettings({'owner': owner}).to_dict())
            state.commit()
            logger.info(f"Collateral manager initialized, owner {owner.hex()}")

    # ------------------------------------------------------------------ #
    # Plumbing
    # ------------------------------------------------------------------ #
    def set_block(self, number: int, timestamp: int):
        self.block_number = number
        self.timestamp = timestamp

    def subscribe(self, listener: Callable[[Event], None]):
        self.listeners.append(listener)

    def register_successor(self, target: MigrationTarget):
        self.successors[target.address] = target

    def _settings(self, state: PendingState) -> ManagerSettings:
        return ManagerSettings(state.get_record(self.SETTINGS_KEY))

    def _save_settings(self, state: PendingState, settings: ManagerSettings):
        state.set_record(self.SETTINGS_KEY, settings.to_dict())

    @contextmanager
    def _operation(self, name: str):
        if self._entered:
            raise ReentrantCall(f"Reentrant call to {name}")
        self._entered = True
        state = PendingState(self.db)
        op = _Operation(state, self._settings(state))
        try:
            with self.db.hold(state):
                yield op
                state.commit()
        except Exception as e:
            state.discard()
            logger.debug(f"{name} rolled back: {e}")
            raise
        finally:
            self._entered = False

        for event in op.events:
            self._publish(event)

    def _publish(self, event: Event):
        for listener in self.listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener failed on {event.name}: {e}")

    @contextmanager
    def _user_operation(self, name: str, caller: Caller, payable: bool = False):
        with self._operation(name) as op:
            if op.settings.paused:
                raise SystemHalted(f"{name} rejected: system is halted")
            if not payable and caller.value != 0:
                raise InvalidAmount(f"{name} does not accept native funds")
            yield op

    @contextmanager
    def _owner_operation(self, name: str, caller: Caller):
        with self._operation(name) as op:
            if caller.address != op.settings.owner:
                raise Unauthorized(f"{name} is restricted to the owner")
            if caller.value != 0:
                raise InvalidAmount(f"{name} does not accept native funds")
            yield op

    def _require_reserve(self, op: _Operation) -> bytes:
        if op.settings.reserve is None:
            raise ReserveNotSet("No reserve account registered")
        return op.settings.reserve

    def _refresh_price(self, op: _Operation, ctype: CollateralType) -> tuple[int, int]:
        """Read the oracle, record the observation and return (price, twap)."""
        price = self.oracle.get_price(ctype.oracle, now=self.timestamp)
        twap = self.twap.update(op.state, ctype.symbol, price)
        return price, twap

    def _run_breaker(self, op: _Operation, symbol: str, withdrawal_value: int,
                     mint_amount: int, price: int):
        cb = self.breakers.get(op.state)
        reasons = cb.check(
            self.registry.symbols(op.state), symbol, self.block_number,
            withdrawal_value, mint_amount, price,
        )
        self.breakers.put(op.state, cb)
        if reasons:
            op.settings.paused = True
            self._save_settings(op.state, op.settings)
            for reason in reasons:
                op.emit('CircuitBreakerTriggered', symbol=symbol, reason=reason)

    def _notify_health(self, op: _Operation, vault: Vault, ctype: CollateralType, twap: int):
        if vault.debt == 0:
            return
        ratio = vault.ratio(twap, ctype.decimals)
        safe = ratio >= ctype.min_ratio
        op.emit('VaultHealthChanged', owner=vault.owner, symbol=vault.symbol,
                ratio=ratio, is_safe=safe)
        if safe and ratio < ctype.min_ratio + self.config.health_warning_margin:
            op.emit('VaultNearLiquidation', owner=vault.owner, symbol=vault.symbol,
                    ratio=ratio, min_ratio=ctype.min_ratio)
        logger.debug(f"{vault} ratio={ratio} safe={safe}")

    # ------------------------------------------------------------------ #
    # User operations
    # ------------------------------------------------------------------ #
    def deposit_and_mint(self, caller: Caller, symbol: str,
                         deposit_amount: int, mint_amount: int):
        with self._user_operation('deposit_and_mint', caller, payable=True) as op:
            if deposit_amount < 0 or mint_amount < 0:
                raise InvalidAmount("Amounts must be non-negative")
            ctype = self.registry.require_enabled(op.state, symbol)

            if ctype.is_native:
                if caller.value != deposit_amount or deposit_amount == 0:
                    raise InvalidAmount(
                        f"Native deposit must be nonzero and match the funds sent "
                        f"(sent {caller.value}, deposit {deposit_amount})"
                    )
            elif caller.value != 0:
                raise InvalidAmount("Native funds sent with an external-asset deposit")
            self.bank.transfer(op.state, ctype.asset, caller.address, self.address, deposit_amount)

            vault = self.vaults.get(op.state, symbol, caller.address)
            vault.collateral += deposit_amount
            if deposit_amount > 0:
                op.emit('CollateralDeposited', owner=caller.address, symbol=symbol,
                        amount=deposit_amount)

            price, twap = self._refresh_price(op, ctype)

            if mint_amount > 0:
                projected_debt = vault.debt + mint_amount
                ratio = collateral_ratio(vault.collateral, projected_debt, twap, ctype.decimals)
                if ratio < ctype.min_ratio:
                    raise InsufficientCollateral(
                        f"Minting {mint_amount} would leave ratio {ratio}% "
                        f"(min: {ctype.min_ratio}%)"
                    )

                fee = mint_amount * ctype.protocol_fee // RATIO_BASE
                if fee > 0:
                    reserve = self._require_reserve(op)
                    self.token.mint(op.state, self.address, reserve, fee)

                vault.debt = projected_debt
                self.token.mint(op.state, self.address, caller.address, mint_amount - fee)
                op.emit('StableMinted', owner=caller.address, symbol=symbol,
                        amount=mint_amount, fee=fee)

            self.vaults.put(op.state, vault)
            self._run_breaker(op, symbol, 0, mint_amount, price)
            self._notify_health(op, vault, ctype, twap)

    def burn_and_withdraw(self, caller: Caller, symbol: str,
                          burn_amount: int, withdraw_amount: int):
        with self._user_operation('burn_and_withdraw', caller) as op:
            if burn_amount < 0 or withdraw_amount < 0:
                raise InvalidAmount("Amounts must be non-negative")
            ctype = self.registry.require_enabled(op.state, symbol)
            vault = self.vaults.get(op.state, symbol, caller.address)

            if burn_amount > vault.debt:
                raise BurnExceedsDebt(f"Burn {burn_amount} exceeds debt {vault.debt}")
            if withdraw_amount > vault.collateral:
                raise WithdrawExceedsCollateral(
                    f"Withdraw {withdraw_amount} exceeds collateral {vault.collateral}"
                )

            if burn_amount > 0:
                self.token.burn(op.state, self.address, caller.address, burn_amount)
                vault.debt -= burn_amount
                op.emit('StableBurned', owner=caller.address, symbol=symbol, amount=burn_amount)

            price, twap = self._refresh_price(op, ctype)

            if withdraw_amount > 0:
                remaining = vault.collateral - withdraw_amount
                if not is_safe(remaining, vault.debt, twap, ctype.decimals, ctype.min_ratio):
                    raise WouldBeUndercollateralized(
                        f"Withdrawing {withdraw_amount} would leave the vault below "
                        f"{ctype.min_ratio}%"
                    )
                vault.collateral = remaining
                self.vaults.put(op.state, vault)

                value = collateral_value(withdraw_amount, price, ctype.decimals)
                self._run_breaker(op, symbol, value, 0, price)
                self.bank.transfer(op.state, ctype.asset, self.address, caller.address,
                                   withdraw_amount)
                op.emit('CollateralWithdrawn', owner=caller.address, symbol=symbol,
                        amount=withdraw_amount)

            self.vaults.put(op.state, vault)
            self._notify_health(op, vault, ctype, twap)

    def liquidate(self, caller: Caller, symbol: str, target: bytes):
        """Seize an unsafe vault. The liquidator pays off its whole debt."""
        with self._user_operation('liquidate', caller) as op:
            ctype = self.registry.require_enabled(op.state, symbol)
            price, twap = self._refresh_price(op, ctype)

            vault = self.vaults.get(op.state, symbol, target)
            if vault.is_safe(twap, ctype.decimals, ctype.min_ratio):
                raise VaultIsSafe(f"Vault of {target.hex()} is not liquidatable")

            collateral, debt = vault.collateral, vault.debt
            vault.clear()
            self.vaults.put(op.state, vault)

            self.token.burn(op.state, self.address, caller.address, debt)

            reward = collateral * ctype.liquidation_penalty // RATIO_BASE
            to_reserve = collateral - reward
            self.bank.transfer(op.state, ctype.asset, self.address, caller.address, reward)
            if to_reserve > 0:
                reserve = self._require_reserve(op)
                self.bank.transfer(op.state, ctype.asset, self.address, reserve, to_reserve)

            op.emit('VaultLiquidated', owner=target, liquidator=caller.address,
                    symbol=symbol, collateral=collateral, debt=debt,
                    reward=reward, to_reserve=to_reserve)
            self._run_breaker(op, symbol, 0, 0, price)
            logger.info(
                f"Liquidated {symbol} vault of {target.hex()}: collateral={collateral}, "
                f"debt={debt}, reward={reward}, reserve={to_reserve}"
            )

    def migrate_vault(self, caller: Caller, symbol: str):
        with self._user_operation('migrate_vault', caller) as op:
            settings = op.settings
            if not settings.migration_enabled or settings.migration_target is None:
                raise MigrationDisabled("Vault migration is not enabled")

            vault = self.vaults.get(op.state, symbol, caller.address)
            if vault.is_empty:
                raise EmptyVault(f"No {symbol} vault to migrate")

            successor = self.successors.get(settings.migration_target)
            if successor is None:
                raise MigrationFailed(
                    f"Successor {settings.migration_target.hex()} is not reachable"
                )

            collateral, debt = vault.collateral, vault.debt
            try:
                accepted = successor.receive_migrated_vault(caller.address, symbol, collateral, debt)
            except Exception as e:
                raise MigrationFailed(f"Successor rejected vault: {e}") from e
            if not accepted:
                raise MigrationFailed("Successor rejected vault")

            vault.clear()
            self.vaults.put(op.state, vault)
            op.emit('VaultMigrated', owner=caller.address, symbol=symbol,
                    collateral=collateral, debt=debt, target=settings.migration_target)

    # ------------------------------------------------------------------ #
    # Owner operations
    # ------------------------------------------------------------------ #
    def add_collateral_type(self, caller: Caller, symbol: str, asset: Asset, oracle: str,
                            min_ratio: int, decimals: int, penalty: int, fee: int):
        with self._owner_operation('add_collateral_type', caller) as op:
            self.registry.add(op.state, symbol, asset, oracle, min_ratio, decimals, penalty, fee)
            op.emit('CollateralTypeAdded', symbol=symbol, asset=asset.to_dict(), oracle=oracle,
                    min_ratio=min_ratio, decimals=decimals, penalty=penalty, fee=fee)
            logger.info(f"Collateral type {symbol} added (min ratio {min_ratio}%)")

    def update_collateral_type(self, caller: Caller, symbol: str, min_ratio: int,
                               enabled: bool, penalty: int, fee: int):
        with self._owner_operation('update_collateral_type', caller) as op:
            self.registry.update(op.state, symbol, min_ratio, enabled, penalty, fee)
            op.emit('ProtocolParameterChanged', parameter='collateral_type', symbol=symbol,
                    min_ratio=min_ratio, enabled=enabled, penalty=penalty, fee=fee)
            logger.info(f"Collateral type {symbol} updated")

    def disable_collateral_type(self, caller: Caller, symbol: str):
        with self._owner_operation('disable_collateral_type', caller) as op:
            self.registry.disable(op.state, symbol)
            op.emit('CollateralTypeDisabled', symbol=symbol)
            logger.info(f"Collateral type {symbol} disabled")

    def set_circuit_breaker_params(self, caller: Caller, max_single_withdrawal: int,
                                   max_single_mint: int, max_block_withdrawal: int,
                                   max_block_mint: int, max_price_drop: int):
        values = (max_single_withdrawal, max_single_mint,
                  max_block_withdrawal, max_block_mint, max_price_drop)
        limits = BreakerLimits(*values)
        with self._owner_operation('set_circuit_breaker_params', caller) as op:
            if any(v < 0 for v in values):
                raise InvalidParameter("Circuit breaker thresholds must be non-negative")
            cb = self.breakers.get(op.state)
            cb.limits = limits
            self.breakers.put(op.state, cb)
            op.emit('ProtocolParameterChanged', parameter='circuit_breaker',
                    max_single_withdrawal=max_single_withdrawal,
                    max_single_mint=max_single_mint,
                    max_block_withdrawal=max_block_withdrawal,
                    max_block_mint=max_block_mint,
                    max_price_drop=max_price_drop)
            logger.info(f"Circuit breaker limits set: {limits}")

    def set_reserve(self, caller: Caller, reserve: bytes):
        with self._owner_operation('set_reserve', caller) as op:
            previous = op.settings.reserve
            op.settings.reserve = reserve
            self._save_settings(op.state, op.settings)
            op.emit('ReserveChanged', previous=previous, reserve=reserve)

    def set_migration_contract(self, caller: Caller, target: Optional[bytes], enabled: bool):
        with self._owner_operation('set_migration_contract', caller) as op:
            op.settings.migration_target = target
            op.settings.migration_enabled = enabled
            self._save_settings(op.state, op.settings)
            op.emit('MigrationContractSet', target=target, enabled=enabled)
            logger.info(f"Migration target set to {target.hex() if target else None} "
                        f"(enabled={enabled})")

    def pause(self, caller: Caller):
        with self._owner_operation('pause', caller) as op:
            if op.settings.paused:
                raise SystemHalted("System is already halted")
            op.settings.paused = True
            self._save_settings(op.state, op.settings)
            op.emit('Paused', by=caller.address)
            logger.info("System paused by owner")

    def unpause(self, caller: Caller):
        with self._owner_operation('unpause', caller) as op:
            if not op.settings.paused:
                raise NotHalted("System is not halted")
            op.settings.paused = False
            self._save_settings(op.state, op.settings)
            op.emit('Unpaused', by=caller.address)
            logger.info("System resumed by owner")

    def emergency_withdraw(self, caller: Caller, to: bytes, symbol: str):
        """Move the manager's whole holding of a symbol's asset while halted."""
        with self._owner_operation('emergency_withdraw', caller) as op:
            if not op.settings.paused:
                raise NotHalted("Emergency withdrawal requires the halted state")
            ctype = self.registry.require(op.state, symbol)
            amount = self.bank.balance_of(op.state, ctype.asset, self.address)
            self.bank.transfer(op.state, ctype.asset, self.address, to, amount)
            op.emit('EmergencyWithdraw', to=to, symbol=symbol, amount=amount)
            logger.warning(f"Emergency withdrawal of {amount} {symbol} to {to.hex()}")

    def transfer_ownership(self, caller: Caller, new_owner: bytes):
        with self._owner_operation('transfer_ownership', caller) as op:
            previous = op.settings.owner
            op.settings.owner = new_owner
            self._save_settings(op.state, op.settings)
            op.emit('OwnershipTransferred', previous=previous, owner=new_owner)
            logger.info(f"Ownership transferred from {previous.hex()} to {new_owner.hex()}")

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def _view(self) -> PendingState:
        return PendingState(self.db)

    def get_vault(self, owner: bytes, symbol: str) -> Vault:
        return self.vaults.get(self._view(), symbol, owner)

    def vault_health(self, owner: bytes, symbol: str) -> tuple[int, bool]:
        """(ratio, is_safe) at the stored TWAP. Debt-free vaults report MAX_RATIO."""
        state = self._view()
        ctype = self.registry.require(state, symbol)
        vault = self.vaults.get(state, symbol, owner)
        if vault.debt == 0:
            return MAX_RATIO, True
        twap = self.twap.read(state, symbol)
        ratio = vault.ratio(twap, ctype.decimals)
        return ratio, ratio >= ctype.min_ratio

    def max_mintable(self, owner: bytes, symbol: str) -> int:
        """Largest gross mint that keeps the vault at its minimum ratio at the stored TWAP."""
        state = self._view()
        ctype = self.registry.require(state, symbol)
        vault = self.vaults.get(state, symbol, owner)
        twap = self.twap.read(state, symbol)
        ceiling = (vault.collateral * twap * RATIO_BASE) // (ctype.min_ratio * ctype.unit)
        return max(0, ceiling - vault.debt)

    def get_twap(self, symbol: str) -> int:
        return self.twap.read(self._view(), symbol)

    def get_collateral_type(self, symbol: str) -> Optional[CollateralType]:
        return self.registry.get(self._view(), symbol)

    def collateral_symbols(self) -> list:
        return self.registry.symbols(self._view())

    def circuit_breaker_limits(self) -> BreakerLimits:
        return self.breakers.get(self._view()).limits

    def is_paused(self) -> bool:
        return self._settings(self._view()).paused

    def owner(self) -> bytes:
        return self._settings(self._view()).owner

    def reserve(self) -> Optional[bytes]:
        return self._settings(self._view()).reserve
