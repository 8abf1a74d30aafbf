# quantix/test_manager.py
import shutil
import tempfile

import pytest

from quantix.assets import AssetBank
from quantix.collateral import ExternalAsset, NativeAsset
from quantix.conftest import ETH, QTX, OWNER, RESERVE, USER, USER2, feed_price
from quantix.db import DB
from quantix.errors import (
    BurnExceedsDebt,
    CollateralDisabled,
    InsufficientBalance,
    InsufficientCollateral,
    InvalidAmount,
    NativeTransferFailed,
    ReserveNotSet,
    SystemHalted,
    TransferFailed,
    UnknownCollateral,
    WithdrawExceedsCollateral,
    WouldBeUndercollateralized,
)
from quantix.manager import Caller, CollateralManager
from quantix.oracle import OracleAdapter, StaticPriceFeed
from quantix.state import PendingState
from quantix.token import StableToken
from quantix.vault import MAX_RATIO

WBTC = ExternalAsset('WBTC')
PRICE_UNIT = 10 ** 18


def open_vault(system, mint=1000 * QTX):
    system.manager.deposit_and_mint(Caller(USER, ETH), 'ETH', ETH, mint)


# ---------------------------------------------------------------------- #
# deposit_and_mint
# ---------------------------------------------------------------------- #
def test_deposit_and_mint_end_to_end(system):
    open_vault(system)

    vault = system.manager.get_vault(USER, 'ETH')
    assert vault.collateral == ETH
    assert vault.debt == 1000 * QTX
    assert system.qtx_balance(USER) == 990 * QTX
    assert system.qtx_balance(RESERVE) == 10 * QTX
    assert system.eth_balance(USER) == 99 * ETH
    assert system.eth_balance(system.manager.address) == ETH
    assert system.manager.vault_health(USER, 'ETH') == (200, True)
    assert system.token.total_supply(PendingState(system.db)) == 1000 * QTX

    names = [e.name for e in system.events]
    assert names == ['CollateralDeposited', 'StableMinted', 'VaultHealthChanged']
    minted = system.named('StableMinted')[0]
    assert minted['amount'] == 1000 * QTX
    assert minted['fee'] == 10 * QTX
    assert system.named('VaultHealthChanged')[0]['ratio'] == 200


def test_fee_is_carved_out_of_minted_amount(system):
    mint = 777 * QTX + 13
    open_vault(system, mint)

    fee = mint * 1 // 100
    assert system.qtx_balance(USER) == mint - fee
    assert system.qtx_balance(RESERVE) == fee
    assert system.manager.get_vault(USER, 'ETH').debt == mint


def test_mint_above_ratio_rolls_back_deposit(system):
    with pytest.raises(InsufficientCollateral):
        open_vault(system, 1400 * QTX)

    assert system.manager.get_vault(USER, 'ETH').is_empty
    assert system.eth_balance(USER) == 100 * ETH
    assert system.qtx_balance(USER) == 0
    assert system.manager.get_twap('ETH') == 0
    assert system.events == []


def test_mint_at_minimum_ratio_warns_near_liquidation(system):
    open_vault(system, 1300 * QTX)

    health = system.named('VaultHealthChanged')[0]
    assert health['ratio'] == 153
    assert health['is_safe'] is True
    warning = system.named('VaultNearLiquidation')
    assert len(warning) == 1
    assert warning[0]['min_ratio'] == 150


def test_healthy_vault_gets_no_warning(system):
    open_vault(system)
    assert system.named('VaultNearLiquidation') == []


def test_native_deposit_must_match_funds(system):
    with pytest.raises(InvalidAmount):
        system.manager.deposit_and_mint(Caller(USER, ETH // 2), 'ETH', ETH, 0)
    with pytest.raises(InvalidAmount):
        system.manager.deposit_and_mint(Caller(USER, 0), 'ETH', 0, 0)


def test_native_deposit_beyond_balance_fails(system):
    with pytest.raises(NativeTransferFailed):
        system.manager.deposit_and_mint(Caller(USER, 101 * ETH), 'ETH', 101 * ETH, 0)


def test_external_collateral_deposit(system):
    system.manager.deposit_and_mint(Caller(USER), 'WBTC', 10 ** 8, 20000 * QTX)

    vault = system.manager.get_vault(USER, 'WBTC')
    assert vault.collateral == 10 ** 8
    assert vault.debt == 20000 * QTX
    assert system.qtx_balance(USER) == 20000 * QTX  # zero fee
    assert system.asset_balance(WBTC, USER) == 9 * 10 ** 8
    assert system.manager.vault_health(USER, 'WBTC') == (150, True)


def test_external_deposit_rejects_native_funds(system):
    with pytest.raises(InvalidAmount):
        system.manager.deposit_and_mint(Caller(USER, ETH), 'WBTC', 10 ** 8, 0)


def test_external_deposit_transfer_failure(system):
    with pytest.raises(TransferFailed):
        system.manager.deposit_and_mint(Caller(USER), 'WBTC', 11 * 10 ** 8, 0)
    assert system.asset_balance(WBTC, USER) == 10 * 10 ** 8


def test_negative_amounts_rejected(system):
    with pytest.raises(InvalidAmount):
        system.manager.deposit_and_mint(Caller(USER), 'WBTC', 10 ** 8, -1)
    with pytest.raises(InvalidAmount):
        system.manager.burn_and_withdraw(Caller(USER), 'ETH', -1, 0)


def test_unknown_and_disabled_collateral(system):
    with pytest.raises(UnknownCollateral):
        system.manager.deposit_and_mint(Caller(USER, ETH), 'DOGE', ETH, 0)

    system.manager.disable_collateral_type(system.owner, 'ETH')
    with pytest.raises(CollateralDisabled):
        open_vault(system)
    with pytest.raises(CollateralDisabled):
        system.manager.burn_and_withdraw(Caller(USER), 'ETH', 0, 0)


def test_price_history_survives_disable_and_readd(system):
    system.manager.deposit_and_mint(Caller(USER, ETH), 'ETH', ETH, 0)
    system.set_eth_price(1000)
    system.manager.deposit_and_mint(Caller(USER2, ETH), 'ETH', ETH, 0)
    assert system.manager.get_twap('ETH') == 1500 * PRICE_UNIT

    system.manager.disable_collateral_type(system.owner, 'ETH')
    system.manager.add_collateral_type(system.owner, 'ETH', NativeAsset(), 'ETH/USD',
                                       150, 18, 10, 1)

    assert system.manager.get_twap('ETH') == 1500 * PRICE_UNIT
    history = system.manager.twap.get_history(PendingState(system.db), 'ETH')
    assert history.count == 2

    system.manager.deposit_and_mint(Caller(USER, ETH), 'ETH', ETH, 0)
    assert system.manager.get_twap('ETH') == 4000 * PRICE_UNIT // 3
    assert system.manager.twap.get_history(PendingState(system.db), 'ETH').count == 3


def test_paused_system_rejects_deposits(system):
    system.manager.pause(system.owner)
    with pytest.raises(SystemHalted):
        open_vault(system)


def test_missing_reserve_blocks_fee_bearing_mint():
    dir_ = tempfile.mkdtemp()
    db = DB(dir_)
    try:
        token = StableToken(admin=OWNER)
        bank = AssetBank()
        oracle = OracleAdapter({'ETH/USD': StaticPriceFeed(feed_price(2000))})
        manager = CollateralManager(db, token, bank, oracle, OWNER)
        state = PendingState(db)
        token.grant_minter(state, OWNER, manager.address)
        bank.credit(state, NativeAsset(), USER, ETH)
        state.commit()
        manager.add_collateral_type(Caller(OWNER), 'ETH', NativeAsset(), 'ETH/USD', 150, 18, 10, 1)

        with pytest.raises(ReserveNotSet):
            manager.deposit_and_mint(Caller(USER, ETH), 'ETH', ETH, 1000 * QTX)
        assert manager.reserve() is None
    finally:
        db.close()
        shutil.rmtree(dir_)


# ---------------------------------------------------------------------- #
# burn_and_withdraw
# ---------------------------------------------------------------------- #
def test_burn_and_withdraw(system):
    open_vault(system)
    system.events.clear()

    system.manager.burn_and_withdraw(Caller(USER), 'ETH', 500 * QTX, ETH // 2)

    vault = system.manager.get_vault(USER, 'ETH')
    assert vault.debt == 500 * QTX
    assert vault.collateral == ETH // 2
    assert system.qtx_balance(USER) == 490 * QTX
    assert system.eth_balance(USER) == 99 * ETH + ETH // 2
    names = [e.name for e in system.events]
    assert names == ['StableBurned', 'CollateralWithdrawn', 'VaultHealthChanged']


def test_burn_exceeding_debt(system):
    open_vault(system)
    with pytest.raises(BurnExceedsDebt):
        system.manager.burn_and_withdraw(Caller(USER), 'ETH', 1001 * QTX, 0)


def test_withdraw_exceeding_collateral(system):
    open_vault(system)
    with pytest.raises(WithdrawExceedsCollateral):
        system.manager.burn_and_withdraw(Caller(USER), 'ETH', 0, 2 * ETH)


def test_withdraw_below_ratio(system):
    open_vault(system)
    with pytest.raises(WouldBeUndercollateralized):
        system.manager.burn_and_withdraw(Caller(USER), 'ETH', 0, ETH // 2)


def test_failed_withdraw_rolls_back_burn(system):
    open_vault(system)

    with pytest.raises(WouldBeUndercollateralized):
        system.manager.burn_and_withdraw(Caller(USER), 'ETH', 100 * QTX, ETH // 2)

    vault = system.manager.get_vault(USER, 'ETH')
    assert vault.debt == 1000 * QTX
    assert vault.collateral == ETH
    assert system.qtx_balance(USER) == 990 * QTX


def test_burn_needs_stable_balance(system):
    open_vault(system)
    with pytest.raises(InsufficientBalance):
        system.manager.burn_and_withdraw(Caller(USER), 'ETH', 995 * QTX, 0)


def test_full_repayment_empties_vault(system):
    open_vault(system)
    system.give_qtx(USER, 10 * QTX)

    system.manager.burn_and_withdraw(Caller(USER), 'ETH', 1000 * QTX, ETH)

    assert system.manager.get_vault(USER, 'ETH').is_empty
    assert system.eth_balance(USER) == 100 * ETH
    assert system.manager.vault_health(USER, 'ETH') == (MAX_RATIO, True)


def test_withdraw_rejects_native_funds(system):
    open_vault(system)
    with pytest.raises(InvalidAmount):
        system.manager.burn_and_withdraw(Caller(USER, 1), 'ETH', 0, 1)


# ---------------------------------------------------------------------- #
# Queries
# ---------------------------------------------------------------------- #
def test_debt_free_vault_is_safe(system):
    assert system.manager.vault_health(USER2, 'ETH') == (MAX_RATIO, True)
    system.manager.deposit_and_mint(Caller(USER2, ETH), 'ETH', ETH, 0)
    system.set_eth_price(1)
    assert system.manager.vault_health(USER2, 'ETH') == (MAX_RATIO, True)


def test_max_mintable(system):
    system.manager.deposit_and_mint(Caller(USER, ETH), 'ETH', ETH, 0)
    price = 2000 * 10 ** 18
    assert system.manager.max_mintable(USER, 'ETH') == ETH * price * 100 // (150 * ETH)

    system.manager.deposit_and_mint(Caller(USER, ETH), 'ETH', ETH, 1000 * QTX)
    expected = 2 * ETH * price * 100 // (150 * ETH) - 1000 * QTX
    assert system.manager.max_mintable(USER, 'ETH') == expected


def test_max_mintable_headroom_is_exact(system):
    system.manager.deposit_and_mint(Caller(USER), 'WBTC', 10 ** 8, 0)
    headroom = system.manager.max_mintable(USER, 'WBTC')
    assert headroom == 25000 * QTX

    with pytest.raises(InsufficientCollateral):
        system.manager.deposit_and_mint(Caller(USER), 'WBTC', 0, headroom + 1)
    system.manager.deposit_and_mint(Caller(USER), 'WBTC', 0, headroom)
    assert system.manager.max_mintable(USER, 'WBTC') == 0


def test_max_mintable_empty_and_unknown(system):
    assert system.manager.max_mintable(USER, 'ETH') == 0
    with pytest.raises(UnknownCollateral):
        system.manager.max_mintable(USER, 'DOGE')


def test_queries(system):
    assert system.manager.collateral_symbols() == ['ETH', 'WBTC']
    ctype = system.manager.get_collateral_type('ETH')
    assert ctype.min_ratio == 150
    assert ctype.is_native
    assert system.manager.get_collateral_type('DOGE') is None
    assert system.manager.owner() == OWNER
    assert system.manager.reserve() == RESERVE
    assert system.manager.is_paused() is False
    assert system.manager.circuit_breaker_limits().max_single_withdrawal == 0


def test_failing_listener_does_not_fail_committed_operation(system):
    def broken(event):
        raise RuntimeError("listener down")

    system.manager.listeners.insert(0, broken)
    open_vault(system)

    assert system.manager.get_vault(USER, 'ETH').debt == 1000 * QTX
    assert [e.name for e in system.events] == [
        'CollateralDeposited', 'StableMinted', 'VaultHealthChanged'
    ]
