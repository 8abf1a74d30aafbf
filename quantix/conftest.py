import shutil
import tempfile

import pytest

from quantix.assets import AssetBank
from quantix.collateral import ExternalAsset, NativeAsset
from quantix.db import DB
from quantix.manager import Caller, CollateralManager
from quantix.oracle import OracleAdapter, StaticPriceFeed
from quantix.state import PendingState
from quantix.token import StableToken

ETH = 10 ** 18
QTX = 10 ** 18

OWNER = b'\x01' * 20
USER = b'\x02' * 20
LIQUIDATOR = b'\x03' * 20
RESERVE = b'\x04' * 20
FAUCET = b'\x05' * 20
USER2 = b'\x06' * 20


def feed_price(dollars) -> int:
    """Dollar price in the feed's 8-decimal format."""
    return int(dollars * 10 ** 8)


class System:
    """A wired collateral manager with an ETH (native) and a WBTC (external) collateral type."""

    def __init__(self, path: str):
        self.path = path
        self.db = DB(path)
        self.eth_feed = StaticPriceFeed(feed_price(2000))
        self.btc_feed = StaticPriceFeed(feed_price(30000))
        self.oracle = OracleAdapter({'ETH/USD': self.eth_feed, 'BTC/USD': self.btc_feed})
        self.bank = AssetBank()
        self.token = StableToken(admin=OWNER)
        self.manager = CollateralManager(self.db, self.token, self.bank, self.oracle, OWNER)
        self.owner = Caller(OWNER)
        self.events = []
        self.manager.subscribe(self.events.append)

        state = PendingState(self.db)
        self.token.grant_minter(state, OWNER, self.manager.address)
        self.token.grant_minter(state, OWNER, FAUCET)
        for account in (USER, USER2, LIQUIDATOR):
            self.bank.credit(state, NativeAsset(), account, 100 * ETH)
            self.bank.credit(state, ExternalAsset('WBTC'), account, 10 * 10 ** 8)
        state.commit()

        self.manager.add_collateral_type(self.owner, 'ETH', NativeAsset(), 'ETH/USD',
                                         150, 18, 10, 1)
        self.manager.add_collateral_type(self.owner, 'WBTC', ExternalAsset('WBTC'), 'BTC/USD',
                                         120, 8, 5, 0)
        self.manager.set_reserve(self.owner, RESERVE)
        self.manager.set_block(1, 1000)
        self.events.clear()

    def set_eth_price(self, dollars):
        self.eth_feed.set_price(feed_price(dollars))

    def give_qtx(self, account: bytes, amount: int):
        state = PendingState(self.db)
        self.token.mint(state, FAUCET, account, amount)
        state.commit()

    def qtx_balance(self, account: bytes) -> int:
        return self.token.balance_of(PendingState(self.db), account)

    def eth_balance(self, account: bytes) -> int:
        return self.bank.balance_of(PendingState(self.db), NativeAsset(), account)

    def asset_balance(self, asset, account: bytes) -> int:
        return self.bank.balance_of(PendingState(self.db), asset, account)

    def named(self, name: str) -> list:
        return [e for e in self.events if e.name == name]

    def close(self):
        self.db.close()


@pytest.fixture
def system():
    dir_ = tempfile.mkdtemp()
    s = System(dir_)
    yield s
    s.close()
    shutil.rmtree(dir_)
