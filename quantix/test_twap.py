# quantix/test_twap.py
import shutil
import tempfile
import unittest

from quantix.db import DB
from quantix.state import PendingState
from quantix.twap import TWAP_WINDOW, PriceHistory, TWAPAggregator


class TestPriceHistory(unittest.TestCase):
    def test_empty_history_reads_zero(self):
        self.assertEqual(PriceHistory().twap(), 0)

    def test_partial_window_is_mean_of_observed(self):
        history = PriceHistory()
        for price in (10, 20, 31):
            history.update(price)
        self.assertEqual(history.count, 3)
        self.assertEqual(history.twap(), 61 // 3)

    def test_count_saturates_at_window(self):
        history = PriceHistory()
        for i in range(25):
            history.update(100 + i)
        self.assertEqual(history.count, TWAP_WINDOW)
        self.assertEqual(history.cursor, 25 % TWAP_WINDOW)
        # Only the last ten observations remain
        self.assertEqual(history.twap(), sum(range(115, 125)) // 10)

    def test_oldest_slot_is_overwritten(self):
        history = PriceHistory(window=3)
        for price in (1, 2, 3, 9):
            history.update(price)
        self.assertEqual(history.prices, [9, 2, 3])
        self.assertEqual(history.twap(), 14 // 3)

    def test_invalid_window(self):
        with self.assertRaises(ValueError):
            PriceHistory(window=0)


class TestTWAPAggregator(unittest.TestCase):
    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.db = DB(self.test_dir)
        self.twap = TWAPAggregator()

    def tearDown(self):
        self.db.close()
        shutil.rmtree(self.test_dir)

    def test_histories_are_per_symbol(self):
        state = PendingState(self.db)
        self.assertEqual(self.twap.update(state, 'ETH', 2000 * 10 ** 18), 2000 * 10 ** 18)
        self.assertEqual(self.twap.update(state, 'ETH', 1000 * 10 ** 18), 1500 * 10 ** 18)
        self.twap.update(state, 'WBTC', 30000 * 10 ** 18)

        self.assertEqual(self.twap.read(state, 'ETH'), 1500 * 10 ** 18)
        self.assertEqual(self.twap.read(state, 'WBTC'), 30000 * 10 ** 18)
        self.assertEqual(self.twap.read(state, 'DOGE'), 0)

    def test_history_survives_commit(self):
        state = PendingState(self.db)
        for _ in range(12):
            self.twap.update(state, 'ETH', 7)
        state.commit()

        history = self.twap.get_history(PendingState(self.db), 'ETH')
        self.assertEqual(history.count, TWAP_WINDOW)
        self.assertEqual(history.cursor, 2)
        self.assertEqual(history.twap(), 7)

    def test_uncommitted_observation_is_dropped(self):
        state = PendingState(self.db)
        self.twap.update(state, 'ETH', 5)
        state.discard()
        self.assertEqual(self.twap.read(PendingState(self.db), 'ETH'), 0)
