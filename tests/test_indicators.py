import random
import unittest

from market_pipeline.schemas.listing import PriceSeries, RawListingRecord
from market_pipeline.services.indicators import (
    IndicatorEngine,
    atr_percent,
    compute_atr,
    compute_rsi,
)

# +2 / -1 alternating: 7 gains of 2 and 7 losses of 1 over the first 14 deltas
ZIGZAG_15 = [100, 102, 101, 103, 102, 104, 103, 105, 104, 106, 105, 107, 106, 108, 107]


def series_of(closes, coin_id="bitcoin"):
    return PriceSeries(coin_id=coin_id, points=[(1700000000000 + i * 3600000, float(c)) for i, c in enumerate(closes)])


class TestComputeRsi(unittest.TestCase):
    def test_short_series_returns_neutral_for_every_period(self):
        for period in range(1, 21):
            for length in range(0, period + 1):
                closes = [100.0 + i for i in range(length)]
                self.assertEqual(compute_rsi(closes, period), 50.0, (period, length))

    def test_result_is_bounded_for_random_series(self):
        rng = random.Random(7)
        for _ in range(200):
            period = rng.randint(1, 20)
            length = rng.randint(period + 1, 120)
            closes = [rng.uniform(0.0001, 100000.0) for _ in range(length)]
            value = compute_rsi(closes, period)
            self.assertGreaterEqual(value, 0.0)
            self.assertLessEqual(value, 100.0)

    def test_seed_window_matches_reference(self):
        # avg_gain = 14 / 14 = 1.0, avg_loss = 7 / 14 = 0.5, rs = 2
        self.assertAlmostEqual(compute_rsi(ZIGZAG_15, 14), 100 - 100 / 3, places=4)

    def test_wilder_smoothing_matches_reference(self):
        closes = ZIGZAG_15 + [105]
        avg_gain = (1.0 * 13 + 0.0) / 14
        avg_loss = (0.5 * 13 + 2.0) / 14
        expected = 100 - 100 / (1 + avg_gain / avg_loss)

        self.assertAlmostEqual(compute_rsi(closes, 14), expected, places=10)
        self.assertAlmostEqual(compute_rsi(closes, 14), 60.4651, places=4)

    def test_fifteen_sample_monotonic_series_is_computed_not_fallback(self):
        rising = [100.0 + i for i in range(15)]
        falling = [100.0 - i for i in range(15)]

        # 15 closes give 14 deltas, so one full seed window exists
        self.assertEqual(compute_rsi(rising, 14), 100.0)
        self.assertEqual(compute_rsi(falling, 14), 0.0)
        self.assertEqual(compute_rsi(rising[:14], 14), 50.0)

    def test_flat_series_has_zero_average_loss(self):
        self.assertEqual(compute_rsi([5.0] * 30, 14), 100.0)

    def test_loss_free_seed_short_circuits_later_losses(self):
        closes = [100.0 + i for i in range(15)] + [90.0, 80.0]
        self.assertEqual(compute_rsi(closes, 14), 100.0)

    def test_period_one_saturates_on_a_gain_after_losses(self):
        self.assertEqual(compute_rsi([10.0, 9.0, 8.0, 9.0], 1), 100.0)

    def test_invalid_period_is_rejected(self):
        with self.assertRaises(ValueError):
            compute_rsi([1.0, 2.0], 0)


class TestComputeAtr(unittest.TestCase):
    def test_short_series_returns_zero(self):
        for period in range(1, 21):
            for length in range(0, period + 1):
                self.assertEqual(compute_atr([100.0 + i for i in range(length)], period), 0.0)

    def test_seed_and_smoothing_match_reference(self):
        # true ranges 2,1 x7 -> seed 21 / 14
        self.assertAlmostEqual(compute_atr(ZIGZAG_15, 14), 1.5, places=12)
        self.assertAlmostEqual(compute_atr(ZIGZAG_15 + [105], 14), (1.5 * 13 + 2) / 14, places=12)

    def test_percent_conversion(self):
        self.assertAlmostEqual(atr_percent(1.5, 100.0), 1.5)
        self.assertEqual(atr_percent(1.5, 0.0), 0.0)
        self.assertEqual(atr_percent(1.5, -3.0), 0.0)


class TestIndicatorEngine(unittest.TestCase):
    def _record(self, **overrides):
        row = {
            "id": "bitcoin",
            "symbol": "btc",
            "current_price": 107.0,
            "high_24h": 110.0,
            "low_24h": 99.0,
            "price_change_percentage_24h_in_currency": 8.0,
        }
        row.update(overrides)
        return RawListingRecord.from_provider(row)

    def test_exact_mode_uses_series(self):
        engine = IndicatorEngine("exact")
        result = engine.compute(self._record(), series_of(ZIGZAG_15))

        self.assertEqual(result.mode, "exact")
        self.assertAlmostEqual(result.rsi, 100 - 100 / 3, places=6)
        self.assertAlmostEqual(result.atr_percent, 1.5 / 107.0 * 100, places=9)

    def test_exact_mode_only_uses_last_hundred_closes(self):
        rng = random.Random(11)
        closes = [rng.uniform(1.0, 1000.0) for _ in range(150)]
        result = IndicatorEngine("exact").compute(self._record(), series_of(closes))

        self.assertEqual(result.rsi, compute_rsi(closes[-100:], 14))
        self.assertEqual(result.atr_percent, atr_percent(compute_atr(closes[-100:], 14), 107.0))

    def test_exact_mode_requires_series(self):
        with self.assertRaises(ValueError):
            IndicatorEngine("exact").compute(self._record())

    def test_proxy_mode_uses_listing_fields(self):
        result = IndicatorEngine("proxy").compute(self._record())

        self.assertEqual(result.mode, "proxy")
        self.assertEqual(result.rsi, 54.0)
        self.assertAlmostEqual(result.atr_percent, 11.0 / 107.0 * 100)

    def test_proxy_mode_clamps_and_defaults(self):
        crash = IndicatorEngine("proxy").compute(
            self._record(price_change_percentage_24h_in_currency=-250.0, high_24h=None, low_24h=None)
        )
        self.assertEqual(crash.rsi, 0.0)
        self.assertEqual(crash.atr_percent, 0.0)

        no_price = IndicatorEngine("proxy").compute(self._record(current_price=None))
        self.assertEqual(no_price.atr_percent, 5.0)

    def test_unknown_mode_is_rejected(self):
        with self.assertRaises(ValueError):
            IndicatorEngine("fast")


if __name__ == "__main__":
    unittest.main()
