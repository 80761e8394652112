"""Tests for the minute-boundary feature engine."""

from __future__ import annotations

import math
import statistics
from datetime import datetime, timezone
from typing import List, Optional

import numpy as np
import pytest

from updown_bot.feature_engine import (
    ASSET_ORDINALS,
    ASSET_THRESHOLDS,
    FeatureEngine,
    FeatureVector,
    to_feature_map,
)
from updown_bot.price_buffer import BUFFER_SIZE, MINUTE_MS, WINDOW_MS

# Mid-window epoch: 2023-11-14T22:13:20Z, window opens at 22:00.
TEST_EPOCH = 1_700_000_000_000
WINDOW_START = 1_699_999_200_000


def _ms(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def _feed(
    engine: FeatureEngine,
    prices: List[float],
    start: int = WINDOW_START,
) -> List[Optional[FeatureVector]]:
    """Ingest one price per minute starting at *start*."""
    return [engine.ingest_price(p, start + i * MINUTE_MS) for i, p in enumerate(prices)]


class TestConstruction:
    def test_known_assets(self) -> None:
        for asset in ASSET_ORDINALS:
            assert FeatureEngine(asset).asset == asset

    def test_unknown_asset(self) -> None:
        with pytest.raises(ValueError, match="Invalid asset"):
            FeatureEngine("DOGE")

    def test_default_thresholds(self) -> None:
        assert FeatureEngine("BTC").threshold == 0.0008
        assert FeatureEngine("ETH").threshold == 0.0010
        assert FeatureEngine("SOL").threshold == 0.0020
        assert FeatureEngine("XRP").threshold == 0.0015

    def test_injected_thresholds(self) -> None:
        engine = FeatureEngine("BTC", thresholds={"BTC": 0.005})
        assert engine.threshold == 0.005

    def test_injected_table_missing_asset(self) -> None:
        with pytest.raises(ValueError):
            FeatureEngine("ETH", thresholds={"BTC": 0.005})

    def test_non_positive_threshold(self) -> None:
        with pytest.raises(ValueError):
            FeatureEngine("BTC", thresholds={"BTC": 0.0})

    def test_threshold_table_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            ASSET_THRESHOLDS["BTC"] = 0.1  # type: ignore[index]


class TestInputValidation:
    @pytest.mark.parametrize("price", [0.0, -1.0, math.nan, math.inf])
    def test_invalid_price(self, price: float) -> None:
        with pytest.raises(ValueError, match="Invalid price"):
            FeatureEngine("BTC").ingest_price(price, TEST_EPOCH)

    @pytest.mark.parametrize("ts", [-1, math.nan, math.inf])
    def test_invalid_timestamp(self, ts: float) -> None:
        with pytest.raises(ValueError, match="Invalid timestamp"):
            FeatureEngine("BTC").ingest_price(50000.0, ts)  # type: ignore[arg-type]

    def test_string_price_rejected(self) -> None:
        with pytest.raises(ValueError):
            FeatureEngine("BTC").ingest_price("50000", TEST_EPOCH)  # type: ignore[arg-type]

    def test_numpy_scalars_accepted(self) -> None:
        fv = FeatureEngine("BTC").ingest_price(np.float64(50000.0), np.int64(TEST_EPOCH))
        assert fv is not None
        assert fv.timestamp == TEST_EPOCH

    def test_rejected_tick_leaves_state_alone(self) -> None:
        engine = FeatureEngine("BTC")
        with pytest.raises(ValueError):
            engine.ingest_price(-5.0, TEST_EPOCH)
        snap = engine.snapshot()
        assert snap.buffer_size == 0
        assert snap.window is None


class TestMinuteBoundary:
    def test_first_tick_emits(self) -> None:
        fv = FeatureEngine("BTC").ingest_price(50000.0, TEST_EPOCH)
        assert fv is not None
        assert fv.asset == "BTC"
        assert fv.timestamp == TEST_EPOCH

    def test_same_minute_returns_none(self) -> None:
        engine = FeatureEngine("BTC")
        engine.ingest_price(50000.0, WINDOW_START)
        assert engine.ingest_price(50100.0, WINDOW_START + 30_000) is None
        assert engine.ingest_price(50200.0, WINDOW_START + 59_999) is None

    def test_intra_minute_ticks_change_nothing(self) -> None:
        engine = FeatureEngine("BTC")
        engine.ingest_price(50000.0, WINDOW_START)
        before = engine.snapshot()
        engine.ingest_price(50500.0, WINDOW_START + 10_000)
        after = engine.snapshot()
        assert after.buffer_size == before.buffer_size == 1
        assert after.last_minute == before.last_minute
        assert after.window is not None
        assert after.window.max_run_up == 0.0
        assert not after.window.has_up_hit

    def test_next_minute_emits_again(self) -> None:
        engine = FeatureEngine("BTC")
        engine.ingest_price(50000.0, WINDOW_START)
        engine.ingest_price(50010.0, WINDOW_START + 20_000)
        fv = engine.ingest_price(50020.0, WINDOW_START + MINUTE_MS)
        assert fv is not None
        assert fv.state_minute == 1
        assert engine.snapshot().buffer_size == 2


class TestTimeFeatures:
    def test_state_minute_mid_window(self) -> None:
        fv = FeatureEngine("BTC").ingest_price(50000.0, TEST_EPOCH)
        assert fv is not None
        assert fv.state_minute == 13
        assert fv.minutes_remaining == 2

    def test_state_minute_and_remaining_sum(self) -> None:
        engine = FeatureEngine("ETH")
        for fv in _feed(engine, [2000.0] * 15):
            assert fv is not None
            assert 0 <= fv.state_minute <= 14
            assert fv.state_minute + fv.minutes_remaining == 15

    def test_hour_of_day(self) -> None:
        fv = FeatureEngine("BTC").ingest_price(50000.0, _ms(2023, 11, 14, 15, 30))
        assert fv is not None
        assert fv.hour_of_day == 15
        assert fv.state_minute == 0

    def test_day_of_week_tuesday(self) -> None:
        fv = FeatureEngine("BTC").ingest_price(50000.0, _ms(2023, 11, 14, 12, 0))
        assert fv is not None
        assert fv.day_of_week == 2

    def test_day_of_week_sunday_is_zero(self) -> None:
        fv = FeatureEngine("BTC").ingest_price(50000.0, _ms(2023, 11, 12, 23, 59))
        assert fv is not None
        assert fv.day_of_week == 0
        assert fv.hour_of_day == 23


class TestWindowFeatures:
    def test_window_open_minute_zero(self) -> None:
        fv = FeatureEngine("BTC").ingest_price(50000.0, WINDOW_START)
        assert fv is not None
        assert fv.return_since_open == 0.0
        assert fv.max_run_up == 0.0
        assert fv.max_run_down == 0.0
        assert fv.has_up_hit is False
        assert fv.has_down_hit is False
        assert math.isnan(fv.first_up_hit_minute)
        assert math.isnan(fv.first_down_hit_minute)

    def test_first_tick_mid_window_opens_window(self) -> None:
        engine = FeatureEngine("BTC")
        engine.ingest_price(50000.0, TEST_EPOCH)
        window = engine.snapshot().window
        assert window is not None
        assert window.window_start_ms == WINDOW_START
        assert window.open_price == 50000.0

    def test_return_since_open(self) -> None:
        results = _feed(FeatureEngine("BTC"), [50000.0, 50100.0])
        assert results[1] is not None
        assert results[1].return_since_open == pytest.approx(0.002)

    def test_up_hit_at_minute_two(self) -> None:
        results = _feed(FeatureEngine("BTC"), [50000.0, 50030.0, 50050.0])
        assert results[1] is not None and results[2] is not None
        assert results[1].has_up_hit is False
        assert results[2].has_up_hit is True
        assert results[2].first_up_hit_minute == 2

    def test_down_hit_at_minute_one(self) -> None:
        results = _feed(FeatureEngine("BTC"), [50000.0, 49950.0])
        fv = results[1]
        assert fv is not None
        assert fv.has_down_hit is True
        assert fv.first_down_hit_minute == 1
        assert fv.has_up_hit is False

    def test_eth_threshold(self) -> None:
        below = _feed(FeatureEngine("ETH"), [2000.0, 2001.5])[1]
        above = _feed(FeatureEngine("ETH"), [2000.0, 2002.1])[1]
        assert below is not None and above is not None
        assert below.has_up_hit is False
        assert above.has_up_hit is True

    def test_hits_are_sticky(self) -> None:
        results = _feed(FeatureEngine("BTC"), [50000.0, 50100.0, 50000.0, 49990.0])
        last = results[-1]
        assert last is not None
        assert last.has_up_hit is True
        assert last.first_up_hit_minute == 1
        assert last.return_since_open < 0

    def test_extrema_monotonic(self) -> None:
        prices = [50000.0, 50020.0, 50050.0, 50030.0, 50080.0, 49900.0, 50010.0]
        results = _feed(FeatureEngine("BTC"), prices)
        ups = [fv.max_run_up for fv in results if fv is not None]
        downs = [fv.max_run_down for fv in results if fv is not None]
        assert ups == sorted(ups)
        assert downs == sorted(downs, reverse=True)
        for fv in results:
            assert fv is not None
            assert fv.max_run_down <= fv.return_since_open <= fv.max_run_up

    def test_full_window(self) -> None:
        prices = [
            50000, 50020, 50050, 50030, 50080, 50100, 50090, 50070,
            50050, 50060, 50040, 50020, 50000, 49980, 49990,
        ]
        results = _feed(FeatureEngine("BTC"), [float(p) for p in prices])
        last = results[-1]
        assert last is not None
        assert last.state_minute == 14
        assert last.minutes_remaining == 1
        assert last.max_run_up == pytest.approx(0.002)
        assert last.max_run_down == pytest.approx(-0.0004)
        assert last.return_since_open == pytest.approx(-0.0002)
        assert last.first_up_hit_minute == 2
        assert last.has_down_hit is False


class TestWindowTransition:
    def test_new_window_resets_window_state(self) -> None:
        engine = FeatureEngine("BTC")
        _feed(engine, [50000.0, 50100.0, 50200.0])
        fv = engine.ingest_price(50300.0, WINDOW_START + WINDOW_MS)
        assert fv is not None
        assert fv.state_minute == 0
        assert fv.return_since_open == 0.0
        assert fv.max_run_up == 0.0
        assert fv.has_up_hit is False
        assert math.isnan(fv.first_up_hit_minute)
        window = engine.snapshot().window
        assert window is not None
        assert window.window_start_ms == WINDOW_START + WINDOW_MS
        assert window.open_price == 50300.0

    def test_buffer_survives_window_change(self) -> None:
        engine = FeatureEngine("BTC")
        _feed(engine, [50000.0, 50100.0, 50200.0])
        fv = engine.ingest_price(50300.0, WINDOW_START + WINDOW_MS)
        assert fv is not None
        assert engine.snapshot().buffer_size == 4
        # Previous close was 50200 (minute 2 of the prior window).
        assert fv.return_1m == pytest.approx(50300 / 50200 - 1)

    def test_lookback_crosses_window(self) -> None:
        engine = FeatureEngine("BTC")
        _feed(engine, [50000.0 + 10 * i for i in range(10)])
        nxt = _feed(engine, [50100.0, 50150.0, 50200.0], start=WINDOW_START + WINDOW_MS)
        assert nxt[1] is not None and nxt[2] is not None
        assert nxt[1].return_3m == pytest.approx((50150 - 50080) / 50080)
        assert nxt[2].return_5m == pytest.approx((50200 - 50070) / 50070)

    def test_gap_skips_whole_windows(self) -> None:
        engine = FeatureEngine("BTC")
        engine.ingest_price(50000.0, WINDOW_START)
        fv = engine.ingest_price(51000.0, WINDOW_START + 3 * WINDOW_MS + 4 * MINUTE_MS)
        assert fv is not None
        assert fv.state_minute == 4
        assert fv.return_since_open == 0.0
        # Buffer is sample based, not clock based.
        assert fv.return_1m == pytest.approx(0.02)


class TestLaggedReturns:
    def test_nan_with_short_history(self) -> None:
        fv = FeatureEngine("BTC").ingest_price(50000.0, WINDOW_START)
        assert fv is not None
        assert math.isnan(fv.return_1m)
        assert math.isnan(fv.return_3m)
        assert math.isnan(fv.return_5m)
        assert math.isnan(fv.volatility_5m)

    def test_rising_series(self) -> None:
        prices = [50000.0 + 100 * i for i in range(6)]
        results = _feed(FeatureEngine("BTC"), prices)
        last = results[-1]
        assert last is not None
        assert last.return_1m == pytest.approx(100 / 50400, rel=1e-6)
        assert last.return_1m == pytest.approx(0.00198, abs=1e-5)
        assert last.return_3m == pytest.approx(0.00598, abs=1e-5)
        assert last.return_5m == pytest.approx(0.01)

    def test_minute_one_return(self) -> None:
        results = _feed(FeatureEngine("BTC"), [50000.0, 50100.0])
        fv = results[1]
        assert fv is not None
        assert fv.return_1m == pytest.approx(0.002)
        assert math.isnan(fv.return_3m)

    def test_return_availability_by_minute(self) -> None:
        results = _feed(FeatureEngine("BTC"), [50000.0 + i for i in range(7)])
        for i, fv in enumerate(results):
            assert fv is not None
            assert math.isnan(fv.return_1m) == (i < 1)
            assert math.isnan(fv.return_3m) == (i < 3)
            assert math.isnan(fv.return_5m) == (i < 5)
            assert math.isnan(fv.volatility_5m) == (i < 5)


class TestVolatility:
    def test_sample_std_of_last_five_returns(self) -> None:
        prices = [50000.0, 50100.0, 50200.0, 50100.0, 50200.0, 50300.0]
        last = _feed(FeatureEngine("BTC"), prices)[-1]
        assert last is not None
        returns = [prices[i] / prices[i - 1] - 1 for i in range(1, 6)]
        assert last.volatility_5m == pytest.approx(statistics.stdev(returns), rel=1e-9)

    def test_matches_two_pass_sample_std_exactly(self) -> None:
        prices = [50000.0, 50017.0, 49991.0, 50043.0, 50002.0, 50029.0]
        last = _feed(FeatureEngine("BTC"), prices)[-1]
        assert last is not None
        returns = np.array([prices[i] / prices[i - 1] - 1 for i in range(1, 6)])
        assert last.volatility_5m == float(np.std(returns, ddof=1))

    def test_uses_only_last_five(self) -> None:
        prices = [40000.0, 50000.0, 50100.0, 50200.0, 50100.0, 50200.0, 50300.0]
        last = _feed(FeatureEngine("BTC"), prices)[-1]
        assert last is not None
        returns = [prices[i] / prices[i - 1] - 1 for i in range(2, 7)]
        assert last.volatility_5m == pytest.approx(statistics.stdev(returns), rel=1e-9)

    def test_constant_prices_zero(self) -> None:
        last = _feed(FeatureEngine("SOL"), [100.0] * 8)[-1]
        assert last is not None
        assert last.volatility_5m == 0.0

    def test_non_negative(self) -> None:
        prices = [100.0, 101.0, 99.0, 102.0, 98.0, 103.0, 97.0]
        for fv in _feed(FeatureEngine("SOL"), prices):
            assert fv is not None
            if not math.isnan(fv.volatility_5m):
                assert fv.volatility_5m >= 0


class TestBuffer:
    def test_buffer_capped(self) -> None:
        engine = FeatureEngine("BTC")
        _feed(engine, [50000.0 + i for i in range(40)])
        assert engine.snapshot().buffer_size == BUFFER_SIZE

    def test_reset_clears_everything(self) -> None:
        engine = FeatureEngine("BTC")
        _feed(engine, [50000.0 + i for i in range(5)])
        engine.reset()
        snap = engine.snapshot()
        assert snap.buffer_size == 0
        assert snap.window is None
        assert snap.last_minute == -1
        fv = engine.ingest_price(50000.0, WINDOW_START)
        assert fv is not None
        assert math.isnan(fv.return_1m)

    def test_reset_allows_same_minute_again(self) -> None:
        engine = FeatureEngine("BTC")
        engine.ingest_price(50000.0, WINDOW_START)
        engine.reset()
        assert engine.ingest_price(50000.0, WINDOW_START) is not None

    def test_snapshot_is_a_copy(self) -> None:
        engine = FeatureEngine("BTC")
        engine.ingest_price(50000.0, WINDOW_START)
        snap = engine.snapshot()
        engine.ingest_price(50100.0, WINDOW_START + MINUTE_MS)
        assert snap.window is not None
        assert snap.window.max_run_up == 0.0


class TestEngineIndependence:
    def test_engines_do_not_share_state(self) -> None:
        btc = FeatureEngine("BTC")
        eth = FeatureEngine("ETH")
        _feed(btc, [50000.0, 50100.0, 50200.0])
        fv = eth.ingest_price(2000.0, WINDOW_START + 2 * MINUTE_MS)
        assert fv is not None
        assert math.isnan(fv.return_1m)
        assert eth.snapshot().buffer_size == 1


class TestFeatureMap:
    def test_keys_and_asset_ordinal(self) -> None:
        fv = FeatureEngine("SOL").ingest_price(100.0, WINDOW_START)
        assert fv is not None
        fmap = to_feature_map(fv)
        assert set(fmap) == {
            "state_minute", "minutes_remaining", "hour_of_day", "day_of_week",
            "return_since_open", "max_run_up", "max_run_down",
            "return_1m", "return_3m", "return_5m", "volatility_5m",
            "has_up_hit", "has_down_hit", "first_up_hit_minute",
            "first_down_hit_minute", "asset", "timestamp",
        }
        assert fmap["asset"] == 2
        assert fmap["timestamp"] == WINDOW_START
        assert fmap["has_up_hit"] is False

    def test_ordinals(self) -> None:
        assert dict(ASSET_ORDINALS) == {"BTC": 0, "ETH": 1, "SOL": 2, "XRP": 3}

    def test_vector_is_frozen(self) -> None:
        fv = FeatureEngine("BTC").ingest_price(50000.0, WINDOW_START)
        assert fv is not None
        with pytest.raises(AttributeError):
            fv.state_minute = 3  # type: ignore[misc]
