import unittest
from datetime import date, datetime, timedelta

import numpy as np

from core.classifier import next_unclassified
from core.engine import SegmentationEngine, build_manual_segment, split_trading_days
from core.normalizer import build_series
from models.errors import FormatError
from models.types import Bar, EngineConfig, SchemaType, TrendDirection

BASE_TS = datetime(2024, 3, 1, 9, 0)


def make_bars(closes, timestamps=None):
    if timestamps is None:
        timestamps = [BASE_TS + timedelta(minutes=i) for i in range(len(closes))]
    bars = []
    prev = closes[0]
    for ts, close in zip(timestamps, closes):
        bars.append(Bar(
            timestamp=ts,
            open=prev,
            high=max(prev, close) + 0.05,
            low=min(prev, close) - 0.05,
            close=close,
            volume=100,
        ))
        prev = close
    return bars


def make_series(closes, timestamps=None, symbol="AAPL"):
    return build_series(symbol, date(2024, 3, 1), make_bars(closes, timestamps))


def random_walk(seed=42, n=500):
    rng = np.random.RandomState(seed)
    return (100 + np.cumsum(rng.normal(0, 0.3, n))).round(4).tolist()


class TestSegmentationEngine(unittest.TestCase):
    def setUp(self):
        self.engine = SegmentationEngine(EngineConfig())

    def test_monotonic_rise(self):
        series = make_series([100.0 + i for i in range(30)])
        segments = self.engine.run(series)

        self.assertEqual(len(segments), 1)
        seg = segments[0]
        self.assertEqual(seg.id, "AAPL_2024-03-01_0001")
        self.assertEqual(seg.trend_direction, TrendDirection.UP)
        self.assertEqual(seg.original_point_count, 30)
        self.assertEqual(seg.point_count, 16)
        self.assertEqual(seg.x0, BASE_TS)
        self.assertEqual(seg.segment_start, BASE_TS + timedelta(minutes=14))
        self.assertEqual(seg.segment_end, BASE_TS + timedelta(minutes=29))
        self.assertEqual(len(seg.points), 16)
        self.assertFalse(seg.invalid)

    def test_short_series_yields_nothing(self):
        engine = SegmentationEngine(EngineConfig(min_segment_length=5))
        self.assertEqual(engine.run(make_series([100.0, 101.0, 102.0])), [])

    def test_flat_series(self):
        segments = self.engine.run(make_series([100.0] * 20))

        self.assertEqual(len(segments), 1)
        self.assertEqual(segments[0].trend_direction, TrendDirection.UP)
        self.assertEqual(segments[0].schema_type, SchemaType.UNCLASSIFIED)

    def test_gap_marks_segment_invalid(self):
        timestamps = [BASE_TS + timedelta(minutes=i) for i in range(30)]
        timestamps[20:] = [ts + timedelta(minutes=5) for ts in timestamps[20:]]
        segments = self.engine.run(make_series([100.0 + i for i in range(30)], timestamps))

        self.assertEqual(len(segments), 1)
        self.assertTrue(segments[0].invalid)
        self.assertIsNone(next_unclassified(segments))

    def test_ordinals_follow_region_order(self):
        closes = list(range(100, 111)) + list(range(109, 94, -1))
        segments = self.engine.run(make_series([float(c) for c in closes]))

        self.assertEqual([s.id[-4:] for s in segments], ["0001", "0002"])
        self.assertEqual([s.trend_direction for s in segments], [TrendDirection.UP, TrendDirection.DOWN])

    def test_segments_never_cross_midnight(self):
        start = datetime(2024, 3, 4, 23, 50)
        timestamps = [start + timedelta(minutes=i) for i in range(20)]
        series = build_series("AAPL", date(2024, 3, 4), make_bars([100.0 + i for i in range(20)], timestamps))

        self.assertEqual([(d, len(b)) for d, b in split_trading_days(series.bars)],
                         [(date(2024, 3, 4), 10), (date(2024, 3, 5), 10)])

        segments = self.engine.run(series)
        self.assertEqual([s.id for s in segments], ["AAPL_2024-03-04_0001", "AAPL_2024-03-04_0002"])
        self.assertEqual([s.date for s in segments], [date(2024, 3, 4), date(2024, 3, 5)])
        for seg in segments:
            self.assertEqual(seg.x0.date(), seg.segment_end.date())
            self.assertTrue(all(b.timestamp.date() == seg.date for b in seg.points))
            self.assertFalse(seg.invalid)


def test_engine_is_deterministic():
    series = make_series(random_walk())
    engine = SegmentationEngine()
    assert engine.run(series) == engine.run(series)


def test_invariants_on_random_walks():
    engine = SegmentationEngine()
    for seed in (1, 7, 42):
        segments = engine.run(make_series(random_walk(seed)))
        assert segments

        for seg in segments:
            assert 0 <= seg.points_in_region <= seg.point_count <= seg.original_point_count
            assert seg.min_price <= seg.average_price <= seg.max_price
            assert seg.red_point_count + seg.green_point_count <= seg.point_count
            assert seg.x0 <= seg.segment_start <= seg.segment_end

        for prev, curr in zip(segments, segments[1:]):
            assert prev.segment_end < curr.x0
            assert prev.x0 < curr.x0


class TestManualSegment(unittest.TestCase):
    def setUp(self):
        self.series = make_series([100.0 + i for i in range(30)])

    def test_window_is_kept_untrimmed(self):
        start, end = BASE_TS + timedelta(minutes=5), BASE_TS + timedelta(minutes=14)
        seg = build_manual_segment(self.series, start, end)

        self.assertEqual(seg.id, "AAPL_2024-03-01_M0905-0914")
        self.assertEqual(seg.series_id, "AAPL_2024-03-01")
        self.assertEqual(seg.trend_direction, TrendDirection.UP)
        self.assertEqual(seg.original_point_count, 10)
        self.assertEqual(seg.point_count, 10)
        self.assertEqual((seg.x0, seg.segment_start, seg.segment_end), (start, start, end))
        self.assertTrue(seg.min_price <= seg.average_price <= seg.max_price)
        self.assertAlmostEqual(seg.average_price, 109.5)
        self.assertFalse(seg.invalid)
        self.assertIsNone(seg.pattern_point)

    def test_schema_and_pattern_point(self):
        start, end = BASE_TS, BASE_TS + timedelta(minutes=9)
        seg = build_manual_segment(
            self.series, start, end,
            schema=SchemaType.V, pattern_point="2024-03-01T09:04:00",
        )
        self.assertEqual(seg.schema_type, SchemaType.V)
        self.assertEqual(seg.pattern_point, datetime(2024, 3, 1, 9, 4))

        cleared = build_manual_segment(self.series, start, end, pattern_point="unclassified")
        self.assertIsNone(cleared.pattern_point)

    def test_falling_window_is_down(self):
        series = make_series([130.0 - i for i in range(30)])
        seg = build_manual_segment(series, BASE_TS, BASE_TS + timedelta(minutes=7))
        self.assertEqual(seg.trend_direction, TrendDirection.DOWN)

    def test_rejects_bad_windows(self):
        with self.assertRaises(FormatError):
            build_manual_segment(self.series, BASE_TS, BASE_TS + timedelta(minutes=4))  # 5 points
        with self.assertRaises(FormatError):
            build_manual_segment(self.series, BASE_TS + timedelta(minutes=9), BASE_TS)
        with self.assertRaises(FormatError):
            build_manual_segment(self.series, BASE_TS, BASE_TS + timedelta(days=1))
        with self.assertRaises(FormatError):
            build_manual_segment(
                self.series, BASE_TS, BASE_TS + timedelta(minutes=9),
                pattern_point="2024-03-01T10:30:00",
            )
