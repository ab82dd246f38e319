import unittest
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from core.ingest import add_manual_segment, ingest_key_indexed, ingest_market_file, reprocess_all
from data.segment_store import JsonFileSegmentStore, MemorySegmentStore
from models.errors import FormatError
from models.types import EngineConfig, IngestStatus, SchemaType

BASE_TS = datetime(2024, 3, 1, 9, 0)
HEADER = "date\touv\thaut\tbas\tclot\tvol\tdevise"


def market_file(closes, header=HEADER):
    lines = [header]
    prev = closes[0]
    for i, close in enumerate(closes):
        ts = (BASE_TS + timedelta(minutes=i)).strftime("%d/%m/%Y %H:%M")
        lines.append(f"{ts}\t{prev}\t{max(prev, close)}\t{min(prev, close)}\t{close}\t100\tEUR")
        prev = close
    return "\n".join(lines) + "\n"


RISING = [100.0 + i for i in range(30)]


class TestIngestMarketFile(unittest.TestCase):
    def setUp(self):
        self.store = MemorySegmentStore()
        self.config = EngineConfig()

    def test_segments_are_created(self):
        result = ingest_market_file("aapl_2024-03-01.txt", market_file(RISING), self.store, self.config)

        self.assertEqual(result.status, IngestStatus.SEGMENTED)
        self.assertEqual(result.series_id, "AAPL_2024-03-01")
        self.assertEqual(result.date, date(2024, 3, 1))
        self.assertEqual(result.total_points, 30)
        self.assertEqual(result.segments_created, 1)
        self.assertEqual(result.segment_ids, ["AAPL_2024-03-01_0001"])
        self.assertIsNotNone(self.store.load_series("AAPL_2024-03-01"))
        self.assertEqual(len(self.store.load_segments("AAPL")), 1)

    def test_missing_close_column_writes_nothing(self):
        bad_header = "date\touv\thaut\tbas\tvol\tdevise"
        with self.assertRaises(FormatError):
            ingest_market_file("AAPL_2024-03-01.txt", market_file(RISING, header=bad_header), self.store, self.config)

        self.assertEqual(self.store.list_series(), [])
        self.assertEqual(self.store.load_segments(), [])

    def test_bad_file_name_writes_nothing(self):
        with self.assertRaises(FormatError):
            ingest_market_file("AAPL-2024-03-01.txt", market_file(RISING), self.store, self.config)
        self.assertEqual(self.store.list_series(), [])

    def test_reingest_skips_engine(self):
        ingest_market_file("AAPL_2024-03-01.txt", market_file(RISING), self.store, self.config)

        with patch("core.ingest.SegmentationEngine") as engine_cls:
            result = ingest_market_file("AAPL_2024-03-01.txt", market_file(RISING), self.store, self.config)
            engine_cls.assert_not_called()

        self.assertEqual(result.status, IngestStatus.ALREADY_SEGMENTED)
        self.assertEqual(result.segments_created, 0)
        self.assertEqual(len(self.store.load_segments()), 1)
        self.assertEqual(len(self.store.list_series()), 1)

    def test_no_segments_is_not_a_failure(self):
        result = ingest_market_file("AAPL_2024-03-01.txt", market_file([100.0, 101.0, 102.0]), self.store, self.config)

        self.assertEqual(result.status, IngestStatus.NO_SEGMENTS)
        self.assertEqual(result.segments_created, 0)
        self.assertIn("no segments", result.message)
        self.assertEqual(len(self.store.list_series()), 1)

    def test_renderer_errors_do_not_abort(self):
        renderer = MagicMock()
        renderer.render.side_effect = RuntimeError("boom")

        result = ingest_market_file("AAPL_2024-03-01.txt", market_file(RISING), self.store, self.config, renderer)

        self.assertEqual(result.status, IngestStatus.SEGMENTED)
        renderer.render.assert_called_once()
        payload = renderer.render.call_args[0][0]
        self.assertEqual(len(payload["pointsData"]), 16)


def test_key_indexed_series_is_dated_by_last_bar():
    store = MemorySegmentStore()
    mapping = {}
    for i, close in enumerate(RISING):
        ts = datetime(2024, 3, 4, 15, 0) + timedelta(minutes=i)
        mapping[ts.isoformat()] = {
            "1. open": str(close - 0.5),
            "2. high": str(close + 0.5),
            "3. low": str(close - 1.0),
            "4. close": str(close),
            "5. volume": "1000",
        }

    result = ingest_key_indexed("msft", mapping, store)

    assert result.series_id == "MSFT_2024-03-04"
    assert result.status == IngestStatus.SEGMENTED
    assert store.segments_exist_for("MSFT")


def test_reprocess_all_replaces_segments():
    store = MemorySegmentStore()
    ingest_market_file("AAPL_2024-03-01.txt", market_file(RISING), store)
    ingest_market_file("MSFT_2024-03-01.txt", market_file(RISING), store)
    assert len(store.load_segments()) == 2

    counts = reprocess_all(store, EngineConfig(min_segment_length=31))

    assert counts == {"AAPL_2024-03-01": 0, "MSFT_2024-03-01": 0}
    assert store.load_segments() == []

    counts = reprocess_all(store)
    assert counts == {"AAPL_2024-03-01": 1, "MSFT_2024-03-01": 1}


def test_failed_write_leaves_neither_series_nor_segments(tmp_path, monkeypatch):
    path = tmp_path / "segments.json"
    store = JsonFileSegmentStore(path)

    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("data.segment_store.os.replace", boom)
    with pytest.raises(OSError):
        ingest_market_file("AAPL_2024-03-01.txt", market_file(RISING), store)

    assert store.list_series() == []
    assert store.load_segments() == []
    assert not path.exists()

    monkeypatch.undo()
    result = ingest_market_file("AAPL_2024-03-01.txt", market_file(RISING), store)
    assert result.status == IngestStatus.SEGMENTED
    reloaded = JsonFileSegmentStore(path)
    assert [s.id for s in reloaded.list_series()] == ["AAPL_2024-03-01"]
    assert len(reloaded.load_segments("AAPL")) == 1


class TestManualSegments(unittest.TestCase):
    def setUp(self):
        self.store = MemorySegmentStore()
        ingest_market_file("AAPL_2024-03-01.txt", market_file(RISING), self.store)

    def test_manual_segment_with_feedback_on_previous(self):
        seg = add_manual_segment(
            self.store, "AAPL_2024-03-01",
            BASE_TS, BASE_TS + timedelta(minutes=9),
            schema=SchemaType.V,
            pattern_point="2024-03-01T09:03:00",
            previous_segment_id="AAPL_2024-03-01_0001",
            is_result_correct=True,
            result_interval=" 10m ",
        )

        self.assertEqual(seg.id, "AAPL_2024-03-01_M0900-0909")
        self.assertEqual(seg.point_count, 10)
        stored = {s.id: s for s in self.store.load_segments("AAPL")}
        self.assertEqual(set(stored), {"AAPL_2024-03-01_0001", seg.id})
        self.assertEqual(stored[seg.id].schema_type, SchemaType.V)
        self.assertEqual(stored[seg.id].pattern_point, datetime(2024, 3, 1, 9, 3))
        self.assertTrue(stored["AAPL_2024-03-01_0001"].is_result_correct)
        self.assertEqual(stored["AAPL_2024-03-01_0001"].result_interval, "10m")

    def test_same_window_replaces_earlier_manual_segment(self):
        add_manual_segment(self.store, "AAPL_2024-03-01", BASE_TS, BASE_TS + timedelta(minutes=9))
        add_manual_segment(self.store, "AAPL_2024-03-01", BASE_TS, BASE_TS + timedelta(minutes=9), schema=SchemaType.R)

        manual = [s for s in self.store.load_segments() if "_M" in s.id]
        self.assertEqual(len(manual), 1)
        self.assertEqual(manual[0].schema_type, SchemaType.R)

    def test_rejections_write_nothing(self):
        before = self.store.load_segments()

        with self.assertRaises(FormatError):
            add_manual_segment(self.store, "AAPL_2024-03-01", BASE_TS, BASE_TS + timedelta(minutes=3))
        with self.assertRaises(ValueError):
            add_manual_segment(self.store, "MSFT_2024-03-01", BASE_TS, BASE_TS + timedelta(minutes=9))
        with self.assertRaises(ValueError):
            add_manual_segment(
                self.store, "AAPL_2024-03-01", BASE_TS, BASE_TS + timedelta(minutes=9),
                previous_segment_id="AAPL_2024-03-01_0042", is_result_correct=False,
            )

        self.assertEqual(self.store.load_segments(), before)
