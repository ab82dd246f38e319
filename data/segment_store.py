import json
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from core.normalizer import normalize_pattern_point
from models.types import Bar, SchemaType, Segment, Series, TrendDirection
from utils.logger import setup_logger

logger = setup_logger("SegmentStore")

STORE_VERSION = 1


# --- Serialization ---

def bar_from_dict(data: Dict[str, Any]) -> Bar:
    return Bar(
        timestamp=datetime.fromisoformat(data["timestamp"]),
        open=float(data["open"]),
        high=float(data["high"]),
        low=float(data["low"]),
        close=float(data["close"]),
        volume=int(data.get("volume") or 0),
    )


def series_to_dict(series: Series) -> Dict[str, Any]:
    return {
        "id": series.id,
        "symbol": series.symbol,
        "date": series.date.isoformat(),
        "total_points": series.total_points,
        "bars": [b.to_dict() for b in series.bars],
    }


def series_from_dict(data: Dict[str, Any]) -> Series:
    return Series(
        symbol=data["symbol"],
        date=date.fromisoformat(data["date"]),
        bars=tuple(bar_from_dict(b) for b in data.get("bars", [])),
    )


def segment_to_dict(segment: Segment) -> Dict[str, Any]:
    return {
        "id": segment.id,
        "series_id": segment.series_id,
        "symbol": segment.symbol,
        "date": segment.date.isoformat(),
        "trend_direction": segment.trend_direction.value,
        "x0": segment.x0.isoformat(),
        "segment_start": segment.segment_start.isoformat(),
        "segment_end": segment.segment_end.isoformat(),
        "min_price": segment.min_price,
        "max_price": segment.max_price,
        "average_price": segment.average_price,
        "original_point_count": segment.original_point_count,
        "point_count": segment.point_count,
        "points_in_region": segment.points_in_region,
        "red_point_count": segment.red_point_count,
        "green_point_count": segment.green_point_count,
        "schema_type": segment.schema_type.value,
        "points": [b.to_dict() for b in segment.points],
        "turning_points_count": segment.turning_points_count,
        "unit_interval": segment.unit_interval,
        "red_points_formatted": segment.red_points_formatted,
        "green_points_formatted": segment.green_points_formatted,
        "invalid": segment.invalid,
        "pattern_point": segment.pattern_point.isoformat() if segment.pattern_point else None,
        "is_result_correct": segment.is_result_correct,
        "result_interval": segment.result_interval,
        "ml_model_name": segment.ml_model_name,
        "ml_classed": segment.ml_classed,
    }


def segment_from_dict(data: Dict[str, Any]) -> Segment:
    """Inverse of segment_to_dict; tolerates legacy rows (no points_in_region, sentinel pattern points)."""
    return Segment(
        id=data["id"],
        series_id=data["series_id"],
        symbol=data["symbol"],
        date=date.fromisoformat(data["date"]),
        trend_direction=TrendDirection(data["trend_direction"]),
        x0=datetime.fromisoformat(data["x0"]),
        segment_start=datetime.fromisoformat(data["segment_start"]),
        segment_end=datetime.fromisoformat(data["segment_end"]),
        min_price=float(data["min_price"]),
        max_price=float(data["max_price"]),
        average_price=float(data["average_price"]),
        original_point_count=int(data["original_point_count"]),
        point_count=int(data["point_count"]),
        points_in_region=data.get("points_in_region"),
        red_point_count=int(data.get("red_point_count", 0)),
        green_point_count=int(data.get("green_point_count", 0)),
        schema_type=SchemaType(data.get("schema_type") or SchemaType.UNCLASSIFIED.value),
        points=tuple(bar_from_dict(b) for b in data.get("points", [])),
        turning_points_count=int(data.get("turning_points_count", 0)),
        unit_interval=float(data.get("unit_interval", 0.0)),
        red_points_formatted=data.get("red_points_formatted", ""),
        green_points_formatted=data.get("green_points_formatted", ""),
        invalid=bool(data.get("invalid", False)),
        pattern_point=normalize_pattern_point(data.get("pattern_point")),
        is_result_correct=data.get("is_result_correct"),
        result_interval=data.get("result_interval"),
        ml_model_name=data.get("ml_model_name"),
        ml_classed=bool(data.get("ml_classed", False)),
    )


def _review_sorted(segments: Iterable[Segment]) -> List[Segment]:
    return sorted(segments, key=lambda s: (s.symbol, s.date, s.x0, s.id))


# --- Stores ---

class MemorySegmentStore:
    """
    In-process store honouring the storage contract.

    Every mutation builds the next state first and swaps it in through
    _commit, so a failing batch leaves the store untouched.
    """

    def __init__(self):
        self._series: Dict[str, Series] = {}
        self._segments: Dict[str, Segment] = {}

    def _commit(self, series: Dict[str, Series], segments: Dict[str, Segment]) -> None:
        self._series = series
        self._segments = segments

    def _with_series(self, series: Series) -> Dict[str, Series]:
        updated = dict(self._series)
        replaced = series.id in updated
        updated[series.id] = series
        logger.debug(f"{'Replacing' if replaced else 'Saving'} series {series.id} ({series.total_points} points)")
        return updated

    def _with_segments(self, segments: List[Segment], series_id: str) -> Dict[str, Segment]:
        seen = set()
        for seg in segments:
            if seg.series_id != series_id:
                raise ValueError(f"Segment {seg.id} belongs to {seg.series_id}, not {series_id}")
            if seg.id in seen:
                raise ValueError(f"Duplicate segment id {seg.id} in batch")
            seen.add(seg.id)

        updated = {k: v for k, v in self._segments.items() if v.series_id != series_id}
        dropped = len(self._segments) - len(updated)
        for seg in segments:
            updated[seg.id] = seg
        if dropped:
            logger.debug(f"Replacing {dropped} previous segments of {series_id}")
        return updated

    def save_series(self, series: Series) -> None:
        self._commit(self._with_series(series), self._segments)

    def save_segments(self, segments: List[Segment], series_id: str) -> int:
        self._commit(self._series, self._with_segments(segments, series_id))
        return len(segments)

    def save_series_and_segments(self, series: Series, segments: List[Segment]) -> int:
        """Series row and its segment set in one commit; neither lands without the other."""
        updated_segments = self._with_segments(segments, series.id)
        self._commit(self._with_series(series), updated_segments)
        return len(segments)

    def segments_exist_for(self, symbol: str) -> bool:
        symbol = symbol.strip().upper()
        return any(s.symbol == symbol for s in self._segments.values())

    def load_segments(self, symbol: Optional[str] = None) -> List[Segment]:
        segments = self._segments.values()
        if symbol is not None:
            symbol = symbol.strip().upper()
            segments = [s for s in segments if s.symbol == symbol]
        return _review_sorted(segments)

    def load_series(self, series_id: str) -> Optional[Series]:
        return self._series.get(series_id)

    def list_series(self) -> List[Series]:
        return [self._series[k] for k in sorted(self._series)]


class JsonFileSegmentStore(MemorySegmentStore):
    """
    MemorySegmentStore persisted to a single JSON document.

    Each commit rewrites the whole file through a temp file + os.replace;
    the in-memory state only moves forward once the file is on disk.
    """

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        with self.path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
        self._series = {s["id"]: series_from_dict(s) for s in payload.get("series", [])}
        self._segments = {s["id"]: segment_from_dict(s) for s in payload.get("segments", [])}
        logger.info(f"Loaded {len(self._series)} series, {len(self._segments)} segments from {self.path}")

    def _commit(self, series: Dict[str, Series], segments: Dict[str, Segment]) -> None:
        payload = {
            "version": STORE_VERSION,
            "series": [series_to_dict(series[k]) for k in sorted(series)],
            "segments": [segment_to_dict(s) for s in _review_sorted(segments.values())],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError:
            logger.exception(f"Failed to write {self.path}")
            tmp.unlink(missing_ok=True)
            raise
        super()._commit(series, segments)
