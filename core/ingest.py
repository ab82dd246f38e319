"""
Ingestion: parse a market-data feed, segment it once, hand the results to the
storage and rendering collaborators.

Parse errors (FormatError) propagate before anything is written. A symbol that
already has segments is not re-segmented; its series row is still replaced.
A new series row and its segments are committed in one store write.
"""
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from core.classifier import set_feedback
from core.engine import SegmentationEngine, build_manual_segment
from core.normalizer import (
    build_series,
    extract_symbol_and_date,
    parse_key_indexed,
    parse_tabular,
    series_date_from_bars,
)
from core.record_builder import build_render_input
from models.types import (
    EngineConfig,
    IngestResult,
    IngestStatus,
    SchemaType,
    Segment,
    SegmentRenderer,
    SegmentStore,
    Series,
)
from utils.logger import setup_logger

logger = setup_logger("Ingest")


def _render_all(segments: List[Segment], renderer: Optional[SegmentRenderer]) -> None:
    if renderer is None:
        return
    for seg in segments:
        try:
            renderer.render(build_render_input(seg))
        except Exception:
            logger.exception(f"Rendering failed for segment {seg.id}")


def _ingest_series(
    series: Series,
    store: SegmentStore,
    config: Optional[EngineConfig],
    renderer: Optional[SegmentRenderer],
) -> IngestResult:
    result = IngestResult(
        series_id=series.id,
        symbol=series.symbol,
        date=series.date,
        total_points=series.total_points,
        status=IngestStatus.NO_SEGMENTS,
    )

    if store.segments_exist_for(series.symbol):
        store.save_series(series)
        result.status = IngestStatus.ALREADY_SEGMENTED
        result.message = (
            f"Series {series.id} saved ({series.total_points} points), "
            f"segments already exist for {series.symbol}"
        )
        logger.info(result.message)
        return result

    segments = SegmentationEngine(config).run(series)

    if segments:
        # Series row and segments land together or not at all
        result.segments_created = store.save_series_and_segments(series, segments)
        result.segment_ids = [s.id for s in segments]
        result.status = IngestStatus.SEGMENTED
        result.message = (
            f"Series {series.id} saved ({series.total_points} points), "
            f"{result.segments_created} segments created"
        )
    else:
        store.save_series(series)
        result.message = f"Series {series.id} saved ({series.total_points} points), no segments detected"

    logger.info(result.message)
    _render_all(segments, renderer)
    return result


def ingest_market_file(
    filename: str,
    content: str,
    store: SegmentStore,
    config: Optional[EngineConfig] = None,
    renderer: Optional[SegmentRenderer] = None,
) -> IngestResult:
    """Ingest a SYMBOL_YYYY-MM-DD.txt tab-separated market-data file."""
    symbol, series_date = extract_symbol_and_date(filename)
    bars = parse_tabular(content)
    series = build_series(symbol, series_date, bars)
    return _ingest_series(series, store, config, renderer)


def ingest_key_indexed(
    symbol: str,
    mapping: Mapping[str, Any],
    store: SegmentStore,
    config: Optional[EngineConfig] = None,
    renderer: Optional[SegmentRenderer] = None,
) -> IngestResult:
    """Ingest a {timestamp: ohlcv} feed; the series is dated by its last bar."""
    bars = parse_key_indexed(mapping)
    series = build_series(symbol, series_date_from_bars(bars), bars)
    return _ingest_series(series, store, config, renderer)


def reprocess_all(store: SegmentStore, config: Optional[EngineConfig] = None) -> Dict[str, int]:
    """Re-run segmentation for every stored series, replacing their segments."""
    engine = SegmentationEngine(config)
    counts: Dict[str, int] = {}
    for series in store.list_series():
        segments = engine.run(series)
        counts[series.id] = store.save_segments(segments, series.id)
    logger.info(f"Reprocessed {len(counts)} series, {sum(counts.values())} segments")
    return counts


def add_manual_segment(
    store: SegmentStore,
    series_id: str,
    start: datetime,
    end: datetime,
    config: Optional[EngineConfig] = None,
    schema: Optional[SchemaType] = None,
    pattern_point: Optional[Any] = None,
    previous_segment_id: Optional[str] = None,
    is_result_correct: Optional[bool] = None,
    result_interval: Optional[str] = None,
) -> Segment:
    """
    Store a hand-picked segment next to the engine's ones.

    When previous_segment_id is given, the feedback fields are written on that
    segment (same series) in the same batch as the new segment.
    """
    series = store.load_series(series_id)
    if series is None:
        raise ValueError(f"Unknown series {series_id}")

    segment = build_manual_segment(series, start, end, config, schema=schema, pattern_point=pattern_point)
    existing = [s for s in store.load_segments(series.symbol) if s.series_id == series.id and s.id != segment.id]

    if previous_segment_id is not None:
        for i, seg in enumerate(existing):
            if seg.id == previous_segment_id:
                existing[i] = set_feedback(seg, is_result_correct, result_interval)
                break
        else:
            raise ValueError(f"Previous segment {previous_segment_id} not found in {series.id}")

    store.save_segments(existing + [segment], series.id)
    logger.info(f"Manual segment {segment.id} added to {series.id}")
    return segment
