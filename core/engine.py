from dataclasses import replace
from datetime import date, datetime
from itertools import groupby
from typing import Any, List, Optional, Sequence, Tuple

from core.classifier import SchemaClassifier
from core.normalizer import normalize_pattern_point
from core.record_builder import build_segment, manual_segment_id
from core.segmenter import TrendSegmenter
from core.statistics import compute_region_stats, is_continuous
from models.errors import FormatError
from models.types import Bar, EngineConfig, RegionCandidate, SchemaType, Segment, Series, TrendDirection
from utils.logger import setup_logger

logger = setup_logger("Engine")


def split_trading_days(bars: Sequence[Bar]) -> List[Tuple[date, List[Bar]]]:
    """Group ascending bars by calendar day; regions never span two days."""
    return [(day, list(group)) for day, group in groupby(bars, key=lambda b: b.timestamp.date())]


class SegmentationEngine:
    """
    Series -> trading days -> regions -> statistics -> schema -> segment records.

    Holds no state between runs; the same series and config always
    produce the same segments. Ordinals run across the whole series.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.segmenter = TrendSegmenter(self.config)
        self.classifier = SchemaClassifier(self.config)

    def run(self, series: Series) -> List[Segment]:
        days = split_trading_days(series.bars)
        segments: List[Segment] = []
        for day, bars in days:
            for region in self.segmenter.scan(bars):
                segments.append(self._build(series, len(segments) + 1, day, bars, region))

        if not segments:
            logger.info(f"{series.id}: no segments in {series.total_points} bars")
            return []

        classified = sum(1 for s in segments if s.schema_type != SchemaType.UNCLASSIFIED)
        logger.info(
            f"{series.id}: {len(segments)} segments from {series.total_points} bars over {len(days)} day(s) "
            f"({classified} classified, {sum(1 for s in segments if s.invalid)} invalid)"
        )
        return segments

    def _build(self, series: Series, ordinal: int, day: date, bars: List[Bar], region: RegionCandidate) -> Segment:
        raw = bars[region.start:region.end + 1]
        stats = compute_region_stats(raw, region.direction, self.config)
        retained = raw[stats.trim_start:stats.trim_start + stats.point_count]

        schema = self.classifier.classify(stats, retained, region.direction)
        continuous = is_continuous(
            retained,
            step_seconds=self.config.bar_step_seconds,
            tolerance_seconds=self.config.bar_step_tolerance_seconds,
        )
        segment = build_segment(
            series, ordinal, region, stats, schema, retained,
            invalid=not continuous, trading_day=day,
        )

        logger.debug(
            f"{segment.id}: {region.direction.value} {day} [{region.start}, {region.end}] "
            f"kept {stats.point_count}/{stats.original_point_count} "
            f"in_region={stats.points_in_region} schema={schema.value}"
            + ("" if continuous else " (gap)")
        )
        return segment


def build_manual_segment(
    series: Series,
    start: datetime,
    end: datetime,
    config: Optional[EngineConfig] = None,
    schema: Optional[SchemaType] = None,
    pattern_point: Optional[Any] = None,
) -> Segment:
    """
    Segment over a hand-picked [start, end] window of one trading day.

    The window is kept as selected (no trimming). Direction follows the
    first and last closes; the schema is classified unless given.
    """
    config = config or EngineConfig()
    if end < start:
        raise FormatError(f"Manual segment ends before it starts: {start} > {end}")
    if start.date() != end.date():
        raise FormatError("Manual segment must stay within one trading day")

    bars = [b for b in series.bars if start <= b.timestamp <= end]
    if len(bars) < config.min_segment_length:
        raise FormatError(
            f"Manual segment needs at least {config.min_segment_length} points, got {len(bars)}"
        )

    point = normalize_pattern_point(pattern_point)
    if point is not None and not (bars[0].timestamp <= point <= bars[-1].timestamp):
        raise FormatError(f"Pattern point {point} is outside the segment window")

    direction = TrendDirection.UP if bars[-1].close >= bars[0].close else TrendDirection.DOWN
    stats = compute_region_stats(bars, direction, replace(config, trim_tolerance=None))
    if schema is None:
        schema = SchemaClassifier(config).classify(stats, bars, direction)

    candidate = RegionCandidate(direction=direction, start=0, end=len(bars) - 1, x0=bars[0].timestamp)
    continuous = is_continuous(
        bars,
        step_seconds=config.bar_step_seconds,
        tolerance_seconds=config.bar_step_tolerance_seconds,
    )
    segment = build_segment(
        series, 0, candidate, stats, SchemaType(schema), bars,
        invalid=not continuous, trading_day=start.date(),
    )
    segment = replace(segment, id=manual_segment_id(series, start, end), pattern_point=point)
    logger.info(f"Manual segment {segment.id}: {direction.value} {len(bars)} bars schema={segment.schema_type.value}")
    return segment
