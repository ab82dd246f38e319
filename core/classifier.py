from dataclasses import replace
from typing import Any, Dict, Iterable, Optional, Sequence

import numpy as np

from config.settings import REGION_TIER_LOW_MAX, REGION_TIER_HIGH_MIN
from core.normalizer import normalize_pattern_point
from models.types import Bar, EngineConfig, RegionStats, SchemaType, Segment, TrendDirection
from utils.logger import setup_logger

logger = setup_logger("Classifier")


def region_tier(points_in_region: Optional[int]) -> str:
    """Review badge for points_in_region: Unknown / Low / Optimal / High."""
    if not points_in_region:
        return "Unknown"
    if points_in_region < REGION_TIER_LOW_MAX:
        return "Low"
    if points_in_region > REGION_TIER_HIGH_MIN:
        return "High"
    return "Optimal"


class SchemaClassifier:
    """
    Rule-based R / V shape classifier over a segment's retained bars.

    The pivot is the counter-trend extreme (lowest close of an UP segment,
    highest close of a DOWN one):
    - V: pivot sits mid-segment and both legs around it carry weight
    - R: pivot sits at the start and most bars stay in region
    Anything else, including too little data, is UNCLASSIFIED.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def classify(self, stats: RegionStats, bars: Sequence[Bar], direction: TrendDirection) -> SchemaType:
        cfg = self.config
        n = len(bars)
        if n < cfg.min_segment_length or stats.point_count <= 0 or n < 2:
            return SchemaType.UNCLASSIFIED

        closes = np.array([b.close for b in bars], dtype=float)
        if closes.max() == closes.min():
            return SchemaType.UNCLASSIFIED

        pivot = int(closes.argmin() if direction == TrendDirection.UP else closes.argmax())
        position = pivot / (n - 1)

        if cfg.v_pivot_min <= position <= cfg.v_pivot_max:
            leg_in = abs(closes[pivot] - closes[0])
            leg_out = abs(closes[-1] - closes[pivot])
            if leg_out > 0 and leg_in >= cfg.v_min_leg_ratio * leg_out:
                return SchemaType.V

        if position <= cfg.r_max_pivot and stats.in_region_ratio >= cfg.r_min_region_ratio:
            return SchemaType.R

        return SchemaType.UNCLASSIFIED

    def assign(self, segment: Segment) -> Segment:
        """One-time assignment: segments already carrying R or V are left alone."""
        if segment.is_classified:
            return segment
        stats = RegionStats(
            original_point_count=segment.original_point_count,
            point_count=segment.point_count,
            trim_start=0,
            min_price=segment.min_price,
            max_price=segment.max_price,
            average_price=segment.average_price,
            points_in_region=segment.points_in_region or 0,
            red_point_count=segment.red_point_count,
            green_point_count=segment.green_point_count,
        )
        schema = self.classify(stats, segment.points, segment.trend_direction)
        if schema == segment.schema_type:
            return segment
        return replace(segment, schema_type=schema)


def override_schema(segment: Segment, schema: SchemaType) -> Segment:
    """Human override of the schema."""
    schema = SchemaType(schema)
    logger.info(f"Schema override on {segment.id}: {segment.schema_type.value} -> {schema.value}")
    return replace(segment, schema_type=schema)


def reset_schema(segment: Segment) -> Segment:
    return replace(segment, schema_type=SchemaType.UNCLASSIFIED)


def set_pattern_point(segment: Segment, value: Optional[Any]) -> Segment:
    """Reference (or clear, with a sentinel) the segment's pattern point."""
    point = normalize_pattern_point(value)
    logger.info(f"Pattern point on {segment.id}: {point.isoformat() if point else 'cleared'}")
    return replace(segment, pattern_point=point)


def set_feedback(segment: Segment, is_result_correct: Optional[bool], result_interval: Optional[str] = None) -> Segment:
    """Record whether the segment's outcome held, and over which interval."""
    interval = result_interval.strip() if result_interval else ""
    return replace(
        segment,
        is_result_correct=None if is_result_correct is None else bool(is_result_correct),
        result_interval=interval or None,
    )


def _review_order(segment: Segment):
    return (segment.symbol, segment.date, segment.x0, segment.id)


def _awaiting_review(segment: Segment) -> bool:
    return (
        segment.schema_type == SchemaType.UNCLASSIFIED
        and segment.pattern_point is None
        and not segment.invalid
    )


def next_unclassified(segments: Iterable[Segment]) -> Optional[Segment]:
    """First valid, unclassified, pattern-point-free segment in review order."""
    for seg in sorted(segments, key=_review_order):
        if _awaiting_review(seg):
            return seg
    return None


def classification_summary(segments: Iterable[Segment]) -> Dict[str, object]:
    segments = list(segments)
    valid = [s for s in segments if not s.invalid]
    unclassified = [s for s in valid if _awaiting_review(s)]
    nxt = next_unclassified(valid)
    return {
        "total": len(segments),
        "invalid": len(segments) - len(valid),
        "r_classified": sum(1 for s in valid if s.schema_type == SchemaType.R and not s.ml_classed),
        "v_classified": sum(1 for s in valid if s.schema_type == SchemaType.V and not s.ml_classed),
        "unclassified": len(unclassified),
        "pattern_points_referenced": sum(1 for s in valid if s.pattern_point is not None),
        "has_unclassified": bool(unclassified),
        "next_unclassified_id": nxt.id if nxt else None,
    }
