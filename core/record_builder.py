from datetime import date, datetime
from typing import Any, Dict, Optional, Sequence

from models.types import Bar, RegionCandidate, RegionStats, SchemaType, Segment, Series


def segment_id(series: Series, ordinal: int) -> str:
    """SYMBOL_YYYY-MM-DD_NNNN, ordinal is 1-based within the series."""
    return f"{series.id}_{ordinal:04d}"


def manual_segment_id(series: Series, start: datetime, end: datetime) -> str:
    """SYMBOL_YYYY-MM-DD_MHHMM-HHMM for a hand-picked window."""
    return f"{series.id}_M{start:%H%M}-{end:%H%M}"


def build_segment(
    series: Series,
    ordinal: int,
    candidate: RegionCandidate,
    stats: RegionStats,
    schema: SchemaType,
    retained: Sequence[Bar],
    invalid: bool = False,
    trading_day: Optional[date] = None,
) -> Segment:
    return Segment(
        id=segment_id(series, ordinal),
        series_id=series.id,
        symbol=series.symbol,
        date=trading_day or series.date,
        trend_direction=candidate.direction,
        x0=candidate.x0,
        segment_start=retained[0].timestamp,
        segment_end=retained[-1].timestamp,
        min_price=stats.min_price,
        max_price=stats.max_price,
        average_price=stats.average_price,
        original_point_count=stats.original_point_count,
        point_count=stats.point_count,
        points_in_region=stats.points_in_region,
        red_point_count=stats.red_point_count,
        green_point_count=stats.green_point_count,
        schema_type=schema,
        points=tuple(retained),
        turning_points_count=stats.turning_points_count,
        unit_interval=stats.unit_interval,
        red_points_formatted=stats.red_points_formatted,
        green_points_formatted=stats.green_points_formatted,
        invalid=invalid,
    )


def build_render_input(segment: Segment) -> Dict[str, Any]:
    """Input contract handed to a rendering collaborator."""
    return {
        "id": segment.id,
        "pointsData": [b.to_dict() for b in segment.points],
        "minPrice": segment.min_price,
        "maxPrice": segment.max_price,
        "averagePrice": segment.average_price,
        "x0": segment.x0.isoformat(),
        "patternPoint": segment.pattern_point.isoformat() if segment.pattern_point else None,
    }
