import math
from dataclasses import replace
from typing import List, Optional, Sequence

import numpy as np

from config.settings import IN_REGION_DEFAULT_RATIO
from models.types import Bar, EngineConfig, RegionStats, Segment, TrendDirection
from utils.logger import setup_logger

logger = setup_logger("Statistics")

# --- Core Math Helpers ---

def mean_close(bars: Sequence[Bar]) -> float:
    """Mean close, clamped to the close range so float rounding never escapes it."""
    closes = [b.close for b in bars]
    if not closes:
        return float("nan")
    # Scale before summing so large closes cannot overflow the accumulator
    n = len(closes)
    average = math.fsum(c / n for c in closes)
    if not math.isfinite(average):
        return average
    return min(max(average, min(closes)), max(closes))


def _in_region(close: float, average: float, direction: TrendDirection) -> bool:
    if direction == TrendDirection.UP:
        return close >= average
    return close <= average


def _violation(close: float, average: float, direction: TrendDirection) -> float:
    """Relative distance on the wrong side of the average (0 when in region)."""
    if average == 0 or _in_region(close, average, direction):
        return 0.0
    return abs(average - close) / abs(average)


def default_points_in_region(point_count: int, direction: TrendDirection) -> int:
    """
    Legacy estimate: 60% of the bars, rounded up.
    Same ratio for UP and DOWN, kept as-is from the historical backfill.
    """
    if point_count <= 0:
        return 0
    return min(point_count, math.ceil(point_count * IN_REGION_DEFAULT_RATIO))


def count_points_in_region(bars: Sequence[Bar], average: float, direction: TrendDirection) -> int:
    return sum(1 for b in bars if _in_region(b.close, average, direction))


def turning_points_count(closes: Sequence[float]) -> int:
    """
    Direction changes between consecutive non-zero close deltas, plus the
    first and last points. Plateaus do not break a run.

    [100, 102, 103, 101] -> 3, [100, 102, 102, 103] -> 2
    """
    if len(closes) <= 1:
        return len(closes)

    deltas = np.diff(np.asarray(closes, dtype=float))
    signs = np.sign(deltas[deltas != 0])
    if len(signs) < 2:
        return 2

    changes = int(np.count_nonzero(signs[1:] != signs[:-1]))
    return changes + 2


def unit_interval(closes: Sequence[float], turning_points: int) -> float:
    """Mean price interval per turning point, truncated to 2 decimals."""
    if turning_points <= 0 or not closes:
        return 0.0
    raw = (max(closes) - min(closes)) / turning_points
    if not math.isfinite(raw):
        return 0.0
    if not math.isfinite(raw * 100):
        return raw
    return math.floor(raw * 100) / 100


def format_deltas(bars: Sequence[Bar], average: float, direction: TrendDirection) -> str:
    """Space-separated (close - average) values; exact zeros lean toward the trend."""
    nudge = 0.000001 if direction == TrendDirection.UP else -0.000001
    values = []
    for b in bars:
        delta = b.close - average
        if abs(delta) < 1e-9:
            delta = nudge
        values.append(f"{delta:.6f}")
    return " ".join(values)


def is_continuous(bars: Sequence[Bar], step_seconds: int = 60, tolerance_seconds: int = 1) -> bool:
    """True when consecutive bars are exactly one step apart."""
    if len(bars) < 2:
        return False
    for prev, curr in zip(bars, bars[1:]):
        gap = (curr.timestamp - prev.timestamp).total_seconds()
        if abs(gap - step_seconds) > tolerance_seconds:
            return False
    return True

# --- Trimming ---

def trim_bounds(bars: Sequence[Bar], direction: TrendDirection, config: EngineConfig) -> tuple[int, int]:
    """
    Half-open [lo, hi) of the bars kept after trimming.

    Uses the raw region's average close: leading bars are dropped while they
    sit more than trim_tolerance on the wrong side of it, then trailing bars
    the same way. Never trims below min_segment_length bars (nor below 1).
    """
    n = len(bars)
    tol = config.trim_tolerance
    if n == 0 or tol is None:
        return 0, n

    average = mean_close(bars)
    if not math.isfinite(average):
        return 0, n

    floor = max(1, min(config.min_segment_length, n))
    lo, hi = 0, n
    while hi - lo > floor and _violation(bars[lo].close, average, direction) > tol:
        lo += 1
    while hi - lo > floor and _violation(bars[hi - 1].close, average, direction) > tol:
        hi -= 1
    return lo, hi

# --- Region Statistics ---

def compute_region_stats(
    bars: Sequence[Bar],
    direction: TrendDirection,
    config: Optional[EngineConfig] = None,
) -> RegionStats:
    """Statistics for one raw region (after the trimming policy is applied)."""
    config = config or EngineConfig()
    original = len(bars)
    if original == 0:
        return RegionStats(
            original_point_count=0,
            point_count=0,
            trim_start=0,
            min_price=0.0,
            max_price=0.0,
            average_price=0.0,
            points_in_region=0,
            red_point_count=0,
            green_point_count=0,
        )

    lo, hi = trim_bounds(bars, direction, config)
    kept = list(bars[lo:hi])
    closes = np.array([b.close for b in kept], dtype=float)

    average = mean_close(kept)
    min_price = float(min(b.low for b in kept))
    max_price = float(max(b.high for b in kept))

    if math.isfinite(average):
        in_region = count_points_in_region(kept, average, direction)
    else:
        policy = config.in_region_policy or default_points_in_region
        in_region = policy(len(kept), direction)
        logger.warning(f"Non-finite average over {len(kept)} bars, points_in_region falls back to {in_region}")

    red = [b for b in kept if b.is_red]
    green = [b for b in kept if b.is_green]
    turning = turning_points_count(closes.tolist())

    if lo or hi != original:
        logger.debug(f"Trimmed region {original} -> {len(kept)} bars (lead {lo}, tail {original - hi})")

    return RegionStats(
        original_point_count=original,
        point_count=len(kept),
        trim_start=lo,
        min_price=min_price,
        max_price=max_price,
        average_price=average,
        points_in_region=in_region,
        red_point_count=len(red),
        green_point_count=len(green),
        turning_points_count=turning,
        unit_interval=unit_interval(closes.tolist(), turning),
        red_points_formatted=format_deltas(red, average, direction),
        green_points_formatted=format_deltas(green, average, direction),
    )


def backfill_points_in_region(segments: List[Segment], config: Optional[EngineConfig] = None) -> List[Segment]:
    """Fill legacy records lacking points_in_region using the configured policy."""
    config = config or EngineConfig()
    policy = config.in_region_policy or default_points_in_region
    filled = []
    for seg in segments:
        if seg.points_in_region is None:
            seg = replace(seg, points_in_region=policy(seg.point_count, seg.trend_direction))
        filled.append(seg)
    return filled
