from enum import Enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol, Any, Callable, Dict, List, Optional, Tuple

from config.settings import (
    MIN_SEGMENT_LENGTH,
    MAX_SEGMENT_LENGTH,
    REFERENCE_TOLERANCE,
    TRIM_TOLERANCE,
    BAR_STEP_SECONDS,
    BAR_STEP_TOLERANCE_SECONDS,
    V_PIVOT_MIN,
    V_PIVOT_MAX,
    V_MIN_LEG_RATIO,
    R_MAX_PIVOT,
    R_MIN_REGION_RATIO,
)


class TrendDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class SchemaType(str, Enum):
    R = "R"
    V = "V"
    UNCLASSIFIED = "UNCLASSIFIED"


class IngestStatus(str, Enum):
    SEGMENTED = "SEGMENTED"
    NO_SEGMENTS = "NO_SEGMENTS"
    ALREADY_SEGMENTED = "ALREADY_SEGMENTED"


@dataclass(frozen=True, slots=True)
class Bar:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: int = 0

    @property
    def is_red(self) -> bool:
        return self.close < self.open

    @property
    def is_green(self) -> bool:
        return self.close > self.open

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class Series:
    """One symbol/date stream of bars, immutable once ingested."""

    symbol: str
    date: date
    bars: Tuple[Bar, ...]

    @property
    def id(self) -> str:
        return f"{self.symbol}_{self.date.isoformat()}"

    @property
    def total_points(self) -> int:
        return len(self.bars)


# (point_count, direction) -> estimated points_in_region
InRegionPolicy = Callable[[int, TrendDirection], int]


@dataclass(frozen=True)
class EngineConfig:
    """Explicit engine configuration; defaults come from config.settings."""

    min_segment_length: int = MIN_SEGMENT_LENGTH
    max_segment_length: Optional[int] = MAX_SEGMENT_LENGTH
    reference_tolerance: float = REFERENCE_TOLERANCE
    trim_tolerance: Optional[float] = TRIM_TOLERANCE
    bar_step_seconds: int = BAR_STEP_SECONDS
    bar_step_tolerance_seconds: int = BAR_STEP_TOLERANCE_SECONDS
    v_pivot_min: float = V_PIVOT_MIN
    v_pivot_max: float = V_PIVOT_MAX
    v_min_leg_ratio: float = V_MIN_LEG_RATIO
    r_max_pivot: float = R_MAX_PIVOT
    r_min_region_ratio: float = R_MIN_REGION_RATIO
    in_region_policy: Optional[InRegionPolicy] = None

    def __post_init__(self):
        if self.min_segment_length < 1:
            raise ValueError(f"min_segment_length must be >= 1, got {self.min_segment_length}")
        if self.max_segment_length is not None and self.max_segment_length < self.min_segment_length:
            raise ValueError("max_segment_length must be >= min_segment_length")
        if self.reference_tolerance < 0:
            raise ValueError("reference_tolerance must be >= 0")
        if self.trim_tolerance is not None and self.trim_tolerance < 0:
            raise ValueError("trim_tolerance must be >= 0")


@dataclass(frozen=True)
class RegionCandidate:
    direction: TrendDirection
    start: int  # inclusive bar index
    end: int    # inclusive bar index
    x0: datetime

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class RegionStats:
    original_point_count: int
    point_count: int
    trim_start: int  # offset of the first retained bar inside the raw region
    min_price: float
    max_price: float
    average_price: float
    points_in_region: int
    red_point_count: int
    green_point_count: int
    turning_points_count: int = 0
    unit_interval: float = 0.0
    red_points_formatted: str = ""
    green_points_formatted: str = ""

    @property
    def in_region_ratio(self) -> float:
        if self.point_count <= 0:
            return 0.0
        return self.points_in_region / self.point_count


@dataclass(frozen=True)
class Segment:
    id: str
    series_id: str
    symbol: str
    date: date
    trend_direction: TrendDirection
    x0: datetime
    segment_start: datetime
    segment_end: datetime
    min_price: float
    max_price: float
    average_price: float
    original_point_count: int
    point_count: int
    points_in_region: Optional[int]
    red_point_count: int
    green_point_count: int
    schema_type: SchemaType = SchemaType.UNCLASSIFIED
    points: Tuple[Bar, ...] = ()
    turning_points_count: int = 0
    unit_interval: float = 0.0
    red_points_formatted: str = ""
    green_points_formatted: str = ""
    invalid: bool = False

    # Review / provenance fields, never written by the engine
    pattern_point: Optional[datetime] = None
    is_result_correct: Optional[bool] = None
    result_interval: Optional[str] = None
    ml_model_name: Optional[str] = None
    ml_classed: bool = False

    @property
    def is_classified(self) -> bool:
        return self.schema_type != SchemaType.UNCLASSIFIED


@dataclass
class IngestResult:
    series_id: str
    symbol: str
    date: date
    total_points: int
    status: IngestStatus
    segments_created: int = 0
    message: str = ""
    segment_ids: List[str] = field(default_factory=list)


class SegmentStore(Protocol):
    def save_series(self, series: Series) -> None:
        ...

    def save_segments(self, segments: List[Segment], series_id: str) -> int:
        ...

    def save_series_and_segments(self, series: Series, segments: List[Segment]) -> int:
        ...

    def segments_exist_for(self, symbol: str) -> bool:
        ...

    def load_segments(self, symbol: Optional[str] = None) -> List[Segment]:
        ...

    def load_series(self, series_id: str) -> Optional[Series]:
        ...

    def list_series(self) -> List[Series]:
        ...


class SegmentRenderer(Protocol):
    def render(self, render_input: Dict[str, Any]) -> Any:
        ...
