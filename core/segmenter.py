from typing import List, Optional

from models.types import Bar, EngineConfig, RegionCandidate, TrendDirection
from utils.logger import setup_logger

logger = setup_logger("Segmenter")


class TrendSegmenter:
    """
    Left-to-right trend region scanner.

    - Reference price is the running mean of closes already in the open region
    - A region starts undecided; the first close leaving the tolerance band
      around the reference fixes its direction
    - UP holds while close >= ref * (1 - tol), DOWN while close <= ref * (1 + tol)
    - The breaking bar opens the next region; short regions are dropped
    - A region that never leaves the band is UP (tie-break)
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    # ------------------------------------------------------------------
    # Public entry
    # ------------------------------------------------------------------
    def scan(self, bars: List[Bar]) -> List[RegionCandidate]:
        min_len = self.config.min_segment_length
        if len(bars) < min_len:
            logger.debug(f"Series too short for a segment: {len(bars)} < {min_len}")
            return []

        regions: List[RegionCandidate] = []
        start = 0
        while start < len(bars):
            end, direction = self._grow_region(bars, start)
            length = end - start + 1
            if length >= min_len:
                regions.append(
                    RegionCandidate(
                        direction=direction,
                        start=start,
                        end=end,
                        x0=bars[start].timestamp,
                    )
                )
            else:
                logger.debug(f"Discarded short region [{start}, {end}] ({length} < {min_len})")
            # Resume right after the consumed region
            start = end + 1
            if len(bars) - start < min_len:
                break

        return regions

    # ------------------------------------------------------------------
    # Region growth
    # ------------------------------------------------------------------
    def _grow_region(self, bars: List[Bar], start: int) -> tuple[int, TrendDirection]:
        """Return (inclusive end index, direction) of the region opened at `start`."""
        tol = self.config.reference_tolerance
        max_len = self.config.max_segment_length

        direction: Optional[TrendDirection] = None
        # Incremental mean so huge closes never overflow a running sum
        ref = bars[start].close
        count = 1
        end = start

        for i in range(start + 1, len(bars)):
            if max_len is not None and count >= max_len:
                break

            close = bars[i].close
            above = close > ref * (1 + tol)
            below = close < ref * (1 - tol)

            if direction is None:
                if above:
                    direction = TrendDirection.UP
                elif below:
                    direction = TrendDirection.DOWN
            elif direction == TrendDirection.UP and below:
                break
            elif direction == TrendDirection.DOWN and above:
                break

            count += 1
            ref += (close - ref) / count
            end = i

        return end, direction or TrendDirection.UP
