import os

# Segmenter
MIN_SEGMENT_LENGTH = 6  # bars; shorter regions are discarded
MAX_SEGMENT_LENGTH = None  # None = regions run until the trend breaks
REFERENCE_TOLERANCE = 0.001  # ~0.10% wiggle room around the running mean

# Statistics
TRIM_TOLERANCE = 0.01  # leading/trailing bars beyond 1% on the wrong side of the average are trimmed
IN_REGION_DEFAULT_RATIO = 0.6  # legacy fallback for points_in_region, same for UP and DOWN

# Continuity (1 bar = 1 minute)
BAR_STEP_SECONDS = 60
BAR_STEP_TOLERANCE_SECONDS = 1

# Review tiers for points_in_region
REGION_TIER_LOW_MAX = 6  # below this -> "Low"
REGION_TIER_HIGH_MIN = 21  # above this -> "High"

# Classifier thresholds
V_PIVOT_MIN = 0.25
V_PIVOT_MAX = 0.75
V_MIN_LEG_RATIO = 0.5
R_MAX_PIVOT = 0.15
R_MIN_REGION_RATIO = 0.5

# Tabular market-data files
TABULAR_COLUMNS = ["date", "ouv", "haut", "bas", "clot", "vol", "devise"]
TABULAR_MIN_FIELDS = 6
TABULAR_TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M"
MARKET_FILE_SUFFIX = ".txt"

# Storage
STORE_PATH = os.environ.get("SEGMENTER_STORE_PATH", "utils/segments.json")

# Logging
LOG_LEVEL = os.environ.get("SEGMENTER_LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("SEGMENTER_LOG_FILE", "utils/segmenter.log")
