"""
Time-series normalization: raw market-data feeds -> ordered, validated bars.

Two input shapes are accepted:
  - key-indexed mappings {timestamp: {open, high, low, close, volume}}, with
    either plain keys or numbered vendor keys ("1. open", "4. close", ...)
  - tab-separated text files with the header
    ``date ouv haut bas clot vol devise`` and ``DD/MM/YYYY HH:MM`` timestamps

Bad rows are skipped; a parse only fails when the header is wrong or when
nothing usable survives.
"""
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from config.settings import (
    TABULAR_COLUMNS,
    TABULAR_MIN_FIELDS,
    TABULAR_TIMESTAMP_FORMAT,
    MARKET_FILE_SUFFIX,
)
from models.errors import FormatError
from models.types import Bar, Series
from utils.logger import setup_logger

logger = setup_logger("Normalizer")

PRICE_FIELDS = ["open", "high", "low", "close"]
_VENDOR_KEY = re.compile(r"^\s*\d+\.\s*")
_FILE_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ABSENT_PATTERN_POINTS = {"", "null", "none", "unclassified"}
_VOLUME_LIMIT = float(np.iinfo(np.int64).max)


def _plain_key(key: str) -> str:
    # "4. close" -> "close"
    return _VENDOR_KEY.sub("", str(key)).strip().lower()


def _frame_to_bars(df: pd.DataFrame, source: str) -> List[Bar]:
    """
    Coerce a raw frame (timestamp + OHLCV columns, strings allowed) into bars.
    Rows with bad timestamps, non-finite prices, or inconsistent OHLC are dropped.
    """
    total = len(df)
    if df.empty:
        raise FormatError(f"No valid rows found in {source} data")

    for col in PRICE_FIELDS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    volume = pd.to_numeric(df["volume"], errors="coerce")
    # Non-finite or beyond int64 counts as unparsable
    volume = volume.where(np.isfinite(volume) & (volume < _VOLUME_LIMIT), 0)
    df["volume"] = volume.clip(lower=0).astype("int64")

    prices = df[PRICE_FIELDS].to_numpy(dtype=float)
    finite = np.isfinite(prices).all(axis=1)
    df = df[df["timestamp"].notnull() & finite]

    # low <= open, close <= high
    consistent = (
        (df["low"] <= df["open"]) & (df["low"] <= df["close"])
        & (df["open"] <= df["high"]) & (df["close"] <= df["high"])
    )
    df = df[consistent]

    # Strictly increasing timestamps: last occurrence wins
    df = df.drop_duplicates(subset="timestamp", keep="last")
    df = df.sort_values("timestamp").reset_index(drop=True)

    skipped = total - len(df)
    if skipped:
        logger.debug(f"Skipped {skipped}/{total} malformed {source} rows")

    if df.empty:
        raise FormatError(f"No valid rows found in {source} data")

    return [
        Bar(
            timestamp=row.timestamp.to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=int(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def parse_key_indexed(mapping: Mapping[str, Any]) -> List[Bar]:
    """Parse a {timestamp: {ohlcv}} feed into ascending bars."""
    if not mapping:
        raise FormatError("No timestamps found in key-indexed data")

    records = []
    for key, values in mapping.items():
        if not isinstance(values, Mapping):
            continue
        fields = {_plain_key(k): v for k, v in values.items()}
        records.append({
            "timestamp": key,
            "open": fields.get("open"),
            "high": fields.get("high"),
            "low": fields.get("low"),
            "close": fields.get("close"),
            "volume": fields.get("volume"),
        })

    df = pd.DataFrame(records, columns=["timestamp"] + PRICE_FIELDS + ["volume"])
    ts = pd.to_datetime(df["timestamp"], format="ISO8601", errors="coerce", utc=True)
    df["timestamp"] = ts.dt.tz_localize(None)
    return _frame_to_bars(df, "key-indexed")


def _check_header(header: str) -> None:
    lowered = header.lower()
    missing = [col for col in TABULAR_COLUMNS if col not in lowered]
    if missing:
        raise FormatError(
            f"Invalid header, missing {missing}. Expected: {chr(9).join(TABULAR_COLUMNS)}"
        )


def parse_tabular(content: str) -> List[Bar]:
    """Parse a tab-separated market-data file into ascending bars."""
    lines = content.strip().splitlines()
    if len(lines) < 2:
        raise FormatError("Empty file or invalid format")

    _check_header(lines[0])

    rows = []
    for line in lines[1:]:
        line = line.strip()
        if not line:
            continue
        parts = line.split("\t")
        if len(parts) < TABULAR_MIN_FIELDS:
            continue
        rows.append([p.strip() for p in parts[:TABULAR_MIN_FIELDS]])

    df = pd.DataFrame(rows, columns=["timestamp"] + PRICE_FIELDS + ["volume"])
    df["timestamp"] = pd.to_datetime(df["timestamp"], format=TABULAR_TIMESTAMP_FORMAT, errors="coerce")
    return _frame_to_bars(df, "tabular")


def extract_symbol_and_date(filename: str) -> Tuple[str, date]:
    """SYMBOL_YYYY-MM-DD.txt -> ("SYMBOL", date)."""
    name = Path(filename).name
    if name.endswith(MARKET_FILE_SUFFIX):
        name = name[: -len(MARKET_FILE_SUFFIX)]
    parts = name.split("_")
    if len(parts) < 2 or not parts[0]:
        raise FormatError(f"Invalid file name '{filename}'. Expected: SYMBOL_YYYY-MM-DD{MARKET_FILE_SUFFIX}")

    symbol = parts[0].upper()
    date_str = parts[1]
    if not _FILE_DATE.match(date_str):
        raise FormatError(f"Invalid date '{date_str}' in file name. Expected: YYYY-MM-DD")
    try:
        return symbol, datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError as exc:
        raise FormatError(f"Invalid date '{date_str}' in file name") from exc


def series_date_from_bars(bars: List[Bar]) -> date:
    """A key-indexed feed is dated by its most recent bar."""
    if not bars:
        raise FormatError("No bars to derive a series date from")
    return bars[-1].timestamp.date()


def build_series(symbol: str, series_date: date, bars: List[Bar]) -> Series:
    if not bars:
        raise FormatError(f"Refusing to create an empty series for {symbol}")
    symbol = symbol.strip().upper()
    if not symbol:
        raise FormatError("Series symbol is empty")
    return Series(symbol=symbol, date=series_date, bars=tuple(bars))


def normalize_pattern_point(value: Optional[Any]) -> Optional[datetime]:
    """
    Collapse the legacy "no pattern point" spellings (None, "", "null",
    "unclassified") into None; anything else must be a timestamp.
    """
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.lower() in _ABSENT_PATTERN_POINTS:
        return None
    ts = pd.to_datetime(text, errors="coerce")
    if pd.isna(ts):
        raise FormatError(f"Invalid pattern point '{value}'")
    return ts.to_pydatetime()
