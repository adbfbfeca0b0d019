"""
Candle Sources

Adapters that turn external market data into the ordered ``Candle`` lists the
evaluation core consumes. Fetching from remote venues is the host's job; the
adapters here cover the CSV uploads of the dashboard, pandas DataFrames, and
a seeded synthetic random walk for demos and tests.

CSV LAYOUT
    One header row (skipped), then positional columns:
        timestamp, open, high, low, close, volume
    timestamp may be a date/time string (UTC unless it carries an offset)
    or a number of epoch milliseconds.

CLEANING
    - Rows whose timestamp or close cannot be parsed are dropped
    - Missing open/high/low fall back to close, missing volume to 0
    - Rows are sorted by timestamp; duplicate timestamps keep the last row
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import List, Optional, Protocol, Union

import numpy as np
import pandas as pd

from .strategy import Candle, StrategyLabError

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

CSV_COLUMNS: List[str] = ["timestamp", "open", "high", "low", "close", "volume"]

# Bar length per timeframe label, in milliseconds
TIMEFRAME_MS = {
    "1m": 60_000,
    "5m": 5 * 60_000,
    "15m": 15 * 60_000,
    "1h": 60 * 60_000,
    "4h": 4 * 60 * 60_000,
    "1d": 24 * 60 * 60_000,
}

_EPOCH = pd.Timestamp(0, tz="UTC")


class CandleSourceError(StrategyLabError):
    """Market data could not be located or read."""


# =============================================================================
# INTERFACE
# =============================================================================

class CandleSource(Protocol):
    """Anything that can return recent candles for a symbol and timeframe."""

    def fetch(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        ...


# =============================================================================
# PARSING
# =============================================================================

def _to_epoch_ms(values: pd.Series) -> pd.Series:
    """Numbers are taken as epoch milliseconds, anything else parsed as a date."""
    text = values.astype(str).str.strip()
    numeric = pd.to_numeric(text, errors="coerce")
    dates = pd.to_datetime(text.where(numeric.isna()), utc=True, errors="coerce", format="mixed")
    millis = (dates - _EPOCH) // pd.Timedelta(milliseconds=1)
    return numeric.fillna(millis)


def _clean_frame(frame: pd.DataFrame) -> pd.DataFrame:
    """Coerce, drop unusable rows, sort and de-duplicate."""
    df = pd.DataFrame({"timestamp": _to_epoch_ms(frame["timestamp"])})
    for col in CSV_COLUMNS[1:]:
        if col in frame.columns:
            df[col] = pd.to_numeric(frame[col], errors="coerce")
        else:
            df[col] = np.nan

    before = len(df)
    df = df.dropna(subset=["timestamp", "close"])
    dropped = before - len(df)
    if dropped:
        logger.warning(f"Dropped {dropped} rows with unparsable timestamp or close")

    for col in ("open", "high", "low"):
        df[col] = df[col].fillna(df["close"])
    df["volume"] = df["volume"].fillna(0.0)

    df["timestamp"] = df["timestamp"].astype("int64")
    df = df.sort_values("timestamp", kind="stable")
    duplicates = int(df["timestamp"].duplicated(keep="last").sum())
    if duplicates:
        logger.warning(f"Dropped {duplicates} rows with duplicate timestamps")
        df = df.drop_duplicates(subset="timestamp", keep="last")

    return df.reset_index(drop=True)


def _frame_to_candles(df: pd.DataFrame) -> List[Candle]:
    return [
        Candle(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def parse_csv(source: Union[str, Path, io.TextIOBase]) -> List[Candle]:
    """
    Parse CSV candle data.

    Args:
        source: CSV text, a path to an existing CSV file, or an open text
            stream. A string that does not name an existing file is read as
            CSV text.

    Returns:
        Candles ordered by strictly increasing timestamp
    """
    if isinstance(source, str) and ("\n" in source or not Path(source).is_file()):
        source = io.StringIO(source.strip())

    try:
        raw = pd.read_csv(
            source,
            header=None,
            skiprows=1,
            names=CSV_COLUMNS,
            usecols=range(len(CSV_COLUMNS)),
            dtype=str,
            skipinitialspace=True,
        )
    except pd.errors.EmptyDataError:
        return []

    candles = _frame_to_candles(_clean_frame(raw))
    logger.debug(f"Parsed {len(candles)} candles from CSV")
    return candles


def candles_from_dataframe(df: pd.DataFrame) -> List[Candle]:
    """
    Convert an OHLCV DataFrame into candles.

    Column names are matched case-insensitively (``Open`` or ``open``). The
    timestamp comes from a ``timestamp`` column when present, otherwise from
    the index (a DatetimeIndex; naive times are read as UTC).
    """
    frame = df.rename(columns={c: str(c).lower() for c in df.columns})

    missing = [col for col in ("open", "high", "low", "close") if col not in frame.columns]
    if missing:
        raise CandleSourceError(f"Missing required columns: {missing}")

    if "timestamp" not in frame.columns:
        index = pd.DatetimeIndex(pd.to_datetime(frame.index))
        if index.tz is None:
            index = index.tz_localize("UTC")
        millis = (index - _EPOCH) // pd.Timedelta(milliseconds=1)
        frame = frame.assign(timestamp=np.asarray(millis, dtype="int64"))

    return _frame_to_candles(_clean_frame(frame.reset_index(drop=True)))


# =============================================================================
# SOURCES
# =============================================================================

class CsvCandleSource:
    """
    Candle source backed by CSV files.

    ``path`` is either one CSV file (served for every symbol) or a directory
    holding ``{symbol}_{timeframe}.csv`` or ``{symbol}.csv`` files.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def fetch(self, symbol: str, timeframe: str = "1d", limit: Optional[int] = None) -> List[Candle]:
        file = self._locate(symbol, timeframe)
        logger.info(f"Loading {symbol} {timeframe} candles from {file}")
        candles = parse_csv(file)
        if limit is not None and limit >= 0:
            candles = candles[-limit:] if limit else []
        return candles

    def _locate(self, symbol: str, timeframe: str) -> Path:
        if self.path.is_file():
            return self.path
        for name in (f"{symbol}_{timeframe}.csv", f"{symbol}.csv"):
            candidate = self.path / name
            if candidate.is_file():
                return candidate
        raise CandleSourceError(f"No CSV data for {symbol} ({timeframe}) under {self.path}")


class SyntheticCandleSource:
    """Seeded random-walk candles; the same symbol always yields the same walk."""

    def __init__(self, seed: int = 0, start_price: float = 100.0):
        self.seed = seed
        self.start_price = start_price

    def fetch(self, symbol: str, timeframe: str = "1d", limit: int = 500) -> List[Candle]:
        if timeframe not in TIMEFRAME_MS:
            raise CandleSourceError(f"Unknown timeframe: {timeframe}")
        # Stable per-symbol offset (str hash is salted per process)
        offset = sum(ord(ch) for ch in symbol)
        return generate_synthetic_candles(
            limit,
            seed=self.seed + offset,
            start_price=self.start_price,
            interval_ms=TIMEFRAME_MS[timeframe],
        )


def generate_synthetic_candles(
    n: int,
    seed: Optional[int] = None,
    start_price: float = 100.0,
    drift: float = 0.0005,
    volatility: float = 0.015,
    start_timestamp: int = 1_704_067_200_000,
    interval_ms: int = TIMEFRAME_MS["1d"],
) -> List[Candle]:
    """
    Geometric random walk with plausible OHLC structure.

    Each bar opens at the previous close; high and low extend beyond the
    open/close body by a random fraction of the volatility.

    Args:
        n: Number of candles
        seed: Generator seed (None = fresh entropy)
        start_price: First open
        drift: Mean log return per bar
        volatility: Std of the log return per bar
        start_timestamp: Epoch ms of the first bar (2024-01-01 UTC)
        interval_ms: Bar spacing
    """
    if n <= 0:
        return []

    rng = np.random.default_rng(seed)
    log_returns = rng.normal(drift, volatility, size=n)
    closes = start_price * np.exp(np.cumsum(log_returns))
    opens = np.concatenate(([start_price], closes[:-1]))
    wicks = np.abs(rng.normal(0.0, volatility / 2, size=(n, 2)))
    highs = np.maximum(opens, closes) * (1 + wicks[:, 0])
    lows = np.minimum(opens, closes) * (1 - wicks[:, 1])
    volumes = rng.lognormal(mean=10.0, sigma=0.5, size=n)

    return [
        Candle(
            timestamp=start_timestamp + i * interval_ms,
            open=float(opens[i]),
            high=float(highs[i]),
            low=float(lows[i]),
            close=float(closes[i]),
            volume=float(volumes[i]),
        )
        for i in range(n)
    ]
