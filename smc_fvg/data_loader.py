"""
Data loading and preprocessing utilities
"""
import logging
import sys
import pandas as pd
import numpy as np
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional, Sequence

from .models import Bar

logger = logging.getLogger(__name__)

PRICE_COLUMNS = ['open', 'high', 'low', 'close']
BAR_COLUMNS = ['timestamp'] + PRICE_COLUMNS + ['volume']

TIMEFRAME_TO_MS = {
    "1m": 60 * 1000,
    "3m": 3 * 60 * 1000,
    "5m": 5 * 60 * 1000,
    "15m": 15 * 60 * 1000,
    "30m": 30 * 60 * 1000,
    "1h": 60 * 60 * 1000,
    "2h": 2 * 60 * 60 * 1000,
    "4h": 4 * 60 * 60 * 1000,
    "6h": 6 * 60 * 60 * 1000,
    "8h": 8 * 60 * 60 * 1000,
    "12h": 12 * 60 * 60 * 1000,
    "1d": 24 * 60 * 60 * 1000,
}


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Setup logging configuration"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def timeframe_to_ms(timeframe: str) -> int:
    try:
        return TIMEFRAME_TO_MS[timeframe]
    except KeyError:
        raise ValueError(f"Invalid timeframe: {timeframe}") from None


def get_bar_start_time(timestamp: int, timeframe: str) -> int:
    """Start of the `timeframe` bucket containing timestamp (ms)"""
    ms = timeframe_to_ms(timeframe)
    return timestamp // ms * ms


def get_timeframe_ratio(larger: str, smaller: str) -> float:
    return timeframe_to_ms(larger) / timeframe_to_ms(smaller)


def _parse_timestamps(column: pd.Series) -> pd.Series:
    """Unix milliseconds as int64, accepting numeric or date-string input"""
    if pd.api.types.is_numeric_dtype(column):
        return pd.to_numeric(column, errors='coerce')

    parsed = pd.to_datetime(column, utc=True, errors='coerce')
    return (parsed - pd.Timestamp(0, tz='UTC')) // pd.Timedelta(milliseconds=1)


def clean_bars_frame(df: pd.DataFrame) -> pd.DataFrame:
    """
    Normalize a raw OHLCV frame

    Column names are lower-cased, volume defaults to 0, timestamps become unix
    milliseconds, rows are sorted, duplicate timestamps keep their first row and
    rows with inconsistent OHLC are dropped.

    Raises:
        ValueError: If required columns are missing or nothing is left
    """
    df = df.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]

    required_columns = {'timestamp', 'open', 'high', 'low', 'close'}
    missing_columns = required_columns - set(df.columns)
    if missing_columns:
        raise ValueError(f'CSV must contain columns: {sorted(required_columns)}. Missing: {sorted(missing_columns)}')

    if 'volume' not in df.columns:
        df['volume'] = 0.0

    df['timestamp'] = _parse_timestamps(df['timestamp'])
    df = df.dropna(subset=['timestamp'] + PRICE_COLUMNS)
    df['timestamp'] = df['timestamp'].astype(np.int64)
    df['volume'] = df['volume'].fillna(0.0)

    df = df.sort_values('timestamp', kind='stable')
    duplicated = df['timestamp'].duplicated(keep='first')
    if duplicated.any():
        logger.warning(f"Dropping {duplicated.sum()} rows with duplicate timestamps")
        df = df[~duplicated]

    for col in PRICE_COLUMNS:
        if (df[col] <= 0).any():
            logger.warning(f"Found non-positive values in {col} column")

    invalid_ohlc = (
        (df['high'] < df['low']) |
        (df['high'] < df['open']) |
        (df['high'] < df['close']) |
        (df['low'] > df['open']) |
        (df['low'] > df['close'])
    )
    if invalid_ohlc.any():
        logger.warning(f"Found {invalid_ohlc.sum()} rows with invalid OHLC data")
        df = df[~invalid_ohlc]

    if df.empty:
        raise ValueError("DataFrame is empty after cleaning")

    return df[BAR_COLUMNS].reset_index(drop=True)


def bars_from_dataframe(df: pd.DataFrame) -> List[Bar]:
    """Convert a cleaned frame into Bar records"""
    return [
        Bar(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df[BAR_COLUMNS].itertuples(index=False)
    ]


def bars_to_dataframe(bars: Sequence[Bar]) -> pd.DataFrame:
    """Bars as a frame with a UTC `datetime` column next to the raw timestamp"""
    df = pd.DataFrame(
        [(b.timestamp, b.open, b.high, b.low, b.close, b.volume) for b in bars],
        columns=BAR_COLUMNS,
    )
    df['datetime'] = pd.to_datetime(df['timestamp'], unit='ms', utc=True)
    return df


def load_csv(path: str) -> List[Bar]:
    """
    Load CSV file and validate required columns

    Args:
        path: Path to CSV file

    Returns:
        Bars in ascending timestamp order

    Raises:
        ValueError: If required columns are missing
        FileNotFoundError: If file doesn't exist
    """
    if not Path(path).exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    df = clean_bars_frame(pd.read_csv(path))
    logger.info(f"Loaded {len(df)} bars from {path}")
    return bars_from_dataframe(df)


def resample_bars(bars: Sequence[Bar], timeframe: str) -> List[Bar]:
    """Aggregate bars into `timeframe` buckets aligned to the bucket start time"""
    if not bars:
        return []

    ms = timeframe_to_ms(timeframe)
    df = bars_to_dataframe(bars)
    df['bucket'] = df['timestamp'] // ms * ms

    grouped = df.groupby('bucket', sort=True).agg(
        open=('open', 'first'),
        high=('high', 'max'),
        low=('low', 'min'),
        close=('close', 'last'),
        volume=('volume', 'sum'),
    )
    grouped = grouped.reset_index().rename(columns={'bucket': 'timestamp'})
    return bars_from_dataframe(grouped)


class BarBuffer:
    """Fixed-size rolling window of the most recent bars"""

    def __init__(self, maxlen: int = 500):
        if maxlen < 1:
            raise ValueError(f"maxlen must be >= 1: {maxlen}")
        self._bars: Deque[Bar] = deque(maxlen=maxlen)

    @property
    def maxlen(self) -> int:
        return self._bars.maxlen

    def append(self, bar: Bar) -> None:
        """
        Add the next bar

        Raises:
            ValueError: bar is not newer than the last buffered bar
        """
        if self._bars and bar.timestamp <= self._bars[-1].timestamp:
            raise ValueError(
                f"Bar at {bar.timestamp} is not after the last buffered bar at {self._bars[-1].timestamp}"
            )
        self._bars.append(bar)

    def extend(self, bars: Sequence[Bar]) -> None:
        for bar in bars:
            self.append(bar)

    def to_list(self) -> List[Bar]:
        return list(self._bars)

    @property
    def last(self) -> Optional[Bar]:
        return self._bars[-1] if self._bars else None

    def clear(self) -> None:
        self._bars.clear()

    def __len__(self) -> int:
        return len(self._bars)
