"""
Smart Money Concepts detection functions: swing levels, ATR, displacement runs
and fair value gaps
"""
import numpy as np
from typing import List, Optional, Sequence, Iterator, Tuple

from .models import Bar, FVG, Displacement, Sweep


def is_swing_high(bars: Sequence[Bar], index: int, left: int, right: int) -> bool:
    """True when no bar in [index-left, index+right] has a strictly greater high"""
    if index - left < 0 or index + right >= len(bars):
        return False
    high = bars[index].high
    return all(bars[j].high <= high for j in range(index - left, index + right + 1))


def is_swing_low(bars: Sequence[Bar], index: int, left: int, right: int) -> bool:
    """True when no bar in [index-left, index+right] has a strictly lower low"""
    if index - left < 0 or index + right >= len(bars):
        return False
    low = bars[index].low
    return all(bars[j].low >= low for j in range(index - left, index + right + 1))


def calculate_atr(bars: Sequence[Bar], period: int = 14, end_index: Optional[int] = None) -> float:
    """
    Average True Range over the `period` bars ending at end_index

    Returns 0.0 when there are not enough bars for a previous close on every
    bar of the window.
    """
    if end_index is None:
        end_index = len(bars) - 1
    if end_index < period:
        return 0.0

    window = bars[end_index - period:end_index + 1]
    high = np.array([b.high for b in window[1:]], dtype=float)
    low = np.array([b.low for b in window[1:]], dtype=float)
    prev_close = np.array([b.close for b in window[:-1]], dtype=float)

    tr = np.maximum.reduce([
        high - low,
        np.abs(high - prev_close),
        np.abs(low - prev_close),
    ])
    return float(tr.sum() / period)


def average_volume(bars: Sequence[Bar], lookback: int = 10) -> float:
    """Mean volume of the last `lookback` bars, current bar included"""
    recent = bars[-lookback:]
    if not recent:
        return 0.0
    return float(np.mean([b.volume for b in recent]))


def expected_displacement(sweep_direction: str) -> str:
    """A swept high implies a bearish push and a swept low a bullish one"""
    return 'bearish' if sweep_direction == 'bullish' else 'bullish'


def consecutive_runs(bars: Sequence[Bar], start: int, direction: str) -> Iterator[Tuple[int, int]]:
    """Yield (first, last) index of each maximal run of same-direction bars from start"""
    run_start = None
    for i in range(max(start, 0), len(bars)):
        bar = bars[i]
        matches = bar.is_bullish if direction == 'bullish' else bar.is_bearish
        if matches:
            if run_start is None:
                run_start = i
        elif run_start is not None:
            yield run_start, i - 1
            run_start = None
    if run_start is not None:
        yield run_start, len(bars) - 1


def displacement_strength(bars: Sequence[Bar], first: int, last: int) -> float:
    """Net move of a run: |close of last bar - open of first bar|"""
    return abs(bars[last].close - bars[first].open)


def detect_fvgs(bars: Sequence[Bar], first: int, last: int,
                min_size: float, max_size: float) -> List[FVG]:
    """Detect Fair Value Gaps on every adjacent 3-bar window inside [first, last]"""
    fvgs: List[FVG] = []

    for i in range(first, last - 1):
        b1 = bars[i]
        b3 = bars[i + 2]

        # Bullish FVG: gap up between bar 1 high and bar 3 low
        if b1.high < b3.low:
            top, bottom = b3.low, b1.high
            size = (top - bottom) / b1.close
            if min_size <= size <= max_size:
                fvgs.append(FVG(
                    kind='bullish',
                    top=top,
                    bottom=bottom,
                    middle=(top + bottom) / 2,
                    strength=size,
                    created_index=i + 2,
                    timestamp=b3.timestamp,
                ))

        # Bearish FVG: gap down between bar 1 low and bar 3 high
        if b1.low > b3.high:
            top, bottom = b1.low, b3.high
            size = (top - bottom) / b1.close
            if min_size <= size <= max_size:
                fvgs.append(FVG(
                    kind='bearish',
                    top=top,
                    bottom=bottom,
                    middle=(top + bottom) / 2,
                    strength=size,
                    created_index=i + 2,
                    timestamp=b3.timestamp,
                ))

    return fvgs


def detect_displacement(bars: Sequence[Bar], sweep: Sweep, min_bars: int,
                        threshold: float, fvg_min_size: float, fvg_max_size: float,
                        atr_period: int = 14) -> Optional[Displacement]:
    """
    Find the displacement that follows a confirmed sweep

    Scans forward from the bar after the swept level's origin for the first run
    of at least `min_bars` bars moving against the sweep whose net move reaches
    ATR * threshold. ATR is taken over the bars ending at the last bar given.

    Returns None for unconfirmed sweeps or when no run qualifies.
    """
    if not sweep.confirmed:
        return None

    direction = expected_displacement(sweep.direction)
    required = calculate_atr(bars, atr_period) * threshold

    for first, last in consecutive_runs(bars, sweep.swept_level.origin_index + 1, direction):
        if last - first + 1 < min_bars:
            continue
        strength = displacement_strength(bars, first, last)
        if strength >= required:
            return Displacement(
                direction=direction,
                start_index=first,
                end_index=last,
                strength=strength,
                gaps=detect_fvgs(bars, first, last, fvg_min_size, fvg_max_size),
            )

    return None
