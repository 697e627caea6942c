"""
Liquidity and FVG tracker

Keeps the state of swing-based liquidity levels and fair value gaps while bars
arrive in order. One tracker belongs to exactly one bar history; build a new
instance (or call reset()) for every independent analysis.
"""
import logging
from typing import Dict, List, Optional, Sequence, Any

from .models import Bar, LiquidityLevel, Sweep, FVG, Displacement
from .smc_detector import is_swing_high, is_swing_low

logger = logging.getLogger(__name__)


class LiquidityTracker:
    """Tracks liquidity levels, sweeps, displacements and gap fills"""

    def __init__(self, lookback: int, tolerance: float, streaming: bool = False):
        """
        Args:
            lookback: Bars on each side a swing must dominate
            tolerance: Fraction price must exceed a level by to count as a sweep
            streaming: Confirm levels from the trailing side only, without
                waiting for `lookback` bars to the right
        """
        if lookback < 1:
            raise ValueError(f"lookback must be >= 1: {lookback}")
        self.lookback = lookback
        self.tolerance = tolerance
        self.streaming = streaming
        self.reset()

    def reset(self) -> None:
        """Drop all tracked state"""
        self._levels: Dict[int, LiquidityLevel] = {}
        self._fvgs: Dict[int, FVG] = {}
        self._next_level_id = 0
        self._next_fvg_id = 0
        self._sweeps: List[Sweep] = []
        self._displacements: List[Displacement] = []
        self._bars: List[Bar] = []
        self._last_processed_index = -1

    def process(self, bars: Sequence[Bar]) -> None:
        """
        Process the bars not seen yet

        `bars` must extend the history passed to previous calls.
        """
        if len(bars) <= self._last_processed_index:
            raise ValueError(
                f"Bar history shrank from {self._last_processed_index + 1} to {len(bars)} bars; call reset() first"
            )

        for j in range(self._last_processed_index + 1, len(bars)):
            if j > 0 and bars[j].timestamp <= bars[j - 1].timestamp:
                raise ValueError(f"Bars out of order at index {j}: {bars[j].timestamp} <= {bars[j - 1].timestamp}")
            self._process_bar(bars, j)
            self._last_processed_index = j

        self._bars = list(bars)

    def _process_bar(self, bars: Sequence[Bar], index: int) -> None:
        # Sweeps are checked against levels known before this bar
        self._check_sweeps(bars[index], index)
        self._check_fills(bars[index], index)

        if self.streaming:
            self._identify_levels(bars, index, right=0)
        else:
            self._identify_levels(bars, index - self.lookback, right=self.lookback)

    def _identify_levels(self, bars: Sequence[Bar], index: int, right: int) -> None:
        if index < self.lookback:
            return

        bar = bars[index]
        if is_swing_high(bars, index, self.lookback, right):
            self._add_level(LiquidityLevel(kind='high', price=bar.high, origin_index=index, timestamp=bar.timestamp))
        if is_swing_low(bars, index, self.lookback, right):
            self._add_level(LiquidityLevel(kind='low', price=bar.low, origin_index=index, timestamp=bar.timestamp))

    def _add_level(self, level: LiquidityLevel) -> int:
        level_id = self._next_level_id
        self._levels[level_id] = level
        self._next_level_id += 1
        logger.debug(f"Liquidity {level.kind} at {level.price} (bar {level.origin_index})")
        return level_id

    def _check_sweeps(self, bar: Bar, index: int) -> None:
        multiplier = 1 + self.tolerance

        for level in self._levels.values():
            if not level.active:
                continue

            if level.kind == 'high' and bar.high > level.price * multiplier:
                # False breakout when the close falls back under the level
                confirmed = bar.close < level.price * multiplier
                level.mark_swept(index, bar.high, confirmed)
                self._record_sweep('bullish', level, bar, index, bar.high, confirmed)

            elif level.kind == 'low' and bar.low < level.price / multiplier:
                confirmed = bar.close > level.price / multiplier
                level.mark_swept(index, bar.low, confirmed)
                self._record_sweep('bearish', level, bar, index, bar.low, confirmed)

    def _record_sweep(self, direction: str, level: LiquidityLevel, bar: Bar,
                      index: int, price: float, confirmed: bool) -> None:
        self._sweeps.append(Sweep(
            direction=direction,
            swept_level=level.snapshot(),
            sweep_price=price,
            sweep_index=index,
            timestamp=bar.timestamp,
            confirmed=confirmed,
        ))
        logger.debug(
            f"{direction} sweep of {level.kind} {level.price} at bar {index} "
            f"({'false breakout' if confirmed else 'breakout'})"
        )

    def _check_fills(self, bar: Bar, index: int) -> None:
        for fvg in self._fvgs.values():
            if fvg.filled or index <= fvg.created_index:
                continue
            self._check_fill(fvg, bar, index)

    def add_displacement(self, displacement: Displacement) -> List[int]:
        """
        Record a displacement and take ownership of copies of its gaps

        Gaps are checked against the bars already processed after their
        creation. Returns the arena ids of the registered gaps, in order.
        """
        self._displacements.append(displacement)

        ids = []
        for gap in displacement.gaps:
            fvg = gap.snapshot()
            fvg_id = self._next_fvg_id
            self._fvgs[fvg_id] = fvg
            self._next_fvg_id += 1
            ids.append(fvg_id)

            for index in range(fvg.created_index + 1, self._last_processed_index + 1):
                self._check_fill(fvg, self._bars[index], index)
                if fvg.filled:
                    break

        return ids

    @staticmethod
    def _check_fill(fvg: FVG, bar: Bar, index: int) -> None:
        # Bullish gaps fill when price trades back to the bottom, bearish ones at the top
        if fvg.kind == 'bullish' and bar.low <= fvg.bottom:
            fvg.mark_filled(index)
        elif fvg.kind == 'bearish' and bar.high >= fvg.top:
            fvg.mark_filled(index)

    def get_fvg(self, fvg_id: int) -> FVG:
        return self._fvgs[fvg_id]

    def get_level(self, level_id: int) -> LiquidityLevel:
        return self._levels[level_id]

    @property
    def levels(self) -> List[LiquidityLevel]:
        return list(self._levels.values())

    @property
    def sweeps(self) -> List[Sweep]:
        return list(self._sweeps)

    @property
    def fvgs(self) -> List[FVG]:
        return list(self._fvgs.values())

    @property
    def processed_bars(self) -> int:
        return self._last_processed_index + 1

    def get_active_levels(self) -> List[LiquidityLevel]:
        return [level for level in self._levels.values() if level.active]

    def get_active_fvgs(self, kind: Optional[str] = None) -> List[FVG]:
        return [
            fvg for fvg in self._fvgs.values()
            if not fvg.filled and (kind is None or fvg.kind == kind)
        ]

    def latest_confirmed_sweep(self) -> Optional[Sweep]:
        """Most recent sweep whose bar closed back inside the level"""
        for sweep in reversed(self._sweeps):
            if sweep.confirmed:
                return sweep
        return None

    def get_recent_sweeps(self, count: int = 5) -> List[Sweep]:
        return self._sweeps[-count:]

    def get_recent_displacements(self, count: int = 5) -> List[Displacement]:
        return self._displacements[-count:]

    def get_fvgs_near_price(self, price: float, tolerance_percent: float = 0.1) -> List[FVG]:
        """Unfilled gaps whose range, widened by price*tolerance_percent, contains price"""
        tolerance = price * tolerance_percent
        return [
            fvg for fvg in self.get_active_fvgs()
            if fvg.bottom - tolerance <= price <= fvg.top + tolerance
        ]

    def get_stats(self) -> Dict[str, Any]:
        return {
            'total_liquidity': len(self._levels),
            'active_liquidity': len(self.get_active_levels()),
            'active_fvgs': len(self.get_active_fvgs()),
            'total_sweeps': len(self._sweeps),
            'confirmed_sweeps': sum(1 for s in self._sweeps if s.confirmed),
            'total_displacements': len(self._displacements),
            'processed_bars': self.processed_bars,
        }
