"""
Data models for the SMC liquidity sweep + FVG retracement detector
"""
from dataclasses import dataclass, field, replace, asdict
from typing import List, Optional, Dict, Any


@dataclass(frozen=True)
class Bar:
    """Single OHLCV bar, timestamp in unix milliseconds"""
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


@dataclass
class LiquidityLevel:
    """Swing high/low presumed to hold resting stop orders"""
    kind: str  # 'high' or 'low'
    price: float
    origin_index: int
    timestamp: int
    active: bool = True
    swept_at_index: Optional[int] = None
    sweep_price: Optional[float] = None
    confirmed_false_breakout: Optional[bool] = None

    def mark_swept(self, index: int, sweep_price: float, confirmed: bool) -> None:
        """Deactivate the level; a level can only be swept once"""
        if not self.active:
            raise ValueError(f"Liquidity level {self.kind}@{self.price} already swept at {self.swept_at_index}")
        self.active = False
        self.swept_at_index = index
        self.sweep_price = sweep_price
        self.confirmed_false_breakout = confirmed

    def snapshot(self) -> 'LiquidityLevel':
        return replace(self)


@dataclass(frozen=True)
class Sweep:
    """Price trading through a liquidity level.

    direction is 'bullish' when a high was swept and 'bearish' when a low was
    swept. swept_level is a copy taken at sweep time.
    """
    direction: str
    swept_level: LiquidityLevel
    sweep_price: float
    sweep_index: int
    timestamp: int
    confirmed: bool


@dataclass
class FVG:
    """Fair Value Gap structure"""
    kind: str  # 'bullish' or 'bearish'
    top: float
    bottom: float
    middle: float
    strength: float
    created_index: int
    timestamp: int
    filled: bool = False
    filled_at_index: Optional[int] = None

    def mark_filled(self, index: int) -> None:
        if self.filled:
            raise ValueError(f"FVG created at {self.created_index} already filled at {self.filled_at_index}")
        self.filled = True
        self.filled_at_index = index

    def entry_price(self, entry_percent: float) -> float:
        """Price at the given fraction of the gap, measured from the bottom"""
        return self.bottom + (self.top - self.bottom) * entry_percent

    def snapshot(self) -> 'FVG':
        return replace(self)


@dataclass(frozen=True)
class Displacement:
    """Strong directional run following a confirmed sweep"""
    direction: str  # 'bullish' or 'bearish'
    start_index: int
    end_index: int
    strength: float
    gaps: List[FVG] = field(default_factory=list)


@dataclass(frozen=True)
class Signal:
    """Trading signal structure"""
    symbol: str
    direction: str  # 'long' or 'short'
    timestamp: int
    entry_price: float
    stop_loss: float
    target1: float
    target2: float
    confidence: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reports"""
        return asdict(self)


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one detect_signal call; signal is None when nothing fired"""
    signal: Optional[Signal]
    reason: str
    details: str = ""

    @property
    def triggered(self) -> bool:
        return self.signal is not None
