"""
Exception types for the SMC liquidity/FVG detector and backtest simulator
"""
from typing import List, Optional


class SMCError(Exception):
    """Base class for all detector and simulator errors"""


class ValidationError(SMCError, ValueError):
    """Strategy parameters or backtest configuration are malformed"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Parameter validation failed: {', '.join(self.errors)}")


class InsufficientDataError(SMCError):
    """Fewer bars than the detector's warm-up requires"""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient bar data, need at least {required} bars (got {available})")


class NotFoundError(SMCError, LookupError):
    """Unknown strategy identifier"""

    def __init__(self, strategy_id: str):
        self.strategy_id = strategy_id
        super().__init__(f"Strategy [{strategy_id}] not found")


class CancellationError(SMCError):
    """Backtest was cancelled cooperatively"""

    def __init__(self, processed_bars: int = 0, message: Optional[str] = None):
        self.processed_bars = processed_bars
        super().__init__(message or f"Backtest cancelled after {processed_bars} bars")
