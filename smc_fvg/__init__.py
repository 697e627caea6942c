"""
SMC liquidity sweep + FVG retracement detector and backtester
"""

from .models import Bar, LiquidityLevel, Sweep, FVG, Displacement, Signal, DetectionResult
from .errors import SMCError, ValidationError, InsufficientDataError, NotFoundError, CancellationError
from .strategy import Strategy, SMCLiquidityFVGStrategy, StrategyRegistry, create_default_registry
from .backtester import BacktestSimulator, BacktestResult, Trade, run_backtest

__all__ = [
    'Bar', 'LiquidityLevel', 'Sweep', 'FVG', 'Displacement', 'Signal', 'DetectionResult',
    'SMCError', 'ValidationError', 'InsufficientDataError', 'NotFoundError', 'CancellationError',
    'Strategy', 'SMCLiquidityFVGStrategy', 'StrategyRegistry', 'create_default_registry',
    'BacktestSimulator', 'BacktestResult', 'Trade', 'run_backtest',
]
