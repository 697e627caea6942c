"""
Backtest package for asynchronous backtesting
"""

from .runner import BacktestRunner

__all__ = ['BacktestRunner']
