"""
Configuration package for the SMC liquidity/FVG backtester
"""

from .models import AppConfig, BacktestConfig, StrategyParams, POSITION_SIZING_MODES
from .loader import ConfigLoader, load_config, save_config

__all__ = [
    'AppConfig', 'BacktestConfig', 'StrategyParams', 'POSITION_SIZING_MODES',
    'ConfigLoader', 'load_config', 'save_config'
]
