"""
Configuration models for the SMC liquidity/FVG strategy and backtest simulator
"""
import logging
from dataclasses import dataclass, field, fields, asdict
from typing import List, Optional, Dict, Any, Mapping

logger = logging.getLogger(__name__)

POSITION_SIZING_MODES = ('fixed', 'percent', 'risk')

# camelCase keys accepted from JSON payloads
_PARAM_ALIASES = {
    'liquidityLookback': 'liquidity_lookback',
    'liquidityTolerance': 'liquidity_tolerance',
    'displacementThreshold': 'displacement_threshold',
    'displacementMinBars': 'displacement_min_bars',
    'fvgMinSize': 'fvg_min_size',
    'fvgMaxSize': 'fvg_max_size',
    'entryFVGPercent': 'entry_fvg_percent',
    'stopLossBuffer': 'stop_loss_buffer',
    'takeProfitTP1': 'take_profit_tp1',
    'takeProfitTP2': 'take_profit_tp2',
    'riskPercent': 'risk_percent',
    'minVolumeRatio': 'min_volume_ratio',
    'filterSideways': 'filter_sideways',
    'entryTolerance': 'entry_tolerance',
    'sidewaysAtrRatio': 'sideways_atr_ratio',
    'atrPeriod': 'atr_period',
    'volumeLookback': 'volume_lookback',
}

_BACKTEST_ALIASES = {
    'startTime': 'start_time',
    'endTime': 'end_time',
    'initialBalance': 'initial_balance',
    'positionSizingMode': 'position_sizing_mode',
    'positionSize': 'position_size',
    'riskPerTrade': 'risk_per_trade',
    'commissionRate': 'commission_rate',
    'stopLossPercent': 'stop_loss_percent',
    'takeProfitPercent': 'take_profit_percent',
    'maxDrawdownPercent': 'max_drawdown_percent',
    'strategyId': 'strategy_id',
}


def _normalize_keys(data: Mapping[str, Any], aliases: Dict[str, str], known: List[str], owner: str) -> Dict[str, Any]:
    out = {}
    for key, value in data.items():
        name = aliases.get(key, key)
        if name not in known:
            logger.warning(f"Unknown {owner} parameter: {key}")
            continue
        out[name] = value
    return out


def _parse_bool(value: Any) -> bool:
    """Accept real booleans and the usual string spellings from YAML/JSON/env"""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', '1', 'yes', 'on'):
            return True
        if lowered in ('false', '0', 'no', 'off', ''):
            return False
        raise ValueError(f"Invalid boolean value: {value!r}")
    return bool(value)


@dataclass
class StrategyParams:
    """Parameters of the liquidity sweep + FVG retracement detector"""

    # Liquidity identification
    liquidity_lookback: int = 20
    liquidity_tolerance: float = 0.05

    # Displacement confirmation
    displacement_threshold: float = 1.5  # ATR multiple
    displacement_min_bars: int = 3

    # FVG size window, as a fraction of price
    fvg_min_size: float = 0.01
    fvg_max_size: float = 0.5

    # Entry at this fraction of the gap (0.5 = middle)
    entry_fvg_percent: float = 0.5

    # Stops and targets
    stop_loss_buffer: float = 0.01
    take_profit_tp1: float = 0.8  # percent
    take_profit_tp2: float = 1.5  # percent

    risk_percent: float = 1.0

    # Filters
    min_volume_ratio: float = 1.2
    filter_sideways: bool = True

    # Named tolerances
    entry_tolerance: float = 0.002
    sideways_atr_ratio: float = 0.002
    atr_period: int = 14
    volume_lookback: int = 10

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'StrategyParams':
        """Build params from snake_case or camelCase keys, ignoring unknown keys"""
        if not data:
            return cls()
        known = [f.name for f in fields(cls)]
        values = _normalize_keys(data, _PARAM_ALIASES, known, 'strategy')
        for name in ('liquidity_lookback', 'displacement_min_bars', 'atr_period', 'volume_lookback'):
            if name in values:
                values[name] = int(values[name])
        if 'filter_sideways' in values:
            values['filter_sideways'] = _parse_bool(values['filter_sideways'])
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def min_bars(self) -> int:
        """Warm-up length required before detection can run"""
        return max(self.liquidity_lookback + 20, self.displacement_min_bars + 10)

    def validate(self) -> List[str]:
        """Validate parameters and return list of errors"""
        errors = []

        if self.liquidity_lookback < 1:
            errors.append(f"liquidity_lookback must be >= 1: {self.liquidity_lookback}")
        if not 0 <= self.liquidity_tolerance <= 1:
            errors.append(f"liquidity_tolerance must be within 0-1: {self.liquidity_tolerance}")
        if self.displacement_threshold < 0:
            errors.append(f"displacement_threshold must be >= 0: {self.displacement_threshold}")
        if self.displacement_min_bars < 2:
            errors.append(f"displacement_min_bars must be >= 2: {self.displacement_min_bars}")
        if not (0 <= self.fvg_min_size <= 1 and 0 <= self.fvg_max_size <= 1):
            errors.append(f"FVG sizes must be within 0-1: {self.fvg_min_size}, {self.fvg_max_size}")
        if self.fvg_min_size >= self.fvg_max_size:
            errors.append("fvg_min_size must be smaller than fvg_max_size")
        if not 0 < self.entry_fvg_percent < 1:
            errors.append(f"entry_fvg_percent must be strictly between 0 and 1: {self.entry_fvg_percent}")
        if self.stop_loss_buffer < 0:
            errors.append(f"stop_loss_buffer must be >= 0: {self.stop_loss_buffer}")
        if self.take_profit_tp1 < 0 or self.take_profit_tp2 < 0:
            errors.append("take profit targets must be >= 0")
        if self.risk_percent <= 0 or self.risk_percent > 5:
            errors.append(f"risk_percent must be within 0-5%: {self.risk_percent}")
        if self.min_volume_ratio < 1:
            errors.append(f"min_volume_ratio must be >= 1: {self.min_volume_ratio}")
        if self.entry_tolerance < 0 or self.sideways_atr_ratio < 0:
            errors.append("entry_tolerance and sideways_atr_ratio must be >= 0")
        if self.atr_period < 1 or self.volume_lookback < 1:
            errors.append("atr_period and volume_lookback must be >= 1")

        return errors


@dataclass
class BacktestConfig:
    """Backtest run configuration"""
    symbol: str
    timeframe: str = "15m"

    # Time range in unix ms; None leaves that side open
    start_time: Optional[int] = None
    end_time: Optional[int] = None

    # Money management
    initial_balance: float = 10000.0
    position_sizing_mode: str = "fixed"
    position_size: float = 1.0
    risk_per_trade: Optional[float] = None

    # Costs
    commission_rate: float = 0.0
    slippage: float = 0.0  # percent, applied against the fill

    # Risk controls
    stop_loss_percent: Optional[float] = None
    take_profit_percent: Optional[float] = None
    max_drawdown_percent: Optional[float] = None

    strategy_id: str = "smc_liquidity_fvg"
    params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.symbol = self.symbol.upper()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'BacktestConfig':
        known = [f.name for f in fields(cls)]
        values = _normalize_keys(data, _BACKTEST_ALIASES, known, 'backtest')
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors"""
        errors = []

        if not self.symbol:
            errors.append("symbol is required")
        if self.initial_balance <= 0:
            errors.append(f"initial_balance must be positive: {self.initial_balance}")
        if self.position_sizing_mode not in POSITION_SIZING_MODES:
            errors.append(f"Unknown position_sizing_mode: {self.position_sizing_mode}")
        if self.position_size <= 0:
            errors.append(f"position_size must be positive: {self.position_size}")
        if self.position_sizing_mode == 'risk' and not self.risk_per_trade:
            errors.append("risk_per_trade is required for risk position sizing")
        if self.risk_per_trade is not None and self.risk_per_trade <= 0:
            errors.append(f"risk_per_trade must be positive: {self.risk_per_trade}")
        if self.commission_rate < 0:
            errors.append(f"commission_rate must be >= 0: {self.commission_rate}")
        if self.slippage < 0:
            errors.append(f"slippage must be >= 0: {self.slippage}")
        if (self.start_time is not None and self.end_time is not None
                and self.start_time > self.end_time):
            errors.append("start_time must not be after end_time")
        for name in ('stop_loss_percent', 'take_profit_percent', 'max_drawdown_percent'):
            value = getattr(self, name)
            if value is not None and value <= 0:
                errors.append(f"{name} must be positive when set: {value}")

        return errors


@dataclass
class AppConfig:
    """Main application configuration"""
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Runner / scanner limits
    backtest_concurrent_limit: int = 2
    bar_buffer_size: int = 500

    strategy_id: str = "smc_liquidity_fvg"
    strategy: StrategyParams = field(default_factory=StrategyParams)
    backtest: BacktestConfig = field(default_factory=lambda: BacktestConfig(symbol="BTCUSDT"))

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors"""
        errors = []

        if self.log_level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"Invalid log level: {self.log_level}")
        if self.backtest_concurrent_limit < 1:
            errors.append(f"backtest_concurrent_limit must be >= 1: {self.backtest_concurrent_limit}")
        if self.bar_buffer_size < self.strategy.min_bars:
            errors.append(
                f"bar_buffer_size {self.bar_buffer_size} is smaller than the detector warm-up {self.strategy.min_bars}"
            )
        if self.backtest.strategy_id != self.strategy_id:
            errors.append(
                f"backtest.strategy_id {self.backtest.strategy_id} does not match strategy_id {self.strategy_id}"
            )

        errors.extend(self.strategy.validate())
        errors.extend(self.backtest.validate())
        return errors
