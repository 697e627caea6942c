"""
Strategy interface, the SMC liquidity sweep + FVG retracement strategy and the
strategy registry
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Sequence, Tuple, Union, Mapping

from config.models import StrategyParams
from .errors import ValidationError, InsufficientDataError, NotFoundError
from .models import Bar, DetectionResult
from .liquidity_tracker import LiquidityTracker
from .smc_detector import detect_displacement
from .signal_generator import (
    check_price_in_fvg_zone, apply_filters, generate_signal,
    generate_signal_details, entry_price_for, calculate_exit_conditions
)

logger = logging.getLogger(__name__)

ParamsLike = Union[StrategyParams, Mapping[str, Any], None]


@dataclass(frozen=True)
class StrategyMeta:
    """Descriptive strategy metadata"""
    id: str
    name: str
    description: str
    version: str = "1.0.0"
    category: str = ""
    timeframes: Tuple[str, ...] = field(default_factory=tuple)
    risk_level: str = "medium"  # 'low', 'medium', 'high'


class Strategy(ABC):
    """Abstract base class for trading strategies"""

    meta: StrategyMeta

    @abstractmethod
    def get_default_params(self) -> StrategyParams:
        """Get default strategy parameters"""

    @abstractmethod
    def detect_signal(self, symbol: str, bars: Sequence[Bar], params: ParamsLike = None) -> DetectionResult:
        """Detect a signal on the latest bar of `bars`"""

    def validate_params(self, params: ParamsLike) -> Tuple[bool, List[str]]:
        """Validate parameters, returning (valid, errors)"""
        return True, []

    def coerce_params(self, params: ParamsLike) -> StrategyParams:
        if params is None:
            return self.get_default_params()
        if isinstance(params, StrategyParams):
            return params
        return StrategyParams.from_dict(params)


class SMCLiquidityFVGStrategy(Strategy):
    """
    Liquidity sweep -> displacement -> FVG retracement

    Waits for a swing high/low to be swept with a false breakout, a strong run
    in the opposite direction that leaves a fair value gap, and price coming
    back into the gap.
    """

    meta = StrategyMeta(
        id="smc_liquidity_fvg",
        name="SMC Liquidity + FVG Retracement",
        description=(
            "Smart-money setup: identify a liquidity sweep, confirm institutional "
            "displacement and enter on the retracement into a fair value gap."
        ),
        category="Smart Money Concepts",
        timeframes=("1m", "5m", "15m"),
        risk_level="high",
    )

    def get_default_params(self) -> StrategyParams:
        return StrategyParams()

    def validate_params(self, params: ParamsLike) -> Tuple[bool, List[str]]:
        errors = self.coerce_params(params).validate()
        return not errors, errors

    def detect_signal(self, symbol: str, bars: Sequence[Bar], params: ParamsLike = None) -> DetectionResult:
        """
        Run the detection pipeline on `bars`, judging only the last bar for entry

        Raises:
            ValidationError: parameters are out of range
            InsufficientDataError: fewer bars than the warm-up requires
        """
        params = self.coerce_params(params)
        valid, errors = self.validate_params(params)
        if not valid:
            raise ValidationError(errors)

        if len(bars) < params.min_bars:
            raise InsufficientDataError(params.min_bars, len(bars))

        # 1. Liquidity levels and sweeps
        tracker = LiquidityTracker(params.liquidity_lookback, params.liquidity_tolerance)
        tracker.process(bars)

        if not tracker.levels:
            return DetectionResult(None, "No liquidity levels identified")
        if not tracker.sweeps:
            return DetectionResult(None, "No liquidity sweep detected")

        sweep = tracker.latest_confirmed_sweep()
        if sweep is None:
            return DetectionResult(None, "Liquidity sweep not confirmed as a false breakout")

        # 2. Displacement after the sweep
        displacement = detect_displacement(
            bars,
            sweep,
            min_bars=params.displacement_min_bars,
            threshold=params.displacement_threshold,
            fvg_min_size=params.fvg_min_size,
            fvg_max_size=params.fvg_max_size,
            atr_period=params.atr_period,
        )
        if displacement is None:
            return DetectionResult(None, "No valid displacement detected")

        # 3. Fair value gaps left by the displacement
        gap_ids = tracker.add_displacement(displacement)
        if not gap_ids:
            return DetectionResult(None, "No FVG formed during displacement")

        gaps = [tracker.get_fvg(gap_id) for gap_id in gap_ids]
        open_gaps = [g for g in gaps if g.kind == displacement.direction and not g.filled]
        if not open_gaps:
            return DetectionResult(None, "Displacement FVGs already filled")
        fvg = open_gaps[-1]

        # 4. Retracement into the entry zone
        bar = bars[-1]
        if not check_price_in_fvg_zone(bar, fvg, params):
            return DetectionResult(
                None,
                "Price has not retraced into the FVG entry zone",
                f"FVG zone: [{fvg.bottom}, {fvg.top}], entry: {entry_price_for(fvg, params)}, close: {bar.close}",
            )

        # 5. Filters
        filter_reason = apply_filters(bars, params)
        if filter_reason:
            return DetectionResult(None, filter_reason)

        signal = generate_signal(symbol, fvg, bar, params)
        details = generate_signal_details(sweep, displacement, fvg, params)
        logger.debug(f"{symbol} {signal.direction} signal at {signal.entry_price:.4f}: {details}")

        return DetectionResult(signal, "signal triggered", details)

    def detect_historical_signals(self, symbol: str, bars: Sequence[Bar],
                                  params: ParamsLike = None, max_hold_bars: int = 100) -> List[Dict[str, Any]]:
        """
        Replay detection over a history and walk every signal forward to its exit

        Returns:
            One dictionary per signal with the signal, its bar index and exit info
        """
        params = self.coerce_params(params)
        results = []

        for i in range(params.min_bars, len(bars) + 1):
            detection = self.detect_signal(symbol, bars[:i], params)
            if detection.signal is None:
                continue
            outcome = calculate_exit_conditions(bars, i - 1, detection.signal, max_hold_bars)
            results.append({
                'signal': detection.signal,
                'start_index': i - 1,
                **outcome,
            })

        logger.info(f"Found {len(results)} historical signals for {symbol} over {len(bars)} bars")
        return results


class StrategyRegistry:
    """Strategy lookup by id; build one at startup and pass it down"""

    def __init__(self, strategies: Optional[Sequence[Strategy]] = None):
        self._strategies: Dict[str, Strategy] = {}
        for strategy in strategies or []:
            self.register(strategy)

    def register(self, strategy: Strategy) -> None:
        strategy_id = strategy.meta.id
        if strategy_id in self._strategies:
            logger.warning(f"Strategy [{strategy_id}] already registered, replacing it")
        self._strategies[strategy_id] = strategy
        logger.info(f"Registered strategy [{strategy_id}]: {strategy.meta.name}")

    def get(self, strategy_id: str) -> Strategy:
        try:
            return self._strategies[strategy_id]
        except KeyError:
            raise NotFoundError(strategy_id) from None

    def has(self, strategy_id: str) -> bool:
        return strategy_id in self._strategies

    def list_meta(self) -> List[StrategyMeta]:
        return [s.meta for s in self._strategies.values()]

    def get_default_params(self, strategy_id: str) -> StrategyParams:
        return self.get(strategy_id).get_default_params()

    def validate_params(self, strategy_id: str, params: ParamsLike) -> Tuple[bool, List[str]]:
        if not self.has(strategy_id):
            return False, [f"Strategy [{strategy_id}] not found"]
        return self._strategies[strategy_id].validate_params(params)

    def detect_signal(self, strategy_id: str, symbol: str, bars: Sequence[Bar],
                      params: ParamsLike = None) -> DetectionResult:
        return self.get(strategy_id).detect_signal(symbol, bars, params)

    def __len__(self) -> int:
        return len(self._strategies)


def create_default_registry() -> StrategyRegistry:
    """Registry holding the built-in strategies"""
    return StrategyRegistry([SMCLiquidityFVGStrategy()])
