"""
Live signal scanning over per-symbol rolling bar buffers
"""
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Any

from config.models import AppConfig, StrategyParams
from .data_loader import BarBuffer
from .errors import InsufficientDataError, ValidationError
from .models import Bar, Signal, DetectionResult
from .strategy import Strategy, StrategyRegistry

logger = logging.getLogger(__name__)


class SymbolScanner:
    """
    Feeds closed bars per symbol into a strategy and reports new signals

    Bars for one symbol are handled one at a time; different symbols are
    scanned concurrently.
    """

    def __init__(self, strategy: Strategy, params: Optional[StrategyParams] = None, buffer_size: int = 500):
        self.strategy = strategy
        self.params = strategy.coerce_params(params)
        valid, errors = strategy.validate_params(self.params)
        if not valid:
            raise ValidationError(errors)
        if buffer_size < self.params.min_bars:
            raise ValueError(f"buffer_size {buffer_size} is smaller than the detector warm-up {self.params.min_bars}")

        self.buffer_size = buffer_size
        self._buffers: Dict[str, BarBuffer] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_results: Dict[str, DetectionResult] = {}
        self._signal_counts: Dict[str, int] = {}

        self.signal_callbacks: List[Callable[[Signal], None]] = []

    @classmethod
    def from_config(cls, registry: StrategyRegistry, config: AppConfig) -> 'SymbolScanner':
        """Scanner for the configured strategy, params and buffer size"""
        return cls(registry.get(config.strategy_id), config.strategy, buffer_size=config.bar_buffer_size)

    def add_signal_callback(self, callback: Callable[[Signal], None]):
        """Add signal callback"""
        self.signal_callbacks.append(callback)

    def _get_buffer(self, symbol: str) -> BarBuffer:
        if symbol not in self._buffers:
            self._buffers[symbol] = BarBuffer(self.buffer_size)
            self._locks[symbol] = asyncio.Lock()
            self._signal_counts[symbol] = 0
        return self._buffers[symbol]

    def preload(self, symbol: str, bars: List[Bar]) -> None:
        """Seed the buffer for symbol with history, without scanning"""
        symbol = symbol.upper()
        self._get_buffer(symbol).extend(bars)
        logger.info(f"Preloaded {len(bars)} bars for {symbol}")

    async def on_bar(self, symbol: str, bar: Bar) -> Optional[Signal]:
        """
        Append a closed bar for symbol and run detection on the updated window

        Raises:
            ValueError: bar is not newer than the last bar seen for symbol
        """
        symbol = symbol.upper()
        buffer = self._get_buffer(symbol)

        async with self._locks[symbol]:
            buffer.append(bar)
            bars = buffer.to_list()

            try:
                detection = await asyncio.to_thread(self.strategy.detect_signal, symbol, bars, self.params)
            except InsufficientDataError as e:
                logger.debug(f"Insufficient data for {symbol}: {e}")
                return None

            self._last_results[symbol] = detection
            if detection.signal is None:
                logger.debug(f"No signal for {symbol}: {detection.reason}")
                return None

            self._signal_counts[symbol] += 1
            logger.info(f"Signal for {symbol}: {detection.signal.direction} at {detection.signal.entry_price}")
            self._notify_signal_callbacks(detection.signal)
            return detection.signal

    def _notify_signal_callbacks(self, signal: Signal):
        """Notify all signal callbacks"""
        for i, callback in enumerate(self.signal_callbacks):
            try:
                callback(signal)
            except Exception as e:
                logger.error(f"Error in signal callback {i + 1} for {signal.symbol}: {e}")

    def get_bars(self, symbol: str) -> List[Bar]:
        buffer = self._buffers.get(symbol.upper())
        return buffer.to_list() if buffer else []

    def get_last_result(self, symbol: str) -> Optional[DetectionResult]:
        return self._last_results.get(symbol.upper())

    def remove_symbol(self, symbol: str) -> None:
        symbol = symbol.upper()
        for store in (self._buffers, self._locks, self._last_results, self._signal_counts):
            store.pop(symbol, None)

    @property
    def symbols(self) -> List[str]:
        return list(self._buffers)

    def get_status(self) -> Dict[str, Any]:
        return {
            symbol: {
                'bars': len(buffer),
                'signals': self._signal_counts.get(symbol, 0),
                'last_reason': self._last_results[symbol].reason if symbol in self._last_results else None,
            }
            for symbol, buffer in self._buffers.items()
        }
