"""
Asynchronous backtest runner with queue management
"""
import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Sequence, Set

from config.models import AppConfig, BacktestConfig
from ..backtester import BacktestSimulator
from ..errors import CancellationError, NotFoundError
from ..models import Bar
from ..strategy import StrategyRegistry

logger = logging.getLogger(__name__)


@dataclass
class _BacktestRequest:
    config: BacktestConfig
    bars: Sequence[Bar]
    simulator: BacktestSimulator
    future: asyncio.Future


class BacktestRunner:
    """Manages asynchronous backtest execution with concurrency limits"""

    def __init__(self, registry: StrategyRegistry, concurrent_limit: int = 2,
                 cache_ttl: timedelta = timedelta(hours=1)):
        if concurrent_limit < 1:
            raise ValueError(f"concurrent_limit must be >= 1: {concurrent_limit}")
        self.registry = registry
        self.concurrent_limit = concurrent_limit
        self.cache_ttl = cache_ttl

        self.queue: asyncio.Queue = asyncio.Queue()
        self._slots = asyncio.Semaphore(concurrent_limit)
        self._simulators: Dict[str, BacktestSimulator] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.results_cache: Dict[str, Dict[str, Any]] = {}
        self._processor_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, registry: StrategyRegistry, config: AppConfig) -> 'BacktestRunner':
        """Runner sized by the application config"""
        return cls(registry, concurrent_limit=config.backtest_concurrent_limit)

    def _ensure_processor(self) -> None:
        if self._processor_task is None or self._processor_task.done():
            self._processor_task = asyncio.create_task(self._process_queue())

    async def run_backtest(self, config: BacktestConfig, bars: Sequence[Bar]) -> Dict[str, Any]:
        """
        Schedule and run a backtest for config.symbol

        Returns:
            {"success": True, "result": BacktestResult, ...} or
            {"success": False, "error": message, ...}
        """
        symbol = config.symbol

        if symbol in self._simulators:
            logger.info(f"Backtest for {symbol} is already running")
            return {"success": False, "symbol": symbol, "error": "Backtest already running"}

        cache_key = self._get_cache_key(config, bars)
        cached_result = self.results_cache.get(cache_key)
        if cached_result is not None:
            cache_time = datetime.fromisoformat(cached_result['timestamp'])
            if datetime.now() - cache_time < self.cache_ttl:
                logger.info(f"Returning cached backtest result for {symbol}")
                return cached_result
            del self.results_cache[cache_key]

        try:
            strategy = self.registry.get(config.strategy_id)
        except NotFoundError as e:
            logger.error(f"Backtest for {symbol} rejected: {e}")
            return {"success": False, "symbol": symbol, "error": str(e)}

        simulator = BacktestSimulator(strategy)
        future = asyncio.get_running_loop().create_future()
        self._simulators[symbol] = simulator

        self._ensure_processor()
        await self.queue.put(_BacktestRequest(config, bars, simulator, future))

        try:
            result = await future
        except CancellationError as e:
            return {"success": False, "symbol": symbol, "cancelled": True, "error": str(e)}
        except Exception as e:
            logger.error(f"Backtest failed for {symbol}: {e}")
            return {"success": False, "symbol": symbol, "error": str(e)}
        finally:
            self._simulators.pop(symbol, None)

        envelope = {
            "success": True,
            "symbol": symbol,
            "result": result,
            "timestamp": datetime.now().isoformat(),
        }
        self.results_cache[cache_key] = envelope
        return envelope

    async def _process_queue(self):
        """Process backtest queue with concurrency limit"""
        while True:
            request: Optional[_BacktestRequest] = None
            try:
                request = await self.queue.get()
                await self._slots.acquire()

                task = asyncio.create_task(self._run_single_backtest(request))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                request = None

                self.queue.task_done()
            except asyncio.CancelledError:
                logger.info("Backtest queue processor cancelled")
                # Request taken off the queue but never started
                if request is not None:
                    self._reject(request, "Backtest runner stopped before the backtest started")
                    self.queue.task_done()
                break

    def _reject(self, request: _BacktestRequest, message: str) -> None:
        """Fail a request that will never run and free its symbol"""
        symbol = request.config.symbol
        if self._simulators.get(symbol) is request.simulator:
            del self._simulators[symbol]
        if not request.future.done():
            request.future.set_exception(CancellationError(message=message))

    async def _run_single_backtest(self, request: _BacktestRequest):
        """Run a single backtest in a worker thread"""
        symbol = request.config.symbol
        try:
            logger.info(f"Starting backtest for {symbol}")
            result = await asyncio.to_thread(request.simulator.run, request.config, request.bars)

            if not request.future.done():
                request.future.set_result(result)
            logger.info(f"Backtest completed for {symbol}: {result.total_trades} trades")

        except Exception as e:
            if not request.future.done():
                request.future.set_exception(e)
        finally:
            self._slots.release()

    def _get_cache_key(self, config: BacktestConfig, bars: Sequence[Bar]) -> str:
        """Generate cache key for backtest from the config and every bar"""
        digest = hashlib.md5()
        digest.update(config.symbol.encode())
        digest.update(json.dumps(config.to_dict(), sort_keys=True, default=str).encode())
        for bar in bars:
            digest.update(
                f"{bar.timestamp}|{bar.open!r}|{bar.high!r}|{bar.low!r}|{bar.close!r}|{bar.volume!r};".encode()
            )
        return digest.hexdigest()

    def get_progress(self, symbol: str) -> Optional[int]:
        """Progress percentage of the backtest running for symbol, None if there is none"""
        simulator = self._simulators.get(symbol.upper())
        return simulator.progress if simulator else None

    def cancel(self, symbol: str) -> bool:
        """Request cancellation of the queued or running backtest for symbol"""
        simulator = self._simulators.get(symbol.upper())
        if simulator is None:
            return False
        simulator.cancel()
        logger.info(f"Cancellation requested for {symbol}")
        return True

    def clear_cache(self) -> None:
        self.results_cache.clear()

    async def stop(self):
        """
        Stop the backtest runner

        Queued backtests that have not started are cancelled; running ones are
        asked to stop at their next bar and awaited.
        """
        if self._processor_task is not None:
            self._processor_task.cancel()
            try:
                await self._processor_task
            except asyncio.CancelledError:
                pass
            self._processor_task = None

        while not self.queue.empty():
            request = self.queue.get_nowait()
            self._reject(request, "Backtest runner stopped before the backtest started")
            self.queue.task_done()

        # Worker threads cannot be interrupted, ask them to stop at the next bar
        for simulator in list(self._simulators.values()):
            simulator.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def get_status(self) -> Dict[str, Any]:
        """Get backtest runner status"""
        running_symbols: List[str] = list(self._simulators)

        return {
            'concurrent_limit': self.concurrent_limit,
            'queue_size': self.queue.qsize(),
            'running_backtests': len(running_symbols),
            'running_symbols': running_symbols,
            'progress': {s: sim.progress for s, sim in self._simulators.items()},
            'cache_size': len(self.results_cache),
        }
