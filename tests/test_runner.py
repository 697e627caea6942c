import asyncio
import threading

from config.models import AppConfig, BacktestConfig
from smc_fvg.backtest import BacktestRunner
from smc_fvg.strategy import StrategyRegistry


def _config(**kwargs):
    kwargs.setdefault('symbol', 'BTCUSDT')
    kwargs.setdefault('strategy_id', 'scripted')
    return BacktestConfig(**kwargs)


def test_run_backtest_success_and_cache(price_bars, scripted_strategy):
    strategy = scripted_strategy({0: ('long', 100.0, 95.0)})
    bars = price_bars([100, 101, 102])

    async def scenario():
        runner = BacktestRunner(StrategyRegistry([strategy]))
        try:
            first = await runner.run_backtest(_config(), bars)
            second = await runner.run_backtest(_config(), bars)
            return first, second, runner.get_status()
        finally:
            await runner.stop()

    first, second, status = asyncio.run(scenario())

    assert first['success']
    assert first['result'].total_trades == 1
    assert second is first
    assert status['cache_size'] == 1
    assert status['running_backtests'] == 0
    # cached call did not run the strategy again
    assert strategy.calls == 3


def test_unknown_strategy_returns_error(price_bars, scripted_strategy):
    async def scenario():
        runner = BacktestRunner(StrategyRegistry([scripted_strategy()]))
        try:
            return await runner.run_backtest(_config(strategy_id='missing'), price_bars([100]))
        finally:
            await runner.stop()

    envelope = asyncio.run(scenario())
    assert not envelope['success']
    assert envelope['error'] == "Strategy [missing] not found"


def test_failed_backtest_returns_error(price_bars, scripted_strategy):
    async def scenario():
        runner = BacktestRunner(StrategyRegistry([scripted_strategy()]))
        try:
            return await runner.run_backtest(_config(start_time=10**12), price_bars([100, 101]))
        finally:
            await runner.stop()

    envelope = asyncio.run(scenario())
    assert not envelope['success']
    assert envelope['error'] == "No bar data in the specified time range"


def test_cancel_running_backtest(price_bars, scripted_strategy):
    gate = threading.Event()
    strategy = scripted_strategy(on_bar=lambda index: gate.wait(timeout=5))

    async def scenario():
        runner = BacktestRunner(StrategyRegistry([strategy]))
        try:
            task = asyncio.create_task(runner.run_backtest(_config(), price_bars([100] * 50)))
            while runner.get_progress('BTCUSDT') is None:
                await asyncio.sleep(0)
            duplicate = await runner.run_backtest(_config(), price_bars([100] * 50))
            assert runner.cancel('btcusdt')
            gate.set()
            return duplicate, await task
        finally:
            await runner.stop()

    duplicate, envelope = asyncio.run(scenario())
    assert duplicate == {"success": False, "symbol": "BTCUSDT", "error": "Backtest already running"}
    assert not envelope['success']
    assert envelope['cancelled']
    assert strategy.calls < 50


def test_cancel_unknown_symbol(scripted_strategy):
    async def scenario():
        runner = BacktestRunner(StrategyRegistry([scripted_strategy()]))
        return runner.cancel('ETHUSDT'), runner.get_progress('ETHUSDT')

    assert asyncio.run(scenario()) == (False, None)


def test_cache_key_covers_every_bar(price_bars, scripted_strategy):
    strategy = scripted_strategy()

    async def scenario():
        runner = BacktestRunner(StrategyRegistry([strategy]))
        try:
            first = await runner.run_backtest(_config(), price_bars([100, 100, 101, 102]))
            second = await runner.run_backtest(_config(), price_bars([100, 50, 101, 102]))
            return first, second, runner.get_status()
        finally:
            await runner.stop()

    first, second, status = asyncio.run(scenario())
    assert first['success'] and second['success']
    assert second is not first
    assert status['cache_size'] == 2
    assert strategy.calls == 8


def test_stop_cancels_queued_backtests(price_bars, scripted_strategy):
    started = threading.Event()
    gate = threading.Event()

    def hold(index):
        started.set()
        gate.wait(timeout=5)

    strategy = scripted_strategy(on_bar=hold)

    async def scenario():
        runner = BacktestRunner(StrategyRegistry([strategy]), concurrent_limit=1)
        running = asyncio.create_task(runner.run_backtest(_config(symbol='AAA'), price_bars([100] * 20)))
        while not started.is_set():
            await asyncio.sleep(0.01)

        # one waits for the busy slot, one stays in the queue
        waiting = asyncio.create_task(runner.run_backtest(_config(symbol='BBB'), price_bars([100] * 5)))
        queued = asyncio.create_task(runner.run_backtest(_config(symbol='CCC'), price_bars([100] * 5)))
        for _ in range(5):
            await asyncio.sleep(0)

        gate.set()
        await runner.stop()
        envelopes = await asyncio.wait_for(asyncio.gather(running, waiting, queued), timeout=5)
        status = runner.get_status()

        try:
            again = await runner.run_backtest(_config(symbol='BBB'), price_bars([100] * 5))
        finally:
            await runner.stop()
        return envelopes, status, again

    (_, waiting, queued), status, again = asyncio.run(scenario())

    for envelope in (waiting, queued):
        assert not envelope['success']
        assert envelope['cancelled']
        assert envelope['error'] == "Backtest runner stopped before the backtest started"
    assert status['running_symbols'] == []
    assert status['queue_size'] == 0
    assert again['success']


def test_runner_from_app_config(scripted_strategy):
    async def scenario():
        runner = BacktestRunner.from_config(StrategyRegistry([scripted_strategy()]), AppConfig(backtest_concurrent_limit=3))
        return runner.get_status()

    assert asyncio.run(scenario())['concurrent_limit'] == 3
