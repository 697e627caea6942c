import asyncio

import pytest

from config.models import AppConfig, StrategyParams
from smc_fvg.errors import NotFoundError, ValidationError
from smc_fvg.scanner import SymbolScanner
from smc_fvg.strategy import SMCLiquidityFVGStrategy, create_default_registry


def test_scanner_emits_signal_on_retracement_bar(setup_bars):
    received = []
    scanner = SymbolScanner(SMCLiquidityFVGStrategy(), buffer_size=100)
    scanner.add_signal_callback(received.append)
    scanner.preload('btcusdt', setup_bars[:47])

    signal = asyncio.run(scanner.on_bar('BTCUSDT', setup_bars[47]))

    assert signal is not None
    assert signal.direction == 'short'
    assert received == [signal]
    assert scanner.get_status()['BTCUSDT']['signals'] == 1
    assert scanner.get_last_result('btcusdt').triggered


def test_scanner_without_enough_bars(setup_bars):
    scanner = SymbolScanner(SMCLiquidityFVGStrategy())
    assert asyncio.run(scanner.on_bar('BTCUSDT', setup_bars[0])) is None
    assert scanner.get_last_result('BTCUSDT') is None
    assert len(scanner.get_bars('BTCUSDT')) == 1


def test_scanner_rejects_stale_bar(setup_bars):
    scanner = SymbolScanner(SMCLiquidityFVGStrategy())
    scanner.preload('BTCUSDT', setup_bars[:10])
    with pytest.raises(ValueError):
        asyncio.run(scanner.on_bar('BTCUSDT', setup_bars[5]))


def test_scanner_symbols_are_independent(setup_bars):
    scanner = SymbolScanner(SMCLiquidityFVGStrategy())

    async def feed():
        await asyncio.gather(
            scanner.on_bar('BTCUSDT', setup_bars[0]),
            scanner.on_bar('ETHUSDT', setup_bars[0]),
        )

    asyncio.run(feed())
    assert sorted(scanner.symbols) == ['BTCUSDT', 'ETHUSDT']

    scanner.remove_symbol('ethusdt')
    assert scanner.symbols == ['BTCUSDT']


def test_failing_callback_does_not_stop_others(setup_bars):
    received = []

    def broken(signal):
        raise RuntimeError("boom")

    scanner = SymbolScanner(SMCLiquidityFVGStrategy(), buffer_size=100)
    scanner.add_signal_callback(broken)
    scanner.add_signal_callback(received.append)
    scanner.preload('BTCUSDT', setup_bars[:47])

    asyncio.run(scanner.on_bar('BTCUSDT', setup_bars[47]))
    assert len(received) == 1


def test_scanner_validates_setup():
    with pytest.raises(ValidationError):
        SymbolScanner(SMCLiquidityFVGStrategy(), StrategyParams(entry_fvg_percent=2))
    with pytest.raises(ValueError):
        SymbolScanner(SMCLiquidityFVGStrategy(), buffer_size=10)


def test_scanner_from_app_config():
    config = AppConfig(bar_buffer_size=120, strategy=StrategyParams(liquidity_lookback=10))
    scanner = SymbolScanner.from_config(create_default_registry(), config)

    assert scanner.buffer_size == 120
    assert scanner.params.liquidity_lookback == 10
    assert scanner.strategy.meta.id == config.strategy_id

    with pytest.raises(NotFoundError):
        SymbolScanner.from_config(create_default_registry(), AppConfig(strategy_id='missing'))
