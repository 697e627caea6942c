import logging

import pytest

from smc_fvg.errors import ValidationError, InsufficientDataError, NotFoundError
from smc_fvg.strategy import SMCLiquidityFVGStrategy, StrategyRegistry, create_default_registry


def test_signal_on_retracement_into_gap(setup_bars):
    strategy = SMCLiquidityFVGStrategy()
    result = strategy.detect_signal("BTCUSDT", setup_bars[:48])

    assert result.triggered
    signal = result.signal
    assert signal.direction == 'short'
    assert signal.entry_price == pytest.approx(93.5)
    assert signal.stop_loss == pytest.approx(95.95)
    assert signal.target1 == pytest.approx(93.5 * 0.992)
    assert signal.target2 == pytest.approx(93.5 * 0.985)
    assert signal.confidence == pytest.approx(0.6 + 3 / 95.2 * 10)
    assert signal.timestamp == setup_bars[47].timestamp
    assert "FVG zone: [92.00, 95.00]" in result.details


def test_detection_is_idempotent(setup_bars):
    strategy = SMCLiquidityFVGStrategy()
    first = strategy.detect_signal("BTCUSDT", setup_bars[:48])
    second = strategy.detect_signal("BTCUSDT", setup_bars[:48])
    assert first == second


def test_camel_case_params_accepted(setup_bars):
    strategy = SMCLiquidityFVGStrategy()
    result = strategy.detect_signal("BTCUSDT", setup_bars[:48], {"entryFVGPercent": 0.5, "liquidityLookback": 20})
    assert result.triggered


def test_no_signal_before_retracement(setup_bars):
    result = SMCLiquidityFVGStrategy().detect_signal("BTCUSDT", setup_bars[:47])
    assert not result.triggered
    assert result.reason == "Price has not retraced into the FVG entry zone"


def test_no_signal_without_volume(setup_bars, make_bar):
    bars = setup_bars[:47] + [make_bar(47, 91.8, 93.9, 91.5, 93.5, v=100)]
    result = SMCLiquidityFVGStrategy().detect_signal("BTCUSDT", bars)
    assert result.signal is None
    assert result.reason.startswith("Insufficient volume")


def test_no_signal_when_gap_filled(setup_bars, make_bar):
    bars = setup_bars[:46] + [make_bar(46, 90.5, 95.5, 90, 91.8), setup_bars[47]]
    result = SMCLiquidityFVGStrategy().detect_signal("BTCUSDT", bars)
    assert result.reason == "Displacement FVGs already filled"


def test_no_sweep(make_bar):
    bars = [make_bar(i, 95, 96, 94, 95) for i in range(60)]
    result = SMCLiquidityFVGStrategy().detect_signal("BTCUSDT", bars)
    assert result.reason == "No liquidity sweep detected"


def test_insufficient_data(setup_bars):
    with pytest.raises(InsufficientDataError) as exc_info:
        SMCLiquidityFVGStrategy().detect_signal("BTCUSDT", setup_bars[:39])
    assert exc_info.value.required == 40
    assert exc_info.value.available == 39


def test_invalid_params_raise(setup_bars):
    with pytest.raises(ValidationError) as exc_info:
        SMCLiquidityFVGStrategy().detect_signal("BTCUSDT", setup_bars, {"fvg_min_size": 0.6})
    assert "fvg_min_size must be smaller than fvg_max_size" in exc_info.value.errors


def test_historical_signals_walk_to_exit(setup_bars):
    results = SMCLiquidityFVGStrategy().detect_historical_signals("BTCUSDT", setup_bars)

    assert len(results) == 1
    outcome = results[0]
    assert outcome['start_index'] == 47
    assert outcome['exit_reason'] == 'TP'
    assert outcome['exit_index'] == 48
    assert outcome['pnl_percent'] == pytest.approx(0.8)


def test_registry_lookup():
    registry = create_default_registry()
    assert len(registry) == 1
    assert registry.has("smc_liquidity_fvg")
    assert registry.list_meta()[0].name == "SMC Liquidity + FVG Retracement"
    assert registry.get_default_params("smc_liquidity_fvg").liquidity_lookback == 20

    with pytest.raises(NotFoundError):
        registry.get("missing")

    valid, errors = registry.validate_params("missing", {})
    assert not valid
    assert errors == ["Strategy [missing] not found"]


def test_registry_replaces_duplicate_ids(caplog):
    registry = StrategyRegistry([SMCLiquidityFVGStrategy()])
    replacement = SMCLiquidityFVGStrategy()
    with caplog.at_level(logging.WARNING):
        registry.register(replacement)
    assert registry.get("smc_liquidity_fvg") is replacement
    assert "already registered" in caplog.text


def test_registry_detect_signal(setup_bars):
    registry = create_default_registry()
    result = registry.detect_signal("smc_liquidity_fvg", "ETHUSDT", setup_bars[:48])
    assert result.signal.symbol == "ETHUSDT"


def test_long_signal_after_low_sweep(mirrored_setup_bars):
    result = SMCLiquidityFVGStrategy().detect_signal("BTCUSDT", mirrored_setup_bars[:48])

    assert result.triggered
    signal = result.signal
    assert signal.direction == 'long'
    assert signal.entry_price == pytest.approx(106.5)
    assert signal.stop_loss == pytest.approx(105 * 0.99)
    assert signal.target1 == pytest.approx(106.5 * 1.008)
    assert signal.target2 == pytest.approx(106.5 * 1.015)
    assert signal.confidence == pytest.approx(0.6 + 3 / 104.8 * 10)
    assert "Displacement: bullish" in result.details
    assert "FVG zone: [105.00, 108.00]" in result.details
