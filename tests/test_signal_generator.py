import pytest

from config.models import StrategyParams
from smc_fvg.models import FVG, Signal
from smc_fvg.signal_generator import (
    entry_price_for, check_price_in_fvg_zone, apply_filters, calculate_exit_levels,
    signal_confidence, generate_signal, calculate_exit_conditions
)


def _fvg(kind='bullish', top=101.0, bottom=99.0, strength=0.02):
    return FVG(kind=kind, top=top, bottom=bottom, middle=(top + bottom) / 2,
               strength=strength, created_index=2, timestamp=0)


def test_entry_price_uses_fraction_from_bottom():
    fvg = _fvg(top=110, bottom=100)
    assert entry_price_for(fvg, StrategyParams(entry_fvg_percent=0.5)) == 105
    assert entry_price_for(fvg, StrategyParams(entry_fvg_percent=0.25)) == 102.5


def test_price_in_zone_tolerance(make_bar):
    fvg = _fvg()
    params = StrategyParams()
    assert check_price_in_fvg_zone(make_bar(0, 100, 100.2, 99.9, 100.1), fvg, params)
    assert not check_price_in_fvg_zone(make_bar(0, 100, 100.4, 99.9, 100.3), fvg, params)
    assert check_price_in_fvg_zone(make_bar(0, 100, 100.4, 99.9, 100.3), fvg, StrategyParams(entry_tolerance=0.005))


def test_volume_filter(make_bar):
    bars = [make_bar(i, 100, 101, 99, 100, v=100) for i in range(20)]
    params = StrategyParams(filter_sideways=False)
    assert apply_filters(bars, params).startswith("Insufficient volume")

    bars[-1] = make_bar(19, 100, 101, 99, 100, v=300)
    assert apply_filters(bars, params) is None


def test_sideways_filter(make_bar):
    bars = [make_bar(i, 100, 100, 100, 100, v=100) for i in range(20)]
    params = StrategyParams(min_volume_ratio=1.0)
    assert apply_filters(bars, params).startswith("Sideways market")
    assert apply_filters(bars, StrategyParams(min_volume_ratio=1.0, filter_sideways=False)) is None


def test_exit_levels_long_and_short():
    params = StrategyParams()
    fvg = _fvg(top=101, bottom=99)

    stop, tp1, tp2 = calculate_exit_levels('long', 100, fvg, params)
    assert stop == pytest.approx(99 * 0.99)
    assert tp1 == pytest.approx(100.8)
    assert tp2 == pytest.approx(101.5)

    stop, tp1, tp2 = calculate_exit_levels('short', 100, fvg, params)
    assert stop == pytest.approx(101 * 1.01)
    assert tp1 == pytest.approx(99.2)
    assert tp2 == pytest.approx(98.5)


def test_confidence_is_capped():
    assert signal_confidence(_fvg(strength=0.01)) == pytest.approx(0.7)
    assert signal_confidence(_fvg(strength=0.2)) == 0.95


def test_generate_signal_from_bearish_gap(make_bar):
    fvg = _fvg(kind='bearish', top=95, bottom=92, strength=0.03)
    signal = generate_signal("BTCUSDT", fvg, make_bar(7, 93, 93.6, 93, 93.5), StrategyParams())

    assert signal.direction == 'short'
    assert signal.entry_price == pytest.approx(93.5)
    assert signal.stop_loss == pytest.approx(95.95)
    assert signal.timestamp == 7 * 60_000
    assert signal.to_dict()['symbol'] == "BTCUSDT"


def _long_signal(entry=100.0, stop=98.0, target=102.0):
    return Signal(symbol="BTCUSDT", direction='long', timestamp=0, entry_price=entry,
                  stop_loss=stop, target1=target, target2=target + 1, confidence=0.8, reason="test")


def test_exit_conditions_stop_checked_before_target(make_bar):
    bars = [
        make_bar(0, 100, 100, 100, 100),
        make_bar(1, 100, 101, 99, 100),
        make_bar(2, 100, 103, 97, 99),  # both levels touched
    ]
    outcome = calculate_exit_conditions(bars, 0, _long_signal())
    assert outcome['exit_reason'] == 'SL'
    assert outcome['exit_index'] == 2
    assert outcome['pnl_percent'] == pytest.approx(-2.0)


def test_exit_conditions_target_and_timeout(make_bar):
    bars = [make_bar(i, 100, 101, 99, 100) for i in range(5)]
    outcome = calculate_exit_conditions(bars, 0, _long_signal(), max_bars=3)
    assert outcome['exit_reason'] == 'TIMEOUT'
    assert outcome['exit_index'] == 2

    bars.append(make_bar(5, 100, 102.5, 100, 102))
    outcome = calculate_exit_conditions(bars, 0, _long_signal())
    assert outcome['exit_reason'] == 'TP'
    assert outcome['exit_price'] == 102.0


def test_exit_conditions_on_last_bar(make_bar):
    bars = [make_bar(i, 100, 101, 99, 100) for i in range(3)]
    outcome = calculate_exit_conditions(bars, 2, _long_signal())
    assert outcome['exit_reason'] == 'NO_EXIT'
    assert outcome['pnl_percent'] == 0.0
