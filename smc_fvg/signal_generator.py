"""
Entry-zone evaluation and signal generation for the liquidity sweep + FVG
retracement setup
"""
from typing import Dict, Optional, Sequence, Tuple

from config.models import StrategyParams
from .models import Bar, FVG, Sweep, Displacement, Signal
from .smc_detector import calculate_atr, average_volume

SIGNAL_REASON = "Liquidity sweep + displacement confirmed, FVG retracement entry"


def entry_price_for(fvg: FVG, params: StrategyParams) -> float:
    """Entry at entry_fvg_percent of the gap, measured from its bottom"""
    return fvg.entry_price(params.entry_fvg_percent)


def check_price_in_fvg_zone(bar: Bar, fvg: FVG, params: StrategyParams) -> bool:
    """True when the bar closed within entry_tolerance of the gap's entry price"""
    entry_price = entry_price_for(fvg, params)
    tolerance = entry_price * params.entry_tolerance
    return abs(bar.close - entry_price) <= tolerance


def apply_filters(bars: Sequence[Bar], params: StrategyParams) -> Optional[str]:
    """
    Run the volume and sideways-market filters on the latest bar

    Returns:
        Reason the signal is suppressed, or None when every filter passes
    """
    last_bar = bars[-1]

    avg_volume = average_volume(bars, params.volume_lookback)
    if last_bar.volume < avg_volume * params.min_volume_ratio:
        return (
            f"Insufficient volume: {last_bar.volume:.2f} < "
            f"{params.min_volume_ratio} x {avg_volume:.2f} average"
        )

    if params.filter_sideways:
        atr = calculate_atr(bars, params.atr_period)
        atr_ratio = atr / last_bar.close if last_bar.close else 0.0
        if atr_ratio < params.sideways_atr_ratio:
            return f"Sideways market, ATR too small ({atr_ratio:.4%} of price)"

    return None


def calculate_exit_levels(direction: str, entry_price: float, fvg: FVG,
                          params: StrategyParams) -> Tuple[float, float, float]:
    """
    Stop-loss beyond the far edge of the gap and two percentage targets

    Returns:
        (stop_loss, target1, target2)
    """
    if direction == 'long':
        stop_loss = fvg.bottom * (1 - params.stop_loss_buffer)
        target1 = entry_price * (1 + params.take_profit_tp1 / 100)
        target2 = entry_price * (1 + params.take_profit_tp2 / 100)
    else:
        stop_loss = fvg.top * (1 + params.stop_loss_buffer)
        target1 = entry_price * (1 - params.take_profit_tp1 / 100)
        target2 = entry_price * (1 - params.take_profit_tp2 / 100)
    return stop_loss, target1, target2


def signal_confidence(fvg: FVG) -> float:
    return min(0.6 + fvg.strength * 10, 0.95)


def generate_signal(symbol: str, fvg: FVG, bar: Bar, params: StrategyParams) -> Signal:
    """Build the trading signal for a gap the current bar retraced into"""
    direction = 'long' if fvg.kind == 'bullish' else 'short'
    entry_price = entry_price_for(fvg, params)
    stop_loss, target1, target2 = calculate_exit_levels(direction, entry_price, fvg, params)

    return Signal(
        symbol=symbol,
        direction=direction,
        timestamp=bar.timestamp,
        entry_price=entry_price,
        stop_loss=stop_loss,
        target1=target1,
        target2=target2,
        confidence=signal_confidence(fvg),
        reason=SIGNAL_REASON,
    )


def generate_signal_details(sweep: Sweep, displacement: Displacement, fvg: FVG,
                            params: StrategyParams) -> str:
    """Human-readable summary of the setup behind a signal"""
    details = [
        f"Liquidity: {sweep.swept_level.kind} {sweep.swept_level.price:.2f}",
        f"Sweep price: {sweep.sweep_price:.2f}",
        f"Displacement: {displacement.direction}",
        f"Displacement strength: {displacement.strength:.2f}",
        f"FVG: {fvg.kind}",
        f"FVG zone: [{fvg.bottom:.2f}, {fvg.top:.2f}]",
        f"FVG strength: {fvg.strength * 100:.2f}%",
        f"Entry: {entry_price_for(fvg, params):.2f}",
    ]
    return " | ".join(details)


def calculate_exit_conditions(bars: Sequence[Bar], entry_idx: int, signal: Signal,
                              max_bars: int = 100) -> Dict:
    """
    Walk forward from the entry bar to find where a signal would have exited

    Stop-loss is checked before the first target on every bar. Positions still
    open after max_bars exit at that bar's close.

    Returns:
        Dictionary with exit information
    """
    last_idx = min(entry_idx + max_bars, len(bars)) - 1
    if entry_idx >= len(bars) - 1:
        return {
            'exit_index': entry_idx,
            'exit_time': bars[min(entry_idx, len(bars) - 1)].timestamp,
            'exit_price': signal.entry_price,
            'exit_reason': 'NO_EXIT',
            'pnl_percent': 0.0,
        }

    exit_idx = last_idx
    exit_price = bars[last_idx].close
    exit_reason = 'TIMEOUT'

    for i in range(entry_idx + 1, last_idx + 1):
        bar = bars[i]
        if signal.direction == 'long':
            if bar.low <= signal.stop_loss:
                exit_idx, exit_price, exit_reason = i, signal.stop_loss, 'SL'
                break
            if bar.high >= signal.target1:
                exit_idx, exit_price, exit_reason = i, signal.target1, 'TP'
                break
        else:
            if bar.high >= signal.stop_loss:
                exit_idx, exit_price, exit_reason = i, signal.stop_loss, 'SL'
                break
            if bar.low <= signal.target1:
                exit_idx, exit_price, exit_reason = i, signal.target1, 'TP'
                break

    if signal.direction == 'long':
        pnl = exit_price - signal.entry_price
    else:
        pnl = signal.entry_price - exit_price

    return {
        'exit_index': exit_idx,
        'exit_time': bars[exit_idx].timestamp,
        'exit_price': float(exit_price),
        'exit_reason': exit_reason,
        'pnl_percent': float(pnl / signal.entry_price * 100),
    }
