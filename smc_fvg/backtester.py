"""
Bar-by-bar backtest simulator for strategy signals
"""
import logging
import math
import threading
import numpy as np
import pandas as pd
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any, Optional, Sequence, Tuple

from config.models import BacktestConfig
from .errors import ValidationError, InsufficientDataError, CancellationError
from .models import Bar, Signal
from .strategy import Strategy, StrategyRegistry

logger = logging.getLogger(__name__)

STATUS_IDLE = 'idle'
STATUS_RUNNING = 'running'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
STATUS_ERROR = 'error'

EXIT_SIGNAL_REVERSAL = 'Signal Reversal'
EXIT_STOP_LOSS = 'Stop Loss'
EXIT_TAKE_PROFIT = 'Take Profit'
EXIT_END_OF_BACKTEST = 'End of Backtest'


@dataclass
class VirtualPosition:
    """Open simulated position"""
    symbol: str
    direction: str  # 'long' or 'short'
    entry_time: int
    entry_price: float
    quantity: float
    stop_loss: float
    targets: Tuple[float, ...]
    entry_reason: str = ""
    max_profit: float = 0.0
    max_drawdown: float = 0.0

    def unrealized_pnl(self, price: float) -> float:
        if self.direction == 'long':
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity


@dataclass
class Trade:
    """Closed simulated position"""
    symbol: str
    direction: str
    entry_time: int
    entry_price: float
    entry_reason: str
    quantity: float
    exit_time: int
    exit_price: float
    exit_reason: str
    gross_pnl: float
    fees: float
    net_pnl: float
    pnl_percent: float
    holding_time: int  # ms
    max_profit: float
    max_drawdown: float

    @property
    def is_winner(self) -> bool:
        return self.net_pnl > 0


@dataclass
class EquityPoint:
    timestamp: int
    equity: float
    drawdown: float
    drawdown_percent: float


@dataclass
class BacktestResult:
    """Aggregate statistics plus the full trade, signal and equity history"""
    strategy_id: str
    strategy_name: str
    symbol: str
    timeframe: str

    start_time: int
    end_time: int
    duration: int
    total_bars: int
    processed_bars: int
    stopped_early: bool

    initial_balance: float
    final_balance: float

    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float

    total_profit: float
    total_loss: float
    net_profit: float
    profit_factor: float

    avg_holding_time: float
    median_holding_time: float
    max_holding_time: int
    min_holding_time: int

    max_drawdown: float
    max_drawdown_percent: float
    avg_drawdown: float

    avg_profit_per_trade: float
    max_profit_per_trade: float
    max_loss_per_trade: float
    avg_profit_per_winning: float
    avg_loss_per_losing: float

    trades: List[Trade] = field(default_factory=list)
    signals: List[Signal] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def summary(self) -> Dict[str, Any]:
        """Statistics only, without the per-trade/per-bar lists"""
        data = self.to_dict()
        for key in ('trades', 'signals', 'equity_curve', 'params'):
            data.pop(key)
        return data

    def trades_frame(self) -> pd.DataFrame:
        df = pd.DataFrame([asdict(t) for t in self.trades])
        if not df.empty:
            df['entry_time'] = pd.to_datetime(df['entry_time'], unit='ms', utc=True)
            df['exit_time'] = pd.to_datetime(df['exit_time'], unit='ms', utc=True)
        return df

    def equity_frame(self) -> pd.DataFrame:
        df = pd.DataFrame([asdict(p) for p in self.equity_curve])
        if not df.empty:
            df['timestamp'] = pd.to_datetime(df['timestamp'], unit='ms', utc=True)
        return df


@dataclass
class _BacktestState:
    balance: float
    equity: float
    max_equity: float
    current_drawdown: float = 0.0
    max_drawdown: float = 0.0
    positions: Dict[str, VirtualPosition] = field(default_factory=dict)
    trades: List[Trade] = field(default_factory=list)
    signals: List[Signal] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)


class BacktestSimulator:
    """
    Replays bars through a strategy and manages simulated positions

    Progress, status and the cancel flag may be touched from other threads;
    everything else is owned by the thread calling run().
    """

    def __init__(self, strategy: Strategy):
        self.strategy = strategy
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._status = STATUS_IDLE
        self._error: Optional[str] = None
        self._progress = 0

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self._error

    @property
    def progress(self) -> int:
        """Processed bars as an integer percentage"""
        with self._lock:
            return self._progress

    def cancel(self) -> None:
        """
        Ask the backtest to stop before its next bar

        A request made before run() starts cancels that run on its first bar.
        """
        self._cancel_event.set()

    def _set_status(self, status: str, error: Optional[str] = None) -> None:
        with self._lock:
            self._status = status
            self._error = error

    def run(self, config: BacktestConfig, bars: Sequence[Bar]) -> BacktestResult:
        """
        Run a backtest over the bars inside the configured time range

        Raises:
            CancellationError: cancel() was called before or during the run
            ValidationError: configuration or strategy params are invalid
            RuntimeError: the simulator has already been run
        """
        with self._lock:
            if self._status != STATUS_IDLE:
                raise RuntimeError(f"Simulator is {self._status}, create a new one for another run")
            self._status = STATUS_RUNNING
            self._error = None
            self._progress = 0

        try:
            result = self._run(config, bars)
        except CancellationError:
            self._set_status(STATUS_CANCELLED)
            logger.info(f"Backtest for {config.symbol} cancelled")
            raise
        except Exception as e:
            self._set_status(STATUS_ERROR, str(e))
            logger.error(f"Backtest for {config.symbol} failed: {e}")
            raise
        finally:
            self._cancel_event.clear()

        self._set_status(STATUS_COMPLETED)
        return result

    def _run(self, config: BacktestConfig, bars: Sequence[Bar]) -> BacktestResult:
        errors = config.validate()
        if errors:
            raise ValidationError(errors)

        params = self.strategy.coerce_params(config.params)
        valid, errors = self.strategy.validate_params(params)
        if not valid:
            raise ValidationError(errors)

        bars = [
            b for b in bars
            if (config.start_time is None or b.timestamp >= config.start_time)
            and (config.end_time is None or b.timestamp <= config.end_time)
        ]
        if not bars:
            raise ValueError("No bar data in the specified time range")

        state = _BacktestState(
            balance=config.initial_balance,
            equity=config.initial_balance,
            max_equity=config.initial_balance,
        )

        total_bars = len(bars)
        processed = 0
        stopped_early = False
        logger.info(f"Starting backtest for {config.symbol} over {total_bars} bars")

        for i, bar in enumerate(bars):
            if self._cancel_event.is_set():
                raise CancellationError(processed)

            try:
                detection = self.strategy.detect_signal(config.symbol, bars[:i + 1], params)
            except InsufficientDataError:
                detection = None

            if detection is not None and detection.signal is not None:
                state.signals.append(detection.signal)
                self._execute_signal(state, detection.signal, bar, config)

            self._update_positions(state, bar, config)
            self._update_equity_curve(state, bar)

            processed += 1
            with self._lock:
                self._progress = int(processed * 100 / total_bars)

            if config.max_drawdown_percent and state.max_equity > 0:
                drawdown_percent = state.current_drawdown / state.max_equity * 100
                if drawdown_percent > config.max_drawdown_percent:
                    logger.warning(f"Backtest stopped due to max drawdown: {drawdown_percent:.2f}%")
                    stopped_early = True
                    break

        last_bar = bars[processed - 1]
        self._close_all_positions(state, last_bar, config)

        result = self._calculate_result(state, config, params.to_dict(), bars[0], last_bar,
                                        total_bars, processed, stopped_early)
        logger.info(
            f"Backtest for {config.symbol} completed: {result.total_trades} trades, "
            f"net profit {result.net_profit:.2f}, max drawdown {result.max_drawdown_percent:.2f}%"
        )
        return result

    def _execute_signal(self, state: _BacktestState, signal: Signal, bar: Bar, config: BacktestConfig) -> None:
        existing = state.positions.get(signal.symbol)

        if existing:
            if existing.direction == signal.direction:
                logger.debug(f"Ignoring {signal.direction} signal, position already open for {signal.symbol}")
                return
            self._close_position(state, existing, signal.entry_price, EXIT_SIGNAL_REVERSAL, bar.timestamp, config)

        quantity = self._position_quantity(state, signal, config)
        if not math.isfinite(quantity) or quantity <= 0:
            logger.warning(f"Skipping {signal.direction} signal for {signal.symbol}: invalid quantity {quantity}")
            return

        entry_price = self._apply_slippage(signal.entry_price, signal.direction, True, config)
        state.positions[signal.symbol] = VirtualPosition(
            symbol=signal.symbol,
            direction=signal.direction,
            entry_time=signal.timestamp,
            entry_price=entry_price,
            quantity=quantity,
            stop_loss=signal.stop_loss,
            targets=(signal.target1, signal.target2),
            entry_reason=signal.reason,
        )
        logger.info(f"Open {signal.direction} position: {signal.symbol} @ {entry_price}, qty {quantity:.6f}")

    def _position_quantity(self, state: _BacktestState, signal: Signal, config: BacktestConfig) -> float:
        if config.position_sizing_mode == 'percent':
            return state.balance * (config.position_size / 100) / signal.entry_price

        if config.position_sizing_mode == 'risk':
            risk_amount = state.balance * (config.risk_per_trade / 100)
            risk_per_unit = abs(signal.entry_price - self._stop_loss_estimate(signal, config))
            if risk_per_unit == 0:
                return 0.0
            return risk_amount / risk_per_unit

        return config.position_size

    @staticmethod
    def _stop_loss_estimate(signal: Signal, config: BacktestConfig) -> float:
        """Percentage stop when configured, otherwise the signal's own stop"""
        if config.stop_loss_percent:
            distance = signal.entry_price * config.stop_loss_percent / 100
            if signal.direction == 'long':
                return signal.entry_price - distance
            return signal.entry_price + distance
        return signal.stop_loss

    @staticmethod
    def _apply_slippage(price: float, direction: str, opening: bool, config: BacktestConfig) -> float:
        """Move the fill against the trader by config.slippage percent"""
        if not config.slippage:
            return price
        buying = (direction == 'long') == opening
        factor = config.slippage / 100
        return price * (1 + factor) if buying else price * (1 - factor)

    def _update_positions(self, state: _BacktestState, bar: Bar, config: BacktestConfig) -> None:
        for position in list(state.positions.values()):
            pnl = position.unrealized_pnl(bar.close)
            pnl_percent = pnl / (position.entry_price * position.quantity) * 100

            position.max_profit = max(position.max_profit, pnl)
            position.max_drawdown = min(position.max_drawdown, pnl)

            if config.stop_loss_percent and pnl_percent <= -config.stop_loss_percent:
                self._close_position(state, position, bar.close, EXIT_STOP_LOSS, bar.timestamp, config)
                continue

            if config.take_profit_percent and pnl_percent >= config.take_profit_percent:
                self._close_position(state, position, bar.close, EXIT_TAKE_PROFIT, bar.timestamp, config)

    def _close_position(self, state: _BacktestState, position: VirtualPosition, price: float,
                        reason: str, timestamp: int, config: BacktestConfig) -> Trade:
        exit_price = self._apply_slippage(price, position.direction, False, config)
        gross_pnl = position.unrealized_pnl(exit_price)
        fees = (position.entry_price * position.quantity + exit_price * position.quantity) * config.commission_rate
        net_pnl = gross_pnl - fees

        state.balance += net_pnl

        trade = Trade(
            symbol=position.symbol,
            direction=position.direction,
            entry_time=position.entry_time,
            entry_price=position.entry_price,
            entry_reason=position.entry_reason,
            quantity=position.quantity,
            exit_time=timestamp,
            exit_price=exit_price,
            exit_reason=reason,
            gross_pnl=gross_pnl,
            fees=fees,
            net_pnl=net_pnl,
            pnl_percent=gross_pnl / (position.entry_price * position.quantity) * 100,
            holding_time=timestamp - position.entry_time,
            max_profit=position.max_profit,
            max_drawdown=position.max_drawdown,
        )
        state.trades.append(trade)
        del state.positions[position.symbol]

        logger.info(
            f"Close {position.direction} position: {position.symbol} @ {exit_price}, "
            f"PnL: {net_pnl:.2f} ({trade.pnl_percent:.2f}%), Reason: {reason}"
        )
        return trade

    def _close_all_positions(self, state: _BacktestState, bar: Bar, config: BacktestConfig) -> None:
        for position in list(state.positions.values()):
            self._close_position(state, position, bar.close, EXIT_END_OF_BACKTEST, bar.timestamp, config)

    def _update_equity_curve(self, state: _BacktestState, bar: Bar) -> None:
        unrealized = sum(p.unrealized_pnl(bar.close) for p in state.positions.values())
        state.equity = state.balance + unrealized

        if state.equity > state.max_equity:
            state.max_equity = state.equity

        state.current_drawdown = state.max_equity - state.equity
        state.max_drawdown = max(state.max_drawdown, state.current_drawdown)

        state.equity_curve.append(EquityPoint(
            timestamp=bar.timestamp,
            equity=state.equity,
            drawdown=state.current_drawdown,
            drawdown_percent=state.current_drawdown / state.max_equity * 100 if state.max_equity > 0 else 0.0,
        ))

    def _calculate_result(self, state: _BacktestState, config: BacktestConfig, params: Dict[str, Any],
                          first_bar: Bar, last_bar: Bar, total_bars: int, processed: int,
                          stopped_early: bool) -> BacktestResult:
        trades = state.trades
        pnls = np.array([t.net_pnl for t in trades], dtype=float)
        wins = pnls[pnls > 0]
        losses = pnls[pnls <= 0]

        total_profit = float(wins.sum())
        total_loss = float(abs(losses.sum()))
        net_profit = state.balance - config.initial_balance

        if total_loss > 0:
            profit_factor = total_profit / total_loss
        elif total_profit > 0:
            profit_factor = float('inf')
        else:
            profit_factor = 0.0

        holding = np.array([t.holding_time for t in trades], dtype=float)
        drawdowns = np.array([p.drawdown for p in state.equity_curve], dtype=float)
        drawdown_percents = np.array([p.drawdown_percent for p in state.equity_curve], dtype=float)

        return BacktestResult(
            strategy_id=self.strategy.meta.id,
            strategy_name=self.strategy.meta.name,
            symbol=config.symbol,
            timeframe=config.timeframe,
            start_time=first_bar.timestamp,
            end_time=last_bar.timestamp,
            duration=last_bar.timestamp - first_bar.timestamp,
            total_bars=total_bars,
            processed_bars=processed,
            stopped_early=stopped_early,
            initial_balance=config.initial_balance,
            final_balance=state.balance,
            total_trades=len(trades),
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / len(trades) * 100 if trades else 0.0,
            total_profit=total_profit,
            total_loss=total_loss,
            net_profit=net_profit,
            profit_factor=profit_factor,
            avg_holding_time=float(holding.mean()) if trades else 0.0,
            median_holding_time=float(np.median(holding)) if trades else 0.0,
            max_holding_time=int(holding.max()) if trades else 0,
            min_holding_time=int(holding.min()) if trades else 0,
            max_drawdown=state.max_drawdown,
            max_drawdown_percent=float(drawdown_percents.max()) if len(drawdown_percents) else 0.0,
            avg_drawdown=float(drawdowns.mean()) if len(drawdowns) else 0.0,
            avg_profit_per_trade=net_profit / len(trades) if trades else 0.0,
            max_profit_per_trade=float(pnls.max()) if trades else 0.0,
            max_loss_per_trade=float(pnls.min()) if trades else 0.0,
            avg_profit_per_winning=float(wins.mean()) if len(wins) else 0.0,
            avg_loss_per_losing=float(losses.mean()) if len(losses) else 0.0,
            trades=list(trades),
            signals=list(state.signals),
            equity_curve=list(state.equity_curve),
            params=params,
        )


def run_backtest(registry: StrategyRegistry, config: BacktestConfig, bars: Sequence[Bar]) -> BacktestResult:
    """
    Convenience function to resolve the configured strategy and run one backtest

    Raises:
        NotFoundError: config.strategy_id is not registered
    """
    strategy = registry.get(config.strategy_id)
    simulator = BacktestSimulator(strategy)
    return simulator.run(config, bars)
