import pytest

from config.models import StrategyParams
from smc_fvg.models import Bar, DetectionResult, Signal
from smc_fvg.errors import InsufficientDataError
from smc_fvg.strategy import Strategy, StrategyMeta

MINUTE = 60_000


def bar(i, o, h, l, c, v=100.0):
    return Bar(timestamp=i * MINUTE, open=o, high=h, low=l, close=c, volume=v)


def build_setup_bars():
    """
    Swing high at 100 (bar 20), false breakout to 106 (bar 41), four bearish
    bars leaving a 95/92 gap (bars 42-45), retrace to 93.5 on bar 47 with a
    volume spike, then one more bar closing at 92.
    """
    bars = [bar(i, 95, 96, 94, 95) for i in range(20)]
    bars.append(bar(20, 95, 100, 94, 95))
    bars += [bar(i, 95, 96, 94, 95) for i in range(21, 41)]
    bars += [
        bar(41, 95, 106, 94, 99),
        bar(42, 99, 99.5, 96, 96.5),
        bar(43, 96.5, 97, 95, 95.2),
        bar(44, 95.2, 95.5, 92.5, 93),
        bar(45, 92, 92, 90, 90.5),
        bar(46, 90.5, 92, 90, 91.8),
        bar(47, 91.8, 93.9, 91.5, 93.5, v=500.0),
        bar(48, 93.5, 93.6, 91.8, 92),
    ]
    return bars


def mirror_bars(bars, axis=200.0):
    """Reflect prices around axis, turning the short setup into its long twin"""
    return [
        Bar(timestamp=b.timestamp, open=axis - b.open, high=axis - b.low,
            low=axis - b.high, close=axis - b.close, volume=b.volume)
        for b in bars
    ]


class ScriptedStrategy(Strategy):
    """Emits pre-set signals keyed by the index of the latest bar"""

    meta = StrategyMeta(id="scripted", name="Scripted", description="test double")

    def __init__(self, signals=None, warmup=1, on_bar=None):
        self.signals = signals or {}
        self.warmup = warmup
        self.on_bar = on_bar
        self.calls = 0

    def get_default_params(self):
        return StrategyParams()

    def detect_signal(self, symbol, bars, params=None):
        self.calls += 1
        if self.on_bar:
            self.on_bar(len(bars) - 1)
        if len(bars) < self.warmup:
            raise InsufficientDataError(self.warmup, len(bars))
        index = len(bars) - 1
        if index in self.signals:
            direction, entry, stop = self.signals[index]
            signal = Signal(
                symbol=symbol,
                direction=direction,
                timestamp=bars[-1].timestamp,
                entry_price=entry,
                stop_loss=stop,
                target1=entry,
                target2=entry,
                confidence=0.9,
                reason="scripted",
            )
            return DetectionResult(signal, "signal triggered")
        return DetectionResult(None, "no signal")


def closes_to_bars(closes):
    return [bar(i, c, c, c, c) for i, c in enumerate(closes)]


@pytest.fixture
def setup_bars():
    return build_setup_bars()


@pytest.fixture
def make_bar():
    return bar


@pytest.fixture
def price_bars():
    return closes_to_bars


@pytest.fixture
def scripted_strategy():
    return ScriptedStrategy


@pytest.fixture
def mirrored_setup_bars():
    return mirror_bars(build_setup_bars())
