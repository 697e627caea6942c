import pandas as pd

from smc_fvg.cli import build_parser, run
from smc_fvg.data_loader import bars_to_dataframe


def _write_bars(tmp_path, bars):
    path = tmp_path / "bars.csv"
    bars_to_dataframe(bars).drop(columns=['datetime']).to_csv(path, index=False)
    return str(path)


def test_cli_runs_backtest_and_writes_trades(tmp_path, setup_bars, capsys):
    data = _write_bars(tmp_path, setup_bars)
    out = tmp_path / "trades.csv"

    args = build_parser().parse_args(['--data', data, '--symbol', 'ethusdt', '--out', str(out), '--log-level', 'WARNING'])
    assert run(args) == 0

    trades = pd.read_csv(out)
    assert list(trades['direction']) == ['short']
    assert list(trades['symbol']) == ['ETHUSDT']
    assert "Net profit" in capsys.readouterr().out


def test_cli_missing_data_file(tmp_path):
    args = build_parser().parse_args(['--data', str(tmp_path / "missing.csv"), '--log-level', 'WARNING'])
    assert run(args) == 1


def test_cli_invalid_config(tmp_path, setup_bars):
    config = tmp_path / "bad.yaml"
    config.write_text("strategy:\n  entry_fvg_percent: 3\n")
    args = build_parser().parse_args(['--data', _write_bars(tmp_path, setup_bars), '--config', str(config)])
    assert run(args) == 1


def test_cli_uses_configured_strategy_id(tmp_path, setup_bars, caplog, monkeypatch):
    monkeypatch.setattr("smc_fvg.cli.setup_logging", lambda *args: None)
    config = tmp_path / "other.yaml"
    config.write_text("strategy_id: other_strategy\n")
    args = build_parser().parse_args(['--data', _write_bars(tmp_path, setup_bars), '--config', str(config)])
    assert run(args) == 1
    assert "Strategy [other_strategy] not found" in caplog.text
