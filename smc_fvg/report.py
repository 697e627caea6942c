"""
Backtest result grading, console report and result files
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .backtester import BacktestResult, EXIT_STOP_LOSS

logger = logging.getLogger(__name__)


def stop_loss_rate(result: BacktestResult) -> float:
    """Share of trades closed by the stop-loss, in percent"""
    if not result.total_trades:
        return 0.0
    stops = sum(1 for t in result.trades if t.exit_reason == EXIT_STOP_LOSS)
    return stops / result.total_trades * 100


def generate_recommendation(result: BacktestResult) -> str:
    """Generate trading recommendation based on backtest results"""
    if result.total_trades < 10:
        return "Insufficient data for reliable recommendation"

    if result.win_rate >= 70 and result.profit_factor >= 2.0:
        return "EXCELLENT - Strong strategy performance, safe to trade"
    elif result.win_rate >= 60 and result.profit_factor >= 1.5:
        return "GOOD - Strategy shows promise, consider trading"
    elif result.win_rate >= 50 and result.profit_factor >= 1.2:
        return "FAIR - Strategy needs improvement, trade with caution"
    else:
        return "POOR - Strategy underperforming, avoid trading"


def assess_risk_level(result: BacktestResult) -> str:
    """Assess overall risk level"""
    sl_rate = stop_loss_rate(result)

    if result.win_rate >= 70 and result.profit_factor >= 2.0 and sl_rate <= 25:
        return "LOW"
    elif result.win_rate >= 60 and result.profit_factor >= 1.5 and sl_rate <= 35:
        return "MEDIUM"
    else:
        return "HIGH"


def _format_duration(ms: float) -> str:
    minutes = ms / 60000
    if minutes < 120:
        return f"{minutes:.0f}m"
    return f"{minutes / 60:.1f}h"


def build_report_table(result: BacktestResult) -> Table:
    """Summary statistics of a backtest as a rich table"""
    table = Table(title=f"Backtest {result.symbol} {result.timeframe} - {result.strategy_name}", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white", justify="right")

    pnl_style = "green" if result.net_profit > 0 else "red"
    profit_factor = "inf" if result.profit_factor == float('inf') else f"{result.profit_factor:.2f}"

    table.add_row("Bars processed", f"{result.processed_bars}/{result.total_bars}")
    if result.stopped_early:
        table.add_row("Stopped early", "[bold red]max drawdown reached[/]")
    table.add_row("Initial balance", f"{result.initial_balance:.2f}")
    table.add_row("Final balance", f"{result.final_balance:.2f}")
    table.add_row("Net profit", f"[{pnl_style}]{result.net_profit:.2f}[/]")
    table.add_row("Trades", str(result.total_trades))
    table.add_row("Win rate", f"{result.win_rate:.1f}%")
    table.add_row("Profit factor", profit_factor)
    table.add_row("Max drawdown", f"{result.max_drawdown:.2f} ({result.max_drawdown_percent:.2f}%)")
    table.add_row("Avg drawdown", f"{result.avg_drawdown:.2f}")
    table.add_row("Avg holding time", _format_duration(result.avg_holding_time))
    table.add_row("Median holding time", _format_duration(result.median_holding_time))
    table.add_row("Best trade", f"{result.max_profit_per_trade:.2f}")
    table.add_row("Worst trade", f"{result.max_loss_per_trade:.2f}")
    table.add_row("Risk level", assess_risk_level(result))
    table.add_row("Recommendation", generate_recommendation(result))
    return table


def print_report(result: BacktestResult, console: Optional[Console] = None) -> None:
    console = console or Console()
    console.print(build_report_table(result))


def save_results(result: BacktestResult, results_dir: str) -> Dict[str, Path]:
    """
    Save the summary as JSON and the trades and equity curve as CSV

    Returns:
        Paths of the written files keyed by 'summary', 'trades' and 'equity'
    """
    out_dir = Path(results_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")
    prefix = f"{result.symbol}_{stamp}"

    summary = result.summary()
    summary['risk_level'] = assess_risk_level(result)
    summary['recommendation'] = generate_recommendation(result)
    summary['sl_rate'] = stop_loss_rate(result)
    if summary['profit_factor'] == float('inf'):
        summary['profit_factor'] = None

    paths = {
        'summary': out_dir / f"{prefix}_summary.json",
        'trades': out_dir / f"{prefix}_trades.csv",
        'equity': out_dir / f"{prefix}_equity.csv",
    }

    with open(paths['summary'], 'w') as f:
        json.dump({
            'report': summary,
            'params': result.params,
            'generated_at': datetime.now(timezone.utc).isoformat(),
        }, f, indent=2)

    result.trades_frame().to_csv(paths['trades'], index=False)
    result.equity_frame().to_csv(paths['equity'], index=False)

    logger.info(f"Results saved to {out_dir}")
    return paths
