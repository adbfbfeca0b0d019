"""
Metrics Calculator

Reduces a completed trade ledger and the executor's equity tracking into
summary statistics.

HEADLINE METRICS
    Net Profit     = final equity - initial equity
    Win Rate       = winning trades / total trades            (0 if no trades)
    Profit Factor  = gross profit / gross loss
                     +inf when gross loss is 0 and gross profit > 0
                     0    when both are 0
    Sharpe Ratio   = mean(pnl%) / std(pnl%) * sqrt(252)
                     population std over per-trade returns; 0 when the std
                     is 0 or there are no trades
    Max Drawdown   = carried over from the executor's running computation

TRADE STATISTICS
    Average/largest win and loss, expectancy, and the shape (skewness,
    excess kurtosis) of the per-trade return distribution.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

import numpy as np
from scipy import stats

from .config import INITIAL_EQUITY, TRADING_DAYS_YEAR
from .risk_manager import ExitReason, Trade


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class BacktestMetrics:
    """Headline performance metrics of one backtest run."""
    net_profit: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "netProfit": self.net_profit,
            "winRate": self.win_rate,
            "totalTrades": self.total_trades,
            "profitFactor": self.profit_factor,
            "maxDrawdown": self.max_drawdown,
            "sharpeRatio": self.sharpe_ratio,
        }


@dataclass(frozen=True)
class TradeStatistics:
    """Ledger statistics beyond the headline metrics."""
    winning_trades: int = 0
    losing_trades: int = 0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    avg_return: float = 0.0
    expectancy: float = 0.0
    return_skewness: float = 0.0
    return_kurtosis: float = 0.0
    stop_exits: int = 0


# =============================================================================
# CALCULATORS
# =============================================================================

def sharpe_ratio(returns: Sequence[float], periods: int = TRADING_DAYS_YEAR) -> float:
    """Annualized mean/std ratio using the population standard deviation."""
    if len(returns) == 0:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    std = float(np.std(arr))
    if std == 0 or not math.isfinite(std):
        return 0.0
    return float(np.mean(arr) / std * math.sqrt(periods))


class MetricsCalculator:
    """Headline metrics from a ledger and the executor's equity tracking."""

    @staticmethod
    def calculate(
        trades: Sequence[Trade],
        final_equity: float,
        max_drawdown: float,
        initial_equity: float = INITIAL_EQUITY,
    ) -> BacktestMetrics:
        """
        Calculate headline metrics.

        Args:
            trades: Closed trades in ledger order
            final_equity: Equity after the last bar
            max_drawdown: Running max drawdown from the executor, in [0, 1]
            initial_equity: Starting equity

        Returns:
            BacktestMetrics
        """
        total = len(trades)
        net_profit = final_equity - initial_equity

        if total == 0:
            return BacktestMetrics(
                net_profit=net_profit,
                max_drawdown=max_drawdown,
            )

        wins = [t.pnl for t in trades if t.pnl > 0]
        losses = [t.pnl for t in trades if t.pnl <= 0]

        gross_profit = sum(wins)
        gross_loss = abs(sum(losses))
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        elif gross_profit > 0:
            profit_factor = float("inf")
        else:
            profit_factor = 0.0

        return BacktestMetrics(
            net_profit=net_profit,
            win_rate=len(wins) / total,
            total_trades=total,
            profit_factor=profit_factor,
            max_drawdown=max_drawdown,
            sharpe_ratio=sharpe_ratio([t.pnl_percent for t in trades]),
        )


class TradeAnalyzer:
    """
    Analyze trade statistics.

    Expectancy Formula:
        E = (Win Rate × Avg Win) - (Loss Rate × Avg Loss)
    """

    @staticmethod
    def analyze(trades: List[Trade]) -> TradeStatistics:
        if not trades:
            return TradeStatistics()

        winners = [t for t in trades if t.pnl > 0]
        losers = [t for t in trades if t.pnl <= 0]
        total = len(trades)

        winning_pnls = [t.pnl for t in winners]
        losing_pnls = [t.pnl for t in losers]

        avg_win = float(np.mean(winning_pnls)) if winners else 0.0
        avg_loss = abs(float(np.mean(losing_pnls))) if losers else 0.0
        hit_rate = len(winners) / total

        returns = np.array([t.pnl_percent for t in trades], dtype=float)
        # Moments are undefined for fewer than three trades or zero variance
        if len(returns) >= 3 and np.std(returns) > 0:
            skewness = float(stats.skew(returns))
            kurtosis = float(stats.kurtosis(returns))
        else:
            skewness = 0.0
            kurtosis = 0.0

        return TradeStatistics(
            winning_trades=len(winners),
            losing_trades=len(losers),
            gross_profit=float(sum(winning_pnls)),
            gross_loss=abs(float(sum(losing_pnls))),
            avg_win=avg_win,
            avg_loss=avg_loss,
            largest_win=max(winning_pnls) if winners else 0.0,
            largest_loss=abs(min(losing_pnls)) if losers else 0.0,
            avg_return=float(returns.mean()),
            expectancy=(hit_rate * avg_win) - ((1 - hit_rate) * avg_loss),
            return_skewness=skewness,
            return_kurtosis=kurtosis,
            stop_exits=sum(1 for t in trades if t.exit_reason is ExitReason.STOP),
        )
