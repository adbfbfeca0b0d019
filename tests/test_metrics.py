"""
Metrics Calculator Tests
========================
Headline metric edge values and ledger statistics.
"""
import math

import pytest

from strategy_lab.metrics import MetricsCalculator, TradeAnalyzer, sharpe_ratio
from strategy_lab.risk_manager import ExitReason, PositionSide, Trade


def trade(pnl, pnl_percent=None, reason=ExitReason.SIGNAL):
    return Trade(
        entry_time=0,
        exit_time=1,
        entry_price=100.0,
        exit_price=100.0 + pnl,
        pnl=pnl,
        pnl_percent=pnl / 100.0 if pnl_percent is None else pnl_percent,
        side=PositionSide.LONG,
        exit_reason=reason,
    )


class TestSharpe:

    def test_population_std(self):
        expected = 0.025 / 0.075 * math.sqrt(252)
        assert sharpe_ratio([0.1, -0.05]) == pytest.approx(expected)

    def test_zero_variance_is_zero(self):
        assert sharpe_ratio([0.25, 0.25, 0.25]) == 0.0

    def test_no_returns_is_zero(self):
        assert sharpe_ratio([]) == 0.0


class TestHeadlineMetrics:

    def test_no_trades(self):
        metrics = MetricsCalculator.calculate([], final_equity=10_000, max_drawdown=0.0)
        assert metrics.total_trades == 0
        assert metrics.win_rate == 0.0
        assert metrics.profit_factor == 0.0
        assert metrics.sharpe_ratio == 0.0
        assert metrics.net_profit == 0.0

    def test_profit_factor_infinite_without_losses(self):
        metrics = MetricsCalculator.calculate([trade(5), trade(3)], 10_800, 0.0)
        assert metrics.profit_factor == math.inf
        assert metrics.win_rate == 1.0

    def test_profit_factor_ratio(self):
        metrics = MetricsCalculator.calculate([trade(6), trade(-2), trade(-1)], 10_300, 0.05)
        assert metrics.profit_factor == pytest.approx(2.0)
        assert metrics.win_rate == pytest.approx(1 / 3)
        assert metrics.total_trades == 3
        assert metrics.max_drawdown == 0.05
        assert metrics.net_profit == pytest.approx(300.0)

    def test_zero_pnl_counts_as_loss(self):
        metrics = MetricsCalculator.calculate([trade(4), trade(0.0)], 10_400, 0.0)
        assert metrics.win_rate == 0.5

    def test_export_keys(self):
        exported = MetricsCalculator.calculate([trade(1)], 10_100, 0.0).to_dict()
        assert set(exported) == {
            "netProfit", "winRate", "totalTrades", "profitFactor", "maxDrawdown", "sharpeRatio",
        }


class TestTradeAnalyzer:

    def test_empty(self):
        stats = TradeAnalyzer.analyze([])
        assert stats.winning_trades == 0
        assert stats.expectancy == 0.0

    def test_win_loss_breakdown(self):
        trades = [trade(6), trade(2), trade(-4, reason=ExitReason.STOP)]
        stats = TradeAnalyzer.analyze(trades)

        assert stats.winning_trades == 2
        assert stats.losing_trades == 1
        assert stats.gross_profit == pytest.approx(8.0)
        assert stats.gross_loss == pytest.approx(4.0)
        assert stats.avg_win == pytest.approx(4.0)
        assert stats.avg_loss == pytest.approx(4.0)
        assert stats.largest_win == pytest.approx(6.0)
        assert stats.largest_loss == pytest.approx(4.0)
        assert stats.expectancy == pytest.approx(2 / 3 * 4.0 - 1 / 3 * 4.0)
        assert stats.stop_exits == 1

    def test_moments_need_three_trades(self):
        stats = TradeAnalyzer.analyze([trade(5), trade(-1)])
        assert stats.return_skewness == 0.0
        assert stats.return_kurtosis == 0.0

    def test_right_skewed_returns(self):
        stats = TradeAnalyzer.analyze([trade(1), trade(1), trade(1), trade(20)])
        assert stats.return_skewness > 0
