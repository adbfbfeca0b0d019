"""
Backtest Executor
=================

Walks a candle series bar by bar, wiring signal engine output into the
position & risk manager, and accumulates the trade ledger and equity curve.

EXECUTION TIMING
----------------
Indicators are computed once for the whole series. Candle 0 only seeds the
first equity point. For every later bar ``i`` the signal is read from the
last completed bar (``i - 1``) and acted on at bar ``i``'s open, so the
simulation never trades on a close it has not seen yet:

    for i in 1 .. n-1:
        signal = generate_signal(config, indicators, i - 1)
        manager.on_bar(candles[i], signal)      # stop -> signal exit -> entry
        equity_curve.append(equity)
        peak / max drawdown update

INVARIANTS
----------
    - len(equity_curve) == len(candles) for any non-empty input
    - max_drawdown in [0, 1]
    - identical inputs produce identical results
    - a position still open after the last bar stays unrealized and is
      excluded from the ledger and from net profit

An empty candle list is not an error: it returns a zeroed result with
status INSUFFICIENT_DATA.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .config import INITIAL_EQUITY, VERSION
from .metrics import BacktestMetrics, MetricsCalculator, TradeAnalyzer, TradeStatistics
from .risk_manager import Position, PositionManager, Trade
from .signal_engine import compute_indicator_series, generate_signal
from .strategy import Candle, StrategyConfig
from .technical_indicators import IndicatorProvider

logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: ENUMERATIONS
# =============================================================================

class BacktestStatus(Enum):
    """Backtest execution status."""
    SUCCESS = "SUCCESS"
    NO_TRADES = "NO_TRADES"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


# =============================================================================
# SECTION 2: DATA STRUCTURES
# =============================================================================

def format_date(timestamp: int) -> str:
    """Calendar date (UTC) of an epoch-millisecond timestamp."""
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


@dataclass(frozen=True)
class EquityPoint:
    """Equity after one bar."""
    timestamp: int
    date: str
    equity: float

    @classmethod
    def at(cls, candle: Candle, equity: float) -> "EquityPoint":
        return cls(timestamp=candle.timestamp, date=format_date(candle.timestamp), equity=equity)


@dataclass
class BacktestResult:
    """
    Complete backtest result container.

    Produced once per executor run and treated as read-only afterwards.
    ``open_position`` is the unrealized position left at the end of the
    series, if any.
    """
    status: BacktestStatus
    trades: List[Trade] = field(default_factory=list)
    metrics: BacktestMetrics = field(default_factory=BacktestMetrics)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    indicator_series: Dict[str, List[Optional[float]]] = field(default_factory=dict)

    statistics: TradeStatistics = field(default_factory=TradeStatistics)
    open_position: Optional[Position] = None
    initial_equity: float = INITIAL_EQUITY
    final_equity: float = INITIAL_EQUITY
    discarded_trades: int = 0
    message: str = ""
    version: str = VERSION

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready export in the dashboard's camelCase shape."""
        return {
            "status": self.status.value,
            "trades": [t.to_dict() for t in self.trades],
            "metrics": self.metrics.to_dict(),
            "equityCurve": [
                {"timestamp": p.timestamp, "date": p.date, "value": p.equity}
                for p in self.equity_curve
            ],
            "indicatorSeries": {k: list(v) for k, v in self.indicator_series.items()},
            "message": self.message,
        }


# =============================================================================
# SECTION 3: BACKTEST ENGINE
# =============================================================================

class BacktestEngine:
    """
    Core bar-by-bar backtesting engine.

    Features:
        - Stop-loss and trailing-stop exits ahead of signal exits
        - Slippage and round-trip fee modelling
        - Compounding position sizing as a percentage of equity
        - Incremental peak/drawdown tracking
    """

    def __init__(
        self,
        initial_equity: float = INITIAL_EQUITY,
        indicator_provider: Optional[IndicatorProvider] = None,
    ):
        """
        Initialize backtest engine.

        Args:
            initial_equity: Starting equity (10,000 default)
            indicator_provider: Indicator provider (pandas default if None)
        """
        self.initial_equity = initial_equity
        self.indicator_provider = indicator_provider

    def run(self, config: StrategyConfig, candles: Sequence[Candle]) -> BacktestResult:
        """
        Run backtest of ``config`` over ``candles``.

        Args:
            config: Validated strategy configuration
            candles: Candles ordered by strictly increasing timestamp

        Returns:
            BacktestResult; never raises for short or empty input
        """
        if len(candles) == 0:
            return self._empty_result("No candles supplied")

        n = len(candles)
        if any(b.timestamp <= a.timestamp for a, b in zip(candles, candles[1:])):
            logger.warning("Candle timestamps are not strictly increasing")

        indicators = compute_indicator_series(config, candles, self.indicator_provider)
        manager = PositionManager(config.risk, config.allow_short, self.initial_equity)

        equity = self.initial_equity
        equity_curve = [EquityPoint.at(candles[0], equity)]
        peak_equity = equity
        max_drawdown = 0.0

        for i in range(1, n):
            candle = candles[i]
            signal = generate_signal(config, indicators, i - 1)
            manager.on_bar(candle, signal)

            equity = manager.equity
            equity_curve.append(EquityPoint.at(candle, equity))

            if equity > peak_equity:
                peak_equity = equity
            if peak_equity > 0:
                drawdown = (peak_equity - equity) / peak_equity
                if drawdown > max_drawdown:
                    max_drawdown = drawdown

        trades = list(manager.trades)
        metrics = MetricsCalculator.calculate(
            trades, equity, max_drawdown, self.initial_equity
        )

        if n <= config.warmup:
            status = BacktestStatus.INSUFFICIENT_DATA
            message = f"{n} candles do not cover the {config.warmup}-bar warm-up"
            logger.warning(f"Backtest degenerate: {message}")
        elif not trades:
            status = BacktestStatus.NO_TRADES
            message = "No trades closed"
        else:
            status = BacktestStatus.SUCCESS
            message = ""

        logger.debug(
            f"Backtest {config.kind.value}: {n} bars, {len(trades)} trades, "
            f"net {metrics.net_profit:+.2f}"
        )

        return BacktestResult(
            status=status,
            trades=trades,
            metrics=metrics,
            equity_curve=equity_curve,
            indicator_series=indicators.series,
            statistics=TradeAnalyzer.analyze(trades),
            open_position=manager.position,
            initial_equity=self.initial_equity,
            final_equity=equity,
            discarded_trades=manager.discarded_trades,
            message=message,
        )

    def _empty_result(self, message: str) -> BacktestResult:
        """Create the empty-input sentinel with zeroed metrics."""
        logger.warning(f"Backtest skipped: {message}")
        return BacktestResult(
            status=BacktestStatus.INSUFFICIENT_DATA,
            initial_equity=self.initial_equity,
            final_equity=self.initial_equity,
            message=message,
        )


# =============================================================================
# SECTION 4: OUTPUT FORMATTING
# =============================================================================

def format_backtest_report(result: BacktestResult, title: str = "Strategy") -> str:
    """
    Format backtest result as human-readable text report.

    Args:
        result: BacktestResult from the engine
        title: Heading shown in the report

    Returns:
        Formatted string report
    """
    m = result.metrics
    s = result.statistics
    lines = [
        "=" * 70,
        "BACKTEST PERFORMANCE REPORT",
        "=" * 70,
        f"Strategy: {title}",
        f"Status:   {result.status.value}" + (f" ({result.message})" if result.message else ""),
    ]

    if result.equity_curve:
        lines.append(
            f"Period:   {result.equity_curve[0].date} to {result.equity_curve[-1].date} "
            f"({len(result.equity_curve):,} bars)"
        )

    lines.extend([
        "",
        "-" * 70,
        "CAPITAL",
        "-" * 70,
        f"Initial Equity:  {result.initial_equity:,.2f}",
        f"Final Equity:    {result.final_equity:,.2f}",
        f"Net Profit:      {m.net_profit:+,.2f}",
        "",
        "-" * 70,
        "KEY METRICS",
        "-" * 70,
        f"  Total Trades:      {m.total_trades}",
        f"  Win Rate:          {m.win_rate:.1%}",
        f"  Profit Factor:     {m.profit_factor:.2f}",
        f"  Sharpe Ratio:      {m.sharpe_ratio:.3f}",
        f"  Maximum Drawdown:  {m.max_drawdown:.2%}",
        "",
        "-" * 70,
        "TRADE STATISTICS",
        "-" * 70,
        f"Winning Trades:      {s.winning_trades}",
        f"Losing Trades:       {s.losing_trades}",
        f"Stop Exits:          {s.stop_exits}",
        f"Avg Win:             {s.avg_win:,.4f}",
        f"Avg Loss:            {s.avg_loss:,.4f}",
        f"Largest Win:         {s.largest_win:,.4f}",
        f"Largest Loss:        {s.largest_loss:,.4f}",
        f"Expectancy:          {s.expectancy:,.4f}",
        f"Avg Return:          {s.avg_return:+.2%}",
        f"Return Skewness:     {s.return_skewness:+.3f}",
        f"Return Kurtosis:     {s.return_kurtosis:.3f}",
    ])

    if result.discarded_trades:
        lines.append(f"Discarded (degenerate): {result.discarded_trades}")

    if result.open_position is not None:
        pos = result.open_position
        lines.extend([
            "",
            f"Open position (unrealized): {pos.side.value} from {pos.entry_price:,.4f}",
        ])

    lines.extend([
        "",
        "=" * 70,
        f"Version: {result.version}",
        "=" * 70,
    ])

    return "\n".join(lines)


# =============================================================================
# SECTION 5: CONVENIENCE FUNCTIONS
# =============================================================================

def run_backtest(
    config: StrategyConfig,
    candles: Sequence[Candle],
    initial_equity: float = INITIAL_EQUITY,
) -> BacktestResult:
    """
    Convenience function for running a single backtest.

    Example:
        >>> result = run_backtest(sma_cross(10, 20), candles)
        >>> print(f"Sharpe: {result.metrics.sharpe_ratio:.3f}")
    """
    return BacktestEngine(initial_equity).run(config, candles)
