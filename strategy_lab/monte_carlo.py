"""
Monte Carlo Resampler

Bootstraps the realized trade sequence of a backtest to estimate the
distribution of outcomes and its tail risk.

METHOD
    For each iteration:
        1. Start from INITIAL_EQUITY
        2. Draw len(trades) trade returns with replacement, uniformly
        3. Compound equity *= (1 + pnl%) for each draw, floored at zero
        4. Record final PnL and the path's own max drawdown

    Reported:
        mean_pnl, std_dev (population), worst_drawdown (max over paths),
        var_95 (5th percentile of the sorted PnL distribution),
        confidence_interval = mean ± 1.96 σ,
        percentile_interval = 2.5th / 97.5th percentile,
        prob_profit = share of paths ending above the starting equity

ASSUMPTION
    Trade returns are treated as exchangeable (i.i.d. resampling). This is a
    simplification, not a claim that real trades are independent. Draws are
    values, not trade identities; the result keeps no reference to the
    original ledger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .backtest_engine import BacktestResult
from .config import (
    CONFIDENCE_Z,
    INITIAL_EQUITY,
    MC_DEFAULT_ITERATIONS,
    MC_LOWER_PERCENTILE,
    MC_UPPER_PERCENTILE,
    MC_VAR_PERCENTILE,
)

logger = logging.getLogger(__name__)

# Maps the ledger size to the trade indices drawn for one path
IndexSampler = Callable[[int], Sequence[int]]


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class MonteCarloResult:
    """Monte Carlo simulation results."""
    iterations: int = 0
    mean_pnl: float = 0.0
    std_dev: float = 0.0
    pnl_distribution: List[float] = field(default_factory=list)
    worst_drawdown: float = 0.0
    var_95: float = 0.0
    confidence_interval: Tuple[float, float] = (0.0, 0.0)
    percentile_interval: Tuple[float, float] = (0.0, 0.0)
    prob_profit: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iterations": self.iterations,
            "meanPnl": self.mean_pnl,
            "stdDev": self.std_dev,
            "pnlDistribution": list(self.pnl_distribution),
            "worstDrawdown": self.worst_drawdown,
            "var95": self.var_95,
            "confidenceInterval": {
                "lower": self.confidence_interval[0],
                "upper": self.confidence_interval[1],
            },
            "percentileInterval": {
                "lower": self.percentile_interval[0],
                "upper": self.percentile_interval[1],
            },
            "probProfit": self.prob_profit,
        }


# =============================================================================
# SIMULATOR
# =============================================================================

class MonteCarloSimulator:
    """
    Monte Carlo simulation for strategy robustness testing.

    Uses a plain i.i.d. bootstrap over per-trade returns. A seed makes runs
    reproducible; an ``index_sampler`` replaces the random draw entirely,
    which is how fixed orderings are replayed in tests.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        initial_equity: float = INITIAL_EQUITY,
        index_sampler: Optional[IndexSampler] = None,
    ):
        """
        Initialize Monte Carlo simulator.

        Args:
            seed: Seed for numpy's Generator (None = fresh entropy)
            initial_equity: Starting equity of every path
            index_sampler: Optional replacement for the random index draw
        """
        self.rng = np.random.default_rng(seed)
        self.initial_equity = initial_equity
        self.index_sampler = index_sampler

    def simulate(
        self,
        result: BacktestResult,
        iterations: int = MC_DEFAULT_ITERATIONS,
    ) -> MonteCarloResult:
        """
        Run Monte Carlo simulation over the ledger of ``result``.

        Args:
            result: Completed backtest
            iterations: Number of bootstrap paths

        Returns:
            MonteCarloResult with exactly ``iterations`` distribution values,
            or a zeroed result for an empty ledger
        """
        returns = np.array([t.pnl_percent for t in result.trades], dtype=float)
        n = len(returns)

        if n == 0 or iterations <= 0:
            return self._empty_result()

        logger.debug(f"Monte Carlo: {iterations} paths over {n} trades")

        final_pnls = np.empty(iterations, dtype=float)
        worst_drawdown = 0.0

        for k in range(iterations):
            idx = self._draw(n)
            # A loss beyond -100% wipes the path out; equity stays at zero after
            growth = np.maximum(1.0 + returns[idx], 0.0)
            equity = self.initial_equity * np.cumprod(growth)

            # Peak includes the starting equity
            running_max = np.maximum.accumulate(np.concatenate(([self.initial_equity], equity)))[1:]
            with np.errstate(divide="ignore", invalid="ignore"):
                drawdown = np.where(running_max > 0, (running_max - equity) / running_max, 0.0)
            max_dd = float(drawdown.max()) if len(drawdown) else 0.0
            if max_dd > worst_drawdown:
                worst_drawdown = max_dd

            final_pnls[k] = equity[-1] - self.initial_equity

        mean_pnl = float(np.mean(final_pnls))
        std_dev = float(np.std(final_pnls))
        distribution = np.sort(final_pnls)

        return MonteCarloResult(
            iterations=iterations,
            mean_pnl=mean_pnl,
            std_dev=std_dev,
            pnl_distribution=distribution.tolist(),
            worst_drawdown=worst_drawdown,
            var_95=float(distribution[int(iterations * MC_VAR_PERCENTILE)]),
            confidence_interval=(
                mean_pnl - CONFIDENCE_Z * std_dev,
                mean_pnl + CONFIDENCE_Z * std_dev,
            ),
            percentile_interval=(
                float(distribution[int(iterations * MC_LOWER_PERCENTILE)]),
                float(distribution[min(int(iterations * MC_UPPER_PERCENTILE), iterations - 1)]),
            ),
            prob_profit=float(np.mean(final_pnls > 0)),
        )

    def _draw(self, n: int) -> np.ndarray:
        """Trade indices for one path (with replacement)."""
        if self.index_sampler is not None:
            idx = np.asarray(self.index_sampler(n), dtype=int)
            if len(idx) != n or idx.min() < 0 or idx.max() >= n:
                raise ValueError(f"index_sampler must return {n} indices in [0, {n})")
            return idx
        return self.rng.integers(0, n, size=n)

    def _empty_result(self) -> MonteCarloResult:
        """Return empty result when simulation cannot run."""
        return MonteCarloResult()


# =============================================================================
# OUTPUT FORMATTING
# =============================================================================

def format_monte_carlo_report(mc: MonteCarloResult) -> str:
    lines = [
        "-" * 70,
        "MONTE CARLO ANALYSIS",
        "-" * 70,
        f"Iterations:          {mc.iterations:,}",
        f"PnL (mean):          {mc.mean_pnl:+,.2f}",
        f"PnL (std):           {mc.std_dev:,.2f}",
        f"PnL 95% CI:          [{mc.confidence_interval[0]:+,.2f}, {mc.confidence_interval[1]:+,.2f}]",
        f"PnL 2.5-97.5 pct:    [{mc.percentile_interval[0]:+,.2f}, {mc.percentile_interval[1]:+,.2f}]",
        f"VaR (95%):           {mc.var_95:+,.2f}",
        f"Worst Drawdown:      {mc.worst_drawdown:.2%}",
        f"P(PnL > 0):          {mc.prob_profit:.1%}",
    ]
    return "\n".join(lines)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def run_monte_carlo(
    result: BacktestResult,
    iterations: int = MC_DEFAULT_ITERATIONS,
    seed: Optional[int] = None,
    index_sampler: Optional[IndexSampler] = None,
) -> MonteCarloResult:
    """
    Convenience function for resampling one backtest's ledger.

    Example:
        >>> mc = run_monte_carlo(result, iterations=1000, seed=7)
        >>> print(f"VaR 95: {mc.var_95:,.2f}")
    """
    simulator = MonteCarloSimulator(seed=seed, index_sampler=index_sampler)
    return simulator.simulate(result, iterations)
