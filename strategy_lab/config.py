"""
Configuration Module for the Strategy Evaluation Core

This module centralizes the constants, tunables and default presets used by
the backtest executor, the Monte Carlo resampler and the parameter optimizer.

All "magic numbers" are defined here to ensure:
1. Single source of truth for all constants
2. Easy modification without touching simulation code
3. Transparency in assumptions (e.g. 252 periods per year)
"""

from dataclasses import dataclass
from typing import Dict


# =============================================================================
# SIMULATION CONSTANTS
# =============================================================================

# Starting equity for every backtest and every Monte Carlo path
INITIAL_EQUITY: float = 10_000.0

# Annualization constant for the per-trade Sharpe ratio (fixed assumption)
TRADING_DAYS_YEAR: int = 252

# Trades whose net return magnitude is below this are discarded
MIN_PNL_PERCENT: float = 1e-4

# Library version
VERSION: str = "1.0.0"


# =============================================================================
# MONTE CARLO DEFAULTS
# =============================================================================

MC_DEFAULT_ITERATIONS: int = 1000
MC_VAR_PERCENTILE: float = 0.05       # 5th percentile of sorted PnL
MC_LOWER_PERCENTILE: float = 0.025
MC_UPPER_PERCENTILE: float = 0.975
CONFIDENCE_Z: float = 1.96            # mean ± 1.96 σ


# =============================================================================
# OPTIMIZER SETTINGS
# =============================================================================

@dataclass(frozen=True)
class OptimizerSettings:
    """Tunables for the genetic parameter search."""

    # Population size = clamp(population_per_param * n_params, min, max)
    population_per_param: int = 3
    min_population: int = 6
    max_population: int = 30

    max_generations: int = 40
    elite_fraction: float = 0.2       # top 20% survive unchanged
    mutation_rate: float = 0.15       # per-parameter resample probability
    crossover_rate: float = 0.5       # per-parameter inheritance from parent A

    # Fitness = sharpe (+ bonus when win rate clears the threshold).
    # The bonus weight is a tunable inherited from the original dashboard.
    win_rate_bonus: float = 0.5
    win_rate_bonus_threshold: float = 0.8

    # Early stop once an individual clears both thresholds
    early_stop_sharpe: float = 2.0
    early_stop_win_rate: float = 0.8

    default_seed: int = 42


# =============================================================================
# DEFAULT PRESETS
# =============================================================================

# Strategy parameters shipped with the dashboard
DEFAULT_SMA_CROSS_PARAMS: Dict[str, float] = {
    "short_period": 10,
    "long_period": 20,
}

DEFAULT_RSI_FILTER_PARAMS: Dict[str, float] = {
    "rsi_period": 14,
    "rsi_upper": 70.0,
    "rsi_lower": 30.0,
    "sma_period": 50,
}

DEFAULT_RISK: Dict[str, float] = {
    "position_size_percent": 100.0,
    "stop_loss_percent": 2.0,
    "slippage_percent": 0.05,
    "fee_percent": 0.1,
    "trailing_stop_percent": 0.0,
}

# Parameter grid used by the dashboard's "Optimize" action
DEFAULT_PARAM_RANGES: Dict[str, list] = {
    "short_period": [5, 10, 15],
    "long_period": [20, 30, 40],
    "stop_loss_percent": [1, 2, 3],
    "trailing_stop_percent": [1, 2, 3],
}


# =============================================================================
# GLOBAL CONFIGURATION INSTANCES
# =============================================================================

OPTIMIZER = OptimizerSettings()
