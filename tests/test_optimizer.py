"""
Parameter Optimizer Tests
=========================
Single-value grids, input validation, reproducibility (sequential and
pooled), failure scoring and early stopping.
"""
import math

import pytest

from strategy_lab.backtest_engine import BacktestResult, BacktestStatus, run_backtest
from strategy_lab.config import OptimizerSettings
from strategy_lab.metrics import BacktestMetrics
from strategy_lab.optimizer import GeneticOptimizer, optimize_params
from strategy_lab.strategy import InvalidParameterError, StrategyConfig, sma_cross


class ExplodingEngine:
    def run(self, config, candles):
        raise RuntimeError("boom")


class FixedEngine:
    """Returns the same metrics for every config and counts calls."""

    def __init__(self, sharpe, win_rate):
        self.metrics = BacktestMetrics(sharpe_ratio=sharpe, win_rate=win_rate, total_trades=5)
        self.calls = 0

    def run(self, config, candles):
        self.calls += 1
        return BacktestResult(status=BacktestStatus.SUCCESS, metrics=self.metrics)


class TestFitness:

    def test_bonus_at_threshold(self):
        optimizer = GeneticOptimizer()
        assert optimizer.fitness(1.0, 0.8) == pytest.approx(1.5)
        assert optimizer.fitness(1.0, 0.79) == pytest.approx(1.0)

    def test_bonus_is_tunable(self):
        optimizer = GeneticOptimizer(settings=OptimizerSettings(win_rate_bonus=0.0))
        assert optimizer.fitness(1.0, 0.95) == pytest.approx(1.0)


class TestSingleValueRanges:

    def test_matches_direct_backtest(self, random_candles):
        base = sma_cross(10, 20)
        ranges = {"short_period": [5], "longPeriod": [15], "stop_loss_percent": [3]}

        optimizer = GeneticOptimizer(seed=42)
        result = optimizer.run(base, ranges, random_candles)

        assert result.best_config.params.short_period == 5
        assert result.best_config.params.long_period == 15
        assert result.best_config.risk.stop_loss_percent == 3.0

        direct = run_backtest(base.with_values({"short_period": 5, "long_period": 15, "stop_loss_percent": 3}),
                              random_candles)
        assert result.best_fitness == optimizer.fitness(direct.metrics.sharpe_ratio, direct.metrics.win_rate)
        assert result.evaluations == 1

    def test_empty_ranges_return_base(self, random_candles):
        base = sma_cross(5, 20)
        result = GeneticOptimizer().run(base, {}, random_candles)
        assert result.best_config == base


class TestValidation:

    def test_unknown_key(self, random_candles):
        with pytest.raises(InvalidParameterError):
            GeneticOptimizer().run(sma_cross(), {"rsi_period": [7, 14]}, random_candles)

    def test_empty_candidate_list(self, random_candles):
        with pytest.raises(InvalidParameterError):
            GeneticOptimizer().run(sma_cross(), {"short_period": []}, random_candles)

    def test_invalid_candidate_scored_not_fatal(self, random_candles):
        result = GeneticOptimizer(seed=1).run(
            sma_cross(), {"short_period": [0, 5], "long_period": [20]}, random_candles
        )
        assert result.best_config.params.short_period == 5
        assert math.isfinite(result.best_fitness)


class TestSearch:

    @pytest.fixture
    def ranges(self):
        return {
            "short_period": [3, 5, 8, 10],
            "long_period": [15, 20, 30],
            "stop_loss_percent": [1, 2, 3],
            "trailing_stop_percent": [0, 1, 2],
        }

    def test_reproducible(self, random_candles, ranges):
        a = GeneticOptimizer(seed=7).run(sma_cross(), ranges, random_candles)
        b = GeneticOptimizer(seed=7).run(sma_cross(), ranges, random_candles)

        assert a.best_values == b.best_values
        assert a.best_fitness == b.best_fitness
        assert a.history == b.history

    def test_thread_pool_matches_sequential(self, random_candles, ranges):
        sequential = GeneticOptimizer(seed=3).run(sma_cross(), ranges, random_candles)
        pooled = GeneticOptimizer(seed=3, max_workers=4).run(sma_cross(), ranges, random_candles)

        assert pooled.best_values == sequential.best_values
        assert pooled.history == sequential.history
        assert pooled.evaluations == sequential.evaluations

    def test_best_is_tracked_across_generations(self, random_candles, ranges):
        result = GeneticOptimizer(seed=5).run(sma_cross(), ranges, random_candles)

        assert result.history == sorted(result.history)
        assert result.best_fitness == result.history[-1]
        assert result.generations_run == len(result.history)
        assert result.generations_run <= 40
        # every value comes from its candidate list
        for key, value in result.best_values.items():
            assert value in ranges[key]

    def test_optimize_params_returns_config(self, random_candles, ranges):
        best = optimize_params(sma_cross(), ranges, random_candles, seed=42)
        assert isinstance(best, StrategyConfig)
        assert best.params.short_period in ranges["short_period"]


class TestFailuresAndEarlyStop:

    def test_failing_backtests_score_minus_inf(self, random_candles):
        base = sma_cross()
        result = GeneticOptimizer(seed=1, engine=ExplodingEngine()).run(
            base, {"short_period": [5, 10]}, random_candles
        )
        assert result.best_fitness == -math.inf
        assert result.best_config == base

    def test_early_stop(self, random_candles):
        engine = FixedEngine(sharpe=3.0, win_rate=0.9)
        result = GeneticOptimizer(seed=1, engine=engine).run(
            sma_cross(), {"short_period": [5, 10], "long_period": [20, 30]}, random_candles
        )
        assert result.early_stopped
        assert result.generations_run == 1
        assert result.best_fitness == pytest.approx(3.5)

    def test_full_run_without_early_stop(self, random_candles):
        engine = FixedEngine(sharpe=1.0, win_rate=0.5)
        result = GeneticOptimizer(seed=1, engine=engine).run(
            sma_cross(), {"short_period": [5, 10], "long_period": [20, 30]}, random_candles
        )
        assert not result.early_stopped
        assert result.generations_run == 40
        # four distinct vectors at most, each backtested once
        assert engine.calls <= 4
