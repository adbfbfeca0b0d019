"""
Parameter Optimizer
===================

Genetic search over a discrete parameter grid, with the backtest executor as
its fitness function.

ALGORITHM
---------
    population = clamp(3 * n_params, 6, 30) individuals, genes drawn
                 uniformly from each parameter's candidate list
    repeat for up to 40 generations:
        evaluate    fitness = sharpe (+0.5 when win_rate >= 0.8)
        track       best individual seen across the whole search
        early stop  when an individual has sharpe > 2 and win_rate > 0.8
        select      top 20% survive unchanged (elitism, at least one)
        breed       tournament of two per parent, uniform crossover,
                    15% per-gene mutation resampling the candidate list

REPRODUCIBILITY
---------------
All random draws come from one seeded numpy Generator and are made when an
individual is created, never during evaluation. Evaluating a generation on a
thread pool therefore gives the same result as evaluating it in order.
Backtests are deterministic, so fitness is cached per parameter vector.

FAILURES
--------
A backtest that raises, or returns non-finite metrics, scores -inf and is
logged at WARNING; the search continues.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .backtest_engine import BacktestEngine
from .config import OPTIMIZER, OptimizerSettings
from .strategy import Candle, InvalidParameterError, StrategyConfig

logger = logging.getLogger(__name__)

# (fitness, sharpe, win_rate)
Score = Tuple[float, float, float]

FAILED_SCORE: Score = (float("-inf"), 0.0, 0.0)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class OptimizationIndividual:
    """One candidate parameter vector, ordered like the search keys."""
    values: Tuple[Any, ...]
    fitness: float = float("-inf")
    sharpe: float = 0.0
    win_rate: float = 0.0
    evaluated: bool = False

    def copy(self) -> "OptimizationIndividual":
        return OptimizationIndividual(
            values=self.values,
            fitness=self.fitness,
            sharpe=self.sharpe,
            win_rate=self.win_rate,
            evaluated=self.evaluated,
        )


@dataclass
class OptimizationResult:
    """Outcome of one genetic search."""
    best_config: StrategyConfig
    best_values: Dict[str, Any] = field(default_factory=dict)
    best_fitness: float = float("-inf")
    best_sharpe: float = 0.0
    best_win_rate: float = 0.0
    generations_run: int = 0
    evaluations: int = 0
    early_stopped: bool = False
    history: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bestConfig": self.best_config.to_dict(),
            "bestValues": dict(self.best_values),
            "bestFitness": self.best_fitness,
            "bestSharpe": self.best_sharpe,
            "bestWinRate": self.best_win_rate,
            "generationsRun": self.generations_run,
            "evaluations": self.evaluations,
            "earlyStopped": self.early_stopped,
            "history": list(self.history),
        }


# =============================================================================
# GENETIC OPTIMIZER
# =============================================================================

class GeneticOptimizer:
    """
    Seeded genetic search over strategy and risk parameters.

    Usage:
        optimizer = GeneticOptimizer(seed=42)
        result = optimizer.run(sma_cross(), DEFAULT_PARAM_RANGES, candles)
        result.best_config
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        settings: OptimizerSettings = OPTIMIZER,
        max_workers: Optional[int] = None,
        engine: Optional[BacktestEngine] = None,
    ):
        """
        Initialize optimizer.

        Args:
            seed: Seed for the Generator (settings.default_seed if None)
            settings: Search tunables
            max_workers: Evaluate each generation on a thread pool of this
                size; None or 1 evaluates sequentially
            engine: Backtest engine used as the fitness function
        """
        self.seed = settings.default_seed if seed is None else seed
        self.settings = settings
        self.max_workers = max_workers
        self.engine = engine or BacktestEngine()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run(
        self,
        base_config: StrategyConfig,
        param_ranges: Mapping[str, Sequence[Any]],
        candles: Sequence[Candle],
    ) -> OptimizationResult:
        """
        Search ``param_ranges`` for the fittest configuration.

        Args:
            base_config: Configuration the evaluated values are merged into
            param_ranges: Parameter name -> candidate values (params or risk
                fields, camelCase or snake_case)
            candles: Candle series every individual is backtested on

        Returns:
            OptimizationResult holding the best individual of the search

        Raises:
            InvalidParameterError: unknown parameter name or empty candidate list
        """
        keys, candidates = self._validate(base_config, param_ranges)
        settings = self.settings
        rng = np.random.default_rng(self.seed)
        cache: Dict[Tuple[Any, ...], Score] = {}

        if not keys:
            fitness, sharpe, win_rate = self._score(base_config, candles)
            return OptimizationResult(
                best_config=base_config,
                best_fitness=fitness,
                best_sharpe=sharpe,
                best_win_rate=win_rate,
                evaluations=1,
            )

        size = int(np.clip(
            settings.population_per_param * len(keys),
            settings.min_population,
            settings.max_population,
        ))
        n_elites = max(1, int(size * settings.elite_fraction))

        population = [self._random_individual(candidates, rng) for _ in range(size)]
        best: Optional[OptimizationIndividual] = None
        history: List[float] = []
        early_stopped = False
        generation = 0

        for generation in range(1, settings.max_generations + 1):
            self._evaluate(population, keys, base_config, candles, cache)

            for individual in population:
                if best is None or individual.fitness > best.fitness:
                    best = individual.copy()
            history.append(best.fitness)

            logger.debug(
                f"Generation {generation}: best fitness {best.fitness:.4f} "
                f"(sharpe {best.sharpe:.3f}, win rate {best.win_rate:.1%})"
            )

            if any(
                ind.sharpe > settings.early_stop_sharpe
                and ind.win_rate > settings.early_stop_win_rate
                for ind in population
            ):
                early_stopped = True
                break

            if generation == settings.max_generations:
                break

            population = self._next_generation(population, candidates, n_elites, rng)

        best_values = dict(zip(keys, best.values))
        if math.isfinite(best.fitness):
            best_config = base_config.with_values(best_values)
        else:
            logger.warning("Every evaluation failed; returning the base configuration")
            best_config = base_config

        logger.info(
            f"Optimization finished after {generation} generations "
            f"({len(cache)} backtests): fitness {best.fitness:.4f}"
            + (" [early stop]" if early_stopped else "")
        )

        return OptimizationResult(
            best_config=best_config,
            best_values=best_values,
            best_fitness=best.fitness,
            best_sharpe=best.sharpe,
            best_win_rate=best.win_rate,
            generations_run=generation,
            evaluations=len(cache),
            early_stopped=early_stopped,
            history=history,
        )

    def fitness(self, sharpe: float, win_rate: float) -> float:
        """Sharpe ratio plus the bonus for a high win rate."""
        bonus = self.settings.win_rate_bonus if win_rate >= self.settings.win_rate_bonus_threshold else 0.0
        return sharpe + bonus

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate(
        base_config: StrategyConfig,
        param_ranges: Mapping[str, Sequence[Any]],
    ) -> Tuple[List[str], List[List[Any]]]:
        keys: List[str] = []
        candidates: List[List[Any]] = []
        for key, values in param_ranges.items():
            if not base_config.accepts(key):
                raise InvalidParameterError(
                    f"Unknown parameter for {base_config.kind.value}: {key}"
                )
            values = list(values)
            if not values:
                raise InvalidParameterError(f"Empty candidate list for {key}")
            keys.append(key)
            candidates.append(values)
        return keys, candidates

    @staticmethod
    def _random_individual(
        candidates: List[List[Any]],
        rng: np.random.Generator,
    ) -> OptimizationIndividual:
        return OptimizationIndividual(
            values=tuple(options[int(rng.integers(len(options)))] for options in candidates)
        )

    def _next_generation(
        self,
        population: List[OptimizationIndividual],
        candidates: List[List[Any]],
        n_elites: int,
        rng: np.random.Generator,
    ) -> List[OptimizationIndividual]:
        ranked = sorted(population, key=lambda ind: ind.fitness, reverse=True)
        next_population = [ind.copy() for ind in ranked[:n_elites]]

        while len(next_population) < len(population):
            parent_a = self._tournament(population, rng)
            parent_b = self._tournament(population, rng)
            genes = []
            for i, options in enumerate(candidates):
                if rng.random() < self.settings.crossover_rate:
                    gene = parent_a.values[i]
                else:
                    gene = parent_b.values[i]
                if rng.random() < self.settings.mutation_rate:
                    gene = options[int(rng.integers(len(options)))]
                genes.append(gene)
            next_population.append(OptimizationIndividual(values=tuple(genes)))

        return next_population

    @staticmethod
    def _tournament(
        population: List[OptimizationIndividual],
        rng: np.random.Generator,
    ) -> OptimizationIndividual:
        a = population[int(rng.integers(len(population)))]
        b = population[int(rng.integers(len(population)))]
        return a if a.fitness >= b.fitness else b

    def _evaluate(
        self,
        population: List[OptimizationIndividual],
        keys: List[str],
        base_config: StrategyConfig,
        candles: Sequence[Candle],
        cache: Dict[Tuple[Any, ...], Score],
    ) -> None:
        pending: List[Tuple[Any, ...]] = []
        for individual in population:
            if individual.values not in cache and individual.values not in pending:
                pending.append(individual.values)

        def score(values: Tuple[Any, ...]) -> Score:
            try:
                config = base_config.with_values(dict(zip(keys, values)))
            except InvalidParameterError as e:
                logger.warning(f"Invalid candidate {dict(zip(keys, values))}: {e}")
                return FAILED_SCORE
            return self._score(config, candles)

        if self.max_workers and self.max_workers > 1 and len(pending) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                scores = list(executor.map(score, pending))
        else:
            scores = [score(values) for values in pending]

        cache.update(zip(pending, scores))

        for individual in population:
            individual.fitness, individual.sharpe, individual.win_rate = cache[individual.values]
            individual.evaluated = True

    def _score(self, config: StrategyConfig, candles: Sequence[Candle]) -> Score:
        try:
            result = self.engine.run(config, candles)
        except Exception as e:
            logger.warning(f"Backtest failed for {config.to_dict()}: {e}")
            return FAILED_SCORE

        sharpe = result.metrics.sharpe_ratio
        win_rate = result.metrics.win_rate
        if not (math.isfinite(sharpe) and math.isfinite(win_rate)):
            logger.warning(f"Non-finite metrics for {config.to_dict()}; scored -inf")
            return FAILED_SCORE

        return self.fitness(sharpe, win_rate), sharpe, win_rate


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def optimize_params(
    base_config: StrategyConfig,
    param_ranges: Mapping[str, Sequence[Any]],
    candles: Sequence[Candle],
    seed: int = OPTIMIZER.default_seed,
) -> StrategyConfig:
    """
    Convenience function returning only the best configuration.

    Example:
        >>> best = optimize_params(sma_cross(), {"short_period": [5, 10]}, candles)
        >>> best.params.short_period
    """
    return GeneticOptimizer(seed=seed).run(base_config, param_ranges, candles).best_config
