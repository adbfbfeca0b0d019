"""
Signal Engine

Maps a strategy configuration and its precomputed indicator series to a
directional signal for one bar. The engine is a pure function of its inputs:
it keeps no memory of previous signals, and what happens on a repeated signal
while a position is open is decided by the position manager.

SIGNAL RULES
    SMA Cross:
        BUY  when the short SMA moves from <= long SMA to > long SMA
        SELL when the short SMA moves from >= long SMA to < long SMA
        The first bar with both averages defined has no prior relation and
        counts as a cross in whichever direction the averages already point.

    RSI Filter:
        BUY  when close > filter SMA and RSI < rsi_lower
        SELL when close < filter SMA and RSI > rsi_upper

    Any undefined (warm-up) value yields NONE.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from .strategy import Candle, RsiFilterParams, SmaCrossParams, StrategyConfig, StrategyKind
from .technical_indicators import DEFAULT_PROVIDER, IndicatorProvider


# =============================================================================
# ENUMERATIONS
# =============================================================================

class Signal(Enum):
    """Directional signal for a single bar."""
    BUY = 1
    SELL = -1
    NONE = 0


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class IndicatorSeries:
    """
    Indicator values for a whole run, aligned to the candle index.

    ``series`` holds the named indicator vectors (``sma_short``/``sma_long``
    for SMA Cross, ``rsi``/``sma`` for RSI Filter); ``close`` is the close
    price vector used by rules that compare price with an indicator.
    """
    close: List[float]
    series: Dict[str, List[Optional[float]]] = field(default_factory=dict)
    warmup: int = 0

    def value(self, name: str, index: int) -> Optional[float]:
        """Indicator value at ``index``; None when undefined or out of range."""
        values = self.series.get(name)
        if values is None or index < 0 or index >= len(values):
            return None
        return values[index]

    def __len__(self) -> int:
        return len(self.close)


# =============================================================================
# INDICATOR COMPUTATION
# =============================================================================

def compute_indicator_series(
    config: StrategyConfig,
    candles: Sequence[Candle],
    provider: Optional[IndicatorProvider] = None,
) -> IndicatorSeries:
    """
    Compute every indicator the strategy needs, once, for the full series.

    Args:
        config: Strategy configuration
        candles: Ordered candles
        provider: Indicator provider (pandas implementation if None)

    Returns:
        IndicatorSeries aligned to ``candles``
    """
    provider = provider or DEFAULT_PROVIDER
    close = [c.close for c in candles]
    params = config.params

    if config.kind is StrategyKind.SMA_CROSS:
        series = {
            "sma_short": provider.sma_series(close, params.short_period),
            "sma_long": provider.sma_series(close, params.long_period),
        }
    else:
        series = {
            "rsi": provider.rsi_series(close, params.rsi_period),
            "sma": provider.sma_series(close, params.sma_period),
        }

    return IndicatorSeries(close=close, series=series, warmup=config.warmup)


# =============================================================================
# SIGNAL GENERATION
# =============================================================================

def _sma_cross_signal(indicators: IndicatorSeries, bar_index: int) -> Signal:
    short = indicators.value("sma_short", bar_index)
    long = indicators.value("sma_long", bar_index)
    if short is None or long is None:
        return Signal.NONE

    prev_short = indicators.value("sma_short", bar_index - 1)
    prev_long = indicators.value("sma_long", bar_index - 1)
    if prev_short is None or prev_long is None:
        # First bar with both averages defined
        if short > long:
            return Signal.BUY
        if short < long:
            return Signal.SELL
        return Signal.NONE

    if prev_short <= prev_long and short > long:
        return Signal.BUY
    if prev_short >= prev_long and short < long:
        return Signal.SELL
    return Signal.NONE


def _rsi_filter_signal(
    params: RsiFilterParams,
    indicators: IndicatorSeries,
    bar_index: int,
) -> Signal:
    rsi = indicators.value("rsi", bar_index)
    sma = indicators.value("sma", bar_index)
    if rsi is None or sma is None or not (0 <= bar_index < len(indicators)):
        return Signal.NONE

    close = indicators.close[bar_index]
    if close > sma and rsi < params.rsi_lower:
        return Signal.BUY
    if close < sma and rsi > params.rsi_upper:
        return Signal.SELL
    return Signal.NONE


def generate_signal(
    config: StrategyConfig,
    indicators: IndicatorSeries,
    bar_index: int,
) -> Signal:
    """
    Directional signal for ``bar_index``.

    Args:
        config: Strategy configuration (selects the rule set)
        indicators: Precomputed series from ``compute_indicator_series``
        bar_index: Bar to evaluate

    Returns:
        Signal.BUY, Signal.SELL or Signal.NONE
    """
    if isinstance(config.params, SmaCrossParams):
        return _sma_cross_signal(indicators, bar_index)
    return _rsi_filter_signal(config.params, indicators, bar_index)
