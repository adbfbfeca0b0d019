"""
Technical Indicator Provider

Computes the indicator series consumed by the signal engine. Every series is
aligned to the input index: position ``i`` holds the indicator value for bar
``i`` and the warm-up window is filled with ``None``.

INDICATORS
    - SMA (Simple Moving Average): arithmetic mean of the last N closes.
      First defined at index N-1.
    - RSI (Relative Strength Index): Wilder's momentum oscillator [0-100].
      First defined at index N (one bar is consumed by the first change).

The core only depends on the ``IndicatorProvider`` protocol; the pandas
implementation below is the default.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

import numpy as np
import pandas as pd

# Module-level logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

RSI_PERIOD: int = 14

# RSI reported when there has been neither a gain nor a loss
RSI_NEUTRAL: float = 50.0


# =============================================================================
# PROVIDER INTERFACE
# =============================================================================

class IndicatorProvider(Protocol):
    """Index-aligned indicator series with ``None`` during warm-up."""

    def sma_series(self, values: Sequence[float], period: int) -> List[Optional[float]]:
        ...

    def rsi_series(self, values: Sequence[float], period: int) -> List[Optional[float]]:
        ...


def _to_optional_list(series: pd.Series) -> List[Optional[float]]:
    """Convert a float series to a list, mapping NaN to None."""
    return [None if pd.isna(v) else float(v) for v in series.to_numpy()]


# =============================================================================
# PANDAS IMPLEMENTATION
# =============================================================================

class PandasIndicatorProvider:
    """
    Default indicator provider backed by pandas rolling/ewm windows.

    The ``calculate_*`` static methods work on ``pd.Series`` and keep NaN
    for the warm-up window; ``sma_series``/``rsi_series`` wrap them into the
    list form the signal engine consumes.
    """

    @staticmethod
    def calculate_sma(close: pd.Series, period: int) -> pd.Series:
        """
        Simple moving average.

        Parameters
        ----------
        close : pd.Series
            Closing prices
        period : int
            Window length

        Returns
        -------
        pd.Series
            SMA values, NaN for the first ``period - 1`` bars
        """
        return close.rolling(window=period, min_periods=period).mean()

    @staticmethod
    def calculate_rsi(close: pd.Series, period: int = RSI_PERIOD) -> pd.Series:
        """
        Calculate Relative Strength Index using Wilder's smoothing.

        RSI = 100 - (100 / (1 + RS))
        where RS = Average Gain / Average Loss

        Parameters
        ----------
        close : pd.Series
            Closing prices
        period : int
            Lookback period (default: 14)

        Returns
        -------
        pd.Series
            RSI values [0, 100], NaN for the first ``period`` bars
        """
        delta = close.diff()

        # clip keeps the leading NaN so the warm-up is not shortened
        gains = delta.clip(lower=0.0)
        losses = (-delta).clip(lower=0.0)

        # Wilder's smoothing (exponential with alpha = 1/period)
        alpha = 1.0 / period
        avg_gain = gains.ewm(alpha=alpha, adjust=False, min_periods=period).mean()
        avg_loss = losses.ewm(alpha=alpha, adjust=False, min_periods=period).mean()

        with np.errstate(divide="ignore", invalid="ignore"):
            rs = avg_gain / avg_loss
            rsi = 100.0 - (100.0 / (1.0 + rs))

        # No movement at all: neither overbought nor oversold
        flat = (avg_gain == 0) & (avg_loss == 0)
        return rsi.mask(flat, RSI_NEUTRAL)

    def sma_series(self, values: Sequence[float], period: int) -> List[Optional[float]]:
        close = pd.Series(values, dtype=float)
        return _to_optional_list(self.calculate_sma(close, period))

    def rsi_series(self, values: Sequence[float], period: int) -> List[Optional[float]]:
        close = pd.Series(values, dtype=float)
        return _to_optional_list(self.calculate_rsi(close, period))


DEFAULT_PROVIDER = PandasIndicatorProvider()
