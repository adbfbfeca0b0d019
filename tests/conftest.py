"""
Shared fixtures: hand-built candle series and a frictionless risk model.
"""
from typing import List, Optional, Sequence

import pytest

from strategy_lab.data_collector import generate_synthetic_candles
from strategy_lab.strategy import Candle, RiskConfig

DAY_MS = 86_400_000
START_MS = 1_704_067_200_000  # 2024-01-01 00:00 UTC


def build_candles(
    closes: Sequence[float],
    opens: Optional[Sequence[float]] = None,
    highs: Optional[Sequence[float]] = None,
    lows: Optional[Sequence[float]] = None,
) -> List[Candle]:
    """Daily candles; missing open/high/low default to the close."""
    opens = opens if opens is not None else closes
    highs = highs if highs is not None else [max(o, c) for o, c in zip(opens, closes)]
    lows = lows if lows is not None else [min(o, c) for o, c in zip(opens, closes)]
    return [
        Candle(timestamp=START_MS + i * DAY_MS, open=o, high=h, low=l, close=c, volume=1.0)
        for i, (o, h, l, c) in enumerate(zip(opens, highs, lows, closes))
    ]


@pytest.fixture
def make_candles():
    return build_candles


@pytest.fixture
def flat_risk() -> RiskConfig:
    """No slippage, no fees, full size, stop at zero."""
    return RiskConfig(
        position_size_percent=100,
        stop_loss_percent=100,
        slippage_percent=0,
        fee_percent=0,
        trailing_stop_percent=0,
    )


@pytest.fixture
def rising_candles() -> List[Candle]:
    """100 candles with strictly increasing prices."""
    return build_candles([100.0 + i for i in range(100)])


@pytest.fixture
def random_candles() -> List[Candle]:
    return generate_synthetic_candles(300, seed=7)
