"""
Strategy Data Model

Immutable records shared by every stage of the evaluation core:

    - Candle: one OHLCV bar (epoch-millisecond timestamp)
    - StrategyKind: tag selecting the signal rules
    - SmaCrossParams / RsiFilterParams: kind-specific parameter structs
    - RiskConfig: position sizing, stop, slippage and fee model (0-100 scale)
    - StrategyConfig: kind + params + risk, never mutated in place

Parameter validation happens at construction time so an invalid configuration
is rejected before any backtest starts. Mappings using the camelCase names of
the original JSON shape (``shortPeriod``, ``positionSizePercent``) are
accepted by ``StrategyConfig.from_dict`` and by ``with_values``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from .config import DEFAULT_RISK, DEFAULT_RSI_FILTER_PARAMS, DEFAULT_SMA_CROSS_PARAMS


# =============================================================================
# EXCEPTIONS
# =============================================================================

class StrategyLabError(Exception):
    """Base class for errors raised by the evaluation core."""


class InvalidParameterError(StrategyLabError, ValueError):
    """A strategy or risk parameter lies outside its sane domain."""


# =============================================================================
# KEY ALIASES
# =============================================================================

# camelCase (original JSON shape) -> snake_case field name
PARAM_ALIASES: Dict[str, str] = {
    "shortPeriod": "short_period",
    "longPeriod": "long_period",
    "rsiPeriod": "rsi_period",
    "rsiUpper": "rsi_upper",
    "rsiLower": "rsi_lower",
    "smaPeriod": "sma_period",
    "positionSizePercent": "position_size_percent",
    "stopLossPercent": "stop_loss_percent",
    "slippagePercent": "slippage_percent",
    "feePercent": "fee_percent",
    "trailingStopPercent": "trailing_stop_percent",
}

_CAMEL_NAMES: Dict[str, str] = {v: k for k, v in PARAM_ALIASES.items()}


def normalize_key(key: str) -> str:
    """Map a camelCase parameter name to its snake_case field name."""
    return PARAM_ALIASES.get(key, key)


def camel_key(key: str) -> str:
    return _CAMEL_NAMES.get(key, key)


def _as_period(name: str, value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(number) or number != int(number):
        raise InvalidParameterError(f"{name} must be a whole number, got {value!r}")
    if number < 1:
        raise InvalidParameterError(f"{name} must be >= 1, got {value!r}")
    return int(number)


def _as_bounded(name: str, value: Any, low: float, high: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(number) or not (low <= number <= high):
        raise InvalidParameterError(
            f"{name} must lie within [{low}, {high}], got {value!r}"
        )
    return number


# =============================================================================
# MARKET DATA
# =============================================================================

@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. ``timestamp`` is epoch milliseconds."""
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Candle":
        return cls(
            timestamp=int(data["timestamp"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume", 0.0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


# =============================================================================
# STRATEGY PARAMETERS
# =============================================================================

class StrategyKind(Enum):
    """Signal rule families."""
    SMA_CROSS = "sma-cross"
    RSI_FILTER = "rsi-filter"


@dataclass(frozen=True)
class SmaCrossParams:
    """Moving-average crossover: short SMA crossing the long SMA."""
    short_period: int = DEFAULT_SMA_CROSS_PARAMS["short_period"]
    long_period: int = DEFAULT_SMA_CROSS_PARAMS["long_period"]

    def __post_init__(self):
        object.__setattr__(self, "short_period", _as_period("short_period", self.short_period))
        object.__setattr__(self, "long_period", _as_period("long_period", self.long_period))

    @property
    def warmup(self) -> int:
        """Bars needed before both averages are defined."""
        return max(self.short_period, self.long_period)


@dataclass(frozen=True)
class RsiFilterParams:
    """RSI mean-reversion entries filtered by the side of a trend SMA."""
    rsi_period: int = DEFAULT_RSI_FILTER_PARAMS["rsi_period"]
    rsi_upper: float = DEFAULT_RSI_FILTER_PARAMS["rsi_upper"]
    rsi_lower: float = DEFAULT_RSI_FILTER_PARAMS["rsi_lower"]
    sma_period: int = DEFAULT_RSI_FILTER_PARAMS["sma_period"]

    def __post_init__(self):
        object.__setattr__(self, "rsi_period", _as_period("rsi_period", self.rsi_period))
        object.__setattr__(self, "sma_period", _as_period("sma_period", self.sma_period))
        object.__setattr__(self, "rsi_upper", _as_bounded("rsi_upper", self.rsi_upper, 0.0, 100.0))
        object.__setattr__(self, "rsi_lower", _as_bounded("rsi_lower", self.rsi_lower, 0.0, 100.0))

    @property
    def warmup(self) -> int:
        # RSI needs one extra bar for the first price change
        return max(self.rsi_period + 1, self.sma_period)


StrategyParams = Union[SmaCrossParams, RsiFilterParams]

PARAMS_BY_KIND = {
    StrategyKind.SMA_CROSS: SmaCrossParams,
    StrategyKind.RSI_FILTER: RsiFilterParams,
}


@dataclass(frozen=True)
class RiskConfig:
    """
    Risk and execution model. All values are percentages on a 0-100 scale.

    A ``trailing_stop_percent`` of zero disables the trailing ratchet; a
    ``stop_loss_percent`` of 100 places a long's stop at zero, i.e. no stop.
    """
    position_size_percent: float = DEFAULT_RISK["position_size_percent"]
    stop_loss_percent: float = DEFAULT_RISK["stop_loss_percent"]
    slippage_percent: float = DEFAULT_RISK["slippage_percent"]
    fee_percent: float = DEFAULT_RISK["fee_percent"]
    trailing_stop_percent: float = DEFAULT_RISK["trailing_stop_percent"]

    def __post_init__(self):
        for f in fields(self):
            value = _as_bounded(f.name, getattr(self, f.name), 0.0, 100.0)
            object.__setattr__(self, f.name, value)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RiskConfig":
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = normalize_key(key)
            if name not in known:
                raise InvalidParameterError(f"Unknown risk parameter: {key}")
            values[name] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, float]:
        return {camel_key(f.name): getattr(self, f.name) for f in fields(self)}


# =============================================================================
# STRATEGY CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class StrategyConfig:
    """
    Complete, immutable strategy definition.

    The ``params`` struct type must match ``kind``. ``allow_short`` lets a
    Sell signal open a short position while flat; by default the strategy
    is long-only.
    """
    kind: StrategyKind
    params: StrategyParams
    risk: RiskConfig = field(default_factory=RiskConfig)
    allow_short: bool = False

    def __post_init__(self):
        expected = PARAMS_BY_KIND[self.kind]
        if not isinstance(self.params, expected):
            raise InvalidParameterError(
                f"{self.kind.value} expects {expected.__name__}, "
                f"got {type(self.params).__name__}"
            )

    @property
    def warmup(self) -> int:
        return self.params.warmup

    @staticmethod
    def param_names(kind: StrategyKind) -> List[str]:
        return [f.name for f in fields(PARAMS_BY_KIND[kind])]

    @staticmethod
    def risk_names() -> List[str]:
        return [f.name for f in fields(RiskConfig)]

    def accepts(self, key: str) -> bool:
        """True when ``key`` names a params or risk field of this config."""
        name = normalize_key(key)
        return name in self.param_names(self.kind) or name in self.risk_names()

    def with_values(self, values: Mapping[str, Any]) -> "StrategyConfig":
        """
        Return a new config with ``values`` merged in by key membership.

        Keys naming a params field update the params struct, keys naming a
        risk field update the risk config. Unknown keys are rejected.
        """
        param_names = set(self.param_names(self.kind))
        risk_names = set(self.risk_names())
        param_updates: Dict[str, Any] = {}
        risk_updates: Dict[str, Any] = {}

        for key, value in values.items():
            name = normalize_key(key)
            if name in param_names:
                param_updates[name] = value
            elif name in risk_names:
                risk_updates[name] = value
            else:
                raise InvalidParameterError(
                    f"Unknown parameter for {self.kind.value}: {key}"
                )

        params = replace(self.params, **param_updates) if param_updates else self.params
        risk = replace(self.risk, **risk_updates) if risk_updates else self.risk
        return replace(self, params=params, risk=risk)

    def get_value(self, key: str) -> float:
        name = normalize_key(key)
        if name in self.param_names(self.kind):
            return getattr(self.params, name)
        if name in self.risk_names():
            return getattr(self.risk, name)
        raise InvalidParameterError(f"Unknown parameter for {self.kind.value}: {key}")

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StrategyConfig":
        """
        Build a config from a mapping.

        Accepts both the original JSON shape
        (``{"type": "sma-cross", "params": {"shortPeriod": 10, ...}}``) and
        snake_case keys (``{"kind": "sma-cross", "params": {"short_period": 10}}``).
        """
        raw_kind = data.get("kind", data.get("type"))
        try:
            kind = raw_kind if isinstance(raw_kind, StrategyKind) else StrategyKind(raw_kind)
        except ValueError:
            raise InvalidParameterError(f"Unknown strategy kind: {raw_kind!r}")

        params_cls = PARAMS_BY_KIND[kind]
        known = set(cls.param_names(kind))
        params: Dict[str, Any] = {}
        for key, value in (data.get("params") or {}).items():
            name = normalize_key(key)
            if name not in known:
                raise InvalidParameterError(f"Unknown parameter for {kind.value}: {key}")
            params[name] = value

        risk_data = data.get("risk") or {}
        risk = RiskConfig.from_dict(risk_data)
        allow_short = bool(data.get("allow_short", data.get("allowShort", False)))

        return cls(kind=kind, params=params_cls(**params), risk=risk, allow_short=allow_short)

    def to_dict(self) -> Dict[str, Any]:
        """Original JSON shape (camelCase keys)."""
        return {
            "type": self.kind.value,
            "params": {
                camel_key(f.name): getattr(self.params, f.name)
                for f in fields(self.params)
            },
            "risk": self.risk.to_dict(),
            "allowShort": self.allow_short,
        }


# =============================================================================
# CONVENIENCE CONSTRUCTORS
# =============================================================================

def sma_cross(
    short_period: int = DEFAULT_SMA_CROSS_PARAMS["short_period"],
    long_period: int = DEFAULT_SMA_CROSS_PARAMS["long_period"],
    risk: Optional[RiskConfig] = None,
    allow_short: bool = False,
) -> StrategyConfig:
    return StrategyConfig(
        kind=StrategyKind.SMA_CROSS,
        params=SmaCrossParams(short_period, long_period),
        risk=risk or RiskConfig(),
        allow_short=allow_short,
    )


def rsi_filter(
    rsi_period: int = DEFAULT_RSI_FILTER_PARAMS["rsi_period"],
    rsi_upper: float = DEFAULT_RSI_FILTER_PARAMS["rsi_upper"],
    rsi_lower: float = DEFAULT_RSI_FILTER_PARAMS["rsi_lower"],
    sma_period: int = DEFAULT_RSI_FILTER_PARAMS["sma_period"],
    risk: Optional[RiskConfig] = None,
    allow_short: bool = False,
) -> StrategyConfig:
    return StrategyConfig(
        kind=StrategyKind.RSI_FILTER,
        params=RsiFilterParams(rsi_period, rsi_upper, rsi_lower, sma_period),
        risk=risk or RiskConfig(),
        allow_short=allow_short,
    )
