"""
Strategy Data Model Tests
=========================
Construction-time validation, key aliasing and config merging.
"""
import math

import pytest

from strategy_lab.config import DEFAULT_RISK, DEFAULT_RSI_FILTER_PARAMS, DEFAULT_SMA_CROSS_PARAMS
from strategy_lab.strategy import (
    Candle,
    InvalidParameterError,
    RiskConfig,
    RsiFilterParams,
    SmaCrossParams,
    StrategyConfig,
    StrategyKind,
    StrategyLabError,
    rsi_filter,
    sma_cross,
)


class TestParameterValidation:
    """Invalid parameters are rejected before any run"""

    @pytest.mark.parametrize("period", [0, -5, 2.5, "ten", math.nan, None])
    def test_sma_period_rejected(self, period):
        with pytest.raises(InvalidParameterError):
            SmaCrossParams(short_period=period)

    def test_whole_float_period_becomes_int(self):
        params = SmaCrossParams(short_period=10.0, long_period=30)
        assert params.short_period == 10
        assert isinstance(params.short_period, int)

    def test_rsi_thresholds_bounded(self):
        with pytest.raises(InvalidParameterError):
            RsiFilterParams(rsi_upper=120)
        with pytest.raises(InvalidParameterError):
            RsiFilterParams(rsi_lower=-1)

    @pytest.mark.parametrize("field_name", [
        "position_size_percent", "stop_loss_percent", "slippage_percent",
        "fee_percent", "trailing_stop_percent",
    ])
    def test_risk_percent_bounded(self, field_name):
        with pytest.raises(InvalidParameterError):
            RiskConfig(**{field_name: 101})
        with pytest.raises(InvalidParameterError):
            RiskConfig(**{field_name: -0.5})

    def test_params_must_match_kind(self):
        with pytest.raises(InvalidParameterError):
            StrategyConfig(kind=StrategyKind.SMA_CROSS, params=RsiFilterParams())

    def test_error_hierarchy(self):
        assert issubclass(InvalidParameterError, StrategyLabError)
        assert issubclass(InvalidParameterError, ValueError)


class TestDefaults:

    def test_factories_use_presets(self):
        assert sma_cross().params == SmaCrossParams(**DEFAULT_SMA_CROSS_PARAMS)
        assert rsi_filter().params == RsiFilterParams(**DEFAULT_RSI_FILTER_PARAMS)
        assert RsiFilterParams().rsi_lower == DEFAULT_RSI_FILTER_PARAMS["rsi_lower"]
        assert rsi_filter().risk == RiskConfig(**DEFAULT_RISK)


class TestWarmup:

    def test_sma_cross_warmup_is_longest_window(self):
        assert sma_cross(10, 20).warmup == 20
        assert sma_cross(30, 5).warmup == 30

    def test_rsi_filter_warmup(self):
        assert rsi_filter(rsi_period=14, sma_period=50).warmup == 50
        assert rsi_filter(rsi_period=30, sma_period=10).warmup == 31


class TestWithValues:
    """Merging evaluated values by key membership"""

    def test_routes_params_and_risk(self):
        base = sma_cross(10, 20)
        merged = base.with_values({"shortPeriod": 5, "stop_loss_percent": 3})

        assert merged.params.short_period == 5
        assert merged.params.long_period == 20
        assert merged.risk.stop_loss_percent == 3.0
        # original untouched
        assert base.params.short_period == 10
        assert base.risk.stop_loss_percent == 2.0

    def test_unknown_key_rejected(self):
        with pytest.raises(InvalidParameterError):
            sma_cross().with_values({"rsi_period": 14})

    def test_invalid_value_rejected(self):
        with pytest.raises(InvalidParameterError):
            sma_cross().with_values({"long_period": 0})

    def test_get_value(self):
        config = rsi_filter(rsi_lower=25)
        assert config.get_value("rsiLower") == 25.0
        assert config.get_value("fee_percent") == 0.1
        with pytest.raises(InvalidParameterError):
            config.get_value("short_period")


class TestSerialization:

    def test_original_json_shape(self):
        data = {
            "type": "sma-cross",
            "params": {"shortPeriod": 5, "longPeriod": 30},
            "risk": {"positionSizePercent": 50, "stopLossPercent": 1.5},
        }
        config = StrategyConfig.from_dict(data)

        assert config.kind is StrategyKind.SMA_CROSS
        assert config.params == SmaCrossParams(5, 30)
        assert config.risk.position_size_percent == 50.0
        assert config.risk.fee_percent == 0.1
        assert config.allow_short is False

        exported = config.to_dict()
        assert exported["type"] == "sma-cross"
        assert exported["params"] == {"shortPeriod": 5, "longPeriod": 30}
        assert exported["risk"]["stopLossPercent"] == 1.5
        assert StrategyConfig.from_dict(exported) == config

    def test_unknown_kind_rejected(self):
        with pytest.raises(InvalidParameterError):
            StrategyConfig.from_dict({"type": "macd"})

    def test_unknown_risk_key_rejected(self):
        with pytest.raises(InvalidParameterError):
            RiskConfig.from_dict({"leverage": 3})

    def test_candle_from_dict_defaults_volume(self):
        candle = Candle.from_dict({"timestamp": 1, "open": 1, "high": 2, "low": 0.5, "close": 1.5})
        assert candle.volume == 0.0
        assert candle.to_dict()["close"] == 1.5
