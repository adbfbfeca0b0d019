"""
Strategy Store Tests
====================
Save / load / list / delete semantics for the in-memory and JSON stores.
"""
import itertools
import json

import pytest

from strategy_lab.strategy import StrategyLabError, rsi_filter, sma_cross
from strategy_lab.strategy_store import (
    InMemoryStrategyStore,
    JsonStrategyStore,
    StrategyNotFoundError,
)


@pytest.fixture
def clock():
    ticks = itertools.count(1_000)
    return lambda: next(ticks)


class TestInMemoryStore:

    def test_save_returns_id_and_load_returns_config(self, clock):
        store = InMemoryStrategyStore(clock=clock)
        strategy_id = store.save("Fast cross", sma_cross(5, 20))

        assert isinstance(strategy_id, str)
        assert store.load(strategy_id) == sma_cross(5, 20)

    def test_load_bumps_last_active(self, clock):
        store = InMemoryStrategyStore(clock=clock)
        strategy_id = store.save("Fast cross", sma_cross(5, 20))
        saved = store.get_record(strategy_id)

        store.load(strategy_id)
        loaded = store.get_record(strategy_id)

        assert loaded.name == "Fast cross"
        assert loaded.created_at == saved.created_at
        assert loaded.last_active > saved.last_active

    def test_default_name(self, clock):
        store = InMemoryStrategyStore(clock=clock)
        strategy_id = store.save(None, sma_cross(5, 20))
        assert store.get_record(strategy_id).name.startswith("sma-cross")

    def test_update_keeps_created_at(self, clock):
        store = InMemoryStrategyStore(clock=clock)
        first_id = store.save("v1", sma_cross(5, 20))
        first = store.get_record(first_id)
        second_id = store.save(None, sma_cross(8, 30), strategy_id=first_id)
        second = store.get_record(second_id)

        assert second_id == first_id
        assert second.created_at == first.created_at
        assert second.name == "v1"
        assert second.config.params.short_period == 8
        assert len(store.list()) == 1

    def test_list_entries_most_recent_first(self, clock):
        store = InMemoryStrategyStore(clock=clock)
        a = store.save("a", sma_cross())
        b = store.save("b", rsi_filter())

        listing = store.list()
        assert [entry["id"] for entry in listing] == [b, a]
        assert set(listing[0]) == {"id", "name", "lastActive"}
        assert listing[0]["name"] == "b"

        store.load(a)
        assert [entry["id"] for entry in store.list()] == [a, b]

    def test_delete(self, clock):
        store = InMemoryStrategyStore(clock=clock)
        strategy_id = store.save("x", sma_cross())

        assert store.delete(strategy_id) is True
        assert store.list() == []
        with pytest.raises(StrategyNotFoundError):
            store.load(strategy_id)

    def test_delete_missing_returns_false(self, clock):
        store = InMemoryStrategyStore(clock=clock)
        assert store.delete("no-such-id") is False

    def test_not_found_is_key_error(self):
        assert issubclass(StrategyNotFoundError, KeyError)
        assert issubclass(StrategyNotFoundError, StrategyLabError)


class TestJsonStore:

    def test_persists_across_instances(self, tmp_path, clock):
        path = tmp_path / "store" / "strategies.json"
        store = JsonStrategyStore(path, clock=clock)
        strategy_id = store.save(
            "RSI",
            rsi_filter(rsi_lower=25, allow_short=True),
            market={"symbol": "BTC", "exchange": "binance"},
        )
        saved = store.get_record(strategy_id)

        reopened = JsonStrategyStore(path, clock=clock)
        record = reopened.get_record(strategy_id)

        assert reopened.load(strategy_id) == saved.config
        assert record.market == {"symbol": "BTC", "exchange": "binance"}
        assert record.created_at == saved.created_at

    def test_file_layout(self, tmp_path, clock):
        path = tmp_path / "strategies.json"
        store = JsonStrategyStore(path, clock=clock)
        strategy_id = store.save("Cross", sma_cross(5, 20))

        data = json.loads(path.read_text())
        entry = data["strategies"][0]
        assert entry["id"] == strategy_id
        assert entry["title"] == "Cross"
        assert entry["lastActive"] == store.get_record(strategy_id).last_active
        assert entry["strategy"]["type"] == "sma-cross"

    def test_delete_is_written(self, tmp_path, clock):
        path = tmp_path / "strategies.json"
        store = JsonStrategyStore(path, clock=clock)
        strategy_id = store.save(None, sma_cross())

        assert store.delete(strategy_id)
        assert JsonStrategyStore(path, clock=clock).list() == []
