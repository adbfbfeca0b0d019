"""
Strategy Persistence

Saved strategy sessions, each an opaque id with a name, timestamps and the
serialized ``StrategyConfig``. Two stores implement the ``StrategyStore``
interface:

    InMemoryStrategyStore  dict-backed, for tests and embedding hosts
    JsonStrategyStore      one JSON index file on disk

Listing returns records newest-activity first. Timestamps are epoch ms.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from .strategy import StrategyConfig, StrategyLabError

logger = logging.getLogger(__name__)

NAME_PREVIEW_CHARS: int = 40


class StrategyNotFoundError(StrategyLabError, KeyError):
    """No saved strategy has the requested id."""


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class StoredStrategy:
    """A saved strategy session."""
    id: str
    name: str
    config: StrategyConfig
    created_at: int
    last_active: int
    market: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.name,
            "createdAt": self.created_at,
            "lastActive": self.last_active,
            "strategy": self.config.to_dict(),
            "config": dict(self.market),
        }

    def summary(self) -> Dict[str, Any]:
        """Listing entry: id, name and last activity."""
        return {"id": self.id, "name": self.name, "lastActive": self.last_active}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredStrategy":
        return cls(
            id=data["id"],
            name=data["title"],
            config=StrategyConfig.from_dict(data["strategy"]),
            created_at=int(data["createdAt"]),
            last_active=int(data["lastActive"]),
            market=dict(data.get("config") or {}),
        )


def default_name(config: StrategyConfig, now_ms: int) -> str:
    """Name used when none is given: the kind and its parameters."""
    params = ", ".join(f"{k}={v}" for k, v in config.to_dict()["params"].items())
    name = f"{config.kind.value} ({params})"
    if len(name) > NAME_PREVIEW_CHARS:
        name = name[:NAME_PREVIEW_CHARS] + "..."
    return name or f"Strategy {now_ms}"


# =============================================================================
# INTERFACE
# =============================================================================

class StrategyStore(Protocol):
    """Persistence for named strategy configurations."""

    def save(self, name: Optional[str], config: StrategyConfig) -> str:
        ...

    def load(self, strategy_id: str) -> StrategyConfig:
        ...

    def list(self) -> List[Dict[str, Any]]:
        ...

    def delete(self, strategy_id: str) -> bool:
        ...


# =============================================================================
# IMPLEMENTATIONS
# =============================================================================

class InMemoryStrategyStore:
    """
    Dict-backed store.

    Saving with an existing id replaces its config (and name, when one is
    given), keeps the creation time and bumps ``last_active``. Loading also
    bumps ``last_active``. The full record, with creation time and market
    metadata, is available from ``get_record``.
    """

    def __init__(self, clock: Callable[[], int] = _now_ms):
        self.clock = clock
        self._records: Dict[str, StoredStrategy] = {}

    def save(
        self,
        name: Optional[str],
        config: StrategyConfig,
        strategy_id: Optional[str] = None,
        market: Optional[Dict[str, str]] = None,
    ) -> str:
        now = self.clock()
        strategy_id = strategy_id or str(uuid.uuid4())
        existing = self._records.get(strategy_id)

        record = StoredStrategy(
            id=strategy_id,
            name=name or (existing.name if existing else default_name(config, now)),
            config=config,
            created_at=existing.created_at if existing else now,
            last_active=now,
            market=dict(market) if market is not None else (dict(existing.market) if existing else {}),
        )
        self._records[strategy_id] = record
        self._persist()
        logger.debug(f"Saved strategy {strategy_id} ({record.name})")
        return strategy_id

    def load(self, strategy_id: str) -> StrategyConfig:
        record = self.get_record(strategy_id)
        record = replace(record, last_active=self.clock())
        self._records[strategy_id] = record
        self._persist()
        return record.config

    def get_record(self, strategy_id: str) -> StoredStrategy:
        record = self._records.get(strategy_id)
        if record is None:
            raise StrategyNotFoundError(strategy_id)
        return record

    def records(self) -> List[StoredStrategy]:
        """Full records, most recently active first."""
        return sorted(self._records.values(), key=lambda r: r.last_active, reverse=True)

    def list(self) -> List[Dict[str, Any]]:
        return [r.summary() for r in self.records()]

    def delete(self, strategy_id: str) -> bool:
        if self._records.pop(strategy_id, None) is None:
            return False
        self._persist()
        logger.debug(f"Deleted strategy {strategy_id}")
        return True

    def _persist(self) -> None:
        """Hook for subclasses that write through to storage."""


class JsonStrategyStore(InMemoryStrategyStore):
    """Store kept in a single JSON index file, rewritten on every change."""

    def __init__(self, path: Union[str, Path], clock: Callable[[], int] = _now_ms):
        super().__init__(clock)
        self.path = Path(path)
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            for item in data.get("strategies", []):
                record = StoredStrategy.from_dict(item)
                self._records[record.id] = record
            logger.info(f"Loaded {len(self._records)} strategies from {self.path}")

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"strategies": [r.to_dict() for r in self.records()]}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        tmp.replace(self.path)
