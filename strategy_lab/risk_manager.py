"""
Position & Risk Manager

Owns the single-position state machine of a backtest run.

STATES
    FLAT -> LONG/SHORT on entry, LONG/SHORT -> FLAT on exit.

PER-BAR ORDER (fixed)
    1. Stop check      (only when in a position)
         LONG:  stop = max(stop, high * (1 - trail%)), exit at stop if low <= stop
         SHORT: stop = min(stop, low * (1 + trail%)), exit at stop if high >= stop
    2. Signal exit     opposing signal closes at the bar's open
    3. Entry           only when the bar started flat; BUY opens LONG,
                       SELL opens SHORT when shorting is allowed

EXECUTION MODEL
    Entry:  fill = open ± open * slippage% (against the trader)
            stop = fill * (1 ∓ stop_loss%)
    Exit:   fill = price ∓ price * slippage% (against the trader)
            fee  = (entry + exit) * fee%      (round trip)
            pnl  = (exit - entry) * direction - fee       per unit
            pnl% = pnl / entry
    Equity: equity += equity * position_size% * pnl%    (compounding)

Trades whose |pnl%| is below MIN_PNL_PERCENT are discarded: they are not
recorded and do not move equity. A position still open after the last bar
is left unrealized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import INITIAL_EQUITY, MIN_PNL_PERCENT
from .signal_engine import Signal
from .strategy import Candle, RiskConfig

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMERATIONS
# =============================================================================

class PositionSide(Enum):
    """Trade direction."""
    LONG = "long"
    SHORT = "short"

    @property
    def direction(self) -> int:
        return 1 if self is PositionSide.LONG else -1


class PositionStatus(Enum):
    FLAT = "FLAT"
    LONG = "LONG"
    SHORT = "SHORT"


class ExitReason(Enum):
    """Why a position was closed."""
    STOP = "STOP"
    SIGNAL = "SIGNAL"


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class Position:
    """Open position; mutated only by the stop ratchet."""
    entry_price: float
    side: PositionSide
    entry_time: int
    stop_price: float


@dataclass(frozen=True)
class Trade:
    """
    Closed trade record.

    ``pnl`` is per unit of the traded asset and already net of slippage and
    fees; ``pnl_percent`` is that amount relative to the entry price.
    """
    entry_time: int
    exit_time: int
    entry_price: float
    exit_price: float
    pnl: float
    pnl_percent: float
    side: PositionSide
    exit_reason: ExitReason = ExitReason.SIGNAL

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "entryTime": self.entry_time,
            "exitTime": self.exit_time,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "pnl": self.pnl,
            "pnlPercent": self.pnl_percent,
            "type": self.side.value,
            "exitReason": self.exit_reason.value,
        }


@dataclass
class PositionState:
    """Mutable state threaded through the bar loop."""
    equity: float = INITIAL_EQUITY
    position: Optional[Position] = None

    @property
    def status(self) -> PositionStatus:
        if self.position is None:
            return PositionStatus.FLAT
        if self.position.side is PositionSide.LONG:
            return PositionStatus.LONG
        return PositionStatus.SHORT

    @property
    def is_flat(self) -> bool:
        return self.position is None


# =============================================================================
# POSITION MANAGER
# =============================================================================

class PositionManager:
    """
    Single-position state machine with stop, slippage and fee modelling.

    Usage:
        manager = PositionManager(config.risk)
        for candle, signal in bars:
            manager.on_bar(candle, signal)
        manager.trades, manager.state.equity
    """

    def __init__(
        self,
        risk: RiskConfig,
        allow_short: bool = False,
        initial_equity: float = INITIAL_EQUITY,
    ):
        """
        Initialize position manager.

        Args:
            risk: Risk and execution model
            allow_short: Let SELL open a short while flat
            initial_equity: Starting equity
        """
        self.risk = risk
        self.allow_short = allow_short
        self.state = PositionState(equity=initial_equity)
        self.trades: List[Trade] = []
        self.discarded_trades = 0

    @property
    def equity(self) -> float:
        return self.state.equity

    @property
    def position(self) -> Optional[Position]:
        return self.state.position

    # -------------------------------------------------------------------------
    # Per-bar transitions
    # -------------------------------------------------------------------------

    def on_bar(self, candle: Candle, signal: Signal) -> Optional[Trade]:
        """
        Apply the three transitions for one bar in their fixed order.

        Returns:
            The trade recorded on this bar, if any
        """
        started_flat = self.state.is_flat

        trade = self.check_stop(candle)
        if not self.state.is_flat:
            trade = self.exit_on_signal(candle, signal)

        if started_flat:
            self.enter(candle, signal)

        return trade

    def check_stop(self, candle: Candle) -> Optional[Trade]:
        """Ratchet the trailing stop, then exit at the stop if the bar hits it."""
        pos = self.state.position
        if pos is None:
            return None

        trail = self.risk.trailing_stop_percent / 100
        if pos.side is PositionSide.LONG:
            if trail > 0:
                pos.stop_price = max(pos.stop_price, candle.high * (1 - trail))
            hit = candle.low <= pos.stop_price
        else:
            if trail > 0:
                pos.stop_price = min(pos.stop_price, candle.low * (1 + trail))
            hit = candle.high >= pos.stop_price

        if not hit:
            return None
        return self.close(candle.timestamp, pos.stop_price, ExitReason.STOP)

    def exit_on_signal(self, candle: Candle, signal: Signal) -> Optional[Trade]:
        """Close at the open when the signal opposes the open position."""
        pos = self.state.position
        if pos is None:
            return None

        opposing = (
            (pos.side is PositionSide.LONG and signal is Signal.SELL)
            or (pos.side is PositionSide.SHORT and signal is Signal.BUY)
        )
        if not opposing:
            return None
        return self.close(candle.timestamp, candle.open, ExitReason.SIGNAL)

    def enter(self, candle: Candle, signal: Signal) -> Optional[Position]:
        """Open a position at the bar's open when flat and a signal fires."""
        if not self.state.is_flat:
            return None

        if signal is Signal.BUY:
            side = PositionSide.LONG
        elif signal is Signal.SELL and self.allow_short:
            side = PositionSide.SHORT
        else:
            return None

        if candle.open <= 0:
            logger.warning(f"Skipping entry at {candle.timestamp}: non-positive open {candle.open}")
            return None

        slippage = candle.open * self.risk.slippage_percent / 100
        stop_loss = self.risk.stop_loss_percent / 100
        if side is PositionSide.LONG:
            entry_price = candle.open + slippage
            stop_price = entry_price * (1 - stop_loss)
        else:
            entry_price = candle.open - slippage
            stop_price = entry_price * (1 + stop_loss)

        self.state.position = Position(
            entry_price=entry_price,
            side=side,
            entry_time=candle.timestamp,
            stop_price=stop_price,
        )
        logger.debug(f"Opened {side.value} at {entry_price:.6f} (stop {stop_price:.6f})")
        return self.state.position

    # -------------------------------------------------------------------------
    # Exit accounting
    # -------------------------------------------------------------------------

    def close(self, exit_time: int, price: float, reason: ExitReason) -> Optional[Trade]:
        """
        Close the open position at ``price`` before slippage.

        Returns:
            The recorded trade, or None when the trade was discarded as
            degenerate (|pnl%| below MIN_PNL_PERCENT)
        """
        pos = self.state.position
        if pos is None:
            return None
        self.state.position = None

        direction = pos.side.direction
        slippage = price * self.risk.slippage_percent / 100
        exit_price = price - slippage * direction

        gross = (exit_price - pos.entry_price) * direction
        fee = (pos.entry_price + exit_price) * self.risk.fee_percent / 100
        pnl = gross - fee
        pnl_percent = pnl / pos.entry_price

        if abs(pnl_percent) < MIN_PNL_PERCENT:
            self.discarded_trades += 1
            logger.debug(f"Discarded degenerate trade (pnl% {pnl_percent:.2e})")
            return None

        equity = self.state.equity
        equity += equity * (self.risk.position_size_percent / 100) * pnl_percent
        self.state.equity = max(equity, 0.0)

        trade = Trade(
            entry_time=pos.entry_time,
            exit_time=exit_time,
            entry_price=pos.entry_price,
            exit_price=exit_price,
            pnl=pnl,
            pnl_percent=pnl_percent,
            side=pos.side,
            exit_reason=reason,
        )
        self.trades.append(trade)
        return trade
