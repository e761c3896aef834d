"""
Running status view folded from keeper events.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .events import (
    AccrueInterestEvent,
    ArbitrageEvent,
    ExecuteTradeEvent,
    GetBestTradeEvent,
    KeeperEvent,
    PotentialConversionsEvent,
    ReduceReservesEvent,
    ReleaseFundsEvent,
)
from .utils import format_units

PairKey = Tuple[str, str, str]


@dataclass
class TradeStatus:
    """Latest outcome of each stage for one (converter, receive, send) pair."""

    converter: str
    token_to_receive_from_converter: str
    token_to_send_to_converter: str
    best_trade: Optional[GetBestTradeEvent] = None
    high_impact_rejections: int = 0
    execute_trade: Optional[ExecuteTradeEvent] = None
    arbitrage: Optional[ArbitrageEvent] = None

    @property
    def stage(self) -> str:
        if self.arbitrage is not None:
            if self.arbitrage.failed:
                return "failed"
            return "executed" if self.arbitrage.trx else "simulated"
        if self.execute_trade is not None and self.execute_trade.failed:
            return "rejected"
        if self.best_trade is not None:
            return "no-trade" if self.best_trade.failed else "negotiated"
        return "pending"


def _pair_key(converter: str, receive: str, send: str) -> PairKey:
    return (converter.lower(), receive.lower(), send.lower())


@dataclass
class KeeperStatus:
    """
    Mutable fold over the event stream.

    Instances are valid event subscribers: ``channel.subscribe(status)``.
    """

    accrue_interest: Optional[AccrueInterestEvent] = None
    reduce_reserves: Optional[ReduceReservesEvent] = None
    release_funds: List[ReleaseFundsEvent] = field(default_factory=list)
    potential_conversions: Optional[PotentialConversionsEvent] = None
    trades: Dict[PairKey, TradeStatus] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    events_seen: int = 0

    def __call__(self, event: KeeperEvent):
        self.apply(event)

    def _trade(self, converter: str, receive: str, send: str) -> TradeStatus:
        key = _pair_key(converter, receive, send)
        if key not in self.trades:
            self.trades[key] = TradeStatus(converter, receive, send)
        return self.trades[key]

    def apply(self, event: KeeperEvent) -> "KeeperStatus":
        self.events_seen += 1
        if event.failed:
            self.errors.append(f"{event.kind.value}: {event.error_text()}")

        if isinstance(event, AccrueInterestEvent):
            self.accrue_interest = event
        elif isinstance(event, ReduceReservesEvent):
            self.reduce_reserves = event
        elif isinstance(event, ReleaseFundsEvent):
            self.release_funds.append(event)
        elif isinstance(event, PotentialConversionsEvent):
            self.potential_conversions = event
            # A new discovery pass starts a new set of trades
            self.trades = {}
            for result in event.context.conversions:
                self._trade(
                    result.converter, result.asset_out.address, result.asset_in.address
                )
        elif isinstance(event, GetBestTradeEvent):
            ctx = event.context
            trade = self._trade(
                ctx.converter,
                ctx.token_to_receive_from_converter,
                ctx.token_to_send_to_converter,
            )
            if ctx.price_impact is not None:
                trade.high_impact_rejections += 1
            else:
                trade.best_trade = event
        elif isinstance(event, ExecuteTradeEvent):
            ctx = event.context
            trade = self._trade(
                ctx.converter,
                ctx.token_to_receive_from_converter,
                ctx.token_to_send_to_converter,
            )
            trade.execute_trade = event
        elif isinstance(event, ArbitrageEvent):
            args = event.context
            trade = self._trade(
                args.converter,
                args.token_to_receive_from_converter,
                args.token_to_send_to_converter,
            )
            trade.arbitrage = event
        else:
            raise TypeError(f"Unhandled keeper event: {event!r}")
        return self

    def summary(self) -> Dict[str, int]:
        stages: Dict[str, int] = {}
        for trade in self.trades.values():
            stages[trade.stage] = stages.get(trade.stage, 0) + 1
        conversions = (
            len(self.potential_conversions.context.conversions)
            if self.potential_conversions
            else 0
        )
        return {
            "events": self.events_seen,
            "potential_conversions": conversions,
            "errors": len(self.errors),
            **stages,
        }

    def render_lines(self) -> List[str]:
        """Human-readable status lines for the CLI."""
        lines = []
        if self.potential_conversions is not None:
            lines.append(
                f"Block {self.potential_conversions.block_number}: "
                f"{len(self.potential_conversions.context.conversions)} potential conversions"
            )
            for result in self.potential_conversions.context.conversions:
                balance = format_units(result.asset_out.balance, result.asset_out.decimals)
                trade = self.trades.get(
                    _pair_key(
                        result.converter,
                        result.asset_out.address,
                        result.asset_in.address,
                    )
                )
                stage = trade.stage if trade else "pending"
                lines.append(
                    f"  {result.converter} {result.asset_out.symbol} -> "
                    f"{result.asset_in.symbol} balance={balance} [{stage}]"
                )
        for error in self.errors:
            lines.append(f"  ! {error}")
        return lines
