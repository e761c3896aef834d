"""
Event/State channel for the converter keeper.

Every stage publishes one typed event per outcome. Events are immutable and
kept in an append-only history so a status view or metrics collector can be
rebuilt by replaying them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, List, Optional, Tuple, Union

from .types import BalanceResult, ConvertArgs
from .utils import get_logger

logger = get_logger(__name__)

EventError = Union[str, Tuple[str, ...]]


class EventKind(Enum):
    """Discriminator for keeper events."""

    ACCRUE_INTEREST = "AccrueInterest"
    REDUCE_RESERVES = "ReduceReserves"
    RELEASE_FUNDS = "ReleaseFunds"
    POTENTIAL_CONVERSIONS = "PotentialConversions"
    GET_BEST_TRADE = "GetBestTrade"
    EXECUTE_TRADE = "ExecuteTrade"
    ARBITRAGE = "Arbitrage"


@dataclass(frozen=True)
class KeeperEvent:
    """
    Common event envelope.

    Attributes:
        trx: Transaction hash when a transaction was submitted
        error: Failure message, or a tuple of messages for batch operations
        block_number: Block the outcome was observed at
        context: Kind-specific payload
    """

    kind: ClassVar[EventKind]

    trx: Optional[str] = None
    error: Optional[EventError] = None
    block_number: Optional[int] = None
    context: Any = None

    @property
    def failed(self) -> bool:
        return bool(self.error)

    def error_text(self) -> str:
        if isinstance(self.error, tuple):
            return ",".join(self.error)
        return self.error or ""


@dataclass(frozen=True)
class ReleaseFundsContext:
    pool: str
    assets: Tuple[str, ...]


@dataclass(frozen=True)
class PotentialConversionsContext:
    conversions: Tuple[BalanceResult, ...] = ()


@dataclass(frozen=True)
class TradeAmount:
    """Converter quote: amount released by and amount owed to the converter."""

    amount_out: int
    amount_in: int


@dataclass(frozen=True)
class SwapLeg:
    amount: str
    token: str


@dataclass(frozen=True)
class SwapSummary:
    input_token: SwapLeg
    output_token: SwapLeg


@dataclass(frozen=True)
class GetBestTradeContext:
    converter: str
    token_to_receive_from_converter: str
    token_to_send_to_converter: str
    trade_amount: Optional[TradeAmount] = None
    swap: Optional[SwapSummary] = None
    price_impact: Optional[str] = None


@dataclass(frozen=True)
class ExecuteTradeContext:
    converter: str
    token_to_receive_from_converter: str
    token_to_send_to_converter: str
    amount: int
    min_income: int


@dataclass(frozen=True)
class AccrueInterestEvent(KeeperEvent):
    kind: ClassVar[EventKind] = EventKind.ACCRUE_INTEREST


@dataclass(frozen=True)
class ReduceReservesEvent(KeeperEvent):
    kind: ClassVar[EventKind] = EventKind.REDUCE_RESERVES


@dataclass(frozen=True)
class ReleaseFundsEvent(KeeperEvent):
    kind: ClassVar[EventKind] = EventKind.RELEASE_FUNDS
    context: Optional[ReleaseFundsContext] = None


@dataclass(frozen=True)
class PotentialConversionsEvent(KeeperEvent):
    kind: ClassVar[EventKind] = EventKind.POTENTIAL_CONVERSIONS
    context: PotentialConversionsContext = PotentialConversionsContext()


@dataclass(frozen=True)
class GetBestTradeEvent(KeeperEvent):
    kind: ClassVar[EventKind] = EventKind.GET_BEST_TRADE
    context: Optional[GetBestTradeContext] = None


@dataclass(frozen=True)
class ExecuteTradeEvent(KeeperEvent):
    kind: ClassVar[EventKind] = EventKind.EXECUTE_TRADE
    context: Optional[ExecuteTradeContext] = None


@dataclass(frozen=True)
class ArbitrageEvent(KeeperEvent):
    kind: ClassVar[EventKind] = EventKind.ARBITRAGE
    context: Optional[ConvertArgs] = None


EventSubscriber = Callable[[KeeperEvent], None]


class EventChannel:
    """
    Synchronous publish/subscribe bus with an append-only history.

    Subscribers are called in subscription order on the publishing task. A
    subscriber that raises is logged and the remaining subscribers still
    receive the event.
    """

    def __init__(self, verbose: bool = False, history_limit: Optional[int] = None):
        self.verbose = verbose
        self.history_limit = history_limit
        self._subscribers: List[EventSubscriber] = []
        self._history: List[KeeperEvent] = []

    def subscribe(self, subscriber: EventSubscriber) -> Callable[[], None]:
        """Register a subscriber; returns a callable that unregisters it."""
        self._subscribers.append(subscriber)

        def unsubscribe():
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, event: KeeperEvent) -> KeeperEvent:
        self._history.append(event)
        if self.history_limit is not None and len(self._history) > self.history_limit:
            del self._history[0]

        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                logger.error(
                    f"Event subscriber {subscriber!r} failed on {event.kind.value}: {e}"
                )

        if self.verbose:
            self._log(event)
        return event

    def _log(self, event: KeeperEvent):
        if event.failed:
            logger.error(f"{event.kind.value}: {event.error_text()}")
        else:
            logger.info(f"{event.kind.value} - {event.trx}")

    @property
    def history(self) -> Tuple[KeeperEvent, ...]:
        return tuple(self._history)

    def events_of(self, kind: EventKind) -> List[KeeperEvent]:
        return [event for event in self._history if event.kind is kind]

    def replay(self, subscriber: EventSubscriber) -> int:
        """Feed the recorded history to ``subscriber`` in emission order."""
        history = list(self._history)
        for event in history:
            subscriber(event)
        return len(history)
