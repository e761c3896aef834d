"""
Token Converter Keeper.

Discovers token converters holding redeemable balances, prices each
conversion against external liquidity and executes the profitable ones
through the TokenConverterOperator, while accruing interest and releasing
reserves along the way. Every step is reported on a replayable event stream.
"""

PROJECT_NAME = "converter-keeper"

from converter_keeper.version import __version__ as VERSION  # noqa: E402

# Export main components for easier imports
from converter_keeper.config_loader import KeeperConfig, load_keeper_config  # noqa: E402
from converter_keeper.events import EventChannel, EventKind, KeeperEvent  # noqa: E402
from converter_keeper.keeper import CycleReport, TokenConverterKeeper  # noqa: E402
from converter_keeper.status import KeeperStatus  # noqa: E402
from converter_keeper.types import (  # noqa: E402
    BalanceResult,
    ConversionFilter,
    PreparedConversion,
    TradeRoute,
)

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "KeeperConfig",
    "load_keeper_config",
    "EventChannel",
    "EventKind",
    "KeeperEvent",
    "CycleReport",
    "TokenConverterKeeper",
    "KeeperStatus",
    "BalanceResult",
    "ConversionFilter",
    "PreparedConversion",
    "TradeRoute",
]
