"""
Trade negotiation: price a converter's offer against external liquidity.

The converter quotes how much it releases and how much it wants back for a
requested amount; the route optimizer quotes what buying that amount back
costs. Their difference is the conversion's minimum income, exact to the
token's smallest unit.
"""

from fractions import Fraction
from typing import Optional, Tuple

from .chain.abis import TOKEN_CONVERTER_ABI
from .chain.gateway import ChainGateway, ContractCall, revert_reason
from .chain.path import validate_path
from .config_loader import KeeperConfig
from .constants import IMPACT_BACKOFF_RATIO
from .events import (
    EventChannel,
    GetBestTradeContext,
    GetBestTradeEvent,
    SwapLeg,
    SwapSummary,
    TradeAmount,
)
from .exceptions import (
    NegotiationError,
    NetworkError,
    NoTradeFoundError,
    PathValidationError,
    PriceImpactError,
)
from .providers.swap_provider import RouteOptimizer
from .types import PreparedConversion, TokenAmount, TradeRoute
from .utils import format_percent, get_logger

logger = get_logger(__name__)

HIGH_PRICE_IMPACT = "High price impact"


def compute_min_income(converter_amount_out: int, trade_input_amount: Fraction) -> int:
    """
    Income left after buying back the converter's asks, truncated toward zero.

    Negative values are the subsidy the keeper pays to complete the conversion.
    """
    return int(Fraction(converter_amount_out) - trade_input_amount)


class TradeNegotiator:
    """
    Negotiate trades under a price impact ceiling.

    A quote whose impact exceeds the threshold is rejected with a
    ``GetBestTrade`` "High price impact" event and re-quoted at 75% of the
    converter's amount, up to ``max_retries`` times and never below
    ``min_amount``.
    """

    def __init__(
        self,
        config: KeeperConfig,
        gateway: ChainGateway,
        optimizer: RouteOptimizer,
        channel: EventChannel,
    ):
        self.gateway = gateway
        self.optimizer = optimizer
        self.channel = channel
        self.threshold = config.negotiation.price_impact_threshold
        self.max_retries = config.negotiation.max_retries
        self.min_amount = config.negotiation.min_amount

    async def converter_amounts(
        self, converter: str, want_to_receive: str, want_to_send: str, amount: int
    ) -> Tuple[int, int]:
        """(amount the converter releases, amount it expects in return)."""
        amount_out, amount_in = await self.gateway.simulate(
            ContractCall(
                converter,
                TOKEN_CONVERTER_ABI,
                "getUpdatedAmountIn",
                (amount, want_to_send, want_to_receive),
            )
        )
        return amount_out, amount_in

    async def best_trade(
        self, converter: str, want_to_receive: str, want_to_send: str, amount: int
    ) -> Tuple[TradeRoute, Tuple[int, int]]:
        """
        Find the best route buying back what the converter asks for.

        Args:
            converter: Token converter address
            want_to_receive: Token the keeper receives from the converter
            want_to_send: Token the keeper sends to the converter
            amount: Requested amount of ``want_to_receive``

        Returns:
            (trade, (converter amount out, converter amount in))

        Raises:
            NoTradeFoundError: No route exists
            PriceImpactError: Impact stayed above the threshold
            NegotiationError: The converter or optimizer call failed
            PathValidationError: The route's path does not match the tokens
        """
        errors = dict(
            converter=converter, token_to_receive=want_to_receive, token_to_send=want_to_send
        )
        attempts = 0
        while True:
            try:
                amounts = await self.converter_amounts(
                    converter, want_to_receive, want_to_send, amount
                )
                route = await self.optimizer.best_route(
                    amounts[1], want_to_receive, want_to_send, exact_output=True
                )
            except NetworkError:
                raise
            except Exception as e:
                self.optimizer.invalidate_cache()
                reason = revert_reason(e) or str(e)
                raise NegotiationError(f"Error getting best trade - {reason}", **errors) from e

            if route is None:
                raise NoTradeFoundError("No trade found", **errors)

            impact = self.optimizer.price_impact(route)
            if impact <= self.threshold:
                break

            attempts += 1
            self.channel.publish(
                GetBestTradeEvent(
                    error=HIGH_PRICE_IMPACT,
                    context=GetBestTradeContext(
                        converter=converter,
                        token_to_receive_from_converter=want_to_receive,
                        token_to_send_to_converter=want_to_send,
                        price_impact=format_percent(impact),
                    ),
                )
            )
            next_amount = int(amounts[0] * IMPACT_BACKOFF_RATIO)
            if attempts > self.max_retries or next_amount < self.min_amount:
                raise PriceImpactError(
                    "Price impact could not be reduced",
                    price_impact=format_percent(impact),
                    attempts=attempts,
                    **errors,
                )
            logger.info(
                f"Price impact {format_percent(impact)}% above threshold, "
                f"retrying {converter} with {next_amount}"
            )
            amount = next_amount

        trade = TradeRoute(
            input_token=TokenAmount(route.input_token, Fraction(route.input_amount)),
            output_token=TokenAmount(route.output_token, Fraction(route.output_amount)),
            path=route.exact_output_path(),
        )
        validate_path(trade.path, want_to_send, want_to_receive)
        return trade, amounts

    async def prepare_conversion(
        self, converter: str, asset_out: str, asset_in: str, amount_out: int
    ) -> Optional[PreparedConversion]:
        """
        Negotiate a conversion and report it with a ``GetBestTrade`` event.

        Returns:
            The prepared conversion, or None when negotiation failed
        """
        trade = None
        amounts = None
        error = None
        try:
            trade, amounts = await self.best_trade(converter, asset_out, asset_in, amount_out)
        except (NegotiationError, PathValidationError) as e:
            error = str(e)

        trade_amount = None
        swap = None
        if trade is not None:
            trade_amount = TradeAmount(amount_out=amounts[0], amount_in=amounts[1])
            swap = SwapSummary(
                input_token=SwapLeg(
                    amount=str(int(trade.input_token.amount)),
                    token=trade.input_token.address,
                ),
                output_token=SwapLeg(
                    amount=str(int(trade.output_token.amount)),
                    token=trade.output_token.address,
                ),
            )
        self.channel.publish(
            GetBestTradeEvent(
                error=error,
                context=GetBestTradeContext(
                    converter=converter,
                    token_to_receive_from_converter=asset_out,
                    token_to_send_to_converter=asset_in,
                    trade_amount=trade_amount,
                    swap=swap,
                ),
            )
        )

        if trade is None:
            return None
        return PreparedConversion(
            trade=trade,
            amount=amounts[0],
            min_income=compute_min_income(amounts[0], trade.input_token.amount),
        )
