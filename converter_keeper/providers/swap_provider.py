"""
Route optimizer boundary.

The negotiator only needs a best route for an exact output amount and a
price impact figure for that route; everything else about routing stays
behind this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional, Tuple

from ..chain.path import Hop, encode_exact_output_path
from ..constants import LiquidityProvider


@dataclass(frozen=True)
class Route:
    """
    A quoted swap route.

    Attributes:
        input_token: Token paid into the route
        input_amount: Amount paid (smallest unit)
        output_token: Token delivered by the route
        output_amount: Amount delivered (smallest unit)
        hops: (token_in, fee, token_out) in swap direction
        mid_price: Product of the pools' spot prices (output per input),
            before the swap; None when unknown
    """

    input_token: str
    input_amount: int
    output_token: str
    output_amount: int
    hops: Tuple[Hop, ...]
    mid_price: Optional[Fraction] = None

    def exact_output_path(self) -> bytes:
        return encode_exact_output_path(self.hops)


class RouteOptimizer(ABC):
    """Abstract best-route provider for one liquidity venue."""

    liquidity_provider: LiquidityProvider

    @abstractmethod
    async def best_route(
        self,
        amount_out: int,
        token_in: str,
        token_out: str,
        exact_output: bool = True,
    ) -> Optional[Route]:
        """
        Best route delivering exactly ``amount_out`` of ``token_out`` for
        ``token_in``. Returns None when no route exists.
        """

    def price_impact(self, route: Route) -> Fraction:
        """
        Fractional gap between the spot output and the quoted output.

        ``(spot_out - quoted_out) / spot_out`` where ``spot_out`` is the
        input amount converted at the pools' mid prices. Returns 0 when the
        mid price is unknown.
        """
        if route.mid_price is None or route.input_amount <= 0:
            return Fraction(0)
        spot_out = route.mid_price * route.input_amount
        if spot_out <= 0:
            return Fraction(0)
        return max(Fraction(0), (spot_out - route.output_amount) / spot_out)

    def invalidate_cache(self):
        """Drop cached candidate pools; a no-op for stateless optimizers."""
        return None
