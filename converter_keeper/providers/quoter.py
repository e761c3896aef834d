"""
Quoter-backed route optimizer for Uniswap V3 and PancakeSwap V3 style venues.

Candidate routes are direct pools at every configured fee tier plus two-hop
routes through the configured intermediate tokens. Every candidate is quoted
in one multicall and the cheapest (exact output) or richest (exact input)
quote wins.
"""

import time
from fractions import Fraction
from typing import Dict, List, Optional, Tuple

from ..chain.abis import QUOTER_V2_ABI, V3_FACTORY_ABI, V3_POOL_ABI
from ..chain.gateway import ChainGateway, ContractCall
from ..chain.path import Hop, encode_path, encode_exact_output_path
from ..config_loader import KeeperConfig
from ..utils import get_logger, same_address
from .swap_provider import Route, RouteOptimizer

logger = get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
Q192 = 2**192

PoolKey = Tuple[str, str, int]


def _pool_key(token_a: str, token_b: str, fee: int) -> PoolKey:
    a, b = sorted((token_a.lower(), token_b.lower()))
    return (a, b, fee)


def hop_mid_price(token_in: str, token_out: str, sqrt_price_x96: int) -> Optional[Fraction]:
    """Spot price of one hop as token_out per token_in."""
    if sqrt_price_x96 <= 0:
        return None
    token1_per_token0 = Fraction(sqrt_price_x96 * sqrt_price_x96, Q192)
    if int(token_in, 16) < int(token_out, 16):
        return token1_per_token0
    return 1 / token1_per_token0


class QuoterRouteOptimizer(RouteOptimizer):
    """
    Route optimizer over a V3 factory and QuoterV2.

    Candidate pool discovery is cached per token pair for 15 minutes and
    dropped by ``invalidate_cache``.
    """

    CANDIDATE_TTL_SECONDS = 15 * 60

    def __init__(self, config: KeeperConfig, gateway: ChainGateway):
        settings = config.route_optimizer
        self.liquidity_provider = settings.provider
        self.gateway = gateway
        self.quoter = settings.quoter
        self.factory = settings.factory
        self.fee_tiers = tuple(settings.fee_tiers)
        self.intermediate_tokens = tuple(settings.intermediate_tokens)
        self._candidates: Dict[Tuple[str, str], Tuple[float, List[Tuple[Hop, ...]]]] = {}
        self._pools: Dict[PoolKey, str] = {}

    def invalidate_cache(self):
        self._candidates = {}
        logger.debug("Candidate pool cache invalidated")

    def _candidate_hops(self, token_in: str, token_out: str) -> List[Tuple[Hop, ...]]:
        routes: List[Tuple[Hop, ...]] = [
            ((token_in, fee, token_out),) for fee in self.fee_tiers
        ]
        for middle in self.intermediate_tokens:
            if same_address(middle, token_in) or same_address(middle, token_out):
                continue
            for fee_a in self.fee_tiers:
                for fee_b in self.fee_tiers:
                    routes.append(
                        ((token_in, fee_a, middle), (middle, fee_b, token_out))
                    )
        return routes

    async def candidate_routes(self, token_in: str, token_out: str) -> List[Tuple[Hop, ...]]:
        """Candidate routes whose pools all exist, cached per pair."""
        cache_key = (token_in.lower(), token_out.lower())
        cached = self._candidates.get(cache_key)
        if cached and cached[0] > time.time():
            return cached[1]

        routes = self._candidate_hops(token_in, token_out)
        unknown: Dict[PoolKey, Hop] = {}
        for route in routes:
            for a, fee, b in route:
                key = _pool_key(a, b, fee)
                if key not in self._pools:
                    unknown.setdefault(key, (a, fee, b))

        if unknown:
            results = await self.gateway.multicall(
                [
                    ContractCall(self.factory, V3_FACTORY_ABI, "getPool", (a, b, fee), True)
                    for a, fee, b in unknown.values()
                ]
            )
            for key, result in zip(unknown.keys(), results):
                if result.success and not same_address(result.value, ZERO_ADDRESS):
                    self._pools[key] = result.value

        live = [
            route
            for route in routes
            if all(_pool_key(a, b, fee) in self._pools for a, fee, b in route)
        ]
        self._candidates[cache_key] = (time.time() + self.CANDIDATE_TTL_SECONDS, live)
        logger.debug(f"{len(live)} of {len(routes)} candidate routes have pools")
        return live

    async def _mid_price(self, hops: Tuple[Hop, ...]) -> Optional[Fraction]:
        pools = [self._pools[_pool_key(a, b, fee)] for a, fee, b in hops]
        results = await self.gateway.multicall(
            [ContractCall(pool, V3_POOL_ABI, "slot0", allow_failure=True) for pool in pools]
        )
        price = Fraction(1)
        for (a, _, b), result in zip(hops, results):
            if not result.success:
                return None
            hop_price = hop_mid_price(a, b, result.value)
            if hop_price is None:
                return None
            price *= hop_price
        return price

    async def best_route(
        self,
        amount_out: int,
        token_in: str,
        token_out: str,
        exact_output: bool = True,
    ) -> Optional[Route]:
        """
        Quote every live candidate and keep the best.

        With ``exact_output`` the amount is the desired output and the route
        needing the smallest input wins; otherwise the amount is the input
        and the largest output wins.
        """
        candidates = await self.candidate_routes(token_in, token_out)
        if not candidates:
            return None

        if exact_output:
            calls = [
                ContractCall(
                    self.quoter,
                    QUOTER_V2_ABI,
                    "quoteExactOutput",
                    (encode_exact_output_path(hops), amount_out),
                    True,
                )
                for hops in candidates
            ]
        else:
            calls = [
                ContractCall(
                    self.quoter,
                    QUOTER_V2_ABI,
                    "quoteExactInput",
                    (
                        encode_path(
                            [hops[0][0]] + [h[2] for h in hops], [h[1] for h in hops]
                        ),
                        amount_out,
                    ),
                    True,
                )
                for hops in candidates
            ]
        results = await self.gateway.multicall(calls)

        best_hops = None
        best_amount = None
        for hops, result in zip(candidates, results):
            if not result.success:
                continue
            quoted = result.value[0]
            if quoted <= 0:
                continue
            better = (
                best_amount is None
                or (exact_output and quoted < best_amount)
                or (not exact_output and quoted > best_amount)
            )
            if better:
                best_hops, best_amount = hops, quoted

        if best_hops is None:
            logger.info(f"No quotable route {token_in} -> {token_out}")
            return None

        mid_price = await self._mid_price(best_hops)
        if exact_output:
            input_amount, output_amount = best_amount, amount_out
        else:
            input_amount, output_amount = amount_out, best_amount

        return Route(
            input_token=token_in,
            input_amount=input_amount,
            output_token=token_out,
            output_amount=output_amount,
            hops=best_hops,
            mid_price=mid_price,
        )
