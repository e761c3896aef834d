"""Tests for the quoter-backed route optimizer."""

from fractions import Fraction
from unittest.mock import Mock

import pytest
from conftest import FACTORY, QUOTER, USDT, WBNB, XVS, failed, make_config, ok

from converter_keeper.chain.path import decode_path
from converter_keeper.providers import QuoterRouteOptimizer, Route
from converter_keeper.providers.quoter import ZERO_ADDRESS, hop_mid_price

POOL_DIRECT = "0x1000000000000000000000000000000000000001"
POOL_USDT_WBNB = "0x1000000000000000000000000000000000000002"
POOL_WBNB_XVS = "0x1000000000000000000000000000000000000003"
Q96 = 2**96


def optimizer_for(gateway, intermediates=(WBNB,)):
    config = make_config(
        route_optimizer={"fee_tiers": (500,), "intermediate_tokens": intermediates}
    )
    return QuoterRouteOptimizer(config, gateway)


def quote(amount):
    return ok((amount, [], [], 100_000))


class TestHopMidPrice:
    def test_token0_to_token1(self):
        # USDT sorts before XVS, so USDT is token0
        assert hop_mid_price(USDT, XVS, 2 * Q96) == 4

    def test_token1_to_token0(self):
        assert hop_mid_price(XVS, USDT, 2 * Q96) == Fraction(1, 4)

    def test_uninitialized_pool(self):
        assert hop_mid_price(USDT, XVS, 0) is None


class TestPriceImpact:
    def route(self, mid_price, input_amount=1000, output_amount=990):
        return Route(USDT, input_amount, XVS, output_amount, ((USDT, 500, XVS),), mid_price)

    def test_impact_against_spot(self):
        assert optimizer_for(Mock()).price_impact(self.route(Fraction(1))) == Fraction(1, 100)

    def test_unknown_mid_price(self):
        assert optimizer_for(Mock()).price_impact(self.route(None)) == 0

    def test_better_than_spot_is_zero(self):
        route = self.route(Fraction(1), output_amount=1001)
        assert optimizer_for(Mock()).price_impact(route) == 0


class TestQuoterRouteOptimizer:
    @pytest.mark.asyncio
    async def test_candidates_skip_missing_pools(self, gateway):
        gateway.multicall.return_value = [ok(POOL_DIRECT), ok(ZERO_ADDRESS), ok(POOL_WBNB_XVS)]
        optimizer = optimizer_for(gateway)

        routes = await optimizer.candidate_routes(USDT, XVS)

        assert routes == [((USDT, 500, XVS),)]
        calls = gateway.multicall.call_args.args[0]
        assert {c.address for c in calls} == {FACTORY}
        assert [c.args for c in calls] == [
            (USDT, XVS, 500),
            (USDT, WBNB, 500),
            (WBNB, XVS, 500),
        ]

    @pytest.mark.asyncio
    async def test_candidates_are_cached(self, gateway):
        gateway.multicall.return_value = [ok(POOL_DIRECT)]
        optimizer = optimizer_for(gateway, intermediates=())

        await optimizer.candidate_routes(USDT, XVS)
        await optimizer.candidate_routes(USDT, XVS)
        assert gateway.multicall.await_count == 1

        optimizer.invalidate_cache()
        assert optimizer._candidates == {}
        # known pools survive invalidation
        assert await optimizer.candidate_routes(USDT, XVS) == [((USDT, 500, XVS),)]
        assert gateway.multicall.await_count == 1

    @pytest.mark.asyncio
    async def test_exact_output_picks_cheapest_input(self, gateway):
        gateway.multicall.side_effect = [
            [ok(POOL_DIRECT), ok(POOL_USDT_WBNB), ok(POOL_WBNB_XVS)],
            [quote(700), quote(650)],
            [ok(Q96), ok(Q96)],
        ]
        optimizer = optimizer_for(gateway)

        route = await optimizer.best_route(675, USDT, XVS, exact_output=True)

        assert route.input_token == USDT
        assert route.input_amount == 650
        assert route.output_token == XVS
        assert route.output_amount == 675
        assert route.hops == ((USDT, 500, WBNB), (WBNB, 500, XVS))
        assert route.mid_price is not None

        quote_calls = gateway.multicall.call_args_list[1].args[0]
        assert {c.address for c in quote_calls} == {QUOTER}
        assert quote_calls[0].function_name == "quoteExactOutput"
        tokens, _ = decode_path(quote_calls[1].args[0])
        assert tokens == [XVS, WBNB, USDT]
        assert quote_calls[1].args[1] == 675

    @pytest.mark.asyncio
    async def test_exact_input_picks_largest_output(self, gateway):
        gateway.multicall.side_effect = [
            [ok(POOL_DIRECT), ok(POOL_USDT_WBNB), ok(POOL_WBNB_XVS)],
            [quote(700), quote(650)],
            [ok(Q96)],
        ]
        optimizer = optimizer_for(gateway)

        route = await optimizer.best_route(1000, USDT, XVS, exact_output=False)

        assert route.input_amount == 1000
        assert route.output_amount == 700
        assert route.hops == ((USDT, 500, XVS),)

    @pytest.mark.asyncio
    async def test_no_quotable_route(self, gateway):
        gateway.multicall.side_effect = [
            [ok(POOL_DIRECT)],
            [failed()],
        ]
        optimizer = optimizer_for(gateway, intermediates=())

        assert await optimizer.best_route(675, USDT, XVS) is None

    @pytest.mark.asyncio
    async def test_no_pools(self, gateway):
        gateway.multicall.return_value = [ok(ZERO_ADDRESS)]
        optimizer = optimizer_for(gateway, intermediates=())

        assert await optimizer.best_route(675, USDT, XVS) is None
