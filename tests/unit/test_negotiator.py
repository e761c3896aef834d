"""Tests for trade negotiation."""

from fractions import Fraction
from unittest.mock import AsyncMock, Mock

import pytest
from conftest import CONVERTER, USDT, WBNB, XVS, make_config

from converter_keeper.chain.path import decode_path
from converter_keeper.events import EventKind
from converter_keeper.exceptions import (
    NegotiationError,
    NetworkError,
    NoTradeFoundError,
    PriceImpactError,
)
from converter_keeper.negotiator import HIGH_PRICE_IMPACT, TradeNegotiator, compute_min_income
from converter_keeper.providers.swap_provider import Route


def route(input_amount, output_amount, hops=None):
    return Route(
        input_token=USDT,
        input_amount=input_amount,
        output_token=XVS,
        output_amount=output_amount,
        hops=hops or ((USDT, 500, XVS),),
    )


@pytest.fixture
def optimizer():
    opt = Mock()
    opt.best_route = AsyncMock(return_value=route(700, 675))
    opt.price_impact = Mock(return_value=Fraction(1, 1000))
    opt.invalidate_cache = Mock()
    return opt


def negotiator_for(gateway, optimizer, channel, **negotiation):
    config = make_config(negotiation=negotiation) if negotiation else make_config()
    return TradeNegotiator(config, gateway, optimizer, channel)


def test_min_income_is_exact():
    assert compute_min_income(1000, Fraction(900)) == 100
    assert compute_min_income(1000, Fraction(1201, 1)) == -201
    # truncated toward zero, never floored
    assert compute_min_income(1000, Fraction(20001, 20)) == 0
    assert compute_min_income(1000, Fraction(19999, 20)) == 0


class TestBestTrade:
    @pytest.mark.asyncio
    async def test_converter_quote_is_bought_back(self, gateway, optimizer, channel):
        gateway.simulate.return_value = (1000, 675)
        negotiator = negotiator_for(gateway, optimizer, channel)

        trade, amounts = await negotiator.best_trade(CONVERTER, USDT, XVS, 1000)

        assert amounts == (1000, 675)
        call = gateway.simulate.call_args.args[0]
        assert call.function_name == "getUpdatedAmountIn"
        assert call.args == (1000, XVS, USDT)
        optimizer.best_route.assert_awaited_once_with(675, USDT, XVS, exact_output=True)
        assert trade.input_token.address == USDT
        assert trade.input_token.amount == 700
        tokens, _ = decode_path(trade.path)
        assert tokens[0] == XVS
        assert tokens[-1] == USDT

    @pytest.mark.asyncio
    async def test_high_impact_is_retried_at_reduced_amount(self, gateway, optimizer, channel):
        gateway.simulate.side_effect = [(1000, 900), (750, 675)]
        optimizer.best_route.side_effect = [route(950, 900), route(700, 675)]
        optimizer.price_impact.side_effect = [Fraction(9, 1000), Fraction(2, 1000)]
        negotiator = negotiator_for(
            gateway, optimizer, channel, price_impact_threshold_pct=0.5
        )

        trade, amounts = await negotiator.best_trade(CONVERTER, USDT, XVS, 1000)

        assert gateway.simulate.call_args_list[1].args[0].args[0] == 750
        assert amounts == (750, 675)
        assert compute_min_income(amounts[0], trade.input_token.amount) == 50

        rejected = channel.events_of(EventKind.GET_BEST_TRADE)
        assert len(rejected) == 1
        assert rejected[0].error == HIGH_PRICE_IMPACT
        assert rejected[0].context.price_impact == "0.90"

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, gateway, optimizer, channel):
        gateway.simulate.return_value = (1000, 900)
        optimizer.price_impact.return_value = Fraction(1, 10)
        negotiator = negotiator_for(gateway, optimizer, channel, max_retries=2)

        with pytest.raises(PriceImpactError, match="could not be reduced") as exc_info:
            await negotiator.best_trade(CONVERTER, USDT, XVS, 1000)

        assert exc_info.value.attempts == 3
        assert gateway.simulate.await_count == 3
        assert len(channel.events_of(EventKind.GET_BEST_TRADE)) == 3

    @pytest.mark.asyncio
    async def test_retry_stops_below_min_amount(self, gateway, optimizer, channel):
        gateway.simulate.return_value = (3, 2)
        optimizer.price_impact.return_value = Fraction(1, 10)
        negotiator = negotiator_for(gateway, optimizer, channel, min_amount=3)

        with pytest.raises(PriceImpactError):
            await negotiator.best_trade(CONVERTER, USDT, XVS, 3)
        assert gateway.simulate.await_count == 1

    @pytest.mark.asyncio
    async def test_no_route(self, gateway, optimizer, channel):
        gateway.simulate.return_value = (1000, 900)
        optimizer.best_route.return_value = None
        negotiator = negotiator_for(gateway, optimizer, channel)

        with pytest.raises(NoTradeFoundError, match="No trade found"):
            await negotiator.best_trade(CONVERTER, USDT, XVS, 1000)

    @pytest.mark.asyncio
    async def test_optimizer_failure_invalidates_cache(self, gateway, optimizer, channel):
        gateway.simulate.return_value = (1000, 900)
        optimizer.best_route.side_effect = ValueError("quoter unavailable")
        negotiator = negotiator_for(gateway, optimizer, channel)

        with pytest.raises(NegotiationError, match="Error getting best trade - quoter unavailable"):
            await negotiator.best_trade(CONVERTER, USDT, XVS, 1000)
        optimizer.invalidate_cache.assert_called_once()

    @pytest.mark.asyncio
    async def test_converter_failure_invalidates_cache(self, gateway, optimizer, channel):
        gateway.simulate.side_effect = RuntimeError("conversion paused")
        negotiator = negotiator_for(gateway, optimizer, channel)

        with pytest.raises(NegotiationError, match="conversion paused"):
            await negotiator.best_trade(CONVERTER, USDT, XVS, 1000)
        optimizer.invalidate_cache.assert_called_once()

    @pytest.mark.asyncio
    async def test_network_error_propagates(self, gateway, optimizer, channel):
        gateway.simulate.side_effect = NetworkError("RPC down")
        negotiator = negotiator_for(gateway, optimizer, channel)

        with pytest.raises(NetworkError):
            await negotiator.best_trade(CONVERTER, USDT, XVS, 1000)
        optimizer.invalidate_cache.assert_not_called()


class TestPrepareConversion:
    @pytest.mark.asyncio
    async def test_success_publishes_trade(self, gateway, optimizer, channel):
        gateway.simulate.return_value = (1000, 675)
        optimizer.best_route.return_value = route(
            1200, 675, hops=((USDT, 500, WBNB), (WBNB, 2500, XVS))
        )
        negotiator = negotiator_for(gateway, optimizer, channel)

        prepared = await negotiator.prepare_conversion(CONVERTER, USDT, XVS, 1000)

        assert prepared.amount == 1000
        assert prepared.min_income == -200
        event = channel.history[-1]
        assert event.kind is EventKind.GET_BEST_TRADE
        assert event.error is None
        assert event.context.trade_amount.amount_out == 1000
        assert event.context.trade_amount.amount_in == 675
        assert event.context.swap.input_token.amount == "1200"
        assert event.context.swap.input_token.token == USDT
        assert event.context.swap.output_token.token == XVS

    @pytest.mark.asyncio
    async def test_failure_publishes_error(self, gateway, optimizer, channel):
        gateway.simulate.return_value = (1000, 675)
        optimizer.best_route.return_value = None
        negotiator = negotiator_for(gateway, optimizer, channel)

        assert await negotiator.prepare_conversion(CONVERTER, USDT, XVS, 1000) is None

        event = channel.history[-1]
        assert event.error == "No trade found"
        assert event.context.converter == CONVERTER
        assert event.context.token_to_receive_from_converter == USDT
        assert event.context.token_to_send_to_converter == XVS
        assert event.context.swap is None

    @pytest.mark.asyncio
    async def test_mismatched_path_is_reported(self, gateway, optimizer, channel):
        gateway.simulate.return_value = (1000, 675)
        optimizer.best_route.return_value = route(700, 675, hops=((USDT, 500, WBNB),))
        negotiator = negotiator_for(gateway, optimizer, channel)

        assert await negotiator.prepare_conversion(CONVERTER, USDT, XVS, 1000) is None
        assert "InvalidSwapStart" in channel.history[-1].error
