"""Tests for conversion execution."""

from fractions import Fraction
from unittest.mock import AsyncMock, Mock

import pytest
from conftest import CONVERTER, OPERATOR, TX_HASH, USDT, WALLET, WBNB, XVS

from converter_keeper.allowance import AllowanceGuard
from converter_keeper.chain.path import encode_exact_output_path
from converter_keeper.constants import LiquidityProvider
from converter_keeper.events import EventKind
from converter_keeper.exceptions import ExecutionError, NetworkError
from converter_keeper.executor import ConversionExecutor, describe_failure
from converter_keeper.types import TokenAmount, TradeRoute


def trade(hops=((USDT, 500, XVS),)):
    return TradeRoute(
        input_token=TokenAmount(USDT, Fraction(1200)),
        output_token=TokenAmount(XVS, Fraction(675)),
        path=encode_exact_output_path(hops),
    )


def executor_for(config, gateway, channel):
    return ConversionExecutor(config, gateway, AllowanceGuard(config, gateway), channel)


class TestArbitrage:
    @pytest.mark.asyncio
    async def test_subsidy_is_approved_before_convert(self, keeper_config, gateway, channel):
        gateway.read.return_value = 0
        executor = executor_for(keeper_config, gateway, channel)

        event = await executor.arbitrage(CONVERTER, trade(), 1000, -200)

        writes = [c.args[0] for c in gateway.write.call_args_list]
        assert [w.function_name for w in writes] == ["approve", "convert"]
        approve = writes[0]
        assert approve.address == USDT
        assert approve.args == (OPERATOR, 200)
        assert gateway.wait_for_receipt.await_args_list[0].kwargs["confirmations"] == 4

        assert event.kind is EventKind.ARBITRAGE
        assert event.trx == TX_HASH
        assert event.error is None
        assert event.block_number == 1004
        assert channel.history[-1] is event

    @pytest.mark.asyncio
    async def test_convert_arguments(self, keeper_config, gateway, channel):
        executor = executor_for(keeper_config, gateway, channel)

        event = await executor.arbitrage(CONVERTER, trade(), 1000, 25)

        args = event.context
        assert args.liquidity_provider is LiquidityProvider.PANCAKESWAP
        assert args.beneficiary == WALLET
        assert args.token_to_receive_from_converter == USDT
        assert args.token_to_send_to_converter == XVS
        assert args.amount == 1000
        assert args.min_income == 25
        assert args.converter == CONVERTER
        assert args.deadline == 1_700_000_000 + 60

        convert = gateway.write.call_args.args[0]
        assert convert.address == OPERATOR
        assert convert.args == (args.as_tuple(),)
        assert gateway.write.call_args.kwargs["gas"] == 250_000
        # positive income needs no approval
        gateway.read.assert_not_called()

    @pytest.mark.asyncio
    async def test_dry_run_only_estimates(self, dry_run_config, gateway, channel):
        executor = executor_for(dry_run_config, gateway, channel)

        event = await executor.arbitrage(CONVERTER, trade(), 1000, -200)

        gateway.estimate_gas.assert_awaited_once()
        gateway.write.assert_not_called()
        gateway.read.assert_not_called()
        assert event.trx is None
        assert event.error is None
        assert event.block_number == 1000

    @pytest.mark.asyncio
    async def test_estimate_failure_is_simulation_error(self, keeper_config, gateway, channel):
        gateway.estimate_gas.side_effect = ValueError("out of gas")
        executor = executor_for(keeper_config, gateway, channel)

        event = await executor.arbitrage(CONVERTER, trade(), 1000, 5)

        assert event.error == "simulation: out of gas"
        assert event.trx is None
        gateway.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_mismatched_path_is_simulation_error(self, keeper_config, gateway, channel):
        executor = executor_for(keeper_config, gateway, channel)

        event = await executor.arbitrage(CONVERTER, trade(hops=((USDT, 500, WBNB),)), 1000, 5)

        assert event.error.startswith("simulation: InvalidSwapStart")
        gateway.estimate_gas.assert_not_called()

    @pytest.mark.asyncio
    async def test_revert_after_submit_is_execution_error(self, keeper_config, gateway, channel):
        gateway.wait_for_receipt.side_effect = ExecutionError(
            f"Transaction {TX_HASH} reverted in block 1004", trx=TX_HASH
        )
        executor = executor_for(keeper_config, gateway, channel)

        event = await executor.arbitrage(CONVERTER, trade(), 1000, 5)

        assert event.error == f"Execution: Transaction {TX_HASH} reverted in block 1004"
        assert event.trx == TX_HASH

    @pytest.mark.asyncio
    async def test_failed_approval_is_execution_error(self, keeper_config, gateway, channel):
        gateway.read.return_value = 0
        gateway.write.side_effect = ValueError("nonce too low")
        executor = executor_for(keeper_config, gateway, channel)

        event = await executor.arbitrage(CONVERTER, trade(), 1000, -200)

        assert event.error == "Execution: nonce too low"
        gateway.estimate_gas.assert_not_called()

    @pytest.mark.asyncio
    async def test_network_error_propagates(self, keeper_config, gateway, channel):
        gateway.estimate_gas.side_effect = NetworkError("RPC down")
        executor = executor_for(keeper_config, gateway, channel)

        with pytest.raises(NetworkError):
            await executor.arbitrage(CONVERTER, trade(), 1000, 5)
        assert channel.history == ()


def test_describe_failure():
    assert describe_failure(ExecutionError("reverted")) == "reverted"
    assert describe_failure(ValueError("boom")) == "boom"


@pytest.mark.asyncio
async def test_allowance_failure_is_a_simulation_error(keeper_config, channel):
    gateway = Mock(address=WALLET)
    guard = Mock()
    guard.ensure_allowance = AsyncMock(side_effect=ExecutionError("approval reverted"))
    gateway.get_block = AsyncMock(return_value=Mock(number=1, timestamp=0))
    executor = ConversionExecutor(keeper_config, gateway, guard, channel)

    event = await executor.arbitrage(CONVERTER, trade(), 1000, -200)

    guard.ensure_allowance.assert_awaited_once_with(USDT, WALLET, OPERATOR, 200)
    assert event.error == "simulation: approval reverted"
    assert event.trx is None
    gateway.estimate_gas.assert_not_called()
