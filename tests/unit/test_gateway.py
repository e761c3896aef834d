"""Tests for the chain gateway."""

from unittest.mock import MagicMock, Mock

import pytest
from conftest import OPERATOR, TX_HASH, USDT, WALLET, XVS, make_config
from eth_abi import encode
from web3 import Web3
from web3.exceptions import ContractLogicError

from converter_keeper.chain.abis import ERC20_ABI
from converter_keeper.chain.gateway import (
    ChainGateway,
    ContractCall,
    decode_custom_error,
    revert_reason,
)
from converter_keeper.exceptions import ExecutionError, NetworkError


def error_data(signature, types=(), values=()):
    selector = Web3.keccak(text=signature)[:4].hex().removeprefix("0x")
    return "0x" + selector + encode(list(types), list(values)).hex()


@pytest.fixture
def w3():
    web3 = MagicMock()
    web3.to_hex = Web3.to_hex
    web3.eth.block_number = 13
    web3.eth.get_transaction_receipt.return_value = {
        "blockNumber": 10,
        "status": 1,
        "gasUsed": 21_000,
    }
    return web3


@pytest.fixture
def chain(w3):
    account = Mock(address=WALLET)
    account.sign_transaction.return_value = Mock(raw_transaction=b"\x01")
    return ChainGateway(make_config(), web3=w3, account=account)


class TestCustomErrors:
    def test_decode_with_arguments(self):
        data = error_data("DeadlinePassed(uint256,uint256)", ["uint256", "uint256"], [5, 3])
        assert decode_custom_error(data) == "DeadlinePassed(5, 3)"

    def test_decode_addresses(self):
        data = error_data(
            "InvalidSwapStart(address,address)", ["address", "address"], [XVS, USDT]
        )
        decoded = decode_custom_error(data)
        assert decoded.startswith("InvalidSwapStart(")
        assert XVS.lower() in decoded.lower()

    def test_decode_without_arguments(self):
        assert decode_custom_error(error_data("EmptySwap()")) == "EmptySwap()"

    @pytest.mark.parametrize("data", [None, "0x", "nothex", "0xdeadbeef"])
    def test_unknown(self, data):
        assert decode_custom_error(data) is None


class TestRevertReason:
    def test_reason_string(self):
        assert revert_reason(ContractLogicError("execution reverted: paused")) == "paused"

    def test_bare_revert(self):
        assert revert_reason(ContractLogicError("execution reverted")) is None

    def test_other_errors(self):
        assert revert_reason(ValueError("boom")) is None


class TestChainGateway:
    def test_address(self, chain):
        assert chain.address == WALLET

    @pytest.mark.asyncio
    async def test_connection_errors_become_network_errors(self, chain, w3):
        w3.eth.get_block.side_effect = ConnectionError("refused")
        with pytest.raises(NetworkError, match="refused"):
            await chain.get_block("latest")

    @pytest.mark.asyncio
    async def test_get_block(self, chain, w3):
        w3.eth.get_block.return_value = {"number": 9, "timestamp": 1234}
        block = await chain.get_block("latest")
        assert (block.number, block.timestamp) == (9, 1234)

    @pytest.mark.asyncio
    async def test_multicall_of_nothing(self, chain, w3):
        assert await chain.multicall([]) == []
        w3.eth.contract.assert_not_called()

    @pytest.mark.asyncio
    async def test_nonces_are_sequential(self, chain, w3):
        w3.eth.get_transaction_count.return_value = 7
        w3.eth.send_raw_transaction.return_value = bytes.fromhex(TX_HASH[2:])
        function = w3.eth.contract.return_value.functions.__getitem__.return_value
        function.return_value.build_transaction.side_effect = lambda params: dict(params)
        call = ContractCall(USDT, ERC20_ABI, "approve", (OPERATOR, 1))

        assert await chain.write(call) == TX_HASH
        await chain.write(call, gas=60_000)

        built = [c.args[0] for c in function.return_value.build_transaction.call_args_list]
        assert [p["nonce"] for p in built] == [7, 8]
        assert built[0]["chainId"] == 56
        assert "gas" not in built[0]
        assert built[1]["gas"] == 60_000
        w3.eth.get_transaction_count.assert_called_once_with(WALLET, "pending")

    @pytest.mark.asyncio
    async def test_failed_broadcast_resets_nonce(self, chain, w3):
        w3.eth.get_transaction_count.return_value = 7
        w3.eth.send_raw_transaction.side_effect = [ValueError("nonce too low"), b"\x02" * 32]
        call = ContractCall(USDT, ERC20_ABI, "approve", (OPERATOR, 1))

        with pytest.raises(ValueError):
            await chain.write(call)
        await chain.write(call)

        assert w3.eth.get_transaction_count.call_count == 2

    @pytest.mark.asyncio
    async def test_receipt_with_confirmations(self, chain):
        receipt = await chain.wait_for_receipt(TX_HASH, confirmations=4, poll_interval=0.01)
        assert receipt.block_number == 10
        assert receipt.gas_used == 21_000
        assert receipt.succeeded

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, chain, w3):
        w3.eth.get_transaction_receipt.return_value["status"] = 0
        with pytest.raises(ExecutionError, match="reverted"):
            await chain.wait_for_receipt(TX_HASH, poll_interval=0.01)

    @pytest.mark.asyncio
    async def test_receipt_timeout(self, chain):
        with pytest.raises(ExecutionError, match="not confirmed"):
            await chain.wait_for_receipt(
                TX_HASH, confirmations=10, timeout=0.05, poll_interval=0.01
            )
