"""
Chain gateway: read and write access to the configured network via web3.

The web3 client is synchronous; every RPC round-trip is pushed to a worker
thread so the keeper's event loop only suspends on network I/O.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from eth_abi import decode
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import (
    ContractCustomError,
    ContractLogicError,
    TransactionNotFound,
)

from ..config_loader import KeeperConfig
from ..exceptions import ExecutionError, NetworkError
from ..utils import get_logger
from .abis import MULTICALL3_ABI, TOKEN_CONVERTER_OPERATOR_ABI

logger = get_logger(__name__)

_REVERT_PREFIX = "execution reverted: "


@dataclass(frozen=True)
class ContractCall:
    """A contract function invocation, independent of any web3 instance."""

    address: str
    abi: list
    function_name: str
    args: tuple = ()
    allow_failure: bool = False


@dataclass(frozen=True)
class CallResult:
    """One multicall outcome."""

    success: bool
    value: Any = None
    error: Optional[str] = None


@dataclass(frozen=True)
class BlockInfo:
    number: int
    timestamp: int


@dataclass(frozen=True)
class TransactionReceipt:
    transaction_hash: str
    block_number: int
    status: int
    gas_used: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


def _abi_type(param: Dict[str, Any]) -> str:
    """Canonical ABI type string, expanding tuple components."""
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_abi_type(c) for c in param["components"])
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def _function_abi(abi: list, name: str) -> Dict[str, Any]:
    for item in abi:
        if item.get("type") == "function" and item.get("name") == name:
            return item
    raise ValueError(f"Function {name} not found in ABI")


def decode_output(abi: list, name: str, data: bytes) -> Any:
    """Decode raw return data; a single output is returned unwrapped."""
    outputs = _function_abi(abi, name)["outputs"]
    types = [_abi_type(o) for o in outputs]
    values = decode(types, data)
    values = tuple(
        Web3.to_checksum_address(v) if t == "address" else v
        for t, v in zip(types, values)
    )
    if len(values) == 1:
        return values[0]
    return values


def _custom_error_selectors(abi: list) -> Dict[str, Dict[str, Any]]:
    selectors = {}
    for item in abi:
        if item.get("type") != "error":
            continue
        types = [_abi_type(i) for i in item["inputs"]]
        signature = f"{item['name']}({','.join(types)})"
        selector = Web3.keccak(text=signature)[:4].hex()
        selectors[selector.removeprefix("0x")] = {"name": item["name"], "types": types}
    return selectors


_KNOWN_ERRORS = _custom_error_selectors(TOKEN_CONVERTER_OPERATOR_ABI)


def decode_custom_error(data: Any) -> Optional[str]:
    """Render an operator custom error, e.g. ``InvalidSwapStart(0xa.., 0xb..)``."""
    if not isinstance(data, str) or not data.startswith("0x") or len(data) < 10:
        return None
    known = _KNOWN_ERRORS.get(data[2:10].lower())
    if known is None:
        return None
    args = decode(known["types"], bytes.fromhex(data[10:])) if known["types"] else ()
    return f"{known['name']}({', '.join(str(a) for a in args)})"


def revert_reason(exc: BaseException) -> Optional[str]:
    """
    Extract the structured revert reason carried by a contract error.

    Returns None when the error carries no reason (plain "execution
    reverted") or is not a contract revert at all.
    """
    if isinstance(exc, ContractCustomError):
        return decode_custom_error(getattr(exc, "data", None)) or str(exc)
    if isinstance(exc, ContractLogicError):
        message = getattr(exc, "message", None) or str(exc)
        if message.startswith(_REVERT_PREFIX):
            return message[len(_REVERT_PREFIX):]
        if message.strip() in ("execution reverted", ""):
            return None
        return message
    return None


class ChainGateway:
    """
    Typed call/transaction interface for one network and one keeper wallet.

    Args:
        config: Keeper configuration (network, RPC URL, private key)
        web3: Pre-built Web3 instance, mainly for tests and forks
        account: Pre-built signer; defaults to the configured private key
    """

    def __init__(
        self,
        config: KeeperConfig,
        web3: Optional[Web3] = None,
        account: Optional[LocalAccount] = None,
    ):
        self.config = config
        self.w3 = web3 or Web3(
            Web3.HTTPProvider(
                config.rpc_url,
                request_kwargs={"timeout": config.execution.rpc_timeout_seconds},
            )
        )
        self.account: LocalAccount = account or Account.from_key(config.private_key)
        self._nonce_lock = asyncio.Lock()
        self._next_nonce: Optional[int] = None
        logger.info(
            f"Chain gateway ready for {config.network.value} (chain {config.chain_id}) "
            f"as {self.account.address}"
        )

    @property
    def address(self) -> str:
        return self.account.address

    def _function(self, call: ContractCall):
        contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(call.address), abi=call.abi
        )
        return contract.functions[call.function_name](*call.args)

    async def _rpc(self, label: str, fn, *args, **kwargs):
        """Run a blocking web3 call on a worker thread, mapping transport errors."""
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ContractLogicError:
            raise
        except (ConnectionError, TimeoutError, OSError) as e:
            raise NetworkError(
                f"RPC {label} failed: {e}", endpoint=self.config.network.value
            )

    async def block_number(self) -> int:
        return await self._rpc("eth_blockNumber", lambda: self.w3.eth.block_number)

    async def get_block(self, identifier="latest") -> BlockInfo:
        block = await self._rpc("eth_getBlockByNumber", self.w3.eth.get_block, identifier)
        return BlockInfo(number=block["number"], timestamp=block["timestamp"])

    async def gas_price(self) -> int:
        return await self._rpc("eth_gasPrice", lambda: self.w3.eth.gas_price)

    async def read(self, call: ContractCall, block_identifier="latest") -> Any:
        """eth_call a view function."""
        fn = self._function(call)
        return await self._rpc(
            call.function_name, fn.call, block_identifier=block_identifier
        )

    async def simulate(self, call: ContractCall, block_identifier="latest") -> Any:
        """eth_call a state-changing function from the keeper account."""
        fn = self._function(call)
        return await self._rpc(
            call.function_name,
            fn.call,
            {"from": self.address},
            block_identifier=block_identifier,
        )

    async def multicall(
        self, calls: Sequence[ContractCall], block_identifier="latest"
    ) -> List[CallResult]:
        """
        Batch calls through Multicall3 ``aggregate3`` in one eth_call.

        Calls with ``allow_failure=False`` make the whole batch revert on
        failure; failed optional calls come back as unsuccessful results.
        """
        if not calls:
            return []

        encoded = [
            (
                Web3.to_checksum_address(call.address),
                call.allow_failure,
                self._function(call)._encode_transaction_data(),
            )
            for call in calls
        ]
        multicall = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.config.addresses.multicall3),
            abi=MULTICALL3_ABI,
        )
        raw = await self._rpc(
            "aggregate3",
            multicall.functions.aggregate3(encoded).call,
            {"from": self.address},
            block_identifier=block_identifier,
        )

        results = []
        for call, (success, return_data) in zip(calls, raw):
            if not success:
                results.append(
                    CallResult(
                        success=False,
                        error=decode_custom_error("0x" + bytes(return_data).hex())
                        or f"{call.function_name} reverted",
                    )
                )
                continue
            results.append(
                CallResult(
                    success=True,
                    value=decode_output(call.abi, call.function_name, return_data)
                    if _function_abi(call.abi, call.function_name)["outputs"]
                    else None,
                )
            )
        return results

    async def estimate_gas(self, call: ContractCall) -> int:
        fn = self._function(call)
        return await self._rpc(
            f"estimate {call.function_name}", fn.estimate_gas, {"from": self.address}
        )

    async def _allocate_nonce(self) -> int:
        if self._next_nonce is None:
            self._next_nonce = await self._rpc(
                "eth_getTransactionCount",
                self.w3.eth.get_transaction_count,
                self.address,
                "pending",
            )
        nonce = self._next_nonce
        self._next_nonce += 1
        return nonce

    async def write(self, call: ContractCall, gas: Optional[int] = None) -> str:
        """
        Sign and broadcast a transaction; returns its hash.

        Nonces are allocated under a lock so concurrent writers never reuse
        one. A failed broadcast resets the local nonce cache.
        """
        fn = self._function(call)
        async with self._nonce_lock:
            nonce = await self._allocate_nonce()
            params = {
                "from": self.address,
                "nonce": nonce,
                "chainId": self.config.chain_id,
            }
            if gas is not None:
                params["gas"] = gas
            try:
                tx = await self._rpc(
                    f"build {call.function_name}", fn.build_transaction, params
                )
                signed = self.account.sign_transaction(tx)
                tx_hash = await self._rpc(
                    "eth_sendRawTransaction",
                    self.w3.eth.send_raw_transaction,
                    signed.raw_transaction,
                )
            except Exception:
                self._next_nonce = None
                raise

        tx_hash_hex = self.w3.to_hex(tx_hash)
        logger.info(f"📤 {call.function_name} submitted: {tx_hash_hex} (nonce {nonce})")
        return tx_hash_hex

    async def wait_for_receipt(
        self,
        tx_hash: str,
        confirmations: int = 1,
        timeout: Optional[float] = None,
        poll_interval: float = 1.0,
    ) -> TransactionReceipt:
        """
        Wait until ``tx_hash`` is mined and buried under ``confirmations`` blocks.

        Raises:
            ExecutionError: If the transaction reverted or was not confirmed in time
        """
        timeout = timeout or self.config.execution.receipt_timeout_seconds
        start = time.time()
        receipt = None

        while time.time() - start < timeout:
            if receipt is None:
                receipt = await self._rpc(
                    "eth_getTransactionReceipt", self._receipt_or_none, tx_hash
                )
            if receipt is not None:
                head = await self.block_number()
                if head - receipt["blockNumber"] + 1 >= confirmations:
                    break
            await asyncio.sleep(poll_interval)
        else:
            raise ExecutionError(
                f"Transaction {tx_hash} not confirmed after {timeout}s",
                phase="confirmation",
                trx=tx_hash,
            )

        result = TransactionReceipt(
            transaction_hash=tx_hash,
            block_number=receipt["blockNumber"],
            status=receipt["status"],
            gas_used=receipt["gasUsed"],
        )
        if not result.succeeded:
            raise ExecutionError(
                f"Transaction {tx_hash} reverted in block {result.block_number}",
                phase="confirmation",
                trx=tx_hash,
            )
        return result

    def _receipt_or_none(self, tx_hash: str):
        try:
            return self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
