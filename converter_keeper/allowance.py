"""
Allowance guard: exact-amount approvals serialized per token.
"""

import asyncio
from typing import Dict, Optional

from .chain.abis import ERC20_ABI
from .chain.gateway import ChainGateway, ContractCall, TransactionReceipt
from .config_loader import KeeperConfig
from .utils import get_logger

logger = get_logger(__name__)


class AllowanceGuard:
    """
    Ensure the keeper wallet has approved a spender for a token amount.

    Approvals are for the exact amount, never unlimited. Calls for the same
    token are serialized through a per-token ``asyncio.Lock`` so two
    in-flight conversions never race on one allowance.
    """

    def __init__(self, config: KeeperConfig, gateway: ChainGateway):
        self.config = config
        self.gateway = gateway
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, token: str) -> asyncio.Lock:
        key = token.lower()
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        return await self.gateway.read(
            ContractCall(token, ERC20_ABI, "allowance", (owner, spender))
        )

    async def ensure_allowance(
        self, token: str, owner: str, spender: str, amount: int
    ) -> Optional[TransactionReceipt]:
        """
        Approve ``spender`` for exactly ``amount`` when the allowance is short.

        Waits for the network's confirmation count before returning.

        Returns:
            The approval receipt, or None when the allowance already covered
            ``amount``
        """
        async with self.lock_for(token):
            current = await self.allowance(token, owner, spender)
            if current >= amount:
                logger.debug(f"Allowance {current} of {token} covers {amount}")
                return None

            logger.info(f"Approving {amount} of {token} for {spender} (current {current})")
            tx_hash = await self.gateway.write(
                ContractCall(token, ERC20_ABI, "approve", (spender, amount))
            )
            receipt = await self.gateway.wait_for_receipt(
                tx_hash, confirmations=self.config.confirmations
            )
            logger.info(f"✅ Approval confirmed in block {receipt.block_number}")
            return receipt
