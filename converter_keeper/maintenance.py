"""
Maintenance routines run alongside conversions: accrue interest, reduce
BNB reserves and release reserve funds to the converters.

In dry-run mode every write is simulated from the keeper account instead of
submitted.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Sequence

from .chain.abis import PROTOCOL_SHARE_RESERVE_ABI, VBNB_ADMIN_ABI, VTOKEN_ABI
from .chain.gateway import ChainGateway, ContractCall, revert_reason
from .config_loader import KeeperConfig
from .events import (
    AccrueInterestEvent,
    EventChannel,
    ReduceReservesEvent,
    ReleaseFundsContext,
    ReleaseFundsEvent,
)
from .exceptions import NetworkError
from .types import BalanceResult
from .utils import get_logger, same_address

logger = get_logger(__name__)


class MaintenanceRoutines:
    """Protocol upkeep calls, each reported through its own event kind."""

    def __init__(self, config: KeeperConfig, gateway: ChainGateway, channel: EventChannel):
        self.config = config
        self.gateway = gateway
        self.channel = channel

    async def _send(self, call: ContractCall) -> Optional[str]:
        """Simulate ``call``; outside dry-run also submit it and wait for inclusion."""
        await self.gateway.simulate(call)
        if self.config.dry_run:
            return None
        trx = await self.gateway.write(call)
        await self.gateway.wait_for_receipt(
            trx, confirmations=self.config.confirmations
        )
        return trx

    async def accrue_interest(self, vtokens: Sequence[str]) -> AccrueInterestEvent:
        """
        Accrue interest on every market concurrently.

        All calls settle before the event is emitted; its error is the tuple
        of failure messages, empty when every market succeeded.
        """
        outcomes = await asyncio.gather(
            *[
                self._send(ContractCall(vtoken, VTOKEN_ABI, "accrueInterest"))
                for vtoken in vtokens
            ],
            return_exceptions=True,
        )
        errors = []
        for vtoken, outcome in zip(vtokens, outcomes):
            if isinstance(outcome, BaseException):
                reason = revert_reason(outcome) or str(outcome)
                logger.warning(f"accrueInterest failed on {vtoken}: {reason}")
                errors.append(f"{vtoken}: {reason}")

        event = self.channel.publish(AccrueInterestEvent(error=tuple(errors)))
        for outcome in outcomes:
            if isinstance(outcome, NetworkError):
                raise outcome
        logger.info(f"Accrued interest on {len(vtokens) - len(errors)}/{len(vtokens)} markets")
        return event

    async def reduce_reserves(self) -> Optional[ReduceReservesEvent]:
        """
        Move vBNB reserves to the protocol share reserve.

        Reduces by ``min(totalReserves, cash)``. With zero cash nothing is
        sent and the event carries neither error nor transaction. Returns
        None on networks without vBNB.
        """
        vbnb = self.config.addresses.vbnb
        admin = self.config.addresses.vbnb_admin
        if not (self.config.uses_venus_lens and vbnb and admin):
            return None

        trx = None
        error = None
        try:
            total_reserves, cash = [
                r.value
                for r in await self.gateway.multicall(
                    [
                        ContractCall(vbnb, VTOKEN_ABI, "totalReserves"),
                        ContractCall(vbnb, VTOKEN_ABI, "getCash"),
                    ]
                )
            ]
            if cash <= 0:
                logger.info("vBNB has no cash, skipping reduceReserves")
                return self.channel.publish(ReduceReservesEvent())

            amount = min(total_reserves, cash)
            trx = await self._send(
                ContractCall(admin, VBNB_ADMIN_ABI, "reduceReserves", (amount,))
            )
        except NetworkError:
            raise
        except Exception as e:
            error = revert_reason(e) or str(e)
            logger.warning(f"reduceReserves failed: {error}")
        return self.channel.publish(ReduceReservesEvent(trx=trx, error=error))

    async def release_funds(
        self, pool_to_assets: Dict[str, Iterable[str]]
    ) -> List[ReleaseFundsEvent]:
        """One ``releaseFunds`` per pool, each reported independently."""
        events = []
        for pool, assets in pool_to_assets.items():
            assets = tuple(assets)
            trx = None
            error = None
            try:
                trx = await self._send(
                    ContractCall(
                        self.config.addresses.protocol_share_reserve,
                        PROTOCOL_SHARE_RESERVE_ABI,
                        "releaseFunds",
                        (pool, list(assets)),
                    )
                )
            except NetworkError:
                raise
            except Exception as e:
                error = revert_reason(e) or str(e)
                logger.warning(f"releaseFunds failed for pool {pool}: {error}")
            events.append(
                self.channel.publish(
                    ReleaseFundsEvent(
                        trx=trx,
                        error=error,
                        context=ReleaseFundsContext(pool=pool, assets=assets),
                    )
                )
            )
        return events

    def pools_for_conversions(self, conversions: Iterable[BalanceResult]) -> Dict[str, List[str]]:
        """
        Group the conversions' asset_out tokens by the pools listing them.

        Core pool markets are released through the Unitroller, isolated pool
        markets through their comptroller.
        """
        grouped: Dict[str, List[str]] = {}

        def add(pool: str, asset: str):
            assets = grouped.setdefault(pool, [])
            if not any(same_address(a, asset) for a in assets):
                assets.append(asset)

        unitroller = self.config.addresses.unitroller
        for conversion in conversions:
            asset = conversion.asset_out.address
            vtokens = conversion.asset_out_vtokens
            if vtokens.core and unitroller:
                add(unitroller, asset)
            for comptroller, _vtoken in vtokens.isolated:
                add(comptroller, asset)
        return grouped

    async def release_funds_for_conversions(
        self, conversions: Iterable[BalanceResult]
    ) -> List[ReleaseFundsEvent]:
        return await self.release_funds(self.pools_for_conversions(conversions))
