"""
Conversion executor: turn a negotiated trade into a TokenConverterOperator
``convert`` call.

Outcomes are reported through the event channel as a single ``Arbitrage``
event. Failures during path validation or gas estimation are prefixed
"simulation: " (nothing was submitted); failures after that are prefixed
"Execution: " (gas may have been spent).
"""

from typing import Optional

from .allowance import AllowanceGuard
from .chain.abis import TOKEN_CONVERTER_OPERATOR_ABI
from .chain.gateway import ChainGateway, ContractCall, revert_reason
from .chain.path import validate_path
from .config_loader import KeeperConfig
from .events import ArbitrageEvent, EventChannel
from .exceptions import KeeperError, NetworkError
from .types import ConvertArgs, TradeRoute
from .utils import get_logger

logger = get_logger(__name__)

SIMULATION_PREFIX = "simulation: "
EXECUTION_PREFIX = "Execution: "


def describe_failure(exc: BaseException) -> str:
    """Revert reason when the error carries one, else the raw message."""
    if isinstance(exc, KeeperError):
        return str(exc)
    return revert_reason(exc) or str(exc)


class ConversionExecutor:
    """
    Submit conversions through the TokenConverterOperator.

    Not safe to retry: a failed submission must go back through discovery
    and negotiation before another attempt.

    Args:
        config: Keeper configuration (dry run, deadline grace, confirmations)
        gateway: Chain gateway
        allowances: Guard used to approve the subsidy when min income is negative
        channel: Event channel receiving ``Arbitrage`` events
    """

    def __init__(
        self,
        config: KeeperConfig,
        gateway: ChainGateway,
        allowances: AllowanceGuard,
        channel: EventChannel,
    ):
        self.config = config
        self.gateway = gateway
        self.allowances = allowances
        self.channel = channel
        self.operator = config.addresses.token_converter_operator

    def _convert_call(self, args: ConvertArgs) -> ContractCall:
        return ContractCall(
            self.operator,
            TOKEN_CONVERTER_OPERATOR_ABI,
            "convert",
            (args.as_tuple(),),
        )

    async def arbitrage(
        self, converter: str, trade: TradeRoute, amount: int, min_income: int
    ) -> ArbitrageEvent:
        """
        Execute one conversion and publish its ``Arbitrage`` event.

        Args:
            converter: Token converter address
            trade: Negotiated route; its input token is received from the
                converter and its output token is sent to it
            amount: Amount of the input token requested from the converter
            min_income: Signed minimum income; negative means the keeper
                subsidizes the conversion by up to ``-min_income``

        Returns:
            The published event
        """
        token_to_receive = trade.input_token.address
        token_to_send = trade.output_token.address
        dry_run = self.config.dry_run

        block = await self.gateway.get_block("latest")
        args = ConvertArgs(
            liquidity_provider=self.config.route_optimizer.provider,
            beneficiary=self.gateway.address,
            token_to_receive_from_converter=token_to_receive,
            amount=amount,
            min_income=min_income,
            token_to_send_to_converter=token_to_send,
            converter=converter,
            path=trade.path,
            deadline=block.timestamp + self.config.execution.deadline_grace_seconds,
        )

        trx: Optional[str] = None
        error: Optional[str] = None
        block_number: Optional[int] = block.number
        phase = SIMULATION_PREFIX
        try:
            if min_income < 0 and not dry_run:
                await self.allowances.ensure_allowance(
                    token_to_receive, self.gateway.address, self.operator, -min_income
                )

            validate_path(trade.path, token_to_send, token_to_receive)
            call = self._convert_call(args)
            gas = await self.gateway.estimate_gas(call)
            logger.info(f"⛽ convert on {converter} estimated at {gas} gas")

            if not dry_run:
                phase = EXECUTION_PREFIX
                trx = await self.gateway.write(call, gas=gas)
                receipt = await self.gateway.wait_for_receipt(
                    trx, confirmations=self.config.confirmations
                )
                block_number = receipt.block_number
        except NetworkError:
            raise
        except Exception as e:
            error = phase + describe_failure(e)
            logger.error(f"Conversion on {converter} failed: {error}")

        return self.channel.publish(
            ArbitrageEvent(
                trx=trx,
                error=error,
                block_number=block_number,
                context=args,
            )
        )
