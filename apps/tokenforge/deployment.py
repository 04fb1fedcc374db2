from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable

from . import chain_registry
from .chain_client import ChainClient, extract_created_address
from .chain_registry import Network
from .encoder import encode_token_params, encode_vesting_schedule, vesting_advisories
from .errors import DeploymentFailed, InconsistentSuccessError, TokenForgeError
from .models import (
    DeploymentResult,
    DeploymentState,
    DeploymentStatus,
    FeeEstimate,
    TokenConfig
)

LOGGER = logging.getLogger('tokenforge.deployment')

ChainClientFactory = Callable[[Network], ChainClient]


def _format_ether(wei: int) -> str:
    return format(Decimal(int(wei)) / (Decimal(10) ** 18), 'f')


class DeploymentOrchestrator:
    """Runs one token deployment per ``deploy`` call.

    validating -> resolving -> estimating -> submitting -> confirming ->
    extracting_event -> done, with any step able to end in error. There is no
    retry loop: a timed-out or ambiguous submission is reported back and the
    caller decides whether to resubmit.
    """

    def __init__(
        self,
        client_factory: ChainClientFactory,
        *,
        confirmation_timeout: float = 180.0,
        resolve_network: Callable[[int], Network] = chain_registry.resolve,
        resolve_factory: Callable[[int], str] = chain_registry.resolve_factory
    ) -> None:
        self.client_factory = client_factory
        self.confirmation_timeout = confirmation_timeout
        self._resolve_network = resolve_network
        self._resolve_factory = resolve_factory

    async def estimate(self, chain_id: int) -> FeeEstimate:
        network = self._resolve_network(chain_id)
        factory_address = self._resolve_factory(chain_id)
        return await self.client_factory(network).estimate_fee(factory_address)

    async def deploy(self, config: TokenConfig) -> DeploymentResult:
        state = DeploymentState.VALIDATING
        tx_hash: str | None = None
        warnings: tuple[str, ...] = ()
        fee: FeeEstimate | None = None

        def transition(next_state: DeploymentState) -> None:
            nonlocal state
            LOGGER.debug('deployment state chain_id=%s %s -> %s', config.chain_id, state.value, next_state.value)
            state = next_state

        try:
            token_params = encode_token_params(config)
            vesting = encode_vesting_schedule(config.vesting)
            warnings = tuple(vesting_advisories(config.vesting))
            for warning in warnings:
                LOGGER.warning('vesting advisory chain_id=%s symbol=%s: %s', config.chain_id, token_params.symbol, warning)

            transition(DeploymentState.RESOLVING)
            network = self._resolve_network(config.chain_id)
            factory_address = self._resolve_factory(config.chain_id)
            client = self.client_factory(network)

            transition(DeploymentState.ESTIMATING)
            fee = await client.estimate_fee(factory_address)

            transition(DeploymentState.SUBMITTING)
            await client.authorize()
            submitted = await client.submit_creation(factory_address, token_params, vesting, fee)
            tx_hash = submitted.transaction_hash

            transition(DeploymentState.CONFIRMING)
            receipt = await client.await_confirmation(
                tx_hash,
                confirmations=network.confirmation_depth,
                timeout=self.confirmation_timeout
            )
            gas_used = int(receipt.get('gasUsed', 0))
            gas_price = int(receipt.get('effectiveGasPrice') or fee.gas_price_wei)
            cost_paid = _format_ether(gas_used * gas_price + fee.protocol_fee_wei)

            if int(receipt.get('status', 0)) != 1:
                reason = await client.revert_reason(submitted.call, int(receipt['blockNumber']))
                detail = f'createToken reverted: {reason}' if reason else 'createToken reverted without a reason'
                raise DeploymentFailed(detail, transaction_hash=tx_hash)

            transition(DeploymentState.EXTRACTING_EVENT)
            try:
                contract_address = extract_created_address(receipt, factory_address)
            except InconsistentSuccessError as exc:
                LOGGER.warning(
                    'inconsistent success chain_id=%s tx_hash=%s: %s',
                    config.chain_id,
                    tx_hash,
                    exc.detail
                )
                return DeploymentResult(
                    success=True,
                    status=DeploymentStatus.INCONSISTENT_SUCCESS,
                    chain_id=config.chain_id,
                    contract_address='',
                    transaction_hash=tx_hash,
                    gas_used=gas_used,
                    protocol_fee=_format_ether(fee.protocol_fee_wei),
                    native_cost_paid=cost_paid,
                    error_message=exc.detail,
                    error_kind=exc.kind,
                    warnings=warnings
                )

            transition(DeploymentState.DONE)
            LOGGER.info(
                'token deployed chain_id=%s symbol=%s address=%s tx_hash=%s gas_used=%s',
                config.chain_id,
                token_params.symbol,
                contract_address,
                tx_hash,
                gas_used
            )
            return DeploymentResult(
                success=True,
                status=DeploymentStatus.DEPLOYED,
                chain_id=config.chain_id,
                contract_address=contract_address,
                transaction_hash=tx_hash,
                gas_used=gas_used,
                protocol_fee=_format_ether(fee.protocol_fee_wei),
                native_cost_paid=cost_paid,
                warnings=warnings
            )
        except TokenForgeError as exc:
            error = exc
            LOGGER.warning(
                'deployment failed chain_id=%s state=%s kind=%s tx_hash=%s: %s',
                config.chain_id,
                state.value,
                exc.kind,
                getattr(exc, 'transaction_hash', None) or tx_hash,
                exc.detail
            )
        except Exception as exc:
            error = TokenForgeError(f'unexpected {type(exc).__name__} during {state.value}: {exc}')
            LOGGER.exception(
                'deployment failed unexpectedly chain_id=%s state=%s tx_hash=%s',
                config.chain_id,
                state.value,
                tx_hash
            )

        return DeploymentResult(
            success=False,
            status=DeploymentStatus.FAILED,
            chain_id=config.chain_id,
            transaction_hash=getattr(error, 'transaction_hash', None) or tx_hash,
            protocol_fee=_format_ether(fee.protocol_fee_wei) if fee is not None else None,
            error_message=error.detail,
            error_kind=error.kind,
            error_status_code=error.status_code,
            failed_state=state,
            warnings=warnings
        )
