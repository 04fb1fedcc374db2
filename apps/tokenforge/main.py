from __future__ import annotations

import logging
import os
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_client import Counter, make_asgi_app
from pydantic import BaseModel, Field
from web3 import Web3

from . import chain_registry
from .chain_client import ChainClient
from .chain_registry import Network
from .config import get_settings
from .deployment import DeploymentOrchestrator
from .deployment_store import DeploymentStore
from .errors import TokenForgeError, UnsupportedNetwork
from .events import DeploymentEventPublisher
from .models import (
    DeploymentResult,
    FeatureFlags,
    TokenConfig,
    TokenInfo,
    TransferFeeConfig,
    VestingAllocation
)
from .token_query import TokenQueryService
from .wallet import LocalAccountWallet, WalletProvider

settings = get_settings()
logger = logging.getLogger(__name__)

DEPLOYMENTS_TOTAL = Counter(
    'tokenforge_deployments_total',
    'Deployment attempts by outcome',
    ['chain_id', 'status', 'error_kind']
)
SIDE_EFFECT_FAILURES_TOTAL = Counter(
    'tokenforge_side_effect_failures_total',
    'Deployment records that could not be persisted or published',
    ['sink']
)

app = FastAPI(title=settings.app_name, default_response_class=ORJSONResponse)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[x.strip() for x in settings.cors_origins.split(',') if x.strip()],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*']
)
app.mount('/metrics', make_asgi_app())

_wallet: WalletProvider | None = None
_store: DeploymentStore | None = None
_publisher: DeploymentEventPublisher | None = None


def _client_factory(network: Network) -> ChainClient:
    return ChainClient(
        network,
        wallet=_wallet,
        request_timeout=settings.rpc_request_timeout_seconds,
        gas_limit=settings.deploy_gas_limit,
        poll_interval=settings.confirmation_poll_seconds
    )


_orchestrator = DeploymentOrchestrator(
    _client_factory,
    confirmation_timeout=settings.confirmation_timeout_seconds
)
_query_service = TokenQueryService(_client_factory, concurrency=settings.query_concurrency)


class FeatureFlagsIn(BaseModel):
    burnable: bool = False
    mintable: bool = False
    transfer_fees: bool = False
    holder_redistribution: bool = False


class TransferFeesIn(BaseModel):
    buy_fee: Decimal = Decimal('0')
    sell_fee: Decimal = Decimal('0')
    recipient_address: str = ''


class VestingAllocationIn(BaseModel):
    category: str
    percentage: Decimal = Decimal('0')
    start_date: str | None = None
    duration_months: int = 12
    enabled: bool = False


class TokenConfigIn(BaseModel):
    name: str
    symbol: str
    decimals: int = 18
    initial_supply: str | int
    max_supply: str | int | None = None
    chain_id: int
    features: FeatureFlagsIn = Field(default_factory=FeatureFlagsIn)
    transfer_fees_config: TransferFeesIn | None = None
    vesting: list[VestingAllocationIn] = Field(default_factory=list)

    def to_config(self) -> TokenConfig:
        fees = None
        if self.transfer_fees_config is not None:
            fees = TransferFeeConfig(
                buy_fee=self.transfer_fees_config.buy_fee,
                sell_fee=self.transfer_fees_config.sell_fee,
                recipient_address=self.transfer_fees_config.recipient_address
            )
        return TokenConfig(
            name=self.name,
            symbol=self.symbol,
            decimals=self.decimals,
            initial_supply=str(self.initial_supply),
            max_supply=None if self.max_supply is None else str(self.max_supply),
            chain_id=self.chain_id,
            features=FeatureFlags(**self.features.model_dump()),
            transfer_fees_config=fees,
            vesting=tuple(
                VestingAllocation(
                    category=item.category,
                    percentage=item.percentage,
                    start_date=item.start_date,
                    duration_months=item.duration_months,
                    enabled=item.enabled
                )
                for item in self.vesting
            )
        )


class DeployRequest(BaseModel):
    config: TokenConfigIn
    user_address: str


def _http_error(exc: TokenForgeError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.payload())


def _require_address(value: str, field: str) -> str:
    if not Web3.is_address(value):
        raise HTTPException(
            status_code=422,
            detail={'error': 'invalid_address', 'message': f'{field}={value!r} is not a valid EVM address'}
        )
    return Web3.to_checksum_address(value)


def _resolve_network(chain_id: int) -> Network:
    try:
        return chain_registry.resolve(chain_id)
    except TokenForgeError as exc:
        raise _http_error(exc) from exc


def _network_key(chain_id: int) -> str:
    try:
        return chain_registry.resolve(chain_id).chain_key
    except UnsupportedNetwork:
        return str(chain_id)


def _token_payload(network: Network, info: TokenInfo) -> dict:
    return {
        'address': info.address,
        'name': info.name,
        'symbol': info.symbol,
        'decimals': info.decimals,
        'total_supply': info.total_supply,
        'owner': info.owner,
        'resolved': info.resolved,
        'explorer_url': chain_registry.explorer_url(network, info.address, 'address')
    }


async def _record_deployment(record: dict) -> None:
    if _store is not None:
        try:
            await _store.save(record)
        except Exception as exc:
            SIDE_EFFECT_FAILURES_TOTAL.labels(sink='postgres').inc()
            logger.warning('deployment record not persisted tx_hash=%s: %s', record['transaction_hash'], exc)

    if _publisher is not None:
        try:
            _publisher.publish(record)
        except Exception as exc:
            SIDE_EFFECT_FAILURES_TOTAL.labels(sink='kafka').inc()
            logger.warning('deployment event not published tx_hash=%s: %s', record['transaction_hash'], exc)


def _deployment_payload(result: DeploymentResult) -> dict:
    payload = {
        'success': result.success,
        'status': result.status.value,
        'chain_id': result.chain_id,
        'contract_address': result.contract_address,
        'transaction_hash': result.transaction_hash,
        'gas_used': result.gas_used,
        'protocol_fee': result.protocol_fee,
        'deployment_cost': result.native_cost_paid,
        'warnings': list(result.warnings),
        'explorer_url': None,
        'transaction_url': None
    }
    network = chain_registry.resolve(result.chain_id)
    if result.contract_address:
        payload['explorer_url'] = chain_registry.explorer_url(network, result.contract_address, 'address')
    if result.transaction_hash:
        payload['transaction_url'] = chain_registry.explorer_url(network, result.transaction_hash, 'tx')
    if result.inconsistent:
        payload['warnings'].append(result.error_message)
    return payload


@app.on_event('startup')
async def startup() -> None:
    global _wallet, _store, _publisher
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    if settings.deployer_private_key:
        _wallet = LocalAccountWallet(
            settings.deployer_private_key,
            request_timeout=settings.rpc_request_timeout_seconds
        )
    else:
        logger.warning('DEPLOYER_PRIVATE_KEY not set; deployments will fail with wallet_unavailable')

    if settings.postgres_dsn:
        try:
            _store = await DeploymentStore.connect(settings.postgres_dsn)
        except Exception as exc:
            _store = None
            logger.warning('Postgres unavailable during startup; deployment records will not be persisted: %s', exc)

    if settings.kafka_bootstrap_servers:
        _publisher = DeploymentEventPublisher.from_bootstrap(
            settings.kafka_bootstrap_servers,
            settings.deployment_events_topic,
            client_id=settings.app_name
        )


@app.on_event('shutdown')
async def shutdown() -> None:
    global _store, _publisher
    if _publisher is not None:
        _publisher.flush(5)
    if _store is not None:
        await _store.close()


@app.get('/health')
async def health() -> dict[str, str]:
    return {'status': 'ok'}


@app.get('/networks')
async def networks() -> dict:
    return chain_registry.networks_payload()


@app.get('/deployments/estimate')
async def estimate_deployment(chain_id: int = Query(..., gt=0)) -> dict:
    network = _resolve_network(chain_id)
    try:
        estimate = await _orchestrator.estimate(chain_id)
    except TokenForgeError as exc:
        raise _http_error(exc) from exc

    wei = Decimal(10) ** 18
    return {
        'chain_id': chain_id,
        'native_symbol': network.native_symbol,
        'gas_limit': estimate.gas_limit,
        'gas_price_gwei': format(Decimal(estimate.gas_price_wei) / Decimal(10) ** 9, 'f'),
        'deployment_fee': format(Decimal(estimate.protocol_fee_wei) / wei, 'f'),
        'total_cost': format(Decimal(estimate.total_cost_wei) / wei, 'f')
    }


@app.post('/deployments')
async def create_deployment(req: DeployRequest) -> dict:
    user_address = _require_address(req.user_address, 'user_address')
    config = req.config.to_config()

    result = await _orchestrator.deploy(config)
    DEPLOYMENTS_TOTAL.labels(
        chain_id=str(result.chain_id),
        status=result.status.value,
        error_kind=result.error_kind or 'none'
    ).inc()

    if result.transaction_hash:
        await _record_deployment(
            result.to_record(
                user_address=user_address,
                token_name=config.name,
                token_symbol=config.symbol.strip().upper(),
                network_key=_network_key(config.chain_id)
            )
        )

    if not result.success:
        raise HTTPException(
            status_code=result.error_status_code or 500,
            detail={
                'error': result.error_kind,
                'message': result.error_message,
                'state': result.failed_state.value if result.failed_state else None,
                'transaction_hash': result.transaction_hash,
                'warnings': list(result.warnings)
            }
        )
    return _deployment_payload(result)


@app.get('/deployments')
async def list_deployments(
    user_address: str,
    limit: int = Query(default=100, ge=1, le=1000)
) -> dict:
    user_address = _require_address(user_address, 'user_address')
    if _store is None:
        raise HTTPException(
            status_code=503,
            detail={'error': 'persistence_disabled', 'message': 'deployment history is not configured'}
        )
    return {'rows': await _store.list_for_user(user_address, limit)}


@app.get('/tokens')
async def user_tokens(user_address: str, chain_id: int = Query(..., gt=0)) -> dict:
    user_address = _require_address(user_address, 'user_address')
    network = _resolve_network(chain_id)
    try:
        infos = await _query_service.user_token_descriptions(network, user_address)
    except TokenForgeError as exc:
        raise _http_error(exc) from exc
    return {'tokens': [_token_payload(network, info) for info in infos]}


@app.get('/tokens/{address}')
async def token_detail(address: str, chain_id: int = Query(..., gt=0)) -> dict:
    address = _require_address(address, 'address')
    network = _resolve_network(chain_id)
    try:
        info = await _query_service.describe(network, address)
    except TokenForgeError as exc:
        raise _http_error(exc) from exc
    return _token_payload(network, info)


@app.get('/')
async def root() -> dict:
    return {'service': settings.app_name, 'status': 'ok'}
