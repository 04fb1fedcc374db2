from __future__ import annotations

import copy
import json
import logging
import os
import re
from dataclasses import dataclass, replace
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

from .config import get_settings
from .errors import FactoryNotDeployed, UnsupportedNetwork

LOGGER = logging.getLogger('tokenforge.registry')


@dataclass(frozen=True)
class Network:
    chain_id: int
    chain_key: str
    name: str
    native_symbol: str
    rpc_url: str
    rpc_env_key: str
    explorer_url: str
    gas_price_gwei: Decimal
    confirmation_depth: int


NETWORK_SPECS: tuple[Network, ...] = (
    Network(
        chain_id=1,
        chain_key='ethereum',
        name='Ethereum',
        native_symbol='ETH',
        rpc_url='https://ethereum-rpc.publicnode.com',
        rpc_env_key='ETHEREUM_RPC_URL',
        explorer_url='https://etherscan.io',
        gas_price_gwei=Decimal('20'),
        confirmation_depth=2
    ),
    Network(
        chain_id=56,
        chain_key='bsc',
        name='BSC',
        native_symbol='BNB',
        rpc_url='https://bsc-dataseed.binance.org',
        rpc_env_key='BSC_RPC_URL',
        explorer_url='https://bscscan.com',
        gas_price_gwei=Decimal('5'),
        confirmation_depth=3
    ),
    Network(
        chain_id=137,
        chain_key='polygon',
        name='Polygon',
        native_symbol='MATIC',
        rpc_url='https://polygon-rpc.com',
        rpc_env_key='POLYGON_RPC_URL',
        explorer_url='https://polygonscan.com',
        gas_price_gwei=Decimal('30'),
        confirmation_depth=5
    ),
    Network(
        chain_id=42161,
        chain_key='arbitrum',
        name='Arbitrum',
        native_symbol='ETH',
        rpc_url='https://arb1.arbitrum.io/rpc',
        rpc_env_key='ARBITRUM_RPC_URL',
        explorer_url='https://arbiscan.io',
        gas_price_gwei=Decimal('0.1'),
        confirmation_depth=1
    ),
    Network(
        chain_id=250,
        chain_key='fantom',
        name='Fantom',
        native_symbol='FTM',
        rpc_url='https://rpc.ftm.tools',
        rpc_env_key='FANTOM_RPC_URL',
        explorer_url='https://ftmscan.com',
        gas_price_gwei=Decimal('20'),
        confirmation_depth=2
    ),
    Network(
        chain_id=1337,
        chain_key='hardhat-local',
        name='Hardhat Local',
        native_symbol='ETH',
        rpc_url='http://127.0.0.1:8545',
        rpc_env_key='HARDHAT_RPC_URL',
        explorer_url='http://127.0.0.1:8545',
        gas_price_gwei=Decimal('1'),
        confirmation_depth=0
    )
)

# Factory deployments known at build time; FACTORY_REGISTRY_PATH entries take precedence.
FACTORY_ADDRESSES: dict[int, str] = {
    1: '0x1234567890123456789012345678901234567890',
    56: '0x1234567890123456789012345678901234567890',
    137: '0x1234567890123456789012345678901234567890',
    42161: '0x1234567890123456789012345678901234567890',
    250: '0x1234567890123456789012345678901234567890'
}


def _is_evm_address(value: str) -> bool:
    return bool(re.fullmatch(r'0x[a-fA-F0-9]{40}', value))


@lru_cache(maxsize=1)
def load_networks() -> dict[int, Network]:
    networks: dict[int, Network] = {}
    for spec in NETWORK_SPECS:
        override = os.getenv(spec.rpc_env_key, '').strip()
        networks[spec.chain_id] = replace(spec, rpc_url=override) if override else spec
    return networks


def supported_chain_ids() -> list[int]:
    return sorted(load_networks())


def resolve(chain_id: int) -> Network:
    network = load_networks().get(chain_id)
    if network is None:
        raise UnsupportedNetwork(chain_id)
    return network


def _resolve_registry_path(path_value: str) -> Path:
    path = Path(path_value)
    if path.is_absolute():
        return path
    return Path(__file__).resolve().parents[2] / path


@lru_cache(maxsize=1)
def _load_factory_registry_cached() -> dict[str, Any]:
    settings = get_settings()
    if not settings.factory_registry_path:
        return {'factories': {}}

    path = _resolve_registry_path(settings.factory_registry_path)
    if not path.exists():
        LOGGER.warning('factory registry file not found path=%s', path)
        return {'factories': {}}

    try:
        payload = json.loads(path.read_text(encoding='utf-8'))
    except json.JSONDecodeError:
        LOGGER.warning('factory registry file is not valid json path=%s', path)
        return {'factories': {}}
    if not isinstance(payload, dict) or not isinstance(payload.get('factories'), dict):
        return {'factories': {}}
    return payload


def load_factory_registry() -> dict[str, Any]:
    return copy.deepcopy(_load_factory_registry_cached())


load_factory_registry.cache_clear = _load_factory_registry_cached.cache_clear  # type: ignore[attr-defined]


def factory_addresses() -> dict[int, str]:
    merged = dict(FACTORY_ADDRESSES)
    for raw_chain_id, address in load_factory_registry()['factories'].items():
        try:
            chain_id = int(raw_chain_id)
        except (TypeError, ValueError):
            continue
        merged[chain_id] = str(address or '').strip()
    return merged


def resolve_factory(chain_id: int) -> str:
    resolve(chain_id)
    address = factory_addresses().get(chain_id, '')
    if not _is_evm_address(address):
        raise FactoryNotDeployed(chain_id)
    return address


def explorer_url(network: Network, value: str, kind: str = 'tx') -> str:
    return f"{network.explorer_url.rstrip('/')}/{kind}/{value}"


def add_chain_params(network: Network) -> dict[str, Any]:
    return {
        'chainId': hex(network.chain_id),
        'chainName': network.name,
        'nativeCurrency': {
            'name': network.native_symbol,
            'symbol': network.native_symbol,
            'decimals': 18
        },
        'rpcUrls': [network.rpc_url],
        'blockExplorerUrls': [network.explorer_url]
    }


def networks_payload() -> dict[str, Any]:
    factories = factory_addresses()
    networks = []
    for chain_id in supported_chain_ids():
        network = load_networks()[chain_id]
        factory = factories.get(chain_id, '')
        networks.append(
            {
                'chain_id': network.chain_id,
                'chain_key': network.chain_key,
                'name': network.name,
                'native_symbol': network.native_symbol,
                'explorer_url': network.explorer_url,
                'gas_price_gwei': format(network.gas_price_gwei, 'f'),
                'confirmation_depth': network.confirmation_depth,
                'factory_address': factory if _is_evm_address(factory) else None,
                'factory_deployed': _is_evm_address(factory)
            }
        )
    return {'networks': networks}
