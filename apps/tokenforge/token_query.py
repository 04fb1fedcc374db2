from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

from prometheus_client import Counter

from . import chain_registry
from .chain_client import ChainClient
from .chain_registry import Network
from .errors import TokenForgeError
from .models import TokenInfo

LOGGER = logging.getLogger('tokenforge.query')

TOKEN_DESCRIBE_FAILURES_TOTAL = Counter(
    'tokenforge_token_describe_failures_total',
    'Token metadata reads replaced by the unknown-token placeholder',
    ['chain_id', 'error_kind']
)


def unknown_token(address: str, owner: str) -> TokenInfo:
    return TokenInfo(
        address=address,
        name='Unknown',
        symbol='UNKNOWN',
        decimals=18,
        total_supply='0',
        owner=owner,
        resolved=False
    )


class TokenQueryService:
    def __init__(
        self,
        client_factory: Callable[[Network], ChainClient],
        *,
        concurrency: int = 8,
        resolve_factory: Callable[[int], str] = chain_registry.resolve_factory
    ) -> None:
        self.client_factory = client_factory
        self.concurrency = max(1, concurrency)
        self._resolve_factory = resolve_factory

    async def list_user_tokens(self, network: Network, user_address: str) -> list[str]:
        factory_address = self._resolve_factory(network.chain_id)
        return await self.client_factory(network).list_user_tokens(factory_address, user_address)

    async def describe(self, network: Network, address: str) -> TokenInfo:
        return await self.client_factory(network).read_token_info(address)

    async def describe_all(self, network: Network, addresses: Sequence[str], owner: str) -> list[TokenInfo]:
        client = self.client_factory(network)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def describe_one(address: str) -> TokenInfo:
            async with semaphore:
                try:
                    return await client.read_token_info(address)
                except TokenForgeError as exc:
                    LOGGER.warning(
                        'token describe failed chain_id=%s address=%s kind=%s: %s',
                        network.chain_id,
                        address,
                        exc.kind,
                        exc.detail
                    )
                    TOKEN_DESCRIBE_FAILURES_TOTAL.labels(chain_id=str(network.chain_id), error_kind=exc.kind).inc()
                    return unknown_token(address, owner)
                except Exception:
                    LOGGER.exception(
                        'token describe failed unexpectedly chain_id=%s address=%s',
                        network.chain_id,
                        address
                    )
                    TOKEN_DESCRIBE_FAILURES_TOTAL.labels(chain_id=str(network.chain_id), error_kind='unexpected').inc()
                    return unknown_token(address, owner)

        return list(await asyncio.gather(*(describe_one(address) for address in addresses)))

    async def user_token_descriptions(self, network: Network, user_address: str) -> list[TokenInfo]:
        addresses = await self.list_user_tokens(network, user_address)
        return await self.describe_all(network, addresses, user_address)
