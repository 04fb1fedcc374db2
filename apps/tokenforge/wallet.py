"""Wallet provider capability used by the chain client.

Providers speak in EIP-1193 terms: failures are ``ProviderRpcError`` with the
standard codes (4001 user rejected, 4902 unrecognised chain). The chain client
never depends on a concrete provider, only on ``WalletProvider``.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from aiohttp import ClientTimeout
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import Web3RPCError

LOGGER = logging.getLogger('tokenforge.wallet')

USER_REJECTED = 4001
UNAUTHORIZED = 4100
DISCONNECTED = 4900
UNRECOGNIZED_CHAIN = 4902
SERVER_ERROR = -32000


class ProviderRpcError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@runtime_checkable
class WalletProvider(Protocol):
    async def request_accounts(self) -> list[str]:
        ...

    async def request_chain_switch(self, chain_id: int) -> None:
        ...

    async def request_chain_add(self, params: dict[str, Any]) -> None:
        ...

    async def sign_and_send(self, call: dict[str, Any]) -> str:
        ...


def hex_prefixed(value: Any) -> str:
    raw = value.hex() if hasattr(value, 'hex') else str(value)
    if raw.startswith('0x'):
        return raw
    return f'0x{raw}'


def _rpc_error_code(exc: Web3RPCError) -> int:
    # Node replies carry their own JSON-RPC code; -32000 is the generic server error.
    response = getattr(exc, 'rpc_response', None) or {}
    error = response.get('error') if isinstance(response, dict) else None
    if isinstance(error, dict) and isinstance(error.get('code'), int):
        return error['code']
    return SERVER_ERROR


class LocalAccountWallet:
    """Operator-key wallet for server-side deployments.

    Chains become known through ``request_chain_add`` (or ``rpc_urls`` at
    construction), mirroring how a browser wallet learns custom networks.
    """

    def __init__(
        self,
        private_key: str,
        *,
        rpc_urls: dict[int, str] | None = None,
        request_timeout: float = 10.0
    ) -> None:
        if not private_key:
            raise ValueError('private_key is required')
        self.account = Account.from_key(private_key)
        self.request_timeout = request_timeout
        self._rpc_urls: dict[int, str] = dict(rpc_urls or {})
        self._web3: dict[int, AsyncWeb3] = {}
        self.chain_id: int | None = None

    @property
    def address(self) -> str:
        return self.account.address

    async def request_accounts(self) -> list[str]:
        return [self.account.address]

    async def request_chain_switch(self, chain_id: int) -> None:
        if chain_id not in self._rpc_urls:
            raise ProviderRpcError(UNRECOGNIZED_CHAIN, f'unrecognized chain id {hex(chain_id)}')
        self.chain_id = chain_id

    async def request_chain_add(self, params: dict[str, Any]) -> None:
        try:
            chain_id = int(str(params['chainId']), 0)
            rpc_url = str(params['rpcUrls'][0]).strip()
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderRpcError(-32602, f'invalid wallet_addEthereumChain params: {exc}') from exc
        if not rpc_url:
            raise ProviderRpcError(-32602, 'wallet_addEthereumChain requires an rpc url')
        self._rpc_urls[chain_id] = rpc_url
        self._web3.pop(chain_id, None)
        LOGGER.info('wallet chain added chain_id=%s name=%s', chain_id, params.get('chainName', ''))

    def _client(self) -> AsyncWeb3:
        if self.chain_id is None:
            raise ProviderRpcError(DISCONNECTED, 'wallet is not connected to a chain')
        web3 = self._web3.get(self.chain_id)
        if web3 is None:
            web3 = AsyncWeb3(
                AsyncHTTPProvider(
                    self._rpc_urls[self.chain_id],
                    request_kwargs={'timeout': ClientTimeout(total=self.request_timeout)}
                )
            )
            self._web3[self.chain_id] = web3
        return web3

    async def sign_and_send(self, call: dict[str, Any]) -> str:
        web3 = self._client()
        sender = call.get('from', self.account.address)
        if str(sender).lower() != self.account.address.lower():
            raise ProviderRpcError(UNAUTHORIZED, f'account {sender} is not managed by this wallet')

        tx = {
            'to': call['to'],
            'data': call.get('data', '0x'),
            'value': int(call.get('value', 0)),
            'gas': int(call['gas']),
            'chainId': self.chain_id,
            'nonce': await web3.eth.get_transaction_count(self.account.address, 'pending'),
            'gasPrice': int(call.get('gasPrice') or await web3.eth.gas_price)
        }
        signed = self.account.sign_transaction(tx)
        try:
            tx_hash = await web3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3RPCError as exc:
            raise ProviderRpcError(_rpc_error_code(exc), str(exc)) from exc
        return hex_prefixed(tx_hash)
