from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Mapping, Sequence

from aiohttp import ClientError, ClientTimeout
from eth_abi import encode
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    ProviderConnectionError,
    TransactionNotFound,
    Web3RPCError
)

from .chain_registry import Network, add_chain_params
from .errors import (
    ChainConnectionError,
    ContractNotFound,
    DeploymentFailed,
    FactoryNotDeployed,
    InconsistentSuccessError,
    InsufficientFunds,
    InvalidAddress,
    NetworkMismatch,
    TokenForgeError,
    TransactionTimeout,
    UserRejected,
    WalletError,
    WalletUnavailable
)
from .models import FeeEstimate, SubmittedTransaction, TokenInfo, TokenParams, VestingParams
from .wallet import (
    DISCONNECTED,
    UNAUTHORIZED,
    UNRECOGNIZED_CHAIN,
    USER_REJECTED,
    ProviderRpcError,
    WalletProvider,
    hex_prefixed
)

LOGGER = logging.getLogger('tokenforge.chain')

DEFAULT_GAS_LIMIT = 2_500_000

TOKEN_PARAMS_TYPE = '(string,string,uint8,uint256,uint256,bool,bool,bool,bool,uint256,uint256,address)'
VESTING_PARAMS_TYPE = '(uint256,uint256,uint256,bool)[]'
CREATE_TOKEN_SIGNATURE = f'createToken({TOKEN_PARAMS_TYPE},{VESTING_PARAMS_TYPE})'
TOKEN_CREATED_SIGNATURE = 'TokenCreated(address,address,string,string,uint256)'

FACTORY_ABI = [
    {
        'inputs': [{'internalType': 'address', 'name': 'user', 'type': 'address'}],
        'name': 'getUserTokens',
        'outputs': [{'internalType': 'address[]', 'name': '', 'type': 'address[]'}],
        'stateMutability': 'view',
        'type': 'function'
    },
    {
        'inputs': [],
        'name': 'deploymentFee',
        'outputs': [{'internalType': 'uint256', 'name': '', 'type': 'uint256'}],
        'stateMutability': 'view',
        'type': 'function'
    }
]

TOKEN_ABI = [
    {
        'inputs': [],
        'name': 'name',
        'outputs': [{'internalType': 'string', 'name': '', 'type': 'string'}],
        'stateMutability': 'view',
        'type': 'function'
    },
    {
        'inputs': [],
        'name': 'symbol',
        'outputs': [{'internalType': 'string', 'name': '', 'type': 'string'}],
        'stateMutability': 'view',
        'type': 'function'
    },
    {
        'inputs': [],
        'name': 'decimals',
        'outputs': [{'internalType': 'uint8', 'name': '', 'type': 'uint8'}],
        'stateMutability': 'view',
        'type': 'function'
    },
    {
        'inputs': [],
        'name': 'totalSupply',
        'outputs': [{'internalType': 'uint256', 'name': '', 'type': 'uint256'}],
        'stateMutability': 'view',
        'type': 'function'
    },
    {
        'inputs': [{'internalType': 'address', 'name': 'account', 'type': 'address'}],
        'name': 'balanceOf',
        'outputs': [{'internalType': 'uint256', 'name': '', 'type': 'uint256'}],
        'stateMutability': 'view',
        'type': 'function'
    },
    {
        'inputs': [],
        'name': 'owner',
        'outputs': [{'internalType': 'address', 'name': '', 'type': 'address'}],
        'stateMutability': 'view',
        'type': 'function'
    }
]


def _topic_to_address(topic: Any) -> str:
    hex_topic = topic.hex() if hasattr(topic, 'hex') else str(topic)
    return Web3.to_checksum_address(f"0x{hex_topic[-40:]}")


def _to_decimal_str(raw_amount: int, decimals: int) -> str:
    if decimals < 0:
        decimals = 0
    amount = Decimal(raw_amount) / (Decimal(10) ** decimals)
    return format(amount, 'f')


SELECTOR_CREATE_TOKEN = hex_prefixed(Web3.keccak(text=CREATE_TOKEN_SIGNATURE))[:10]
TOKEN_CREATED_TOPIC = hex_prefixed(Web3.keccak(text=TOKEN_CREATED_SIGNATURE)).lower()


def encode_create_token_call(token_params: TokenParams, vesting: Sequence[VestingParams]) -> str:
    payload = encode(
        [TOKEN_PARAMS_TYPE, VESTING_PARAMS_TYPE],
        [token_params.as_abi_tuple(), [item.as_abi_tuple() for item in vesting]]
    )
    return SELECTOR_CREATE_TOKEN + payload.hex()


def extract_created_address(receipt: Mapping[str, Any], factory_address: str | None = None) -> str:
    for log in receipt.get('logs') or []:
        topics = log.get('topics') or []
        if len(topics) < 2 or hex_prefixed(topics[0]).lower() != TOKEN_CREATED_TOPIC:
            continue
        if factory_address and str(log.get('address', '')).lower() != factory_address.lower():
            continue
        return _topic_to_address(topics[1])
    raise InconsistentSuccessError(hex_prefixed(receipt.get('transactionHash', '')))


def _wallet_error(exc: ProviderRpcError, *, switching: bool = False) -> WalletError:
    if exc.code == USER_REJECTED:
        return UserRejected(f'wallet request rejected by user: {exc.message}')
    if exc.code in {UNAUTHORIZED, DISCONNECTED}:
        return WalletUnavailable(f'wallet unavailable: {exc.message}')
    if switching:
        return NetworkMismatch(f'wallet could not switch network: {exc.message}')
    return WalletError(f'wallet error code={exc.code}: {exc.message}')


class ChainClient:
    """Authenticated channel to one network: factory and token calls only.

    A client is cheap to build and never connects in ``__init__``. It is safe
    to reuse for sequential operations, but concurrent submissions from the
    same account need external nonce sequencing.
    """

    def __init__(
        self,
        network: Network,
        *,
        wallet: WalletProvider | None = None,
        web3: AsyncWeb3 | None = None,
        request_timeout: float = 10.0,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        poll_interval: float = 2.0
    ) -> None:
        self.network = network
        self.wallet = wallet
        self.gas_limit = gas_limit
        self.poll_interval = poll_interval
        self.account: str | None = None
        self.web3 = web3 or AsyncWeb3(
            AsyncHTTPProvider(
                network.rpc_url,
                request_kwargs={'timeout': ClientTimeout(total=request_timeout)}
            )
        )

    @asynccontextmanager
    async def _rpc(
        self,
        operation: str,
        rpc_error: type[TokenForgeError] = ChainConnectionError
    ) -> AsyncIterator[None]:
        try:
            yield
        except (ClientError, asyncio.TimeoutError, OSError, ProviderConnectionError) as exc:
            raise ChainConnectionError(
                f'{operation} failed on chain_id={self.network.chain_id}: {exc}'
            ) from exc
        except ContractLogicError:
            raise
        except Web3RPCError as exc:
            raise rpc_error(
                f'{operation} rejected by node on chain_id={self.network.chain_id}: {exc}'
            ) from exc

    def _factory(self, factory_address: str):
        return self.web3.eth.contract(address=Web3.to_checksum_address(factory_address), abi=FACTORY_ABI)

    async def authorize(self) -> str:
        if self.wallet is None:
            raise WalletUnavailable('no wallet provider is configured')

        try:
            accounts = await self.wallet.request_accounts()
        except ProviderRpcError as exc:
            raise _wallet_error(exc) from exc
        if not accounts:
            raise WalletUnavailable('wallet returned no accounts')

        await self._ensure_chain(self.wallet)
        self.account = Web3.to_checksum_address(accounts[0])
        LOGGER.info('wallet authorized chain_id=%s account=%s', self.network.chain_id, self.account)
        return self.account

    async def _ensure_chain(self, wallet: WalletProvider) -> None:
        try:
            await wallet.request_chain_switch(self.network.chain_id)
            return
        except ProviderRpcError as exc:
            if exc.code != UNRECOGNIZED_CHAIN:
                raise _wallet_error(exc, switching=True) from exc

        LOGGER.info('wallet does not know chain_id=%s; requesting chain add', self.network.chain_id)
        try:
            await wallet.request_chain_add(add_chain_params(self.network))
            await wallet.request_chain_switch(self.network.chain_id)
        except ProviderRpcError as exc:
            raise _wallet_error(exc, switching=True) from exc

    async def estimate_fee(self, factory_address: str) -> FeeEstimate:
        factory = self._factory(factory_address)
        try:
            async with self._rpc('estimate_fee'):
                protocol_fee = int(await factory.functions.deploymentFee().call())
                gas_price = int(await self.web3.eth.gas_price)
        except BadFunctionCallOutput as exc:
            raise FactoryNotDeployed(self.network.chain_id) from exc

        if gas_price <= 0:
            gas_price = int(Web3.to_wei(self.network.gas_price_gwei, 'gwei'))
        return FeeEstimate(gas_limit=self.gas_limit, gas_price_wei=gas_price, protocol_fee_wei=protocol_fee)

    def build_creation_call(
        self,
        factory_address: str,
        token_params: TokenParams,
        vesting: Sequence[VestingParams],
        fee: FeeEstimate
    ) -> dict[str, Any]:
        return {
            'from': self.account,
            'to': Web3.to_checksum_address(factory_address),
            'data': encode_create_token_call(token_params, vesting),
            'value': fee.protocol_fee_wei,
            'gas': fee.gas_limit,
            'gasPrice': fee.gas_price_wei,
            'chainId': self.network.chain_id
        }

    async def submit_creation(
        self,
        factory_address: str,
        token_params: TokenParams,
        vesting: Sequence[VestingParams],
        fee: FeeEstimate
    ) -> SubmittedTransaction:
        if self.wallet is None or self.account is None:
            raise WalletUnavailable('wallet must be authorized before submitting')

        call = self.build_creation_call(factory_address, token_params, vesting, fee)
        try:
            async with self._rpc('submit_creation', DeploymentFailed):
                tx_hash = await self.wallet.sign_and_send(call)
        except ProviderRpcError as exc:
            # -32000 is the generic node error code; only the message identifies the cause.
            if 'insufficient funds' in exc.message.lower():
                raise InsufficientFunds(f'insufficient funds for deployment: {exc.message}') from exc
            if exc.code in {USER_REJECTED, UNAUTHORIZED, DISCONNECTED}:
                raise _wallet_error(exc) from exc
            raise DeploymentFailed(f'creation call rejected code={exc.code}: {exc.message}') from exc
        except ContractLogicError as exc:
            raise DeploymentFailed(f'createToken would revert: {exc.message or exc}') from exc

        tx_hash = hex_prefixed(tx_hash)
        LOGGER.info(
            'creation submitted chain_id=%s tx_hash=%s factory=%s value=%s',
            self.network.chain_id,
            tx_hash,
            call['to'],
            call['value']
        )
        return SubmittedTransaction(transaction_hash=tx_hash, call=call)

    async def _receipt_or_none(self, tx_hash: str):
        try:
            async with self._rpc('get_transaction_receipt'):
                return await self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    async def _poll_receipt(self, tx_hash: str, confirmations: int):
        while True:
            try:
                receipt = await self._receipt_or_none(tx_hash)
                if receipt is not None:
                    if confirmations <= 0:
                        return receipt
                    async with self._rpc('block_number'):
                        head = int(await self.web3.eth.block_number)
                    if head - int(receipt['blockNumber']) >= confirmations:
                        return receipt
            except ChainConnectionError as exc:
                LOGGER.warning('receipt poll failed tx_hash=%s: %s', tx_hash, exc)
            await asyncio.sleep(self.poll_interval)

    async def await_confirmation(self, tx_hash: str, *, confirmations: int, timeout: float):
        try:
            receipt = await asyncio.wait_for(self._poll_receipt(tx_hash, confirmations), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise TransactionTimeout(tx_hash, timeout) from exc
        LOGGER.info(
            'transaction confirmed chain_id=%s tx_hash=%s block=%s status=%s',
            self.network.chain_id,
            tx_hash,
            receipt['blockNumber'],
            receipt['status']
        )
        return receipt

    async def revert_reason(self, call: Mapping[str, Any], block_number: int) -> str | None:
        replay = {key: call[key] for key in ('from', 'to', 'data', 'value') if call.get(key) is not None}
        try:
            async with self._rpc('revert_reason'):
                await self.web3.eth.call(replay, block_identifier=max(int(block_number) - 1, 0))
        except ContractLogicError as exc:
            return exc.message or str(exc)
        except ChainConnectionError as exc:
            LOGGER.warning('revert reason replay failed chain_id=%s: %s', self.network.chain_id, exc)
        return None

    async def list_user_tokens(self, factory_address: str, user_address: str) -> list[str]:
        if not Web3.is_address(user_address):
            raise InvalidAddress(f'{user_address!r} is not a valid EVM address')
        factory = self._factory(factory_address)
        try:
            async with self._rpc('list_user_tokens'):
                tokens = await factory.functions.getUserTokens(Web3.to_checksum_address(user_address)).call()
        except BadFunctionCallOutput as exc:
            raise FactoryNotDeployed(self.network.chain_id) from exc
        return [Web3.to_checksum_address(token) for token in tokens]

    async def read_token_info(self, address: str) -> TokenInfo:
        if not Web3.is_address(address):
            raise InvalidAddress(f'{address!r} is not a valid EVM address')
        checksum = Web3.to_checksum_address(address)

        async with self._rpc('get_code'):
            code = await self.web3.eth.get_code(checksum)
        if not bytes(code):
            raise ContractNotFound(checksum)

        token = self.web3.eth.contract(address=checksum, abi=TOKEN_ABI)
        try:
            async with self._rpc('read_token_info'):
                name, symbol, decimals, total_supply, owner = await asyncio.gather(
                    token.functions.name().call(),
                    token.functions.symbol().call(),
                    token.functions.decimals().call(),
                    token.functions.totalSupply().call(),
                    token.functions.owner().call()
                )
        except (BadFunctionCallOutput, ContractLogicError) as exc:
            raise ContractNotFound(checksum, 'address does not implement the token interface') from exc

        decimals = int(decimals)
        return TokenInfo(
            address=checksum,
            name=str(name),
            symbol=str(symbol),
            decimals=decimals,
            total_supply=_to_decimal_str(int(total_supply), decimals),
            owner=Web3.to_checksum_address(owner)
        )

    async def balance_of(self, token_address: str, holder: str) -> int:
        for value in (token_address, holder):
            if not Web3.is_address(value):
                raise InvalidAddress(f'{value!r} is not a valid EVM address')
        checksum = Web3.to_checksum_address(token_address)
        token = self.web3.eth.contract(address=checksum, abi=TOKEN_ABI)
        try:
            async with self._rpc('balance_of'):
                return int(await token.functions.balanceOf(Web3.to_checksum_address(holder)).call())
        except (BadFunctionCallOutput, ContractLogicError) as exc:
            raise ContractNotFound(checksum, 'address does not implement the token interface') from exc
