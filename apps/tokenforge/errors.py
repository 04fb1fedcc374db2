from __future__ import annotations


class TokenForgeError(Exception):
    kind = 'internal'
    status_code = 500
    retryable = False

    def __init__(self, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code

    def payload(self) -> dict:
        return {'error': self.kind, 'message': self.detail}


class ValidationError(TokenForgeError):
    kind = 'validation_error'
    status_code = 422


class OutOfRange(ValidationError):
    kind = 'out_of_range'


class InvalidDate(ValidationError):
    kind = 'invalid_date'


class InvalidAmount(ValidationError):
    kind = 'invalid_amount'


class InvalidAddress(ValidationError):
    kind = 'invalid_address'


class NetworkConfigError(TokenForgeError):
    kind = 'network_config_error'
    status_code = 503


class UnsupportedNetwork(NetworkConfigError):
    kind = 'unsupported_network'
    status_code = 404

    def __init__(self, chain_id: int) -> None:
        super().__init__(f'chain_id={chain_id} is not a supported network')
        self.chain_id = chain_id


class FactoryNotDeployed(NetworkConfigError):
    kind = 'factory_not_deployed'

    def __init__(self, chain_id: int) -> None:
        super().__init__(f'token factory is not deployed on chain_id={chain_id}')
        self.chain_id = chain_id


class WalletError(TokenForgeError):
    kind = 'wallet_error'
    status_code = 502


class WalletUnavailable(WalletError):
    kind = 'wallet_unavailable'
    status_code = 503


class UserRejected(WalletError):
    kind = 'user_rejected'


class NetworkMismatch(WalletError):
    kind = 'network_mismatch'


class TransactionError(TokenForgeError):
    kind = 'transaction_error'
    status_code = 502

    def __init__(self, detail: str, *, transaction_hash: str | None = None) -> None:
        super().__init__(detail)
        self.transaction_hash = transaction_hash

    def payload(self) -> dict:
        data = super().payload()
        data['transaction_hash'] = self.transaction_hash
        return data


class DeploymentFailed(TransactionError):
    kind = 'deployment_failed'


class InsufficientFunds(TransactionError):
    kind = 'insufficient_funds'


class TransactionTimeout(TransactionError):
    kind = 'timeout'
    status_code = 504

    def __init__(self, transaction_hash: str, timeout_seconds: float) -> None:
        super().__init__(
            f'transaction {transaction_hash} not confirmed within {timeout_seconds:g}s; '
            'it may still be mined, re-query by transaction hash before resubmitting',
            transaction_hash=transaction_hash
        )
        self.timeout_seconds = timeout_seconds


class ChainConnectionError(TokenForgeError):
    kind = 'connection_error'
    status_code = 503
    retryable = True


class ContractNotFound(TokenForgeError):
    kind = 'contract_not_found'
    status_code = 404

    def __init__(self, address: str, reason: str = 'no token contract at address') -> None:
        super().__init__(f'{reason}: {address}')
        self.address = address


class InconsistentSuccessError(TokenForgeError):
    """Receipt confirmed successfully but the creation event is missing."""

    kind = 'inconsistent_success'
    status_code = 502

    def __init__(self, transaction_hash: str) -> None:
        super().__init__(f'TokenCreated event missing from successful receipt {transaction_hash}')
        self.transaction_hash = transaction_hash
