from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'


class VestingCategory(str, Enum):
    TEAM = 'team'
    ADVERTISING = 'advertising'
    PUBLIC_SALE = 'publicSale'
    PRIVATE_SALE = 'privateSale'
    ECOSYSTEM = 'ecosystem'
    MARKETING = 'marketing'
    DEVELOPMENT = 'development'


class DeploymentState(str, Enum):
    VALIDATING = 'validating'
    RESOLVING = 'resolving'
    ESTIMATING = 'estimating'
    SUBMITTING = 'submitting'
    CONFIRMING = 'confirming'
    EXTRACTING_EVENT = 'extracting_event'
    DONE = 'done'
    ERROR = 'error'


class DeploymentStatus(str, Enum):
    DEPLOYED = 'deployed'
    INCONSISTENT_SUCCESS = 'inconsistent_success'
    FAILED = 'failed'


@dataclass(frozen=True)
class FeatureFlags:
    burnable: bool = False
    mintable: bool = False
    transfer_fees: bool = False
    holder_redistribution: bool = False


@dataclass(frozen=True)
class TransferFeeConfig:
    buy_fee: Decimal | float | str
    sell_fee: Decimal | float | str
    recipient_address: str


@dataclass(frozen=True)
class VestingAllocation:
    category: str
    percentage: Decimal | float | str
    start_date: date | datetime | str | None
    duration_months: int
    enabled: bool = False


@dataclass(frozen=True)
class TokenConfig:
    name: str
    symbol: str
    initial_supply: str
    chain_id: int
    decimals: int = 18
    max_supply: str | None = None
    features: FeatureFlags = field(default_factory=FeatureFlags)
    transfer_fees_config: TransferFeeConfig | None = None
    vesting: tuple[VestingAllocation, ...] = ()


@dataclass(frozen=True)
class TokenParams:
    name: str
    symbol: str
    decimals: int
    initial_supply: int
    max_supply: int
    burnable: bool
    mintable: bool
    transfer_fees: bool
    holder_redistribution: bool
    buy_fee_bps: int
    sell_fee_bps: int
    fee_recipient: str

    def as_abi_tuple(self) -> tuple:
        return (
            self.name,
            self.symbol,
            self.decimals,
            self.initial_supply,
            self.max_supply,
            self.burnable,
            self.mintable,
            self.transfer_fees,
            self.holder_redistribution,
            self.buy_fee_bps,
            self.sell_fee_bps,
            self.fee_recipient
        )


@dataclass(frozen=True)
class VestingParams:
    percentage_bps: int
    start_timestamp: int
    duration_seconds: int
    enabled: bool = True

    def as_abi_tuple(self) -> tuple:
        return (self.percentage_bps, self.start_timestamp, self.duration_seconds, self.enabled)


@dataclass(frozen=True)
class FeeEstimate:
    gas_limit: int
    gas_price_wei: int
    protocol_fee_wei: int

    @property
    def total_cost_wei(self) -> int:
        return self.gas_limit * self.gas_price_wei + self.protocol_fee_wei


@dataclass(frozen=True)
class SubmittedTransaction:
    transaction_hash: str
    call: dict[str, Any]


@dataclass(frozen=True)
class TokenInfo:
    address: str
    name: str
    symbol: str
    decimals: int
    total_supply: str
    owner: str
    resolved: bool = True


@dataclass(frozen=True)
class DeploymentResult:
    success: bool
    status: DeploymentStatus
    chain_id: int
    contract_address: str | None = None
    transaction_hash: str | None = None
    gas_used: int | None = None
    protocol_fee: str | None = None
    native_cost_paid: str | None = None
    error_message: str | None = None
    error_kind: str | None = None
    error_status_code: int | None = None
    failed_state: DeploymentState | None = None
    warnings: tuple[str, ...] = ()

    @property
    def inconsistent(self) -> bool:
        return self.status is DeploymentStatus.INCONSISTENT_SUCCESS

    def to_record(self, *, user_address: str, token_name: str, token_symbol: str, network_key: str) -> dict:
        return {
            'user_address': user_address,
            'token_name': token_name,
            'token_symbol': token_symbol,
            'network': network_key,
            'chain_id': self.chain_id,
            'contract_address': self.contract_address or '',
            'transaction_hash': self.transaction_hash or '',
            'gas_used': self.gas_used or 0,
            'deployment_cost': self.native_cost_paid or '0',
            'status': self.status.value,
            'error_kind': self.error_kind,
            'error_message': self.error_message
        }
