"""Translate wizard-domain token configuration into factory call arguments.

Everything here is pure: no RPC, no clock, no globals. Every failure is a
``ValidationError`` subclass, so an error from this module never means
"try again later".
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Iterable

from web3 import Web3

from .errors import InvalidAddress, InvalidAmount, InvalidDate, OutOfRange, ValidationError
from .models import (
    ZERO_ADDRESS,
    TokenConfig,
    TokenParams,
    VestingAllocation,
    VestingCategory,
    VestingParams
)

MAX_FEE_BPS = 2500
MAX_ALLOCATION_BPS = 10_000
MAX_DECIMALS = 18
MAX_SYMBOL_LENGTH = 10
MAX_VESTING_ALLOCATIONS = 7
MIN_VESTING_MONTHS = 1
MAX_VESTING_MONTHS = 120
# Vesting durations use a fixed 30-day month, not calendar months.
SECONDS_PER_MONTH = 30 * 86400
UINT256_MAX = 2**256 - 1

_VESTING_CATEGORIES = {category.value for category in VestingCategory}


def _to_decimal(value, field: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmount(f'{field} must be a number, got {value!r}')
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmount(f'{field} must be a number, got {value!r}') from exc
    if not parsed.is_finite():
        raise InvalidAmount(f'{field} must be finite, got {value!r}')
    return parsed


def to_basis_points(percent, max_bps: int = MAX_FEE_BPS, *, field: str = 'percent') -> int:
    """Scale a percentage to basis points, flooring any sub-bps remainder."""
    scaled = _to_decimal(percent, field) * 100
    if scaled < 0 or scaled > max_bps:
        raise OutOfRange(f'{field}={percent} is outside 0..{Decimal(max_bps) / 100}%')
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def to_unix_seconds(value) -> int:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith('Z'):
            raw = raw[:-1] + '+00:00'
        try:
            moment = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise InvalidDate(f'unparsable date: {value!r}') from exc
    else:
        raise InvalidDate(f'unparsable date: {value!r}')

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def months_to_seconds(months: int) -> int:
    return int(months) * SECONDS_PER_MONTH


def encode_supply(amount, decimals: int) -> int:
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= MAX_DECIMALS:
        raise OutOfRange(f'decimals={decimals!r} is outside 0..{MAX_DECIMALS}')
    if amount is None or not str(amount).strip():
        raise InvalidAmount('supply amount is required')

    parsed = _to_decimal(amount, 'supply')
    if parsed < 0 or parsed != parsed.to_integral_value():
        raise InvalidAmount(f'supply must be a non-negative whole number, got {amount!r}')

    encoded = int(parsed) * 10**decimals
    if encoded > UINT256_MAX:
        raise InvalidAmount(f'supply {amount} does not fit in uint256 at {decimals} decimals')
    return encoded


def _validate_allocation(index: int, allocation: VestingAllocation) -> None:
    if allocation.category not in _VESTING_CATEGORIES:
        raise ValidationError(f'vesting[{index}].category={allocation.category!r} is not a known category')
    if not allocation.enabled:
        return

    percentage = _to_decimal(allocation.percentage, f'vesting[{index}].percentage')
    if percentage != percentage.quantize(Decimal('0.1'), rounding=ROUND_FLOOR):
        raise ValidationError(f'vesting[{index}].percentage={allocation.percentage} allows one decimal place')

    months = allocation.duration_months
    if isinstance(months, bool) or not isinstance(months, int):
        raise OutOfRange(f'vesting[{index}].duration_months must be an integer')
    if not MIN_VESTING_MONTHS <= months <= MAX_VESTING_MONTHS:
        raise OutOfRange(
            f'vesting[{index}].duration_months={months} is outside {MIN_VESTING_MONTHS}..{MAX_VESTING_MONTHS}'
        )


def encode_vesting_schedule(allocations: Iterable[VestingAllocation]) -> list[VestingParams]:
    allocations = list(allocations)
    if len(allocations) > MAX_VESTING_ALLOCATIONS:
        raise ValidationError(f'at most {MAX_VESTING_ALLOCATIONS} vesting allocations are supported')

    encoded: list[VestingParams] = []
    for index, allocation in enumerate(allocations):
        _validate_allocation(index, allocation)
        if not allocation.enabled:
            continue
        encoded.append(
            VestingParams(
                percentage_bps=to_basis_points(
                    allocation.percentage,
                    MAX_ALLOCATION_BPS,
                    field=f'vesting[{index}].percentage'
                ),
                start_timestamp=to_unix_seconds(allocation.start_date),
                duration_seconds=months_to_seconds(allocation.duration_months),
                enabled=True
            )
        )
    return encoded


def vesting_advisories(allocations: Iterable[VestingAllocation]) -> list[str]:
    total = Decimal('0')
    for allocation in allocations:
        if allocation.enabled:
            total += _to_decimal(allocation.percentage, 'vesting.percentage')
    if total > 100:
        return [f'enabled vesting allocations total {total}% of supply, above 100%; the factory may reject it']
    return []


def _fee_recipient(address: str) -> str:
    candidate = str(address or '').strip()
    if not Web3.is_address(candidate):
        raise InvalidAddress(f'fee recipient {address!r} is not a valid EVM address')
    checksum = Web3.to_checksum_address(candidate)
    if checksum == ZERO_ADDRESS:
        raise InvalidAddress('fee recipient cannot be the zero address')
    return checksum


def encode_token_params(config: TokenConfig) -> TokenParams:
    name = str(config.name or '').strip()
    if not name:
        raise ValidationError('name is required')

    symbol = str(config.symbol or '').strip().upper()
    if not symbol:
        raise ValidationError('symbol is required')
    if len(symbol) > MAX_SYMBOL_LENGTH:
        raise ValidationError(f'symbol={symbol} is longer than {MAX_SYMBOL_LENGTH} characters')

    initial_supply = encode_supply(config.initial_supply, config.decimals)
    if initial_supply <= 0:
        raise InvalidAmount('initial_supply must be greater than zero')

    max_supply = initial_supply
    if config.max_supply is not None and str(config.max_supply).strip():
        max_supply = encode_supply(config.max_supply, config.decimals)
        if max_supply < initial_supply:
            raise InvalidAmount('max_supply must be greater than or equal to initial_supply')

    features = config.features
    buy_fee_bps = 0
    sell_fee_bps = 0
    fee_recipient = ZERO_ADDRESS
    if features.transfer_fees:
        fees = config.transfer_fees_config
        if fees is None:
            raise ValidationError('transfer_fees is enabled but transfer_fees_config is missing')
        buy_fee_bps = to_basis_points(fees.buy_fee, MAX_FEE_BPS, field='buy_fee')
        sell_fee_bps = to_basis_points(fees.sell_fee, MAX_FEE_BPS, field='sell_fee')
        fee_recipient = _fee_recipient(fees.recipient_address)

    return TokenParams(
        name=name,
        symbol=symbol,
        decimals=config.decimals,
        initial_supply=initial_supply,
        max_supply=max_supply,
        burnable=bool(features.burnable),
        mintable=bool(features.mintable),
        transfer_fees=bool(features.transfer_fees),
        holder_redistribution=bool(features.holder_redistribution),
        buy_fee_bps=buy_fee_bps,
        sell_fee_bps=sell_fee_bps,
        fee_recipient=fee_recipient
    )
