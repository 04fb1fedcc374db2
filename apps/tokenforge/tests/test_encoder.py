import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from apps.tokenforge.encoder import (
    encode_supply,
    encode_token_params,
    encode_vesting_schedule,
    months_to_seconds,
    to_basis_points,
    to_unix_seconds,
    vesting_advisories
)
from apps.tokenforge.errors import InvalidAddress, InvalidAmount, InvalidDate, OutOfRange, ValidationError
from apps.tokenforge.models import (
    ZERO_ADDRESS,
    FeatureFlags,
    TokenConfig,
    TransferFeeConfig,
    VestingAllocation
)

RECIPIENT = '0x00000000000000000000000000000000000000aa'


def _config(**overrides) -> TokenConfig:
    values = {
        'name': 'Demo',
        'symbol': 'dem',
        'initial_supply': '1000000',
        'chain_id': 1,
        'decimals': 18
    }
    values.update(overrides)
    return TokenConfig(**values)


class BasisPointsTests(unittest.TestCase):
    def test_floors_fractional_basis_points(self) -> None:
        self.assertEqual(to_basis_points('2.5'), 250)
        self.assertEqual(to_basis_points('1.239'), 123)
        self.assertEqual(to_basis_points(Decimal('0.019')), 1)
        self.assertEqual(to_basis_points(0), 0)

    def test_fee_range_upper_bound(self) -> None:
        for step in range(0, 2501):
            percent = Decimal(step) / 100
            self.assertLessEqual(to_basis_points(percent), 2500)
        self.assertEqual(to_basis_points('25'), 2500)
        with self.assertRaises(OutOfRange):
            to_basis_points('25.001')

    def test_rejects_negative_and_non_numeric(self) -> None:
        with self.assertRaises(OutOfRange):
            to_basis_points('-0.01')
        with self.assertRaises(InvalidAmount):
            to_basis_points('ten')
        with self.assertRaises(InvalidAmount):
            to_basis_points('NaN')

    def test_custom_maximum(self) -> None:
        self.assertEqual(to_basis_points('100', 10_000), 10_000)
        with self.assertRaises(OutOfRange):
            to_basis_points('100.1', 10_000)


class TimeEncodingTests(unittest.TestCase):
    def test_months_use_thirty_day_convention(self) -> None:
        self.assertEqual(months_to_seconds(12), 12 * 30 * 86400)
        self.assertEqual(months_to_seconds(12), 31104000)

    def test_dates_are_utc_midnight(self) -> None:
        self.assertEqual(to_unix_seconds('2025-01-01'), 1735689600)
        self.assertEqual(to_unix_seconds(date(2025, 1, 1)), 1735689600)
        self.assertEqual(to_unix_seconds('2025-01-01T00:00:00Z'), 1735689600)
        self.assertEqual(
            to_unix_seconds(datetime(2025, 1, 1, 1, 0, tzinfo=timezone.utc)),
            1735689600 + 3600
        )

    def test_rejects_unparsable_dates(self) -> None:
        for value in ('', 'tomorrow', '2025-13-40', None):
            with self.assertRaises(InvalidDate):
                to_unix_seconds(value)


class SupplyTests(unittest.TestCase):
    def test_scales_by_decimals(self) -> None:
        self.assertEqual(encode_supply('1000000', 18), 1000000 * 10**18)
        self.assertEqual(encode_supply('42', 0), 42)
        self.assertEqual(encode_supply('7.0', 2), 700)

    def test_rejects_fractional_and_negative(self) -> None:
        for value in ('1.5', '-1', 'abc', '', 'Infinity'):
            with self.assertRaises(InvalidAmount):
                encode_supply(value, 18)

    def test_rejects_bad_decimals_and_overflow(self) -> None:
        with self.assertRaises(OutOfRange):
            encode_supply('1', 19)
        with self.assertRaises(InvalidAmount):
            encode_supply(str(2**256), 0)


class VestingScheduleTests(unittest.TestCase):
    def test_disabled_allocations_are_dropped(self) -> None:
        allocations = [
            VestingAllocation('team', '15', '2025-01-01', 12, enabled=True),
            VestingAllocation('advertising', '90', '', 12, enabled=False),
            VestingAllocation('marketing', '5.5', '2025-06-01', 24, enabled=True)
        ]

        encoded = encode_vesting_schedule(allocations)

        self.assertEqual(len(encoded), 2)
        self.assertEqual([item.percentage_bps for item in encoded], [1500, 550])
        self.assertEqual(encoded[0].start_timestamp, 1735689600)
        self.assertEqual(encoded[1].duration_seconds, 24 * 30 * 86400)
        self.assertTrue(all(item.enabled for item in encoded))

    def test_nothing_enabled_gives_empty_schedule(self) -> None:
        allocations = [VestingAllocation('team', '50', '', 12, enabled=False)]
        self.assertEqual(encode_vesting_schedule(allocations), [])

    def test_rejects_unknown_category_and_bad_duration(self) -> None:
        with self.assertRaises(ValidationError):
            encode_vesting_schedule([VestingAllocation('founders', '10', '2025-01-01', 12, enabled=True)])
        with self.assertRaises(OutOfRange):
            encode_vesting_schedule([VestingAllocation('team', '10', '2025-01-01', 121, enabled=True)])
        with self.assertRaises(OutOfRange):
            encode_vesting_schedule([VestingAllocation('team', '10', '2025-01-01', 0, enabled=True)])

    def test_rejects_more_than_one_decimal_place(self) -> None:
        with self.assertRaises(ValidationError):
            encode_vesting_schedule([VestingAllocation('team', '10.25', '2025-01-01', 12, enabled=True)])

    def test_rejects_more_than_seven_allocations(self) -> None:
        allocations = [VestingAllocation('team', '1', '2025-01-01', 12) for _ in range(8)]
        with self.assertRaises(ValidationError):
            encode_vesting_schedule(allocations)

    def test_over_allocation_is_advisory_only(self) -> None:
        allocations = [
            VestingAllocation('team', '60', '2025-01-01', 12, enabled=True),
            VestingAllocation('publicSale', '60', '2025-01-01', 12, enabled=True),
            VestingAllocation('ecosystem', '60', '2025-01-01', 12, enabled=False)
        ]
        self.assertEqual(len(encode_vesting_schedule(allocations)), 2)
        advisories = vesting_advisories(allocations)
        self.assertEqual(len(advisories), 1)
        self.assertIn('120', advisories[0])
        self.assertEqual(vesting_advisories(allocations[:1]), [])


class TokenParamsTests(unittest.TestCase):
    def test_minimal_config_encodes_supply_and_defaults(self) -> None:
        params = encode_token_params(_config())

        self.assertEqual(params.symbol, 'DEM')
        self.assertEqual(params.initial_supply, 1000000000000000000000000)
        self.assertEqual(params.max_supply, params.initial_supply)
        self.assertEqual(params.buy_fee_bps, 0)
        self.assertEqual(params.fee_recipient, ZERO_ADDRESS)
        self.assertFalse(params.transfer_fees)

    def test_transfer_fees_are_encoded_in_basis_points(self) -> None:
        params = encode_token_params(
            _config(
                features=FeatureFlags(transfer_fees=True),
                transfer_fees_config=TransferFeeConfig('2.5', '5', RECIPIENT)
            )
        )
        self.assertEqual((params.buy_fee_bps, params.sell_fee_bps), (250, 500))
        self.assertEqual(params.fee_recipient.lower(), RECIPIENT)

    def test_out_of_range_fee_is_rejected_not_clamped(self) -> None:
        with self.assertRaises(OutOfRange):
            encode_token_params(
                _config(
                    features=FeatureFlags(transfer_fees=True),
                    transfer_fees_config=TransferFeeConfig('30', '1', RECIPIENT)
                )
            )

    def test_transfer_fees_require_config_and_valid_recipient(self) -> None:
        with self.assertRaises(ValidationError):
            encode_token_params(_config(features=FeatureFlags(transfer_fees=True)))
        with self.assertRaises(InvalidAddress):
            encode_token_params(
                _config(
                    features=FeatureFlags(transfer_fees=True),
                    transfer_fees_config=TransferFeeConfig('1', '1', 'not-an-address')
                )
            )
        with self.assertRaises(InvalidAddress):
            encode_token_params(
                _config(
                    features=FeatureFlags(transfer_fees=True),
                    transfer_fees_config=TransferFeeConfig('1', '1', ZERO_ADDRESS)
                )
            )

    def test_rejects_invalid_basic_fields(self) -> None:
        with self.assertRaises(ValidationError):
            encode_token_params(_config(name='  '))
        with self.assertRaises(ValidationError):
            encode_token_params(_config(symbol='TOOLONGSYMBOL'))
        with self.assertRaises(OutOfRange):
            encode_token_params(_config(decimals=19))
        with self.assertRaises(InvalidAmount):
            encode_token_params(_config(initial_supply='0'))
        with self.assertRaises(InvalidAmount):
            encode_token_params(_config(max_supply='10'))

    def test_max_supply_above_initial(self) -> None:
        params = encode_token_params(_config(max_supply='2000000', decimals=0))
        self.assertEqual(params.initial_supply, 1000000)
        self.assertEqual(params.max_supply, 2000000)
