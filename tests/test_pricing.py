from datetime import date

import pytest

from haulops import errors
from haulops.pricing import (
    balance_due_date, calc_balance, calc_deposit, calc_refund, calc_unit_price, calc_vat, closing_amounts,
    closing_total, refund_bucket, split_payouts,
)


class TestUnitPrice:
    def test_minimum_total_raises_unit_price(self):
        quote = calc_unit_price(1200, 100, min_total=150000)
        assert quote.unit_price == 1500
        assert quote.min_applied is True
        assert quote.total == 150000

    def test_urgent_surcharge_without_minimum(self):
        quote = calc_unit_price(1000, 50, urgent_surcharge_rate=20, is_urgent=True)
        assert quote.unit_price == 1200
        assert quote.urgent_applied is True
        assert quote.min_applied is False

    def test_surcharge_ignored_when_not_urgent(self):
        quote = calc_unit_price(1000, 50, urgent_surcharge_rate=20, is_urgent=False)
        assert quote.unit_price == 1000
        assert quote.urgent_applied is False

    def test_surcharge_rounds_up(self):
        assert calc_unit_price(999, 10, urgent_surcharge_rate=15, is_urgent=True).unit_price == 1149

    def test_minimum_applies_after_surcharge(self):
        quote = calc_unit_price(1000, 10, min_total=20000, urgent_surcharge_rate=10, is_urgent=True)
        assert quote.base_after_urgent == 1100
        assert quote.unit_price == 2000
        assert quote.min_applied is True

    def test_minimum_not_needed(self):
        quote = calc_unit_price(1500, 100, min_total=100000)
        assert quote.unit_price == 1500
        assert quote.min_applied is False

    def test_minimum_ceiling_per_box(self):
        # 100000 / 3 = 33333.33 -> 33334
        assert calc_unit_price(100, 3, min_total=100000).unit_price == 33334

    @pytest.mark.parametrize("boxes", [0, -5])
    def test_non_positive_box_count_returns_base(self, boxes):
        quote = calc_unit_price(1200, boxes, min_total=150000, urgent_surcharge_rate=20, is_urgent=True)
        assert quote.unit_price == 1200
        assert quote.min_applied is False

    @pytest.mark.parametrize("kwargs", [
        dict(base_price_per_unit=0, box_count=10),
        dict(base_price_per_unit=-100, box_count=10),
        dict(base_price_per_unit=1000, box_count=10, min_total=-1),
        dict(base_price_per_unit=1000, box_count=10, urgent_surcharge_rate=101),
        dict(base_price_per_unit=1000, box_count=10, urgent_surcharge_rate=-1),
    ])
    def test_invalid_inputs(self, kwargs):
        with pytest.raises(errors.ValidationError):
            calc_unit_price(**kwargs)


class TestDepositAndBalance:
    def test_ten_percent_deposit(self):
        deposit = calc_deposit(100, 1500, 0.10)
        assert deposit == 15000
        assert calc_balance(150000, deposit) == 135000

    def test_deposit_rounds_half_up(self):
        assert calc_deposit(1, 125, 0.10) == 13

    def test_deposit_rate_out_of_range(self):
        with pytest.raises(errors.ValidationError):
            calc_deposit(1, 1000, 1.5)

    def test_due_date_from_end_date(self):
        assert balance_due_date(date(2026, 3, 10), date(2026, 1, 1)) == date(2026, 3, 17)

    def test_due_date_fallback(self):
        assert balance_due_date(None, date(2026, 1, 1)) == date(2026, 1, 15)

    def test_due_date_custom_offsets(self):
        assert balance_due_date(date(2026, 3, 10), date(2026, 1, 1), days_after_end=3) == date(2026, 3, 13)
        assert balance_due_date(None, date(2026, 1, 1), fallback_days=30) == date(2026, 1, 31)


class TestRefunds:
    def test_bucket_by_active_helpers(self):
        assert refund_bucket(0) == "before_matching"
        assert refund_bucket(1) == "after_matching"
        assert refund_bucket(3) == "after_matching"

    def test_refund_amounts(self):
        assert calc_refund(15000, 100) == 15000
        assert calc_refund(15000, 70) == 10500
        assert calc_refund(333, 70) == 233
        assert calc_refund(5, 50) == 3
        assert calc_refund(15000, 0) == 0

    def test_refund_rate_out_of_range(self):
        with pytest.raises(errors.ValidationError):
            calc_refund(15000, 120)


class TestClosingAndPayouts:
    def test_closing_total_from_counts(self):
        extras = [{"name": "toll", "unit_price": 10000, "quantity": 2}]
        assert closing_total(90, 5, 3, 1500, 1800, extras) == 167900

    def test_closing_total_for_freight(self):
        extras = [{"name": "toll", "unit_price": 10000, "quantity": 2}]
        assert closing_total(0, 0, 0, 50000, 1800, extras, freight=50000) == 70000

    def test_even_split(self):
        fee, payouts = split_payouts(100000, 10, ["a", "b", "c"])
        assert fee == 10000
        assert [p.payout_amount for p in payouts] == [30000, 30000, 30000]

    def test_remainder_goes_to_first_helper(self):
        fee, payouts = split_payouts(100001, 10, ["a", "b", "c"])
        assert fee == 10000
        assert [p.payout_amount for p in payouts] == [30001, 30000, 30000]
        assert sum(p.payout_amount for p in payouts) + fee == 100001
        assert sum(p.gross_amount for p in payouts) == 100001

    def test_no_helpers(self):
        with pytest.raises(errors.ValidationError):
            split_payouts(1000, 10, [])

    def test_damage_deduction_comes_from_one_helper(self):
        fee, payouts = split_payouts(100000, 10, ["a", "b"], deductions={"b": 5000})
        assert fee == 10000
        assert [(p.payout_amount, p.damage_deduction) for p in payouts] == [(45000, 0), (40000, 5000)]
        assert [p.gross_amount for p in payouts] == [50000, 50000]

    @pytest.mark.parametrize("deductions", [{"b": 45001}, {"b": -1}, {"stranger": 100}])
    def test_invalid_deductions(self, deductions):
        with pytest.raises(errors.ValidationError):
            split_payouts(100000, 10, ["a", "b"], deductions=deductions)


class TestVat:
    def test_vat_added_on_supply(self):
        extras = [{"name": "toll", "unit_price": 10000, "quantity": 2}]
        amounts = closing_amounts(90, 5, 3, 1500, 1800, extras, vat_rate=10)
        assert amounts.supply_amount == 167900
        assert amounts.vat_amount == 16790
        assert amounts.total == 184690
        assert closing_total(90, 5, 3, 1500, 1800, extras, vat_rate=10) == 184690

    def test_vat_rounds_half_up(self):
        assert calc_vat(15, 10) == 2
        assert calc_vat(14, 10) == 1

    def test_freight_vat(self):
        assert closing_amounts(0, 0, 0, 50000, 1800, freight=50000, vat_rate=10).total == 55000

    def test_vat_rate_out_of_range(self):
        with pytest.raises(errors.ValidationError):
            calc_vat(1000, 101)
