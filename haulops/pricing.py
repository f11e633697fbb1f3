"""
Pricing, deposit, balance and refund math.

Everything here is pure: no session, no clock unless one is passed in.
Amounts are integer won. Price adjustments always round up so the payer
never under-covers a minimum total or a surcharge.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Mapping, Optional, Tuple

from . import errors


@dataclass(frozen=True)
class PriceQuote:
    base_price_per_unit: int
    base_after_urgent: int
    unit_price: int
    raw_total: int
    total: int
    min_applied: bool
    urgent_applied: bool


@dataclass(frozen=True)
class Payout:
    helper_id: str
    gross_amount: int
    platform_fee: int
    payout_amount: int
    damage_deduction: int = 0


def ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calc_unit_price(base_price_per_unit: int, box_count: int, min_total: int = 0,
                    urgent_surcharge_rate: int = 0, is_urgent: bool = False) -> PriceQuote:
    """Final per-unit price after the urgent surcharge and the minimum total.

    A non-positive box count cannot be priced against a minimum, so the base
    price comes back untouched.
    """
    if base_price_per_unit is None or base_price_per_unit <= 0:
        raise errors.ValidationError("base price per unit must be positive", base_price_per_unit=base_price_per_unit)
    if min_total < 0:
        raise errors.ValidationError("minimum total cannot be negative", min_total=min_total)
    if not 0 <= urgent_surcharge_rate <= 100:
        raise errors.ValidationError("urgent surcharge rate must be within 0-100", urgent_surcharge_rate=urgent_surcharge_rate)

    if box_count <= 0:
        return PriceQuote(base_price_per_unit, base_price_per_unit, base_price_per_unit, 0, 0, False, False)

    urgent_applied = bool(is_urgent and urgent_surcharge_rate > 0)
    if urgent_applied:
        base_after_urgent = ceil_div(base_price_per_unit * (100 + urgent_surcharge_rate), 100)
    else:
        base_after_urgent = base_price_per_unit
    raw_total = base_after_urgent * box_count

    if min_total > 0 and raw_total < min_total:
        required_per_box = ceil_div(min_total, box_count)
        final = max(base_after_urgent, required_per_box)
        return PriceQuote(base_price_per_unit, base_after_urgent, final, raw_total, final * box_count, True, urgent_applied)

    return PriceQuote(base_price_per_unit, base_after_urgent, base_after_urgent, raw_total, raw_total, False, urgent_applied)


def calc_deposit(quantity: int, unit_price: int, deposit_rate: float) -> int:
    if not 0 <= deposit_rate <= 1:
        raise errors.ValidationError("deposit rate must be a fraction within 0-1", deposit_rate=deposit_rate)
    return round_half_up(Decimal(quantity) * Decimal(unit_price) * Decimal(str(deposit_rate)))


def calc_balance(total_amount: int, deposit_amount: int) -> int:
    return total_amount - deposit_amount


def balance_due_date(scheduled_end_date: Optional[date], today: date,
                     days_after_end: int = 7, fallback_days: int = 14) -> date:
    if scheduled_end_date:
        return scheduled_end_date + timedelta(days=days_after_end)
    return today + timedelta(days=fallback_days)


def refund_bucket(active_helpers: int) -> str:
    return "before_matching" if active_helpers == 0 else "after_matching"


def calc_refund(deposit_amount: int, refund_rate: int) -> int:
    if not 0 <= refund_rate <= 100:
        raise errors.ValidationError("refund rate must be within 0-100", refund_rate=refund_rate)
    return round_half_up(Decimal(deposit_amount) * Decimal(refund_rate) / Decimal(100))


def extra_costs_total(extra_costs: Iterable[dict]) -> int:
    total = 0
    for line in extra_costs or []:
        total += int(line.get("unit_price") or 0) * int(line.get("quantity") or 0)
    return total


@dataclass(frozen=True)
class ClosingAmounts:
    supply_amount: int
    vat_amount: int
    total: int


def calc_vat(supply_amount: int, vat_rate: int) -> int:
    if not 0 <= vat_rate <= 100:
        raise errors.ValidationError("VAT rate must be within 0-100", vat_rate=vat_rate)
    return round_half_up(Decimal(supply_amount) * Decimal(vat_rate) / Decimal(100))


def closing_amounts(delivered: int, returned: int, misc: int, unit_price: int,
                    etc_price_per_unit: int, extra_costs: Iterable[dict] = (),
                    freight: Optional[int] = None, vat_rate: int = 0) -> ClosingAmounts:
    """Supply amount from reported counts, plus VAT on top.

    Delivered and returned boxes bill at the order unit price, misc items at
    the etc price. Freight orders bill the agreed freight.
    """
    extras = extra_costs_total(extra_costs)
    if freight is not None:
        supply = freight + extras
    else:
        supply = (delivered + returned) * unit_price + misc * etc_price_per_unit + extras
    vat = calc_vat(supply, vat_rate)
    return ClosingAmounts(supply, vat, supply + vat)


def closing_total(delivered: int, returned: int, misc: int, unit_price: int,
                  etc_price_per_unit: int, extra_costs: Iterable[dict] = (),
                  freight: Optional[int] = None, vat_rate: int = 0) -> int:
    return closing_amounts(delivered, returned, misc, unit_price, etc_price_per_unit, extra_costs,
                           freight, vat_rate).total


def split_payouts(total_amount: int, commission_rate: int, helper_ids: List[str],
                  deductions: Optional[Mapping[str, int]] = None) -> Tuple[int, List[Payout]]:
    """Commission off the top, the rest split evenly; the first helper takes the
    remainder. A helper's damage deduction comes out of their own payout only."""
    if not helper_ids:
        raise errors.ValidationError("no assigned helpers to settle")
    deductions = dict(deductions or {})
    unknown = set(deductions) - set(helper_ids)
    if unknown:
        raise errors.ValidationError("deduction for a helper not on this order", helper_ids=sorted(unknown))
    platform_fee = round_half_up(Decimal(total_amount) * Decimal(commission_rate) / Decimal(100))
    net = total_amount - platform_fee
    share, remainder = divmod(net, len(helper_ids))
    fee_share, fee_remainder = divmod(platform_fee, len(helper_ids))
    payouts = []
    for i, helper_id in enumerate(helper_ids):
        payout = share + (remainder if i == 0 else 0)
        fee = fee_share + (fee_remainder if i == 0 else 0)
        deduction = int(deductions.get(helper_id) or 0)
        if deduction < 0 or deduction > payout:
            raise errors.ValidationError("damage deduction must be between 0 and the helper's payout",
                                         helper_id=helper_id, deduction=deduction, payout=payout)
        payouts.append(Payout(helper_id, payout + fee, fee, payout - deduction, deduction))
    return platform_fee, payouts
