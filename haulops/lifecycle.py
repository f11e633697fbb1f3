"""
Order lifecycle operations.

Each mutating operation holds the order lock (machine.locked_order) from
the first read to the commit. Status changes go through machine.transition;
notifications land in the outbox inside the same transaction.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from dateutil.parser import isoparse
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import audit_hooks, codes, errors, notify, pricing
from .config import get_settings
from .machine import load_order, locked_order, parse_status, transition
from .metrics import WEBHOOK_DUPLICATES
from .models import (
    ApplicationStatus, AssignmentMode, Category, ClosingReport, ClosingStatus, EnterpriseAccount, Order,
    OrderStatus, Payment, PaymentKind, PricingPolicy, RefundPolicy, RefundPolicyKey, Settlement,
)
from .schemas import (
    Actor, EnterpriseIn, OrderCreate, PaymentWebhookIn, PricingPolicyIn, RefundPolicyIn, SYSTEM_ACTOR,
)

logger = logging.getLogger(__name__)

# Statuses in which a stage's payment has already been recorded.
DEPOSIT_SETTLED_STATUSES = frozenset(set(OrderStatus) - {OrderStatus.AWAITING_DEPOSIT})
BALANCE_SETTLED_STATUSES = frozenset({OrderStatus.BALANCE_PAID, OrderStatus.SETTLEMENT_PAID, OrderStatus.CLOSED})


@dataclass
class CancelResult:
    order: Order
    refund_amount: int
    refund_rate: int


# ---------- Pricing policy resolution ----------

def resolve_pricing_policy(db: Session, category: str, courier_name: Optional[str]) -> Optional[PricingPolicy]:
    """Courier override first, then the category default row."""
    if courier_name:
        policy = db.execute(
            select(PricingPolicy).where(PricingPolicy.courier_name == courier_name.strip(),
                                        PricingPolicy.is_active.is_(True))
        ).scalar_one_or_none()
        if policy is not None:
            return policy
    return db.execute(
        select(PricingPolicy)
        .where(PricingPolicy.category == Category(category),
               PricingPolicy.is_default.is_(True),
               PricingPolicy.is_active.is_(True))
        .order_by(PricingPolicy.id)
    ).scalars().first()


def _price_order(db: Session, data: OrderCreate, enterprise: Optional[EnterpriseAccount]) -> Dict[str, Any]:
    settings = get_settings()
    policy = resolve_pricing_policy(db, data.category, data.courier_name)
    deposit_rate = 0.0 if enterprise is not None else settings.DEPOSIT_RATE

    if data.category in settings.freight_categories:
        if not data.freight or data.freight <= 0:
            raise errors.ValidationError("freight orders need a positive freight amount", category=data.category)
        priced = dict(
            quantity=1, freight=data.freight, base_price_per_unit=data.freight, unit_price=data.freight,
            min_total_applied=False, urgent_applied=False, total_amount=data.freight,
            deposit_amount=pricing.calc_deposit(1, data.freight, deposit_rate),
        )
    else:
        if data.quantity < 1:
            raise errors.ValidationError("quantity must be at least 1", quantity=data.quantity)
        if policy is not None:
            quote = pricing.calc_unit_price(policy.base_price_per_unit, data.quantity, policy.min_total,
                                            policy.urgent_surcharge_rate, data.is_urgent)
        elif data.base_price_per_unit is not None:
            quote = pricing.calc_unit_price(data.base_price_per_unit, data.quantity)
        else:
            raise errors.ValidationError("no pricing policy for this courier or category; pass base_price_per_unit",
                                         category=data.category, courier_name=data.courier_name)
        priced = dict(
            quantity=data.quantity, freight=None, base_price_per_unit=quote.base_price_per_unit,
            unit_price=quote.unit_price, min_total_applied=quote.min_applied,
            urgent_applied=quote.urgent_applied, total_amount=quote.total,
            deposit_amount=pricing.calc_deposit(data.quantity, quote.unit_price, deposit_rate),
        )

    if enterprise is not None and enterprise.commission_rate is not None:
        commission = enterprise.commission_rate
    else:
        commission = policy.commission_rate if policy is not None else 0
    etc_price = policy.etc_price_per_unit if policy is not None and policy.etc_price_per_unit else \
        settings.DEFAULT_ETC_PRICE_PER_UNIT

    priced.update(
        deposit_rate=deposit_rate,
        balance_amount=pricing.calc_balance(priced["total_amount"], priced["deposit_amount"]),
        commission_rate=commission,
        etc_price_per_unit=etc_price,
    )
    return priced


# ---------- Create / deposit ----------

def create_order(db: Session, data: OrderCreate, actor: Actor) -> Order:
    settings = get_settings()
    if data.scheduled_date and data.scheduled_end_date and data.scheduled_end_date < data.scheduled_date:
        raise errors.ValidationError("scheduled end date is before the start date")

    requester_id = data.requester_id if (actor.role == "admin" and data.requester_id) else actor.id

    enterprise = None
    if data.enterprise_id is not None:
        enterprise = db.get(EnterpriseAccount, data.enterprise_id)
        if enterprise is None:
            raise errors.NotFound("enterprise account not found", enterprise_id=data.enterprise_id)

    priced = _price_order(db, data, enterprise)
    due = data.balance_due_date or pricing.balance_due_date(
        data.scheduled_end_date, date.today(),
        settings.BALANCE_DUE_DAYS_AFTER_END, settings.BALANCE_DUE_DAYS_FALLBACK,
    )

    with codes.number_lock:
        number = codes.next_order_number(db, enterprise is not None, data.delivery_area, data.contact_phone)
        order = Order(
            order_number=number,
            requester_id=requester_id,
            enterprise_id=enterprise.id if enterprise is not None else None,
            assignment_mode=AssignmentMode.DIRECT if enterprise is not None else AssignmentMode.OPEN,
            # Enterprise orders carry no deposit and go straight to OPEN.
            status=OrderStatus.OPEN if enterprise is not None else OrderStatus.AWAITING_DEPOSIT,
            category=Category(data.category),
            courier_name=data.courier_name,
            delivery_area=data.delivery_area,
            is_urgent=data.is_urgent,
            scheduled_date=data.scheduled_date,
            scheduled_end_date=data.scheduled_end_date,
            balance_due_date=due,
            max_helpers=data.max_helpers or settings.DEFAULT_MAX_HELPERS,
            **priced,
        )
        db.add(order)
        db.flush()
        audit_hooks.record(db, order, actor, "ORDER_CREATED", status=order.status.value,
                           total_amount=order.total_amount, deposit_amount=order.deposit_amount)
        if order.status == OrderStatus.AWAITING_DEPOSIT:
            notify.enqueue(db, requester_id, "order.deposit_requested",
                           f"Order {codes.format_order_number(number)} created; deposit due {order.deposit_amount} won",
                           dedupe_key=f"created:{order.id}", order_id=order.id)
        db.commit()
    db.refresh(order)
    logger.info("created order %s (%s) status=%s total=%s", order.id, number, order.status.value, order.total_amount)
    return order


def _record_payment(db: Session, order: Order, kind: PaymentKind, amount: int, provider: str, txn: str,
                    paid_at: Optional[datetime] = None) -> None:
    if amount <= 0:
        return
    exists = db.execute(
        select(Payment.id).where(Payment.provider == provider, Payment.transaction_id == txn)
    ).scalar_one_or_none()
    if exists is None:
        order.payments.append(Payment(kind=kind, amount=amount, provider=provider, transaction_id=txn,
                                      created_at=paid_at or datetime.utcnow()))


def _open_after_deposit(db: Session, order: Order, actor: Actor, provider: str, txn: str,
                        paid_at: Optional[datetime] = None) -> None:
    transition(db, order, OrderStatus.OPEN, actor, provider=provider)
    _record_payment(db, order, PaymentKind.DEPOSIT, order.deposit_amount, provider, txn, paid_at)
    notify.enqueue(db, order.requester_id, "order.open",
                   f"Deposit received; order {codes.format_order_number(order.order_number)} is open",
                   dedupe_key=f"open:{order.id}", order_id=order.id)


def approve_deposit(db: Session, order_id: int, actor: Actor) -> Order:
    with locked_order(db, order_id) as order:
        _open_after_deposit(db, order, actor, "manual", f"manual-{order.id}-deposit")
        db.commit()
    return order


# ---------- Cancellation / refunds ----------

def _ensure_refund_policies(db: Session) -> Dict[RefundPolicyKey, RefundPolicy]:
    settings = get_settings()
    defaults = {
        RefundPolicyKey.BEFORE_MATCHING: (settings.DEFAULT_BEFORE_MATCHING_REFUND_RATE,
                                          "Cancelled before any helper is assigned"),
        RefundPolicyKey.AFTER_MATCHING: (settings.DEFAULT_AFTER_MATCHING_REFUND_RATE,
                                         "Cancelled after at least one helper is assigned"),
    }
    rows = {p.key: p for p in db.execute(select(RefundPolicy)).scalars().all()}
    for key, (rate, description) in defaults.items():
        if key not in rows:
            rows[key] = RefundPolicy(key=key, refund_rate=rate, description=description)
            db.add(rows[key])
    return rows


def get_refund_policies(db: Session) -> List[RefundPolicy]:
    rows = _ensure_refund_policies(db)
    if db.new:
        db.commit()
    return [rows[RefundPolicyKey.BEFORE_MATCHING], rows[RefundPolicyKey.AFTER_MATCHING]]


def update_refund_policy(db: Session, key: str, data: RefundPolicyIn, actor: Actor) -> RefundPolicy:
    try:
        policy_key = RefundPolicyKey(key)
    except ValueError:
        raise errors.ValidationError(f"unknown refund policy {key!r}", key=key)
    policy = _ensure_refund_policies(db)[policy_key]
    policy.refund_rate = data.refund_rate
    if data.description is not None:
        policy.description = data.description
    policy.updated_by = actor.id
    audit_hooks.record(db, None, actor, "REFUND_POLICY_UPDATED", key=policy_key.value, refund_rate=data.refund_rate)
    db.commit()
    db.refresh(policy)
    return policy


def cancel_order(db: Session, order_id: int, actor: Actor, reason: Optional[str] = None) -> CancelResult:
    with locked_order(db, order_id) as order:
        if actor.role == "requester" and order.requester_id != actor.id:
            raise errors.InvalidState("only the requester who posted the order can cancel it",
                                      order_id=order.id, status=order.status.value)
        previous = order.status
        active = order.active_applications
        transition(db, order, OrderStatus.CANCELLED, actor, reason=reason)

        if previous == OrderStatus.AWAITING_DEPOSIT:
            rate, refund = 0, 0
        else:
            bucket = RefundPolicyKey(pricing.refund_bucket(len(active)))
            rate = _ensure_refund_policies(db)[bucket].refund_rate
            refund = pricing.calc_refund(order.deposit_amount, rate)

        now = datetime.utcnow()
        order.refund_rate = rate
        order.refund_amount = refund
        order.cancel_reason = reason
        order.cancelled_at = now
        _record_payment(db, order, PaymentKind.REFUND, refund, "manual", f"refund-{order.id}")

        for app in order.applications:
            if app.status != ApplicationStatus.REJECTED:
                app.status = ApplicationStatus.REJECTED
                app.removed_at = now
        for contract in order.contracts:
            if contract.status == "active":
                contract.status = "cancelled"
                contract.cancelled_at = now
        order.current_helpers = 0

        number = codes.format_order_number(order.order_number)
        notify.enqueue(db, order.requester_id, "order.cancelled",
                       f"Order {number} cancelled; refund {refund} won",
                       dedupe_key=f"cancelled:{order.id}", order_id=order.id)
        for app in active:
            notify.enqueue(db, app.helper_id, "order.cancelled", f"Order {number} was cancelled",
                           dedupe_key=f"cancelled:{order.id}:{app.helper_id}", order_id=order.id)
        db.commit()
        logger.info("cancelled order %s refund=%s rate=%s helpers=%s", order.id, refund, rate, len(active))
    return CancelResult(order, refund, rate)


# ---------- Closing ----------

def submit_closing_report(db: Session, order_id: int, helper_id: str, counts: Mapping[str, Any],
                          attachments: Optional[Iterable[str]] = None) -> ClosingReport:
    delivered = int(counts.get("delivered_count") or 0)
    returned = int(counts.get("returned_count") or 0)
    misc = int(counts.get("misc_count") or 0)
    if min(delivered, returned, misc) < 0:
        raise errors.ValidationError("counts cannot be negative", order_id=order_id)
    extra_costs = [dict(line) for line in counts.get("extra_costs") or []]
    for line in extra_costs:
        if int(line.get("unit_price") or 0) < 0 or int(line.get("quantity") or 0) < 0:
            raise errors.ValidationError("extra cost lines cannot be negative", order_id=order_id)
    urls = [str(u) for u in (attachments or [])]

    with locked_order(db, order_id) as order:
        if order.status not in (OrderStatus.IN_PROGRESS, OrderStatus.CLOSING_SUBMITTED):
            raise errors.InvalidState("closing reports are accepted only while work is in progress",
                                      order_id=order.id, status=order.status.value)
        if helper_id not in {a.helper_id for a in order.active_applications}:
            raise errors.InvalidState("helper is not assigned to this order", order_id=order.id,
                                      status=order.status.value, helper_id=helper_id)

        for previous in order.closing_reports:
            previous.superseded = True
        amounts = pricing.closing_amounts(delivered, returned, misc, order.unit_price, order.etc_price_per_unit,
                                          extra_costs, order.freight, get_settings().VAT_RATE)
        report = ClosingReport(
            helper_id=helper_id, delivered_count=delivered, returned_count=returned, misc_count=misc,
            extra_costs=extra_costs, attachments=urls,
            vat_amount=amounts.vat_amount, final_amount=amounts.total,
        )
        order.closing_reports.append(report)

        actor = Actor(id=helper_id, role="helper")
        if order.status == OrderStatus.IN_PROGRESS:
            transition(db, order, OrderStatus.CLOSING_SUBMITTED, actor)
        audit_hooks.record(db, order, actor, "CLOSING_SUBMITTED", preview_total=report.final_amount)
        notify.enqueue(db, order.requester_id, "closing.submitted",
                       f"Closing report submitted for order {codes.format_order_number(order.order_number)}",
                       dedupe_key=f"closing:{order.id}:{datetime.utcnow().isoformat()}", order_id=order.id)
        db.commit()
        db.refresh(report)
    return report


def approve_closing(db: Session, order_id: int, actor: Actor) -> Order:
    with locked_order(db, order_id) as order:
        transition(db, order, OrderStatus.FINAL_AMOUNT_CONFIRMED, actor)
        report = order.current_report
        if report is None:
            raise errors.InvalidState("no closing report to approve", order_id=order.id,
                                      status=order.status.value)
        amounts = pricing.closing_amounts(report.delivered_count, report.returned_count, report.misc_count,
                                          order.unit_price, order.etc_price_per_unit, report.extra_costs,
                                          order.freight, get_settings().VAT_RATE)
        total = amounts.total
        if total < order.deposit_amount:
            raise errors.ValidationError("final total is below the captured deposit", order_id=order.id,
                                         status=order.status.value, final_amount=total,
                                         deposit_amount=order.deposit_amount)
        now = datetime.utcnow()
        report.status = ClosingStatus.APPROVED
        report.approved_at = now
        report.vat_amount = amounts.vat_amount
        report.final_amount = total
        order.total_amount = total
        order.balance_amount = pricing.calc_balance(total, order.deposit_amount)
        order.final_amount_locked = True
        notify.enqueue(db, order.requester_id, "balance.due",
                       f"Final amount {total} won confirmed; balance {order.balance_amount} won due "
                       f"{order.balance_due_date.isoformat() if order.balance_due_date else 'now'}",
                       dedupe_key=f"final:{order.id}", order_id=order.id)
        db.commit()
    return order


# ---------- Balance / payments ----------

def _mark_balance_paid(db: Session, order: Order, actor: Actor, provider: str, txn: str,
                       paid_at: Optional[datetime] = None) -> None:
    transition(db, order, OrderStatus.BALANCE_PAID, actor, provider=provider)
    order.balance_paid_at = paid_at or datetime.utcnow()
    _record_payment(db, order, PaymentKind.BALANCE, order.balance_amount, provider, txn, paid_at)
    notify.enqueue(db, order.requester_id, "balance.paid",
                   f"Balance received for order {codes.format_order_number(order.order_number)}",
                   dedupe_key=f"balance_paid:{order.id}", order_id=order.id)


def confirm_balance_paid(db: Session, order_id: int, actor: Actor) -> Order:
    with locked_order(db, order_id) as order:
        _mark_balance_paid(db, order, actor, "manual", f"manual-{order.id}-balance")
        db.commit()
    return order


def _replayed_payment(db: Session, payload: PaymentWebhookIn) -> Optional[Payment]:
    existing = db.execute(
        select(Payment).where(Payment.provider == payload.provider,
                              Payment.transaction_id == payload.transaction_id)
    ).scalar_one_or_none()
    if existing is None:
        return None
    if existing.order_id != payload.order_id or existing.amount != payload.amount:
        raise errors.ValidationError("transaction id was already used for a different payment",
                                     order_id=payload.order_id, transaction_id=payload.transaction_id)
    WEBHOOK_DUPLICATES.inc()
    logger.warning("duplicate payment webhook %s/%s for order %s",
                   payload.provider, payload.transaction_id, payload.order_id)
    return existing


def _parse_paid_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        paid_at = isoparse(value)
    except (ValueError, OverflowError):
        raise errors.ValidationError(f"unparseable paid_at {value!r}")
    if paid_at.tzinfo is not None:
        paid_at = paid_at.astimezone(timezone.utc).replace(tzinfo=None)
    return paid_at


def handle_payment_webhook(db: Session, payload: PaymentWebhookIn) -> Order:
    """Apply a provider payment notification. Replays of the same
    (provider, transaction_id) return the order unchanged."""
    if payload.amount <= 0:
        raise errors.ValidationError("payment amount must be positive", order_id=payload.order_id)
    paid_at = _parse_paid_at(payload.paid_at)
    actor = Actor(id=payload.provider, role="system")
    with locked_order(db, payload.order_id) as order:
        if _replayed_payment(db, payload) is not None:
            return order
        if payload.purpose == "deposit":
            expected = order.deposit_amount
        else:
            expected = order.balance_amount
        if payload.amount != expected:
            raise errors.ValidationError(f"{payload.purpose} amount does not match the order",
                                         order_id=order.id, status=order.status.value,
                                         amount=payload.amount, expected=expected)
        settled = DEPOSIT_SETTLED_STATUSES if payload.purpose == "deposit" else BALANCE_SETTLED_STATUSES
        if order.status in settled:
            # Stage was already confirmed by hand; keep the provider's record of the money.
            kind = PaymentKind.DEPOSIT if payload.purpose == "deposit" else PaymentKind.BALANCE
            _record_payment(db, order, kind, payload.amount, payload.provider, payload.transaction_id, paid_at)
            audit_hooks.record(db, order, actor, "PAYMENT_AFTER_CONFIRMATION", purpose=payload.purpose,
                               transaction_id=payload.transaction_id, amount=payload.amount)
            db.commit()
            logger.warning("%s payment %s/%s arrived for order %s already at %s",
                           payload.purpose, payload.provider, payload.transaction_id, order.id, order.status.value)
            return order
        if payload.purpose == "deposit":
            _open_after_deposit(db, order, actor, payload.provider, payload.transaction_id, paid_at)
        else:
            _mark_balance_paid(db, order, actor, payload.provider, payload.transaction_id, paid_at)
        db.commit()
    return order


# ---------- Sweeps ----------

def start_due_orders(db: Session, today: Optional[date] = None) -> List[int]:
    """SCHEDULED -> IN_PROGRESS for orders whose scheduled date has come.
    Status is re-read under the lock, so overlapping sweeps start each order once."""
    today = today or date.today()
    due_ids = db.execute(
        select(Order.id).where(Order.status == OrderStatus.SCHEDULED, Order.scheduled_date <= today)
    ).scalars().all()
    started = []
    for order_id in due_ids:
        try:
            with locked_order(db, order_id) as order:
                if order.status != OrderStatus.SCHEDULED or not order.scheduled_date or order.scheduled_date > today:
                    continue
                transition(db, order, OrderStatus.IN_PROGRESS, SYSTEM_ACTOR)
                number = codes.format_order_number(order.order_number)
                for app in order.active_applications:
                    app.status = ApplicationStatus.IN_PROGRESS
                    notify.enqueue(db, app.helper_id, "order.started", f"Order {number} starts today",
                                   dedupe_key=f"started:{order.id}:{app.helper_id}", order_id=order.id)
                db.commit()
                started.append(order_id)
        except errors.ConcurrencyConflict:
            logger.warning("order %s busy; start sweep will retry it", order_id)
    return started


def remind_overdue_balances(db: Session, today: Optional[date] = None) -> List[int]:
    today = today or date.today()
    overdue = db.execute(
        select(Order).where(Order.status == OrderStatus.FINAL_AMOUNT_CONFIRMED,
                            Order.balance_due_date < today)
    ).scalars().all()
    for order in overdue:
        notify.enqueue(db, order.requester_id, "balance.overdue",
                       f"Balance {order.balance_amount} won for order "
                       f"{codes.format_order_number(order.order_number)} was due {order.balance_due_date.isoformat()}",
                       dedupe_key=f"overdue:{order.id}:{today.isoformat()}", order_id=order.id)
    db.commit()
    return [o.id for o in overdue]


# ---------- Settlement ----------

def settle_order(db: Session, order_id: int, actor: Actor,
                 deductions: Optional[Mapping[str, int]] = None) -> List[Settlement]:
    """Pay out a BALANCE_PAID order. `deductions` maps helper id to a cargo
    damage amount taken from that helper's payout."""
    with locked_order(db, order_id) as order:
        transition(db, order, OrderStatus.SETTLEMENT_PAID, actor)
        helpers = sorted(order.active_applications, key=lambda a: (a.approved_at or a.applied_at, a.id))
        platform_fee, payouts = pricing.split_payouts(order.total_amount, order.commission_rate,
                                                      [a.helper_id for a in helpers], deductions)
        paid = {s.helper_id for s in order.settlements}
        number = codes.format_order_number(order.order_number)
        for p in payouts:
            if p.helper_id in paid:
                continue
            order.settlements.append(Settlement(helper_id=p.helper_id, gross_amount=p.gross_amount,
                                                platform_fee=p.platform_fee, damage_deduction=p.damage_deduction,
                                                payout_amount=p.payout_amount))
            notify.enqueue(db, p.helper_id, "settlement.paid", f"Payout {p.payout_amount} won for order {number}",
                           dedupe_key=f"settled:{order.id}:{p.helper_id}", order_id=order.id)
        audit_hooks.record(db, order, actor, "SETTLED", platform_fee=platform_fee, helpers=len(payouts),
                           deductions=sum(p.damage_deduction for p in payouts))
        db.commit()
        return list(order.settlements)


def close_order(db: Session, order_id: int, actor: Actor) -> Order:
    with locked_order(db, order_id) as order:
        transition(db, order, OrderStatus.CLOSED, actor)
        order.closed_at = datetime.utcnow()
        db.commit()
    return order


def run_settlement(db: Session, actor: Actor) -> List[int]:
    """Settle every BALANCE_PAID order and close it. Returns the closed ids."""
    pending = db.execute(
        select(Order.id, Order.status)
        .where(Order.status.in_([OrderStatus.BALANCE_PAID, OrderStatus.SETTLEMENT_PAID]))
        .order_by(Order.id)
    ).all()
    closed = []
    for order_id, status in pending:
        try:
            if status == OrderStatus.BALANCE_PAID:
                settle_order(db, order_id, actor)
            close_order(db, order_id, actor)
            closed.append(order_id)
        except errors.CoreError as e:
            logger.warning("settlement skipped order %s: %s", order_id, e.message)
    return closed


# ---------- Admin catalog ----------

def list_pricing_policies(db: Session) -> List[PricingPolicy]:
    return db.execute(select(PricingPolicy).order_by(PricingPolicy.courier_name)).scalars().all()


def upsert_pricing_policy(db: Session, courier_name: str, data: PricingPolicyIn, actor: Actor) -> PricingPolicy:
    name = (courier_name or "").strip()
    if not name:
        raise errors.ValidationError("courier name is required")
    # Validates base price, minimum and surcharge the same way order pricing will.
    pricing.calc_unit_price(data.base_price_per_unit, 0, data.min_total, data.urgent_surcharge_rate)

    policy = db.execute(select(PricingPolicy).where(PricingPolicy.courier_name == name)).scalar_one_or_none()
    if policy is None:
        policy = PricingPolicy(courier_name=name)
        db.add(policy)
    values = data.model_dump()
    values["category"] = Category(values["category"])
    for field, value in values.items():
        setattr(policy, field, value)
    if data.is_default:
        others = db.execute(
            select(PricingPolicy).where(PricingPolicy.category == values["category"],
                                        PricingPolicy.courier_name != name,
                                        PricingPolicy.is_default.is_(True))
        ).scalars().all()
        for other in others:
            other.is_default = False
    audit_hooks.record(db, None, actor, "PRICING_POLICY_UPDATED", courier_name=name, **data.model_dump())
    db.commit()
    db.refresh(policy)
    return policy


def create_enterprise(db: Session, data: EnterpriseIn, actor: Actor) -> EnterpriseAccount:
    account = EnterpriseAccount(name=data.name.strip(), contact_phone=data.contact_phone,
                                commission_rate=data.commission_rate)
    db.add(account)
    db.flush()
    audit_hooks.record(db, None, actor, "ENTERPRISE_CREATED", enterprise_id=account.id, name=account.name)
    db.commit()
    db.refresh(account)
    return account


# ---------- Reads ----------

def get_order(db: Session, order_id: int) -> Order:
    return load_order(db, order_id)


def list_orders(db: Session, status: Optional[str] = None, requester_id: Optional[str] = None,
                limit: int = 50, offset: int = 0) -> List[Order]:
    stmt = select(Order)
    if status:
        stmt = stmt.where(Order.status == parse_status(status))
    if requester_id:
        stmt = stmt.where(Order.requester_id == requester_id)
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
    return db.execute(stmt).scalars().all()
