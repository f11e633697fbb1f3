"""
Order lifecycle state machine.

ALLOWED_TRANSITIONS is the only source of truth for status changes; every
status write goes through transition(). Mutating operations run inside
locked_order(), which holds the per-order lock for the whole
guard-check-and-commit.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import audit_hooks, errors, notify
from .codes import format_order_number
from .locks import order_lock
from .metrics import TRANSITIONS
from .models import ApplicationStatus, Contract, Order, OrderStatus

logger = logging.getLogger(__name__)

S = OrderStatus

ALLOWED_TRANSITIONS = {
    S.AWAITING_DEPOSIT: {S.OPEN, S.CANCELLED},
    S.OPEN: {S.MATCHING, S.CANCELLED},
    S.MATCHING: {S.SCHEDULED, S.OPEN, S.CANCELLED},
    S.SCHEDULED: {S.IN_PROGRESS, S.MATCHING, S.OPEN},
    S.IN_PROGRESS: {S.CLOSING_SUBMITTED},
    S.CLOSING_SUBMITTED: {S.FINAL_AMOUNT_CONFIRMED},
    S.FINAL_AMOUNT_CONFIRMED: {S.BALANCE_PAID},
    S.BALANCE_PAID: {S.SETTLEMENT_PAID},
    S.SETTLEMENT_PAID: {S.CLOSED},
    S.CLOSED: set(),
    S.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({S.CLOSED, S.CANCELLED})
PRE_WORK_STATUSES = frozenset({S.OPEN, S.MATCHING, S.SCHEDULED})


def parse_status(value) -> OrderStatus:
    """Boundary parsing: unknown values are rejected, never defaulted."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().upper())
    except ValueError:
        raise errors.ValidationError(f"unknown order status {value!r}", attempted=str(value))


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def transition(db: Session, order: Order, target: OrderStatus, actor=None, **meta) -> Order:
    current = order.status
    if not can_transition(current, target):
        logger.info("rejected transition order=%s %s -> %s", order.id, current.value, target.value)
        raise errors.InvalidTransition(
            f"cannot move order from {current.value} to {target.value}",
            order_id=order.id, status=current.value, attempted=target.value,
        )
    order.status = target
    order.updated_at = datetime.utcnow()
    TRANSITIONS.labels(from_status=current.value, to_status=target.value).inc()
    audit_hooks.record(db, order, actor, "STATUS_" + target.value, previous=current.value, **meta)
    logger.info("order %s %s -> %s", order.id, current.value, target.value)
    return order


def load_order(db: Session, order_id: int, for_update: bool = False) -> Order:
    stmt = select(Order).where(Order.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    order = db.execute(stmt).scalar_one_or_none()
    if order is None:
        raise errors.NotFound("order not found", order_id=order_id)
    return order


@contextmanager
def locked_order(db: Session, order_id: int) -> Iterator[Order]:
    with order_lock(order_id):
        # Anything this session read before the lock may be stale.
        db.expire_all()
        try:
            order = load_order(db, order_id, for_update=True)
            txn = db.get_transaction()
            yield order
        except Exception:
            db.rollback()
            raise
        if txn is not None and db.get_transaction() is txn:
            # Left without committing: end the transaction so the row lock goes with the process lock.
            db.rollback()


def sync_helper_count(order: Order) -> int:
    order.current_helpers = len(order.active_applications)
    if order.current_helpers > order.max_helpers:
        raise errors.CapacityExceeded(
            "assignment would exceed helper capacity",
            order_id=order.id, status=order.status.value,
            max_helpers=order.max_helpers, current_helpers=order.current_helpers,
        )
    return order.current_helpers


def schedule_if_full(db: Session, order: Order, actor=None) -> bool:
    if order.status != S.MATCHING:
        return False
    if order.current_helpers < order.max_helpers or not order.scheduled_date:
        return False
    transition(db, order, S.SCHEDULED, actor)
    active_contracts = {c.helper_id for c in order.contracts if c.status == "active"}
    number = format_order_number(order.order_number)
    for app in order.active_applications:
        if app.status == ApplicationStatus.APPROVED:
            app.status = ApplicationStatus.SCHEDULED
        if app.helper_id not in active_contracts:
            order.contracts.append(Contract(helper_id=app.helper_id))
        notify.enqueue(db, app.helper_id, "order.scheduled",
                       f"Order {number} is confirmed for {order.scheduled_date.isoformat()}",
                       dedupe_key=f"scheduled:{order.id}:{app.helper_id}:{app.id}:{order.updated_at.isoformat()}",
                       order_id=order.id)
    notify.enqueue(db, order.requester_id, "order.scheduled",
                   f"All helpers are assigned to order {number}",
                   dedupe_key=f"scheduled:{order.id}:requester:{order.updated_at.isoformat()}",
                   order_id=order.id)
    return True


def revert_below_capacity(db: Session, order: Order, actor=None) -> bool:
    if order.status == S.SCHEDULED and order.current_helpers < order.max_helpers:
        target = S.OPEN if (order.is_direct and order.current_helpers == 0) else S.MATCHING
        transition(db, order, target, actor, reason="helper removed")
        for app in order.active_applications:
            if app.status == ApplicationStatus.SCHEDULED:
                app.status = ApplicationStatus.APPROVED
        return True
    if order.status == S.MATCHING and order.is_direct and order.current_helpers == 0:
        transition(db, order, S.OPEN, actor, reason="helper removed")
        return True
    return False
