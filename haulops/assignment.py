"""
Helper assignment engine.

Open-application orders: helpers apply, admins approve one at a time or in
bulk. Direct-assignment (enterprise) orders: admins pick helper ids up
front and they land at approved. Every call runs under the order lock, so
the capacity check always sees removals that committed before it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from . import audit_hooks, errors, notify
from .codes import format_order_number
from .machine import (
    PRE_WORK_STATUSES, locked_order, revert_below_capacity, schedule_if_full, sync_helper_count, transition,
)
from .metrics import ASSIGNMENT_REJECTED
from .models import (
    ACTIVE_APPLICATION_STATUSES, ApplicationStatus, HelperApplication, Order, OrderStatus,
)
from .schemas import Actor

logger = logging.getLogger(__name__)

ACCEPTING_STATUSES = (OrderStatus.OPEN, OrderStatus.MATCHING)


@dataclass
class AssignmentResult:
    assigned_count: int
    helpers: List[str] = field(default_factory=list)
    status: str = ""


@dataclass
class RemovalResult:
    remaining_helpers: int
    new_status: str


def _application(order: Order, helper_id: str) -> Optional[HelperApplication]:
    for app in order.applications:
        if app.helper_id == helper_id:
            return app
    return None


def _require_accepting(order: Order, action: str) -> None:
    if order.status not in ACCEPTING_STATUSES:
        raise errors.InvalidState(f"order is not open for {action}", order_id=order.id, status=order.status.value)


def _capacity_error(order: Order, requested: int) -> errors.CapacityExceeded:
    ASSIGNMENT_REJECTED.labels(reason="capacity").inc()
    logger.info("capacity rejected order=%s current=%s max=%s requested=%s",
                order.id, order.current_helpers, order.max_helpers, requested)
    return errors.CapacityExceeded(
        "assignment would exceed helper capacity", order_id=order.id, status=order.status.value,
        max_helpers=order.max_helpers, current_helpers=order.current_helpers, requested=requested,
    )


def _already_assigned(order: Order, helper_id: str) -> errors.AlreadyAssigned:
    ASSIGNMENT_REJECTED.labels(reason="already_assigned").inc()
    return errors.AlreadyAssigned("helper is already assigned to this order", order_id=order.id,
                                  status=order.status.value, helper_id=helper_id)


def _approve(db: Session, order: Order, app: HelperApplication, actor: Optional[Actor]) -> None:
    app.status = ApplicationStatus.APPROVED
    app.approved_at = datetime.utcnow()
    app.removed_at = None
    notify.enqueue(db, app.helper_id, "application.approved",
                   f"You are assigned to order {format_order_number(order.order_number)}",
                   dedupe_key=f"approved:{order.id}:{app.helper_id}:{app.approved_at.isoformat()}",
                   order_id=order.id)


def _finish(db: Session, order: Order, actor: Optional[Actor]) -> None:
    sync_helper_count(order)
    if order.status == OrderStatus.OPEN and order.current_helpers > 0:
        transition(db, order, OrderStatus.MATCHING, actor)
    schedule_if_full(db, order, actor)


def apply_as_helper(db: Session, order_id: int, helper_id: str, message: Optional[str] = None,
                    expected_arrival: Optional[str] = None) -> HelperApplication:
    with locked_order(db, order_id) as order:
        if order.is_direct:
            raise errors.InvalidState("order takes direct assignment only", order_id=order.id,
                                      status=order.status.value)
        _require_accepting(order, "applications")
        app = _application(order, helper_id)
        if app is not None and app.status in ACTIVE_APPLICATION_STATUSES:
            raise _already_assigned(order, helper_id)
        if app is not None and app.status == ApplicationStatus.APPLIED:
            return app
        if order.current_helpers >= order.max_helpers:
            raise _capacity_error(order, 1)

        now = datetime.utcnow()
        if app is None:
            app = HelperApplication(helper_id=helper_id)
            order.applications.append(app)
        app.status = ApplicationStatus.APPLIED
        app.message = message
        app.expected_arrival = expected_arrival
        app.applied_at = now
        app.removed_at = None

        if order.status == OrderStatus.OPEN:
            transition(db, order, OrderStatus.MATCHING, Actor(id=helper_id, role="helper"))
        audit_hooks.record(db, order, Actor(id=helper_id, role="helper"), "HELPER_APPLIED")
        notify.enqueue(db, order.requester_id, "application.received",
                       f"New helper application on order {format_order_number(order.order_number)}",
                       dedupe_key=f"applied:{order.id}:{helper_id}:{now.isoformat()}", order_id=order.id)
        db.commit()
        db.refresh(app)
        return app


def assign_helper(db: Session, order_id: int, helper_id: str, actor: Actor) -> AssignmentResult:
    with locked_order(db, order_id) as order:
        if order.is_direct:
            raise errors.InvalidState("use direct assignment for enterprise orders", order_id=order.id,
                                      status=order.status.value)
        _require_accepting(order, "assignment")
        app = _application(order, helper_id)
        if app is not None and app.status in ACTIVE_APPLICATION_STATUSES:
            raise _already_assigned(order, helper_id)
        if app is None or app.status != ApplicationStatus.APPLIED:
            raise errors.NotFound("no pending application from this helper", order_id=order.id,
                                  status=order.status.value, helper_id=helper_id)
        if order.current_helpers >= order.max_helpers:
            raise _capacity_error(order, 1)

        _approve(db, order, app, actor)
        _finish(db, order, actor)
        audit_hooks.record(db, order, actor, "HELPER_APPROVED", helper_id=helper_id)
        result = AssignmentResult(1, [helper_id], order.status.value)
        db.commit()
        return result


def bulk_assign(db: Session, order_id: int, actor: Actor) -> AssignmentResult:
    with locked_order(db, order_id) as order:
        if order.is_direct:
            raise errors.InvalidState("bulk assignment is for open-application orders", order_id=order.id,
                                      status=order.status.value)
        _require_accepting(order, "assignment")
        applied = sorted(
            (a for a in order.applications if a.status == ApplicationStatus.APPLIED),
            key=lambda a: (a.applied_at, a.id),
        )
        room = order.max_helpers - order.current_helpers
        if applied and room <= 0:
            raise _capacity_error(order, len(applied))
        chosen = applied[:max(room, 0)]
        for app in chosen:
            _approve(db, order, app, actor)
        _finish(db, order, actor)
        helpers = [a.helper_id for a in chosen]
        audit_hooks.record(db, order, actor, "BULK_ASSIGN", helpers=helpers, left_applied=len(applied) - len(chosen))
        result = AssignmentResult(len(chosen), helpers, order.status.value)
        db.commit()
        logger.info("bulk assigned %s helper(s) to order %s", result.assigned_count, order_id)
        return result


def direct_assign(db: Session, order_id: int, helper_ids: Iterable[str], actor: Actor) -> AssignmentResult:
    selected = list(dict.fromkeys(h.strip() for h in helper_ids if h and h.strip()))
    if not selected:
        raise errors.ValidationError("select at least one helper", order_id=order_id)
    with locked_order(db, order_id) as order:
        if not order.is_direct:
            raise errors.InvalidState("direct assignment is for enterprise orders", order_id=order.id,
                                      status=order.status.value)
        _require_accepting(order, "assignment")
        existing = {a.helper_id: a for a in order.applications}
        new_ids = [h for h in selected
                   if not (h in existing and existing[h].status in ACTIVE_APPLICATION_STATUSES)]
        if len(new_ids) + order.current_helpers > order.max_helpers:
            raise _capacity_error(order, len(new_ids))

        for helper_id in new_ids:
            app = existing.get(helper_id)
            if app is None:
                app = HelperApplication(helper_id=helper_id, applied_at=datetime.utcnow())
                order.applications.append(app)
            _approve(db, order, app, actor)
        db.flush()
        _finish(db, order, actor)
        audit_hooks.record(db, order, actor, "DIRECT_ASSIGN", helpers=new_ids)
        result = AssignmentResult(len(new_ids), new_ids, order.status.value)
        db.commit()
        return result


def remove_assignment(db: Session, order_id: int, helper_id: str, actor: Actor) -> RemovalResult:
    with locked_order(db, order_id) as order:
        app = next((a for a in order.active_applications if a.helper_id == helper_id), None)
        if app is None:
            raise errors.NotFound("helper has no active assignment on this order", order_id=order.id,
                                  status=order.status.value, helper_id=helper_id)
        if order.status not in PRE_WORK_STATUSES:
            raise errors.InvalidState("cannot remove a helper once work has started", order_id=order.id,
                                      status=order.status.value, helper_id=helper_id)

        now = datetime.utcnow()
        app.status = ApplicationStatus.REJECTED
        app.removed_at = now
        for contract in order.contracts:
            if contract.helper_id == helper_id and contract.status == "active":
                contract.status = "cancelled"
                contract.cancelled_at = now
        sync_helper_count(order)
        revert_below_capacity(db, order, actor)
        audit_hooks.record(db, order, actor, "HELPER_REMOVED", helper_id=helper_id)
        notify.enqueue(db, helper_id, "assignment.removed",
                       f"You were removed from order {format_order_number(order.order_number)}",
                       dedupe_key=f"removed:{order.id}:{helper_id}:{now.isoformat()}", order_id=order.id)
        result = RemovalResult(order.current_helpers, order.status.value)
        db.commit()
        return result
