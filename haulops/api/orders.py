from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from typing import List, Optional
from sqlalchemy.orm import Session

from haulops import assignment, lifecycle
from haulops.db import get_db
from haulops.jobs import dispatch_notifications
from haulops.schemas import (
    Actor, ApplicationIn, ApplicationOut, CancelIn, CancelOut, ClosingIn, ClosingReportOut, OrderCreate, OrderOut,
)
from .deps import get_actor, require_roles, run_idempotent

router = APIRouter(prefix="/v1/orders", tags=["orders"])


@router.post("", status_code=201)
def create_order(body: OrderCreate, background: BackgroundTasks,
                 idem_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
                 actor: Actor = Depends(require_roles("requester", "admin")),
                 db: Session = Depends(get_db)):
    def create():
        return OrderOut.model_validate(lifecycle.create_order(db, body, actor))

    response = run_idempotent(db, actor, idem_key, "POST", "/v1/orders", create, status_code=201)
    background.add_task(dispatch_notifications)
    return response


@router.get("", response_model=List[OrderOut])
def list_orders(status: Optional[str] = None, requester_id: Optional[str] = None,
                limit: int = Query(default=50, ge=1, le=500), offset: int = Query(default=0, ge=0),
                actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    if actor.role == "requester":
        requester_id = actor.id
    return lifecycle.list_orders(db, status=status, requester_id=requester_id, limit=limit, offset=offset)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return lifecycle.get_order(db, order_id)


@router.post("/{order_id}/deposit/approve", response_model=OrderOut)
def approve_deposit(order_id: int, background: BackgroundTasks,
                    actor: Actor = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    order = lifecycle.approve_deposit(db, order_id, actor)
    background.add_task(dispatch_notifications)
    return order


@router.post("/{order_id}/cancel")
def cancel_order(order_id: int, background: BackgroundTasks, body: Optional[CancelIn] = None,
                 idem_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
                 actor: Actor = Depends(require_roles("requester", "admin")), db: Session = Depends(get_db)):
    def cancel():
        result = lifecycle.cancel_order(db, order_id, actor, reason=body.reason if body else None)
        return CancelOut(order=OrderOut.model_validate(result.order),
                         refund_amount=result.refund_amount, refund_rate=result.refund_rate)

    response = run_idempotent(db, actor, idem_key, "POST", f"/v1/orders/{order_id}/cancel", cancel)
    background.add_task(dispatch_notifications)
    return response


@router.post("/{order_id}/applications", response_model=ApplicationOut, status_code=201)
def apply(order_id: int, background: BackgroundTasks, body: Optional[ApplicationIn] = None,
          actor: Actor = Depends(require_roles("helper")), db: Session = Depends(get_db)):
    body = body or ApplicationIn()
    app = assignment.apply_as_helper(db, order_id, actor.id, message=body.message,
                                     expected_arrival=body.expected_arrival)
    background.add_task(dispatch_notifications)
    return app


@router.get("/{order_id}/applications", response_model=List[ApplicationOut])
def list_applications(order_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    order = lifecycle.get_order(db, order_id)
    return sorted(order.applications, key=lambda a: (a.applied_at, a.id))


@router.post("/{order_id}/closing", response_model=ClosingReportOut, status_code=201)
def submit_closing(order_id: int, body: ClosingIn, background: BackgroundTasks,
                   actor: Actor = Depends(require_roles("helper")), db: Session = Depends(get_db)):
    report = lifecycle.submit_closing_report(db, order_id, actor.id, body.model_dump(exclude={"attachments"}),
                                             body.attachments)
    background.add_task(dispatch_notifications)
    return report


@router.post("/{order_id}/closing/approve", response_model=OrderOut)
def approve_closing(order_id: int, background: BackgroundTasks,
                    actor: Actor = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    order = lifecycle.approve_closing(db, order_id, actor)
    background.add_task(dispatch_notifications)
    return order


@router.post("/{order_id}/balance/confirm", response_model=OrderOut)
def confirm_balance(order_id: int, background: BackgroundTasks,
                    actor: Actor = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    order = lifecycle.confirm_balance_paid(db, order_id, actor)
    background.add_task(dispatch_notifications)
    return order
