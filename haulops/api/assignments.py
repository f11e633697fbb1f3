from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from haulops import assignment
from haulops.db import get_db
from haulops.jobs import dispatch_notifications
from haulops.schemas import Actor, AssignIn, AssignmentOut, DirectAssignIn, RemovalOut
from .deps import require_roles

router = APIRouter(prefix="/v1/orders", tags=["assignments"])


@router.post("/{order_id}/assign", response_model=AssignmentOut)
def assign(order_id: int, body: AssignIn, background: BackgroundTasks,
           actor: Actor = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    result = assignment.assign_helper(db, order_id, body.helper_id, actor)
    background.add_task(dispatch_notifications)
    return AssignmentOut(**vars(result))


@router.post("/{order_id}/bulk-assign", response_model=AssignmentOut)
def bulk_assign(order_id: int, background: BackgroundTasks,
                actor: Actor = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    result = assignment.bulk_assign(db, order_id, actor)
    background.add_task(dispatch_notifications)
    return AssignmentOut(**vars(result))


@router.post("/{order_id}/direct-assign", response_model=AssignmentOut)
def direct_assign(order_id: int, body: DirectAssignIn, background: BackgroundTasks,
                  actor: Actor = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    result = assignment.direct_assign(db, order_id, body.helper_ids, actor)
    background.add_task(dispatch_notifications)
    return AssignmentOut(**vars(result))


@router.delete("/{order_id}/assignments/{helper_id}", response_model=RemovalOut)
def remove(order_id: int, helper_id: str, background: BackgroundTasks,
           actor: Actor = Depends(require_roles("admin")), db: Session = Depends(get_db)):
    result = assignment.remove_assignment(db, order_id, helper_id, actor)
    background.add_task(dispatch_notifications)
    return RemovalOut(**vars(result))
