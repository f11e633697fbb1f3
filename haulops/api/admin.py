from fastapi import APIRouter, BackgroundTasks, Depends
from typing import List, Optional
from sqlalchemy.orm import Session

from haulops import lifecycle
from haulops.db import get_db
from haulops.jobs import dispatch_notifications, run_sweeps
from haulops.schemas import (
    Actor, EnterpriseIn, EnterpriseOut, PricingPolicyIn, PricingPolicyOut, RefundPolicyIn, RefundPolicyOut,
    SettleIn, SettlementOut, SettlementRunOut, SweepIn, SweepOut,
)
from .deps import require_roles

router = APIRouter(prefix="/v1/admin", tags=["admin"])
system_router = APIRouter(prefix="/v1/system", tags=["system"])

admin_only = require_roles("admin")


@router.get("/refund-policies", response_model=List[RefundPolicyOut])
def refund_policies(actor: Actor = Depends(admin_only), db: Session = Depends(get_db)):
    return lifecycle.get_refund_policies(db)


@router.put("/refund-policies/{key}", response_model=RefundPolicyOut)
def update_refund_policy(key: str, body: RefundPolicyIn,
                         actor: Actor = Depends(admin_only), db: Session = Depends(get_db)):
    return lifecycle.update_refund_policy(db, key, body, actor)


@router.get("/pricing-policies", response_model=List[PricingPolicyOut])
def pricing_policies(actor: Actor = Depends(admin_only), db: Session = Depends(get_db)):
    return lifecycle.list_pricing_policies(db)


@router.put("/pricing-policies/{courier}", response_model=PricingPolicyOut)
def upsert_pricing_policy(courier: str, body: PricingPolicyIn,
                          actor: Actor = Depends(admin_only), db: Session = Depends(get_db)):
    return lifecycle.upsert_pricing_policy(db, courier, body, actor)


@router.post("/enterprises", response_model=EnterpriseOut, status_code=201)
def create_enterprise(body: EnterpriseIn, actor: Actor = Depends(admin_only), db: Session = Depends(get_db)):
    return lifecycle.create_enterprise(db, body, actor)


@router.post("/settlements/run", response_model=SettlementRunOut)
def run_settlement(background: BackgroundTasks, actor: Actor = Depends(admin_only), db: Session = Depends(get_db)):
    closed = lifecycle.run_settlement(db, actor)
    background.add_task(dispatch_notifications)
    return SettlementRunOut(closed=closed)


@router.post("/settlements/{order_id}", response_model=List[SettlementOut])
def settle_order(order_id: int, background: BackgroundTasks, body: Optional[SettleIn] = None,
                 actor: Actor = Depends(admin_only), db: Session = Depends(get_db)):
    settlements = lifecycle.settle_order(db, order_id, actor, body.deductions if body else None)
    background.add_task(dispatch_notifications)
    return settlements


@system_router.post("/sweep", response_model=SweepOut)
def sweep(background: BackgroundTasks, body: Optional[SweepIn] = None,
          actor: Actor = Depends(require_roles("system", "admin")), db: Session = Depends(get_db)):
    result = run_sweeps(db, body.today if body else None)
    background.add_task(dispatch_notifications)
    return SweepOut(**result)
