"""
Audit trail for order mutations.

SQLAlchemy listener keeps audit_logs.order_number populated when a row is
written with only order_id, so the trail stays readable after renumbering
or when the caller never loaded the order.
"""
import json
from typing import Any, Optional

from sqlalchemy import event, text
from sqlalchemy.orm import Session

from .models import AuditLog, Order


@event.listens_for(AuditLog, "before_insert")
def set_order_number_before_insert(mapper, connection, target):
    if getattr(target, "order_number", None) or not getattr(target, "order_id", None):
        return

    number = connection.execute(
        text("SELECT order_number FROM orders WHERE id = :oid"),
        {"oid": target.order_id},
    ).scalar()

    if number:
        target.order_number = number


def record(db: Session, order: Optional[Order], actor: Any, action: str, **meta: Any) -> AuditLog:
    entry = AuditLog(
        order_id=order.id if order is not None else None,
        actor_id=getattr(actor, "id", None),
        actor_role=getattr(actor, "role", None),
        action=action,
        meta=json.dumps(meta, default=str) if meta else None,
    )
    db.add(entry)
    return entry
