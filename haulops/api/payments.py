from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from typing import Optional
from sqlalchemy.orm import Session

from haulops import lifecycle, storage
from haulops.db import get_db
from haulops.jobs import dispatch_notifications
from haulops.schemas import Actor, AttachmentOut, OrderOut, PaymentWebhookIn
from .deps import require_roles

router = APIRouter(prefix="/v1", tags=["payments"])


@router.post("/payments/webhook", response_model=OrderOut)
def payment_webhook(body: PaymentWebhookIn, background: BackgroundTasks,
                    actor: Actor = Depends(require_roles("system")), db: Session = Depends(get_db)):
    order = lifecycle.handle_payment_webhook(db, body)
    background.add_task(dispatch_notifications)
    return order


@router.post("/attachments", response_model=AttachmentOut, status_code=201)
async def upload_attachment(request: Request, filename: str = Query(..., min_length=1),
                            order_id: Optional[int] = None,
                            actor: Actor = Depends(require_roles("helper"))):
    data = await request.body()
    folder = f"closing/{order_id}" if order_id else "closing"
    url = storage.store_bytes(folder, data, filename,
                              content_type=request.headers.get("content-type") or "application/octet-stream")
    return AttachmentOut(url=url)
