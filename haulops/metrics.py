from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter(prefix="/metrics")

TRANSITIONS = Counter("haulops_order_transitions_total", "Order status transitions", ["from_status", "to_status"])
ASSIGNMENT_REJECTED = Counter("haulops_assignment_rejected_total", "Rejected helper assignments", ["reason"])
WEBHOOK_DUPLICATES = Counter("haulops_payment_webhook_duplicates_total", "Payment webhook deliveries already processed")
NOTIFICATIONS = Counter("haulops_notifications_total", "Notification dispatch outcomes", ["outcome"])
LOCK_WAIT = Histogram("haulops_order_lock_wait_seconds", "Time spent waiting for an order lock")
LOCK_TIMEOUTS = Counter("haulops_order_lock_timeouts_total", "Order lock acquisitions that timed out")

@router.get("")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
