"""
Notification outbox.

Services enqueue rows inside their own transaction while holding the order
lock; nothing is sent there. Dispatch happens later (request background
task or worker loop) and is best-effort: a notifier failure is logged and
retried up to NOTIFY_MAX_ATTEMPTS, never surfaced to the caller.

Several dispatchers may run at once. Each row is claimed with a conditional
PENDING -> SENDING update before it is sent, so a row goes out at most once
per attempt.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .config import get_settings
from .metrics import NOTIFICATIONS
from .models import Notification, NotificationStatus

logger = logging.getLogger(__name__)


class Notifier:
    """Push/SMS/email gateway. Subclasses deliver one notification."""

    def send(self, notification: Notification) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    def send(self, notification: Notification) -> None:
        logger.info("notify %s [%s] %s", notification.recipient_id, notification.kind, notification.message)


_notifier: Notifier = LogNotifier()


def get_notifier() -> Notifier:
    return _notifier


def set_notifier(notifier: Notifier) -> None:
    global _notifier
    _notifier = notifier


def enqueue(db: Session, recipient_id: Optional[str], kind: str, message: str,
            dedupe_key: str, order_id: Optional[int] = None) -> Optional[Notification]:
    if not recipient_id:
        return None
    for pending in db.new:
        if isinstance(pending, Notification) and pending.dedupe_key == dedupe_key:
            return pending
    existing = db.execute(select(Notification).where(Notification.dedupe_key == dedupe_key)).scalar_one_or_none()
    if existing is not None:
        return existing
    n = Notification(recipient_id=recipient_id, kind=kind, message=message,
                     dedupe_key=dedupe_key, order_id=order_id)
    db.add(n)
    return n


def _claim(db: Session, notification_id: int) -> bool:
    """Move one row PENDING -> SENDING. Only the dispatcher whose update hits the row sends it."""
    claimed = db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.status == NotificationStatus.PENDING)
        .values(status=NotificationStatus.SENDING, attempts=Notification.attempts + 1)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    return claimed == 1


def dispatch_pending(db: Session, notifier: Optional[Notifier] = None, limit: int = 100) -> int:
    notifier = notifier or get_notifier()
    max_attempts = get_settings().NOTIFY_MAX_ATTEMPTS
    ids = db.execute(
        select(Notification.id)
        .where(Notification.status == NotificationStatus.PENDING)
        .order_by(Notification.id)
        .limit(limit)
    ).scalars().all()
    sent = 0
    for notification_id in ids:
        if not _claim(db, notification_id):
            continue
        n = db.get(Notification, notification_id, populate_existing=True)
        try:
            notifier.send(n)
        except Exception as e:
            n.last_error = str(e)
            if n.attempts >= max_attempts:
                n.status = NotificationStatus.FAILED
                NOTIFICATIONS.labels(outcome="failed").inc()
            else:
                n.status = NotificationStatus.PENDING
                NOTIFICATIONS.labels(outcome="retry").inc()
            logger.warning("notification %s to %s failed (attempt %s): %s", n.id, n.recipient_id, n.attempts, e)
        else:
            n.status = NotificationStatus.SENT
            n.sent_at = datetime.utcnow()
            sent += 1
            NOTIFICATIONS.labels(outcome="sent").inc()
        db.commit()
    return sent
