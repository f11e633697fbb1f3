import logging, threading
from datetime import date
from typing import Dict, Optional

from .db import SessionLocal
from . import lifecycle, notify

logger = logging.getLogger(__name__)


def run_sweeps(db, today: Optional[date] = None) -> Dict[str, list]:
    """One pass of the time-driven jobs: start due orders, remind overdue balances."""
    today = today or date.today()
    return {
        "started": lifecycle.start_due_orders(db, today),
        "overdue": lifecycle.remind_overdue_balances(db, today),
    }


def dispatch_notifications() -> int:
    """Send pending outbox rows in a fresh session. Used after responses and by the worker."""
    with SessionLocal() as db:
        return notify.dispatch_pending(db)


class JobRunner:
    def __init__(self, poll_seconds: float = 5.0):
        self.session_factory = SessionLocal
        self.poll_seconds = poll_seconds
        self._stop = threading.Event()

    def run_once(self):
        with self.session_factory() as db:
            result = run_sweeps(db)
            sent = notify.dispatch_pending(db)
        if result["started"] or result["overdue"] or sent:
            logger.info("worker pass: started=%s overdue=%s sent=%s",
                        result["started"], result["overdue"], sent)
        return result, sent

    def run(self):
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("worker pass failed")
            self._stop.wait(self.poll_seconds)

    def stop(self):
        self._stop.set()
