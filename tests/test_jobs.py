import threading
import time
from datetime import timedelta

from sqlalchemy import select

from haulops import assignment, jobs, notify
from haulops.db import SessionLocal
from haulops.models import Notification, NotificationStatus, OrderStatus
from haulops.machine import load_order

from conftest import ADMIN, RecordingNotifier


class SlowNotifier(RecordingNotifier):
    def send(self, notification) -> None:
        time.sleep(0.3)
        super().send(notification)


def _scheduled(db, open_order):
    order = open_order(max_helpers=1)
    assignment.apply_as_helper(db, order.id, "h1")
    assignment.assign_helper(db, order.id, "h1", ADMIN)
    return load_order(db, order.id)


class TestOutbox:
    def test_dispatch_sends_pending_once(self, db, make_order, notifier):
        order = make_order()
        assert jobs.dispatch_notifications() == 1
        assert notifier.sent == [("req-1", "order.deposit_requested")]
        assert jobs.dispatch_notifications() == 0
        row = db.execute(select(Notification).where(Notification.order_id == order.id)).scalar_one()
        assert row.status == NotificationStatus.SENT
        assert row.attempts == 1
        assert row.sent_at is not None

    def test_dedupe_key(self, db, make_order):
        order = make_order()
        first = notify.enqueue(db, "req-1", "x", "hello", dedupe_key="k1", order_id=order.id)
        again = notify.enqueue(db, "req-1", "x", "hello again", dedupe_key="k1", order_id=order.id)
        assert first is again
        db.commit()
        assert notify.enqueue(db, "req-1", "x", "later", dedupe_key="k1").message == "hello"

    def test_no_recipient(self, db):
        assert notify.enqueue(db, None, "x", "nobody", dedupe_key="k2") is None

    def test_failures_retry_then_give_up(self, db, make_order, monkeypatch):
        monkeypatch.setenv("NOTIFY_MAX_ATTEMPTS", "2")
        make_order()
        failing = RecordingNotifier(fail=True)
        assert notify.dispatch_pending(db, failing) == 0
        row = db.execute(select(Notification)).scalar_one()
        assert row.status == NotificationStatus.PENDING
        assert row.last_error == "gateway down"

        assert notify.dispatch_pending(db, failing) == 0
        db.refresh(row)
        assert row.status == NotificationStatus.FAILED
        assert row.attempts == 2
        assert notify.dispatch_pending(db, RecordingNotifier()) == 0

    def test_failed_notification_does_not_undo_the_operation(self, db, open_order):
        order = open_order()
        notify.dispatch_pending(db, RecordingNotifier(fail=True))
        assert load_order(db, order.id).status == OrderStatus.OPEN

    def test_concurrent_dispatchers_send_each_row_once(self, db, make_order):
        order = make_order()
        order_id = order.id
        db.close()
        slow = SlowNotifier()
        barrier = threading.Barrier(2)
        counts = []

        def run():
            with SessionLocal() as session:
                barrier.wait()
                counts.append(notify.dispatch_pending(session, slow))

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(counts) == [0, 1]
        assert slow.sent == [("req-1", "order.deposit_requested")]
        row = db.execute(select(Notification).where(Notification.order_id == order_id)).scalar_one()
        assert row.status == NotificationStatus.SENT
        assert row.attempts == 1


class TestSweeps:
    def test_run_sweeps(self, db, open_order):
        order = _scheduled(db, open_order)
        assert order.status == OrderStatus.SCHEDULED
        assert jobs.run_sweeps(db, order.scheduled_date - timedelta(days=1)) == {"started": [], "overdue": []}
        assert jobs.run_sweeps(db, order.scheduled_date) == {"started": [order.id], "overdue": []}
        assert load_order(db, order.id).status == OrderStatus.IN_PROGRESS

    def test_second_session_sees_started_order(self, open_order, db):
        order = _scheduled(db, open_order)
        with SessionLocal() as other:
            first = jobs.run_sweeps(db, order.scheduled_date)
            second = jobs.run_sweeps(other, order.scheduled_date)
        assert first["started"] == [order.id]
        assert second["started"] == []


class TestJobRunner:
    def test_run_once_dispatches(self, make_order, notifier):
        make_order()
        result, sent = jobs.JobRunner(poll_seconds=0.01).run_once()
        assert result == {"started": [], "overdue": []}
        assert sent == 1
        assert notifier.sent == [("req-1", "order.deposit_requested")]

    def test_stop_ends_loop(self):
        runner = jobs.JobRunner(poll_seconds=0.01)
        runner.stop()
        runner.run()
