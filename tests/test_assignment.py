import threading

import pytest
from sqlalchemy import select

from haulops import assignment, errors, lifecycle
from haulops.db import SessionLocal
from haulops.locks import order_lock, order_locks
from haulops.machine import load_order
from haulops.models import ApplicationStatus, AssignmentMode, AuditLog, Contract, OrderStatus

from conftest import ADMIN


def _statuses(db, order_id):
    order = load_order(db, order_id)
    return {a.helper_id: a.status for a in order.applications}


@pytest.fixture
def direct_order(make_order, enterprise):
    def _make(**overrides):
        return make_order(actor=ADMIN, enterprise_id=enterprise.id, requester_id="ent-req", **overrides)
    return _make


class TestApply:
    def test_first_application_moves_to_matching(self, db, open_order):
        order = open_order()
        app = assignment.apply_as_helper(db, order.id, "h1", message="on my way", expected_arrival="09:00")
        assert app.status == ApplicationStatus.APPLIED
        assert load_order(db, order.id).status == OrderStatus.MATCHING
        assert load_order(db, order.id).current_helpers == 0

    def test_reapply_returns_existing_application(self, db, open_order):
        order = open_order()
        first = assignment.apply_as_helper(db, order.id, "h1")
        again = assignment.apply_as_helper(db, order.id, "h1")
        assert again.id == first.id
        assert len(load_order(db, order.id).applications) == 1

    def test_cannot_apply_before_deposit(self, db, make_order):
        order = make_order()
        with pytest.raises(errors.InvalidState):
            assignment.apply_as_helper(db, order.id, "h1")

    def test_cannot_apply_to_direct_order(self, db, direct_order):
        order = direct_order()
        with pytest.raises(errors.InvalidState):
            assignment.apply_as_helper(db, order.id, "h1")

    def test_full_order_rejects_applications(self, db, open_order):
        order = open_order(scheduled_date=None, max_helpers=1)
        assignment.apply_as_helper(db, order.id, "h1")
        assignment.assign_helper(db, order.id, "h1", ADMIN)
        with pytest.raises(errors.CapacityExceeded):
            assignment.apply_as_helper(db, order.id, "h2")

    def test_active_helper_cannot_apply_again(self, db, open_order):
        order = open_order(scheduled_date=None)
        assignment.apply_as_helper(db, order.id, "h1")
        assignment.assign_helper(db, order.id, "h1", ADMIN)
        with pytest.raises(errors.AlreadyAssigned):
            assignment.apply_as_helper(db, order.id, "h1")

    def test_removed_helper_may_apply_again(self, db, open_order):
        order = open_order(scheduled_date=None)
        assignment.apply_as_helper(db, order.id, "h1")
        assignment.assign_helper(db, order.id, "h1", ADMIN)
        assignment.remove_assignment(db, order.id, "h1", ADMIN)
        app = assignment.apply_as_helper(db, order.id, "h1")
        assert app.status == ApplicationStatus.APPLIED


class TestAssign:
    def test_single_assign(self, db, open_order):
        order = open_order(scheduled_date=None)
        assignment.apply_as_helper(db, order.id, "h1")
        result = assignment.assign_helper(db, order.id, "h1", ADMIN)
        assert result.assigned_count == 1
        assert result.status == "MATCHING"
        assert load_order(db, order.id).current_helpers == 1

    def test_assign_without_application(self, db, open_order):
        order = open_order()
        with pytest.raises(errors.NotFound):
            assignment.assign_helper(db, order.id, "ghost", ADMIN)

    def test_assign_twice(self, db, open_order):
        order = open_order(scheduled_date=None)
        assignment.apply_as_helper(db, order.id, "h1")
        assignment.assign_helper(db, order.id, "h1", ADMIN)
        with pytest.raises(errors.AlreadyAssigned):
            assignment.assign_helper(db, order.id, "h1", ADMIN)

    def test_capacity_without_schedule_date(self, db, open_order):
        order = open_order(scheduled_date=None, max_helpers=2)
        for h in ("h1", "h2", "h3"):
            assignment.apply_as_helper(db, order.id, h)
        assignment.assign_helper(db, order.id, "h1", ADMIN)
        assignment.assign_helper(db, order.id, "h2", ADMIN)
        with pytest.raises(errors.CapacityExceeded) as exc:
            assignment.assign_helper(db, order.id, "h3", ADMIN)
        assert exc.value.extra["max_helpers"] == 2
        order = load_order(db, order.id)
        assert order.current_helpers == 2
        assert order.status == OrderStatus.MATCHING

    def test_filling_capacity_schedules_order(self, db, open_order):
        order = open_order(max_helpers=2)
        for h in ("h1", "h2"):
            assignment.apply_as_helper(db, order.id, h)
            assignment.assign_helper(db, order.id, h, ADMIN)
        order = load_order(db, order.id)
        assert order.status == OrderStatus.SCHEDULED
        assert set(_statuses(db, order.id).values()) == {ApplicationStatus.SCHEDULED}
        assert {c.helper_id for c in order.contracts} == {"h1", "h2"}


class TestBulkAssign:
    def test_five_applied_three_slots(self, db, open_order):
        order = open_order()
        for h in ("h1", "h2", "h3", "h4", "h5"):
            assignment.apply_as_helper(db, order.id, h)
        result = assignment.bulk_assign(db, order.id, ADMIN)
        assert result.assigned_count == 3
        assert result.helpers == ["h1", "h2", "h3"]
        statuses = _statuses(db, order.id)
        assert statuses["h4"] == statuses["h5"] == ApplicationStatus.APPLIED
        order = load_order(db, order.id)
        assert order.current_helpers == 3
        assert order.status == OrderStatus.SCHEDULED

    def test_partial_room(self, db, open_order):
        order = open_order(scheduled_date=None)
        for h in ("h1", "h2", "h3"):
            assignment.apply_as_helper(db, order.id, h)
        assignment.assign_helper(db, order.id, "h2", ADMIN)
        result = assignment.bulk_assign(db, order.id, ADMIN)
        assert result.helpers == ["h1", "h3"]
        assert load_order(db, order.id).current_helpers == 3

    def test_nothing_applied(self, db, open_order):
        order = open_order()
        assert assignment.bulk_assign(db, order.id, ADMIN).assigned_count == 0

    def test_full_order_with_applicants(self, db, open_order):
        order = open_order(scheduled_date=None, max_helpers=1)
        assignment.apply_as_helper(db, order.id, "h1")
        assignment.apply_as_helper(db, order.id, "h2")
        assignment.bulk_assign(db, order.id, ADMIN)
        with pytest.raises(errors.CapacityExceeded):
            assignment.bulk_assign(db, order.id, ADMIN)


class TestDirectAssign:
    def test_enterprise_order_starts_open_without_deposit(self, direct_order):
        order = direct_order()
        assert order.status == OrderStatus.OPEN
        assert order.assignment_mode == AssignmentMode.DIRECT
        assert order.deposit_amount == 0
        assert order.order_number.startswith("2")

    def test_fill_in_one_call(self, db, direct_order):
        order = direct_order()
        result = assignment.direct_assign(db, order.id, ["d1", "d2", "d3"], ADMIN)
        assert result.assigned_count == 3
        assert result.status == "SCHEDULED"
        actions = [a.action for a in db.execute(
            select(AuditLog).where(AuditLog.order_id == order.id).order_by(AuditLog.id)).scalars()]
        assert actions.index("STATUS_MATCHING") < actions.index("STATUS_SCHEDULED")

    def test_over_capacity_is_all_or_nothing(self, db, direct_order):
        order = direct_order()
        assignment.direct_assign(db, order.id, ["d1", "d2"], ADMIN)
        with pytest.raises(errors.CapacityExceeded):
            assignment.direct_assign(db, order.id, ["d3", "d4"], ADMIN)
        order = load_order(db, order.id)
        assert order.current_helpers == 2
        assert sorted(_statuses(db, order.id)) == ["d1", "d2"]

    def test_already_active_helpers_are_skipped(self, db, direct_order):
        order = direct_order()
        assignment.direct_assign(db, order.id, ["d1", "d2"], ADMIN)
        result = assignment.direct_assign(db, order.id, ["d1", "d3", "d3"], ADMIN)
        assert result.helpers == ["d3"]
        assert load_order(db, order.id).current_helpers == 3

    def test_empty_selection(self, db, direct_order):
        order = direct_order()
        with pytest.raises(errors.ValidationError):
            assignment.direct_assign(db, order.id, [" ", ""], ADMIN)

    def test_open_order_rejects_direct_assign(self, db, open_order):
        order = open_order()
        with pytest.raises(errors.InvalidState):
            assignment.direct_assign(db, order.id, ["d1"], ADMIN)


class TestRemove:
    def test_remove_from_full_scheduled_order(self, db, open_order):
        order = open_order()
        for h in ("h1", "h2", "h3"):
            assignment.apply_as_helper(db, order.id, h)
        assignment.bulk_assign(db, order.id, ADMIN)

        result = assignment.remove_assignment(db, order.id, "h2", ADMIN)
        assert result.remaining_helpers == 2
        assert result.new_status == "MATCHING"
        statuses = _statuses(db, order.id)
        assert statuses["h2"] == ApplicationStatus.REJECTED
        assert statuses["h1"] == statuses["h3"] == ApplicationStatus.APPROVED
        contract = db.execute(select(Contract).where(Contract.helper_id == "h2")).scalar_one()
        assert contract.status == "cancelled"

        with pytest.raises(errors.NotFound):
            assignment.remove_assignment(db, order.id, "h2", ADMIN)

    def test_refill_reschedules_without_duplicate_contracts(self, db, open_order):
        order = open_order()
        for h in ("h1", "h2", "h3", "h4"):
            assignment.apply_as_helper(db, order.id, h)
        assignment.bulk_assign(db, order.id, ADMIN)
        assignment.remove_assignment(db, order.id, "h1", ADMIN)
        assignment.assign_helper(db, order.id, "h4", ADMIN)
        order = load_order(db, order.id)
        assert order.status == OrderStatus.SCHEDULED
        active = [c.helper_id for c in order.contracts if c.status == "active"]
        assert sorted(active) == ["h2", "h3", "h4"]

    def test_direct_order_reverts_to_open_when_empty(self, db, direct_order):
        order = direct_order(max_helpers=2)
        assignment.direct_assign(db, order.id, ["d1", "d2"], ADMIN)
        assert assignment.remove_assignment(db, order.id, "d1", ADMIN).new_status == "MATCHING"
        assert assignment.remove_assignment(db, order.id, "d2", ADMIN).new_status == "OPEN"

    def test_cannot_remove_after_work_started(self, db, direct_order):
        order = direct_order(max_helpers=1)
        assignment.direct_assign(db, order.id, ["d1"], ADMIN)
        lifecycle.start_due_orders(db, today=order.scheduled_date)
        with pytest.raises(errors.InvalidState):
            assignment.remove_assignment(db, order.id, "d1", ADMIN)

    def test_unknown_helper(self, db, open_order):
        order = open_order()
        with pytest.raises(errors.NotFound):
            assignment.remove_assignment(db, order.id, "nobody", ADMIN)


def _run_threads(count, target):
    barrier = threading.Barrier(count)
    outcomes = []
    guard = threading.Lock()

    def runner(i):
        session = SessionLocal()
        try:
            barrier.wait()
            result = target(session, i)
        except errors.CoreError as e:
            result = e
        finally:
            session.close()
        with guard:
            outcomes.append(result)

    threads = [threading.Thread(target=runner, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


class TestConcurrency:
    def test_concurrent_removals_of_same_helper(self, db, open_order):
        order = open_order()
        for h in ("h1", "h2", "h3"):
            assignment.apply_as_helper(db, order.id, h)
        assignment.bulk_assign(db, order.id, ADMIN)
        order_id = order.id
        db.close()

        outcomes = _run_threads(2, lambda s, i: assignment.remove_assignment(s, order_id, "h1", ADMIN))
        successes = [o for o in outcomes if isinstance(o, assignment.RemovalResult)]
        failures = [o for o in outcomes if isinstance(o, errors.NotFound)]
        assert len(successes) == 1 and len(failures) == 1
        assert successes[0].remaining_helpers == 2
        assert load_order(db, order_id).current_helpers == 2

    def test_concurrent_direct_assigns_respect_capacity(self, db, direct_order):
        order = direct_order(max_helpers=3)
        order_id = order.id
        db.close()

        outcomes = _run_threads(6, lambda s, i: assignment.direct_assign(s, order_id, [f"d{i}"], ADMIN))
        successes = [o for o in outcomes if isinstance(o, assignment.AssignmentResult)]
        rejected = [o for o in outcomes if isinstance(o, errors.CapacityExceeded)]
        assert len(successes) == 3
        assert len(rejected) == 3
        order = load_order(db, order_id)
        assert order.current_helpers == 3 == len(order.active_applications)
        assert order.status == OrderStatus.SCHEDULED

    def test_concurrent_single_assigns_respect_capacity(self, db, open_order):
        order = open_order(scheduled_date=None, max_helpers=2)
        for i in range(5):
            assignment.apply_as_helper(db, order.id, f"h{i}")
        order_id = order.id
        db.close()

        outcomes = _run_threads(5, lambda s, i: assignment.assign_helper(s, order_id, f"h{i}", ADMIN))
        assert len([o for o in outcomes if isinstance(o, assignment.AssignmentResult)]) == 2
        assert len([o for o in outcomes if isinstance(o, errors.CapacityExceeded)]) == 3
        assert load_order(db, order_id).current_helpers == 2

    def test_lock_registry_is_empty_afterwards(self, db, open_order):
        order = open_order()
        order_id = order.id
        db.close()
        _run_threads(4, lambda s, i: assignment.apply_as_helper(s, order_id, f"h{i}"))
        assert order_locks.held_count() == 0
        assert len(load_order(db, order_id).applications) == 4

    def test_busy_order_times_out(self, db, make_order, monkeypatch):
        monkeypatch.setenv("ORDER_LOCK_TIMEOUT", "0.2")
        order_id = make_order().id
        db.close()
        with order_lock(order_id):
            outcomes = _run_threads(1, lambda s, i: lifecycle.approve_deposit(s, order_id, ADMIN))
        assert len(outcomes) == 1
        assert isinstance(outcomes[0], errors.ConcurrencyConflict)
        assert order_locks.held_count() == 0
        assert load_order(db, order_id).status == OrderStatus.AWAITING_DEPOSIT

    def test_remove_racing_assign_on_full_order(self, db, open_order):
        order = open_order(max_helpers=2)
        for h in ("h1", "h2", "h3"):
            assignment.apply_as_helper(db, order.id, h)
        assignment.assign_helper(db, order.id, "h1", ADMIN)
        assignment.assign_helper(db, order.id, "h2", ADMIN)
        assert load_order(db, order.id).status == OrderStatus.SCHEDULED
        order_id = order.id
        db.close()

        def race(session, i):
            if i == 0:
                return assignment.remove_assignment(session, order_id, "h1", ADMIN)
            return assignment.assign_helper(session, order_id, "h3", ADMIN)

        outcomes = _run_threads(2, race)
        assert any(isinstance(o, assignment.RemovalResult) for o in outcomes)
        assert all(isinstance(o, (assignment.RemovalResult, assignment.AssignmentResult, errors.CapacityExceeded,
                                     errors.InvalidState)) for o in outcomes)
        order = load_order(db, order_id)
        assert order.current_helpers <= order.max_helpers
        assert order.current_helpers == len(order.active_applications)
        if order.current_helpers == order.max_helpers:
            assert order.status == OrderStatus.SCHEDULED
        else:
            assert order.status == OrderStatus.MATCHING


def test_scheduled_date_required_for_scheduling(db, open_order):
    order = open_order(scheduled_date=None, max_helpers=1)
    assignment.apply_as_helper(db, order.id, "h1")
    assignment.assign_helper(db, order.id, "h1", ADMIN)
    assert load_order(db, order.id).status == OrderStatus.MATCHING
