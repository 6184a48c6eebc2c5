"""Tests for exclusive machine binding."""

import threading

import pytest

from dialysis_care.errors import MachineUnavailable, NotFound
from dialysis_care.models import Machine, MachineStatus, SessionStatus


class TestFindAvailable:
    """Available machine lookup."""

    def test_all_available_ordered_by_number(self, allocator):
        machines = allocator.find_available()
        assert [m.machine_number for m in machines] == ["M-01", "M-02", "M-03"]

    def test_isolation_only(self, allocator):
        machines = allocator.find_available(require_isolation=True)
        assert [m.id for m in machines] == ["ISO1"]

    def test_excludes_busy_and_maintenance(self, allocator, seeded_store):
        seeded_store.save_machine(Machine(id="M4", machine_number="M-04", status=MachineStatus.MAINTENANCE))
        seeded_store.save_machine(Machine(id="M5", machine_number="M-05", status=MachineStatus.OUT_OF_SERVICE))
        with seeded_store.transaction() as conn:
            seeded_store.set_machine_status(conn, "M2", MachineStatus.IN_USE)

        assert [m.id for m in allocator.find_available()] == ["M1", "ISO1"]


class TestBindRelease:
    """Direct bind and release."""

    def test_bind_marks_in_use(self, allocator, seeded_store):
        machine = allocator.bind("S1", "M1")

        assert machine.status == MachineStatus.IN_USE
        assert seeded_store.get_machine("M1").status == MachineStatus.IN_USE

    def test_bind_unavailable_machine(self, allocator):
        allocator.bind("S1", "M1")
        with pytest.raises(MachineUnavailable):
            allocator.bind("S2", "M1")

    def test_bind_unknown_machine(self, allocator):
        with pytest.raises(NotFound):
            allocator.bind("S1", "NOPE")

    def test_release_to_available(self, allocator):
        allocator.bind("S1", "M1")
        assert allocator.release("M1") == MachineStatus.AVAILABLE

    def test_release_to_maintenance_when_flagged(self, allocator, seeded_store):
        allocator.bind("S1", "M1")
        seeded_store.set_maintenance_pending("M1")

        assert allocator.release("M1") == MachineStatus.MAINTENANCE
        assert seeded_store.get_machine("M1").status == MachineStatus.MAINTENANCE

    def test_stats(self, allocator):
        allocator.bind("S1", "M2")
        stats = allocator.stats()

        assert stats["total_machines"] == 3
        assert stats["isolation_machines"] == 1
        assert stats["available_machines"] == 2
        assert stats["in_use_machines"] == 1


class TestConcurrentStart:
    """Two starts racing for one machine: exactly one wins."""

    def test_second_start_on_busy_machine_fails(self, lifecycle, make_session):
        first = make_session(status="checked_in")
        second = make_session(status="checked_in")

        lifecycle.start(first.id, machine_id="M1")
        with pytest.raises(MachineUnavailable):
            lifecycle.start(second.id, machine_id="M1")

        assert lifecycle.get(second.id).status == SessionStatus.CHECKED_IN
        assert lifecycle.get(second.id).machine_id is None

    def test_simultaneous_starts(self, lifecycle, make_session, seeded_store):
        sessions = [make_session(status="checked_in") for _ in range(2)]
        barrier = threading.Barrier(len(sessions))
        outcomes = {}

        def start(session_id):
            barrier.wait()
            try:
                lifecycle.start(session_id, machine_id="M1")
                outcomes[session_id] = "started"
            except MachineUnavailable:
                outcomes[session_id] = "unavailable"

        threads = [threading.Thread(target=start, args=(s.id,)) for s in sessions]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes.values()) == ["started", "unavailable"]
        in_progress = seeded_store.list_sessions(status=SessionStatus.IN_PROGRESS)
        assert len(in_progress) == 1
        assert in_progress[0].machine_id == "M1"

    def test_machine_reusable_after_completion(self, lifecycle, make_session, clock):
        first = make_session(status="in_progress")
        second = make_session(status="checked_in")

        clock.advance(minutes=200)
        lifecycle.complete(first.id)

        assert lifecycle.start(second.id, machine_id="M1").machine_id == "M1"
