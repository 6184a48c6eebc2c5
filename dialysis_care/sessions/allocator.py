"""Exclusive, isolation-aware binding between sessions and machines."""

import logging
import sqlite3

from ..errors import MachineUnavailable, NotFound
from ..models import Machine, MachineStatus
from ..store import ClinicStore

logger = logging.getLogger(__name__)


class ResourceAllocator:
    """Binds dialysis machines to sessions.

    A bind only succeeds if the machine is still ``available`` when the
    update commits, so of two near-simultaneous starts on one machine exactly
    one wins.
    """

    def __init__(self, store: ClinicStore):
        self.store = store

    def find_available(
        self,
        require_isolation: bool = False,
        conn: sqlite3.Connection | None = None,
    ) -> list[Machine]:
        """Available machines, ordered by machine number.

        Args:
            require_isolation: If True, only isolation-only machines qualify.
        """
        return self.store.list_machines(
            status=MachineStatus.AVAILABLE,
            isolation_only=True if require_isolation else None,
            conn=conn,
        )

    def bind(
        self,
        session_id: str,
        machine_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Machine:
        """Mark a machine in use for a session.

        Raises:
            NotFound: Unknown machine id
            MachineUnavailable: Machine was not available at bind time
        """
        with self.store.use(conn) as c:
            machine = self.store.get_machine(machine_id, conn=c)
            if machine is None:
                raise NotFound("Machine", machine_id)

            holder = self.store.active_session_for_machine(c, machine_id)
            if holder is not None and holder != session_id:
                raise MachineUnavailable(
                    f"Machine {machine.machine_number} is already bound to session {holder}"
                )

            if not self.store.set_machine_status(
                c, machine_id, MachineStatus.IN_USE, expected=MachineStatus.AVAILABLE
            ):
                raise MachineUnavailable(
                    f"Machine {machine.machine_number} is {machine.status.value}, not available"
                )

        logger.info(f"Bound machine {machine.machine_number} to session {session_id}")
        machine.status = MachineStatus.IN_USE
        return machine

    def release(self, machine_id: str, conn: sqlite3.Connection | None = None) -> MachineStatus:
        """Return a machine to the pool, or to maintenance if flagged.

        Returns:
            The machine's new status
        """
        with self.store.use(conn) as c:
            machine = self.store.get_machine(machine_id, conn=c)
            if machine is None:
                raise NotFound("Machine", machine_id)

            new_status = (
                MachineStatus.MAINTENANCE if machine.maintenance_pending
                else MachineStatus.AVAILABLE
            )
            self.store.set_machine_status(c, machine_id, new_status)

        logger.info(f"Released machine {machine.machine_number} -> {new_status.value}")
        return new_status

    def stats(self) -> dict[str, int]:
        """Machine counts by status, plus isolation machines."""
        machines = self.store.list_machines()
        stats = {
            "total_machines": len(machines),
            "isolation_machines": sum(1 for m in machines if m.isolation_only),
        }
        for status in MachineStatus:
            stats[f"{status.value}_machines"] = sum(1 for m in machines if m.status == status)
        return stats
