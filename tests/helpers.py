"""
Test Helper Functions - Seed data and handler doubles

Fun fact: A "test double" is named after the stunt double - it stands in for
the real thing when the real thing would be dangerous or slow. Opening a real
war in a unit test counts as both.
"""

import threading
from collections import Counter

from governance_engine.directory import SQLiteDirectory
from governance_engine.kernel.errors import ExecutionError
from governance_engine.laws.execution import ExecutionResult
from governance_engine.laws.models import Proposal

# Seeded communities
NORTHMARCH = "northmarch"  # monarchy
SOUTHREACH = "southreach"  # monarchy, war target
FREEPORT = "freeport"  # democracy with 10 voters

QUEEN = "queen-ada"
DUKE = "duke-bran"
BARON = "baron-cole"
PEASANT = "peasant-dale"
SOUTH_KING = "king-edric"
PRESIDENT = "president-faye"
SENATOR = "senator-gus"
FREEPORT_CITIZENS = [f"citizen-{i}" for i in range(1, 9)]


def seed_directory(directory: SQLiteDirectory) -> SQLiteDirectory:
    """
    Create the standard test world

    northmarch (monarchy): queen 0, duke 1, baron 1, peasant 10
    southreach (monarchy): king 0
    freeport (democracy): president 0, senator 1, citizens 10 (10 members)
    """
    directory.create_community(NORTHMARCH, "Northmarch", "monarchy")
    directory.create_community(SOUTHREACH, "Southreach", "monarchy")
    directory.create_community(FREEPORT, "Freeport", "democracy")

    directory.add_member(NORTHMARCH, QUEEN, 0)
    directory.add_member(NORTHMARCH, DUKE, 1)
    directory.add_member(NORTHMARCH, BARON, 1)
    directory.add_member(NORTHMARCH, PEASANT, 10)
    directory.add_member(SOUTHREACH, SOUTH_KING, 0)

    directory.add_member(FREEPORT, PRESIDENT, 0)
    directory.add_member(FREEPORT, SENATOR, 1)
    for citizen in FREEPORT_CITIZENS:
        directory.add_member(FREEPORT, citizen, 10)
    return directory


def freeport_voters() -> list[str]:
    return [PRESIDENT, SENATOR, *FREEPORT_CITIZENS]


class RecordingHandler:
    """
    Law handler double that counts executions per proposal

    Thread-safe, so concurrency tests can assert exactly-once dispatch.

    Args:
        fail_times: Raise ExecutionError for the first N calls
        crash: Raise a plain RuntimeError instead (handler bug)
    """

    def __init__(self, fail_times: int = 0, crash: bool = False) -> None:
        self.fail_times = fail_times
        self.crash = crash
        self.calls: Counter[str] = Counter()
        self._lock = threading.Lock()

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def execute(self, proposal: Proposal) -> ExecutionResult:
        with self._lock:
            self.calls[proposal.proposal_id] += 1
            attempt = self.total_calls
        if self.crash:
            raise RuntimeError("handler exploded")
        if attempt <= self.fail_times:
            raise ExecutionError(proposal.proposal_id, proposal.law_kind, "service unavailable")
        return ExecutionResult(detail="recorded", reference=f"ref-{proposal.proposal_id}")


def run_concurrently(*targets, timeout: float = 30.0) -> None:
    """Start all callables at the same instant and wait for them"""
    barrier = threading.Barrier(len(targets))

    def wrap(target):
        def run():
            barrier.wait()
            target()

        return run

    threads = [threading.Thread(target=wrap(target)) for target in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout)
