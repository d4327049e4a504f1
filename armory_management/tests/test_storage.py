import sys
import unittest
from pathlib import Path

from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError


APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.allocation_errors import (
    ConcurrentModification,
    DuplicateSerial,
    NotOwner,
    StorageUnavailable,
)
from services.storage import run_in_transaction


class FakeDb:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def _locked():
    return OperationalError("UPDATE Weapons", {}, Exception("database is locked"))


class RunInTransactionTests(unittest.TestCase):
    def setUp(self):
        self.db = FakeDb()
        self.calls = 0

    def test_commits_on_success(self):
        result = run_in_transaction(self.db, lambda: "ok", attempts=3, backoff_base=0)
        self.assertEqual(result, "ok")
        self.assertEqual((self.db.commits, self.db.rollbacks), (1, 0))

    def test_domain_errors_roll_back_without_retry(self):
        def _op():
            self.calls += 1
            raise NotOwner("not yours")

        with self.assertRaises(NotOwner):
            run_in_transaction(self.db, _op, attempts=3, backoff_base=0)
        self.assertEqual(self.calls, 1)
        self.assertEqual((self.db.commits, self.db.rollbacks), (0, 1))

    def test_transient_failure_is_retried(self):
        def _op():
            self.calls += 1
            if self.calls == 1:
                raise _locked()
            return "done"

        self.assertEqual(run_in_transaction(self.db, _op, attempts=3, backoff_base=0), "done")
        self.assertEqual(self.calls, 2)
        self.assertEqual((self.db.commits, self.db.rollbacks), (1, 1))

    def test_exhausted_retries_surface_as_storage_unavailable(self):
        def _op():
            self.calls += 1
            raise _locked()

        with self.assertRaises(StorageUnavailable):
            run_in_transaction(self.db, _op, attempts=3, backoff_base=0)
        self.assertEqual(self.calls, 3)
        self.assertEqual(self.db.commits, 0)

    def test_integrity_error_is_a_conflict(self):
        def _op():
            raise IntegrityError("INSERT INTO Allocations", {}, Exception("UNIQUE constraint failed"))

        with self.assertRaises(ConcurrentModification):
            run_in_transaction(self.db, _op, attempts=3, backoff_base=0)

        with self.assertRaises(DuplicateSerial):
            run_in_transaction(
                self.db,
                _op,
                attempts=3,
                backoff_base=0,
                on_conflict=lambda exc: DuplicateSerial("taken"),
            )

    def test_programming_errors_are_not_retried(self):
        def _op():
            self.calls += 1
            raise ProgrammingError("SELECT nope", {}, Exception("no such table"))

        with self.assertRaises(ProgrammingError):
            run_in_transaction(self.db, _op, attempts=3, backoff_base=0)
        self.assertEqual(self.calls, 1)


if __name__ == "__main__":
    unittest.main()
