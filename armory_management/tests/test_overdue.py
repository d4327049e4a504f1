import os
import sys
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path


os.environ.setdefault(
    "ARMORY_DB_URL",
    f"sqlite+pysqlite:///{Path(tempfile.gettempdir()) / f'armory_tests_{os.getpid()}.sqlite3'}",
)

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
from db.session import SessionLocalArmory, engine_armory
from models import armory_models  # noqa: F401
from scripts.overdue_watch import run_scan
from services.allocation_service import allocate, return_allocation
from services.overdue_service import OverdueLevel, classify, classify_allocation, scan_active_allocations
from services.user_service import create_user
from services.weapon_service import create_weapon


DAY = timedelta(hours=24)
HOUR = timedelta(minutes=60)
START = datetime(2026, 3, 2, 8, 0, 0)


class ClassificationTests(unittest.TestCase):
    def test_just_before_warning_window_is_normal(self):
        status = classify_allocation(START, START + timedelta(hours=22.999), DAY, HOUR)
        self.assertEqual(status.level, OverdueLevel.NORMAL)
        self.assertEqual(status.minutes_remaining, 61)

    def test_exactly_sixty_minutes_left_is_warning(self):
        status = classify_allocation(START, START + timedelta(hours=23), DAY, HOUR)
        self.assertEqual(status.level, OverdueLevel.WARNING)
        self.assertEqual(status.elapsed_minutes, 23 * 60)
        self.assertEqual(status.minutes_remaining, 60)

    def test_last_minute_is_still_warning(self):
        self.assertEqual(classify(START, START + timedelta(hours=23, minutes=59, seconds=59), DAY, HOUR), OverdueLevel.WARNING)

    def test_exactly_twenty_four_hours_is_overdue(self):
        status = classify_allocation(START, START + DAY, DAY, HOUR)
        self.assertEqual(status.level, OverdueLevel.OVERDUE)
        self.assertEqual(status.minutes_remaining, 0)

    def test_long_overdue_reports_negative_remaining(self):
        status = classify_allocation(START, START + timedelta(hours=26), DAY, HOUR)
        self.assertEqual(status.level, OverdueLevel.OVERDUE)
        self.assertEqual(status.minutes_remaining, -120)

    def test_clock_skew_counts_as_fresh(self):
        status = classify_allocation(START, START - timedelta(minutes=5), DAY, HOUR)
        self.assertEqual(status.level, OverdueLevel.NORMAL)
        self.assertEqual(status.elapsed_minutes, 0)

    def test_thresholds_are_configurable(self):
        limit = timedelta(hours=2)
        window = timedelta(minutes=15)
        self.assertEqual(classify(START, START + timedelta(minutes=104), limit, window), OverdueLevel.NORMAL)
        self.assertEqual(classify(START, START + timedelta(minutes=105), limit, window), OverdueLevel.WARNING)
        self.assertEqual(classify(START, START + limit, limit, window), OverdueLevel.OVERDUE)


class ScanTests(unittest.TestCase):
    def setUp(self):
        Base.metadata.drop_all(engine_armory)
        Base.metadata.create_all(engine_armory)
        self.db = SessionLocalArmory()
        self.alice = create_user(self.db, "Alice Shaw", "alice@armory.test")
        self.bob = create_user(self.db, "Bob Reyes", "bob@armory.test")
        self.pistol = create_weapon(
            self.db,
            {"serialNumber": "P-100", "model": "G17", "caliber": "9mm", "manufacturer": "Glock", "type": "pistol"},
        )
        self.rifle = create_weapon(
            self.db,
            {"serialNumber": "R-200", "model": "M4", "caliber": "5.56", "manufacturer": "Colt", "type": "rifle"},
        )

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(engine_armory)

    def _scan(self, now, **kwargs):
        return scan_active_allocations(self.db, now, overdue_after=DAY, warning_window=HOUR, **kwargs)

    def test_reports_warning_and_overdue_only(self):
        early = allocate(self.db, self.pistol.WeaponID, self.alice.UserID, now=START)
        late = allocate(self.db, self.rifle.WeaponID, self.bob.UserID, now=START + timedelta(hours=1))

        flagged = self._scan(START + timedelta(hours=24, minutes=30))
        by_id = {item["allocationID"]: item for item in flagged}
        self.assertEqual(by_id[early.AllocationID]["type"], "overdue")
        self.assertEqual(by_id[late.AllocationID]["type"], "warning")
        self.assertEqual(by_id[late.AllocationID]["minutesRemaining"], 30)
        self.assertEqual(by_id[early.AllocationID]["weaponModel"], "G17")
        self.assertEqual(by_id[early.AllocationID]["serialNumber"], "P-100")

        self.assertEqual(self._scan(START + timedelta(hours=2)), [])
        self.assertEqual(len(self._scan(START + timedelta(hours=2), include_normal=True)), 2)

    def test_filters_by_user(self):
        allocate(self.db, self.pistol.WeaponID, self.alice.UserID, now=START)
        allocate(self.db, self.rifle.WeaponID, self.bob.UserID, now=START)

        flagged = self._scan(START + DAY, user_id=self.bob.UserID)
        self.assertEqual([item["userID"] for item in flagged], [self.bob.UserID])

    def test_returned_allocations_are_not_reported(self):
        allocation = allocate(self.db, self.pistol.WeaponID, self.alice.UserID, now=START)
        return_allocation(self.db, allocation.AllocationID, self.alice.UserID, "stock", now=START + timedelta(hours=30))

        self.assertEqual(self._scan(START + timedelta(hours=31)), [])

    def test_each_scan_uses_the_given_time(self):
        allocate(self.db, self.pistol.WeaponID, self.alice.UserID, now=START)

        self.assertEqual(self._scan(START + timedelta(hours=22)), [])
        self.assertEqual(self._scan(START + timedelta(hours=23))[0]["type"], "warning")
        self.assertEqual(self._scan(START + DAY)[0]["type"], "overdue")

    def test_watch_script_scan_reports_flagged_entries(self):
        allocate(self.db, self.pistol.WeaponID, self.alice.UserID, now=datetime.now() - timedelta(days=2))
        allocate(self.db, self.rifle.WeaponID, self.bob.UserID)

        with self.assertLogs("armory.overdue.watch", level="WARNING") as logs:
            flagged = run_scan(SessionLocalArmory)
        self.assertEqual([item["userID"] for item in flagged], [self.alice.UserID])
        self.assertIn("OVERDUE", logs.output[0])


if __name__ == "__main__":
    unittest.main()
