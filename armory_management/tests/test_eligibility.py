import sys
import unittest
from pathlib import Path
from types import SimpleNamespace


APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.allocation_errors import Rejection
from services.eligibility_service import check_composition, check_eligibility, holdings_allowed, is_allowed_composition


def _weapon(weapon_type="pistol", status="available"):
    return SimpleNamespace(WeaponType=weapon_type, Status=status)


def _user(is_admin=False):
    return SimpleNamespace(IsAdmin=is_admin)


class CompositionTests(unittest.TestCase):
    def test_allowed_sets(self):
        for types in ([], ["pistol"], ["shotgun"], ["rifle"], ["pistol", "shotgun"], ["rifle", "pistol"]):
            with self.subTest(types=types):
                self.assertTrue(is_allowed_composition(types))

    def test_disallowed_sets(self):
        for types in (["shotgun", "rifle"], ["pistol", "pistol"], ["rifle", "rifle"], ["pistol", "shotgun", "rifle"]):
            with self.subTest(types=types):
                self.assertFalse(is_allowed_composition(types))

    def test_holdings_respect_strict_mode(self):
        self.assertTrue(holdings_allowed(["pistol", "rifle"], strict=False))
        self.assertFalse(holdings_allowed(["shotgun", "rifle"], strict=False))
        self.assertFalse(holdings_allowed(["pistol", "rifle"], strict=True))
        self.assertTrue(holdings_allowed(["rifle"], strict=True))

    def test_secondary_weapon_next_to_pistol(self):
        self.assertIsNone(check_composition(["pistol"], "shotgun"))
        self.assertIsNone(check_composition(["pistol"], "rifle"))
        self.assertIsNone(check_composition(["shotgun"], "pistol"))

    def test_second_pistol_hits_type_limit(self):
        self.assertEqual(check_composition(["pistol"], "pistol"), Rejection.TYPE_LIMIT_REACHED)
        self.assertEqual(check_composition(["pistol", "rifle"], "pistol"), Rejection.TYPE_LIMIT_REACHED)

    def test_two_long_guns_are_an_invalid_combination(self):
        self.assertEqual(check_composition(["shotgun"], "rifle"), Rejection.INVALID_TYPE_COMBINATION)
        self.assertEqual(check_composition(["rifle"], "shotgun"), Rejection.INVALID_TYPE_COMBINATION)
        self.assertEqual(check_composition(["pistol", "rifle"], "rifle"), Rejection.INVALID_TYPE_COMBINATION)


class EligibilityTests(unittest.TestCase):
    def test_available_weapon_for_empty_handed_user(self):
        for weapon_type in ("pistol", "shotgun", "rifle"):
            with self.subTest(weapon_type=weapon_type):
                self.assertIsNone(check_eligibility(_weapon(weapon_type), _user(), [], strict=False))

    def test_admin_target_is_rejected(self):
        self.assertEqual(check_eligibility(_weapon(), _user(is_admin=True), []), Rejection.ADMIN_NOT_ALLOWED)

    def test_admin_requester_is_rejected(self):
        rejection = check_eligibility(_weapon(), _user(), [], requester=_user(is_admin=True))
        self.assertEqual(rejection, Rejection.ADMIN_NOT_ALLOWED)

    def test_role_is_checked_before_availability(self):
        rejection = check_eligibility(_weapon(status="allocated"), _user(is_admin=True), ["pistol"])
        self.assertEqual(rejection, Rejection.ADMIN_NOT_ALLOWED)

    def test_unavailable_weapon(self):
        for status in ("allocated", "maintenance"):
            with self.subTest(status=status):
                rejection = check_eligibility(_weapon(status=status), _user(), [], strict=False)
                self.assertEqual(rejection, Rejection.WEAPON_NOT_AVAILABLE)

    def test_availability_is_checked_before_composition(self):
        rejection = check_eligibility(_weapon("rifle", "maintenance"), _user(), ["shotgun"], strict=False)
        self.assertEqual(rejection, Rejection.WEAPON_NOT_AVAILABLE)

    def test_composition_rule_applies_to_held_types(self):
        self.assertIsNone(check_eligibility(_weapon("shotgun"), _user(), ["pistol"], strict=False))
        self.assertEqual(
            check_eligibility(_weapon("rifle"), _user(), ["shotgun"], strict=False),
            Rejection.INVALID_TYPE_COMBINATION,
        )
        self.assertEqual(
            check_eligibility(_weapon("pistol"), _user(), ["pistol"], strict=False),
            Rejection.TYPE_LIMIT_REACHED,
        )

    def test_strict_mode_blocks_any_second_allocation(self):
        self.assertEqual(
            check_eligibility(_weapon("shotgun"), _user(), ["pistol"], strict=True),
            Rejection.TYPE_LIMIT_REACHED,
        )
        self.assertIsNone(check_eligibility(_weapon("shotgun"), _user(), [], strict=True))


if __name__ == "__main__":
    unittest.main()
