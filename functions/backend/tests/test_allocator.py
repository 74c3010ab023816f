import threading
import unittest
from unittest.mock import patch

from backend import allocator, roles
from backend.db import InMemoryDbClient, UserRecord
from backend.errors import (
    ConflictError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from backend.identity import InMemoryIdentityProvider
from shared.types import EMPTY_SLOT, Role


def _user(uid):
    return UserRecord(uid=uid, email=f"{uid}@example.com", name=uid)


class AllocatorTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.community = self.db.create_community(
            allocator.new_community("Alpha", 3, created_by="admin")
        )
        self.cid = self.community.community_id

    def test_new_community_starts_empty(self):
        self.assertEqual(
            allocator.placeholder_countries(3), ["Country1", "Country2", "Country3"]
        )
        self.assertEqual(self.community.occupied_count, 0)
        self.assertTrue(allocator.slots_consistent(self.community))
        self.assertEqual(
            allocator.list_available(self.db, self.cid),
            ["Country1", "Country2", "Country3"],
        )

    def test_claim_writes_slot_counter_and_user(self):
        claimed = allocator.claim_slot(self.db, self.cid, "Country2", _user("u1"))
        self.assertEqual(claimed.community_id, self.cid)
        self.assertEqual(claimed.country, "Country2")

        stored = self.db.get_community(self.cid)
        self.assertEqual(stored.slots["Country2"], "u1")
        self.assertEqual(stored.occupied_count, 1)
        self.assertEqual(stored.version, 1)
        self.assertTrue(allocator.slots_consistent(stored))
        self.assertEqual(self.db.get_user("u1").country, "Country2")

        summary = allocator.country_summary(self.db, self.cid)
        self.assertEqual(summary["available_countries"], ["Country1", "Country3"])
        self.assertEqual(summary["assigned_countries"], ["Country2"])
        self.assertEqual(summary["total_countries"], 3)

    def test_occupied_slot_is_refused(self):
        allocator.claim_slot(self.db, self.cid, "Country1", _user("u1"))
        with self.assertRaises(SlotUnavailableError) as ctx:
            allocator.claim_slot(self.db, self.cid, "Country1", _user("u2"))
        self.assertEqual(ctx.exception.message, "Country is already taken")
        self.assertEqual(self.db.get_community(self.cid).occupied_count, 1)
        self.assertIsNone(self.db.get_user("u2"))

    def test_unknown_country_and_community(self):
        with self.assertRaises(ValidationError):
            allocator.claim_slot(self.db, self.cid, "Atlantis", _user("u1"))
        with self.assertRaises(NotFoundError):
            allocator.claim_slot(self.db, "missing", "Country1", _user("u1"))

    def test_user_with_claim_cannot_claim_again(self):
        claimed = allocator.claim_slot(self.db, self.cid, "Country1", _user("u1"))
        with self.assertRaises(ValidationError):
            allocator.claim_slot(self.db, self.cid, "Country2", claimed)
        self.assertEqual(self.db.get_community(self.cid).occupied_count, 1)

    def test_lost_race_rechecks_slot(self):
        real_cas = self.db.compare_and_set_slots

        def interleaved(expected, updated, user=None):
            # Another sign-up lands between our read and our write.
            self.db.compare_and_set_slots = real_cas
            rival = expected.copy()
            rival.slots["Country1"] = "rival"
            rival.occupied_count += 1
            self.assertTrue(real_cas(expected, rival, _user("rival")))
            return real_cas(expected, updated, user)

        self.db.compare_and_set_slots = interleaved
        with self.assertRaises(SlotUnavailableError):
            allocator.claim_slot(self.db, self.cid, "Country1", _user("u1"))
        stored = self.db.get_community(self.cid)
        self.assertEqual(stored.slots["Country1"], "rival")
        self.assertEqual(stored.occupied_count, 1)

    def test_gives_up_after_max_attempts(self):
        with patch.object(self.db, "compare_and_set_slots", return_value=False) as cas:
            with self.assertRaises(ConflictError):
                allocator.claim_slot(
                    self.db, self.cid, "Country1", _user("u1"), max_attempts=3
                )
        self.assertEqual(cas.call_count, 3)
        self.assertEqual(self.db.get_community(self.cid).occupied_count, 0)

    def test_concurrent_claims_for_one_country(self):
        workers = 8
        barrier = threading.Barrier(workers)
        winners, losers = [], []
        lock = threading.Lock()

        def claim(uid):
            barrier.wait()
            try:
                allocator.claim_slot(
                    self.db, self.cid, "Country1", _user(uid), max_attempts=workers
                )
            except SlotUnavailableError:
                with lock:
                    losers.append(uid)
            else:
                with lock:
                    winners.append(uid)

        threads = [
            threading.Thread(target=claim, args=(f"u{i}",)) for i in range(workers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), workers - 1)
        stored = self.db.get_community(self.cid)
        self.assertEqual(stored.slots["Country1"], winners[0])
        self.assertEqual(stored.occupied_count, 1)
        self.assertTrue(allocator.slots_consistent(stored))

    def test_concurrent_claims_for_different_countries(self):
        barrier = threading.Barrier(3)
        errors = []

        def claim(uid, country):
            barrier.wait()
            try:
                allocator.claim_slot(
                    self.db, self.cid, country, _user(uid), max_attempts=10
                )
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=claim, args=(f"u{i}", f"Country{i}"))
            for i in range(1, 4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        stored = self.db.get_community(self.cid)
        self.assertEqual(stored.occupied_count, 3)
        self.assertEqual(allocator.available_countries(stored), [])
        self.assertTrue(allocator.slots_consistent(stored))

    def test_release_frees_slot_and_user(self):
        allocator.claim_slot(self.db, self.cid, "Country3", _user("u1"))
        self.assertEqual(allocator.release_slot(self.db, self.cid, "Country3"), "u1")

        stored = self.db.get_community(self.cid)
        self.assertEqual(stored.slots["Country3"], EMPTY_SLOT)
        self.assertEqual(stored.occupied_count, 0)
        self.assertFalse(self.db.get_user("u1").has_claim)

        # Released user can claim again.
        allocator.claim_slot(self.db, self.cid, "Country1", self.db.get_user("u1"))
        self.assertEqual(self.db.get_community(self.cid).occupied_count, 1)

    def test_release_keeps_role_changed_mid_release(self):
        allocator.claim_slot(self.db, self.cid, "Country1", _user("u1"))
        identity = InMemoryIdentityProvider()
        real_get_user = self.db.get_user
        promoted = []

        def get_user_then_promote(uid):
            user = real_get_user(uid)
            if not promoted:
                promoted.append(uid)
                roles.set_role(self.db, identity, real_get_user(uid), Role.ADMIN)
            return user

        with patch.object(self.db, "get_user", side_effect=get_user_then_promote):
            # No identity account exists for u1, so the claim sync only logs.
            with self.assertLogs("backend.roles", level="ERROR"):
                released = allocator.release_slot(self.db, self.cid, "Country1")
        self.assertEqual(released, "u1")
        self.assertEqual(promoted, ["u1"])

        stored = self.db.get_user("u1")
        self.assertEqual(stored.role, Role.ADMIN)
        self.assertIsNone(stored.country)
        self.assertIsNone(stored.community_id)

    def test_release_empty_slot_is_noop(self):
        self.assertIsNone(allocator.release_slot(self.db, self.cid, "Country1"))
        self.assertEqual(self.db.get_community(self.cid).version, 0)
        with self.assertRaises(ValidationError):
            allocator.release_slot(self.db, self.cid, "Atlantis")

    def test_inconsistent_record_is_logged(self):
        broken = self.db.communities[self.cid]
        broken.occupied_count = 2
        with self.assertLogs("backend.allocator", level="ERROR"):
            allocator.load_community(self.db, self.cid)


if __name__ == "__main__":
    unittest.main()
