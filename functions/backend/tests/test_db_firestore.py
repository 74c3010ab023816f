import unittest
from unittest.mock import MagicMock, patch

from firebase_admin import firestore

from backend import allocator
from backend.db import (
    CommunityRecord,
    FirestoreDbClient,
    UserRecord,
    _community_from_doc,
    _community_to_doc,
    _user_from_doc,
    _user_to_doc,
)
from shared.firebase_constants import COMMUNITIES_COLLECTION, USERS_COLLECTION
from shared.types import Role


def _snapshot(exists, data=None):
    snapshot = MagicMock()
    snapshot.exists = exists
    snapshot.to_dict.return_value = data or {}
    return snapshot


class FirestoreDocumentTests(unittest.TestCase):
    def test_community_round_trip_keeps_slot_names(self):
        record = CommunityRecord(
            community_id="c1",
            name="Alpha",
            countries=["New_Zealand", "countryTwo"],
            slots={"New_Zealand": "u1", "countryTwo": ""},
            occupied_count=1,
            logo_url="https://cdn/logo.png",
            logo_path="community-logos/1-logo.png",
            version=4,
            created_by="admin",
        )
        doc = _community_to_doc(record)
        self.assertNotIn("communityId", doc)
        self.assertEqual(doc["occupiedCount"], 1)
        self.assertEqual(doc["logoPath"], "community-logos/1-logo.png")
        self.assertEqual(doc["slots"], {"New_Zealand": "u1", "countryTwo": ""})

        self.assertEqual(_community_from_doc("c1", doc), record)

    def test_user_round_trip(self):
        user = UserRecord(
            uid="u1",
            email="u1@example.com",
            name="Ann",
            role=Role.ADMIN,
            community_id="c1",
            country="Country2",
        )
        doc = _user_to_doc(user)
        self.assertEqual(doc["role"], "admin")
        self.assertEqual(doc["communityId"], "c1")
        self.assertEqual(_user_from_doc("u1", doc), user)

    def test_unknown_role_reads_as_user(self):
        user = _user_from_doc("u1", {"email": "u1@example.com", "role": "superuser"})
        self.assertEqual(user.role, Role.USER)
        self.assertIsNone(user.community_id)

    def test_missing_fields_use_defaults(self):
        user = _user_from_doc("u1", {})
        self.assertEqual(user.email, "")
        self.assertEqual(user.role, Role.USER)


class FirestoreCompareAndSetTests(unittest.TestCase):
    def setUp(self):
        self.communities = MagicMock()
        self.users = MagicMock()
        client = MagicMock()
        client.collection.side_effect = lambda name: {
            COMMUNITIES_COLLECTION: self.communities,
            USERS_COLLECTION: self.users,
        }[name]
        self.transaction = client.transaction.return_value
        self.community_ref = self.communities.document.return_value
        self.user_ref = self.users.document.return_value
        self.db = FirestoreDbClient(client)

        # Run the transaction body once against the mocked transaction.
        patcher = patch.object(firestore, "transactional", lambda fn: fn)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.expected = allocator.new_community("Alpha", 2)
        self.expected.community_id = "c1"
        self.expected.version = 2
        self.updated = self.expected.copy()
        self.updated.slots["Country1"] = "u1"
        self.updated.occupied_count = 1
        self.user = UserRecord(
            uid="u1", email="u1@example.com", community_id="c1", country="Country1"
        )

    def test_version_mismatch_writes_nothing(self):
        self.community_ref.get.return_value = _snapshot(True, {"version": 3})
        self.user_ref.get.return_value = _snapshot(False)

        self.assertFalse(
            self.db.compare_and_set_slots(self.expected, self.updated, self.user)
        )
        self.transaction.update.assert_not_called()
        self.transaction.set.assert_not_called()

    def test_missing_community_writes_nothing(self):
        self.community_ref.get.return_value = _snapshot(False)
        self.assertFalse(self.db.compare_and_set_slots(self.expected, self.updated))
        self.transaction.update.assert_not_called()

    def test_matching_version_updates_slots_and_membership_only(self):
        self.community_ref.get.return_value = _snapshot(True, {"version": 2})
        self.user_ref.get.return_value = _snapshot(
            True, {"email": "u1@example.com", "role": "admin"}
        )

        self.assertTrue(
            self.db.compare_and_set_slots(self.expected, self.updated, self.user)
        )
        community_call, user_call = self.transaction.update.call_args_list
        ref, fields = community_call.args
        self.assertIs(ref, self.community_ref)
        self.assertEqual(fields["slots"], {"Country1": "u1", "Country2": ""})
        self.assertEqual(fields["occupiedCount"], 1)
        self.assertEqual(fields["version"], 3)
        self.assertEqual(
            user_call.args,
            (
                self.user_ref,
                {
                    "communityId": "c1",
                    "country": "Country1",
                    "updatedAt": self.user.updated_at,
                },
            ),
        )
        self.transaction.set.assert_not_called()

    def test_new_user_document_is_created(self):
        self.community_ref.get.return_value = _snapshot(True, {"version": 2})
        self.user_ref.get.return_value = _snapshot(False)

        self.assertTrue(
            self.db.compare_and_set_slots(self.expected, self.updated, self.user)
        )
        self.transaction.set.assert_called_once_with(
            self.user_ref, _user_to_doc(self.user)
        )

    def test_get_user_by_email_without_match(self):
        self.users.where.return_value.limit.return_value.stream.return_value = []
        self.assertIsNone(self.db.get_user_by_email("nobody@example.com"))


if __name__ == "__main__":
    unittest.main()
