# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
# Standard library imports
import unittest
from unittest.mock import patch

# Local application imports
# This patch must be applied before importing 'main'
with patch("firebase_admin.initialize_app"):
    from main import sync_role_claim
from backend.identity import InMemoryIdentityProvider
from shared.types import Role


class TestSyncRoleClaim(unittest.TestCase):

    def setUp(self):
        self.identity = InMemoryIdentityProvider()
        self.uid = self.identity.create_user(
            "someone@example.com", "secret123", "Someone"
        ).uid

    def test_role_change_updates_claim(self):
        synced = sync_role_claim(
            self.uid, {"role": "user"}, {"role": "admin"}, identity=self.identity
        )
        self.assertTrue(synced)
        self.assertEqual(self.identity.get_user(self.uid).role_claim, "admin")

    def test_new_document_sets_claim(self):
        self.assertTrue(
            sync_role_claim(self.uid, None, {"role": "owner"}, identity=self.identity)
        )
        self.assertEqual(self.identity.get_user(self.uid).role_claim, "owner")

    def test_unchanged_role_is_skipped(self):
        self.identity.set_role_claim(self.uid, Role.ADMIN)
        synced = sync_role_claim(
            self.uid,
            {"role": "admin", "name": "a"},
            {"role": "admin", "name": "b"},
            identity=self.identity,
        )
        self.assertFalse(synced)

    def test_deleted_document_is_ignored(self):
        self.assertFalse(
            sync_role_claim(self.uid, {"role": "admin"}, None, identity=self.identity)
        )
        self.assertIsNone(self.identity.get_user(self.uid).role_claim)

    def test_unknown_role_falls_back_to_user(self):
        self.identity.set_role_claim(self.uid, Role.ADMIN)
        synced = sync_role_claim(
            self.uid, None, {"role": "superuser"}, identity=self.identity
        )
        self.assertTrue(synced)
        self.assertEqual(self.identity.get_user(self.uid).role_claim, "user")

    def test_missing_account_is_logged_not_raised(self):
        with self.assertLogs("backend.roles", level="ERROR"):
            synced = sync_role_claim(
                "ghost", None, {"role": "admin"}, identity=self.identity
            )
        self.assertFalse(synced)


if __name__ == "__main__":
    unittest.main()
