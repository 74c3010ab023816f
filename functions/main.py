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

# Cloud functions for the community backend.
#
# The role stored on each users/{uid} document is canonical; the `role`
# custom claim on the Firebase Auth account is a projection of it. This
# trigger refreshes the projection whenever the stored role changes,
# including edits made directly in the console.
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.

# Standard library imports
from typing import Optional

# Third-party library imports
from firebase_admin import initialize_app
from firebase_functions import logger
from firebase_functions.firestore_fn import (
    on_document_written,
    Event,
    Change,
    DocumentSnapshot,
)

# Local application imports
from backend import roles
from backend.identity import FirebaseIdentityProvider, IdentityProvider
from shared.firebase_constants import USERS_COLLECTION
from shared.types import Role

initialize_app()


def _stored_role(doc_data: dict) -> Role:
    try:
        return Role(doc_data.get("role"))
    except ValueError:
        return Role.USER


def sync_role_claim(
    uid: str,
    before: Optional[dict],
    after: Optional[dict],
    identity: Optional[IdentityProvider] = None,
) -> bool:
    """
    Pushes the stored role of a written user document to the auth claim.

    Args:
        uid (str): The user id (document id).
        before (dict | None): Document data before the write.
        after (dict | None): Document data after the write; None on delete.
        identity (IdentityProvider | None): Defaults to Firebase Auth.

    Returns:
        True if the claim was rewritten.
    """
    if not after:
        return False
    role = _stored_role(after)
    if before is not None and _stored_role(before) == role:
        return False

    synced = roles.sync_role_claim(identity or FirebaseIdentityProvider(), uid, role)
    if synced:
        logger.info(f"Synced role claim for {uid} to {role.value}")
    return synced


@on_document_written(document=USERS_COLLECTION + "/{uid}")
def on_user_document_written(event: Event[Change[DocumentSnapshot]]) -> None:
    """
    Triggered by any write to a user document.
    """
    uid = event.params["uid"]
    before = event.data.before.to_dict() if event.data.before else None
    after = event.data.after.to_dict() if event.data.after else None
    sync_role_claim(uid, before, after)
