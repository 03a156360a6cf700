# MongoCredentialStore against mocked collections (no server needed).

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from cryptography.fernet import Fernet
from pymongo.errors import DuplicateKeyError

from faceauth.errors import DuplicateRecordError
from faceauth.models import FaceProfile, User
from faceauth.storage_mongo import MongoCredentialStore

COLLECTIONS = ("clients", "users", "face_profiles", "auth_codes", "tokens")


@pytest.fixture
def db():
    return {name: MagicMock(name=name) for name in COLLECTIONS}


@pytest.fixture
def store(db):
    mongo = MagicMock()
    mongo.__getitem__.return_value = db
    return MongoCredentialStore("mongodb://unused", "faceauth_test", Fernet(Fernet.generate_key()), client=mongo)


def test_ttl_indexes_created(store, db):
    db["auth_codes"].create_index.assert_any_call("expires_at", expireAfterSeconds=0)
    db["tokens"].create_index.assert_any_call("expires_at", expireAfterSeconds=0)
    db["auth_codes"].create_index.assert_any_call("code", unique=True)


def test_face_descriptor_encrypted_at_rest(store, db):
    store.save_face_profile(FaceProfile(user_id="u1", face_descriptor=[0.5, 0.25, -1.0]))
    saved = db["face_profiles"].insert_one.call_args[0][0]
    assert "face_descriptor" not in saved
    assert saved["embedding_enc"]

    db["face_profiles"].find_one.return_value = dict(saved, _id="oid")
    profile = store.get_face_profile("u1")
    assert profile.face_descriptor == [0.5, 0.25, -1.0]


def test_unreadable_descriptor_is_skipped(store, db):
    db["face_profiles"].find.return_value = [
        {"_id": "x", "user_id": "u1", "embedding_enc": "bm90LWEtZmVybmV0LXRva2Vu"},
    ]
    assert store.list_face_profiles() == []


def test_take_code_is_atomic_fetch_and_delete(store, db):
    db["auth_codes"].find_one_and_delete.return_value = None
    assert store.take_code("abc") is None
    query = db["auth_codes"].find_one_and_delete.call_args[0][0]
    assert query["code"] == "abc"
    assert "$gt" in query["expires_at"]


def test_take_refresh_token_returns_record(store, db):
    now = datetime.now(timezone.utc)
    db["tokens"].find_one_and_delete.return_value = {
        "_id": "oid",
        "token": "r1",
        "user_id": "u1",
        "client_id": "c1",
        "scope": "openid",
        "is_refresh_token": True,
        "issued_at": now,
        "expires_at": now + timedelta(days=30),
    }
    token = store.take_refresh_token("r1")
    assert token.user_id == "u1"
    query = db["tokens"].find_one_and_delete.call_args[0][0]
    assert query["is_refresh_token"] is True


def test_duplicate_key_maps_to_duplicate_record(store, db):
    db["users"].insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
    user = User(
        id="u1",
        name="Asha Rao",
        first_name="Asha",
        last_name="Rao",
        email="asha.rao@example.com",
        face_profile_id="u1",
    )
    with pytest.raises(DuplicateRecordError):
        store.save_user(user)


def test_delete_user_grants_counts_both_collections(store, db):
    db["tokens"].delete_many.return_value.deleted_count = 2
    db["auth_codes"].delete_many.return_value.deleted_count = 1
    assert store.delete_user_grants("u1") == 3
    db["tokens"].delete_many.assert_called_with({"user_id": "u1"})


def test_delete_user_grants_for_one_client(store, db):
    db["tokens"].delete_many.return_value.deleted_count = 1
    db["auth_codes"].delete_many.return_value.deleted_count = 0
    assert store.delete_user_grants("u1", client_id="c2") == 1
    db["tokens"].delete_many.assert_called_with({"user_id": "u1", "client_id": "c2"})
    db["auth_codes"].delete_many.assert_called_with({"user_id": "u1", "client_id": "c2"})
