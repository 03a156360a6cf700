# faceauth/storage_mongo.py
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np
from cryptography.fernet import Fernet, InvalidToken
from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError

from .errors import DuplicateRecordError
from .models import AuthorizationCode, FaceProfile, OAuthClient, Token, User
from .storage import CredentialStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _strip_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is not None:
        doc.pop("_id", None)
    return doc


class MongoCredentialStore(CredentialStore):
    """
    MongoDB credential store.

    Single-use redemption relies on find_one_and_delete, which MongoDB
    executes atomically on the server. TTL indexes on expires_at sweep
    expired codes and tokens in the background.
    """

    def __init__(self, uri: str, db_name: str, fernet: Fernet, client: Optional[MongoClient] = None):
        """
        Initialize MongoDB connection

        Args:
            uri: MongoDB connection string
            db_name: Database name
            fernet: Key used to encrypt face descriptors at rest
            client: Pre-built client (tests, shared pools)
        """
        self.fernet = fernet
        try:
            self.client = client or MongoClient(uri, tz_aware=True)
            self.db = self.client[db_name]
            self.clients = self.db["clients"]
            self.users = self.db["users"]
            self.face_profiles = self.db["face_profiles"]
            self.auth_codes = self.db["auth_codes"]
            self.tokens = self.db["tokens"]
            self._ensure_indexes()
            logger.info(f"Connected to MongoDB database: {db_name}")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    def _ensure_indexes(self) -> None:
        self.clients.create_index("client_id", unique=True)
        self.users.create_index("id", unique=True)
        self.face_profiles.create_index("user_id", unique=True)
        self.auth_codes.create_index("code", unique=True)
        self.auth_codes.create_index("user_id")
        self.auth_codes.create_index("expires_at", expireAfterSeconds=0)
        self.tokens.create_index("token", unique=True)
        self.tokens.create_index([("user_id", ASCENDING), ("is_refresh_token", ASCENDING)])
        self.tokens.create_index("expires_at", expireAfterSeconds=0)

    def _insert(self, collection, doc: Dict[str, Any], key: str) -> None:
        try:
            collection.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateRecordError(f"{collection.name} record {key} already exists") from e

    # --- biometric encryption ---
    def _encrypt_descriptor(self, descriptor: List[float]) -> str:
        emb = np.asarray(descriptor, dtype=np.float32)
        return base64.b64encode(self.fernet.encrypt(emb.tobytes())).decode("utf-8")

    def _decrypt_descriptor(self, embedding_enc: str) -> List[float]:
        emb_bytes = self.fernet.decrypt(base64.b64decode(embedding_enc))
        return np.frombuffer(emb_bytes, dtype=np.float32).astype(float).tolist()

    def _profile_from_doc(self, doc: Dict[str, Any]) -> Optional[FaceProfile]:
        try:
            descriptor = self._decrypt_descriptor(doc.pop("embedding_enc"))
        except (InvalidToken, KeyError, ValueError) as e:
            logger.error(f"Unreadable face descriptor for user {doc.get('user_id')}: {e}")
            return None
        return FaceProfile(face_descriptor=descriptor, **doc)

    # --- clients ---
    def save_client(self, client: OAuthClient) -> None:
        self._insert(self.clients, client.model_dump(), client.client_id)

    def get_client(self, client_id: str) -> Optional[OAuthClient]:
        doc = _strip_id(self.clients.find_one({"client_id": client_id}))
        return OAuthClient.model_validate(doc) if doc else None

    def list_clients(self) -> List[OAuthClient]:
        return [OAuthClient.model_validate(_strip_id(d)) for d in self.clients.find({})]

    # --- users and face profiles ---
    def save_user(self, user: User) -> None:
        self._insert(self.users, user.model_dump(), user.id)

    def get_user(self, user_id: str) -> Optional[User]:
        doc = _strip_id(self.users.find_one({"id": user_id}))
        return User.model_validate(doc) if doc else None

    def touch_user(self, user_id: str) -> bool:
        result = self.users.update_one({"id": user_id}, {"$set": {"updated_at": _utcnow()}})
        return result.matched_count > 0

    def save_face_profile(self, profile: FaceProfile) -> None:
        doc = profile.model_dump(exclude={"face_descriptor"})
        doc["embedding_enc"] = self._encrypt_descriptor(profile.face_descriptor)
        self._insert(self.face_profiles, doc, profile.user_id)

    def get_face_profile(self, user_id: str) -> Optional[FaceProfile]:
        doc = _strip_id(self.face_profiles.find_one({"user_id": user_id}))
        return self._profile_from_doc(doc) if doc else None

    def list_face_profiles(self) -> List[FaceProfile]:
        profiles = []
        for doc in self.face_profiles.find({}):
            profile = self._profile_from_doc(_strip_id(doc))
            if profile is not None:
                profiles.append(profile)
        return profiles

    def delete_face_profile(self, user_id: str) -> bool:
        return self.face_profiles.delete_one({"user_id": user_id}).deleted_count > 0

    # --- authorization codes ---
    def save_code(self, code: AuthorizationCode) -> None:
        self._insert(self.auth_codes, code.model_dump(), "<code>")

    def take_code(self, code: str) -> Optional[AuthorizationCode]:
        doc = self.auth_codes.find_one_and_delete({"code": code, "expires_at": {"$gt": _utcnow()}})
        return AuthorizationCode.model_validate(_strip_id(doc)) if doc else None

    # --- tokens ---
    def save_token(self, token: Token) -> None:
        self._insert(self.tokens, token.model_dump(), "<token>")

    def get_token(self, value: str) -> Optional[Token]:
        doc = self.tokens.find_one({"token": value, "expires_at": {"$gt": _utcnow()}})
        return Token.model_validate(_strip_id(doc)) if doc else None

    def take_refresh_token(self, value: str) -> Optional[Token]:
        doc = self.tokens.find_one_and_delete(
            {"token": value, "is_refresh_token": True, "expires_at": {"$gt": _utcnow()}}
        )
        return Token.model_validate(_strip_id(doc)) if doc else None

    def delete_token(self, value: str) -> bool:
        return self.tokens.delete_one({"token": value}).deleted_count > 0

    def delete_user_grants(self, user_id: str, client_id: Optional[str] = None) -> int:
        query = {"user_id": user_id}
        if client_id is not None:
            query["client_id"] = client_id
        removed = self.tokens.delete_many(query).deleted_count
        removed += self.auth_codes.delete_many(query).deleted_count
        logger.info(f"Deleted {removed} grants for user {user_id}")
        return removed

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = {"expires_at": {"$lte": now or _utcnow()}}
        return self.auth_codes.delete_many(cutoff).deleted_count + self.tokens.delete_many(cutoff).deleted_count

    def close(self):
        """Close MongoDB connection"""
        try:
            self.client.close()
            logger.info("MongoDB connection closed")
        except Exception as e:
            logger.error(f"Error closing MongoDB connection: {e}")
