# faceauth/storage.py
# Credential store contract and the local JSON-file backend (dev/test).
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import DuplicateRecordError
from .models import AuthorizationCode, FaceProfile, OAuthClient, Token, User

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore(ABC):
    """
    Persistence for clients, users, face profiles, authorization codes and tokens.

    take_code / take_refresh_token must be atomic fetch-and-delete: when two
    callers race on the same value exactly one of them gets the record.
    Expired codes and tokens are always reported as absent.
    """

    # --- clients ---
    @abstractmethod
    def save_client(self, client: OAuthClient) -> None: ...

    @abstractmethod
    def get_client(self, client_id: str) -> Optional[OAuthClient]: ...

    @abstractmethod
    def list_clients(self) -> List[OAuthClient]: ...

    # --- users and face profiles ---
    @abstractmethod
    def save_user(self, user: User) -> None: ...

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def touch_user(self, user_id: str) -> bool: ...

    @abstractmethod
    def save_face_profile(self, profile: FaceProfile) -> None: ...

    @abstractmethod
    def get_face_profile(self, user_id: str) -> Optional[FaceProfile]: ...

    @abstractmethod
    def list_face_profiles(self) -> List[FaceProfile]: ...

    @abstractmethod
    def delete_face_profile(self, user_id: str) -> bool: ...

    # --- authorization codes ---
    @abstractmethod
    def save_code(self, code: AuthorizationCode) -> None: ...

    @abstractmethod
    def take_code(self, code: str) -> Optional[AuthorizationCode]: ...

    # --- tokens ---
    @abstractmethod
    def save_token(self, token: Token) -> None: ...

    @abstractmethod
    def get_token(self, value: str) -> Optional[Token]: ...

    @abstractmethod
    def take_refresh_token(self, value: str) -> Optional[Token]: ...

    @abstractmethod
    def delete_token(self, value: str) -> bool: ...

    @abstractmethod
    def delete_user_grants(self, user_id: str, client_id: Optional[str] = None) -> int:
        """Drop tokens and codes of a user, only those of `client_id` when given."""

    @abstractmethod
    def purge_expired(self, now: Optional[datetime] = None) -> int: ...

    def close(self) -> None:
        pass


class JsonFileStore(CredentialStore):
    """
    Process-local store guarded by a lock.
    With a path, every mutation is written through to a JSON file so a dev
    server keeps its users across restarts; without one it is memory only.
    """

    _KINDS = ("clients", "users", "face_profiles", "auth_codes", "tokens")

    def __init__(self, path: Optional[str] = None):
        self._path = path
        self._lock = threading.Lock()
        self._db: Dict[str, Dict[str, Dict[str, Any]]] = {kind: {} for kind in self._KINDS}
        if path:
            self._load()

    def _load(self) -> None:
        """
        Read the JSON file safely.
        If the file is missing, empty or corrupted, start from an empty store.
        """
        if not os.path.exists(self._path):
            return
        try:
            with open(self._path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not read store file {self._path}, starting empty: {e}")
            return
        for kind in self._KINDS:
            self._db[kind] = dict(data.get(kind, {}))

    def _flush(self) -> None:
        if not self._path:
            return
        parent = os.path.dirname(self._path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        tmp_path = f"{self._path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(self._db, f, indent=2)
        os.replace(tmp_path, self._path)

    def _insert(self, kind: str, key: str, record: Any) -> None:
        with self._lock:
            if key in self._db[kind]:
                raise DuplicateRecordError(f"{kind} record {key} already exists")
            self._db[kind][key] = record.model_dump(mode="json")
            self._flush()

    # --- clients ---
    def save_client(self, client: OAuthClient) -> None:
        self._insert("clients", client.client_id, client)

    def get_client(self, client_id: str) -> Optional[OAuthClient]:
        with self._lock:
            doc = self._db["clients"].get(client_id)
        return OAuthClient.model_validate(doc) if doc else None

    def list_clients(self) -> List[OAuthClient]:
        with self._lock:
            docs = list(self._db["clients"].values())
        return [OAuthClient.model_validate(d) for d in docs]

    # --- users and face profiles ---
    def save_user(self, user: User) -> None:
        self._insert("users", user.id, user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            doc = self._db["users"].get(user_id)
        return User.model_validate(doc) if doc else None

    def touch_user(self, user_id: str) -> bool:
        with self._lock:
            doc = self._db["users"].get(user_id)
            if doc is None:
                return False
            doc["updated_at"] = utcnow().isoformat()
            self._flush()
            return True

    def save_face_profile(self, profile: FaceProfile) -> None:
        self._insert("face_profiles", profile.user_id, profile)

    def get_face_profile(self, user_id: str) -> Optional[FaceProfile]:
        with self._lock:
            doc = self._db["face_profiles"].get(user_id)
        return FaceProfile.model_validate(doc) if doc else None

    def list_face_profiles(self) -> List[FaceProfile]:
        with self._lock:
            docs = list(self._db["face_profiles"].values())
        return [FaceProfile.model_validate(d) for d in docs]

    def delete_face_profile(self, user_id: str) -> bool:
        with self._lock:
            removed = self._db["face_profiles"].pop(user_id, None) is not None
            if removed:
                self._flush()
        return removed

    # --- authorization codes ---
    def save_code(self, code: AuthorizationCode) -> None:
        self._insert("auth_codes", code.code, code)

    def take_code(self, code: str) -> Optional[AuthorizationCode]:
        with self._lock:
            doc = self._db["auth_codes"].pop(code, None)
            if doc is not None:
                self._flush()
        if doc is None:
            return None
        record = AuthorizationCode.model_validate(doc)
        return None if record.is_expired() else record

    # --- tokens ---
    def save_token(self, token: Token) -> None:
        self._insert("tokens", token.token, token)

    def get_token(self, value: str) -> Optional[Token]:
        with self._lock:
            doc = self._db["tokens"].get(value)
        if doc is None:
            return None
        record = Token.model_validate(doc)
        return None if record.is_expired() else record

    def take_refresh_token(self, value: str) -> Optional[Token]:
        with self._lock:
            doc = self._db["tokens"].get(value)
            if doc is None or not doc.get("is_refresh_token"):
                return None
            del self._db["tokens"][value]
            self._flush()
        record = Token.model_validate(doc)
        return None if record.is_expired() else record

    def delete_token(self, value: str) -> bool:
        with self._lock:
            removed = self._db["tokens"].pop(value, None) is not None
            if removed:
                self._flush()
        return removed

    def delete_user_grants(self, user_id: str, client_id: Optional[str] = None) -> int:
        with self._lock:
            removed = 0
            for kind in ("tokens", "auth_codes"):
                doomed = [
                    k
                    for k, v in self._db[kind].items()
                    if v.get("user_id") == user_id and (client_id is None or v.get("client_id") == client_id)
                ]
                for k in doomed:
                    del self._db[kind][k]
                removed += len(doomed)
            if removed:
                self._flush()
        logger.info(f"Deleted {removed} grants for user {user_id}")
        return removed

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self._lock:
            removed = 0
            for kind, model in (("auth_codes", AuthorizationCode), ("tokens", Token)):
                doomed = [k for k, v in self._db[kind].items() if model.model_validate(v).is_expired(now)]
                for k in doomed:
                    del self._db[kind][k]
                removed += len(doomed)
            if removed:
                self._flush()
        return removed
