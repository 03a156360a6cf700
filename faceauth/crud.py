# faceauth/crud.py
# Users, face profiles and the identity claims derived from them
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from .models import FaceProfile, User
from .security import generate_random_string
from .storage import CredentialStore

logger = logging.getLogger(__name__)


def build_user(user_id: str, fields: Optional[dict], picture_url: Optional[str]) -> User:
    """Create the User record for a fresh registration; blank fields get generated defaults."""
    fields = fields or {}
    first_name = fields.get("first_name")
    last_name = fields.get("last_name")
    phone = fields.get("phone") or None
    now = datetime.now(timezone.utc)
    return User(
        id=user_id,
        name=f"{first_name} {last_name}" if first_name and last_name else f"User {user_id[:6]}",
        first_name=first_name or "User",
        last_name=last_name or user_id[:6],
        username=fields.get("username") or None,
        email=fields.get("email") or f"user-{user_id[:6]}@example.com",
        email_verified=True,
        phone_number=phone,
        phone_number_verified=bool(phone),
        face_verified=True,
        profile_picture_url=picture_url,
        registered_at=now,
        updated_at=now,
        face_profile_id=user_id,
    )


def new_user_id() -> str:
    return generate_random_string(16)


def register_face_user(
    store: CredentialStore,
    user_id: str,
    descriptor: Sequence[float],
    fields: Optional[dict] = None,
    picture_url: Optional[str] = None,
) -> User:
    """
    Enrol a new user: always a brand-new User + FaceProfile pair, never merged
    into an existing one. If the user record cannot be saved the profile is
    removed again so no orphan descriptor is left behind.
    """
    profile = FaceProfile(
        user_id=user_id,
        face_image_url=picture_url,
        face_descriptor=[float(x) for x in descriptor],
    )
    store.save_face_profile(profile)

    user = build_user(user_id, fields, picture_url)
    try:
        store.save_user(user)
    except Exception:
        store.delete_face_profile(user_id)
        raise
    logger.info(f"New user registered with face authentication: {user_id}")
    return user


def profile_claims(user: User, face_profile: Optional[FaceProfile] = None, base_url: str = "") -> dict:
    """Standard OIDC profile claims plus face_verified, from the current records."""
    picture = user.profile_picture_url or (face_profile.face_image_url if face_profile else None)
    if picture and picture.startswith("/"):
        picture = f"{base_url.rstrip('/')}{picture}"
    updated_at = user.updated_at
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return {
        "name": user.name,
        "given_name": user.first_name,
        "family_name": user.last_name,
        "preferred_username": user.username,
        "email": user.email,
        "email_verified": user.email_verified,
        "phone_number": user.phone_number,
        "phone_number_verified": user.phone_number_verified,
        "face_verified": user.face_verified,
        "picture": picture,
        "updated_at": int(updated_at.timestamp()),
    }
