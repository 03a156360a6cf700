from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    id: str
    name: str
    first_name: str
    last_name: str
    username: Optional[str] = None
    email: str
    email_verified: bool = True
    phone_number: Optional[str] = None
    phone_number_verified: bool = False
    face_verified: bool = True
    profile_picture_url: Optional[str] = None
    registered_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    face_profile_id: str


class FaceProfile(BaseModel):
    user_id: str
    face_image_url: Optional[str] = None
    # fixed-dimensionality embedding produced by the extractor
    face_descriptor: List[float] = Field(..., min_length=1)
    registered_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}
