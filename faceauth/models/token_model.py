from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthorizationCode(BaseModel):
    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scope: str = ""
    nonce: Optional[str] = None
    auth_time: Optional[datetime] = None
    issued_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at


class Token(BaseModel):
    token: str
    user_id: str
    client_id: str
    scope: str = ""
    is_refresh_token: bool = False
    auth_time: Optional[datetime] = None
    issued_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime

    @property
    def token_type(self) -> str:
        return "refresh_token" if self.is_refresh_token else "access_token"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at
