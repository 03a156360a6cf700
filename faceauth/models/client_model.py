from pydantic import BaseModel, Field
from typing import List
from datetime import datetime, timezone


class OAuthClient(BaseModel):
    client_id: str
    client_secret: str
    client_name: str = ""
    redirect_uris: List[str] = Field(..., min_length=1)
    grants: List[str] = Field(default_factory=lambda: ["authorization_code", "refresh_token"])
    response_types: List[str] = Field(default_factory=lambda: ["code"])
    scopes: List[str] = Field(default_factory=lambda: ["openid", "profile", "email"])
    client_id_issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}
