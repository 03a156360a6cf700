from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional


class AuthRequestContext(BaseModel):
    """In-flight authorization request carried through the capture pages."""

    client_id: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    scope: str = ""
    state: str = ""
    nonce: Optional[str] = None

    model_config = {"extra": "forbid", "frozen": True}


class ClientRegistrationRequest(BaseModel):
    client_name: Optional[str] = None
    redirect_uris: Optional[List[str]] = None
    grant_types: Optional[List[str]] = None
    response_types: Optional[List[str]] = None
    scope: Optional[str] = None


class ProfileForm(BaseModel):
    """Fields collected by the registration form before face capture."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    username: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)
