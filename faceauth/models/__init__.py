from .client_model import OAuthClient
from .token_model import AuthorizationCode, Token
from .user_model import FaceProfile, User

__all__ = ["OAuthClient", "User", "FaceProfile", "AuthorizationCode", "Token"]
