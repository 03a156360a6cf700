# faceauth/clients.py
# Registry of relying parties. Static and dynamically registered clients
# are stored the same way.
import logging
from typing import List, Optional

from .config import (
    DEFAULT_CLIENT_SCOPES,
    FACE_AUTH_CLIENT_ID,
    FACE_AUTH_CLIENT_NAME,
    FACE_AUTH_CLIENT_SECRET,
    FACE_AUTH_REDIRECT_URIS,
    SUPPORTED_GRANT_TYPES,
    SUPPORTED_SCOPES,
)
from .errors import DuplicateRecordError, OAuthError
from .models import OAuthClient
from .security import constant_time_equals, generate_random_string
from .storage import CredentialStore

logger = logging.getLogger(__name__)


class ClientRegistry:
    def __init__(self, store: CredentialStore):
        self.store = store

    def register(
        self,
        name: Optional[str],
        redirect_uris: Optional[List[str]],
        grants: Optional[List[str]] = None,
        scopes: Optional[List[str]] = None,
        response_types: Optional[List[str]] = None,
    ) -> OAuthClient:
        if not name or not isinstance(name, str):
            raise OAuthError("invalid_client_metadata", "client_name is required")
        if not redirect_uris or not all(isinstance(u, str) and u for u in redirect_uris):
            raise OAuthError("invalid_client_metadata", "at least one redirect_uri is required")

        grants = list(grants) if grants else list(SUPPORTED_GRANT_TYPES)
        unsupported = set(grants) - set(SUPPORTED_GRANT_TYPES)
        if unsupported:
            raise OAuthError("invalid_client_metadata", f"unsupported grant_types: {sorted(unsupported)}")

        response_types = list(response_types) if response_types else ["code"]
        if response_types != ["code"]:
            raise OAuthError("invalid_client_metadata", "only the 'code' response type is supported")

        scopes = list(scopes) if scopes else list(DEFAULT_CLIENT_SCOPES)
        unknown = set(scopes) - set(SUPPORTED_SCOPES)
        if unknown:
            raise OAuthError("invalid_client_metadata", f"unsupported scope: {' '.join(sorted(unknown))}")

        client = OAuthClient(
            client_id=f"client-{generate_random_string(8)}",
            client_secret=generate_random_string(32),
            client_name=name,
            redirect_uris=list(redirect_uris),
            grants=grants,
            response_types=response_types,
            scopes=scopes,
        )
        self.store.save_client(client)
        logger.info(f"Registered OAuth client {client.client_id} ({name})")
        return client

    def lookup(self, client_id: Optional[str]) -> Optional[OAuthClient]:
        if not client_id:
            return None
        return self.store.get_client(client_id)

    def authenticate(self, client_id: Optional[str], client_secret: Optional[str]) -> bool:
        client = self.lookup(client_id)
        if client is None:
            return False
        return constant_time_equals(client.client_secret, client_secret)

    def is_registered_redirect(self, uri: Optional[str]) -> bool:
        if not uri:
            return False
        return any(uri in c.redirect_uris for c in self.store.list_clients())

    def ensure_client(self, client: OAuthClient) -> OAuthClient:
        """Seed a pre-configured client; an existing record with that id is kept."""
        existing = self.lookup(client.client_id)
        if existing is not None:
            return existing
        try:
            self.store.save_client(client)
        except DuplicateRecordError:
            return self.lookup(client.client_id)
        logger.info(f"Seeded static OAuth client {client.client_id}")
        return client

    def ensure_static_clients(self) -> None:
        if not FACE_AUTH_CLIENT_SECRET:
            logger.warning("FACE_AUTH_CLIENT_SECRET is not set; static client not seeded")
            return
        self.ensure_client(
            OAuthClient(
                client_id=FACE_AUTH_CLIENT_ID,
                client_secret=FACE_AUTH_CLIENT_SECRET,
                client_name=FACE_AUTH_CLIENT_NAME,
                redirect_uris=FACE_AUTH_REDIRECT_URIS,
                scopes=DEFAULT_CLIENT_SCOPES,
            )
        )
