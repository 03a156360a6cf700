# Shared fixtures: in-memory store, throwaway signing key and a fake
# face extractor so no model download is needed.

import base64
import re
from urllib.parse import parse_qs, unquote, urlsplit

import numpy as np
import pytest
from fastapi.testclient import TestClient

from faceauth.archive import LocalImageArchive
from faceauth.main import create_app
from faceauth.models import OAuthClient
from faceauth.oauth_server import AuthorizationServer
from faceauth.security import TokenSigner
from faceauth.sessions import SessionManager
from faceauth.storage import JsonFileStore

CLIENT_ID = "test-client"
CLIENT_SECRET = "test-secret"
REDIRECT_URI = "http://localhost:5173/oauth/callback"

# captured image bytes -> descriptor the fake extractor "finds" in it
DESCRIPTORS = {
    b"face-asha": [1.0, 0.0, 0.0, 0.0],
    b"face-asha-again": [0.98, 0.2, 0.0, 0.0],  # ~0.2 from face-asha
    b"face-ravi": [0.0, 1.0, 0.0, 0.0],  # ~1.41 from face-asha
    b"face-meera": [0.0, 0.0, 1.0, 0.0],
}


def fake_extractor(image_bytes):
    vec = DESCRIPTORS.get(image_bytes)
    if vec is None:
        return None
    return np.asarray(vec, dtype=np.float32)


def image_b64(image_bytes: bytes) -> str:
    return base64.b64encode(image_bytes).decode("ascii")


def context_from_page(html: str) -> str:
    """Pull the opaque request context out of a rendered choice page."""
    match = re.search(r"/register\?request=([A-Za-z0-9_\-%]+)", html)
    assert match, "no request context on page"
    return unquote(match.group(1))


def query_of(location: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}


@pytest.fixture(scope="session")
def signer():
    return TokenSigner.generate()


@pytest.fixture
def store():
    return JsonFileStore()


@pytest.fixture
def archive(tmp_path):
    return LocalImageArchive(str(tmp_path / "uploads"))


@pytest.fixture
def server(store, signer, archive):
    server = AuthorizationServer(
        store,
        signer,
        fake_extractor,
        archive=archive,
        sessions=SessionManager(release_upload=archive.discard),
    )
    server.registry.ensure_client(
        OAuthClient(
            client_id=CLIENT_ID,
            client_secret=CLIENT_SECRET,
            client_name="Test App",
            redirect_uris=[REDIRECT_URI],
            scopes=["openid", "profile", "email", "phone"],
        )
    )
    return server


@pytest.fixture
def app(server):
    return create_app(server)


@pytest.fixture
def client(app):
    return TestClient(app)
