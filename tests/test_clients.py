# Tests for the relying-party registry.

import pytest

from faceauth.clients import ClientRegistry
from faceauth.errors import OAuthError
from faceauth.models import OAuthClient
from faceauth.storage import JsonFileStore


@pytest.fixture
def registry():
    return ClientRegistry(JsonFileStore())


class TestRegister:
    def test_register_defaults(self, registry):
        client = registry.register("My App", ["https://rp.example/cb"])
        assert client.client_id.startswith("client-")
        assert len(client.client_secret) == 64
        assert client.grants == ["authorization_code", "refresh_token"]
        assert client.response_types == ["code"]
        assert "openid" in client.scopes
        assert registry.lookup(client.client_id) == client

    def test_each_registration_gets_fresh_credentials(self, registry):
        a = registry.register("A", ["https://a.example/cb"])
        b = registry.register("B", ["https://b.example/cb"])
        assert a.client_id != b.client_id
        assert a.client_secret != b.client_secret

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": None, "redirect_uris": ["https://rp.example/cb"]},
            {"name": "App", "redirect_uris": []},
            {"name": "App", "redirect_uris": None},
            {"name": "App", "redirect_uris": ["https://rp.example/cb"], "grants": ["implicit"]},
            {"name": "App", "redirect_uris": ["https://rp.example/cb"], "response_types": ["token"]},
            {"name": "App", "redirect_uris": ["https://rp.example/cb"], "scopes": ["openid", "admin"]},
        ],
    )
    def test_invalid_metadata(self, registry, kwargs):
        with pytest.raises(OAuthError) as exc:
            registry.register(**kwargs)
        assert exc.value.error == "invalid_client_metadata"


class TestAuthenticate:
    def test_secret_must_match(self, registry):
        client = registry.register("App", ["https://rp.example/cb"])
        assert registry.authenticate(client.client_id, client.client_secret)
        assert not registry.authenticate(client.client_id, "wrong")
        assert not registry.authenticate(client.client_id, None)
        assert not registry.authenticate("unknown", client.client_secret)


def test_is_registered_redirect(registry):
    registry.register("App", ["https://rp.example/cb"])
    assert registry.is_registered_redirect("https://rp.example/cb")
    assert not registry.is_registered_redirect("https://evil.example/cb")
    assert not registry.is_registered_redirect(None)


def test_ensure_client_keeps_existing_record(registry):
    first = OAuthClient(client_id="static", client_secret="one", redirect_uris=["https://rp.example/cb"])
    second = OAuthClient(client_id="static", client_secret="two", redirect_uris=["https://rp.example/cb"])
    registry.ensure_client(first)
    assert registry.ensure_client(second).client_secret == "one"


def test_static_client_not_seeded_without_secret(registry, monkeypatch):
    import faceauth.clients as mod

    monkeypatch.setattr(mod, "FACE_AUTH_CLIENT_SECRET", "")
    registry.ensure_static_clients()
    assert registry.lookup(mod.FACE_AUTH_CLIENT_ID) is None


def test_static_client_seeded_with_secret(registry, monkeypatch):
    import faceauth.clients as mod

    monkeypatch.setattr(mod, "FACE_AUTH_CLIENT_SECRET", "configured-secret")
    registry.ensure_static_clients()
    client = registry.lookup(mod.FACE_AUTH_CLIENT_ID)
    assert client.client_secret == "configured-secret"
