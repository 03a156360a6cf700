import base64
import json

import pytest

from faceauth import request_context
from faceauth.errors import RequestContextError
from faceauth.schemas import AuthRequestContext


def _raw(payload) -> str:
    return base64.urlsafe_b64encode(json.dumps(payload).encode()).rstrip(b"=").decode()


def test_encode_is_url_safe_and_decodes_back():
    ctx = AuthRequestContext(
        client_id="c1",
        redirect_uri="https://rp.example/cb?x=1&y=2",
        scope="openid email",
        state="s/+=?",
        nonce="n-1",
    )
    opaque = request_context.encode(ctx)
    assert all(ch.isalnum() or ch in "-_" for ch in opaque)
    assert request_context.decode(opaque) == ctx


def test_missing_nonce_stays_missing():
    ctx = AuthRequestContext(client_id="c1", redirect_uri="https://rp.example/cb")
    decoded = request_context.decode(request_context.encode(ctx))
    assert decoded.nonce is None
    assert decoded.state == ""


@pytest.mark.parametrize(
    "opaque",
    [
        None,
        "",
        "!!!not-base64!!!",
        _raw(["a", "list"]),
        _raw({"redirect_uri": "https://rp.example/cb"}),
        _raw({"client_id": "c1", "redirect_uri": "https://rp.example/cb", "admin": True}),
        base64.urlsafe_b64encode(b"\xff\xfe").decode(),
    ],
)
def test_malformed_context_is_rejected(opaque):
    with pytest.raises(RequestContextError):
        request_context.decode(opaque)
