import os

import pytest
from jose import jwt

from faceauth.security import (
    JWTError,
    TokenSigner,
    constant_time_equals,
    create_id_token,
    generate_random_string,
    load_or_create_fernet,
    verify_hs256,
)


def test_random_strings_are_hex_and_unique():
    values = {generate_random_string() for _ in range(50)}
    assert len(values) == 50
    assert all(len(v) == 64 and int(v, 16) >= 0 for v in values)


def test_constant_time_equals():
    assert constant_time_equals("abc", "abc")
    assert not constant_time_equals("abc", "abd")
    assert not constant_time_equals(None, "abc")


def test_signing_key_persisted(tmp_path):
    key_file = str(tmp_path / "keys" / "signing.pem")
    first = TokenSigner.from_file(key_file)
    second = TokenSigner.from_file(key_file)
    assert first.kid == second.kid
    assert oct(os.stat(key_file).st_mode & 0o777) == "0o600"


def test_id_token_round_trip(signer):
    token = create_id_token(
        signer,
        issuer="https://id.example",
        subject="u1",
        audience="c1",
        profile_claims={"email": "asha.rao@example.com"},
        nonce="n-1",
    )
    claims = signer.verify(token, audience="c1")
    assert claims["sub"] == "u1"
    assert claims["email"] == "asha.rao@example.com"
    assert claims["exp"] - claims["iat"] == 3600
    with pytest.raises(JWTError):
        signer.verify(token, audience="someone-else")


def test_other_key_rejected(signer):
    other = TokenSigner.generate()
    with pytest.raises(JWTError):
        signer.verify(other.sign({"sub": "u1"}))


def test_jwks_has_public_parts_only(signer):
    (key,) = signer.jwks()["keys"]
    assert set(key) == {"kty", "kid", "use", "alg", "n", "e"}
    assert key["alg"] == "RS256"


def test_verify_hs256():
    token = jwt.encode({"sub": "u1"}, "shared", algorithm="HS256")
    assert verify_hs256(token, "shared")["sub"] == "u1"
    with pytest.raises(JWTError):
        verify_hs256(token, "other")


def test_fernet_key_reused(tmp_path):
    key_file = str(tmp_path / "secret.key")
    token = load_or_create_fernet(key_file).encrypt(b"descriptor")
    assert load_or_create_fernet(key_file).decrypt(token) == b"descriptor"


def test_verify_hs256_audience():
    token = jwt.encode({"sub": "u1", "aud": "https://id.example"}, "shared", algorithm="HS256")
    assert verify_hs256(token, "shared", audience="https://id.example")["sub"] == "u1"
    with pytest.raises(JWTError):
        verify_hs256(token, "shared", audience="https://elsewhere.example")
