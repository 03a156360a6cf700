# faceauth/security.py
# Key material, token signing and random credentials
import hashlib
import hmac
import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import JWTError, jwk, jwt

from .config import ACCESS_TOKEN_TTL, ID_TOKEN_ALGORITHM

logger = logging.getLogger(__name__)


def generate_random_string(nbytes: int = 32) -> str:
    """Hex string from the OS CSPRNG (2 * nbytes characters)."""
    return secrets.token_hex(nbytes)


def constant_time_equals(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def _ensure_parent(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


# --- Encryption key for biometrics at rest ---
def load_or_create_fernet(key_file: str) -> Fernet:
    if not os.path.exists(key_file):
        _ensure_parent(key_file)
        fernet_key = Fernet.generate_key()
        with open(key_file, "wb") as kf:
            kf.write(fernet_key)
        os.chmod(key_file, 0o600)
        logger.info(f"Generated new descriptor encryption key at {key_file}")
    else:
        with open(key_file, "rb") as kf:
            fernet_key = kf.read().strip()
    return Fernet(fernet_key)


class TokenSigner:
    """Signs ID tokens with an RSA key and publishes the public half as a JWKS."""

    def __init__(self, private_key_pem: bytes, algorithm: str = ID_TOKEN_ALGORITHM):
        self.algorithm = algorithm
        self._private_pem = private_key_pem.decode("ascii") if isinstance(private_key_pem, bytes) else private_key_pem
        private_key = serialization.load_pem_private_key(self._private_pem.encode("ascii"), password=None)
        self._public_pem = (
            private_key.public_key()
            .public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
            .decode("ascii")
        )
        self.kid = hashlib.sha256(self._public_pem.encode("ascii")).hexdigest()[:16]

    @classmethod
    def generate(cls) -> "TokenSigner":
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        return cls(_private_pem_bytes(key))

    @classmethod
    def from_file(cls, key_file: str) -> "TokenSigner":
        """Load the signing key, creating it on first start."""
        if not os.path.exists(key_file):
            _ensure_parent(key_file)
            key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
            with open(key_file, "wb") as kf:
                kf.write(_private_pem_bytes(key))
            os.chmod(key_file, 0o600)
            logger.info(f"Generated new ID token signing key at {key_file}")
        with open(key_file, "rb") as kf:
            return cls(kf.read())

    @property
    def public_key_pem(self) -> str:
        return self._public_pem

    def sign(self, claims: dict) -> str:
        return jwt.encode(claims, self._private_pem, algorithm=self.algorithm, headers={"kid": self.kid})

    def verify(self, token: str, audience: Optional[str] = None) -> dict:
        """Verify signature and expiry; raises JWTError on failure."""
        options = {"verify_aud": audience is not None}
        return jwt.decode(token, self._public_pem, algorithms=[self.algorithm], audience=audience, options=options)

    def jwks(self) -> dict:
        key = jwk.construct(self._public_pem, self.algorithm).to_dict()
        public = {
            "kty": key["kty"],
            "kid": self.kid,
            "use": "sig",
            "alg": self.algorithm,
            "n": key["n"],
            "e": key["e"],
        }
        return {"keys": [public]}


def _private_pem_bytes(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def create_id_token(
    signer: TokenSigner,
    issuer: str,
    subject: str,
    audience: str,
    profile_claims: dict,
    nonce: Optional[str] = None,
    auth_time: Optional[datetime] = None,
    expires_delta: timedelta = ACCESS_TOKEN_TTL,
) -> str:
    now = datetime.now(timezone.utc)
    iat = int(now.timestamp())
    to_encode = dict(profile_claims)
    to_encode.update(
        {
            "iss": issuer,
            "sub": subject,
            "aud": audience,
            "iat": iat,
            "exp": iat + int(expires_delta.total_seconds()),
            "auth_time": int((auth_time or now).timestamp()),
        }
    )
    if nonce:
        to_encode["nonce"] = nonce
    return signer.sign(to_encode)


def verify_hs256(token: str, secret: str, audience: Optional[str] = None) -> dict:
    """Verify a client-signed HS256 JWT; raises JWTError on failure."""
    options = {"verify_aud": audience is not None}
    return jwt.decode(token, secret, algorithms=["HS256"], audience=audience, options=options)


def unverified_claims(token: str) -> dict:
    """Read claims without checking the signature; raises JWTError if malformed."""
    return jwt.get_unverified_claims(token)


__all__ = [
    "JWTError",
    "TokenSigner",
    "constant_time_equals",
    "create_id_token",
    "generate_random_string",
    "load_or_create_fernet",
    "unverified_claims",
    "verify_hs256",
]
