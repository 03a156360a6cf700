# faceauth/request_context.py
# Opaque request context carried across the authorize -> capture hop.
#
# The payload is not secret: it only holds what the relying party already
# supplied, so it is encoded (URL-safe base64 of JSON), not encrypted.
import base64
import binascii
import json

from pydantic import ValidationError

from .errors import RequestContextError
from .schemas import AuthRequestContext


def encode(ctx: AuthRequestContext) -> str:
    payload = json.dumps(ctx.model_dump(exclude_none=True), separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(payload.encode("utf-8")).rstrip(b"=").decode("ascii")


def decode(opaque: str) -> AuthRequestContext:
    """
    Decode an opaque request context.
    Raises RequestContextError on any malformed input; never falls back to defaults.
    """
    if not opaque or not isinstance(opaque, str):
        raise RequestContextError("empty request context")

    s = opaque.strip()
    s += "=" * (-len(s) % 4)
    try:
        raw = base64.b64decode(s.encode("ascii"), altchars=b"-_", validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise RequestContextError(f"malformed request context: {e}") from e

    if not isinstance(data, dict):
        raise RequestContextError("request context must be a JSON object")

    try:
        return AuthRequestContext.model_validate(data)
    except ValidationError as e:
        raise RequestContextError(f"invalid request context: {e.error_count()} error(s)") from e
