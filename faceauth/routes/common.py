# faceauth/routes/common.py
import base64
import binascii
from typing import Optional, Tuple
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from fastapi import Request
from fastapi.responses import JSONResponse

from ..errors import OAuthError
from ..oauth_server import AuthorizationServer

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def get_server(request: Request) -> AuthorizationServer:
    return request.app.state.oauth_server


def issuer_from_request(request: Request) -> str:
    """
    Base URL as seen by the browser, so the issuer is stable behind a
    reverse proxy that sets X-Forwarded-Host / X-Forwarded-Proto.
    """
    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        proto = request.headers.get("x-forwarded-proto") or request.url.scheme
        return f"{proto.split(',')[0].strip()}://{forwarded_host.split(',')[0].strip()}"
    return str(request.base_url).rstrip("/")


def append_query(url: str, params: dict) -> str:
    scheme, netloc, path, query, fragment = urlsplit(url)
    pairs = parse_qsl(query, keep_blank_values=True) + list(params.items())
    return urlunsplit((scheme, netloc, path, urlencode(pairs), fragment))


async def read_params(request: Request) -> dict:
    """Body parameters of a form-encoded or JSON request, as strings."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise OAuthError("invalid_request", "malformed JSON body")
        if not isinstance(data, dict):
            raise OAuthError("invalid_request", "JSON body must be an object")
        return {k: str(v) for k, v in data.items() if isinstance(v, (str, int, float))}
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


def client_credentials(request: Request, params: dict) -> Tuple[Optional[str], Optional[str]]:
    """client_secret_basic takes precedence over client_secret_post."""
    auth = request.headers.get("authorization", "")
    if auth[:6].lower() == "basic ":
        try:
            decoded = base64.b64decode(auth[6:].strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise OAuthError("invalid_client", "Malformed Basic credentials", status_code=401)
        client_id, sep, client_secret = decoded.partition(":")
        if not sep:
            raise OAuthError("invalid_client", "Malformed Basic credentials", status_code=401)
        return unquote(client_id), unquote(client_secret)
    return params.get("client_id"), params.get("client_secret")


def bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization", "")
    if auth[:7].lower() != "bearer ":
        return None
    return auth[7:].strip() or None


def oauth_error_response(exc: OAuthError) -> JSONResponse:
    headers = dict(NO_STORE_HEADERS)
    if exc.status_code == 401:
        if exc.error == "invalid_token":
            headers["WWW-Authenticate"] = f'Bearer error="{exc.error}"'
        else:
            headers["WWW-Authenticate"] = 'Basic realm="faceauth"'
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
