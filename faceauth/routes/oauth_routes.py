# faceauth/routes/oauth_routes.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from .. import request_context
from ..config import SESSION_COOKIE_NAME
from ..errors import AuthorizeRedirectError, OAuthError
from ..oauth_server import AuthorizationServer
from ..pages import choice_page, error_page
from ..schemas import ClientRegistrationRequest
from .common import (
    NO_STORE_HEADERS,
    append_query,
    bearer_token,
    client_credentials,
    get_server,
    issuer_from_request,
    read_params,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth"])


# ------------------------------
# Discovery & keys
# ------------------------------
@router.get("/.well-known/openid-configuration")
def openid_configuration(request: Request, server: AuthorizationServer = Depends(get_server)):
    return server.discovery(issuer_from_request(request))


@router.get("/oauth/jwks")
def jwks(server: AuthorizationServer = Depends(get_server)):
    return server.jwks()


# ------------------------------
# Dynamic client registration
# ------------------------------
@router.post("/oauth/register", status_code=201)
async def register_client(request: Request, server: AuthorizationServer = Depends(get_server)):
    try:
        body = ClientRegistrationRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        # json.JSONDecodeError is a ValueError
        raise OAuthError("invalid_client_metadata", "registration body must be a JSON object")

    registered = await run_in_threadpool(
        server.register_client,
        body.client_name,
        body.redirect_uris,
        body.grant_types,
        body.response_types,
        body.scope,
    )
    return JSONResponse(status_code=201, content=registered, headers=NO_STORE_HEADERS)


# ------------------------------
# Authorization endpoint
# ------------------------------
@router.get("/oauth/authorize", response_class=HTMLResponse)
def authorize(
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    response_type: Optional[str] = None,
    scope: Optional[str] = None,
    state: Optional[str] = None,
    nonce: Optional[str] = None,
    server: AuthorizationServer = Depends(get_server),
):
    try:
        ctx = server.authorize(client_id, redirect_uri, response_type, scope, state, nonce)
    except AuthorizeRedirectError as e:
        params = {"error": e.error, "error_description": e.description}
        if e.state:
            params["state"] = e.state
        return RedirectResponse(append_query(e.redirect_uri, params), status_code=302)
    except OAuthError as e:
        # redirect_uri is not trusted yet, so the error stays on this server
        return HTMLResponse(
            error_page("Authorization error", e.description or e.error, error_code=e.error),
            status_code=400,
        )

    client = server.registry.lookup(ctx.client_id)
    return HTMLResponse(choice_page(client.client_name or client.client_id, request_context.encode(ctx)))


# ------------------------------
# Token endpoint
# ------------------------------
@router.post("/oauth/token")
async def token(request: Request, server: AuthorizationServer = Depends(get_server)):
    params = await read_params(request)
    client_id, client_secret = client_credentials(request, params)
    issued = await run_in_threadpool(
        server.token, params, client_id, client_secret, issuer_from_request(request)
    )
    return JSONResponse(content=issued, headers=NO_STORE_HEADERS)


@router.get("/oauth/userinfo")
def userinfo(request: Request, server: AuthorizationServer = Depends(get_server)):
    return server.userinfo(bearer_token(request), issuer_from_request(request))


@router.post("/oauth/introspect")
async def introspect(request: Request, server: AuthorizationServer = Depends(get_server)):
    params = await read_params(request)
    body = await run_in_threadpool(server.introspect, params.get("token"))
    return JSONResponse(content=body, headers=NO_STORE_HEADERS)


@router.post("/oauth/revoke")
async def revoke(request: Request, server: AuthorizationServer = Depends(get_server)):
    params = await read_params(request)
    await run_in_threadpool(server.revoke, params.get("token"))
    return Response(status_code=200)


# ------------------------------
# Logout
# ------------------------------
@router.post("/oauth/backchannel-logout")
async def backchannel_logout(request: Request, server: AuthorizationServer = Depends(get_server)):
    params = await read_params(request)
    await run_in_threadpool(server.backchannel_logout, params.get("logout_token"), issuer_from_request(request))
    return Response(status_code=204, headers=NO_STORE_HEADERS)


@router.get("/oauth/logout")
def logout(
    request: Request,
    post_logout_redirect_uri: Optional[str] = None,
    server: AuthorizationServer = Depends(get_server),
):
    server.sessions.destroy(request.cookies.get(SESSION_COOKIE_NAME))
    target = "/"
    if server.registry.is_registered_redirect(post_logout_redirect_uri):
        target = post_logout_redirect_uri
    elif post_logout_redirect_uri:
        logger.warning(f"Ignoring unregistered post_logout_redirect_uri {post_logout_redirect_uri!r}")
    response = RedirectResponse(target, status_code=302)
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@router.get("/oauth/session")
def session_status(request: Request, server: AuthorizationServer = Depends(get_server)):
    session = server.sessions.peek(request.cookies.get(SESSION_COOKIE_NAME))
    if session is None:
        return {"active": False}
    return {
        "active": True,
        "profile_staged": session.pending_profile is not None,
        "expires_at": int((session.created_at + server.sessions.ttl).timestamp()),
    }
