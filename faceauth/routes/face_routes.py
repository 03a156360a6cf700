# faceauth/routes/face_routes.py
# Browser-facing pages between /oauth/authorize and the redirect back to the client.
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ..config import COOKIE_SECURE, SESSION_COOKIE_NAME
from ..errors import BiometricError, RequestContextError
from ..face_utils import decode_base64_image
from ..oauth_server import ACTIONS, AuthorizationServer
from ..pages import BIOMETRIC_TITLES, capture_page, error_page, register_page
from ..schemas import ProfileForm
from .common import append_query, get_server

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Face Authentication"])

# form field -> ProfileForm field
PROFILE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "email": "email",
    "username": "username",
    "phone": "phone",
}


def _bad_request(message: str, request: Optional[str] = None) -> HTMLResponse:
    return HTMLResponse(
        error_page("Invalid request", message, request=request, error_code="invalid_request"),
        status_code=400,
    )


def _profile_from_form(form) -> ProfileForm:
    values = {}
    for form_name, field_name in PROFILE_FIELDS.items():
        value = form.get(form_name)
        if isinstance(value, str) and value.strip():
            values[field_name] = value.strip()
    return ProfileForm(**values)


# ------------------------------
# Capture and registration pages
# ------------------------------
@router.get("/face-auth", response_class=HTMLResponse)
def face_auth_page(
    request: Optional[str] = None,
    action: str = "login",
    server: AuthorizationServer = Depends(get_server),
):
    try:
        server.resolve_context(request)
    except RequestContextError as e:
        logger.warning(f"Rejected face-auth page request: {e}")
        return _bad_request("The sign-in request is missing or malformed. Start again from the application.")
    if action not in ACTIONS:
        return _bad_request(f"Unknown action {action!r}.", request)
    return HTMLResponse(capture_page(request, action))


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Optional[str] = None, server: AuthorizationServer = Depends(get_server)):
    try:
        server.resolve_context(request)
    except RequestContextError as e:
        logger.warning(f"Rejected register page request: {e}")
        return _bad_request("The sign-in request is missing or malformed. Start again from the application.")
    return HTMLResponse(register_page(request))


@router.post("/register-user")
async def register_user(request: Request, server: AuthorizationServer = Depends(get_server)):
    form = await request.form()
    opaque = form.get("request")
    try:
        await run_in_threadpool(server.resolve_context, opaque)
    except RequestContextError as e:
        logger.warning(f"Rejected profile submission: {e}")
        return _bad_request("The sign-in request is missing or malformed. Start again from the application.")

    try:
        profile = _profile_from_form(form)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        return _bad_request(f"Please check these fields: {fields}.", opaque)

    server.sessions.sweep()
    session_id = server.sessions.stage_profile(
        request.cookies.get(SESSION_COOKIE_NAME), profile.model_dump()
    )
    response = RedirectResponse(
        append_query("/face-auth", {"request": opaque, "action": "register"}), status_code=303
    )
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session_id,
        max_age=int(server.sessions.ttl.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
    )
    return response


# ------------------------------
# Capture submission
# ------------------------------
def _complete_capture(
    server: AuthorizationServer,
    opaque: Optional[str],
    action: str,
    face_image: Optional[str],
    session_id: Optional[str],
    fallback_fields: Optional[dict],
):
    with server.sessions.flow(session_id) as session:
        try:
            ctx = server.resolve_context(opaque)
        except RequestContextError as e:
            logger.warning(f"Rejected capture submission: {e}")
            return _bad_request("The sign-in request is missing or malformed. Start again from the application.")
        if action not in ACTIONS:
            return _bad_request(f"Unknown action {action!r}.", opaque)

        try:
            image_bytes = decode_base64_image(face_image)
        except ValueError as e:
            logger.info(f"Invalid face image submitted: {e}")
            return _bad_request("The captured image could not be read. Please try again.", opaque)

        try:
            user = server.authenticate_face(image_bytes, action, session, fallback_fields)
        except BiometricError as e:
            return HTMLResponse(
                error_page(BIOMETRIC_TITLES.get(e.page, "Face verification failed"), str(e), opaque, e.page),
                status_code=e.status_code,
            )

        code = server.issue_code(ctx, user.id)
    params = {"code": code}
    if ctx.state:
        params["state"] = ctx.state
    return RedirectResponse(append_query(ctx.redirect_uri, params), status_code=302)


@router.post("/face-auth/verify")
async def verify_face(request: Request, server: AuthorizationServer = Depends(get_server)):
    form = await request.form()
    opaque = form.get("request")
    action = form.get("action") or "login"
    face_image = form.get("faceImage")

    fallback_fields = None
    if action == "register" and form.get("firstName"):
        try:
            fallback_fields = _profile_from_form(form).model_dump()
        except ValidationError:
            logger.info("Ignoring incomplete inline profile fields on capture submission")

    response = await run_in_threadpool(
        _complete_capture,
        server,
        opaque if isinstance(opaque, str) else None,
        action if isinstance(action, str) else "",
        face_image if isinstance(face_image, str) else None,
        request.cookies.get(SESSION_COOKIE_NAME),
        fallback_fields,
    )
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response
