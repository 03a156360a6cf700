# faceauth/oauth_server.py
# OAuth2 / OpenID Connect authorization server with face authentication.
#
# Authorization code flow:
#   authorize -> choice page -> (profile form) -> face capture -> verify
#   -> code -> token -> userinfo / introspect / revoke / refresh
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

import numpy as np

from . import crud, matcher
from . import request_context
from .archive import ArchiveError, LocalImageArchive
from .clients import ClientRegistry
from .config import (
    ACCESS_TOKEN_TTL,
    CODE_TTL,
    FACE_DISTANCE_THRESHOLD,
    REFRESH_TOKEN_TTL,
    SUPPORTED_GRANT_TYPES,
    SUPPORTED_SCOPES,
)
from .errors import (
    AuthorizeRedirectError,
    FaceNotRecognized,
    NoFaceDetected,
    NoRegisteredFaces,
    OAuthError,
    RequestContextError,
    UserNotFound,
)
from .models import AuthorizationCode, Token, User
from .schemas import AuthRequestContext
from .security import (
    JWTError,
    TokenSigner,
    create_id_token,
    generate_random_string,
    unverified_claims,
    verify_hs256,
)
from .sessions import EphemeralSession, SessionManager
from .storage import CredentialStore

logger = logging.getLogger(__name__)

Extractor = Callable[[bytes], Optional[np.ndarray]]

BACKCHANNEL_LOGOUT_EVENT = "http://schemas.openid.net/event/backchannel-logout"

CLAIMS_SUPPORTED = [
    "sub",
    "iss",
    "aud",
    "exp",
    "iat",
    "auth_time",
    "nonce",
    "name",
    "given_name",
    "family_name",
    "preferred_username",
    "email",
    "email_verified",
    "phone_number",
    "phone_number_verified",
    "face_verified",
    "picture",
    "updated_at",
]

ACTIONS = ("register", "login")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthorizationServer:
    """OpenID Connect provider that authenticates users by face."""

    def __init__(
        self,
        store: CredentialStore,
        signer: TokenSigner,
        extractor: Extractor,
        archive: Optional[LocalImageArchive] = None,
        sessions: Optional[SessionManager] = None,
        threshold: float = FACE_DISTANCE_THRESHOLD,
    ):
        self.store = store
        self.registry = ClientRegistry(store)
        self.signer = signer
        self.extractor = extractor
        self.archive = archive or LocalImageArchive()
        self.sessions = sessions or SessionManager(release_upload=self.archive.discard)
        self.threshold = threshold

    # ------------------------------------------------------------------
    # Discovery / keys / registration
    # ------------------------------------------------------------------

    def discovery(self, issuer: str) -> dict:
        base = issuer.rstrip("/")
        return {
            "issuer": base,
            "authorization_endpoint": f"{base}/oauth/authorize",
            "token_endpoint": f"{base}/oauth/token",
            "userinfo_endpoint": f"{base}/oauth/userinfo",
            "jwks_uri": f"{base}/oauth/jwks",
            "registration_endpoint": f"{base}/oauth/register",
            "end_session_endpoint": f"{base}/oauth/logout",
            "revocation_endpoint": f"{base}/oauth/revoke",
            "introspection_endpoint": f"{base}/oauth/introspect",
            "backchannel_logout_supported": True,
            "backchannel_logout_session_supported": False,
            "response_types_supported": ["code"],
            "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": [self.signer.algorithm],
            "scopes_supported": list(SUPPORTED_SCOPES),
            "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post"],
            "claims_supported": list(CLAIMS_SUPPORTED),
        }

    def jwks(self) -> dict:
        return self.signer.jwks()

    def register_client(
        self,
        client_name: Optional[str],
        redirect_uris,
        grant_types=None,
        response_types=None,
        scope: Optional[str] = None,
    ) -> dict:
        client = self.registry.register(
            client_name,
            redirect_uris,
            grants=grant_types,
            scopes=scope.split() if scope else None,
            response_types=response_types,
        )
        return {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "client_name": client.client_name,
            "client_id_issued_at": int(client.client_id_issued_at.timestamp()),
            "client_secret_expires_at": 0,
            "redirect_uris": client.redirect_uris,
            "grant_types": client.grants,
            "response_types": client.response_types,
            "scope": " ".join(client.scopes),
            "token_endpoint_auth_method": "client_secret_basic",
        }

    # ------------------------------------------------------------------
    # Authorization request
    # ------------------------------------------------------------------

    def authorize(
        self,
        client_id: Optional[str],
        redirect_uri: Optional[str],
        response_type: Optional[str],
        scope: Optional[str] = None,
        state: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> AuthRequestContext:
        """
        Validate an authorization request.

        Raises OAuthError (render inline, never redirect) while the client or
        its redirect URI is unverified, and AuthorizeRedirectError once the
        redirect URI is known to belong to the client.
        """
        if not client_id or not redirect_uri:
            raise OAuthError("invalid_request", "client_id and redirect_uri are required")

        client = self.registry.lookup(client_id)
        if client is None:
            logger.warning(f"Authorize request for unknown client {client_id!r}")
            raise OAuthError("invalid_client", "Invalid client identifier")

        if redirect_uri not in client.redirect_uris:
            logger.warning(f"Unregistered redirect_uri for client {client_id}")
            raise OAuthError("invalid_redirect_uri", "Invalid redirection URI")

        if response_type != "code":
            raise AuthorizeRedirectError(
                "unsupported_response_type", "Unsupported response type", redirect_uri, state
            )

        requested = (scope or "").split() or ["openid"]
        if not set(requested).issubset(client.scopes):
            raise AuthorizeRedirectError("invalid_scope", "Requested scope is not allowed", redirect_uri, state)

        return AuthRequestContext(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=" ".join(requested),
            state=state or "",
            nonce=nonce or None,
        )

    def resolve_context(self, opaque: Optional[str]) -> AuthRequestContext:
        """
        Decode a request context posted back by the capture pages.
        The context is unsigned, so the client and redirect URI are checked again.
        """
        ctx = request_context.decode(opaque)
        client = self.registry.lookup(ctx.client_id)
        if client is None or ctx.redirect_uri not in client.redirect_uris:
            raise RequestContextError("request context does not match a registered client")
        return ctx

    # ------------------------------------------------------------------
    # Face capture -> authorization code
    # ------------------------------------------------------------------

    def authenticate_face(
        self,
        image_bytes: bytes,
        action: str,
        session: EphemeralSession,
        fallback_fields: Optional[dict] = None,
    ) -> User:
        """
        Run the biometric step for one capture submission.
        Raises a BiometricError subclass for each expected failure.
        """
        if action not in ACTIONS:
            raise OAuthError("invalid_request", f"unknown action {action!r}")

        descriptor = self.extractor(image_bytes)
        if descriptor is None or len(descriptor) == 0:
            logger.info("No face detected in captured image")
            raise NoFaceDetected()
        if not np.all(np.isfinite(np.asarray(descriptor, dtype=np.float64))):
            logger.warning("Extractor returned a descriptor with non-finite components")
            raise NoFaceDetected()

        if action == "register":
            return self._register(descriptor, image_bytes, session, fallback_fields)
        return self._login(descriptor)

    def _register(self, descriptor, image_bytes: bytes, session: EphemeralSession, fallback_fields) -> User:
        existing = self.store.list_face_profiles()
        if existing:
            decision = matcher.decide(descriptor, existing, self.threshold)
            if decision.matched:
                logger.warning(
                    f"Registering a face that matches existing user {decision.user_id} "
                    f"(distance {decision.distance:.3f}); creating a new user anyway"
                )

        user_id = crud.new_user_id()
        picture_url = None
        try:
            picture_url = self.archive.store(image_bytes, user_id)
            session.track_upload(picture_url)
        except ArchiveError as e:
            logger.error(f"Archiving face image for {user_id} failed: {e}")

        fields = session.pending_profile or fallback_fields
        user = crud.register_face_user(self.store, user_id, descriptor, fields, picture_url)
        session.commit_upload()
        return user

    def _login(self, descriptor) -> User:
        decision = matcher.decide(descriptor, self.store.list_face_profiles(), self.threshold)
        if decision.outcome is matcher.MatchOutcome.NO_ENROLLMENTS:
            raise NoRegisteredFaces()
        if not decision.matched:
            logger.info(f"Face not recognized (best distance {decision.distance:.3f})")
            raise FaceNotRecognized()

        user = self.store.get_user(decision.user_id)
        if user is None:
            logger.error(f"Face profile {decision.user_id} has no user record")
            raise UserNotFound()
        self.store.touch_user(user.id)
        logger.info(f"User authenticated with face recognition: {user.id}")
        return user

    def issue_code(self, ctx: AuthRequestContext, user_id: str) -> str:
        now = _utcnow()
        code = generate_random_string(32)
        self.store.save_code(
            AuthorizationCode(
                code=code,
                client_id=ctx.client_id,
                user_id=user_id,
                redirect_uri=ctx.redirect_uri,
                scope=ctx.scope,
                nonce=ctx.nonce,
                auth_time=now,
                issued_at=now,
                expires_at=now + CODE_TTL,
            )
        )
        logger.info(f"Issued authorization code for user {user_id} to client {ctx.client_id}")
        return code

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def token(self, params: dict, client_id: Optional[str], client_secret: Optional[str], issuer: str) -> dict:
        if not self.registry.authenticate(client_id, client_secret):
            logger.warning(f"Client authentication failed for {client_id!r}")
            raise OAuthError("invalid_client", "Client authentication failed", status_code=401)

        grant_type = params.get("grant_type")
        if not grant_type:
            raise OAuthError("invalid_request", "grant_type is required")
        if grant_type not in SUPPORTED_GRANT_TYPES:
            raise OAuthError("unsupported_grant_type")

        client = self.registry.lookup(client_id)
        if grant_type not in client.grants:
            raise OAuthError("unauthorized_client", f"client may not use {grant_type}")

        if grant_type == "authorization_code":
            return self.exchange_code(client_id, params.get("code"), params.get("redirect_uri"), issuer)
        return self.refresh(client_id, params.get("refresh_token"), issuer)

    def exchange_code(self, client_id: str, code: Optional[str], redirect_uri: Optional[str], issuer: str) -> dict:
        if not code:
            raise OAuthError("invalid_request", "code is required")

        auth_code = self.store.take_code(code)
        if auth_code is None or auth_code.client_id != client_id or auth_code.redirect_uri != redirect_uri:
            logger.warning(f"Rejected authorization code redemption by client {client_id}")
            raise OAuthError("invalid_grant")

        user = self.store.get_user(auth_code.user_id)
        if user is None:
            logger.error(f"Authorization code refers to missing user {auth_code.user_id}")
            raise OAuthError("invalid_grant")

        return self._issue_tokens(user, client_id, auth_code.scope, issuer, auth_code.nonce, auth_code.auth_time)

    def refresh(self, client_id: str, refresh_token: Optional[str], issuer: str) -> dict:
        if not refresh_token:
            raise OAuthError("invalid_request", "refresh_token is required")

        current = self.store.get_token(refresh_token)
        if current is None or not current.is_refresh_token or current.client_id != client_id:
            raise OAuthError("invalid_grant")

        # the losing side of a concurrent rotation sees None here
        old = self.store.take_refresh_token(refresh_token)
        if old is None:
            raise OAuthError("invalid_grant")

        user = self.store.get_user(old.user_id)
        if user is None:
            raise OAuthError("invalid_grant")

        return self._issue_tokens(user, client_id, old.scope, issuer, None, old.auth_time)

    def _issue_tokens(
        self,
        user: User,
        client_id: str,
        scope: str,
        issuer: str,
        nonce: Optional[str],
        auth_time: Optional[datetime],
    ) -> dict:
        now = _utcnow()
        access = Token(
            token=generate_random_string(32),
            user_id=user.id,
            client_id=client_id,
            scope=scope,
            auth_time=auth_time,
            issued_at=now,
            expires_at=now + ACCESS_TOKEN_TTL,
        )
        refresh = Token(
            token=generate_random_string(32),
            user_id=user.id,
            client_id=client_id,
            scope=scope,
            is_refresh_token=True,
            auth_time=auth_time,
            issued_at=now,
            expires_at=now + REFRESH_TOKEN_TTL,
        )
        self.store.save_token(access)
        self.store.save_token(refresh)

        claims = crud.profile_claims(user, self.store.get_face_profile(user.id), issuer)
        id_token = create_id_token(
            self.signer,
            issuer=issuer,
            subject=user.id,
            audience=client_id,
            profile_claims=claims,
            nonce=nonce,
            auth_time=auth_time,
        )
        logger.info(f"Issued tokens for user {user.id} to client {client_id}")
        return {
            "access_token": access.token,
            "token_type": "Bearer",
            "expires_in": int(ACCESS_TOKEN_TTL.total_seconds()),
            "refresh_token": refresh.token,
            "refresh_expires_in": int(REFRESH_TOKEN_TTL.total_seconds()),
            "scope": scope,
            "id_token": id_token,
        }

    # ------------------------------------------------------------------
    # Token consumers
    # ------------------------------------------------------------------

    def userinfo(self, access_token: Optional[str], base_url: str) -> dict:
        token = self.store.get_token(access_token) if access_token else None
        if token is None or token.is_refresh_token:
            raise OAuthError("invalid_token", "The access token is invalid or expired", status_code=401)

        user = self.store.get_user(token.user_id)
        if user is None:
            raise OAuthError("invalid_token", "The access token is invalid or expired", status_code=401)

        claims = crud.profile_claims(user, self.store.get_face_profile(user.id), base_url)
        return {"sub": user.id, **claims}

    def introspect(self, token_value: Optional[str]) -> dict:
        if not token_value:
            raise OAuthError("invalid_request", "token is required")

        token = self.store.get_token(token_value)
        if token is None:
            return {"active": False}

        user = self.store.get_user(token.user_id)
        body = {
            "active": True,
            "client_id": token.client_id,
            "scope": token.scope,
            "sub": token.user_id,
            "exp": int(token.expires_at.timestamp()),
            "iat": int(token.issued_at.timestamp()),
            "token_type": token.token_type,
        }
        if user is not None:
            body["username"] = user.name
        return body

    def revoke(self, token_value: Optional[str]) -> None:
        if token_value and self.store.delete_token(token_value):
            logger.info("Token revoked")

    def backchannel_logout(self, logout_token: Optional[str], issuer: str) -> int:
        """
        Verify a logout token and drop the grants of its subject.

        The token must name this server in `aud`, carry `iat` and the
        back-channel logout event. Signed with this server's own key it
        drops every token and code of `sub`; signed HS256 with the secret
        of the client named in `iss` it drops only that client's grants.
        """
        if not logout_token:
            raise OAuthError("invalid_request", "logout_token is required")

        verified = self._verify_logout_token(logout_token, issuer)
        if verified is None:
            raise OAuthError("invalid_request", "invalid logout_token")
        claims, client_id = verified

        events = claims.get("events")
        audience = claims.get("aud")
        if (
            not claims.get("sub")
            or issuer not in (audience if isinstance(audience, list) else [audience])
            or "nonce" in claims
            or not isinstance(claims.get("iat"), (int, float))
            or not isinstance(events, dict)
            or BACKCHANNEL_LOGOUT_EVENT not in events
        ):
            raise OAuthError("invalid_request", "invalid logout_token")

        removed = self.store.delete_user_grants(claims["sub"], client_id=client_id)
        scope = f"client {client_id}" if client_id else "all clients"
        logger.info(f"Back-channel logout for {claims['sub']} ({scope}) removed {removed} grants")
        return removed

    def _verify_logout_token(self, logout_token: str, issuer: str) -> Optional[Tuple[dict, Optional[str]]]:
        """Return (claims, client_id), client_id being None for this server's own signature."""
        try:
            return self.signer.verify(logout_token, audience=issuer), None
        except JWTError:
            logger.debug("Logout token not signed by this server, trying client secret")

        try:
            client_id = unverified_claims(logout_token).get("iss")
        except JWTError:
            return None
        if not isinstance(client_id, str):
            return None

        client = self.registry.lookup(client_id)
        if client is None:
            return None
        try:
            return verify_hs256(logout_token, client.client_secret, audience=issuer), client.client_id
        except JWTError:
            return None
