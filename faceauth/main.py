# faceauth/main.py
import argparse
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import __version__
from .archive import LocalImageArchive
from .config import (
    CORS_ORIGINS,
    DESCRIPTOR_KEY_FILE,
    JSON_DB_PATH,
    MONGO_DB,
    MONGO_URI,
    SIGNING_KEY_FILE,
    STORAGE_BACKEND,
    UPLOAD_DIR,
    UPLOAD_URL_PREFIX,
)
from .errors import OAuthError
from .face_utils import extract_face_descriptor
from .oauth_server import AuthorizationServer
from .routes import face_router, oauth_router
from .routes.common import oauth_error_response
from .security import TokenSigner, load_or_create_fernet
from .sessions import SessionManager
from .storage import CredentialStore, JsonFileStore
from .storage_mongo import MongoCredentialStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_store() -> CredentialStore:
    if STORAGE_BACKEND == "json":
        logger.info(f"Using JSON file store at {JSON_DB_PATH}")
        return JsonFileStore(JSON_DB_PATH)
    if STORAGE_BACKEND != "mongo":
        raise ValueError(f"Unknown STORAGE_BACKEND {STORAGE_BACKEND!r} (expected 'mongo' or 'json')")

    return MongoCredentialStore(MONGO_URI, MONGO_DB, load_or_create_fernet(DESCRIPTOR_KEY_FILE))


def build_server() -> AuthorizationServer:
    archive = LocalImageArchive(UPLOAD_DIR, UPLOAD_URL_PREFIX)
    return AuthorizationServer(
        store=build_store(),
        signer=TokenSigner.from_file(SIGNING_KEY_FILE),
        extractor=extract_face_descriptor,
        archive=archive,
        sessions=SessionManager(release_upload=archive.discard),
    )


def create_app(server: Optional[AuthorizationServer] = None) -> FastAPI:
    server = server or build_server()
    server.registry.ensure_static_clients()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(server.store, JsonFileStore):
            removed = server.store.purge_expired()
            logger.info(f"Swept {removed} expired codes and tokens from the JSON store")
        yield
        server.store.close()

    app = FastAPI(
        title="FaceAuth - OpenID Connect Provider with Face Authentication",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.oauth_server = server

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OAuthError)
    async def handle_oauth_error(request: Request, exc: OAuthError):
        return oauth_error_response(exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": "server_error", "error_description": "Internal server error"},
        )

    app.include_router(oauth_router)
    app.include_router(face_router)

    # archived face captures
    os.makedirs(server.archive.root, exist_ok=True)
    app.mount(server.archive.url_prefix, StaticFiles(directory=str(server.archive.root)), name="uploads")

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__}

    @app.get("/")
    def root():
        return {
            "message": "Face Authentication OpenID Connect provider",
            "discovery": "/.well-known/openid-configuration",
        }

    return app


def run(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run the face authentication OIDC provider")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")
    args = parser.parse_args(argv)
    uvicorn.run("faceauth.main:create_app", factory=True, host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    run()
