# faceauth/config.py
# Central place for thresholds, lifetimes and deployment settings
import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# --- Biometric Config ---
# Euclidean distance threshold on L2-normalised ArcFace embeddings.
# d = sqrt(2 - 2 * cos), so 1.10 is roughly cosine similarity 0.40.
FACE_DISTANCE_THRESHOLD = float(os.getenv("FACE_DISTANCE_THRESHOLD", "1.10"))

# Embedding dimension (InsightFace typical 512)
EMBED_DIM = int(os.getenv("EMBED_DIM", "512"))

# InsightFace model pack and detector input size
FACE_MODEL_NAME = os.getenv("FACE_MODEL_NAME", "buffalo_l")
FACE_DET_SIZE = (640, 640)

# --- Storage Config ---
# "mongo" for MongoDB, "json" for the local JSON file store (dev only)
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "mongo").lower()
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "faceauth")
JSON_DB_PATH = os.getenv("JSON_DB_PATH", "data/faceauth_db.json")

# --- Key material ---
# In production: use secure key management (Vault/KMS) and mount these files.
SIGNING_KEY_FILE = os.getenv("SIGNING_KEY_FILE", "data/signing_key.pem")
DESCRIPTOR_KEY_FILE = os.getenv("DESCRIPTOR_KEY_FILE", "data/secret.key")
ID_TOKEN_ALGORITHM = "RS256"

# --- Archived face captures ---
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
UPLOAD_URL_PREFIX = "/uploads"

# --- Protocol lifetimes ---
CODE_TTL = timedelta(minutes=10)
ACCESS_TOKEN_TTL = timedelta(hours=1)
REFRESH_TOKEN_TTL = timedelta(days=30)

# --- Ephemeral browser session ---
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "faceauth_sid")
SESSION_TTL = timedelta(minutes=int(os.getenv("SESSION_TTL_MINUTES", "15")))
COOKIE_SECURE = _env_bool("COOKIE_SECURE")

# --- HTTP ---
CORS_ORIGINS = _env_list("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")

# --- Statically configured relying party ---
FACE_AUTH_CLIENT_ID = os.getenv("FACE_AUTH_CLIENT_ID", "face-auth-client")
FACE_AUTH_CLIENT_SECRET = os.getenv("FACE_AUTH_CLIENT_SECRET", "")
FACE_AUTH_CLIENT_NAME = os.getenv("FACE_AUTH_CLIENT_NAME", "Face Auth Client")
FACE_AUTH_REDIRECT_URIS = _env_list(
    "FACE_AUTH_REDIRECT_URIS",
    "http://localhost:5173/oauth/callback,http://localhost:5001/oauth/callback",
)

SUPPORTED_SCOPES = ["openid", "profile", "email", "phone"]
DEFAULT_CLIENT_SCOPES = ["openid", "profile", "email"]
SUPPORTED_GRANT_TYPES = ["authorization_code", "refresh_token"]
