# faceauth/face_utils.py
import base64
import binascii
import logging
import os
import threading
from typing import Optional, Tuple

import cv2
import numpy as np

from .config import EMBED_DIM, FACE_DET_SIZE, FACE_MODEL_NAME

logger = logging.getLogger(__name__)

# Set InsightFace root directory
os.environ.setdefault("INSIGHTFACE_ROOT", os.path.expanduser("~/.insightface"))

face_app = None
_face_app_lock = threading.Lock()


def get_face_app():
    """Lazy initialization of the InsightFace detector + ArcFace recognizer."""
    global face_app
    if face_app is None:
        with _face_app_lock:
            if face_app is None:
                # the model pack is downloaded on first use
                from insightface.app import FaceAnalysis

                app = FaceAnalysis(
                    name=FACE_MODEL_NAME,
                    root=os.environ["INSIGHTFACE_ROOT"],
                    providers=["CPUExecutionProvider"],
                )
                app.prepare(ctx_id=0, det_size=FACE_DET_SIZE)
                logger.info(f"Loaded InsightFace with {FACE_MODEL_NAME} model")
                face_app = app
    return face_app


def decode_base64_image(base64_str: str) -> bytes:
    """
    Decode a captured image.
    - base64_str: may be raw base64 or a data URL (data:image/jpeg;base64,...)
    Raises ValueError on empty or invalid input.
    """
    if not base64_str:
        raise ValueError("empty base64 string")

    s = base64_str.strip()
    # if data URL present, strip header
    if s.startswith("data:"):
        comma = s.find(",")
        if comma != -1:
            s = s[comma + 1:]

    # unencoded form posts turn '+' into ' '
    s = s.replace(" ", "+")
    s = "".join(s.split())
    s += "=" * (-len(s) % 4)

    try:
        data = base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64: {e}") from e
    if not data:
        raise ValueError("empty image")
    return data


def read_imagefile_bytes(file_bytes: bytes) -> Optional[np.ndarray]:
    """
    Converts uploaded image bytes to an OpenCV BGR image.
    Returns None if the bytes are not a decodable image.
    """
    arr = np.frombuffer(file_bytes, dtype=np.uint8)
    if arr.size == 0:
        return None
    return cv2.imdecode(arr, cv2.IMREAD_COLOR)


def get_face_embedding(img: np.ndarray) -> Tuple[Optional[np.ndarray], Optional[dict]]:
    """
    Detects the largest face in image, returns its L2-normalised embedding and metadata.
    If no face detected, returns (None, None).
    """
    faces = get_face_app().get(img)
    if not faces:
        return None, None

    largest_face = max(faces, key=lambda f: (f.bbox[2] - f.bbox[0]) * (f.bbox[3] - f.bbox[1]))
    embedding = largest_face.normed_embedding.astype(np.float32)
    meta = {"box": largest_face.bbox.tolist(), "det_score": float(largest_face.det_score)}
    return embedding, meta


def extract_face_descriptor(image_bytes: bytes) -> Optional[np.ndarray]:
    """
    image bytes -> face descriptor (EMBED_DIM floats), or None when no face
    can be found in the image.
    """
    img = read_imagefile_bytes(image_bytes)
    if img is None:
        logger.info("Captured image could not be decoded")
        return None
    emb, meta = get_face_embedding(img)
    if emb is None:
        return None
    if emb.shape[0] != EMBED_DIM:
        logger.warning(f"Unexpected embedding size {emb.shape[0]} (expected {EMBED_DIM})")
    logger.debug(f"Face detected with score {meta['det_score']:.3f}")
    return emb
