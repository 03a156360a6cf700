# faceauth/errors.py
from typing import Optional


class OAuthError(Exception):
    """Protocol error reported to the caller with an OAuth error code."""

    def __init__(self, error: str, description: Optional[str] = None, status_code: int = 400):
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class RequestContextError(ValueError):
    """The opaque authorization request context could not be decoded."""


class DuplicateRecordError(Exception):
    """A record with the same unique key already exists in the store."""


class BiometricError(Exception):
    """Expected biometric failure, rendered as its own page."""

    page = "biometric_error"
    status_code = 400
    message = "Face verification failed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class NoFaceDetected(BiometricError):
    page = "no_face_detected"
    status_code = 400
    message = "No face was detected in the captured image. Please retake the photo."


class FaceNotRecognized(BiometricError):
    page = "face_not_recognized"
    status_code = 401
    message = "Your face did not match any registered profile."


class NoRegisteredFaces(BiometricError):
    page = "no_registered_faces"
    status_code = 404
    message = "No faces are registered yet. Register to continue."


class UserNotFound(BiometricError):
    page = "user_not_found"
    status_code = 401
    message = "User not found for the authenticated face. Contact an administrator."


class AuthorizeRedirectError(OAuthError):
    """Authorize failure safe to report to an already-verified redirect URI."""

    def __init__(self, error: str, description: str, redirect_uri: str, state: Optional[str] = None):
        super().__init__(error, description, status_code=302)
        self.redirect_uri = redirect_uri
        self.state = state
