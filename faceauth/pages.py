# faceauth/pages.py
# Minimal server-rendered pages for the human part of the flow.
from html import escape
from typing import Optional
from urllib.parse import urlencode

_LAYOUT = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>{title}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<style>
body {{ font-family: system-ui; max-width: 480px; margin: 40px auto; padding: 20px; }}
.btn {{ display: inline-block; padding: 10px 24px; border: none; border-radius: 6px;
  cursor: pointer; font-size: 16px; text-decoration: none; }}
.primary {{ background: #2563eb; color: white; }}
.secondary {{ background: #e5e7eb; color: #374151; margin-left: 12px; }}
.error {{ background: #fef2f2; border: 1px solid #fecaca; padding: 12px; border-radius: 8px; }}
label {{ display: block; margin-top: 12px; }}
input {{ width: 100%; padding: 8px; box-sizing: border-box; }}
</style></head><body>
{body}
</body></html>"""


def _page(title: str, body: str) -> str:
    return _LAYOUT.format(title=escape(title), body=body)


def _link(path: str, **params) -> str:
    return escape(f"{path}?{urlencode(params)}")


def choice_page(client_name: str, request: str) -> str:
    body = f"""<h2>Sign in to {escape(client_name)}</h2>
<p>This application uses face authentication instead of a password.</p>
<a class="btn primary" href="{_link('/face-auth', request=request, action='login')}">Sign in with my face</a>
<a class="btn secondary" href="{_link('/register', request=request)}">Register</a>"""
    return _page("Face Authentication", body)


def register_page(request: str) -> str:
    body = f"""<h2>Create your profile</h2>
<form method="POST" action="/register-user">
<input type="hidden" name="request" value="{escape(request)}">
<label>First name <input name="firstName" required></label>
<label>Last name <input name="lastName" required></label>
<label>Email <input name="email" type="email" required></label>
<label>Username <input name="username"></label>
<label>Phone <input name="phone" type="tel"></label>
<p><button type="submit" class="btn primary">Continue to face capture</button></p>
</form>"""
    return _page("Register", body)


def capture_page(request: str, action: str) -> str:
    body = f"""<h2>{'Register your face' if action == 'register' else 'Look at the camera'}</h2>
<video id="video" width="400" height="300" autoplay playsinline></video>
<canvas id="canvas" width="400" height="300" hidden></canvas>
<form id="capture" method="POST" action="/face-auth/verify">
<input type="hidden" name="request" value="{escape(request)}">
<input type="hidden" name="action" value="{escape(action)}">
<input type="hidden" name="faceImage" id="faceImage">
<p><button type="submit" class="btn primary">Capture</button></p>
</form>
<script>
navigator.mediaDevices.getUserMedia({{video: true}}).then(s => {{ video.srcObject = s; }});
document.getElementById('capture').addEventListener('submit', () => {{
  canvas.getContext('2d').drawImage(video, 0, 0, 400, 300);
  faceImage.value = canvas.toDataURL('image/jpeg').split(',')[1];
}});
</script>"""
    return _page("Face Capture", body)


def error_page(title: str, message: str, request: Optional[str] = None, error_code: Optional[str] = None) -> str:
    parts = [f"<h2>{escape(title)}</h2>", f'<div class="error"><p>{escape(message)}</p>']
    if error_code:
        parts.append(f"<p><code>{escape(error_code)}</code></p>")
    parts.append("</div>")
    if request:
        parts.append(
            f'<p><a class="btn primary" href="{_link("/face-auth", request=request, action="login")}">Try again</a>'
            f'<a class="btn secondary" href="{_link("/register", request=request)}">Register</a></p>'
        )
    return _page(title, "\n".join(parts))


BIOMETRIC_TITLES = {
    "no_face_detected": "No face detected",
    "face_not_recognized": "Face not recognized",
    "no_registered_faces": "No registered faces",
    "user_not_found": "User not found",
}
