import base64

import numpy as np
import pytest

from faceauth import face_utils
from faceauth.face_utils import decode_base64_image, extract_face_descriptor, read_imagefile_bytes

RAW = b"\xff\xd8\xff\xe0 jpeg-ish bytes \x00\x01"


class TestDecodeBase64Image:
    def test_raw_base64(self):
        assert decode_base64_image(base64.b64encode(RAW).decode()) == RAW

    def test_data_url(self):
        encoded = "data:image/jpeg;base64," + base64.b64encode(RAW).decode()
        assert decode_base64_image(encoded) == RAW

    def test_form_mangled_plus_and_missing_padding(self):
        encoded = base64.b64encode(RAW).decode().rstrip("=").replace("+", " ")
        assert decode_base64_image(encoded) == RAW

    def test_embedded_newlines(self):
        encoded = base64.encodebytes(RAW * 20).decode()
        assert decode_base64_image(encoded) == RAW * 20

    @pytest.mark.parametrize("value", [None, "", "   ", "%%%%", "data:image/png;base64,"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            decode_base64_image(value)


def test_undecodable_bytes_are_not_an_image():
    assert read_imagefile_bytes(b"") is None
    assert read_imagefile_bytes(b"definitely not an image") is None


def test_extract_without_face(monkeypatch):
    class NoFaces:
        def get(self, img):
            return []

    monkeypatch.setattr(face_utils, "get_face_app", lambda: NoFaces())
    monkeypatch.setattr(face_utils, "read_imagefile_bytes", lambda b: np.zeros((8, 8, 3), dtype=np.uint8))
    assert extract_face_descriptor(b"img") is None


def test_extract_picks_largest_face(monkeypatch):
    class Face:
        def __init__(self, bbox, value):
            self.bbox = np.asarray(bbox, dtype=np.float32)
            self.det_score = 0.99
            self.normed_embedding = np.full(4, value, dtype=np.float32)

    class TwoFaces:
        def get(self, img):
            return [Face([0, 0, 10, 10], 0.1), Face([0, 0, 50, 50], 0.5)]

    monkeypatch.setattr(face_utils, "get_face_app", lambda: TwoFaces())
    monkeypatch.setattr(face_utils, "read_imagefile_bytes", lambda b: np.zeros((64, 64, 3), dtype=np.uint8))
    descriptor = extract_face_descriptor(b"img")
    assert descriptor.tolist() == [0.5] * 4
