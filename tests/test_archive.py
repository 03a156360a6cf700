import os

import pytest

from faceauth.archive import ArchiveError, LocalImageArchive


@pytest.fixture
def archive(tmp_path):
    return LocalImageArchive(str(tmp_path / "uploads"))


def test_store_returns_public_url(archive):
    url = archive.store(b"jpeg", "abc123")
    assert url.startswith("/uploads/faces/abc123_")
    assert url.endswith(".jpg")
    (name,) = os.listdir(archive.faces_dir)
    assert url.endswith(name)


def test_store_sanitises_key(archive):
    url = archive.store(b"jpeg", "../../etc/passwd")
    assert "/faces/etcpasswd_" in url
    assert len(os.listdir(archive.faces_dir)) == 1


def test_store_rejects_empty(archive):
    with pytest.raises(ArchiveError):
        archive.store(b"", "abc")


def test_discard(archive):
    url = archive.store(b"jpeg", "abc")
    assert archive.discard(url) is True
    assert archive.discard(url) is False
    assert os.listdir(archive.faces_dir) == []


def test_discard_ignores_foreign_paths(archive):
    assert archive.discard("/etc/passwd") is False
    assert archive.discard("/uploads/faces/") is False


def test_stored_image_is_served(client, server):
    url = server.archive.store(b"jpeg-bytes", "served")
    resp = client.get(url)
    assert resp.status_code == 200
    assert resp.content == b"jpeg-bytes"
