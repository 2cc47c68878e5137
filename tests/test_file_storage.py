"""Tests for local blob storage."""

import pytest

from esign.services.file_storage_service import LocalFileStorage


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(str(tmp_path / "esign"))


def test_upload_and_read(storage, tmp_path):
    url = storage.upload(b"%PDF-1.4 lease", "application/pdf", "lease.pdf")

    assert url.startswith("file://")
    assert url.endswith("_lease.pdf")
    assert storage.read(url) == b"%PDF-1.4 lease"


def test_uploads_never_collide(storage):
    first = storage.upload(b"one", "application/pdf", "same.pdf")
    second = storage.upload(b"two", "application/pdf", "same.pdf")

    assert first != second
    assert storage.read(first) == b"one"


def test_filename_is_sanitized(storage, tmp_path):
    url = storage.upload(b"x", "application/pdf", "../../etc/Offer Letter (final).pdf")

    stored = list((tmp_path / "esign").iterdir())
    assert len(stored) == 1
    assert stored[0].name.endswith("_Offer_Letter_final_.pdf")
    assert storage.read(url) == b"x"


def test_rejects_foreign_urls(storage, tmp_path):
    outside = tmp_path / "outside.pdf"
    outside.write_bytes(b"secret")

    with pytest.raises(ValueError):
        storage.read(outside.as_uri())
    with pytest.raises(ValueError):
        storage.read("https://example.com/doc.pdf")


def test_missing_blob(storage):
    url = storage.upload(b"x", "application/pdf", "x.pdf")
    missing = url.replace("_x.pdf", "_y.pdf")
    with pytest.raises(FileNotFoundError):
        storage.read(missing)


def test_delete_removes_blob(storage, tmp_path):
    url = storage.upload(b"%PDF-1.4 draft", "application/pdf", "draft.pdf")

    assert storage.delete(url) is True
    assert list((tmp_path / "esign").iterdir()) == []
    with pytest.raises(FileNotFoundError):
        storage.read(url)
    assert storage.delete(url) is False


def test_delete_refuses_files_outside_storage(storage, tmp_path):
    outside = tmp_path / "outside.pdf"
    outside.write_bytes(b"keep me")

    with pytest.raises(ValueError):
        storage.delete(outside.as_uri())
    assert outside.read_bytes() == b"keep me"
