import pytest

from storage.keys import exam_image_prefix, image_key, mime_type_for_key, pdf_key
from storage.object_store import StorageError


def test_key_scheme():
    assert image_key("e1", "img-0.jpeg", "image/jpeg") == "images/e1/img-0.jpg"
    assert image_key("e1", "img-1", None) == "images/e1/img-1.png"
    assert exam_image_prefix("e1") == "images/e1/"
    assert pdf_key().startswith("pdfs/") and pdf_key().endswith(".pdf")
    assert pdf_key() != pdf_key()
    assert mime_type_for_key("images/e1/img-0.jpg") == "image/jpeg"
    assert mime_type_for_key("blob") == "application/octet-stream"


def test_upload_read_delete(store):
    store.upload_bytes("pdfs/a.pdf", b"%PDF-1.4")
    assert store.exists("pdfs/a.pdf")
    assert store.read_bytes("pdfs/a.pdf") == b"%PDF-1.4"

    assert store.delete("pdfs/a.pdf") is True
    assert store.delete("pdfs/a.pdf") is False
    with pytest.raises(StorageError):
        store.read_bytes("pdfs/a.pdf")


def test_delete_prefix(store):
    store.upload_bytes("images/e1/img-0.png", b"0")
    store.upload_bytes("images/e1/img-1.png", b"1")
    store.upload_bytes("images/e2/img-0.png", b"2")

    assert store.delete_prefix("images/e1/") == 2
    assert store.list_keys("images/") == ["images/e2/img-0.png"]
    assert store.delete_prefix("images/missing/") == 0


@pytest.mark.parametrize("key", ["", "/etc/passwd", "images/../../secret", "images\\x.png"])
def test_invalid_keys_are_rejected(store, key):
    with pytest.raises(StorageError):
        store.upload_bytes(key, b"x")


def test_signed_urls(store):
    store.upload_bytes("images/e1/img-0.png", b"0")
    url = store.get_download_url("images/e1/img-0.png")

    assert url.startswith("http://testserver/storage/images/e1/img-0.png?token=")
    token = url.split("token=", 1)[1]
    assert store.verify_download_token("images/e1/img-0.png", token)
    assert not store.verify_download_token("images/e1/img-1.png", token)

    with pytest.raises(StorageError):
        store.get_download_url("images/e1/missing.png")


def test_expired_token_is_rejected(store):
    token = store.create_download_token("pdfs/a.pdf", expires_in=-10)
    assert not store.verify_download_token("pdfs/a.pdf", token)
