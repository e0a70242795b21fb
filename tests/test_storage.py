import re
import pytest
from forkify_ingest.models import ImageSource
from forkify_ingest.storage import ImageStore, UploadError, storage_path


def test_storage_path_is_namespaced_and_sanitized():
    source = ImageSource(filename="Oma's Kuchen.JPG", data=b"x")
    path = storage_path("user-1", source)
    assert re.fullmatch(r"uploads/user-1/\d+_Oma_s_Kuchen\.jpg", path)


def test_storage_path_guesses_missing_extension():
    source = ImageSource(filename="scan", data=b"x", content_type="image/png")
    assert storage_path("u", source).endswith("_scan.png")


def test_upload_returns_signed_and_public_urls(config, supabase):
    store = ImageStore(supabase, config)
    stored = store.upload(ImageSource(filename="soup.jpg", data=b"jpeg"), "user-1")

    assert stored.path.startswith("uploads/user-1/")
    assert supabase.storage.objects[stored.path] == b"jpeg"
    assert stored.public_url == f"https://storage.test/public/recipe-images/{stored.path}"
    assert stored.signed_url.startswith("https://storage.test/sign/recipe-images/")
    assert supabase.storage.signed == [(stored.path, config.signed_url_ttl)]


def test_upload_failure_raises(config, supabase):
    supabase.storage.fail_upload = True
    store = ImageStore(supabase, config)
    with pytest.raises(UploadError, match="soup.jpg"):
        store.upload(ImageSource(filename="soup.jpg", data=b"jpeg"), "user-1")
    assert supabase.storage.objects == {}


def test_signing_error_removes_uploaded_object(config, supabase):
    supabase.storage.sign_result = "raise"
    store = ImageStore(supabase, config)
    with pytest.raises(UploadError, match="Failed to create signed URL"):
        store.upload(ImageSource(filename="soup.jpg", data=b"jpeg"), "user-1")
    assert supabase.storage.objects == {}


def test_missing_signed_url_removes_uploaded_object(config, supabase):
    supabase.storage.sign_result = "empty"
    store = ImageStore(supabase, config)
    with pytest.raises(UploadError, match="No signed URL"):
        store.upload(ImageSource(filename="soup.jpg", data=b"jpeg"), "user-1")
    assert supabase.storage.objects == {}
