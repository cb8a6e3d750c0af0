import uuid
from pathlib import Path

import pytest

from conftest import files_under
from media_vault.config import DEFAULT_MAX_FILE_SIZE, Settings
from media_vault.errors import ConfigurationError
from media_vault.main import create_app
from media_vault.routes.albums import content_disposition, sanitize_filename


def upload(client, *files):
    return client.post(
        "/api/upload",
        files=[("files", (name, data, mime)) for name, data, mime in files],
    )


# ------------------------------
# End-to-end scenarios
# ------------------------------
def test_upload_jpeg_then_list_and_stream(client):
    res = upload(client, ("beach.jpg", b"0123456789", "image/jpeg"))
    assert res.status_code == 201
    permalink = res.json()["permalink"]

    res = client.get(f"/api/album/{permalink}")
    assert res.status_code == 200
    files = res.json()["files"]
    assert len(files) == 1
    assert files[0]["original_name"] == "beach.jpg"
    assert files[0]["content_type"] == "image/jpeg"
    assert files[0]["size"] > 0

    res = client.get(f"/api/object/{files[0]['stored_name']}")
    assert res.status_code == 200
    assert res.content == b"0123456789"
    assert res.headers["content-type"].startswith("image/jpeg")
    assert 'filename="beach.jpg"' in res.headers["content-disposition"]


def test_quicktime_upload_becomes_mp4(client):
    res = upload(client, ("clip.mov", b"mov bytes", "video/quicktime"))
    assert res.status_code == 201
    stored = res.json()["files"][0]
    assert stored["content_type"] == "video/mp4"
    assert stored["stored_name"].endswith(".mp4")

    res = client.get(f"/api/object/{stored['stored_name']}")
    assert res.content == b"MP4:mov bytes"


def test_unknown_object_is_404(client):
    res = client.get(f"/api/object/{uuid.uuid4()}")
    assert res.status_code == 404
    assert res.json() == {"error": "Not found"}


def test_traversal_object_is_404(client):
    assert client.get("/api/object/..%2F..%2Fetc%2Fpasswd").status_code == 404
    assert client.get("/api/object/../../etc/passwd").status_code == 404


def test_empty_upload(client, app_settings):
    res = client.post("/api/upload")
    assert res.status_code == 400
    assert res.json() == {"error": "No files uploaded"}
    assert files_under(Path(app_settings.FILE_STORAGE_PATH)) == []


def test_multiple_files_keep_order(client):
    res = upload(
        client,
        ("one.png", b"1", "image/png"),
        ("two.mp4", b"22", "video/mp4"),
        ("three.gif", b"333", "image/gif"),
    )
    permalink = res.json()["permalink"]
    listed = client.get(f"/api/album/{permalink}").json()["files"]
    assert [f["original_name"] for f in listed] == ["one.png", "two.mp4", "three.gif"]


def test_unsupported_media(client, app_settings):
    res = upload(client, ("a.jpg", b"a", "image/jpeg"), ("notes.txt", b"b", "text/plain"))
    assert res.status_code == 400
    assert "text/plain" in res.json()["error"]
    assert files_under(Path(app_settings.FILE_STORAGE_PATH)) == []
    assert files_under(Path(app_settings.UPLOAD_TMP_DIR)) == []


def test_upload_too_large(client, app_settings):
    res = upload(
        client,
        ("small.jpg", b"ok", "image/jpeg"),
        ("big.jpg", b"x" * (app_settings.MAX_FILE_SIZE_BYTES + 1), "image/jpeg"),
    )
    assert res.status_code == 413
    assert files_under(Path(app_settings.FILE_STORAGE_PATH)) == []
    assert files_under(Path(app_settings.UPLOAD_TMP_DIR)) == []


def test_media_type_checked_before_size(client, app_settings):
    res = upload(
        client,
        ("a.jpg", b"ok", "image/jpeg"),
        ("dump.txt", b"x" * (app_settings.MAX_FILE_SIZE_BYTES + 1), "text/plain"),
    )
    assert res.status_code == 400
    assert "text/plain" in res.json()["error"]
    assert files_under(Path(app_settings.FILE_STORAGE_PATH)) == []
    assert files_under(Path(app_settings.UPLOAD_TMP_DIR)) == []


def test_malformed_and_unknown_album(client):
    assert client.get("/api/album/not-a-uuid").status_code == 400
    assert client.get("/api/album/not-a-uuid").json() == {"error": "Invalid album identifier"}
    assert client.get(f"/api/album/{uuid.uuid4()}").status_code == 404


def test_tampered_object_returns_error(client, app_settings):
    res = upload(client, ("a.jpg", b"authentic content", "image/jpeg"))
    stored_name = res.json()["files"][0]["stored_name"]
    path = Path(app_settings.FILE_STORAGE_PATH) / stored_name
    tampered = bytearray(path.read_bytes())
    tampered[3] ^= 0x10
    path.write_bytes(bytes(tampered))

    res = client.get(f"/api/object/{stored_name}")
    assert res.status_code == 500
    assert res.json() == {"error": "Internal server error"}
    assert b"authentic" not in res.content


def test_objects_are_served_with_security_headers(client):
    svg = b"<svg xmlns='http://www.w3.org/2000/svg'><script>alert(1)</script></svg>"
    res = upload(client, ("x.svg", svg, "image/svg+xml"))
    assert res.status_code == 201
    stored_name = res.json()["files"][0]["stored_name"]

    res = client.get(f"/api/object/{stored_name}")
    assert res.status_code == 200
    assert res.content == svg
    assert res.headers["x-content-type-options"] == "nosniff"
    assert res.headers["content-security-policy"] == "default-src 'none'; sandbox"
    assert res.headers["cross-origin-resource-policy"] == "cross-origin"


def test_error_responses_carry_security_headers(client):
    res = client.get("/api/object/missing.jpg")
    assert res.status_code == 404
    assert res.headers["x-content-type-options"] == "nosniff"


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok", "database": "connected"}


# ------------------------------
# Startup and config
# ------------------------------
@pytest.mark.parametrize("bad_key", ["", "not a key", "ab" * 16])
async def test_startup_fails_without_valid_key(app_settings, bad_key):
    cfg = app_settings.model_copy(update={"ENCRYPTION_KEY": bad_key})
    app = create_app(cfg)
    with pytest.raises(ConfigurationError):
        async with app.router.lifespan_context(app):
            pass


@pytest.mark.parametrize("value", [0, -5, "junk"])
def test_max_file_size_falls_back_to_default(value):
    assert Settings(_env_file=None, MAX_FILE_SIZE_BYTES=value).MAX_FILE_SIZE_BYTES == DEFAULT_MAX_FILE_SIZE


def test_cors_origins_parsing():
    cfg = Settings(_env_file=None, CORS_ORIGINS=" http://a.test, ,http://b.test ")
    assert cfg.cors_origins == ["http://a.test", "http://b.test"]


# ------------------------------
# Headers
# ------------------------------
def test_sanitize_filename():
    assert sanitize_filename('a"b\\c\r\nd.jpg') == "a_b_c__d.jpg"


def test_content_disposition_non_ascii():
    header = content_disposition("fête.jpg")
    header.encode("latin-1")
    assert 'filename="f_te.jpg"' in header
    assert "filename*=UTF-8''f%C3%AAte.jpg" in header
