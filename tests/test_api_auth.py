from __future__ import annotations

import base64

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24


def _upload(client, headers):
    return client.post("/upload", headers=headers, files={"file": ("a.png", PNG, "image/png")})


def test_missing_api_key_denied(client, stored_files):
    response = _upload(client, {})
    assert response.status_code == 401
    assert stored_files() == []


def test_wrong_api_key_denied(client, stored_files):
    response = _upload(client, {"X-API-Key": "nope"})
    assert response.status_code == 401
    assert stored_files() == []


def test_wrong_api_key_denied_for_urlencoded(client, stored_files):
    response = client.post(
        "/upload",
        headers={"X-API-Key": "test-key-but-longer"},
        data={"data": base64.b64encode(PNG).decode()},
    )
    assert response.status_code == 401
    assert stored_files() == []


def test_valid_key_succeeds(client, settings):
    response = _upload(client, {"X-API-Key": settings.api_key})
    assert response.status_code == 200
    assert response.json()["success"] is True


def test_header_name_is_case_insensitive(client, settings):
    response = _upload(client, {"x-api-key": settings.api_key})
    assert response.status_code == 200


def test_key_check_endpoint_valid(client, settings):
    response = client.get("/test", headers={"X-API-Key": settings.api_key})
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "API key is valid",
        "max_file_size": settings.max_file_size,
    }


def test_key_check_endpoint_invalid(client):
    response = client.get("/test", headers={"X-API-Key": "nope"})
    assert response.status_code == 200
    assert response.json() == {"success": False, "message": "Invalid API key"}

    missing = client.get("/test")
    assert missing.json() == {"success": False, "message": "Invalid API key"}


def test_download_needs_no_key(client, settings):
    url = _upload(client, {"X-API-Key": settings.api_key}).json()["url"]
    identifier = url.rsplit("/", 1)[1]
    response = client.get(f"/download/{identifier}")
    assert response.status_code == 200
    assert response.content == PNG
