import base64

from appdrop.models.identity import IconBlob
from appdrop.routers.artifacts import content_disposition


def upload(client, headers, name="app-v1.apk", content=b"apk-bytes-v1", **data):
    data.setdefault("app_name", "Demo")
    data.setdefault("version", "1.0.0")
    files = {"file": (name, content, "application/octet-stream")}
    return client.post("/upload", files=files, data=data, headers=headers)


def test_upload_file_success(client, auth_headers, store):
    resp = upload(client, auth_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["is_update"] is False
    assert body["share_url"] == f"/share/{body['upload_id']}"
    assert body["metadata"]["app_name"] == "Demo"
    assert body["metadata"]["uploaded_by"] == {"email": "dev@example.com", "name": "Dev"}
    assert store.get(body["upload_id"]).file_size == len(b"apk-bytes-v1")


def test_upload_requires_login(client):
    resp = upload(client, headers={})

    assert resp.status_code == 401


def test_upload_rejects_unsupported_extension(client, auth_headers):
    resp = upload(client, auth_headers, name="notes.txt")

    assert resp.status_code == 400
    assert ".apk" in resp.json()["detail"]


def test_upload_rejects_unusable_file_name(client, auth_headers):
    resp = upload(client, auth_headers, name=".apk")

    assert resp.status_code == 400


def test_upload_defaults_name_and_version(client, auth_headers):
    files = {"file": ("tool.dmg", b"dmg", "application/octet-stream")}
    resp = client.post("/upload", files=files, headers=auth_headers)

    metadata = resp.json()["metadata"]
    assert metadata["app_name"] == "Untitled App"
    assert metadata["version"] == "1.0.0"
    assert metadata["file_type"] == "macOS"


def test_upload_update_flow(client, auth_headers, store):
    share_id = upload(client, auth_headers).json()["upload_id"]

    resp = upload(
        client, auth_headers, name="app-v2.apk", content=b"apk-bytes-v2",
        version="2.0.0", existing_share_id=share_id,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["is_update"] is True
    assert body["upload_id"] == share_id
    record = client.get(f"/share/{share_id}").json()
    assert record["version"] == "2.0.0"
    assert [entry["version"] for entry in record["version_history"]] == ["1.0.0"]
    assert not (store.root / share_id / "app-v1.apk").exists()


def test_upload_update_unknown_share(client, auth_headers):
    resp = upload(client, auth_headers, existing_share_id="unknownShare")

    assert resp.status_code == 404


def test_upload_update_invalid_share(client, auth_headers):
    resp = upload(client, auth_headers, existing_share_id="../other")

    assert resp.status_code == 400


def test_upload_with_icon_and_fetch_icon(client, auth_headers):
    icon = IconBlob(mime="image/png", data=b"\x89PNG\r\n\x1a\nicon-bytes")
    share_id = upload(client, auth_headers, app_icon=icon.data_url).json()["upload_id"]

    resp = client.get(f"/share/{share_id}/icon")

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    assert resp.content == icon.data


def test_icon_missing_returns_404(client, auth_headers):
    share_id = upload(client, auth_headers).json()["upload_id"]

    assert client.get(f"/share/{share_id}/icon").status_code == 404


def test_upload_rejects_non_image_icon(client, auth_headers):
    resp = upload(client, auth_headers, app_icon="javascript:alert(1)")

    assert resp.status_code == 400


def test_introspect_apk(client, auth_headers, make_zip, make_png):
    buffer = make_zip({
        "AndroidManifest.xml": 'package="com.example.demo" versionName="1.2.3"'.encode("utf-16-le"),
        "res/mipmap-xxxhdpi-v4/ic_launcher.png": make_png(64),
    })
    files = {"file": ("demo.apk", buffer, "application/vnd.android.package-archive")}

    resp = client.post("/introspect", files=files, headers=auth_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["package_name"] == "com.example.demo"
    assert body["version_name"] == "1.2.3"
    assert body["app_name"] == "Demo"
    assert base64.b64decode(body["icon"].split(",", 1)[1]) == make_png(64)


def test_introspect_never_fails_on_garbage(client, auth_headers):
    files = {"file": ("broken.apk", b"garbage", "application/octet-stream")}

    resp = client.post("/introspect", files=files, headers=auth_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["app_name"] == "broken"
    assert body["error"]


def test_share_not_found(client):
    assert client.get("/share/missingShare").status_code == 404


def test_list_apps_newest_first(client, auth_headers):
    first = upload(client, auth_headers).json()["upload_id"]
    second = upload(client, auth_headers, name="b.ipa").json()["upload_id"]

    resp = client.get("/apps", headers=auth_headers)

    assert resp.status_code == 200
    ids = [app["id"] for app in resp.json()]
    assert set(ids) == {first, second}


def test_download_success_roundtrip(client, auth_headers, store):
    share_id = upload(client, auth_headers, content=b"apk-bytes-v1").json()["upload_id"]

    down = client.get(f"/download/{share_id}", headers={"User-Agent": "curl/8.5.0", "X-Forwarded-For": "10.1.1.1, 10.0.0.1"})

    assert down.status_code == 200
    assert down.headers["content-type"] == "application/vnd.android.package-archive"
    assert down.headers["content-disposition"].startswith('attachment; filename="app-v1.apk"')
    assert down.headers["x-ratelimit-remaining"] == "49"
    assert down.content == b"apk-bytes-v1"

    record = store.get(share_id)
    assert record.download_count == 1
    assert record.downloads[0].ip == "10.1.1.1"
    assert record.downloads[0].user_agent == "curl/8.5.0"


def test_download_non_ascii_file_name(client, auth_headers):
    share_id = upload(client, auth_headers, name="应用.apk").json()["upload_id"]

    down = client.get(f"/download/{share_id}")

    assert down.status_code == 200
    assert down.headers["content-disposition"] == (
        "attachment; filename=\".apk\"; filename*=utf-8''%E5%BA%94%E7%94%A8.apk"
    )
    assert down.content == b"apk-bytes-v1"


def test_content_disposition_escapes_quotes():
    assert content_disposition('say "hi".apk') == (
        "attachment; filename=\"say hi.apk\"; filename*=utf-8''say%20%22hi%22.apk"
    )


def test_download_not_found(client):
    assert client.get("/download/missingShare").status_code == 404


def test_download_missing_payload(client, auth_headers, store):
    share_id = upload(client, auth_headers).json()["upload_id"]
    (store.root / share_id / "app-v1.apk").unlink()

    assert client.get(f"/download/{share_id}").status_code == 404


def test_download_rate_limit_per_address(client, auth_headers):
    share_id = upload(client, auth_headers).json()["upload_id"]
    address_a = {"X-Forwarded-For": "192.0.2.10"}

    for _ in range(50):
        assert client.get(f"/download/{share_id}", headers=address_a).status_code == 200

    limited = client.get(f"/download/{share_id}", headers=address_a)
    assert limited.status_code == 429
    assert int(limited.headers["retry-after"]) > 0
    assert limited.headers["x-ratelimit-remaining"] == "0"

    other = client.get(f"/download/{share_id}", headers={"X-Forwarded-For": "192.0.2.20"})
    assert other.status_code == 200


def test_download_stats(client, auth_headers):
    share_id = upload(client, auth_headers).json()["upload_id"]
    client.get(f"/download/{share_id}", headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0) Firefox/128.0"})

    resp = client.get(f"/downloads/{share_id}", headers=auth_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["download_count"] == 1
    assert body["downloads"][0]["browser"] == "Firefox"
    assert body["downloads"][0]["os"] == "Windows"


def test_delete_share(client, auth_headers, store):
    share_id = upload(client, auth_headers).json()["upload_id"]

    resp = client.delete(f"/share/{share_id}", headers=auth_headers)

    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert not (store.root / share_id).exists()
    assert client.delete(f"/share/{share_id}", headers=auth_headers).status_code == 404


def test_delete_rejects_traversal(client, auth_headers, tmp_path):
    victim = tmp_path / "etc"
    victim.mkdir()

    resp = client.delete("/share/..%5C..%5Cetc", headers=auth_headers)

    assert resp.status_code == 400
    assert victim.is_dir()


def test_delete_requires_login(client, auth_headers):
    share_id = upload(client, auth_headers).json()["upload_id"]

    assert client.delete(f"/share/{share_id}").status_code == 401


def test_login_outside_allowed_domain_is_rejected(client, monkeypatch):
    monkeypatch.setattr("appdrop.auth.ALLOWED_EMAIL_DOMAIN", "example.com")

    assert client.get("/apps", headers={"X-Forwarded-Email": "dev@example.com"}).status_code == 200
    assert client.get("/apps", headers={"X-Forwarded-Email": "intruder@evil.test"}).status_code == 401
