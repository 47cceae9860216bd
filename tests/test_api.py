import os, sys, json, base64
from io import BytesIO

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Ensure project root on sys.path so `import app...` works
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app.core.config import settings
from app.main import app

BOUNDARY = "boundary-guard-abcdef123456"


def _png_bytes(size=(321, 321), color=(0, 128, 255)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _jpeg_bytes(size=(123, 123), color=(200, 100, 50)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buf = BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()


def _remote_images(request: httpx.Request) -> httpx.Response:
    if request.url.host == "not-existent-server-a3bc8def":
        raise httpx.ConnectError("name resolution failed", request=request)
    if request.url.path == "/321/png":
        return httpx.Response(200, headers={"Content-Type": "image/png"}, content=_png_bytes())
    if request.url.path == "/123.jpg":
        return httpx.Response(200, headers={"Content-Type": "image/jpeg"}, content=_jpeg_bytes())
    return httpx.Response(200, headers={"Content-Type": "text/html"}, content=b"<html></html>")


@pytest.fixture
def api_client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "upload_path", str(tmp_path))
    monkeypatch.setattr(
        "app.ingest.extractors.http_client",
        lambda: httpx.Client(transport=httpx.MockTransport(_remote_images)),
    )
    with TestClient(app) as client:
        yield client


def _multipart_body(parts) -> bytes:
    chunks = []
    for disposition, content_type, data in parts:
        chunks.append(f"--{BOUNDARY}\r\n".encode())
        chunks.append(f"Content-Disposition: form-data; {disposition}\r\n".encode())
        if content_type:
            chunks.append(f"Content-Type: {content_type}\r\n".encode())
        chunks.append(b"\r\n" + data + b"\r\n")
    chunks.append(f"--{BOUNDARY}--".encode())
    return b"".join(chunks)


def test_api_json_batch_success(api_client, tmp_path):
    batch = [
        {"url": "http://not-existent-server-a3bc8def"},
        {"url": "https://placehold.co/321/png"},
        {"url": "https://via.placeholder.com/123.jpg"},
        {"data": "errorneus data sdgfsdfgs5tegdsgd"},
        {"filename": "valid_base64", "data": "VEVTVCBKUEVHIERBVEE="},
        {},
    ]
    r = api_client.post("/images", json=batch)
    assert r.status_code == 200, r.text
    results = r.json()

    assert [x["success"] for x in results] == [False, True, True, False, True, False]
    assert results[1]["filename"] == "png.png"
    assert results[1]["content_type"] == "image/png"
    assert results[2]["filename"] == "123.jpg"
    assert results[4] == {
        "filename": "valid_base64.bin",
        "content_type": "application/octet-stream",
        "size": 14,
        "success": True,
        "reason": "ok",
    }
    assert results[5]["reason"] == "nor url or data are specified"
    for failed in (results[0], results[3], results[5]):
        assert failed["size"] == 0

    # Background thumbnails have run by the time TestClient returns
    assert sorted(os.listdir(tmp_path)) == ["123.jpg", "png.png", "thumbnails", "valid_base64.bin"]
    assert sorted(os.listdir(tmp_path / "thumbnails")) == ["123.jpg", "png.png"]
    with Image.open(tmp_path / "thumbnails" / "png.png") as img:
        assert img.size == (100, 100)


def test_api_json_scenario_url_data_empty_success(api_client, tmp_path):
    data = base64.b64encode(_png_bytes((40, 10))).decode()
    r = api_client.post(
        "/images",
        json=[{"url": "http://not-existent-server-a3bc8def"}, {"data": data, "content_type": "image/png"}, {}],
    )
    assert r.status_code == 200
    results = r.json()
    assert [x["success"] for x in results] == [False, True, False]
    assert results[2]["reason"] == "nor url or data are specified"
    assert results[1]["filename"].startswith("untitled@")
    assert results[1]["filename"].endswith(".png")
    with Image.open(tmp_path / "thumbnails" / results[1]["filename"]) as img:
        assert img.size == (100, 100)


def test_api_multipart_batch_success(api_client, tmp_path):
    body = _multipart_body(
        [
            ("name=\"file\"; filename=\"sample.jpg\"", "image/jpeg", _jpeg_bytes()),
            ("name=\"file-from-name\"", "image/PNG", _png_bytes()),
            ("name=\"not-an-image\"", "text/plain", b"Some text."),
        ]
    )
    r = api_client.post(
        "/images",
        content=body,
        headers={"Content-Type": f"multipart/form-data; boundary={BOUNDARY}"},
    )
    assert r.status_code == 200, r.text
    results = r.json()

    assert [x["success"] for x in results] == [True, True, False]
    assert results[0]["filename"] == "sample.jpg"
    assert results[0]["size"] == len(_jpeg_bytes())
    assert results[1]["filename"] == "file-from-name.png"
    assert results[1]["content_type"] == "image/png"
    assert results[2]["filename"] == "not-an-image"
    assert results[2]["reason"] == "no image data"

    assert (tmp_path / "file-from-name.png").read_bytes() == _png_bytes()
    assert sorted(os.listdir(tmp_path / "thumbnails")) == ["file-from-name.png", "sample.jpg"]


def test_api_multipart_non_image_data_no_thumbnail_success(api_client, tmp_path):
    body = _multipart_body(
        [("name=\"file\"; filename=\"sample.jpg\"", "image/jpeg", b"JPEG IMAGE DATA")]
    )
    r = api_client.post(
        "/images",
        content=body,
        headers={"Content-Type": f"multipart/form-data; boundary={BOUNDARY}"},
    )
    assert r.status_code == 200
    assert r.json()[0]["success"] is True
    assert (tmp_path / "sample.jpg").read_bytes() == b"JPEG IMAGE DATA"
    assert not (tmp_path / "thumbnails" / "sample.jpg").exists()


def test_api_multipart_missing_boundary_failure(api_client):
    r = api_client.post("/images", content=b"whatever", headers={"Content-Type": "multipart/form-data"})
    assert r.status_code == 400


def test_api_malformed_json_failure(api_client, tmp_path):
    body = """
        [
            { "url": "http://not-existent-server-a3bc8def" }
            { "url": "https://placehold.co/321/png" },
    """
    r = api_client.post("/images", content=body, headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["detail"] == "malformed_batch"
    assert os.listdir(tmp_path) == []


def test_api_wrong_json_shape_failure(api_client):
    r = api_client.post("/images", content=json.dumps({"data": "AAAA"}), headers={"Content-Type": "application/json"})
    assert r.status_code == 400


def test_api_unacceptable_content_type_failure(api_client):
    r = api_client.post("/images", content=b"Hello World", headers={"Content-Type": "text/plain"})
    assert r.status_code == 406


def test_api_missing_content_type_failure(api_client):
    r = api_client.post("/images", content=b"Hello World")
    assert r.status_code == 400


def test_api_list_images_success(api_client, tmp_path):
    r = api_client.get("/images")
    assert r.status_code == 200
    assert r.json() == []

    for name in ["b.png", "a.jpg"]:
        (tmp_path / name).write_bytes(b"x")
    r = api_client.get("/images")
    assert r.json() == ["a.jpg", "b.png"]


def test_api_list_images_missing_directory_failure(api_client, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "upload_path", str(tmp_path / "gone"))
    r = api_client.get("/images")
    assert r.status_code == 500


def test_api_bad_items_do_not_fail_batch_success(api_client, tmp_path):
    batch = [
        {"data": "é"},
        {"data": "QUJD", "filename": "a\u0000.png"},
        {"data": "QUJD", "filename": "ok.bin"},
    ]
    r = api_client.post("/images", json=batch)
    assert r.status_code == 200, r.text
    results = r.json()

    assert [x["success"] for x in results] == [False, False, True]
    assert "ASCII" in results[0]["reason"]
    assert results[1]["reason"] == "I/O error"
    assert results[2]["size"] == 3
    assert (tmp_path / "ok.bin").read_bytes() == b"ABC"
