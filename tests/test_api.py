"""
HTTP-level tests for the FastAPI application, using the filesystem
connectors rooted in a temporary directory.
"""

import time

import pytest
from fastapi.testclient import TestClient

from main import create_app

DOCUMENT = {
    "id": "blog",
    "name": "My blog",
    "pages": [{"id": "p1", "name": "Home", "html": "<h1>Hi</h1>"}, {"name": "Contact"}],
    "styles": [{"css": "h1 { color: red; }"}],
    "assets": [{"path": "assets/logo.png"}],
}


@pytest.fixture
def client(make_settings):
    with TestClient(create_app(make_settings())) as test_client:
        yield test_client


def _wait_for_job(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/publication/{job_id}").json()
        if body["status"] in ("completed", "failed") or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


class TestBasics:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_session_cookie_is_issued_once(self, client):
        first = client.get("/api/connector/")
        assert "sitebridge_session" in first.cookies
        second = client.get("/api/connector/")
        assert "sitebridge_session" not in second.cookies

    def test_list_connectors(self, client):
        body = client.get("/api/connector/", params={"type": "storage"}).json()
        assert [c["connector_id"] for c in body] == ["fs-storage"]
        assert body[0]["is_logged_in"] is True

    def test_unknown_connector_is_404(self, client):
        response = client.get("/api/website/", params={"connectorId": "nope"})
        assert response.status_code == 404
        assert response.json()["kind"] == "not_found"
        assert response.json()["error"] is True

    def test_validation_error_shape(self, client):
        response = client.get("/api/website/document")
        assert response.status_code == 400
        assert response.json()["kind"] == "invalid_input"


class TestConnectorLogin:
    def test_login_without_oauth_goes_to_callback(self, client):
        response = client.get(
            "/api/connector/login", params={"connectorId": "fs-storage"}, follow_redirects=False
        )
        assert response.status_code == 302
        assert response.headers["location"].startswith("/api/connector/login/callback")

        page = client.get(response.headers["location"])
        assert page.status_code == 200
        assert "Connected!" in page.text

    def test_callback_reports_provider_error(self, client):
        page = client.get(
            "/api/connector/login/callback",
            params={"connectorId": "fs-storage", "error": "access_denied"},
        )
        assert page.status_code == 200
        assert "Failed" in page.text

    def test_logout(self, client):
        response = client.post("/api/connector/logout", params={"connectorId": "fs-hosting"})
        assert response.json() == {"status": "logged_out", "connectorId": "fs-hosting"}

    def test_current_user(self, client):
        body = client.get("/api/connector/user", params={"connectorId": "fs-storage"}).json()
        assert body["name"]
        assert body["connector"]["connector_id"] == "fs-storage"

    def test_current_user_requires_login(self, make_settings):
        settings = make_settings(
            storage_connectors=["fs-storage", "gitlab-storage"],
            gitlab_client_id="cid",
            gitlab_client_secret="secret",
        )
        with TestClient(create_app(settings)) as client:
            response = client.get("/api/connector/user", params={"connectorId": "gitlab-storage"})

        assert response.status_code == 401
        assert response.json()["kind"] == "not_authenticated"


class TestWebsite:
    def test_document_crud(self, client):
        saved = client.post("/api/website/document", params={"path": "blog"}, json=DOCUMENT)
        assert saved.json() == {"status": "saved", "path": "blog"}

        loaded = client.get("/api/website/document", params={"path": "blog"}).json()
        assert loaded["name"] == "My blog"
        assert loaded["pages"][0]["html"] == "<h1>Hi</h1>"

        names = [f["name"] for f in client.get("/api/website/").json()]
        assert "blog" in names and "default" in names

        assert client.delete("/api/website/", params={"path": "blog"}).json()["status"] == "deleted"
        assert client.get("/api/website/document", params={"path": "blog"}).status_code == 404

    def test_assets(self, client):
        stored = client.put("/api/website/assets/assets/logo.png", params={"path": "blog"}, content=b"\x89PNG")
        assert stored.json() == {"status": "saved", "path": "assets/logo.png"}

        response = client.get("/api/website/assets/assets/logo.png", params={"path": "blog"})
        assert response.content == b"\x89PNG"
        assert response.headers["content-type"] == "image/png"

    def test_missing_document(self, client):
        response = client.get("/api/website/document", params={"path": "missing"})
        assert response.status_code == 404

    def test_meta(self, client):
        client.post("/api/website/document", params={"path": "blog"}, json=DOCUMENT)
        assert client.get("/api/website/meta", params={"path": "blog"}).json()["name"] == "My blog"

        saved = client.post(
            "/api/website/meta",
            params={"path": "blog"},
            json={"name": "Renamed", "image_url": "/thumb.png", "connector_user_settings": {"k": "v"}},
        )
        assert saved.json() == {"status": "saved", "path": "blog"}

        meta = client.get("/api/website/meta", params={"path": "blog"}).json()
        assert meta["website_id"] == "blog"
        assert (meta["name"], meta["image_url"], meta["connector_user_settings"]) == ("Renamed", "/thumb.png", {"k": "v"})

    def test_duplicate(self, client):
        client.post("/api/website/document", params={"path": "blog"}, json=DOCUMENT)

        body = client.post("/api/website/duplicate", params={"path": "blog"}).json()

        assert body["status"] == "duplicated"
        copy = client.get("/api/website/document", params={"path": body["path"]}).json()
        assert copy["pages"][0]["html"] == "<h1>Hi</h1>"
        assert client.get("/api/website/meta", params={"path": body["path"]}).json()["name"] == "My blog copy"

    def test_duplicate_missing_website(self, client):
        response = client.post("/api/website/duplicate", params={"path": "missing"})
        assert response.status_code == 404
        assert response.json()["kind"] == "not_found"


class TestPublication:
    def test_publish_and_poll(self, client, tmp_path):
        client.post("/api/website/document", params={"path": "blog"}, json=DOCUMENT)
        client.put("/api/website/assets/assets/logo.png", params={"path": "blog"}, content=b"png")

        accepted = client.post("/api/publication/", json={"storagePath": "blog", "targetPath": "site"})
        assert accepted.status_code == 202
        job_id = accepted.json()["jobId"]

        job = _wait_for_job(client, job_id)
        assert job["status"] == "completed", job
        assert job["progress"] == 100
        assert job["url"].startswith("file://")

        site = tmp_path / "hosting" / "site"
        assert (site / "index.html").exists()
        assert (site / "contact.html").exists()
        assert (site / "assets" / "logo.png").read_bytes() == b"png"

    def test_failed_job_reports_kind(self, client):
        accepted = client.post("/api/publication/", json={"storagePath": "missing"})
        job = _wait_for_job(client, accepted.json()["jobId"])
        assert job["status"] == "failed"
        assert job["error"]["kind"] == "not_found"

    def test_jobs_are_private_to_their_session(self, client):
        client.post("/api/website/document", params={"path": "blog"}, json=DOCUMENT)
        job_id = client.post("/api/publication/", json={"storagePath": "blog"}).json()["jobId"]

        client.cookies.clear()
        response = client.get(f"/api/publication/{job_id}")
        assert response.status_code == 404

    def test_unknown_hosting_rejected_up_front(self, client):
        response = client.post("/api/publication/", json={"storagePath": "blog", "hostingId": "nope"})
        assert response.status_code == 404

    def test_unknown_job(self, client):
        assert client.get("/api/publication/does-not-exist").status_code == 404
