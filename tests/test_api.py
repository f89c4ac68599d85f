"""Tests for the HTTP boundary."""

import threading

import pytest
from fastapi.testclient import TestClient

from vidfrompdf.main import create_app

from tests.conftest import MINIMAL_PDF

PDF_HEADERS = {"content-type": "application/pdf"}
MP3_HEADERS = {"content-type": "audio/mpeg"}


@pytest.fixture
def app(service):
    return create_app(service=service)


@pytest.fixture
def client(app):
    return TestClient(app)


def _new_project(client) -> dict:
    response = client.put("/project/new", content=MINIMAL_PDF, headers=PDF_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


class TestNewProject:
    """PUT /project/new."""

    def test_creates_project(self, client):
        data = _new_project(client)

        assert set(data) == {"identifier", "pages", "output"}
        assert len(data["pages"]) == 3
        assert all(p["audio_url"] is None for p in data["pages"])
        assert all(p["img_url"].startswith(f"/project/asset/{data['identifier']}/") for p in data["pages"])
        assert data["output"] is None

    def test_sets_session_cookie(self, client, settings):
        _new_project(client)
        assert settings.session_cookie_name in client.cookies

    def test_rejects_non_pdf(self, client):
        response = client.put("/project/new", content=b"hello", headers={"content-type": "text/plain"})
        assert response.status_code == 415
        assert response.json()["code"] == "UNSUPPORTED_MEDIA_TYPE"

    def test_rejects_oversized(self, client, settings):
        settings.max_upload_size_mb = 0
        response = client.put("/project/new", content=MINIMAL_PDF, headers=PDF_HEADERS)
        assert response.status_code == 413

    def test_replaces_previous_project(self, client, service):
        first = _new_project(client)
        second = _new_project(client)

        assert first["identifier"] != second["identifier"]
        assert client.get(f"/project/edit/{first['identifier']}").status_code == 404
        assert [p.identifier for p in service.list_projects()] == [second["identifier"]]

    def test_extraction_failure(self, client, fake_runner):
        _new_project(client)
        fake_runner.fail_pdftoppm = True
        response = client.put("/project/new", content=MINIMAL_PDF, headers=PDF_HEADERS)
        assert response.status_code == 422
        assert response.json()["code"] == "RASTERIZATION_FAILED"

        # The failed project stays current so extraction can be retried
        fake_runner.fail_pdftoppm = False
        retried = client.post("/project/extract")
        assert retried.status_code == 200
        assert len(retried.json()["pages"]) == 3


class TestGetProject:
    """GET /project/get and GET /project/edit/{id}."""

    def test_no_current_project(self, client):
        response = client.get("/project/get")
        assert response.status_code == 404
        assert response.json()["code"] == "PROJECT_NOT_FOUND"

    def test_current_project(self, client):
        created = _new_project(client)
        response = client.get("/project/get")
        assert response.status_code == 200
        assert response.json() == created

    def test_edit_binds_session(self, client, app):
        created = _new_project(client)

        other = TestClient(app)
        assert other.get("/project/get").status_code == 404
        response = other.get(f"/project/edit/{created['identifier']}")
        assert response.status_code == 200
        assert other.get("/project/get").json()["identifier"] == created["identifier"]

    def test_edit_unknown(self, client):
        assert client.get("/project/edit/does-not-exist").status_code == 404


class TestPageAudio:
    """PUT /project/page/{index}."""

    def test_scenario_b(self, client):
        before = _new_project(client)

        response = client.put("/project/page/1", content=b"ID3 audio", headers=MP3_HEADERS)
        assert response.status_code == 200

        after = client.get("/project/get").json()
        assert after["pages"][1]["audio_url"] is not None
        assert after["pages"][0] == before["pages"][0]
        assert after["pages"][2] == before["pages"][2]

    def test_out_of_range(self, client):
        _new_project(client)
        response = client.put("/project/page/7", content=b"ID3 audio", headers=MP3_HEADERS)
        assert response.status_code == 404
        assert response.json()["code"] == "PAGE_NOT_FOUND"

    def test_without_project(self, client):
        response = client.put("/project/page/0", content=b"ID3 audio", headers=MP3_HEADERS)
        assert response.status_code == 404

    def test_audio_asset_served(self, client):
        _new_project(client)
        data = client.put("/project/page/0", content=b"ID3 audio", headers=MP3_HEADERS).json()
        asset = client.get(data["pages"][0]["audio_url"])
        assert asset.status_code == 200
        assert asset.content == b"ID3 audio"


class TestRender:
    """POST /project/render."""

    def test_render(self, client):
        _new_project(client)
        response = client.post("/project/render")

        assert response.status_code == 201
        output = response.json()["output"]
        assert output is not None

        video = client.get(output)
        assert video.status_code == 200
        assert video.content.startswith(b"fake media")

    def test_render_failure(self, client, fake_runner):
        _new_project(client)
        fake_runner.failing_encoders = {"h264_nvenc", "libx264"}

        response = client.post("/project/render")

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "RENDER_FAILED"
        assert "nvenc" in body["detail"]
        assert client.get("/project/get").json()["output"] is None

    def test_scenario_c_no_pages(self, client, fake_runner):
        _new_project(client)
        fake_runner.pages = 0
        response = client.put("/project/new", content=MINIMAL_PDF, headers=PDF_HEADERS)
        assert response.status_code >= 300

        response = client.post("/project/render")
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"
        assert client.get("/project/get").json()["output"] is None

    def test_already_rendering(self, client, service, fake_runner):
        created = _new_project(client)
        fake_runner.gate = threading.Event()
        worker = threading.Thread(target=service.render, args=(created["identifier"],))
        worker.start()
        try:
            assert fake_runner.entered.wait(timeout=10)
            status = client.get("/project/render").json()
            assert status["status"] == "running"

            response = client.post("/project/render")
            assert response.status_code == 409
            assert response.json()["code"] == "ALREADY_RENDERING"
        finally:
            fake_runner.gate.set()
            worker.join(timeout=10)

        assert client.get("/project/get").json()["output"] is not None
        assert client.get("/project/render").json() is None

    def test_cancel_without_job(self, client):
        _new_project(client)
        response = client.post("/project/render/cancel")
        assert response.status_code == 200
        assert response.json() == {"cancelled": False}


class TestAssets:
    """GET /project/asset/{identifier}/{name}."""

    def test_page_image(self, client):
        data = _new_project(client)
        response = client.get(data["pages"][0]["img_url"])
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"

    def test_missing_asset(self, client):
        data = _new_project(client)
        response = client.get(f"/project/asset/{data['identifier']}/nothing.png")
        assert response.status_code == 404

    def test_hidden_names_rejected(self, client):
        data = _new_project(client)
        response = client.get(f"/project/asset/{data['identifier']}/.extract-tmp")
        assert response.status_code == 404

    def test_unknown_project(self, client):
        assert client.get("/project/asset/nope/page-0000.png").status_code == 404


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
