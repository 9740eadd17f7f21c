"""
End-to-end tests for the HTTP surface: /analyze (+ aliases), /health, static
mounts, error bodies, startup failure, and staged-file cleanup.
"""

import asyncio
import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest
from fastapi import status
from fastapi.testclient import TestClient

from backend.main import create_app
from ml_models.architecture import SEVERITY_LABELS
from ml_models.errors import ModelLoadError
from ml_models.predictor import WEIGHTS_FILENAME, InferenceRunner, ModelHandle

from tests.conftest import BrokenModel, FixedScores, SlowModel, encode_image


def post_image(client, data, field="image", path="/analyze",
               filename="scan.png", content_type="image/png"):
    return client.post(path, files={field: (filename, data, content_type)})


def assert_no_residue(upload_dir):
    assert list(upload_dir.iterdir()) == []


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["status"] == "OK"
        assert body["message"] == "Server is running."
        assert body["model_loaded"] is True
        assert body["labels"] == list(SEVERITY_LABELS)

    def test_root_answers_health_without_frontend(self, client):
        response = client.get("/")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "OK"

    def test_root_serves_frontend_build(self, make_client, tmp_path):
        dist = tmp_path / "dist"
        dist.mkdir()
        (dist / "index.html").write_text("<h1>SeverityScan</h1>")

        client = make_client(FixedScores([1, 0, 0, 0]))
        response = client.get("/")

        assert response.status_code == status.HTTP_200_OK
        assert "SeverityScan" in response.text
        assert client.get("/health").json()["status"] == "OK"


class TestAnalyze:
    def test_success_body(self, client, black_png, upload_dir):
        response = post_image(client, black_png)

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "severityLevel": 2,
            "label": "Moderate",
            "confidence": pytest.approx(0.6),
            "message": "Analysis complete!",
        }
        assert_no_residue(upload_dir)

    @pytest.mark.parametrize("path", ["/analyze", "/predict", "/upload"])
    @pytest.mark.parametrize("field", ["image", "file"])
    def test_routes_and_field_names(self, client, black_png, path, field):
        response = post_image(client, black_png, field=field, path=path)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["severityLevel"] == 2

    def test_jpeg_accepted(self, client, sample_jpeg):
        response = post_image(client, sample_jpeg, filename="scan.jpg", content_type="image/jpeg")
        assert response.status_code == status.HTTP_200_OK

    def test_real_model_black_image(self, make_client, weights_dir, black_png, upload_dir):
        client = make_client()

        response = post_image(client, black_png)

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["severityLevel"] in {0, 1, 2, 3}
        assert body["label"] == SEVERITY_LABELS[body["severityLevel"]]
        assert 0.0 <= body["confidence"] <= 1.0
        assert_no_residue(upload_dir)

    def test_idempotent(self, make_client, weights_dir, sample_jpeg):
        client = make_client()

        first = post_image(client, sample_jpeg, content_type="image/jpeg").json()
        second = post_image(client, sample_jpeg, content_type="image/jpeg").json()

        assert first["severityLevel"] == second["severityLevel"]
        assert first["confidence"] == second["confidence"]

    def test_concurrent_requests_leave_no_files(self, make_client, upload_dir):
        client = make_client(FixedScores([0.1, 0.1, 0.1, 0.7]), inference_workers=2)
        images = [encode_image(color=(i * 40, 0, 0)) for i in range(6)]

        with ThreadPoolExecutor(max_workers=6) as pool:
            responses = list(pool.map(lambda data: post_image(client, data), images))

        assert [r.status_code for r in responses] == [200] * 6
        assert {r.json()["label"] for r in responses} == {"Severe"}
        assert_no_residue(upload_dir)


class TestValidationFailures:
    def test_missing_file(self, client, upload_dir):
        response = client.post("/analyze")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "No image file uploaded."
        assert_no_residue(upload_dir)

    def test_wrong_field_name(self, client, black_png, upload_dir):
        response = post_image(client, black_png, field="photo")
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert_no_residue(upload_dir)

    def test_non_image_mime(self, client, upload_dir):
        response = post_image(client, b"hello", filename="notes.txt", content_type="text/plain")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["error"] == "Invalid file type. Only images are allowed."
        assert body["detail"] == "ValidationError"
        assert_no_residue(upload_dir)

    def test_oversized_upload(self, client, upload_dir):
        data = b"\x00" * (5 * 1024 * 1024 + 1)
        response = post_image(client, data)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "too large" in response.json()["error"]
        assert_no_residue(upload_dir)

    def test_configured_limit(self, make_client, upload_dir):
        client = make_client(FixedScores([1, 0, 0, 0]), max_upload_bytes=100)
        response = post_image(client, encode_image(size=(300, 300), color=(1, 2, 3)) + b"\x00" * 200)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert_no_residue(upload_dir)

    def test_undecodable_image(self, client, upload_dir):
        response = post_image(client, b"\xff\xd8\xff\xe0 not really a jpeg",
                              filename="broken.jpg", content_type="image/jpeg")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "DecodeError"
        assert_no_residue(upload_dir)


class TestServerFailures:
    def test_model_failure(self, make_client, black_png, upload_dir):
        client = make_client(BrokenModel())
        response = post_image(client, black_png)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        body = response.json()
        assert body["error"] == "Failed to analyze image."
        assert "CUDA" not in response.text
        assert "Traceback" not in response.text
        assert_no_residue(upload_dir)

    def test_inference_timeout(self, make_client, black_png, upload_dir):
        client = make_client(SlowModel(1.0), inference_timeout=0.1)
        response = post_image(client, black_png)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["detail"] == "InferenceError"
        assert_no_residue(upload_dir)

    def test_model_not_ready(self, client, black_png, upload_dir):
        client.app.state.inference_runner = None
        response = post_image(client, black_png)

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.headers["retry-after"] == "5"
        assert response.json()["detail"] == "ModelNotReadyError"
        assert client.get("/health").json()["model_loaded"] is False
        assert_no_residue(upload_dir)

    def test_client_disconnect_removes_staged_file(self, settings, black_png, upload_dir):
        app = create_app(settings)
        runner = InferenceRunner(ModelHandle(model=SlowModel(1.0)), timeout=10.0)
        app.state.inference_runner = runner

        async def disconnect_mid_inference():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
                request = asyncio.ensure_future(
                    ac.post("/analyze", files={"image": ("scan.png", black_png, "image/png")})
                )
                for _ in range(200):
                    if any(upload_dir.iterdir()):
                        break
                    await asyncio.sleep(0.01)
                assert any(upload_dir.iterdir()), "upload was never staged"

                # Let the request reach the slow model call before dropping it.
                await asyncio.sleep(0.2)
                request.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await request

        try:
            asyncio.run(disconnect_mid_inference())
        finally:
            runner.shutdown()

        assert_no_residue(upload_dir)


class TestStartup:
    def test_missing_artifact_prevents_startup(self, settings):
        app = create_app(settings)
        with pytest.raises(ModelLoadError):
            with TestClient(app):
                pass

    def test_corrupt_artifact_prevents_startup(self, settings, tmp_path):
        models = tmp_path / "models"
        models.mkdir()
        (models / WEIGHTS_FILENAME).write_bytes(b"not a checkpoint")

        app = create_app(settings)
        with pytest.raises(ModelLoadError):
            with TestClient(app):
                pass

    def test_model_artifacts_served(self, make_client, weights_dir):
        client = make_client()
        response = client.get(f"/models/{WEIGHTS_FILENAME}")

        assert response.status_code == status.HTTP_200_OK
        assert response.content == (weights_dir / WEIGHTS_FILENAME).read_bytes()

    def test_log_level_follows_settings(self, settings):
        root = logging.getLogger()
        previous = root.level
        try:
            create_app(dataclasses.replace(settings, log_level="DEBUG"))
            assert root.level == logging.DEBUG

            create_app(dataclasses.replace(settings, log_level="ERROR"))
            assert root.level == logging.ERROR
        finally:
            root.setLevel(previous)


class TestErrorBodies:
    def test_unknown_route(self, client):
        response = client.get("/does-not-exist")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error"] == "Endpoint not found."

    def test_wrong_method(self, client):
        response = client.get("/analyze")

        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        assert "error" in response.json()
