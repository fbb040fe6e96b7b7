"""
Tests for the HTTP API with a stubbed landmark provider.
"""

import base64
import json

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from retoucher import main
from retoucher.landmarks import LandmarkProvider

from conftest import make_face_landmarks


class StubProvider(LandmarkProvider):
    def __init__(self, landmarks=None):
        super().__init__()
        self.landmarks = landmarks

    def detect(self, image):
        return self.landmarks


def _png(image):
    ok, buffer = cv2.imencode(".png", cv2.cvtColor(image, cv2.COLOR_RGBA2BGRA))
    assert ok
    return buffer.tobytes()


def _decode_data_url(url):
    assert url.startswith("data:image/png;base64,")
    raw = base64.b64decode(url.split(",", 1)[1])
    image = cv2.imdecode(np.frombuffer(raw, np.uint8), cv2.IMREAD_UNCHANGED)
    return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main.pipeline, "provider", StubProvider(make_face_landmarks()))
    return TestClient(main.app)


@pytest.fixture
def png_image(textured_image):
    return _png(textured_image)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestAnalyze:
    """Face analysis endpoint."""

    def test_returns_landmarks_and_bbox(self, client, png_image):
        response = client.post(
            "/api/retouch/analyze", files={"image": ("face.png", png_image, "image/png")}
        )

        assert response.status_code == 200
        meta = response.json()["faceMeta"]
        assert len(meta["landmarks"]) == 468
        x, y, w, h = meta["bbox"]
        assert 50 <= x <= 60 and 35 <= y <= 45
        assert 85 <= w <= 95 and 115 <= h <= 125

    def test_no_face_is_422(self, client, png_image, monkeypatch):
        monkeypatch.setattr(main.pipeline, "provider", StubProvider(None))

        response = client.post(
            "/api/retouch/analyze", files={"image": ("face.png", png_image, "image/png")}
        )

        assert response.status_code == 422

    def test_garbage_image_is_400(self, client):
        response = client.post(
            "/api/retouch/analyze", files={"image": ("x.png", b"not an image", "image/png")}
        )
        assert response.status_code == 400

    def test_empty_image_is_400(self, client):
        response = client.post("/api/retouch/analyze", files={"image": ("x.png", b"", "image/png")})
        assert response.status_code == 400


class TestRender:
    """Display-resolution render endpoint."""

    def test_defaults_round_trip(self, client, png_image, textured_image):
        response = client.post(
            "/api/retouch/render",
            files={"image": ("face.png", png_image, "image/png")},
            data={"config": "{}"},
        )

        assert response.status_code == 200
        body = response.json()
        assert (body["width"], body["height"]) == (200, 200)
        np.testing.assert_array_equal(_decode_data_url(body["image"]), textured_image)

    def test_face_adjustment_uses_detected_landmarks(self, client, png_image, textured_image):
        config = json.dumps({"faceAdjustments": {"smallFace": 50}})
        response = client.post(
            "/api/retouch/render",
            files={"image": ("face.png", png_image, "image/png")},
            data={"config": config},
        )

        assert response.status_code == 200
        out = _decode_data_url(response.json()["image"])
        assert not np.array_equal(out, textured_image)

    def test_liquify_buffers(self, client, png_image, textured_image):
        dx = np.zeros((200, 200), dtype="<f4")
        dx[90:110, 90:110] = 3.0
        response = client.post(
            "/api/retouch/render",
            files={
                "image": ("face.png", png_image, "image/png"),
                "liquifyDx": ("dx.bin", dx.tobytes(), "application/octet-stream"),
            },
            data={"config": "{}"},
        )

        assert response.status_code == 200
        out = _decode_data_url(response.json()["image"])
        np.testing.assert_array_equal(out[100, 100], textured_image[100, 103])
        np.testing.assert_array_equal(out[10, 10], textured_image[10, 10])

    def test_wrong_buffer_size_is_400(self, client, png_image):
        response = client.post(
            "/api/retouch/render",
            files={
                "image": ("face.png", png_image, "image/png"),
                "skinMask": ("mask.bin", b"\x00" * 100, "application/octet-stream"),
            },
            data={"config": "{}"},
        )

        assert response.status_code == 400

    @pytest.mark.parametrize(
        "config",
        ["{not json", json.dumps({"activeFilter": "sepia"}), json.dumps({"faceAdjustments": {"smallFace": "big"}})],
    )
    def test_bad_config_is_400(self, client, png_image, config):
        response = client.post(
            "/api/retouch/render",
            files={"image": ("face.png", png_image, "image/png")},
            data={"config": config},
        )

        assert response.status_code == 400


class TestExport:
    """Full-resolution export endpoint."""

    def test_export_scales_display_edits(self, client, png_image):
        display_landmarks = make_face_landmarks(cx=50, cy=50, scale=30)
        request = {
            "config": {
                "faceAdjustments": {"smallFace": 40},
                "landmarks": [
                    {"x": float(p[0]), "y": float(p[1]), "z": 0.0} for p in display_landmarks
                ],
            },
            "displayWidth": 100,
            "displayHeight": 100,
        }
        mask = np.zeros((100, 100), dtype="<f4")
        mask[40:60, 40:60] = 1.0

        response = client.post(
            "/api/retouch/export",
            files={
                "image": ("face.png", png_image, "image/png"),
                "privacyMask": ("mask.bin", mask.tobytes(), "application/octet-stream"),
            },
            data={"request": json.dumps(request)},
        )

        assert response.status_code == 200
        body = response.json()
        assert (body["width"], body["height"]) == (200, 200)

    def test_export_resize(self, client, png_image):
        request = {"displayWidth": 100, "displayHeight": 100, "resizeWidth": 64, "resizeHeight": 64}

        response = client.post(
            "/api/retouch/export",
            files={"image": ("face.png", png_image, "image/png")},
            data={"request": json.dumps(request)},
        )

        assert response.status_code == 200
        assert (response.json()["width"], response.json()["height"]) == (64, 64)

    def test_buffer_must_match_display_size(self, client, png_image):
        request = {"displayWidth": 100, "displayHeight": 100}
        dx = np.zeros((200, 200), dtype="<f4")

        response = client.post(
            "/api/retouch/export",
            files={
                "image": ("face.png", png_image, "image/png"),
                "liquifyDx": ("dx.bin", dx.tobytes(), "application/octet-stream"),
            },
            data={"request": json.dumps(request)},
        )

        assert response.status_code == 400

    def test_missing_display_size_is_400(self, client, png_image):
        response = client.post(
            "/api/retouch/export",
            files={"image": ("face.png", png_image, "image/png")},
            data={"request": json.dumps({"displayWidth": 100})},
        )

        assert response.status_code == 400

    def test_export_watermark_and_jpeg(self, client, png_image):
        request = {
            "displayWidth": 200,
            "displayHeight": 200,
            "exportSettings": {
                "format": "jpeg",
                "quality": 0.9,
                "watermarkEnabled": True,
                "watermarkText": "demo",
            },
        }

        response = client.post(
            "/api/retouch/export",
            files={"image": ("face.png", png_image, "image/png")},
            data={"request": json.dumps(request)},
        )

        assert response.status_code == 200
        assert response.json()["image"].startswith("data:image/jpeg;base64,")

    def test_batch_export_sizes(self, client, png_image):
        request = {"displayWidth": 100, "displayHeight": 100}

        response = client.post(
            "/api/retouch/export/batch",
            files={"image": ("face.png", png_image, "image/png")},
            data={"request": json.dumps(request)},
        )

        assert response.status_code == 200
        images = response.json()["images"]
        sizes = {name: (body["width"], body["height"]) for name, body in images.items()}
        assert sizes == {"twitter": (1200, 675), "fanclub": (1080, 1350), "instagram": (1080, 1080)}
        assert _decode_data_url(images["fanclub"]["image"]).shape == (1350, 1080, 4)


@pytest.fixture
def session_id(client, png_image):
    response = client.post("/api/sessions", files={"image": ("face.png", png_image, "image/png")})
    assert response.status_code == 200
    return response.json()["sessionId"]


class TestSessions:
    """Server-side editing sessions with a persistent compositor."""

    def test_create_reports_sizes_and_face(self, client, png_image):
        response = client.post("/api/sessions", files={"image": ("face.png", png_image, "image/png")})

        assert response.status_code == 200
        body = response.json()
        assert (body["width"], body["height"]) == (200, 200)
        assert (body["displayWidth"], body["displayHeight"]) == (200, 200)
        assert len(body["faceMeta"]["landmarks"]) == 468

    def test_fresh_session_renders_the_original(self, client, session_id, textured_image):
        response = client.get(f"/api/sessions/{session_id}/render")

        assert response.status_code == 200
        np.testing.assert_array_equal(_decode_data_url(response.json()["image"]), textured_image)

    def test_config_uses_detected_landmarks(self, client, session_id, textured_image):
        response = client.put(
            f"/api/sessions/{session_id}/config", json={"faceAdjustments": {"smallFace": 50}}
        )

        assert response.status_code == 200
        assert not np.array_equal(_decode_data_url(response.json()["image"]), textured_image)

    def test_liquify_drag_keeps_cached_base(self, client, session_id):
        client.put(f"/api/sessions/{session_id}/config", json={"faceAdjustments": {"eyeSize": 30}})
        session = main.sessions.get(session_id)
        base = session.compositor._base

        response = client.post(
            f"/api/sessions/{session_id}/liquify",
            json={"points": [{"x": 100, "y": 100, "dx": 4}, {"x": 104, "y": 100, "dx": 4}]},
        )

        assert response.status_code == 200
        assert session.compositor._base is base
        assert session.field is not None and session.field.dx[100, 100] > 0
        rendered = client.get(f"/api/sessions/{session_id}/render").json()["image"]
        assert rendered == response.json()["image"]

    def test_paint_then_reset(self, client, session_id, textured_image):
        painted = client.post(
            f"/api/sessions/{session_id}/paint",
            json={"target": "privacy", "points": [{"x": 100, "y": 100}]},
        )
        assert not np.array_equal(_decode_data_url(painted.json()["image"]), textured_image)

        reset = client.post(f"/api/sessions/{session_id}/reset", json={"target": "privacy"})

        assert reset.status_code == 200
        np.testing.assert_array_equal(_decode_data_url(reset.json()["image"]), textured_image)

    def test_export_with_presets(self, client, session_id):
        single = client.post(
            f"/api/sessions/{session_id}/export",
            json={"resizeWidth": 64, "resizeHeight": 64},
        )
        batch = client.post(f"/api/sessions/{session_id}/export/batch", json={})

        assert (single.json()["width"], single.json()["height"]) == (64, 64)
        assert set(batch.json()["images"]) == {"twitter", "fanclub", "instagram"}

    def test_redetect(self, client, session_id, monkeypatch):
        monkeypatch.setattr(main.pipeline, "provider", StubProvider(None))

        response = client.post(f"/api/sessions/{session_id}/detect")

        assert response.status_code == 200
        assert response.json()["faceMeta"] is None
        assert main.sessions.get(session_id).landmarks is None

    def test_bad_config_is_rejected(self, client, session_id):
        response = client.put(f"/api/sessions/{session_id}/config", json={"activeFilter": "sepia"})
        assert response.status_code == 422

    def test_unknown_and_closed_sessions_are_404(self, client, session_id):
        assert client.get("/api/sessions/nope/render").status_code == 404

        assert client.delete(f"/api/sessions/{session_id}").status_code == 200
        assert client.get(f"/api/sessions/{session_id}/render").status_code == 404
        assert client.delete(f"/api/sessions/{session_id}").status_code == 404
