"""Tests for the Socket.IO host bridge and the image upload endpoint."""
import base64
import io
import json
import time
from unittest.mock import patch

import cv2
import pytest

from app import CardScanApp
from conftest import CARD_TEXT, FakeRecognizer, make_image
from config import Config
from utils.data_classes import RecognizedText, ScanState

APP_YAML = """
server:
  host: 127.0.0.1
  port: 5000
  debug: false
  secret_key: test
  max_buffer_size: 10000000
extraction:
  roi_padding_ratio: 0.0
  roi_scale_factor: 1.0
  timeout_seconds: 0
"""

# Same card as CARD_TEXT, with an expiry far enough out to stay valid
LIVE_CARD = [
    CARD_TEXT[0],
    RecognizedText("09/39", 0.88, (200, 150, 260, 170)),
    CARD_TEXT[2],
]


def png_bytes() -> bytes:
    ok, buffer = cv2.imencode(".png", make_image())
    assert ok
    return buffer.tobytes()


def encoded_frame() -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes()).decode("ascii")


def names(events):
    return [event["name"] for event in events]


def payloads(events, name):
    return [event["args"][0] for event in events if event["name"] == name]


def wait_for(client, name, timeout=2.0):
    """Collect received events until one called ``name`` arrives."""
    events = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        events.extend(client.get_received())
        if name in names(events):
            return events
        time.sleep(0.02)
    raise AssertionError(f"{name} not received, got {names(events)}")


def make_app(tmp_path, batches):
    path = tmp_path / "config.yaml"
    path.write_text(APP_YAML, encoding="utf-8")
    with patch("app.EasyOCRRecognizer", return_value=FakeRecognizer(batches)):
        return CardScanApp(Config(str(path)))


@pytest.fixture
def scan_app(tmp_path):
    scan_app = make_app(tmp_path, [LIVE_CARD])
    yield scan_app
    for pipeline in list(scan_app.pipelines.values()):
        pipeline.close()


@pytest.fixture
def client(scan_app):
    client = scan_app.socketio.test_client(scan_app.app)
    assert "connected" in names(client.get_received())
    yield client
    if client.is_connected():
        client.disconnect()


def only_pipeline(scan_app):
    assert len(scan_app.pipelines) == 1
    return next(iter(scan_app.pipelines.values()))


def test_frame_completes_scan_once(scan_app, client) -> None:
    client.emit("start_scan", {"region": {"x": 0, "y": 0, "width": 1, "height": 1}})
    started = payloads(client.get_received(), "scan_started")
    assert started == [{"region": {"x": 0.0, "y": 0.0, "width": 1.0, "height": 1.0}}]

    client.emit("frame", {"image": encoded_frame(), "preview": True})
    assert only_pipeline(scan_app).wait_idle(2)
    client.emit("frame", {"image": encoded_frame()})

    events = client.get_received()
    assert payloads(events, "card_scanned") == [{
        "cardNumber": "4539148803436467",
        "expiryMonth": "09",
        "expiryYear": "39",
        "holderName": "John Smith",
    }]
    preview = payloads(events, "preview")[0]
    assert base64.b64decode(preview["frame"])[:2] == b"\xff\xd8"
    assert preview["stats"]["accepted"] == 1
    assert scan_app.recognizer.calls == 1


def test_cancel_scan_emits_cancelled(scan_app, client) -> None:
    client.emit("start_scan")
    client.get_received()
    client.emit("cancel_scan")

    cancelled = payloads(client.get_received(), "scan_cancelled")
    assert len(cancelled) == 1
    assert "elapsed" in cancelled[0]
    assert only_pipeline(scan_app).session.state is ScanState.CANCELLED


def test_session_timeout_emits_scan_timeout(client) -> None:
    client.emit("start_scan", {"options": {"sessionTimeoutSeconds": 0.05}})
    events = wait_for(client, "scan_timeout")
    assert names(events).count("scan_timeout") == 1
    assert "card_scanned" not in names(events)


def test_reset_scan_reuses_options(scan_app, client) -> None:
    client.emit("reset_scan")
    assert payloads(client.get_received(), "error")

    client.emit("start_scan", {"options": {"requireExpiry": True, "sessionTimeoutSeconds": 60}})
    client.get_received()
    first = only_pipeline(scan_app).session

    client.emit("reset_scan")
    events = client.get_received()

    assert names(events) == ["scan_cancelled", "scan_started"]
    session = only_pipeline(scan_app).session
    assert session is not first
    assert first.state is ScanState.CANCELLED
    assert session.state is ScanState.ACTIVE
    assert session.config.require_expiry is True
    assert session.config.session_timeout_seconds == 60.0


@pytest.mark.parametrize("event, data", [
    ("frame", "not an object"),
    ("start_scan", ["region"]),
    ("start_scan", {"region": [0, 0, 1, 1]}),
    ("start_scan", {"options": ["requireExpiry"]}),
    ("start_scan", {"options": {"supportedNetworks": [{"name": "house"}]}}),
    ("start_scan", {"options": {"sessionTimeoutSeconds": "soon"}}),
])
def test_malformed_requests_report_error(client, event, data) -> None:
    client.emit(event, data)
    assert payloads(client.get_received(), "error")


def test_malformed_frames_report_error(client) -> None:
    client.emit("start_scan")
    client.get_received()

    client.emit("frame", {"image": 5})
    client.emit("frame", {})
    client.emit("frame", {"image": "data:image/png;base64,"})
    assert len(payloads(client.get_received(), "error")) == 3


def test_disconnect_closes_pipeline(scan_app, client) -> None:
    client.emit("start_scan")
    pipeline = only_pipeline(scan_app)
    client.disconnect()
    assert scan_app.pipelines == {}
    assert pipeline.session.state is ScanState.CANCELLED


def test_scan_images_endpoint(scan_app) -> None:
    response = scan_app.app.test_client().post(
        "/scan_images",
        data={
            "images": [(io.BytesIO(png_bytes()), "card.png")],
            "region": json.dumps({"x": 0, "y": 0, "width": 1, "height": 1}),
            "options": json.dumps({"requireExpiry": True}),
        },
        content_type="multipart/form-data",
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["state"] == "completed"
    assert body["card"]["cardNumber"] == "4539148803436467"
    assert body["card"]["expiryYear"] == "39"


def test_scan_images_without_card(tmp_path) -> None:
    scan_app = make_app(tmp_path, [])
    response = scan_app.app.test_client().post(
        "/scan_images",
        data={"images": [(io.BytesIO(png_bytes()), "blank.png")]},
        content_type="multipart/form-data",
    )
    body = response.get_json()
    assert response.status_code == 200
    assert body["success"] is False
    assert body["state"] == "cancelled"
    assert body["card"] is None


@pytest.mark.parametrize("form", [
    {},
    {"region": '"top"'},
    {"region": "{broken"},
    {"options": "[1]"},
    {"options": json.dumps({"supportedNetworks": [{"name": "house"}]})},
    {"options": json.dumps({"flash": True})},
])
def test_scan_images_rejects_bad_form(scan_app, form) -> None:
    data = dict(form)
    if form:
        data["images"] = [(io.BytesIO(png_bytes()), "card.png")]
    response = scan_app.app.test_client().post(
        "/scan_images", data=data, content_type="multipart/form-data",
    )
    assert response.status_code == 400
    assert "error" in response.get_json()
