"""Tests for frame validation, cropping and observation filtering."""
import threading
import time

import numpy as np
import pytest

from conftest import CARD_TEXT, FakeRecognizer, make_image
from config import ExtractionConfig
from processors.text_region_extractor import TextRegionExtractor
from utils.data_classes import Frame, RecognizedText, RegionOfInterest
from utils.exceptions import ExtractionError, RecognizerBusy


def test_extracts_normalized_observations(card_extractor) -> None:
    frame = Frame.from_image(make_image(), timestamp=12.5)
    observations = card_extractor.extract(frame)

    assert [obs.text for obs in observations] == ["4539 1488 0343 6467", "09/25", "JOHN SMITH"]
    number = observations[0]
    assert number.bbox.x1 == pytest.approx(0.1)
    assert number.bbox.y1 == pytest.approx(0.4)
    assert number.bbox.x2 == pytest.approx(0.9)
    assert number.bbox.y2 == pytest.approx(0.52)
    assert all(obs.timestamp == 12.5 for obs in observations)


def test_low_confidence_is_filtered(plain_extraction_config) -> None:
    recognizer = FakeRecognizer([[
        RecognizedText("faint", 0.2, (10, 10, 50, 30)),
        RecognizedText("clear", 0.5, (10, 40, 50, 60)),
    ]])
    extractor = TextRegionExtractor(recognizer, plain_extraction_config)
    frame = Frame.from_image(make_image())

    assert [obs.text for obs in extractor.extract(frame)] == ["clear"]
    assert extractor.extract(frame, min_confidence=0.6) == []
    assert len(extractor.extract(frame, min_confidence=0.1)) == 2


def test_crop_mapping_and_region_filter() -> None:
    config = ExtractionConfig(roi_padding_ratio=0.2, roi_scale_factor=2.0, timeout_seconds=0)
    recognizer = FakeRecognizer([[
        # inside the padding only: centre maps outside the region
        RecognizedText("edge", 0.9, (0, 0, 40, 20)),
        RecognizedText("inside", 0.9, (200, 100, 300, 140)),
    ]])
    extractor = TextRegionExtractor(recognizer, config)
    frame = Frame.from_image(make_image(400, 200), RegionOfInterest(0.25, 0.25, 0.5, 0.5))

    observations = extractor.extract(frame)

    assert recognizer.images[0].shape[:2] == (280, 560)
    assert [obs.text for obs in observations] == ["inside"]
    bbox = observations[0].bbox
    assert (bbox.x1, bbox.y1, bbox.x2, bbox.y2) == pytest.approx((0.4, 0.4, 0.525, 0.5))


@pytest.mark.parametrize("frame", [
    Frame(np.zeros((0, 0, 3), dtype=np.uint8), 0, 0),
    Frame(np.zeros((10, 10, 3), dtype=np.float32), 10, 10),
    Frame(np.zeros((10, 10, 3), dtype=np.uint8), 20, 10),
    Frame(np.zeros((10, 10, 3), dtype=np.uint8), 10, 10, pixel_format='GRAY'),
    Frame(np.zeros((10, 10, 2), dtype=np.uint8), 10, 10, pixel_format='UNKNOWN'),
    Frame(b"not pixels", 10, 10),
])
def test_invalid_frames_raise(card_extractor, frame) -> None:
    with pytest.raises(ExtractionError):
        card_extractor.extract(frame)


def test_empty_region_raises(card_extractor) -> None:
    frame = Frame.from_image(make_image(), RegionOfInterest(0.2, 0.2, 0.0, 0.5))
    with pytest.raises(ExtractionError):
        card_extractor.extract(frame)


def test_supported_pixel_formats(plain_extraction_config) -> None:
    extractor = TextRegionExtractor(FakeRecognizer([CARD_TEXT]), plain_extraction_config)
    for channels in (1, 3, 4):
        frame = Frame.from_image(make_image(channels=channels))
        assert len(extractor.extract(frame)) == 3


def test_recognizer_failure_is_extraction_error(plain_extraction_config) -> None:
    extractor = TextRegionExtractor(FakeRecognizer(error=RuntimeError("model crashed")), plain_extraction_config)
    with pytest.raises(ExtractionError, match="model crashed"):
        extractor.extract(Frame.from_image(make_image()))


def test_recognition_overrun_is_bounded() -> None:
    gate = threading.Event()
    config = ExtractionConfig(roi_padding_ratio=0.0, roi_scale_factor=1.0, timeout_seconds=0.05)
    extractor = TextRegionExtractor(FakeRecognizer([CARD_TEXT], gate=gate), config)
    try:
        with pytest.raises(ExtractionError, match="exceeded"):
            extractor.extract(Frame.from_image(make_image()))
    finally:
        gate.set()


def test_bounded_recognition_returns_results() -> None:
    config = ExtractionConfig(roi_padding_ratio=0.0, roi_scale_factor=1.0, timeout_seconds=1.0)
    extractor = TextRegionExtractor(FakeRecognizer([CARD_TEXT]), config)
    assert len(extractor.extract(Frame.from_image(make_image()))) == 3


def test_no_new_recognition_while_overrun_call_runs() -> None:
    gate = threading.Event()
    config = ExtractionConfig(roi_padding_ratio=0.0, roi_scale_factor=1.0, timeout_seconds=0.05)
    recognizer = FakeRecognizer([CARD_TEXT], gate=gate)
    extractor = TextRegionExtractor(recognizer, config)
    frame = Frame.from_image(make_image())
    try:
        with pytest.raises(ExtractionError, match="exceeded"):
            extractor.extract(frame)
        assert extractor.busy

        with pytest.raises(RecognizerBusy):
            extractor.extract(frame)
        assert recognizer.calls == 1
    finally:
        gate.set()

    for _ in range(100):
        if not extractor.busy:
            break
        time.sleep(0.02)
    assert not extractor.busy
    assert len(extractor.extract(frame)) == 3
    assert recognizer.calls == 2
