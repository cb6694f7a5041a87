"""Shared fixtures and fakes for the scan pipeline tests."""
import threading
from datetime import date
from typing import List, Optional, Sequence

import numpy as np
import pytest

from config import ExtractionConfig, ScanConfig
from models.base import BaseTextRecognizer
from processors.card_validator import CardValidator, luhn_valid
from processors.text_region_extractor import TextRegionExtractor
from utils.data_classes import BoundingBox, RecognizedText, TextObservation

FRAME_WIDTH = 400
FRAME_HEIGHT = 250
TODAY = date(2025, 1, 15)

# Pixel boxes on a 400x250 full-frame card
CARD_TEXT = [
    RecognizedText("4539 1488 0343 6467", 0.92, (40, 100, 360, 130)),
    RecognizedText("09/25", 0.88, (200, 150, 260, 170)),
    RecognizedText("JOHN SMITH", 0.81, (40, 190, 200, 215)),
]


class FakeRecognizer(BaseTextRecognizer):
    """Returns canned results; each call pops the next batch when given several."""

    def __init__(self, batches: Sequence[List[RecognizedText]] = (), error: Optional[Exception] = None,
                 gate: Optional[threading.Event] = None):
        self.batches = list(batches)
        self.error = error
        self.gate = gate
        self.started = threading.Event()
        self.calls = 0
        self.images = []

    def recognize(self, image):
        self.calls += 1
        self.images.append(image)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        if not self.batches:
            return []
        if len(self.batches) == 1:
            return list(self.batches[0])
        return list(self.batches.pop(0))


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_image(width: int = FRAME_WIDTH, height: int = FRAME_HEIGHT, channels: int = 3) -> np.ndarray:
    shape = (height, width) if channels == 1 else (height, width, channels)
    return np.zeros(shape, dtype=np.uint8)


def observation(text: str, x1: float, y1: float, x2: float, y2: float,
                confidence: float = 0.9) -> TextObservation:
    return TextObservation(text, confidence, BoundingBox(x1, y1, x2, y2), timestamp=0.0)


def complete_luhn(payload: str) -> str:
    """Append the check digit that makes ``payload`` pass Luhn."""
    for digit in "0123456789":
        if luhn_valid(payload + digit):
            return payload + digit
    raise AssertionError("unreachable")


@pytest.fixture
def plain_extraction_config() -> ExtractionConfig:
    """No padding, no upscaling, no thread bound: crop pixels equal frame pixels."""
    return ExtractionConfig(roi_padding_ratio=0.0, roi_scale_factor=1.0, timeout_seconds=0)


@pytest.fixture
def scan_config() -> ScanConfig:
    return ScanConfig()


@pytest.fixture
def validator() -> CardValidator:
    return CardValidator(today=lambda: TODAY)


@pytest.fixture
def validator_factory():
    return lambda config: CardValidator(config.supported_networks, today=lambda: TODAY)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def card_extractor(plain_extraction_config) -> TextRegionExtractor:
    return TextRegionExtractor(FakeRecognizer([CARD_TEXT]), plain_extraction_config)
