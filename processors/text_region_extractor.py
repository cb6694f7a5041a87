"""Text extraction inside the region of interest"""

import logging
import threading
from typing import List, Optional

import numpy as np

from config import ExtractionConfig
from models.base import BaseTextRecognizer
from utils.data_classes import Frame, PIXEL_FORMAT_CHANNELS, RecognizedText, TextObservation
from utils.exceptions import ExtractionError, RecognizerBusy
from utils.region_cropper import RegionCropper

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.3


class TextRegionExtractor:
    """프레임 관심 영역에서 텍스트 관측 추출

    One instance may be shared by several pipelines; recognizer calls are
    serialized across all of them. Recognition is bounded by
    ``timeout_seconds``: a recognizer that overruns is reported as
    ``ExtractionError`` and its thread is left to finish in the background.
    Until it does, callers wait up to ``timeout_seconds`` and then get
    ``RecognizerBusy``.
    """

    def __init__(self, recognizer: BaseTextRecognizer, config: ExtractionConfig,
                 min_confidence: float = DEFAULT_MIN_CONFIDENCE):
        self.recognizer = recognizer
        self.cropper = RegionCropper(config)
        self.timeout_seconds = config.timeout_seconds
        self.min_confidence = min_confidence
        self._recognizer_lock = threading.Lock()

    @property
    def busy(self) -> bool:
        """True while a recognizer call, including an overrun one, is running."""
        return self._recognizer_lock.locked()

    def extract(self, frame: Frame, min_confidence: Optional[float] = None) -> List[TextObservation]:
        self._check_frame(frame)
        threshold = self.min_confidence if min_confidence is None else min_confidence

        crop = self.cropper.crop(frame)
        if crop is None:
            raise ExtractionError("Region of interest lies outside the frame")

        recognized = self._run_bounded(crop.image)

        observations = []
        for item in recognized:
            if item.confidence < threshold:
                continue
            bbox = crop.to_frame_box(item.box)
            cx, cy = bbox.center
            if not frame.region.contains(cx, cy):
                continue
            observations.append(TextObservation(
                text=item.text,
                confidence=item.confidence,
                bbox=bbox,
                timestamp=frame.timestamp,
            ))
        logger.debug("Extracted %d/%d observations", len(observations), len(recognized))
        return observations

    @staticmethod
    def _check_frame(frame: Frame):
        """프레임 버퍼 유효성 검사"""
        pixels = frame.pixels
        if not isinstance(pixels, np.ndarray):
            raise ExtractionError("Frame buffer is not an image array")
        if frame.width <= 0 or frame.height <= 0 or pixels.size == 0:
            raise ExtractionError(f"Frame has zero dimensions ({frame.width}x{frame.height})")
        if pixels.shape[:2] != (frame.height, frame.width):
            raise ExtractionError(
                f"Frame size {frame.width}x{frame.height} does not match buffer {pixels.shape[1]}x{pixels.shape[0]}"
            )
        channels = PIXEL_FORMAT_CHANNELS.get(frame.pixel_format)
        actual = 1 if pixels.ndim == 2 else pixels.shape[2]
        if channels is None or channels != actual or pixels.dtype != np.uint8:
            raise ExtractionError(f"Unsupported pixel format: {frame.pixel_format} ({pixels.dtype}, {actual}ch)")
        if frame.region.is_empty:
            raise ExtractionError("Region of interest is empty")

    def _run_bounded(self, image: np.ndarray) -> List[RecognizedText]:
        # one recognize() at a time, held until the call returns even when abandoned
        wait = self.timeout_seconds if self.timeout_seconds else -1
        if not self._recognizer_lock.acquire(timeout=wait):
            raise RecognizerBusy("Text recognizer is still busy with an earlier frame")

        if not self.timeout_seconds:
            try:
                return self._recognize(image)
            finally:
                self._recognizer_lock.release()

        outcome = {}

        def target():
            try:
                outcome['result'] = self._recognize(image)
            except ExtractionError as e:
                outcome['error'] = e
            finally:
                self._recognizer_lock.release()

        worker = threading.Thread(target=target, name="text-recognizer", daemon=True)
        try:
            worker.start()
        except RuntimeError:
            self._recognizer_lock.release()
            raise
        worker.join(self.timeout_seconds)
        if worker.is_alive():
            raise ExtractionError(f"Text recognition exceeded {self.timeout_seconds}s")
        if 'error' in outcome:
            raise outcome['error']
        return outcome['result']

    def _recognize(self, image: np.ndarray) -> List[RecognizedText]:
        try:
            return self.recognizer.recognize(image)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Recognizer failed: {e}") from e
