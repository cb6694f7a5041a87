"""Still image scanning"""

import logging
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Union

import cv2
import numpy as np

from processors.scan_pipeline import ScanPipeline
from utils.data_classes import Frame, RegionOfInterest, ScanOutcome

logger = logging.getLogger(__name__)

ImageInput = Union[bytes, str, Path, np.ndarray]


def decode_image(data: ImageInput) -> Optional[np.ndarray]:
    """바이트/경로/배열을 OpenCV 이미지로 변환"""
    if isinstance(data, np.ndarray):
        return data
    if isinstance(data, (str, Path)):
        return cv2.imread(str(data), cv2.IMREAD_COLOR)
    buffer = np.frombuffer(data, dtype=np.uint8)
    if buffer.size == 0:
        return None
    return cv2.imdecode(buffer, cv2.IMREAD_COLOR)


class PictureProcessor:
    """사진 여러 장을 한 세션의 연속 프레임으로 스캔"""

    def __init__(self, pipeline: ScanPipeline):
        self.pipeline = pipeline

    def scan(self, images: Iterable[ImageInput], region: RegionOfInterest,
             overrides: Optional[Mapping[str, Any]] = None) -> ScanOutcome:
        session = self.pipeline.start_session(region, overrides)
        skipped: List[int] = []

        for idx, data in enumerate(images):
            image = decode_image(data)
            if image is None:
                skipped.append(idx)
                continue
            self.pipeline.process_frame(Frame.from_image(image, region), session)
            if session.state.is_terminal:
                break

        if skipped:
            logger.warning("Skipped undecodable images: %s", skipped)

        # Out of pictures without a card: end the session here
        if not session.state.is_terminal:
            self.pipeline.stop_session()

        return ScanOutcome(session.state, session.record, session.elapsed())
