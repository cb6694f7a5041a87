"""Video file / webcam frame source"""

import logging
import time
from typing import Callable, Optional, Union

import cv2
import numpy as np

from processors.scan_pipeline import ScanPipeline
from utils.data_classes import Frame, RegionOfInterest, VideoInfo

logger = logging.getLogger(__name__)

FrameCallback = Callable[[np.ndarray], bool]


class VideoFrameSource:
    """비디오/웹캠 프레임을 파이프라인으로 전달"""

    def __init__(self, source: Union[str, int], pipeline: ScanPipeline,
                 region: RegionOfInterest, on_frame: Optional[FrameCallback] = None):
        self.source = source
        self.pipeline = pipeline
        self.region = region
        self.on_frame = on_frame
        self.frame_count = 0

    def run(self) -> bool:
        """세션이 끝나거나 스트림이 끝날 때까지 프레임 전송

        Returns False when the capture could not be opened.
        """
        cap = cv2.VideoCapture(self.source)

        if not cap.isOpened():
            logger.error("Could not open video source %s", self.source)
            return False

        try:
            video_info = self._get_video_info(cap)
            logger.info("Reading %sx%s @ %sfps from %s",
                        video_info.width, video_info.height, video_info.fps, self.source)
            self._push_frames(cap, video_info)
        finally:
            cap.release()
        return True

    @staticmethod
    def _get_video_info(cap: cv2.VideoCapture) -> VideoInfo:
        """비디오 정보 추출"""
        fps = int(cap.get(cv2.CAP_PROP_FPS)) or 30
        total_frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        duration = int(total_frames / fps) if total_frames > 0 else 0

        return VideoInfo(width, height, duration, fps)

    def _push_frames(self, cap: cv2.VideoCapture, video_info: VideoInfo):
        """프레임 처리 루프"""
        while cap.isOpened() and self.pipeline.is_scanning:
            ret, image = cap.read()
            if not ret:
                break

            self.frame_count += 1
            self.pipeline.on_frame_captured(Frame.from_image(image, self.region))

            if self.on_frame is not None and not self.on_frame(image):
                self.pipeline.stop_session()
                break

            time.sleep(1.0 / video_info.fps)
