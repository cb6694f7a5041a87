"""Region-of-interest cropping utilities"""

import cv2
import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple

from config import ExtractionConfig
from utils.data_classes import BoundingBox, Frame


@dataclass(frozen=True)
class RegionCrop:
    """크롭 이미지와 원본 좌표 변환 정보"""
    image: np.ndarray
    origin: Tuple[int, int]
    scale: float
    frame_size: Tuple[int, int]

    def to_frame_box(self, box: Tuple[float, float, float, float]) -> BoundingBox:
        """Map a crop pixel box back to normalized frame coordinates."""
        x1, y1, x2, y2 = box
        ox, oy = self.origin
        width, height = self.frame_size
        return BoundingBox(
            x1=(x1 / self.scale + ox) / width,
            y1=(y1 / self.scale + oy) / height,
            x2=(x2 / self.scale + ox) / width,
            y2=(y2 / self.scale + oy) / height,
        )


class RegionCropper:
    """관심 영역 추출"""

    def __init__(self, config: ExtractionConfig):
        self.padding_ratio = config.roi_padding_ratio
        self.scale_factor = config.roi_scale_factor

    def crop(self, frame: Frame) -> Optional[RegionCrop]:
        """프레임의 관심 영역을 패딩 후 확대"""
        region = frame.region
        w, h = frame.width, frame.height
        x1 = int(region.x * w)
        y1 = int(region.y * h)
        x2 = int(round(region.right * w))
        y2 = int(round(region.bottom * h))

        # 패딩
        x_pad = int((x2 - x1) * self.padding_ratio)
        y_pad = int((y2 - y1) * self.padding_ratio)

        x1_pad = max(0, x1 - x_pad)
        y1_pad = max(0, y1 - y_pad)
        x2_pad = min(w, x2 + x_pad)
        y2_pad = min(h, y2 + y_pad)

        region_img = frame.pixels[y1_pad:y2_pad, x1_pad:x2_pad]

        if region_img.size == 0:
            return None

        # 확대
        if self.scale_factor != 1:
            region_img = cv2.resize(
                region_img,
                None,
                fx=self.scale_factor,
                fy=self.scale_factor,
                interpolation=cv2.INTER_CUBIC
            )

        return RegionCrop(
            image=region_img,
            origin=(x1_pad, y1_pad),
            scale=float(self.scale_factor),
            frame_size=(w, h),
        )
