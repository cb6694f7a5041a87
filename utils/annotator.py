"""Frame annotation utilities"""

import logging
import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont
from typing import Sequence, Tuple

from config import FontConfig, PreviewConfig
from utils.data_classes import RegionOfInterest, TextObservation

logger = logging.getLogger(__name__)


def hex_to_bgr(value: str) -> Tuple[int, int, int]:
    """'#007aff' -> (255, 122, 0)"""
    value = value.lstrip('#')
    if len(value) == 3:
        value = ''.join(c * 2 for c in value)
    if len(value) != 6:
        raise ValueError(f"Invalid hex colour: #{value}")
    r, g, b = (int(value[i:i + 2], 16) for i in (0, 2, 4))
    return b, g, r


class FrameAnnotator:
    """프리뷰 프레임 주석 처리"""

    def __init__(self, preview_config: PreviewConfig, font_config: FontConfig):
        self.font = self._load_font(font_config)
        self.mask_color = hex_to_bgr(preview_config.mask_color)
        self.mask_alpha = preview_config.mask_alpha
        self.frame_color = hex_to_bgr(preview_config.frame_color)
        self.jpeg_quality = preview_config.jpeg_quality

    @staticmethod
    def _load_font(font_config: FontConfig) -> ImageFont.ImageFont:
        """라벨 폰트 로드"""
        for path in font_config.paths:
            try:
                return ImageFont.truetype(path, font_config.size)
            except OSError:
                continue

        logger.warning("⚠ 폰트 로드 실패, 기본 폰트 사용")
        return ImageFont.load_default()

    def annotate(self, frame: np.ndarray, region: RegionOfInterest,
                 observations: Sequence[TextObservation] = ()) -> np.ndarray:
        """관심 영역 밖을 어둡게 하고 인식 결과 표시"""
        if frame.ndim == 2:
            frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        elif frame.shape[2] == 4:
            frame = cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
        h, w = frame.shape[:2]
        x1, y1 = int(region.x * w), int(region.y * h)
        x2, y2 = int(round(region.right * w)), int(round(region.bottom * h))

        # 마스크
        overlay = frame.copy()
        overlay[:] = self.mask_color
        masked = cv2.addWeighted(overlay, self.mask_alpha, frame, 1 - self.mask_alpha, 0)
        masked[y1:y2, x1:x2] = frame[y1:y2, x1:x2]
        cv2.rectangle(masked, (x1, y1), (max(x1, x2 - 1), max(y1, y2 - 1)), self.frame_color, 2)

        if not observations:
            return masked

        for obs in observations:
            box = obs.bbox
            p1 = (int(box.x1 * w), int(box.y1 * h))
            p2 = (int(box.x2 * w), int(box.y2 * h))
            cv2.rectangle(masked, p1, p2, self.frame_color, 1)

        return self._put_labels(masked, observations)

    def _put_labels(self, img: np.ndarray, observations: Sequence[TextObservation]) -> np.ndarray:
        """텍스트 라벨 추가"""
        h, w = img.shape[:2]
        img_pil = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
        draw = ImageDraw.Draw(img_pil)
        b, g, r = self.frame_color
        for obs in observations:
            label = f"{obs.text} ({obs.confidence:.2f})"
            x = int(obs.bbox.x1 * w)
            y = max(0, int(obs.bbox.y1 * h) - self._text_height(draw, label) - 2)
            draw.text((x, y), label, font=self.font, fill=(r, g, b))
        return cv2.cvtColor(np.array(img_pil), cv2.COLOR_RGB2BGR)

    def _text_height(self, draw: ImageDraw.ImageDraw, label: str) -> int:
        bbox = draw.textbbox((0, 0), label, font=self.font)
        return bbox[3] - bbox[1]

    def encode_jpeg(self, frame: np.ndarray) -> bytes:
        ok, buffer = cv2.imencode('.jpg', frame, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not ok:
            raise ValueError("JPEG encoding failed")
        return buffer.tobytes()
