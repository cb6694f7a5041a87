"""Data classes for type safety"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

import numpy as np


@dataclass(frozen=True)
class RegionOfInterest:
    """정규화된 (0..1) 관심 영역"""
    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px <= self.right and self.y <= py <= self.bottom

    def relative_y(self, py: float) -> float:
        """Vertical position inside the region, 0 at the top edge."""
        return (py - self.y) / self.height

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "RegionOfInterest":
        if not data:
            return FULL_FRAME
        if not isinstance(data, dict):
            raise ValueError(f"Region must be a mapping, got {type(data).__name__}")
        return cls(
            x=float(data.get('x', 0.0)),
            y=float(data.get('y', 0.0)),
            width=float(data.get('width', 1.0)),
            height=float(data.get('height', 1.0)),
        )


FULL_FRAME = RegionOfInterest()


@dataclass(frozen=True)
class BoundingBox:
    """Normalized frame coordinates."""
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x1 + self.x2) / 2, (self.y1 + self.y2) / 2

    def union(self, other: "BoundingBox") -> "BoundingBox":
        return BoundingBox(
            min(self.x1, other.x1), min(self.y1, other.y1),
            max(self.x2, other.x2), max(self.y2, other.y2),
        )


PIXEL_FORMAT_CHANNELS = {
    'GRAY': 1,
    'BGR': 3,
    'BGRA': 4,
}


@dataclass(frozen=True)
class Frame:
    """카메라 프레임"""
    pixels: np.ndarray
    width: int
    height: int
    region: RegionOfInterest = FULL_FRAME
    pixel_format: str = 'BGR'
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_image(cls, image: np.ndarray, region: RegionOfInterest = FULL_FRAME,
                   timestamp: Optional[float] = None) -> "Frame":
        """Wrap an OpenCV image, guessing the pixel format from its channels."""
        height, width = image.shape[:2]
        channels = 1 if image.ndim == 2 else image.shape[2]
        pixel_format = {1: 'GRAY', 3: 'BGR', 4: 'BGRA'}.get(channels, 'UNKNOWN')
        return cls(
            pixels=image,
            width=width,
            height=height,
            region=region,
            pixel_format=pixel_format,
            timestamp=time.time() if timestamp is None else timestamp,
        )


@dataclass(frozen=True)
class RecognizedText:
    """인식기 원시 결과 (크롭 이미지 픽셀 좌표)"""
    text: str
    confidence: float
    box: Tuple[float, float, float, float]


@dataclass(frozen=True)
class TextObservation:
    """인식된 텍스트"""
    text: str
    confidence: float
    bbox: BoundingBox
    timestamp: float


class FieldKind(Enum):
    NUMBER = "number"
    EXPIRY = "expiry"
    HOLDER_NAME = "holder_name"


@dataclass(frozen=True)
class ExpiryDate:
    month: int
    year: int  # two digits, offset into the current century

    def __str__(self):
        return f"{self.month:02d}/{self.year:02d}"


@dataclass(frozen=True)
class CandidateField:
    """검증 전 후보 필드"""
    kind: FieldKind
    value: Union[str, ExpiryDate]
    confidence: float


@dataclass(frozen=True)
class CardRecord:
    """검증된 카드 정보"""
    number: str
    expiry_month: Optional[int] = None
    expiry_year: Optional[int] = None
    holder_name: Optional[str] = None
    network: str = ""

    def to_payload(self) -> Dict[str, str]:
        """Host payload; unknown fields are empty strings."""
        has_expiry = self.expiry_month is not None and self.expiry_year is not None
        return {
            'cardNumber': self.number,
            'expiryMonth': f"{self.expiry_month:02d}" if has_expiry else "",
            'expiryYear': f"{self.expiry_year:02d}" if has_expiry else "",
            'holderName': self.holder_name or "",
        }


@dataclass
class VideoInfo:
    """비디오 정보"""
    width: int
    height: int
    duration: int
    fps: int


class ScanState(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self is not ScanState.ACTIVE


@dataclass(frozen=True)
class ScanOutcome:
    """세션 종료 알림"""
    state: ScanState
    record: Optional[CardRecord] = None
    elapsed: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'state': self.state.value,
            'card': self.record.to_payload() if self.record else None,
            'elapsed': round(self.elapsed, 3),
        }
