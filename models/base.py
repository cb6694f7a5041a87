"""Base model interfaces"""

from abc import ABC, abstractmethod
from typing import List
import numpy as np

from utils.data_classes import RecognizedText


class BaseTextRecognizer(ABC):
    """텍스트 인식 모델 추상 클래스"""

    @abstractmethod
    def recognize(self, image: np.ndarray) -> List[RecognizedText]:
        """이미지의 모든 텍스트 라인을 픽셀 좌표와 신뢰도와 함께 반환"""
        pass
