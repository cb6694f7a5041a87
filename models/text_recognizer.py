"""EasyOCR-based text recognizer"""

import logging
import re
from typing import List

import cv2
import easyocr
import numpy as np
import torch

from models.base import BaseTextRecognizer
from config import OCRModelConfig
from utils.data_classes import RecognizedText
from utils.exceptions import ExtractionError

logger = logging.getLogger(__name__)


class EasyOCRRecognizer(BaseTextRecognizer):
    def __init__(self, config: OCRModelConfig):
        self.config = config
        self.use_gpu = config.gpu and torch.cuda.is_available()
        logger.info("Text recognizer using %s", "cuda" if self.use_gpu else "cpu")
        self._load_model()

    def _load_model(self):
        """모델 로드"""
        try:
            self.reader = easyocr.Reader(
                self.config.languages,
                gpu=self.use_gpu,
                model_storage_directory=self.config.model_dir,
                verbose=False,
            )
        except Exception as e:
            raise RuntimeError(f"OCR 모델 로드 실패: {e}") from e
        logger.info("✓ OCR 모델 로드 완료 (%s)", ", ".join(self.config.languages))

    def recognize(self, image: np.ndarray) -> List[RecognizedText]:
        """카드 영역 텍스트 인식"""
        processed = self._preprocess_image(image)
        try:
            results = self.reader.readtext(
                processed,
                allowlist=self.config.allowlist,
                paragraph=False,
            )
        except Exception as e:
            raise ExtractionError(f"OCR 인식 오류: {e}") from e

        recognized = []
        for points, text, confidence in results:
            cleaned = self._postprocess_text(text)
            if not cleaned:
                continue
            xs = [float(p[0]) for p in points]
            ys = [float(p[1]) for p in points]
            recognized.append(RecognizedText(
                text=cleaned,
                confidence=float(confidence),
                box=(min(xs), min(ys), max(xs), max(ys)),
            ))
        return recognized

    @staticmethod
    def _preprocess_image(image: np.ndarray) -> np.ndarray:
        """이미지 전처리"""
        if image.ndim == 3 and image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        if image.ndim == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        return image

    @staticmethod
    def _postprocess_text(text: str) -> str:
        """텍스트 후처리"""
        return re.sub(r'\s+', ' ', text).strip()
