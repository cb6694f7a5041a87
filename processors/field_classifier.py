"""Text observation to card field classification"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple

from utils.data_classes import (
    FULL_FRAME, CandidateField, ExpiryDate, FieldKind, RegionOfInterest, TextObservation,
)

# Vertical bands relative to the region of interest (0 = top edge)
NUMBER_BAND = (0.25, 0.65)
EXPIRY_BAND = (0.5, 0.85)
NAME_BAND = (2 / 3, 1.0)

NUMBER_PATTERN = re.compile(r'\d{12,19}')
DIGIT_GROUP_PATTERN = re.compile(r'[\d\s-]+')
EXPIRY_PATTERN = re.compile(r'(?<!\d)(0?[1-9]|1[0-2])\s*[/-]\s*(20\d{2}|\d{2})(?!\d)')
NAME_PATTERN = re.compile(r"[A-Za-z][A-Za-z .'-]*")

# Printed card text that is never a holder name
BOILERPLATE_WORDS = {
    'VALID', 'THRU', 'FROM', 'GOOD', 'UNTIL', 'EXPIRES', 'EXPIRY', 'EXP', 'END',
    'MONTH', 'YEAR', 'MEMBER', 'SINCE', 'CARD', 'CARDHOLDER', 'HOLDER',
    'DEBIT', 'CREDIT', 'BANK', 'ELECTRONIC', 'USE', 'ONLY', 'PLATINUM', 'GOLD',
    'CLASSIC', 'BUSINESS', 'WORLD', 'SIGNATURE', 'VISA', 'MASTERCARD',
    'MAESTRO', 'AMEX', 'AMERICAN', 'EXPRESS', 'DISCOVER', 'JCB', 'UNIONPAY',
    'DINERS', 'CLUB', 'INTERNATIONAL', 'PREPAID',
}


def _band_distance(rel_y: float, band: Tuple[float, float]) -> float:
    return abs(rel_y - (band[0] + band[1]) / 2)


def _in_band(rel_y: float, band: Tuple[float, float]) -> bool:
    return band[0] <= rel_y <= band[1]


class FieldClassifier:
    """관측 텍스트를 카드 필드 후보로 분류

    ``classify`` is pure: it returns at most one candidate per field, the best
    ranked one for the frame, and never raises.
    """

    def classify(self, observations: Sequence[TextObservation],
                 region: RegionOfInterest = FULL_FRAME) -> List[CandidateField]:
        candidates = []
        for picker in (self._pick_number, self._pick_expiry, self._pick_name):
            candidate = picker(observations, region)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    # ------------------------------------------------------------------
    # Number
    # ------------------------------------------------------------------
    def _pick_number(self, observations, region) -> Optional[CandidateField]:
        ranked = []
        for obs in self._number_lines(observations):
            digits = re.sub(r'[\s-]', '', obs.text)
            if not NUMBER_PATTERN.fullmatch(digits):
                continue
            rel_y = region.relative_y(obs.bbox.center[1])
            key = (
                _in_band(rel_y, NUMBER_BAND),
                obs.bbox.width,
                obs.confidence,
                -_band_distance(rel_y, NUMBER_BAND),
            )
            ranked.append((key, digits, obs.confidence))
        if not ranked:
            return None
        _, digits, confidence = max(ranked, key=lambda item: item[0])
        return CandidateField(FieldKind.NUMBER, digits, confidence)

    @staticmethod
    def _number_lines(observations: Iterable[TextObservation]) -> List[TextObservation]:
        """Observations plus digit groups joined along a shared text row."""
        lines = list(observations)
        groups = sorted(
            (obs for obs in lines if DIGIT_GROUP_PATTERN.fullmatch(obs.text) and any(c.isdigit() for c in obs.text)),
            key=lambda obs: obs.bbox.x1,
        )
        rows: List[List[TextObservation]] = []
        for obs in groups:
            cy = obs.bbox.center[1]
            for row in rows:
                anchor = row[0].bbox
                if abs(anchor.center[1] - cy) <= anchor.height / 2:
                    row.append(obs)
                    break
            else:
                rows.append([obs])

        for row in rows:
            if len(row) < 2:
                continue
            bbox = row[0].bbox
            for obs in row[1:]:
                bbox = bbox.union(obs.bbox)
            lines.append(TextObservation(
                text=' '.join(obs.text for obs in row),
                confidence=min(obs.confidence for obs in row),
                bbox=bbox,
                timestamp=row[0].timestamp,
            ))
        return lines

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------
    def _pick_expiry(self, observations, region) -> Optional[CandidateField]:
        # "valid from" precedes "valid thru", on one line or two; keep the latest date
        ranked = []
        for obs in observations:
            rel_y = region.relative_y(obs.bbox.center[1])
            for month, year in EXPIRY_PATTERN.findall(obs.text):
                expiry = ExpiryDate(int(month), int(year[-2:]))
                key = (expiry.year, expiry.month, obs.confidence, -_band_distance(rel_y, EXPIRY_BAND))
                ranked.append((key, expiry, obs.confidence))
        if not ranked:
            return None
        _, expiry, confidence = max(ranked, key=lambda item: item[0])
        return CandidateField(FieldKind.EXPIRY, expiry, confidence)

    # ------------------------------------------------------------------
    # Holder name
    # ------------------------------------------------------------------
    def _pick_name(self, observations, region) -> Optional[CandidateField]:
        ranked = []
        for obs in observations:
            text = ' '.join(obs.text.split())
            if not NAME_PATTERN.fullmatch(text):
                continue
            rel_y = region.relative_y(obs.bbox.center[1])
            if not _in_band(rel_y, NAME_BAND):
                continue
            words = [w for w in text.split(' ') if w.strip(".'-")]
            if not words or any(w.upper().strip(".'-") in BOILERPLATE_WORDS for w in words):
                continue
            if len(text.replace(' ', '')) < 2:
                continue
            key = (len(words) >= 2, obs.confidence, -_band_distance(rel_y, NAME_BAND))
            ranked.append((key, ' '.join(words).title(), obs.confidence))
        if not ranked:
            return None
        _, name, confidence = max(ranked, key=lambda item: item[0])
        return CandidateField(FieldKind.HOLDER_NAME, name, confidence)
