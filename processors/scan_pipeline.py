"""Frame-to-card scan pipeline"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Mapping, Optional

from config import ScanConfig
from processors.card_validator import CardValidator
from processors.field_classifier import FieldClassifier
from processors.scan_session import OutcomeListener, ScanSession
from processors.text_region_extractor import TextRegionExtractor
from utils.data_classes import (
    FULL_FRAME, CardRecord, Frame, RegionOfInterest, ScanOutcome, TextObservation,
)
from utils.exceptions import ExtractionError, RecognizerBusy

logger = logging.getLogger(__name__)


@dataclass
class PipelineStats:
    accepted: int = 0
    dropped: int = 0
    failed: int = 0


class ScanPipeline:
    """프레임 수신부터 카드 인식 완료까지의 파이프라인

    At most one frame is in flight through extraction and classification,
    and none is accepted while an overrun recognizer call is still running;
    frames arriving meanwhile are dropped. Work runs on a single worker
    thread and results reach the session, which discards them once it has
    left the active state.
    """

    def __init__(self, extractor: TextRegionExtractor, config: ScanConfig,
                 listener: Optional[OutcomeListener] = None,
                 classifier: Optional[FieldClassifier] = None,
                 validator_factory: Optional[Callable[[ScanConfig], CardValidator]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.extractor = extractor
        self.classifier = classifier or FieldClassifier()
        self.config = config
        self.listener = listener
        self.validator_factory = validator_factory or (lambda cfg: CardValidator(cfg.supported_networks))
        self.clock = clock

        self.session: Optional[ScanSession] = None
        self.region: RegionOfInterest = FULL_FRAME
        self.stats = PipelineStats()
        self.last_observations: List[TextObservation] = []

        self._in_flight = threading.Lock()
        self._session_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="scan-worker")
        self._timer: Optional[threading.Timer] = None

    @property
    def is_scanning(self) -> bool:
        session = self.session
        return session is not None and not session.state.is_terminal

    def start_session(self, region: RegionOfInterest = FULL_FRAME,
                      overrides: Optional[Mapping[str, Any]] = None) -> ScanSession:
        """새 스캔 세션 시작 (진행 중인 세션은 취소)"""
        config = self.config.with_overrides(overrides)
        with self._session_lock:
            self._stop_locked()
            self.region = region
            self.stats = PipelineStats()
            self.last_observations = []
            self.session = ScanSession(
                config,
                validator=self.validator_factory(config),
                listener=self._on_outcome,
                clock=self.clock,
            )
            self._arm_timer(self.session, config.session_timeout_seconds)
        logger.info("Scan session started (timeout %.1fs)", config.session_timeout_seconds)
        return self.session

    def stop_session(self) -> bool:
        with self._session_lock:
            return self._stop_locked()

    def _stop_locked(self) -> bool:
        self._cancel_timer()
        if self.session is None:
            return False
        return self.session.cancel()

    def on_frame_captured(self, frame: Frame) -> bool:
        """프레임 수신; 처리 중이면 버림"""
        session = self.session
        if session is None or session.state.is_terminal:
            return False
        if self.extractor.busy:
            self.stats.dropped += 1
            logger.debug("Frame dropped, recognizer still busy")
            return False
        if not self._in_flight.acquire(blocking=False):
            self.stats.dropped += 1
            logger.debug("Frame dropped, previous frame still in flight")
            return False
        self.stats.accepted += 1
        try:
            self._executor.submit(self._process_in_flight, frame, session)
        except RuntimeError:
            self._in_flight.release()
            raise
        return True

    def _process_in_flight(self, frame: Frame, session: ScanSession):
        try:
            self.process_frame(frame, session)
        except Exception:
            logger.exception("Unexpected failure while processing frame")
        finally:
            self._in_flight.release()

    def process_frame(self, frame: Frame, session: Optional[ScanSession] = None) -> Optional[CardRecord]:
        """Synchronously extract, classify and submit one frame."""
        session = session or self.session
        if session is None or session.state.is_terminal:
            return None
        if frame.region is FULL_FRAME and self.region is not FULL_FRAME:
            frame = replace(frame, region=self.region)
        try:
            observations = self.extractor.extract(
                frame, min_confidence=session.config.min_observation_confidence
            )
        except RecognizerBusy as e:
            self.stats.dropped += 1
            logger.debug("Frame dropped: %s", e)
            return None
        except ExtractionError as e:
            self.stats.failed += 1
            logger.warning("Frame skipped: %s", e)
            return None
        self.last_observations = observations
        candidates = self.classifier.classify(observations, frame.region)
        return session.submit(candidates)

    def wait_idle(self, timeout: float = -1) -> bool:
        """Block until no frame is in flight."""
        if not self._in_flight.acquire(timeout=timeout):
            return False
        self._in_flight.release()
        return True

    def close(self):
        self.stop_session()
        self._executor.shutdown(wait=False)

    def _arm_timer(self, session: ScanSession, delay: float):
        timer = threading.Timer(max(delay, 0.0), self._on_deadline, args=(session,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _on_deadline(self, session: ScanSession):
        if session.check_timeout() or session.state.is_terminal:
            return
        # fired early; wait out the remainder
        with self._session_lock:
            if self.session is session:
                self._arm_timer(session, session.deadline - self.clock())

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_outcome(self, outcome: ScanOutcome):
        if outcome.state.is_terminal:
            self._cancel_timer()
        logger.info("Scan finished: %s", outcome.state.value)
        if self.listener is not None:
            self.listener(outcome)
