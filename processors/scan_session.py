"""Multi-frame scan session state machine"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from config import ScanConfig
from processors.card_validator import CardValidator
from utils.data_classes import CandidateField, CardRecord, FieldKind, ScanOutcome, ScanState
from utils.exceptions import SessionError, ValidationError

logger = logging.getLogger(__name__)

OutcomeListener = Callable[[ScanOutcome], None]


class ScanSession:
    """스캔 세션

    Accumulates the best candidate per field across frames until the
    validator accepts a record, the caller cancels, or the timeout elapses.
    Every mutation happens under one lock so merge-then-validate is atomic
    with respect to cancel and timeout. The listener is called exactly once,
    on the transition into a terminal state.
    """

    def __init__(self, config: ScanConfig, validator: Optional[CardValidator] = None,
                 listener: Optional[OutcomeListener] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.validator = validator or CardValidator(config.supported_networks)
        self.listener = listener
        self.clock = clock
        self.started_at = clock()

        self._lock = threading.RLock()
        self._state = ScanState.ACTIVE
        self._fields: Dict[FieldKind, CandidateField] = {}
        self._record: Optional[CardRecord] = None
        self.last_failure: Optional[ValidationError] = None

    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._state

    @property
    def record(self) -> Optional[CardRecord]:
        with self._lock:
            return self._record

    @property
    def best_fields(self) -> Dict[FieldKind, CandidateField]:
        with self._lock:
            return dict(self._fields)

    @property
    def deadline(self) -> float:
        return self.started_at + self.config.session_timeout_seconds

    def elapsed(self, now: Optional[float] = None) -> float:
        return (self.clock() if now is None else now) - self.started_at

    def submit(self, candidates: Iterable[CandidateField]) -> Optional[CardRecord]:
        """후보 병합 후 검증; 완료되면 CardRecord 반환"""
        with self._lock:
            if self._state.is_terminal:
                logger.debug("Discarding candidates for %s session", self._state.value)
                return None
            if self.check_timeout():
                return None

            for candidate in candidates:
                self._merge(candidate)

            if not self._ready():
                return None

            try:
                record = self.validator.validate_fields(self._fields)
            except ValidationError as e:
                self.last_failure = e
                logger.debug("Validation failed (%s), continuing scan", e.kind.value)
                return None

            self._record = record
            self._finish(ScanState.COMPLETED)
            return record

    def cancel(self) -> bool:
        with self._lock:
            try:
                self._transition(ScanState.CANCELLED)
            except SessionError as e:
                logger.debug("%s", e)
                return False
            self._notify()
            return True

    def check_timeout(self, now: Optional[float] = None) -> bool:
        """Time out the session once the configured timeout has elapsed."""
        with self._lock:
            if self._state.is_terminal:
                return False
            if self.elapsed(now) < self.config.session_timeout_seconds:
                return False
            self._finish(ScanState.TIMED_OUT)
            logger.info("Scan timed out after %.1fs", self.config.session_timeout_seconds)
            return True

    def _merge(self, candidate: CandidateField):
        current = self._fields.get(candidate.kind)
        if current is None or candidate.confidence > current.confidence:
            self._fields[candidate.kind] = candidate

    def _ready(self) -> bool:
        if FieldKind.NUMBER not in self._fields:
            return False
        return not self.config.require_expiry or FieldKind.EXPIRY in self._fields

    def _transition(self, new_state: ScanState):
        if self._state.is_terminal:
            raise SessionError(f"Cannot move from {self._state.value} to {new_state.value}")
        self._state = new_state

    def _finish(self, new_state: ScanState):
        self._transition(new_state)
        self._notify()

    def _notify(self):
        if self.listener is None:
            return
        outcome = ScanOutcome(self._state, self._record, self.elapsed())
        try:
            self.listener(outcome)
        except Exception:
            logger.exception("Scan outcome listener failed")
