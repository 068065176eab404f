"""
Scan Loop Module - QR Attendance Verifier

Cooperative camera loop that feeds decoded frames into scan pipelines.

- Frames are sampled at a bounded rate (``max_scans_per_second``).
- Single-flight: while one pipeline is in flight, further frames are ignored.
- After every terminal outcome a cooldown suppresses new attempts, and the
  payload just processed is ignored until ``reset()`` so a QR code that is
  still in view is not processed again. Cancelled scans and recoverable
  failures (location, store) forget the payload so the user can retry.
- ``stop()`` returns the loop to idle and cancels an in-flight location
  request; a store write that was already issued still completes.
"""

import logging
import threading
import time
from typing import Any, Callable, Iterable, List, Optional

from qr_attendance.modules.errors import FailureReason, StoreUnavailable
from qr_attendance.modules.scan_pipeline import ScanOutcome, ScanPipeline, ScanState


class ScanLoop:
    """
    Rate-limited, single-flight driver for ScanPipeline instances.
    """

    def __init__(self, pipeline_factory: Callable[[], ScanPipeline],
                 decode_frame: Callable[[Any], Optional[str]],
                 max_scans_per_second: float = 5,
                 cooldown_seconds: float = 3,
                 monotonic: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            pipeline_factory: Builds a fresh pipeline for each scan attempt
            decode_frame: Returns the QR payload text in a frame, or None
            max_scans_per_second: Upper bound on decode attempts per second
            cooldown_seconds: Quiet period after each terminal outcome
            monotonic: Clock used for rate limiting and cooldowns
            sleep: Used to pace frame sampling
        """
        self.pipeline_factory = pipeline_factory
        self.decode_frame = decode_frame
        self.min_interval = 1.0 / max_scans_per_second if max_scans_per_second > 0 else 0.0
        self.cooldown_seconds = cooldown_seconds
        self.monotonic = monotonic
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

        self._in_flight = threading.Lock()
        self._stopped = threading.Event()
        self._active_pipeline: Optional[ScanPipeline] = None
        self._cooldown_until = 0.0
        self._last_payload: Optional[str] = None
        self.last_outcome: Optional[ScanOutcome] = None

    @classmethod
    def from_config(cls, config_class, pipeline_factory: Callable[[], ScanPipeline],
                    decode_frame: Callable[[Any], Optional[str]], **kwargs) -> 'ScanLoop':
        """Build a loop using SCAN_MAX_PER_SECOND and SCAN_COOLDOWN_SECONDS from a Config class."""
        return cls(
            pipeline_factory,
            decode_frame,
            max_scans_per_second=config_class.SCAN_MAX_PER_SECOND,
            cooldown_seconds=config_class.SCAN_COOLDOWN_SECONDS,
            **kwargs
        )

    @property
    def state(self) -> ScanState:
        pipeline = self._active_pipeline
        return pipeline.state if pipeline is not None else ScanState.IDLE

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def in_cooldown(self) -> bool:
        return self.monotonic() < self._cooldown_until

    def submit_frame(self, frame: Any) -> Optional[ScanOutcome]:
        """
        Offer one camera frame or uploaded image to the loop.

        Returns:
            ScanOutcome for a processed attempt, or None when the frame was
            ignored (busy, cooling down, no QR code, or a repeat of the last payload)
        """
        if self.busy or self.in_cooldown():
            return None

        payload = self.decode_frame(frame)
        if payload is None:
            return None

        return self.submit_payload(payload)

    def submit_payload(self, payload: str) -> Optional[ScanOutcome]:
        """Run a pipeline for already-decoded payload text, subject to the same guards."""
        if self.in_cooldown():
            return None
        if payload == self._last_payload:
            self.logger.debug("Ignoring repeat of the last processed QR payload")
            return None
        if not self._in_flight.acquire(blocking=False):
            return None

        try:
            self._last_payload = payload
            pipeline = self.pipeline_factory()
            self._active_pipeline = pipeline
            if self._stopped.is_set():
                pipeline.cancel()
            outcome = self._run_pipeline(pipeline, payload)
            self.last_outcome = outcome
            if outcome.state.is_terminal:
                self._cooldown_until = self.monotonic() + self.cooldown_seconds
            if self._allows_retry(outcome):
                self._last_payload = None
            return outcome
        finally:
            self._active_pipeline = None
            self._in_flight.release()

    @staticmethod
    def _allows_retry(outcome: ScanOutcome) -> bool:
        """Cancelled scans and recoverable failures may be retried with the same code."""
        if outcome.state is ScanState.IDLE:
            return True
        if outcome.reason is FailureReason.INVALID_QR_FORMAT:
            # the same payload always decodes the same way
            return False
        return outcome.reason is not None and outcome.reason.recoverable

    def _run_pipeline(self, pipeline: ScanPipeline, payload: str) -> ScanOutcome:
        try:
            return pipeline.run(payload)
        except StoreUnavailable as e:
            self.logger.error(f"Scan could not be completed, store unavailable: {e.message}")
            return ScanOutcome(
                state=ScanState.FAILED,
                reason=FailureReason.STORE_UNAVAILABLE,
                message=FailureReason.STORE_UNAVAILABLE.default_message,
                detail=e.message
            )

    def run(self, frames: Iterable[Any]) -> List[ScanOutcome]:
        """
        Poll frames at the bounded rate until the source is exhausted or stop() is called.

        Returns:
            List[ScanOutcome]: Outcomes of every attempt that was processed
        """
        self._stopped.clear()
        outcomes = []
        last_attempt = None

        for frame in frames:
            if self._stopped.is_set():
                break

            if last_attempt is not None:
                elapsed = self.monotonic() - last_attempt
                if elapsed < self.min_interval:
                    self.sleep(self.min_interval - elapsed)
            last_attempt = self.monotonic()

            outcome = self.submit_frame(frame)
            if outcome is not None:
                outcomes.append(outcome)

        return outcomes

    def stop(self) -> None:
        """Stop sampling frames and cancel an in-flight location request."""
        self._stopped.set()
        pipeline = self._active_pipeline
        if pipeline is not None:
            pipeline.cancel()
        self.logger.info("Scan loop stopped")

    def reset(self) -> None:
        """Clear the cooldown and the remembered payload ("scan another code")."""
        self._cooldown_until = 0.0
        self._last_payload = None
