"""Debounced eating-episode detection from classifier frames.

Turns a noisy stream of per-window sound classifications into at most one open
eating episode at a time, with a refractory period measured from the end of the
previous episode. Closing an episode is always an explicit call; frame data never
closes one.
"""

import logging
import threading
import time
from typing import Callable, Iterable, List, Mapping, Optional

from eatsense.app.services.detection.detection_models import (
    ClassificationFrame,
    DetectionPhase,
    DetectionState,
    EatingStateChange,
)

logger = logging.getLogger(__name__)

StateChangeListener = Callable[[EatingStateChange], None]


def _normalize_keywords(keywords: Iterable[str]) -> List[str]:
    normalized: List[str] = []
    for keyword in keywords:
        keyword = keyword.strip().lower()
        if keyword and keyword not in normalized:
            normalized.append(keyword)
    return normalized


def aggregate_eating_confidence(classifications: Mapping[str, float], keywords: Iterable[str]) -> float:
    """Keyword-weighted eating confidence for one frame.

    For every keyword, takes the highest confidence among labels containing it
    (case-insensitive substring), sums those maxima over all keywords and clamps
    the result to [0, 1]. One label can count towards several keywords, so frames
    matching many keywords score above any single raw confidence.

    Args:
        classifications: Label to confidence mapping.
        keywords: Eating-indicative keywords, already lower-cased.

    Returns:
        Aggregate confidence in [0, 1]; 0.0 for an empty frame.
    """
    lowered = [(label.lower(), confidence) for label, confidence in classifications.items()]
    total = 0.0
    for keyword in keywords:
        total += max((confidence for label, confidence in lowered if keyword in label), default=0.0)
    return min(max(total, 0.0), 1.0)


class EatingDebouncer:
    """Two-state (idle/eating) debouncer with a cooldown after each episode.

    An idle debouncer opens an episode when a frame's aggregate confidence reaches
    the threshold and at least cooldown_seconds have passed since the last episode
    ended. While an episode is open further frames are ignored. end_episode()
    closes it and starts the cooldown; calling it again is a no-op.

    All state is guarded by one RLock so a resolution from a UI thread can never
    interleave with a frame arriving from the classifier thread. Listeners are
    notified after the lock is released.

    Attributes:
        eating_threshold: Minimum aggregate confidence to open an episode.
        cooldown_seconds: Refractory period after an episode ends.
        eating_keywords: Ordered, lower-cased keyword list.
    """

    def __init__(
        self,
        eating_threshold: float = 0.6,
        cooldown_seconds: float = 900.0,
        eating_keywords: Optional[Iterable[str]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Create an idle debouncer.

        Args:
            eating_threshold: Trigger threshold in [0, 1].
            cooldown_seconds: Positive cooldown in seconds.
            eating_keywords: Keywords matched against labels; empty means nothing ever triggers.
            clock: Time source used when callers don't pass a timestamp.

        Raises:
            ValueError: If the threshold or cooldown is out of range.
        """
        self._validate_threshold(eating_threshold)
        self._validate_cooldown(cooldown_seconds)

        self.eating_threshold = eating_threshold
        self.cooldown_seconds = cooldown_seconds
        self.eating_keywords = _normalize_keywords(eating_keywords or [])
        self._clock = clock

        self._lock = threading.RLock()
        self._phase = DetectionPhase.IDLE
        self._confidence = 0.0
        self._predicted_label: Optional[str] = None
        self._last_transition_time: Optional[float] = None
        self._last_episode_end: Optional[float] = None
        self._listeners: List[StateChangeListener] = []

        logger.debug(
            f"EatingDebouncer initialized: threshold={eating_threshold}, cooldown={cooldown_seconds}s, "
            f"keywords={self.eating_keywords}"
        )

    @staticmethod
    def _validate_threshold(value: float) -> None:
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"eating_threshold must be within [0, 1], got {value}")

    @staticmethod
    def _validate_cooldown(value: float) -> None:
        if value <= 0:
            raise ValueError(f"cooldown_seconds must be positive, got {value}")

    def add_listener(self, listener: StateChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateChangeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, change: EatingStateChange) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Error in eating state listener {getattr(listener, '__name__', listener)}: {e}", exc_info=True)

    @property
    def state(self) -> DetectionState:
        with self._lock:
            return DetectionState(
                phase=self._phase,
                confidence=self._confidence,
                predicted_label=self._predicted_label,
                last_transition_time=self._last_transition_time,
                last_episode_end=self._last_episode_end,
            )

    @property
    def is_eating(self) -> bool:
        with self._lock:
            return self._phase is DetectionPhase.EATING

    def eating_confidence(self, classifications: Mapping[str, float]) -> float:
        """Aggregate confidence of a frame under the current keyword set (no state change)."""
        with self._lock:
            keywords = list(self.eating_keywords)
        return aggregate_eating_confidence(classifications, keywords)

    def cooldown_remaining(self, now: Optional[float] = None) -> float:
        """Seconds until a new episode may open; 0.0 when not cooling down."""
        if now is None:
            now = self._clock()
        with self._lock:
            if self._last_episode_end is None:
                return 0.0
            return max(0.0, self.cooldown_seconds - (now - self._last_episode_end))

    def process_frame(self, frame: ClassificationFrame) -> Optional[EatingStateChange]:
        """Evaluate one frame and open an episode if every trigger condition holds.

        Args:
            frame: Classifier output; its timestamp is the evaluation time.

        Returns:
            The opening EatingStateChange, or None when nothing changed.
        """
        now = frame.timestamp

        with self._lock:
            if self._phase is DetectionPhase.EATING:
                return None

            if self._last_episode_end is not None and now - self._last_episode_end < self.cooldown_seconds:
                logger.debug(f"Frame at {now:.2f} inside cooldown ({now - self._last_episode_end:.1f}s since last episode)")
                return None

            confidence = aggregate_eating_confidence(frame.classifications, self.eating_keywords)
            if not frame.classifications or confidence < self.eating_threshold:
                return None

            self._phase = DetectionPhase.EATING
            self._confidence = confidence
            self._predicted_label = frame.top_label()
            self._last_transition_time = now

            change = EatingStateChange(
                is_eating=True,
                confidence=confidence,
                predicted_label=self._predicted_label,
                timestamp=now,
            )

        logger.info(f"Eating detected (confidence={confidence:.3f}, predicted='{change.predicted_label}')")
        self._notify(change)
        return change

    def end_episode(self, now: Optional[float] = None, reason: str = "user") -> Optional[EatingStateChange]:
        """Close the open episode and start the cooldown.

        Args:
            now: Resolution time in seconds (clock time if omitted).
            reason: Free-form cause recorded on the change (user, timeout, ...).

        Returns:
            The closing EatingStateChange, or None if no episode was open.
        """
        if now is None:
            now = self._clock()

        with self._lock:
            if self._phase is not DetectionPhase.EATING:
                logger.debug(f"end_episode({reason}) ignored: no open episode")
                return None

            change = EatingStateChange(
                is_eating=False,
                confidence=self._confidence,
                predicted_label=self._predicted_label,
                timestamp=now,
                reason=reason,
            )
            self._phase = DetectionPhase.IDLE
            self._confidence = 0.0
            self._predicted_label = None
            self._last_transition_time = now
            self._last_episode_end = now

        logger.info(f"Eating episode closed ({reason})")
        self._notify(change)
        return change

    def episode_age(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds the current episode has been open, None when idle."""
        if now is None:
            now = self._clock()
        with self._lock:
            if self._phase is not DetectionPhase.EATING or self._last_transition_time is None:
                return None
            return now - self._last_transition_time

    def reset_cooldown(self) -> None:
        """Forget the last episode end so the next qualifying frame can trigger immediately."""
        with self._lock:
            self._last_episode_end = None
        logger.info("Eating detection cooldown reset")

    def update_settings(
        self,
        eating_threshold: Optional[float] = None,
        cooldown_seconds: Optional[float] = None,
        eating_keywords: Optional[Iterable[str]] = None,
    ) -> None:
        """Change settings; they apply from the next evaluated frame.

        Raises:
            ValueError: If a provided threshold or cooldown is out of range.
        """
        if eating_threshold is not None:
            self._validate_threshold(eating_threshold)
        if cooldown_seconds is not None:
            self._validate_cooldown(cooldown_seconds)

        with self._lock:
            if eating_threshold is not None:
                self.eating_threshold = eating_threshold
            if cooldown_seconds is not None:
                self.cooldown_seconds = cooldown_seconds
            if eating_keywords is not None:
                self.eating_keywords = _normalize_keywords(eating_keywords)

        logger.info(
            f"Detection settings updated: threshold={self.eating_threshold}, cooldown={self.cooldown_seconds}s, "
            f"keywords={self.eating_keywords}"
        )
