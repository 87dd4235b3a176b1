import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError

from eatsense.app.config.app_config import GlobalAppConfig
from eatsense.app.event_bus import EventBus
from eatsense.app.events.detection_events import (
    ClassificationFrameEvent,
    EatingStateChangedEvent,
    EndEatingEpisodeCommand,
    ResetCooldownCommand,
    UpdateDetectionSettingsCommand,
)
from eatsense.app.services.detection.detection_models import ClassificationFrame, EatingStateChange
from eatsense.app.services.detection.eating_debouncer import EatingDebouncer

logger = logging.getLogger(__name__)


class EatingDetectionService:
    """Connects the eating debouncer to the event bus.

    Classification frames are consumed in publish order by the bus worker, so the
    debouncer sees them serially. Opening and closing transitions are republished
    as EatingStateChangedEvent. When detection.episode_timeout_seconds is set, an
    episode left unanswered for that long is closed (reason "timeout") as soon as
    the next frame arrives; the debouncer itself never expires an episode.

    Attributes:
        debouncer: The EatingDebouncer owning the detection state.
        episode_timeout_seconds: Optional auto-close policy for unanswered episodes.
    """

    def __init__(
        self,
        event_bus: EventBus,
        config: GlobalAppConfig,
        debouncer: Optional[EatingDebouncer] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.event_bus = event_bus
        self.config = config
        self._clock = clock

        detection = config.detection
        self.debouncer = debouncer or EatingDebouncer(
            eating_threshold=detection.effective_eating_threshold(),
            cooldown_seconds=detection.effective_cooldown_seconds(),
            eating_keywords=detection.eating_keywords,
            clock=clock,
        )
        self.episode_timeout_seconds: Optional[float] = detection.episode_timeout_seconds
        self.frames_processed = 0
        self.frames_rejected = 0

        logger.debug("EatingDetectionService created")

    def setup_subscriptions(self) -> None:
        self.event_bus.subscribe(event_type=ClassificationFrameEvent, handler=self._handle_classification_frame)
        self.event_bus.subscribe(event_type=EndEatingEpisodeCommand, handler=self._handle_end_episode)
        self.event_bus.subscribe(event_type=ResetCooldownCommand, handler=self._handle_reset_cooldown)
        self.event_bus.subscribe(event_type=UpdateDetectionSettingsCommand, handler=self._handle_settings_update)
        logger.debug("EatingDetectionService event subscriptions complete")

    async def _publish_change(self, change: EatingStateChange) -> None:
        await self.event_bus.publish(
            EatingStateChangedEvent(
                is_eating=change.is_eating,
                confidence=change.confidence,
                predicted_label=change.predicted_label,
                timestamp=change.timestamp,
                reason=change.reason,
            )
        )

    async def _handle_classification_frame(self, event: ClassificationFrameEvent) -> None:
        timestamp = event.timestamp if event.timestamp is not None else self._clock()

        try:
            frame = ClassificationFrame(timestamp=timestamp, classifications=event.classifications)
        except ValidationError as e:
            self.frames_rejected += 1
            logger.warning(f"Dropping invalid classification frame at {timestamp}: {e}")
            return

        await self._expire_stale_episode(now=timestamp)

        self.frames_processed += 1
        change = self.debouncer.process_frame(frame)
        if change is not None:
            await self._publish_change(change)

    async def _expire_stale_episode(self, now: float) -> None:
        if self.episode_timeout_seconds is None:
            return

        age = self.debouncer.episode_age(now=now)
        if age is not None and age >= self.episode_timeout_seconds:
            logger.info(f"Closing eating episode after {age:.1f}s without a response")
            change = self.debouncer.end_episode(now=now, reason="timeout")
            if change is not None:
                await self._publish_change(change)

    async def _handle_end_episode(self, event: EndEatingEpisodeCommand) -> None:
        now = event.timestamp if event.timestamp is not None else self._clock()
        change = self.debouncer.end_episode(now=now, reason=event.reason)
        if change is not None:
            await self._publish_change(change)

    def _handle_reset_cooldown(self, event: ResetCooldownCommand) -> None:
        self.debouncer.reset_cooldown()

    def _handle_settings_update(self, event: UpdateDetectionSettingsCommand) -> None:
        try:
            self.debouncer.update_settings(
                eating_threshold=event.eating_threshold,
                cooldown_seconds=event.cooldown_seconds,
                eating_keywords=event.eating_keywords,
            )
        except ValueError as e:
            logger.error(f"Rejected detection settings update: {e}")
