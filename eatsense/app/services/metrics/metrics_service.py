import logging
import threading
from typing import Optional

from eatsense.app.config.app_config import GlobalAppConfig
from eatsense.app.event_bus import EventBus
from eatsense.app.events.detection_events import (
    DetectionResponseEvent,
    EatingStateChangedEvent,
    ManualFoodLogCommand,
    NotificationSentEvent,
    UpdateMetricsSettingsCommand,
)
from eatsense.app.services.metrics.outcome_recorder import OutcomeRecorder
from eatsense.app.services.storage.storage_models import DetectionMetricsData
from eatsense.app.services.storage.storage_service import StorageService

logger = logging.getLogger(__name__)


class MetricsService:
    """Feeds detection outcomes from the event bus into an OutcomeRecorder.

    Every opened episode counts as a sent notification. User responses and manual
    logs become outcomes; a manual log that arrives while an episode is open is the
    user answering that episode, so it is not counted as a false negative.
    Counters and partition logs are restored from storage on initialize() and
    written back on shutdown() when storage is provided.
    """

    def __init__(
        self,
        event_bus: EventBus,
        config: GlobalAppConfig,
        storage: Optional[StorageService] = None,
        recorder: Optional[OutcomeRecorder] = None,
    ) -> None:
        self.event_bus = event_bus
        self.config = config
        self._storage = storage
        self.recorder = recorder or OutcomeRecorder(modality=config.metrics.modality, model=config.metrics.model)

        self._state_lock = threading.Lock()
        self._episode_open = False

    def setup_subscriptions(self) -> None:
        self.event_bus.subscribe(event_type=EatingStateChangedEvent, handler=self._handle_eating_state_changed)
        self.event_bus.subscribe(event_type=DetectionResponseEvent, handler=self._handle_detection_response)
        self.event_bus.subscribe(event_type=ManualFoodLogCommand, handler=self._handle_manual_food_log)
        self.event_bus.subscribe(event_type=UpdateMetricsSettingsCommand, handler=self._handle_settings_update)
        logger.debug("MetricsService event subscriptions complete")

    @property
    def episode_open(self) -> bool:
        with self._state_lock:
            return self._episode_open

    async def initialize(self) -> bool:
        if self._storage is None:
            return True
        try:
            data = await self._storage.read(model_type=DetectionMetricsData)
            self.recorder.restore(data)
            return True
        except Exception as e:
            logger.warning(f"Could not load detection metrics (starting fresh): {e}")
            return False

    async def _handle_eating_state_changed(self, event: EatingStateChangedEvent) -> None:
        with self._state_lock:
            self._episode_open = event.is_eating

        if not event.is_eating:
            return

        total = self.recorder.record_notification_sent()
        logger.info(f"Eating notification #{total} (predicted='{event.predicted_label}')")
        await self.event_bus.publish(NotificationSentEvent(predicted_label=event.predicted_label, total_sent=total))

    def _handle_detection_response(self, event: DetectionResponseEvent) -> None:
        self.recorder.record_response(
            user_logged_food=event.user_logged_food,
            predicted_correct=event.predicted_food_correct,
            selected_food=event.selected_food,
        )

    def _handle_manual_food_log(self, event: ManualFoodLogCommand) -> None:
        if self.episode_open:
            logger.debug("Manual food log during an open episode; not a false negative")
            return
        self.recorder.record_manual_log()

    def _handle_settings_update(self, event: UpdateMetricsSettingsCommand) -> None:
        self.recorder.update_settings(modality=event.modality, model=event.model)

    async def shutdown(self) -> bool:
        if self._storage is None:
            return True
        success = await self._storage.write(data=self.recorder.snapshot())
        if not success:
            logger.error("Failed to write detection metrics")
        return success
