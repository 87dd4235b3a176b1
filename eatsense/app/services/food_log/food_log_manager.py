import asyncio
import logging
import time
from typing import List, Optional

from eatsense.app.event_bus import EventBus
from eatsense.app.events.detection_events import FoodEntryLoggedEvent, LogFoodEntryCommand
from eatsense.app.services.storage.storage_models import FoodEntry, FoodLogData
from eatsense.app.services.storage.storage_service import StorageService

logger = logging.getLogger(__name__)


class FoodLogManager:
    """Owns the chronological log of confirmed food entries.

    Entries accumulate in memory during the session (insertion order is
    chronological) and are written to storage at shutdown. Analytics read a copy
    of the log and never mutate it. Thread-safe using an asyncio lock.
    """

    def __init__(self, storage: StorageService, event_bus: Optional[EventBus] = None) -> None:
        self._storage = storage
        self._event_bus = event_bus
        self._entries: List[FoodEntry] = []
        self._lock = asyncio.Lock()

        logger.info("FoodLogManager initialized")

    def setup_subscriptions(self) -> None:
        if self._event_bus is None:
            return
        self._event_bus.subscribe(event_type=LogFoodEntryCommand, handler=self._handle_log_food_entry)

    async def initialize(self) -> bool:
        """Load the persisted food log.

        Returns:
            True if the log was loaded, False if starting fresh after an error.
        """
        try:
            log_data = await self._storage.read(model_type=FoodLogData)
            async with self._lock:
                self._entries = list(log_data.entries)
            logger.info(f"Loaded {len(self._entries)} food entries")
            return True
        except Exception as e:
            logger.warning(f"Could not load food log (starting fresh): {e}")
            async with self._lock:
                self._entries = []
            return False

    async def save_food_entry(
        self,
        predicted_food: str,
        food_name: str,
        calories: int,
        was_prediction_correct: bool,
        timestamp: Optional[float] = None,
    ) -> FoodEntry:
        """Append a food entry; the confirmed food_name is the entry's actual food.

        Returns:
            The stored entry.
        """
        entry = FoodEntry(
            food_name=food_name,
            predicted_food=predicted_food,
            actual_food=food_name,
            calories=calories,
            was_prediction_correct=was_prediction_correct,
            timestamp=timestamp if timestamp is not None else time.time(),
        )

        async with self._lock:
            self._entries.append(entry)
            total = len(self._entries)

        logger.debug(f"Logged food '{food_name}' (predicted='{predicted_food}', total={total})")

        if self._event_bus is not None:
            await self._event_bus.publish(
                FoodEntryLoggedEvent(food_name=food_name, predicted_food=predicted_food, total_entries=total)
            )
        return entry

    async def _handle_log_food_entry(self, event: LogFoodEntryCommand) -> None:
        await self.save_food_entry(
            predicted_food=event.predicted_food,
            food_name=event.food_name,
            calories=event.calories,
            was_prediction_correct=event.was_prediction_correct,
            timestamp=event.timestamp,
        )

    async def get_entries(self) -> List[FoodEntry]:
        async with self._lock:
            return list(self._entries)

    async def shutdown(self) -> bool:
        """Write the food log to storage.

        Returns:
            True if the write succeeded or there was nothing to write.
        """
        async with self._lock:
            if not self._entries:
                logger.info("No food entries to write at shutdown")
                return True
            log_data = FoodLogData(entries=list(self._entries))

        success = await self._storage.write(data=log_data)

        if success:
            logger.info(f"Successfully wrote {len(log_data.entries)} food entries")
        else:
            logger.error("Failed to write food log")
        return success
