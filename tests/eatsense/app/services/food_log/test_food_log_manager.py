import pytest

from eatsense.app.events.detection_events import FoodEntryLoggedEvent, LogFoodEntryCommand
from eatsense.app.services.food_log.food_log_manager import FoodLogManager
from eatsense.app.services.storage.storage_models import FoodEntry, FoodLogData


@pytest.fixture
def food_log_manager(mock_storage, mock_event_bus):
    return FoodLogManager(storage=mock_storage, event_bus=mock_event_bus)


@pytest.mark.asyncio
async def test_initialize_empty_log(food_log_manager, mock_storage):
    success = await food_log_manager.initialize()

    assert success is True
    mock_storage.read.assert_called_once_with(model_type=FoodLogData)
    assert await food_log_manager.get_entries() == []


@pytest.mark.asyncio
async def test_initialize_with_existing_entries(food_log_manager, mock_storage, make_entry):
    mock_storage.read.side_effect = None
    mock_storage.read.return_value = FoodLogData(entries=[make_entry("pizza"), make_entry("soup", "ribs")])

    await food_log_manager.initialize()

    entries = await food_log_manager.get_entries()
    assert [e.actual_food for e in entries] == ["pizza", "ribs"]


@pytest.mark.asyncio
async def test_initialize_handles_storage_error(food_log_manager, mock_storage):
    mock_storage.read.side_effect = Exception("Storage error")

    success = await food_log_manager.initialize()

    assert success is False
    assert await food_log_manager.get_entries() == []


@pytest.mark.asyncio
async def test_save_food_entry(food_log_manager, mock_event_bus):
    entry = await food_log_manager.save_food_entry(
        predicted_food="pizza", food_name="jelly", calories=120, was_prediction_correct=False, timestamp=50.0
    )

    assert isinstance(entry, FoodEntry)
    assert entry.actual_food == "jelly"
    assert entry.predicted_food == "pizza"
    assert entry.timestamp == 50.0

    published = mock_event_bus.publish.call_args.args[0]
    assert isinstance(published, FoodEntryLoggedEvent)
    assert published.food_name == "jelly"
    assert published.total_entries == 1


@pytest.mark.asyncio
async def test_entries_keep_insertion_order(food_log_manager):
    for i, food in enumerate(["soup", "aloe", "ribs"]):
        await food_log_manager.save_food_entry(
            predicted_food=food, food_name=food, calories=10, was_prediction_correct=True, timestamp=float(i)
        )

    entries = await food_log_manager.get_entries()
    assert [e.food_name for e in entries] == ["soup", "aloe", "ribs"]


@pytest.mark.asyncio
async def test_get_entries_returns_copy(food_log_manager):
    await food_log_manager.save_food_entry(predicted_food="soup", food_name="soup", calories=10, was_prediction_correct=True)

    entries = await food_log_manager.get_entries()
    entries.clear()

    assert len(await food_log_manager.get_entries()) == 1


@pytest.mark.asyncio
async def test_log_food_entry_command(food_log_manager, mock_event_bus):
    food_log_manager.setup_subscriptions()
    assert mock_event_bus.subscribe.call_args.kwargs["event_type"] is LogFoodEntryCommand

    await food_log_manager._handle_log_food_entry(
        LogFoodEntryCommand(predicted_food="wings", food_name="ribs", calories=400, was_prediction_correct=False, timestamp=9.0)
    )

    entries = await food_log_manager.get_entries()
    assert entries[0].actual_food == "ribs"
    assert entries[0].calories == 400


@pytest.mark.asyncio
async def test_shutdown_writes_log(food_log_manager, mock_storage):
    await food_log_manager.save_food_entry(predicted_food="soup", food_name="soup", calories=10, was_prediction_correct=True)

    success = await food_log_manager.shutdown()

    assert success is True
    written = mock_storage.write.call_args.kwargs["data"]
    assert isinstance(written, FoodLogData)
    assert len(written.entries) == 1


@pytest.mark.asyncio
async def test_shutdown_with_empty_log_skips_write(food_log_manager, mock_storage):
    success = await food_log_manager.shutdown()

    assert success is True
    mock_storage.write.assert_not_called()


@pytest.mark.asyncio
async def test_shutdown_reports_write_failure(food_log_manager, mock_storage):
    mock_storage.write.return_value = False
    await food_log_manager.save_food_entry(predicted_food="soup", food_name="soup", calories=10, was_prediction_correct=True)

    assert await food_log_manager.shutdown() is False


@pytest.mark.asyncio
async def test_without_event_bus(mock_storage):
    manager = FoodLogManager(storage=mock_storage)
    manager.setup_subscriptions()

    entry = await manager.save_food_entry(predicted_food="soup", food_name="soup", calories=10, was_prediction_correct=True)

    assert entry.food_name == "soup"
