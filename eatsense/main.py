import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from eatsense.app.config.app_config import GlobalAppConfig, load_app_config
from eatsense.app.config.logging_config import setup_logging
from eatsense.app.event_bus import EventBus
from eatsense.app.events.detection_events import EatingStateChangedEvent
from eatsense.app.services.analytics.prediction_analytics import PredictionAnalytics
from eatsense.app.services.detection.eating_detection_service import EatingDetectionService
from eatsense.app.services.food_log.food_log_manager import FoodLogManager
from eatsense.app.services.metrics.metrics_exporter import export_confusion_matrix_csv, export_metrics_csv, write_report
from eatsense.app.services.metrics.metrics_service import MetricsService
from eatsense.app.services.storage.storage_service import StorageService
from eatsense.app.utils.session_replay import ReplayFormatError, load_session, replay_session

logger = logging.getLogger(__name__)


class ServiceInitializer:
    """Creates, wires and tears down the services for one session.

    Order matters: storage first, then the services reading from it, then event
    subscriptions, then the bus worker.
    """

    def __init__(self, event_bus: EventBus, config: GlobalAppConfig, persist: bool = True) -> None:
        self.event_bus = event_bus
        self.config = config
        self.persist = persist
        self.services: Dict[str, Any] = {}

    async def initialize_all(self) -> Dict[str, Any]:
        storage = StorageService(config=self.config) if self.persist else None
        self.services["storage"] = storage

        detection = EatingDetectionService(event_bus=self.event_bus, config=self.config)
        metrics = MetricsService(event_bus=self.event_bus, config=self.config, storage=storage)
        food_log = FoodLogManager(storage=storage, event_bus=self.event_bus)

        if storage is not None:
            await metrics.initialize()
            await food_log.initialize()

        for service in (detection, metrics, food_log):
            service.setup_subscriptions()

        self.services.update({"detection": detection, "metrics": metrics, "food_log": food_log})
        await self.event_bus.start_worker()
        logger.info("All services initialized")
        return self.services

    async def shutdown_all(self) -> None:
        await self.event_bus.stop_worker()
        if self.services.get("storage") is None:
            return
        await self.services["metrics"].shutdown()
        await self.services["food_log"].shutdown()
        await self.services["storage"].shutdown()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eatsense", description="Replay a classification session through eating detection and report metrics."
    )
    parser.add_argument("session", help="JSON-lines session file of frames and user actions")
    parser.add_argument("--config", default=None, help="Path to settings.yaml (defaults to ./config/settings.yaml)")
    parser.add_argument("--test-mode", action="store_true", help="Use the short test-mode cooldown and low threshold")
    parser.add_argument("--constrained", action="store_true", help="Restrict the confusion matrix to the curated labels")
    parser.add_argument("--export-dir", default=None, help="Directory for the CSV reports (defaults to the data dir)")
    parser.add_argument("--no-persist", action="store_true", help="Do not load or save the food log and metrics")
    return parser


def apply_overrides(config: GlobalAppConfig, args: argparse.Namespace) -> GlobalAppConfig:
    if args.test_mode:
        config.detection.test_mode = True
    if args.constrained:
        config.analytics.use_constrained_labels = True
    return config


async def run(args: argparse.Namespace) -> int:
    app_config = apply_overrides(load_app_config(config_path=args.config), args)
    setup_logging(config=app_config.logging)

    try:
        events = load_session(args.session)
    except (OSError, ReplayFormatError) as e:
        logger.error(f"Could not load session {args.session}: {e}")
        return 2

    event_bus = EventBus(
        high_priority_sleep=app_config.event_bus.high_priority_sleep,
        low_priority_sleep=app_config.event_bus.low_priority_sleep,
        max_queue_size=app_config.event_bus.max_queue_size,
    )
    initializer = ServiceInitializer(event_bus=event_bus, config=app_config, persist=not args.no_persist)
    services = await initializer.initialize_all()

    def _log_transition(event: EatingStateChangedEvent) -> None:
        state = "EATING" if event.is_eating else f"IDLE ({event.reason})"
        logger.info(f"[t={event.timestamp:.1f}] {state} confidence={event.confidence:.2f} label={event.predicted_label}")

    event_bus.subscribe(EatingStateChangedEvent, _log_transition)

    try:
        await replay_session(event_bus, events)

        entries = await services["food_log"].get_entries()
        analytics = PredictionAnalytics(
            entries,
            constrained=app_config.analytics.use_constrained_labels,
            constrained_labels=app_config.analytics.constrained_labels,
        )
        metrics_csv = export_metrics_csv(services["metrics"].recorder)
        analytics_csv = export_confusion_matrix_csv(analytics)

        export_dir = args.export_dir or app_config.storage.exports_dir
        write_report(os.path.join(export_dir, app_config.metrics.export_filename), metrics_csv)
        write_report(os.path.join(export_dir, app_config.metrics.analytics_export_filename), analytics_csv)

        sys.stdout.write(metrics_csv)
        sys.stdout.write("\n")
        sys.stdout.write(analytics_csv)
    finally:
        await initializer.shutdown_all()

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
