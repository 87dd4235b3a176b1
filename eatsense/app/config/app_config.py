import logging
import os
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from eatsense.app.config.logging_config import LoggingConfigModel

logger = logging.getLogger(__name__)

DEFAULT_EATING_KEYWORDS: List[str] = ["eating", "chewing", "crunch", "bite", "biting", "slurp", "munch", "swallow"]

# Food categories the prediction model was trained on, in training order.
DEFAULT_CONSTRAINED_LABELS: List[str] = [
    "pizza",
    "jelly",
    "wings",
    "chocolate",
    "grapes",
    "salmon",
    "burger",
    "gummies",
    "aloe",
    "fries",
    "chips",
    "noodles",
    "cabbage",
    "drinks",
    "carrots",
    "ice-cream",
    "soup",
    "pickles",
    "ribs",
    "candied_fruits",
]


class DetectionConfig(BaseModel):
    """Eating detection thresholds, cooldown and keyword vocabulary.

    Production and test-mode values are kept side by side; test mode shortens the
    refractory period and lowers the trigger threshold so episodes can be provoked
    quickly while prototyping.
    """

    cooldown_seconds: float = Field(default=900.0, gt=0, description="Refractory period after an episode ends (15 min)")
    eating_threshold: float = Field(default=0.6, ge=0.0, le=1.0, description="Minimum aggregate eating confidence")

    test_mode: bool = Field(default=False, description="Use the test-mode cooldown and threshold")
    test_mode_cooldown_seconds: float = Field(default=30.0, gt=0, description="Cooldown used when test_mode is enabled")
    test_mode_eating_threshold: float = Field(
        default=0.2, ge=0.0, le=1.0, description="Eating threshold used when test_mode is enabled"
    )

    eating_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EATING_KEYWORDS),
        description="Ordered keywords matched case-insensitively against classifier labels",
    )

    episode_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Close an unanswered episode after this many seconds (None = wait for the user indefinitely)",
    )

    @field_validator("eating_keywords")
    @classmethod
    def validate_keywords(cls, v: List[str]) -> List[str]:
        seen = []
        for keyword in v:
            normalized = keyword.strip().lower()
            if normalized and normalized not in seen:
                seen.append(normalized)
        return seen

    def effective_cooldown_seconds(self) -> float:
        return self.test_mode_cooldown_seconds if self.test_mode else self.cooldown_seconds

    def effective_eating_threshold(self) -> float:
        return self.test_mode_eating_threshold if self.test_mode else self.eating_threshold


class AnalyticsConfig(BaseModel):
    """Food-prediction analytics options."""

    constrained_labels: List[str] = Field(
        default_factory=lambda: list(DEFAULT_CONSTRAINED_LABELS),
        description="Curated label vocabulary used when the confusion matrix is constrained",
    )
    use_constrained_labels: bool = Field(default=False, description="Restrict the confusion matrix to constrained_labels")


class MetricsConfig(BaseModel):
    """Outcome partition keys and export naming."""

    modality: str = Field(default="Native", description="Detection modality outcomes are recorded under")
    model: str = Field(default="Native", description="Detection model outcomes are recorded under")
    export_filename: str = Field(default="eating_metrics.csv", description="File name for the metrics CSV export")
    analytics_export_filename: str = Field(
        default="food_prediction_analytics.csv", description="File name for the confusion matrix export"
    )


class EventBusConfig(BaseModel):
    """Event bus pacing and backpressure limits."""

    high_priority_sleep: float = Field(default=0.001, ge=0.0)
    low_priority_sleep: float = Field(default=0.01, ge=0.0)
    max_queue_size: int = Field(default=200, gt=0, description="Queue depth at which NORMAL/LOW events are dropped")


class AppInfoConfig(BaseModel):
    default_app_name_for_data_dir: str = Field(default="eatsense", description="Default app name for data directory")
    user_data_dir_suffix: str = Field(default="_data", description="Suffix for user data directory")


class StorageConfig(BaseModel):
    """Persistent storage layout.

    Sub-directory names are configurable; absolute paths are filled in by
    GlobalAppConfig on construction.
    """

    food_log_subdir: str = "food_log"
    metrics_subdir: str = "metrics"
    exports_subdir: str = "exports"
    food_log_filename: str = "food_log.json"
    metrics_filename: str = "detection_metrics.json"
    user_data_root: Optional[str] = None
    food_log_dir: Optional[str] = None
    metrics_dir: Optional[str] = None
    exports_dir: Optional[str] = None
    cache_ttl_seconds: float = Field(default=300.0, description="Cache time-to-live in seconds for storage reads")


class GlobalAppConfig(BaseModel):
    """Top-level configuration aggregating every subsystem config.

    Creates the storage directory structure on instantiation.
    """

    logging: LoggingConfigModel = LoggingConfigModel()
    app_info: AppInfoConfig = AppInfoConfig()
    detection: DetectionConfig = DetectionConfig()
    analytics: AnalyticsConfig = AnalyticsConfig()
    metrics: MetricsConfig = MetricsConfig()
    event_bus: EventBusConfig = EventBusConfig()
    storage: StorageConfig = StorageConfig()

    def __init__(self, **data: any) -> None:
        super().__init__(**data)
        self._setup_storage_paths()

    def _setup_storage_paths(self) -> None:
        """Resolve absolute storage paths and create the directories."""
        storage = self.storage
        user_data_root = storage.user_data_root or get_default_user_data_root(app_info=self.app_info)
        food_log_dir = os.path.join(user_data_root, storage.food_log_subdir)
        metrics_dir = os.path.join(user_data_root, storage.metrics_subdir)
        exports_dir = os.path.join(user_data_root, storage.exports_subdir)

        for d in [food_log_dir, metrics_dir, exports_dir]:
            os.makedirs(d, exist_ok=True)

        storage.user_data_root = user_data_root
        storage.food_log_dir = food_log_dir
        storage.metrics_dir = metrics_dir
        storage.exports_dir = exports_dir


CONFIG_FILE_NAME = "settings.yaml"
DEFAULT_CONFIG_DIR_NAME = "config"


def get_config_path(config_dir: Optional[str] = None, config_file: str = CONFIG_FILE_NAME) -> str:
    """Get configuration file path.

    Uses config_dir when given, otherwise the repository-level config directory.
    """
    if config_dir:
        return os.path.join(config_dir, config_file)

    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
    return os.path.join(project_root, DEFAULT_CONFIG_DIR_NAME, config_file)


def load_app_config(config_path: Optional[str] = None) -> GlobalAppConfig:
    """Load application configuration from YAML with fallback to defaults.

    Returns the default GlobalAppConfig if the file is missing, empty, or lacks the
    'app' root key. YAML parse errors and invalid values are logged and re-raised.

    Args:
        config_path: Optional explicit path to the configuration file.

    Returns:
        Loaded GlobalAppConfig instance.
    """
    actual_config_path = config_path or get_config_path()
    logger.debug(f"Loading application configuration from: {actual_config_path}")

    try:
        with open(actual_config_path, "r") as f:
            config_data = yaml.safe_load(f)
        if not config_data or "app" not in config_data:
            logger.warning(
                f"Configuration file {actual_config_path} is empty or missing 'app' root. Using default GlobalAppConfig."
            )
            return GlobalAppConfig()
        return GlobalAppConfig(**(config_data.get("app") or {}))
    except FileNotFoundError:
        logger.warning(f"Configuration file not found at {actual_config_path}. Using default GlobalAppConfig.")
        return GlobalAppConfig()
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML configuration file {actual_config_path}: {e}")
        raise
    except Exception as e:
        logger.error(f"Failed to load configuration from {actual_config_path}: {e}")
        raise


def get_default_user_data_root(app_info: AppInfoConfig) -> str:
    """User data root: %APPDATA% on Windows, the home directory elsewhere."""
    if os.name == "nt":
        base = os.environ.get("APPDATA", os.path.expanduser("~"))
    else:
        base = os.path.expanduser("~")
    return os.path.join(base, app_info.default_app_name_for_data_dir + app_info.user_data_dir_suffix)
