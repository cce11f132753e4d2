from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )

    # Camera served by this instance
    camera_id: str = Field(default="cam-01")

    # Model
    detection_model: str = Field(default="yolo11n.pt")
    compute_unit: str = Field(
        default="all",
        description="'all' | 'cpu_only' | 'cpu_and_gpu'",
    )

    # Detection
    confidence_threshold: float = Field(default=0.5)
    iou_threshold: float = Field(default=0.6)
    object_detection_rate: float = Field(
        default=1.0,
        description="Minimum seconds between two full-frame detection cycles",
    )
    detectable_class_labels: str = Field(
        default="",
        description="Comma-separated label allow-list; empty means every label",
    )
    distance_recording_enabled: bool = Field(default=False)

    # Tracking
    object_tracking_enabled: bool = Field(default=False)
    object_tracking_confidence_threshold: float = Field(default=0.5)

    # Output
    publish_detections: bool = Field(default=True)

    # Logging
    log_format: str = Field(default="console")
    log_level: str = Field(default="INFO")

    # Environment
    environment: str = Field(default="development")

    @property
    def class_label_set(self) -> frozenset[str] | None:
        labels = frozenset(
            c.strip() for c in self.detectable_class_labels.split(",") if c.strip()
        )
        return labels or None


# Module-level singleton, import and use directly
settings = Settings()
