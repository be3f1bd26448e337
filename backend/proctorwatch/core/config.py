from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # Unset means the in-memory store
    DATABASE_URL: str | None = None
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ]

    # Detector polling
    FACE_POLL_INTERVAL_MS: int = 1000
    OBJECT_POLL_INTERVAL_MS: int = 2000

    # Debounce thresholds
    NO_FACE_THRESHOLD_MS: int = 10_000
    LOOK_AWAY_THRESHOLD_MS: int = 5_000
    OBJECT_CONFIDENCE_FLOOR: float = 0.5
    RESET_NO_FACE_ON_EMIT: bool = False

    # Ledger policy
    REJECT_EVENTS_AFTER_CLOSE: bool = True

    # Object classifier
    YOLO_MODEL_PATH: str = "yolov8n.pt"
    YOLO_CONFIDENCE: float = 0.20


def get_settings() -> Settings:
    return Settings()
