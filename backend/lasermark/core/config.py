# lasermark/core/config.py

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # .env first, then environment variables
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Laser Marking Cell"
    HOST: str = "0.0.0.0"
    PORT: int = 3002

    DATABASE_URL: str = "sqlite:///./lasermark.db"
    DB_CONNECT_ATTEMPTS: int = 5
    DB_CONNECT_DELAY: float = 5.0

    BACKEND_CORS_ORIGINS: str = ""

    # PLC (Modbus TCP)
    MODBUS_HOST: str = "192.168.3.146"
    MODBUS_PORT: int = 502
    MODBUS_TIMEOUT: float = 3.0
    PLC_WRITE_TIMEOUT: float = 5.0

    # line-scan barcode reader
    SCANNER_HOST: str = "192.168.3.147"
    SCANNER_PORT: int = 5024
    SCANNER_READ_TIMEOUT: Optional[float] = None  # None = block until the scanner answers
    SCANNER_AUDIT_CSV: str = "./data/scanner_data.csv"
    SCANNER_MAX_READING_LENGTH: int = 29

    # hand-off files and images
    CODE_FILE_PATH: str = "./data/code.txt"
    TEXT_FILE_PATH: str = "./data/text.txt"
    IMAGE_DIR: str = "./data/cameraimage"
    IMAGE_BACKUP_DIR: str = "./data/img_backups"

    # serial number / day id
    BARCODE_RESET_HOUR: int = 6
    BARCODE_RESET_MINUTE: int = 0
    SERIAL_INITIAL_VALUE: int = 1
    SERIAL_RESET_INTERVAL: str = "daily"
    GRADE_CUTOFF_DEFAULT: str = "B"
    OPERATOR_NAME: str = "Unknown"

    # monitor polling (seconds)
    RESET_POLL_INTERVAL: float = 0.05
    ALARM_POLL_INTERVAL: float = 0.1
    MONITOR_RESTART_DELAY: float = 1.0

    # cycle timings (seconds)
    PLC_WAIT_TIMEOUT: float = 100.0
    PLC_POLL_INTERVAL: float = 0.1
    CYCLE_GAP: float = 1.2
    ERROR_COOLDOWN: float = 5.0
    RESET_SETTLE: float = 0.5
    ABORT_SETTLE: float = 1.0
    SECOND_SCAN_RETRIES: int = 2
    SECOND_SCAN_RETRY_DELAY: float = 2.0
    IMAGE_WAIT: float = 5.0
    FINAL_SETTLE: float = 3.0

    # optional MQTT fan-out of alarm events
    MQTT_ENABLED: bool = False
    MQTT_BROKER_HOST: str = "localhost"
    MQTT_BROKER_PORT: int = 1883
    MQTT_CLIENT_ID: str = "lasermark-cell"
    MQTT_TOPIC_PREFIX: str = "cell1"

    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "logs/lasermark.log"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
