from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings with environment variable integration.

    Attributes
    ----------
    debug: bool, default=False
        Enable/disable debug mode (auto-reload for the reference server).
    environment: str, default="development"
        Application environment: "development", "production", etc.
    logging_level: str, default="INFO"
        Logging verbosity: e.g., "INFO", "DEBUG".
    base_dir: Path, default=auto-detected
        Project base directory.
    logs_dir: Path, derived from base_dir
        Directory for log files.
    log_file: Path, derived from base_dir
        Main log file path.
    api_base_url: str, default="http://localhost:8001"
        Base URL of the notification backend (REST surface and stream).
    stream_path: str, default="/api/notifications/stream"
        Path of the server-push stream endpoint.
    notifications_path: str, default="/api/notifications"
        Path of the notification list / read-state endpoint.
    preferences_path: str, default="/api/notifications/preferences"
        Path of the notification preferences endpoint.
    http_timeout_seconds: float, default=10.0
        Timeout applied to REST calls and to stream connection establishment.
    reconnect_base_delay: float, default=1.0
        First reconnect delay in seconds; doubled on every further attempt.
    reconnect_max_delay: float, default=30.0
        Upper bound for the reconnect delay in seconds.
    heartbeat_interval: float, default=30.0
        Interval in seconds at which the server sends heartbeat frames.
    heartbeat_timeout_factor: float, default=1.5
        Multiple of `heartbeat_interval` after which a silent stream is considered dead.
    reconcile_unread_on_open: bool, default=True
        Fetch the unread count over REST every time the stream opens.
    storage_path: Path, derived from base_dir
        JSON file used as local persisted state for cached preferences.
    preferences_storage_key: str, default="notification-preferences"
        Key under which preferences are cached in local storage.
    desktop_auto_close_seconds: float, default=5.0
        Delay before a desktop notification is dismissed automatically.
    notification_sound_path: str, default="sounds/notification.mp3"
        Sound played on new notifications when enabled.
    notification_sound_volume: float, default=0.3
        Playback volume between 0 and 1.
    server_host: str, default="127.0.0.1"
        Bind host of the reference push server.
    server_port: int, default=8001
        Bind port of the reference push server.
    stream_heartbeat_seconds: float, default=30.0
        Interval at which the reference server writes heartbeat comments.

    Notes
    -----
    Paths are resolved relative to the project root.
    """

    debug: bool = False
    environment: str = "development"
    logging_level: str = "INFO"
    base_dir: Path = Path(__file__).resolve().parent.parent
    logs_dir: Path = base_dir / "logs"
    log_file: Path = logs_dir / "pixelshelf_notifications.log"
    api_base_url: str = "http://localhost:8001"
    stream_path: str = "/api/notifications/stream"
    notifications_path: str = "/api/notifications"
    preferences_path: str = "/api/notifications/preferences"
    http_timeout_seconds: float = 10.0
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    heartbeat_interval: float = 30.0
    heartbeat_timeout_factor: float = 1.5
    reconcile_unread_on_open: bool = True
    storage_path: Path = base_dir / ".local_storage.json"
    preferences_storage_key: str = "notification-preferences"
    desktop_auto_close_seconds: float = 5.0
    notification_sound_path: str = "sounds/notification.mp3"
    notification_sound_volume: float = 0.3
    server_host: str = "127.0.0.1"
    server_port: int = 8001
    stream_heartbeat_seconds: float = 30.0

    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    @property
    def heartbeat_timeout(self) -> float:
        """Silence threshold in seconds before the stream is treated as dead."""
        return self.heartbeat_interval * self.heartbeat_timeout_factor

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ["dev", "development", "local"]


@lru_cache
def get_settings() -> Settings:
    """Create and cache singleton Settings instance for application use.

    Returns
    -------
    Settings
        Cached singleton instance of application settings with all
        configuration values loaded and validated.
    """
    return Settings()
