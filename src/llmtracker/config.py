"""
LLM Tracker Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables prefixed with LLMTRACKER_.
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_data_dir() -> str:
    """
    Get XDG-compliant data directory for the capture database.

    Follows XDG Base Directory Specification:
    - Uses $XDG_DATA_HOME/llmtracker if XDG_DATA_HOME is set
    - Falls back to $HOME/.local/share/llmtracker if not set
    - Returns relative path .llmtracker if HOME not available (dev/testing)

    Returns:
        str: Path to data directory
    """
    xdg_data_home = os.getenv("XDG_DATA_HOME")
    if xdg_data_home:
        return str(Path(xdg_data_home) / "llmtracker")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "share" / "llmtracker")

    # Fallback for development/testing environments without HOME
    return ".llmtracker"


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/llmtracker if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/llmtracker if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "llmtracker" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "llmtracker" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LLMTRACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_path: str = ""  # Empty = XDG data dir / llm-tracker.db
    database_echo: bool = False

    @property
    def database_url(self) -> str:
        """Construct SQLite database URL from the configured path."""
        if self.database_path:
            path = Path(self.database_path).expanduser()
        else:
            path = Path(get_xdg_data_dir()) / "llm-tracker.db"
        return f"sqlite:///{path}"

    # Ingestion server
    server_host: str = "127.0.0.1"
    server_port: int = 9876
    server_poll_interval: float = 0.5  # Accept/recv wake-up interval in seconds
    writer_timeout: float = 30.0  # Max seconds to wait for a store write
    server_send_timeout: float = 10.0  # A stalled write past this closes the connection

    # Bridge client
    bridge_reconnect_interval: float = 5.0  # Fixed delay between attempts
    bridge_max_reconnect_attempts: int = 10
    bridge_connect_timeout: float = 5.0
    bridge_send_timeout: float = 10.0  # A stalled write past this drops the connection

    # Framing
    max_frame_bytes: int = 16 * 1024 * 1024  # 16MB per frame

    # Reads
    search_limit: int = 100
    recent_conversations_limit: int = 50

    # Tracking policy
    tracking_enabled: bool = True
    disabled_platforms: list[str] = []  # e.g. ["gemini"]
    capture_system_prompts: bool = True
    capture_streaming_chunks: bool = True
    retention_days: int = 365  # 0 disables retention purge

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # Defaults to XDG state dir if empty
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = True
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5
    log_to_stdout: bool = True  # Log INFO/DEBUG to stdout
    log_to_stderr: bool = True  # Log WARNING/ERROR/CRITICAL to stderr

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())

    def is_platform_tracked(self, platform: str | None) -> bool:
        """Whether captures for ``platform`` should be persisted."""
        if not self.tracking_enabled:
            return False
        if platform is None:
            return True
        disabled = {p.lower() for p in self.disabled_platforms}
        return platform.lower() not in disabled


# Global settings instance
settings = Settings()
