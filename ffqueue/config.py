"""
Configuration management for FFQueue
"""

import os
import yaml
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8766


class FfmpegConfig(BaseModel):
    ffmpeg_path: str = "auto"
    ffprobe_path: str = "auto"


class TranscodingConfig(BaseModel):
    default_output_dir: str = str(Path.home() / "Documents" / "FFQueue" / "output")
    kill_timeout: float = 5.0  # Seconds between terminate and force kill
    min_duration_ratio: float = 0.8  # Output shorter than this share of the source is a failure
    stderr_tail_lines: int = 100
    cleanup_stale_temp: bool = True  # Remove leftover *.tmp outputs at startup


class HardwareConfig(BaseModel):
    prefer_hw_accel: bool = True
    blacklist_ttl_seconds: float = 300  # 5 minutes
    blacklist_cleanup_interval: float = 60


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5


class FFQueueConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    ffmpeg: FfmpegConfig = Field(default_factory=FfmpegConfig)
    transcoding: TranscodingConfig = Field(default_factory=TranscodingConfig)
    hardware: HardwareConfig = Field(default_factory=HardwareConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def find_config_file() -> Optional[Path]:
    """Find the configuration file in standard locations."""
    env_path = os.environ.get("FFQUEUE_CONFIG")
    if env_path:
        return Path(env_path)

    search_paths = [
        Path.cwd() / "ffqueue.yaml",
        Path.cwd() / "ffqueue.yml",
        Path.cwd() / "config" / "ffqueue.yaml",
        Path.home() / ".config" / "ffqueue" / "ffqueue.yaml",
        Path("/etc/ffqueue/ffqueue.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config(config_path: Optional[str] = None) -> FFQueueConfig:
    """Load configuration from YAML file or use defaults."""
    config_file = Path(config_path) if config_path else find_config_file()

    if config_file and config_file.exists():
        with open(config_file, "r") as f:
            yaml_data = yaml.safe_load(f) or {}
        return FFQueueConfig(**yaml_data)

    return FFQueueConfig()


# Global config instance
_config: Optional[FFQueueConfig] = None


def get_config() -> FFQueueConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: FFQueueConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
