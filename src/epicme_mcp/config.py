"""Configuration loading for the EpicMe server.

Supports two tiers:
1. Defaults - no config file needed
2. A .toml or .json file in the project root

The ``EPIC_ME_DB_PATH`` environment variable overrides the database
location in either case.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

# Python 3.11+ has tomllib in stdlib; fall back to tomli for older versions
try:
    import tomllib  # Python 3.11+
except ImportError:
    try:
        import tomli as tomllib  # Python <3.11
    except ImportError:  # pragma: no cover
        tomllib = None

DB_PATH_ENV = "EPIC_ME_DB_PATH"


@dataclass
class ServerConfig:
    """Configuration for one EpicMe server process."""

    project_root: Path = field(default_factory=Path.cwd)

    # Storage (relative paths resolve against project_root)
    db_path: str = "db.sqlite"

    # Wrapped videos
    videos_dir: str = "videos"
    font_path: str = "other/caveat-variable-font.ttf"
    ffmpeg_command: str = "ffmpeg"
    video_duration_seconds: float = 60.0

    # Sampling
    sampling_max_tokens: int = 1000

    # Default level for client-visible log messages
    client_log_level: str = "info"

    def get_db_path(self) -> Path:
        return self._resolve(self.db_path)

    def get_videos_path(self) -> Path:
        return self._resolve(self.videos_dir)

    def get_font_path(self) -> Path:
        return self._resolve(self.font_path)

    def _resolve(self, value: str) -> Path:
        path = Path(value)
        if path.is_absolute():
            return path
        return self.project_root / path


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    if tomllib is None:
        raise ImportError("tomli required for TOML config: pip install tomli")
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def dict_to_config(data: dict[str, Any], project_root: Path) -> ServerConfig:
    """Convert dictionary to ServerConfig."""
    config = ServerConfig(project_root=project_root)

    if "storage" in data:
        storage = data["storage"]
        if "db_path" in storage:
            config.db_path = storage["db_path"]

    if "video" in data:
        video = data["video"]
        if "dir" in video:
            config.videos_dir = video["dir"]
        if "font" in video:
            config.font_path = video["font"]
        if "ffmpeg" in video:
            config.ffmpeg_command = video["ffmpeg"]
        if "duration_seconds" in video:
            duration = float(video["duration_seconds"])
            if duration <= 0:
                raise ValueError(f"video.duration_seconds must be positive, got {duration}")
            config.video_duration_seconds = duration

    if "sampling" in data:
        sampling = data["sampling"]
        if "max_tokens" in sampling:
            config.sampling_max_tokens = int(sampling["max_tokens"])

    if "logging" in data:
        logging_section = data["logging"]
        if "level" in logging_section:
            config.client_log_level = logging_section["level"]

    return config


def find_config_file(project_root: Path) -> Optional[Path]:
    """Find configuration file in project root.

    Search order:
    1. epicme_config.toml
    2. epicme_config.json
    3. .epicme.toml
    4. .epicme.json
    """
    candidates = [
        "epicme_config.toml",
        "epicme_config.json",
        ".epicme.toml",
        ".epicme.json",
    ]

    for name in candidates:
        path = project_root / name
        if path.exists():
            return path

    return None


def apply_env_overrides(config: ServerConfig) -> ServerConfig:
    """Apply environment variable overrides."""
    db_path = os.environ.get(DB_PATH_ENV)
    if db_path:
        config.db_path = db_path
    return config


def load_config(project_root: Path, config_path: Optional[Path] = None) -> ServerConfig:
    """Load server configuration.

    Args:
        project_root: Root directory relative paths resolve against
        config_path: Optional explicit path to config file

    Returns:
        ServerConfig instance
    """
    if config_path is None:
        config_path = find_config_file(project_root)

    if config_path is None:
        return apply_env_overrides(ServerConfig(project_root=project_root))

    suffix = config_path.suffix.lower()

    if suffix == ".toml":
        config_dict = load_toml_config(config_path)
    elif suffix == ".json":
        config_dict = load_json_config(config_path)
    else:
        raise ValueError(f"Unsupported config file type: {suffix}")

    return apply_env_overrides(dict_to_config(config_dict, project_root))
