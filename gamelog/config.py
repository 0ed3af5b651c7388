# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2025 The GameLog Authors

"""
GameLog Configuration Module

Handles loading and managing service configuration from YAML files.
"""

import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """Server configuration settings."""
    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=3000, description="Server port")
    admin_key: Optional[str] = Field(default=None, description="Admin key required for /api/admin endpoints")
    environment: str = Field(default="production", description="Deployment environment: production or development")


class UpdaterConfig(BaseModel):
    """In-place update configuration.

    The directory layout matches the single-container deployment; the
    defaults should only be changed for non-container hosts.
    """
    app_dir: Path = Field(default=Path("/app"), description="Live application directory")
    staging_dir: Path = Field(default=Path("/tmp/gamelog-update"), description="Extraction staging directory")
    backup_dir: Path = Field(default=Path("/tmp/gamelog-backup"), description="Backup directory (snapshots get a timestamp suffix)")
    download_dir: Path = Field(default=Path("/tmp"), description="Where release archives are downloaded")
    github_owner: str = Field(default="horlesq", description="GitHub owner of the release repository")
    github_repo: str = Field(default="gamelog", description="GitHub release repository")
    github_token: Optional[str] = Field(default=None, description="Optional GitHub token for API rate limits")
    artifact_template: str = Field(default="gamelog-built-{version}.tar.gz", description="Release asset name")
    critical_paths: List[str] = Field(
        default_factory=lambda: ["gamelog", "web", "pyproject.toml", "requirements.txt"],
        description="Paths under app_dir snapshotted before an update",
    )
    startup_script: str = Field(default="start.sh", description="Container entrypoint, never overwritten")
    migration_command: List[str] = Field(
        default_factory=lambda: ["alembic", "upgrade", "head"],
        description="Schema sync command run inside app_dir",
    )
    fail_on_migration_error: bool = Field(default=False, description="Treat a failed schema sync as a failed update")
    max_backups: int = Field(default=3, ge=1, description="Number of backup snapshots to keep")
    download_timeout: int = Field(default=300, ge=1, description="Download timeout in seconds")
    restart_delay: float = Field(default=0.5, ge=0.0, description="Seconds to wait before exiting for restart")
    status_grace_period: float = Field(default=10.0, ge=0.0, description="Seconds a finished run stays visible")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level (WARNING, INFO, DEBUG)")
    file: Optional[Path] = Field(default=None, description="Log file path (null = console only)")


class Config(BaseModel):
    """Main configuration container."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    updater: UpdaterConfig = Field(default_factory=UpdaterConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Optional[str] = None) -> Config:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to config file. If None, uses the GAMELOG_CONFIG env var
              or falls back to ./config.yaml

    Returns:
        Config with loaded settings, or defaults when the file is missing
        or unusable
    """
    config_path = Path(path or os.environ.get("GAMELOG_CONFIG", "./config.yaml"))

    if not config_path.exists():
        logger.info("No config file at %s, using defaults", config_path)
        return Config()

    logger.info("Reading configuration from %s", config_path)
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        return Config.model_validate(data)
    except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
        logger.warning("Ignoring config file %s: %s", config_path, e)
        return Config()


def setup_logging(config: LoggingConfig) -> None:
    """
    Route GameLog and uvicorn logs to stderr and, optionally, a file.

    Update runs log every stage here; the log file is what survives the
    restart at the end of an update.

    Args:
        config: Logging configuration settings
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]

    if config.file:
        try:
            config.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(config.file))
        except OSError as e:
            # Console logging still works
            print(f"Warning: GameLog log file {config.file} is not writable: {e}", file=sys.stderr)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers
    )

    logging.getLogger("uvicorn").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(level)

    if config.file:
        logger.info("Logging configured: level=%s, file=%s", config.level, config.file)
    else:
        logger.info("Logging configured: level=%s (console only)", config.level)


# Global config instance - loaded on import
config = load_config()
