"""
Configuration for LoopFlow.

Supports loading from:
1. Environment variables (highest priority)
2. YAML config file
3. Default values (fallback)
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    """Record store configuration."""

    backend: str = "sqlite"
    db_path: str = ".loop-flow/loopflow.db"


class RetrievalConfig(BaseModel):
    """Scan / expand / timeline configuration."""

    default_limit: int = Field(default=20, ge=1)
    max_limit: int = Field(default=50, ge=1)
    candidate_limit: int = Field(default=200, ge=1)
    summary_length: int = Field(default=100, ge=4)
    timeline_depth: int = Field(default=3, ge=0)


class ScoringConfig(BaseModel):
    """Relevance scoring configuration."""

    insight_field_weights: dict[str, float] = Field(
        default_factory=lambda: {"content": 1.0, "summary": 1.0, "tags": 1.0}
    )
    task_field_weights: dict[str, float] = Field(
        default_factory=lambda: {"title": 1.0, "description": 1.0, "summary": 1.0}
    )
    phrase_weight: float = Field(default=2.0, gt=0.0)
    recency_boost: bool = True
    max_recency_boost: float = Field(default=0.2, ge=0.0, le=1.0)
    recency_window_days: int = Field(default=30, ge=1)


class SummaryConfig(BaseModel):
    """Heuristic summarization configuration."""

    max_length: int = Field(default=100, ge=4)
    short_content_threshold: int = Field(default=150, ge=0)


class UpgradeConfig(BaseModel):
    """Format upgrade configuration."""

    create_backup: bool = True
    backup_dir_name: str = "backups"


class SharingConfig(BaseModel):
    """Export / import configuration."""

    bundle_version: str = "1.0"
    include_links: bool = True
    skip_duplicates: bool = True
    skip_conflicts: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_to_file: bool = False
    log_dir: str = ".loop-flow/logs"
    file_rotation: str = "5 MB"
    file_retention: str = "14 days"
    compression: str = "zip"
    serialize: bool = True


class Config(BaseModel):
    """Main configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    summary: SummaryConfig = Field(default_factory=SummaryConfig)
    upgrade: UpgradeConfig = Field(default_factory=UpgradeConfig)
    sharing: SharingConfig = Field(default_factory=SharingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "Config":
        """
        Load configuration from environment variables.

        Priority: .env file -> system environment variables -> defaults

        Args:
            env_file: Optional path to .env file (default: .env in working directory)

        Returns:
            Config instance

        Environment variables:
            LOOPFLOW_STORAGE_BACKEND: Record store backend (sqlite)
            LOOPFLOW_DB_PATH: SQLite database path
            LOOPFLOW_SCAN_DEFAULT_LIMIT: Default scan limit
            LOOPFLOW_SCAN_MAX_LIMIT: Maximum scan limit
            LOOPFLOW_SCAN_CANDIDATE_LIMIT: Candidates fetched per entity kind
            LOOPFLOW_TIMELINE_DEPTH: Default timeline depth on each side
            LOOPFLOW_RECENCY_BOOST: Enable recency boost (true/false)
            LOOPFLOW_RECENCY_WINDOW_DAYS: Recency decay window
            LOOPFLOW_SUMMARY_MAX_LENGTH: Summary length
            LOOPFLOW_UPGRADE_BACKUP: Create backups before upgrading
            LOOPFLOW_BUNDLE_VERSION: Export bundle version
            LOOPFLOW_LOG_LEVEL: Log level
            LOOPFLOW_LOG_TO_FILE: Enable file logging
            LOOPFLOW_LOG_DIR: Log directory
        """
        # Load .env file if provided or exists
        if env_file:
            load_dotenv(env_file)
        elif Path(".env").exists():
            load_dotenv()

        def get_env(key: str, default: Any = None) -> Any:
            """Get environment variable with type conversion."""
            value = os.getenv(key)
            if value is None:
                return default
            # If value is empty string, return default
            if value == "":
                return default
            # Convert boolean strings
            if isinstance(default, bool):
                return str(value).lower() in ("true", "1", "yes")
            # Convert numeric strings
            if isinstance(default, int):
                return int(value)
            if isinstance(default, float):
                return float(value)
            return value

        return cls(
            storage=StorageConfig(
                backend=get_env("LOOPFLOW_STORAGE_BACKEND", "sqlite"),
                db_path=get_env("LOOPFLOW_DB_PATH", ".loop-flow/loopflow.db"),
            ),
            retrieval=RetrievalConfig(
                default_limit=get_env("LOOPFLOW_SCAN_DEFAULT_LIMIT", 20),
                max_limit=get_env("LOOPFLOW_SCAN_MAX_LIMIT", 50),
                candidate_limit=get_env("LOOPFLOW_SCAN_CANDIDATE_LIMIT", 200),
                timeline_depth=get_env("LOOPFLOW_TIMELINE_DEPTH", 3),
            ),
            scoring=ScoringConfig(
                recency_boost=get_env("LOOPFLOW_RECENCY_BOOST", True),
                recency_window_days=get_env("LOOPFLOW_RECENCY_WINDOW_DAYS", 30),
            ),
            summary=SummaryConfig(
                max_length=get_env("LOOPFLOW_SUMMARY_MAX_LENGTH", 100),
            ),
            upgrade=UpgradeConfig(
                create_backup=get_env("LOOPFLOW_UPGRADE_BACKUP", True),
            ),
            sharing=SharingConfig(
                bundle_version=get_env("LOOPFLOW_BUNDLE_VERSION", "1.0"),
            ),
            logging=LoggingConfig(
                level=get_env("LOOPFLOW_LOG_LEVEL", "INFO"),
                log_to_file=get_env("LOOPFLOW_LOG_TO_FILE", False),
                log_dir=get_env("LOOPFLOW_LOG_DIR", ".loop-flow/logs"),
            ),
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            Config instance

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            yaml.YAMLError: If YAML is invalid
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env_or_yaml(
        cls, yaml_path: str | Path | None = None, env_file: str | Path | None = None
    ) -> "Config":
        """
        Load configuration with priority: env vars > YAML > defaults.

        Args:
            yaml_path: Optional path to YAML config
            env_file: Optional path to .env file

        Returns:
            Config instance
        """
        if yaml_path and Path(yaml_path).exists():
            with open(yaml_path) as f:
                config_dict = yaml.safe_load(f) or {}
        else:
            config_dict = {}

        env_config = cls.from_env(env_file=env_file)

        # Merge: env vars override YAML
        final_dict = {**config_dict}

        # Apply env overrides (non-default values)
        default = cls()
        for section in ("storage", "retrieval", "scoring", "summary", "upgrade", "sharing", "logging"):
            env_section = getattr(env_config, section)
            if env_section != getattr(default, section):
                merged = {**config_dict.get(section, {}), **env_section.model_dump(exclude_defaults=True)}
                final_dict[section] = merged

        return cls(**final_dict) if final_dict else env_config


# Default config instance
default_config = Config()
