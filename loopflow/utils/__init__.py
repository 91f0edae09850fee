"""Utility modules for LoopFlow."""

from loopflow.utils.exceptions import (
    BackupError,
    BundleVersionError,
    ConfigurationError,
    LoopFlowError,
    StoreError,
    UpgradeError,
    ValidationError,
)
from loopflow.utils.id_generator import (
    ParsedId,
    entity_kind_for_id,
    generate_id,
    generate_unique_id,
    is_legacy_id,
    is_valid_id,
    migrate_legacy_id,
    parse_id,
    repo_hash,
)
from loopflow.utils.logger import get_logger, setup_logging

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    # ID Generators
    "ParsedId",
    "generate_id",
    "generate_unique_id",
    "parse_id",
    "is_valid_id",
    "is_legacy_id",
    "migrate_legacy_id",
    "repo_hash",
    "entity_kind_for_id",
    # Exceptions
    "LoopFlowError",
    "StoreError",
    "ValidationError",
    "BundleVersionError",
    "ConfigurationError",
    "UpgradeError",
    "BackupError",
]
