"""
Factory for creating record store backends.
"""

from loopflow.config import Config
from loopflow.core.storage.base import RecordStore
from loopflow.core.storage.sqlite_store import SQLiteRecordStore
from loopflow.utils.exceptions import ConfigurationError


class RecordStoreFactory:
    """Factory for creating record store backends from configuration."""

    @staticmethod
    def create(config: Config) -> RecordStore:
        """
        Create record store from configuration.

        Args:
            config: Main configuration object

        Returns:
            Record store instance

        Raises:
            ConfigurationError: If backend is not supported
        """
        if config.storage.backend == "sqlite":
            return SQLiteRecordStore(db_path=config.storage.db_path)
        else:
            raise ConfigurationError(
                f"Unsupported storage backend: {config.storage.backend}",
                context={"backend": config.storage.backend},
            )
