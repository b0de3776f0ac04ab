"""
Database factory for creating appropriate database managers.
"""

from typing import Union
from config import DatabaseConfig
from tender_monitor.data.database import DatabaseManager
from tender_monitor.data.sqlite_database import SQLiteDatabaseManager
from tender_monitor.utils.errors import DatabaseError


SUPPORTED_DATABASE_TYPES = ("sqlite", "postgresql")


class DatabaseFactory:
    """Factory class for creating database managers."""

    @staticmethod
    def create_database_manager(config: DatabaseConfig) -> Union[DatabaseManager, SQLiteDatabaseManager]:
        """
        Create appropriate database manager based on configuration.

        Args:
            config: Database configuration

        Returns:
            Database manager instance (not yet initialized)

        Raises:
            DatabaseError: If unsupported database type is specified
        """
        db_type = DatabaseFactory.get_database_type(config)
        if db_type == "sqlite":
            return SQLiteDatabaseManager(config.sqlite_path)
        elif db_type == "postgresql":
            return DatabaseManager(config)
        else:
            raise DatabaseError(
                f"Unsupported database type: {config.db_type}",
                {"supported_types": list(SUPPORTED_DATABASE_TYPES)}
            )

    @staticmethod
    def get_database_type(config: DatabaseConfig) -> str:
        return config.db_type.lower()
