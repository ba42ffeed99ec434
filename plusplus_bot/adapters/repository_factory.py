"""Factory for creating database repository instances."""

from typing import cast

from plusplus_bot.adapters.postgres_repository import PostgresRepository
from plusplus_bot.adapters.sqlite_repository import SQLiteRepository
from plusplus_bot.config.logging_config import get_logger
from plusplus_bot.config.settings import Settings
from plusplus_bot.domain.protocols import RepositoryProtocol

logger = get_logger(__name__)


def create_repository(settings: Settings) -> RepositoryProtocol:
    """Create appropriate repository based on settings.

    The caller owns the returned handle and must ``close()`` it.

    Args:
        settings: Application settings

    Returns:
        Repository instance (SQLite or PostgreSQL)

    Raises:
        ValueError: If database_type is not supported or DATABASE_URL is missing
        RepositoryError: On connection errors
    """
    if settings.database_type == "sqlite":
        logger.info("repository_sqlite_selected", path=settings.db_path)
        return cast(RepositoryProtocol, SQLiteRepository(db_path=settings.db_path))

    elif settings.database_type == "postgres":
        if not settings.database_url:
            raise ValueError(
                "DATABASE_URL environment variable must be set when using PostgreSQL"
            )

        logger.info(
            "repository_postgres_selected",
            use_ssl=settings.database_use_ssl,
        )
        return cast(
            RepositoryProtocol,
            PostgresRepository(
                settings.database_url.get_secret_value(),
                use_ssl=settings.database_use_ssl,
                settings=settings,
            ),
        )

    else:
        raise ValueError(
            f"Unsupported database type: {settings.database_type}. "
            f"Must be 'sqlite' or 'postgres'"
        )
