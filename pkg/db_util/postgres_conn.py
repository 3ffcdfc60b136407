from typing import Optional, AsyncGenerator
from contextlib import asynccontextmanager
import urllib.parse
import asyncio
import logging
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from pkg.db_util.types import PostgresConfig


class PostgresConnection:
    """Lazily created async engine + sessionmaker for one database."""

    def __init__(self, db_config: PostgresConfig, logger: logging.Logger):
        self.db_config = db_config
        self.logger = logger
        self._db_url = self._generate_db_url(db_config)
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker] = None
        self._lock = asyncio.Lock()

    @staticmethod
    def _generate_db_url(db_config: PostgresConfig) -> str:
        if db_config.dsn:
            return db_config.dsn

        if not db_config.host:
            raise ValueError("Database host configuration is missing.")

        encoded_password = urllib.parse.quote_plus(db_config.password) if db_config.password else ''
        # prepared_statement_cache_size=0 keeps asyncpg compatible with the pgbouncer pooler
        return (
            f"postgresql+asyncpg://{db_config.username}:{encoded_password}"
            f"@{db_config.host}:{db_config.port}/{db_config.database}?prepared_statement_cache_size=0"
        )

    def get_db_url(self) -> str:
        return self._db_url

    @property
    def is_postgres(self) -> bool:
        return self._db_url.startswith("postgresql")

    def _engine_options(self) -> dict:
        if not self.is_postgres:
            return {}
        return {
            "pool_size": self.db_config.pool_size,
            "max_overflow": self.db_config.max_overflow,
            "pool_timeout": self.db_config.pool_timeout,
            "pool_recycle": self.db_config.pool_recycle,
            "pool_pre_ping": True,
            "query_cache_size": 0,
            "connect_args": {
                "timeout": 15,
                "command_timeout": 15,
                "statement_cache_size": 0,
                "server_settings": {"application_name": "ai-chat-proxy", "jit": "off"},
            },
        }

    async def get_engine(self, max_retries: int = 3, initial_delay: float = 2.0) -> AsyncEngine:
        """Get or create the engine, retrying the first connection with exponential backoff."""
        if self._engine is not None:
            return self._engine

        async with self._lock:
            if self._engine is not None:
                return self._engine

            self.logger.info("Database engine not initialized. Creating new engine...")
            last_error = None
            for attempt in range(max_retries):
                try:
                    engine = create_async_engine(self._db_url, echo=False, **self._engine_options())

                    self.logger.info(f"Testing database connection (attempt {attempt + 1}/{max_retries})...")
                    async with engine.connect() as conn:
                        await conn.execute(text("SELECT 1"))

                    self._sessionmaker = async_sessionmaker(
                        bind=engine,
                        class_=AsyncSession,
                        expire_on_commit=False,
                        autoflush=False,
                    )
                    self._engine = engine
                    self.logger.info("Async engine and sessionmaker created successfully.")
                    return engine

                except (SQLAlchemyError, OSError, ConnectionError) as e:
                    last_error = e
                    delay = initial_delay * (2 ** attempt)
                    if attempt < max_retries - 1:
                        self.logger.warning(
                            f"Database connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        self.logger.error(f"Failed to create database engine after {max_retries} attempts: {e}")

            raise ConnectionError(
                f"Could not create database engine after {max_retries} attempts: {last_error}"
            ) from last_error

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provides an asynchronous SQLAlchemy session; commits on success, rolls back on error."""
        await self.get_engine()
        if self._sessionmaker is None:
            raise ConnectionError("Database engine/sessionmaker not initialized.")

        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            if session.in_transaction():
                await session.commit()
        except Exception as e:
            self.logger.error(f"Error in session {id(session)}: {e}. Rolling back.")
            if session.in_transaction():
                await session.rollback()
            raise
        finally:
            await session.close()

    async def create_all(self, metadata) -> None:
        """Create tables for the given metadata (local development and tests)."""
        engine = await self.get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close_engine(self):
        if self._engine is None:
            self.logger.info("Database engine was not initialized, no need to close.")
            return
        self.logger.info("Closing database engine and connection pool...")
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        self.logger.info("Database engine closed.")
