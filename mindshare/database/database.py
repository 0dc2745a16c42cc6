from typing import Optional
from sqlalchemy import event, inspect
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager

from mindshare.config import Config
from mindshare.database.models import Base, Snapshot
from mindshare.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    def connect(self):
        """Create the engine and session factory without touching the schema"""
        if self.engine is not None:
            return

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        if self.engine.dialect.name == 'sqlite':
            event.listen(self.engine.sync_engine, 'connect', _enable_sqlite_foreign_keys)

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    async def initialize(self):
        """Initialize the database connection and create tables.

        Safe to call on every startup: existing tables and indexes are left alone.
        """
        self.logger.info(f"Creating mindshare schema if missing ({self.database_url})")
        self.connect()

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Mindshare schema ready")

    async def tables_ready(self) -> bool:
        """Check whether the snapshot schema exists, connecting first if needed"""
        self.connect()
        async with self.engine.connect() as conn:
            return await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).has_table(Snapshot.__tablename__)
            )

    @asynccontextmanager
    async def transaction(self):
        """
        Open a session whose work commits as one unit when the block exits.

        Any exception rolls the whole unit back, so other connections see a
        saved snapshot either with all of its entries or not at all.
        """
        self.connect()
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Dispose of the engine; a later call reconnects lazily"""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.async_session = None
            self.logger.info("Database engine disposed")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
