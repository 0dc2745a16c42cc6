"""
Base service class for the mindshare tracker.

Provides async database session management for the service layer.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

class BaseService:
    """Base class for services that talk to the database."""

    def __init__(self, database):
        """
        Initialize base service with a database instance.

        Args:
            database: Database wrapper owning the engine and session factory
        """
        self.db = database

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for async database operations."""
        async with self.db.transaction() as session:
            yield session
