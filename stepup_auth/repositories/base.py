"""Shared transaction handling for the SQLAlchemy repositories."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..exceptions import DependencyFailure
from ..metrics import dependency_failures

logger = logging.getLogger(__name__)


class SQLAlchemyRepository:
    """Gives each repository call its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error("Storage operation failed", extra={"error": str(e)})
            dependency_failures.labels(dependency="storage").inc()
            raise DependencyFailure("storage") from e
