"""Explicit transaction scope over one AsyncSession.

States: OPEN after begin, then exactly one of COMMITTED or ROLLED_BACK.
Nothing leaves a terminal state.
"""
from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fireline.errors import StorageError, TransactionStateError

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    NEW = "new"
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class IncidentTransaction:
    """One transaction on one session. The session is owned (and closed) by the caller."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.state = TransactionState.NEW

    @property
    def is_open(self) -> bool:
        return self.state is TransactionState.OPEN

    def _require(self, expected: TransactionState, action: str) -> None:
        if self.state is not expected:
            raise TransactionStateError(f"cannot {action} transaction in state {self.state.value}")

    async def begin(self) -> None:
        self._require(TransactionState.NEW, "begin")
        try:
            await self.session.begin()
        except SQLAlchemyError as e:
            raise StorageError("begin transaction failed", cause=e) from e
        self.state = TransactionState.OPEN

    async def commit(self) -> None:
        self._require(TransactionState.OPEN, "commit")
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            # Still OPEN: the caller rolls back
            raise StorageError("commit failed", cause=e) from e
        self.state = TransactionState.COMMITTED

    async def rollback(self) -> None:
        """Best-effort rollback. Failures are logged, never raised."""
        self._require(TransactionState.OPEN, "roll back")
        try:
            await self.session.rollback()
        except Exception:
            logger.exception("Transaction rollback failed")
        finally:
            self.state = TransactionState.ROLLED_BACK
