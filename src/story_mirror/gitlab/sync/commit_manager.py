"""Commit boundaries of activity-log replays.

A replay commits after every ``batch_size`` imported events. The task log
entry holding the resumption cursor is written in the same transaction, so
a crash loses at most the uncommitted tail and the next run starts over at
its first event.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from story_mirror.logging import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class CommitManager:
    """Commits the session every ``batch_size`` imported events.

    Usage:
        commit_manager = CommitManager(ctx.session, ctx.write_lock, batch_size=3)
        await commit_manager.record_success()  # after each imported event
        await commit_manager.finalize()        # at the end of the run
    """

    def __init__(
        self,
        session: AsyncSession,
        write_lock: asyncio.Lock | None = None,
        batch_size: int = 1,
    ) -> None:
        self._session = session
        self._write_lock = write_lock
        self._batch_size = max(1, batch_size)
        self._pending = 0

    async def record_success(self) -> bool:
        """Count one imported event and commit once the batch is full.

        Returns:
            True if the batch was committed
        """
        self._pending += 1
        if self._pending < self._batch_size:
            return False
        await self.finalize()
        return True

    async def finalize(self) -> None:
        """Commit the events of the current batch, if any."""
        if not self._pending:
            return
        # the write lock keeps the commit from interleaving with a repository flush
        async with self._write_lock or contextlib.nullcontext():
            await self._session.commit()
        logger.debug("Committed {} event(s)", self._pending)
        self._pending = 0
