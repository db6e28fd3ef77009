"""
Audit trail for granted file downloads.

Records are append-only: this module only inserts and reads. Recording is
best-effort; a failed write is reported through the fallback logger and
never propagates to the access decision that triggered it.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memberships.db import utcnow
from memberships.models import FileAccessLog
from memberships.retry import RetryConfig, run_with_retry

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("memberships.audit.fallback")


class FileAccessAuditor:
    """Writes and reads FileAccessLog records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
        retry_config: Optional[RetryConfig] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._retry_config = retry_config

    async def record(self, viewer_id: str, file_id: str, post_id: str) -> bool:
        """
        Append one access record.

        Returns:
            True when the record was persisted, False when it was dropped
        """
        try:
            async with self._session_factory() as session:
                session.add(
                    FileAccessLog(
                        viewer_id=viewer_id,
                        file_id=file_id,
                        post_id=post_id,
                        accessed_at=self._clock(),
                    )
                )
                await session.commit()
            return True
        except Exception as e:
            logger.error(
                "Failed to write file access audit record",
                extra={"error": str(e), "file_id": file_id, "post_id": post_id},
            )
            fallback_logger.warning(
                "file.accessed",
                extra={
                    "viewer_id": viewer_id,
                    "file_id": file_id,
                    "post_id": post_id,
                    "accessed_at": self._clock().isoformat(),
                },
            )
            return False

    async def list_for_file(self, file_id: str) -> List[FileAccessLog]:
        async def _load():
            async with self._session_factory() as session:
                result = await session.execute(
                    select(FileAccessLog)
                    .where(FileAccessLog.file_id == file_id)
                    .order_by(FileAccessLog.accessed_at.asc())
                )
                return list(result.scalars().all())

        return await run_with_retry("list_file_access", _load, self._retry_config)
