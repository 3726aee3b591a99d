"""Best-effort writer for the sync audit trail."""

import logging
from typing import Optional

from catalog_sync.db.models import LogAction

logger = logging.getLogger(__name__)


class SyncLogWriter:
    """
    Append SyncLogEntry rows without ever failing the caller.

    Write errors are logged at WARNING and dropped.
    """

    def __init__(self, repository):
        self.repository = repository

    async def write(
        self,
        session_id: Optional[int],
        product_id: Optional[int],
        action: LogAction,
        message: str,
    ) -> bool:
        """
        Returns:
            True if the entry was stored
        """
        # Single-product refreshes run outside a session and have no trail
        if session_id is None:
            return False

        try:
            await self.repository.add_log_entry(session_id, product_id, action.value, message)
            return True
        except Exception as e:
            logger.warning(f"Failed to write sync log for session {session_id}: {e}")
            return False
