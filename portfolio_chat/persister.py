
import logging
from typing import Any, Dict, Optional

from .context_store import SessionStore
from .models import ConversationMessage, Role

logger = logging.getLogger(__name__)


class ConversationPersister:
    """
    Writes chat turns to the session store without ever failing the caller.

    Errors are logged and swallowed: a broken store must not break the
    answer that is being streamed to the visitor.
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    async def record_user_turn(self, session_id: Optional[str], content: str) -> Optional[ConversationMessage]:
        return await self._record(session_id, "user", content)

    async def record_assistant_turn(
        self,
        session_id: Optional[str],
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ConversationMessage]:
        return await self._record(session_id, "assistant", content, metadata)

    async def _record(
        self,
        session_id: Optional[str],
        role: Role,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ConversationMessage]:
        if not session_id:
            return None
        try:
            return await self._store.append_message(session_id, role, content, metadata)
        except Exception:  # noqa: BLE001
            logger.exception("failed to persist %s message for session %s", role, session_id)
            return None
