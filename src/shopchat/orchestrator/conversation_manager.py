"""
Conversation Manager.

Handles history loading and message storage for the chat orchestrator.

Writes issued during a session are fire-and-forget: each one runs as a
detached task, chained behind the previous write of the same
conversation so the store sees them in program order. Failures are
logged and never reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..domain.entities import StoredMessage, Turn, serialize_content
from ..domain.ports import IConversationStore

logger = logging.getLogger(__name__)


class ConversationManager:
    """Manages conversation persistence for chat sessions.

    Usage:
        manager = ConversationManager(conversation_store)

        turns = await manager.load_history(conversation_id)
        await manager.save(conversation_id, user_turn)
        manager.persist(conversation_id, assistant_turn)  # detached
        await manager.drain()
    """

    def __init__(self, conversation_store: Optional[IConversationStore] = None):
        """Initialize the conversation manager.

        Args:
            conversation_store: Store for conversation persistence.
                               If None, history is never loaded or saved.
        """
        self.store = conversation_store
        self._tails: dict[str, asyncio.Task] = {}

    async def load_history(self, conversation_id: str) -> list[Turn]:
        """Load the stored turns of a conversation, oldest first.

        A store failure is logged and yields an empty history.
        """
        if not self.store:
            logger.warning("No conversation store available - starting with empty history")
            return []

        try:
            messages = await self.store.get_conversation_history(conversation_id)
        except Exception as e:
            logger.error(f"Failed to load history for conversation {conversation_id}: {e}")
            return []

        logger.debug(f"Loaded {len(messages)} messages for conversation {conversation_id}")
        return [message.to_turn() for message in messages]

    async def get_messages(self, conversation_id: str) -> list[StoredMessage]:
        """Return raw stored messages (history endpoint)."""
        if not self.store:
            return []
        return await self.store.get_conversation_history(conversation_id)

    async def save(self, conversation_id: str, turn: Turn) -> Optional[StoredMessage]:
        """Persist a turn and wait for the write.

        Returns:
            The stored message, or None if the write failed
        """
        if not self.store:
            logger.warning("No conversation store available - message will not be persisted")
            return None

        try:
            stored = await self.store.save_message(
                conversation_id,
                turn.role.value,
                serialize_content(turn.content),
            )
        except Exception as e:
            logger.error(
                f"Failed to save {turn.role.value} message for conversation "
                f"{conversation_id}: {e}"
            )
            return None

        logger.debug(f"Saved {turn.role.value} message to conversation {conversation_id}")
        return stored

    def persist(self, conversation_id: str, turn: Turn) -> Optional[asyncio.Task]:
        """Schedule a detached write, ordered after earlier writes.

        Returns:
            The scheduled task (None when there is no store)
        """
        if not self.store:
            return None

        previous = self._tails.get(conversation_id)
        task = asyncio.create_task(self._write_after(previous, conversation_id, turn))
        self._tails[conversation_id] = task
        task.add_done_callback(lambda t: self._forget(conversation_id, t))
        return task

    async def _write_after(
        self,
        previous: Optional[asyncio.Task],
        conversation_id: str,
        turn: Turn,
    ) -> None:
        if previous is not None:
            # save() never raises; wait() also tolerates a cancelled predecessor
            await asyncio.wait([previous])
        await self.save(conversation_id, turn)

    def _forget(self, conversation_id: str, task: asyncio.Task) -> None:
        if self._tails.get(conversation_id) is task:
            del self._tails[conversation_id]

    @property
    def pending(self) -> int:
        return len(self._tails)

    async def drain(self) -> None:
        """Wait for every outstanding write to finish."""
        while self._tails:
            await asyncio.gather(*list(self._tails.values()), return_exceptions=True)
            for conversation_id, task in list(self._tails.items()):
                if task.done():
                    del self._tails[conversation_id]

