"""Conversation repository: one serialized transcript per project."""

from __future__ import annotations

import json

from forge_agent.chat.models import Message
from forge_agent.config import MAX_STORED_MESSAGES
from forge_agent.log import get_logger
from forge_agent.storage.database import Database

logger = get_logger(__name__)


class ConversationRepository:
    """Save and load transcripts keyed by project id."""

    def __init__(self, db: Database, max_stored_messages: int = MAX_STORED_MESSAGES):
        self._db = db
        self._max_stored_messages = max_stored_messages

    async def save(self, project_id: str, messages: list[Message]) -> int:
        """Store the most recent messages, dropping the oldest. Returns how many were kept."""
        kept = messages[-self._max_stored_messages:]
        payload = json.dumps([m.to_dict() for m in kept])
        await self._db.conn.execute(
            """INSERT INTO conversations (project_id, messages_json, message_count)
               VALUES (?, ?, ?)
               ON CONFLICT(project_id)
               DO UPDATE SET messages_json = excluded.messages_json,
                             message_count = excluded.message_count,
                             updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (project_id, payload, len(kept)),
        )
        await self._db.conn.commit()
        logger.debug("conversation_saved", project_id=project_id, message_count=len(kept))
        return len(kept)

    async def load(self, project_id: str) -> list[Message]:
        cursor = await self._db.conn.execute(
            "SELECT messages_json FROM conversations WHERE project_id = ?",
            (project_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return []
        try:
            return [Message.from_dict(item) for item in json.loads(row["messages_json"])]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("conversation_corrupt", project_id=project_id, error=str(e))
            return []

    async def delete(self, project_id: str) -> int:
        cursor = await self._db.conn.execute(
            "DELETE FROM conversations WHERE project_id = ?",
            (project_id,),
        )
        await self._db.conn.commit()
        return cursor.rowcount

    async def list_projects(self) -> list[str]:
        cursor = await self._db.conn.execute(
            "SELECT project_id FROM conversations ORDER BY updated_at DESC"
        )
        rows = await cursor.fetchall()
        return [row["project_id"] for row in rows]
