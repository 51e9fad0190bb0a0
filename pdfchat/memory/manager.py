"""Conversation memory manager for PDF Chat Support.

Handles conversation creation, message persistence, and conversation history
for multi-turn chat interactions.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import structlog

from pdfchat.db import Database

logger = structlog.get_logger()


class ConversationManager:
    """Manages chat conversations and their message history."""

    def __init__(self, db: Database, history_limit: int = 5):
        """Initialize the conversation manager.

        Args:
            db: Database holding conversations and messages
            history_limit: Number of prior messages to include in the prompt
        """
        self.db = db
        self.history_limit = history_limit

    def get_or_create(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        user_ip: str = "",
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return the session's conversation, creating it on first use.

        Args:
            session_id: Client session token (unique per conversation)
            user_id: Optional authenticated user id
            user_ip: Client IP address
            user_agent: Client user agent

        Returns:
            Conversation dictionary
        """
        conversation, _ = self.db.get_or_create_conversation(
            session_id,
            user_id=user_id,
            user_ip=user_ip,
            user_agent=user_agent,
        )
        return conversation

    def get(self, conversation_id: int) -> Optional[Dict[str, Any]]:
        return self.db.get_conversation(conversation_id)

    def get_by_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_conversation_by_session(session_id)

    def add_message(
        self,
        conversation_id: int,
        message_type: str,
        content: str,
        sources: Optional[List[Dict[str, Any]]] = None,
    ) -> int:
        """Add a message to a conversation.

        Args:
            conversation_id: The conversation to add the message to
            message_type: 'user', 'assistant' or 'system'
            content: The message content
            sources: Optional list of {filename, page, relevance} used for the answer

        Returns:
            ID of the inserted message
        """
        message_id = self.db.add_message(conversation_id, message_type, content, sources)
        logger.info(
            "conversation_message_added",
            conversation_id=conversation_id,
            message_type=message_type,
            message_id=message_id,
        )
        return message_id

    def get_recent_messages(
        self, conversation_id: int, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Get recent messages in chronological order.

        Args:
            conversation_id: The conversation to read
            limit: Maximum number of messages (defaults to history_limit)
        """
        limit = self.history_limit if limit is None else limit
        return self.db.get_recent_messages(conversation_id, limit)

    def get_all_messages(self, conversation_id: int) -> List[Dict[str, Any]]:
        return self.db.get_messages(conversation_id)

    def format_history(self, conversation_id: int) -> List[Dict[str, str]]:
        """Format recent history as chat-completion messages.

        Args:
            conversation_id: The conversation to format history for

        Returns:
            List of message dictionaries with 'role' and 'content' keys
        """
        messages = self.get_recent_messages(conversation_id)

        # Only role and content; sources stay out of the prompt
        history = [
            {"role": msg["message_type"], "content": msg["content"]}
            for msg in messages
        ]

        logger.debug(
            "conversation_history_formatted",
            conversation_id=conversation_id,
            message_count=len(history),
        )
        return history

    def end_conversation(self, conversation_id: int) -> bool:
        """Mark a conversation as ended.

        Returns:
            True if the conversation exists
        """
        updated = self.db.set_conversation_status(conversation_id, "ended")
        if updated:
            logger.info("conversation_ended", conversation_id=conversation_id)
        return updated

    def archive_inactive(self, older_than: timedelta) -> int:
        """Archive conversations idle for longer than the given period.

        Returns:
            Number of conversations archived
        """
        cutoff = (datetime.now(timezone.utc) - older_than).isoformat(timespec="microseconds")
        count = self.db.archive_conversations_before(cutoff)
        logger.info("conversations_archived", count=count, cutoff=cutoff)
        return count
