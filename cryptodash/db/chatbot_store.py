"""Chatbot store: chatbots, knowledge files, chat sessions and messages.

Ownership chain::

    User ─┬─ Chatbot ─┬─ ChatbotFile
          │           └─ ChatSession ── ChatMessage
          └───────────────┘

Deleting a chatbot removes its files, its sessions, and the messages of
those sessions in one unit of work. Deleting a session removes its
messages. A session's message_count always equals the number of
messages stored under it.

Chatbot status is whatever the caller last asserted; this store runs no
timers and knows nothing of "processing -> active" transitions.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from cryptodash.db.base import BaseStore
from cryptodash.db.schema import (
    CHAT_MESSAGES,
    CHAT_SESSIONS,
    CHATBOT_FILES,
    CHATBOTS,
    USERS,
)
from cryptodash.errors import ConflictError, NotFoundError, ValidationError
from cryptodash.models import (
    Chatbot,
    ChatbotFile,
    ChatbotStatus,
    ChatMessage,
    ChatSession,
    FileStatus,
    MessageRole,
    Platform,
    parse_enum,
)

logger = logging.getLogger(__name__)

_CHATBOT_FIELDS = frozenset(
    {
        "name",
        "description",
        "platform",
        "status",
        "knowledge_text",
        "deployment_url",
        "user_count",
        "message_count",
    }
)

_CHATBOT_COUNTERS = frozenset({"user_count", "message_count"})
_CHATBOT_TEXT_FIELDS = frozenset({"description", "knowledge_text", "deployment_url"})

_FILE_REQUIRED = ("chatbot_id", "file_name", "file_type", "file_size")
_FILE_FIELDS = frozenset(
    {*_FILE_REQUIRED, "extracted_content", "processing_status", "error_message"}
)

# message_count is maintained by append_message and cannot be set directly
_SESSION_FIELDS = frozenset({"is_active"})


class ChatbotStore(BaseStore):
    """Chatbots and everything hanging off them."""

    # ── chatbots ──

    def list_chatbots(self, user_id: int) -> list[Chatbot]:
        return [Chatbot.from_row(row) for row in self._table(CHATBOTS).find(user_id=user_id)]

    def get_chatbot(self, chatbot_id: int) -> Chatbot | None:
        row = self._table(CHATBOTS).get(chatbot_id)
        return Chatbot.from_row(row) if row else None

    def create_chatbot(  # noqa: PLR0913
        self,
        *,
        user_id: int,
        name: str,
        description: str | None = None,
        platform: Platform | str = Platform.WEB,
        status: ChatbotStatus | str = ChatbotStatus.ACTIVE,
        knowledge_text: str | None = None,
        deployment_url: str | None = None,
    ) -> Chatbot:
        """Create a chatbot with zeroed usage counters.

        Raises:
            NotFoundError: If the user does not exist.
            ValidationError: If the name is blank or platform/status is unknown.

        """
        name = self._require_text(name, "name")
        platform_value = parse_enum(Platform, platform, "platform").value
        status_value = parse_enum(ChatbotStatus, status, "status").value

        with self._engine.transaction():
            self._require(USERS, "User", user_id)
            now = self._now()
            row = self._table(CHATBOTS).insert(
                {
                    "user_id": user_id,
                    "name": name,
                    "description": description,
                    "platform": platform_value,
                    "status": status_value,
                    "knowledge_text": knowledge_text,
                    "deployment_url": deployment_url,
                    "user_count": 0,
                    "message_count": 0,
                    "last_updated": now,
                    "created_at": now,
                }
            )

        logger.info("Created chatbot %d '%s' for user %d", row["id"], name, user_id)
        return Chatbot.from_row(row)

    def update_chatbot(self, chatbot_id: int, **changes: Any) -> Chatbot:
        """Merge fields into a chatbot and refresh last_updated.

        Raises:
            NotFoundError: If the chatbot does not exist.
            ValidationError: If a field is not updatable, an enum value is
                unknown, or a value has the wrong type.

        """
        self._check_fields("chatbot", changes, _CHATBOT_FIELDS)
        if "name" in changes:
            changes["name"] = self._require_text(changes["name"], "name")
        if "platform" in changes:
            changes["platform"] = parse_enum(Platform, changes["platform"], "platform").value
        if "status" in changes:
            changes["status"] = parse_enum(ChatbotStatus, changes["status"], "status").value
        for key in _CHATBOT_COUNTERS & changes.keys():
            self._require_count(changes[key], key)
        for key in _CHATBOT_TEXT_FIELDS & changes.keys():
            self._optional_text(changes[key], key)

        row = self._table(CHATBOTS).update(
            chatbot_id, {**changes, "last_updated": self._now()}
        )
        if row is None:
            raise NotFoundError("Chatbot", chatbot_id)
        return Chatbot.from_row(row)

    def delete_chatbot(self, chatbot_id: int) -> None:
        """Delete a chatbot with its files, sessions, and their messages.

        Deleting an unknown id is a no-op.
        """
        with self._engine.transaction():
            session_ids = [
                row["id"]
                for row in self._table(CHAT_SESSIONS).find(chatbot_id=chatbot_id)
            ]
            n_messages = self._table(CHAT_MESSAGES).delete_where(session_id=session_ids)
            n_sessions = self._table(CHAT_SESSIONS).delete_where(chatbot_id=chatbot_id)
            n_files = self._table(CHATBOT_FILES).delete_where(chatbot_id=chatbot_id)
            existed = self._table(CHATBOTS).delete(chatbot_id)

        if existed:
            logger.info(
                "Deleted chatbot %d (%d files, %d sessions, %d messages)",
                chatbot_id,
                n_files,
                n_sessions,
                n_messages,
            )

    # ── files ──

    def list_files(self, chatbot_id: int) -> list[ChatbotFile]:
        return [
            ChatbotFile.from_row(row)
            for row in self._table(CHATBOT_FILES).find(chatbot_id=chatbot_id)
        ]

    def append_files(self, files: Iterable[Mapping[str, Any]]) -> list[ChatbotFile]:
        """Store metadata for uploaded knowledge files.

        Each mapping needs chatbot_id, file_name, file_type and file_size;
        processing_status defaults to pending. All rows are stored or none.

        Raises:
            NotFoundError: If a referenced chatbot does not exist.
            ValidationError: If a file mapping is malformed.

        """
        values = [self._file_values(f) for f in files]
        table = self._table(CHATBOT_FILES)
        with self._engine.transaction():
            for chatbot_id in sorted({v["chatbot_id"] for v in values}):
                self._require(CHATBOTS, "Chatbot", chatbot_id)
            rows = [table.insert(v) for v in values]

        if rows:
            logger.info("Stored %d chatbot file(s)", len(rows))
        return [ChatbotFile.from_row(row) for row in rows]

    def _file_values(self, file: Mapping[str, Any]) -> dict[str, Any]:
        unknown = sorted(set(file) - _FILE_FIELDS)
        if unknown:
            msg = f"Unknown chatbot file field(s): {unknown}"
            raise ValidationError(msg)
        missing = [key for key in _FILE_REQUIRED if file.get(key) is None]
        if missing:
            msg = f"Chatbot file is missing required field(s): {missing}"
            raise ValidationError(msg)
        try:
            file_size = int(file["file_size"])
        except (TypeError, ValueError) as exc:
            msg = f"file_size must be an integer, got {file['file_size']!r}"
            raise ValidationError(msg) from exc
        if file_size < 0:
            msg = f"file_size must be >= 0, got {file_size}"
            raise ValidationError(msg)

        status = file.get("processing_status")
        if status is None:
            status = FileStatus.PENDING
        return {
            "chatbot_id": file["chatbot_id"],
            "file_name": self._require_text(file["file_name"], "file_name"),
            "file_type": self._require_text(file["file_type"], "file_type"),
            "file_size": file_size,
            "extracted_content": file.get("extracted_content"),
            "processing_status": parse_enum(FileStatus, status, "processing_status").value,
            "error_message": file.get("error_message"),
            "upload_date": self._now(),
        }

    # ── sessions ──

    def create_session(
        self,
        *,
        chatbot_id: int,
        user_id: int,
        session_id: str,
        is_active: bool = True,
    ) -> ChatSession:
        """Open a conversation thread between a user and a chatbot.

        Args:
            chatbot_id: Chatbot being talked to.
            user_id: User talking.
            session_id: External session token, unique across all sessions.
            is_active: Whether the thread accepts new turns.

        Raises:
            NotFoundError: If the chatbot or user does not exist.
            ConflictError: If the session token is already in use.
            ValidationError: If the token is blank or is_active is not a boolean.

        """
        session_id = self._require_text(session_id, "session_id")
        is_active = self._require_bool(is_active, "is_active")
        sessions = self._table(CHAT_SESSIONS)
        with self._engine.transaction():
            self._require(CHATBOTS, "Chatbot", chatbot_id)
            self._require(USERS, "User", user_id)
            if sessions.count(session_id=session_id):
                msg = f"Session token '{session_id}' is already in use"
                raise ConflictError(msg)

            now = self._now()
            row = sessions.insert(
                {
                    "chatbot_id": chatbot_id,
                    "user_id": user_id,
                    "session_id": session_id,
                    "started_at": now,
                    "last_activity": now,
                    "message_count": 0,
                    "is_active": is_active,
                }
            )

        logger.info("Opened chat session %d on chatbot %d", row["id"], chatbot_id)
        return ChatSession.from_row(row)

    def get_session(self, session_pk: int) -> ChatSession | None:
        row = self._table(CHAT_SESSIONS).get(session_pk)
        return ChatSession.from_row(row) if row else None

    def get_session_by_token(self, session_id: str) -> ChatSession | None:
        rows = self._table(CHAT_SESSIONS).find(session_id=session_id)
        return ChatSession.from_row(rows[0]) if rows else None

    def update_session(self, session_pk: int, **changes: Any) -> ChatSession:
        """Merge fields into a session and refresh last_activity.

        Raises:
            NotFoundError: If the session does not exist.
            ValidationError: If a field other than is_active is given, or
                is_active is not a boolean.

        """
        self._check_fields("chat session", changes, _SESSION_FIELDS)
        if "is_active" in changes:
            self._require_bool(changes["is_active"], "is_active")
        row = self._table(CHAT_SESSIONS).update(
            session_pk, {**changes, "last_activity": self._now()}
        )
        if row is None:
            raise NotFoundError("Chat session", session_pk)
        return ChatSession.from_row(row)

    def sessions_for_chatbot(self, chatbot_id: int) -> list[ChatSession]:
        return [
            ChatSession.from_row(row)
            for row in self._table(CHAT_SESSIONS).find(chatbot_id=chatbot_id)
        ]

    def delete_session(self, session_pk: int) -> None:
        """Delete a session and its messages. Unknown ids are a no-op."""
        with self._engine.transaction():
            n_messages = self._table(CHAT_MESSAGES).delete_where(session_id=session_pk)
            existed = self._table(CHAT_SESSIONS).delete(session_pk)

        if existed:
            logger.info("Deleted chat session %d (%d messages)", session_pk, n_messages)

    # ── messages ──

    def append_message(  # noqa: PLR0913
        self,
        *,
        session_id: int,
        role: MessageRole | str,
        content: str,
        tokens_used: int | None = None,
        processing_time: int | None = None,
        has_error: bool = False,
        error_message: str | None = None,
    ) -> ChatMessage:
        """Append a turn to a session.

        The role must be exactly "user" or "bot" (or the matching
        ``MessageRole``); it is never lower-cased or defaulted. Content
        is stripped and must not be blank. The session's message_count
        and last_activity and the chatbot's message_count move with the
        insert.

        Args:
            session_id: Primary key of the parent session.
            role: Author of the turn.
            content: Message text.
            tokens_used: LLM tokens spent producing the turn.
            processing_time: Milliseconds spent producing the turn.
            has_error: Whether generation failed.
            error_message: Failure detail when has_error is set.

        Returns:
            A copy of the stored message.

        Raises:
            ValidationError: If role, content, or has_error is invalid.
            NotFoundError: If the session does not exist.

        """
        role_value = parse_enum(MessageRole, role, "role").value
        content = self._require_text(content, "content")
        has_error = self._require_bool(has_error, "has_error")

        sessions = self._table(CHAT_SESSIONS)
        with self._engine.transaction():
            session = self._require(CHAT_SESSIONS, "Chat session", session_id)
            timestamp = self._now()
            row = self._table(CHAT_MESSAGES).insert(
                {
                    "session_id": session_id,
                    "role": role_value,
                    "content": content,
                    "timestamp": timestamp,
                    "tokens_used": tokens_used,
                    "processing_time": processing_time,
                    "has_error": has_error,
                    "error_message": error_message,
                }
            )
            sessions.update(
                session_id,
                {
                    "message_count": self._table(CHAT_MESSAGES).count(session_id=session_id),
                    "last_activity": timestamp,
                },
            )
            chatbot = self._table(CHATBOTS).get(session["chatbot_id"])
            if chatbot is not None:
                self._table(CHATBOTS).update(
                    chatbot["id"], {"message_count": chatbot["message_count"] + 1}
                )

        logger.debug(
            "Appended %s message %d to session %d", role_value, row["id"], session_id
        )
        return ChatMessage.from_row(row)

    def messages_for_session(self, session_id: int) -> list[ChatMessage]:
        """Return a session's messages oldest first, as copies."""
        rows = self._table(CHAT_MESSAGES).find(session_id=session_id)
        rows.sort(key=lambda row: (row["timestamp"], row["id"]))
        logger.debug("Retrieved %d messages for session %d", len(rows), session_id)
        return [ChatMessage.from_row(row) for row in rows]
