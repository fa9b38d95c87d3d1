"""Remote chat gateway over the hosted Supabase table store and change feed."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
from supabase import AsyncClient, PostgrestAPIError, acreate_client

from config import (
    CONVERSATIONS_TABLE,
    MESSAGES_TABLE,
    REALTIME_SCHEMA,
    SUPABASE_KEY,
    SUPABASE_URL,
)
from models.conversation import (
    Conversation,
    Message,
    Participant,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


@dataclass
class GatewayError:
    """Structured error from a backend operation."""
    code: str
    message: str
    details: Dict[str, Any]


class ChatGatewayError(Exception):
    """Raised when a single backend attempt fails."""

    def __init__(self, error: GatewayError):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code


def conversation_to_row(conversation: Conversation) -> Dict[str, Any]:
    a, b = conversation.participant_a, conversation.participant_b
    return {
        "id": conversation.id,
        "dog_a_id": a.dog_id,
        "dog_a_name": a.dog_name,
        "dog_a_photo": a.dog_photo,
        "owner_a_id": a.owner_id,
        "owner_a_name": a.owner_name,
        "dog_b_id": b.dog_id,
        "dog_b_name": b.dog_name,
        "dog_b_photo": b.dog_photo,
        "owner_b_id": b.owner_id,
        "owner_b_name": b.owner_name,
        "created_at": format_timestamp(conversation.created_at),
        "last_message_at": format_timestamp(conversation.last_message_at),
    }


def conversation_from_row(row: Dict[str, Any]) -> Conversation:
    """Decode a ``conversations`` row. History is left unloaded."""
    try:
        return Conversation(
            id=str(row["id"]),
            participant_a=Participant(
                dog_id=str(row["dog_a_id"]),
                dog_name=row.get("dog_a_name") or "",
                owner_id=str(row["owner_a_id"]),
                dog_photo=row.get("dog_a_photo") or "",
                owner_name=row.get("owner_a_name") or "Dog Owner",
            ),
            participant_b=Participant(
                dog_id=str(row["dog_b_id"]),
                dog_name=row.get("dog_b_name") or "",
                owner_id=str(row["owner_b_id"]),
                dog_photo=row.get("dog_b_photo") or "",
                owner_name=row.get("owner_b_name") or "Dog Owner",
            ),
            created_at=parse_timestamp(row["created_at"]),
            last_message_at=parse_timestamp(row.get("last_message_at") or row["created_at"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise _decoding_error("conversations", row, e)


def message_to_row(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "text": message.text,
        "created_at": format_timestamp(message.timestamp),
    }


def message_from_row(row: Dict[str, Any], local_user_id: str) -> Message:
    """Decode a ``messages`` row or change-feed record."""
    try:
        sender_id = str(row["sender_id"])
        return Message(
            id=str(row["id"]),
            conversation_id=str(row["conversation_id"]),
            sender_id=sender_id,
            text=row["text"],
            is_from_current_user=sender_id == local_user_id,
            timestamp=parse_timestamp(row["created_at"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise _decoding_error("messages", row, e)


def decode_insert_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Pull the inserted row out of a realtime postgres_changes payload.

    The realtime client nests the row under ``data.record``; older servers
    send ``new`` instead.
    """
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    row = data.get("record") or data.get("new")
    if not isinstance(row, dict):
        raise _decoding_error("realtime", payload, ValueError("payload carries no record"))
    return row


def _decoding_error(source: str, row: Any, exc: Exception) -> ChatGatewayError:
    return ChatGatewayError(GatewayError(
        code="DECODING_ERROR",
        message=f"Failed to decode {source} row: {exc}",
        details={"row": row, "error_type": type(exc).__name__}
    ))


class ChatGateway:
    """
    Translates chat store operations into backend calls.

    One attempt per operation; failures surface as ChatGatewayError and the
    caller decides what to do with them.
    """

    def __init__(
        self,
        client: AsyncClient,
        conversations_table: str = CONVERSATIONS_TABLE,
        messages_table: str = MESSAGES_TABLE,
        schema: str = REALTIME_SCHEMA
    ):
        """
        Args:
            client: Connected async Supabase client
            conversations_table: Name of the conversations table
            messages_table: Name of the messages table
            schema: Postgres schema the change feed watches
        """
        self.client = client
        self.conversations_table = conversations_table
        self.messages_table = messages_table
        self.schema = schema

    @classmethod
    async def connect(
        cls,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY,
        **kwargs
    ) -> "ChatGateway":
        """
        Create the async Supabase client and wrap it.

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")

        client = await acreate_client(supabase_url, supabase_key)
        logger.info("ChatGateway connected to Supabase")
        return cls(client, **kwargs)

    # Conversations

    async def find_conversation(self, dog_x: str, dog_y: str) -> Optional[Conversation]:
        """Look up the conversation for an unordered dog pair."""
        dog_a, dog_b = sorted((dog_x, dog_y))
        query = (
            self.client.table(self.conversations_table)
            .select("*")
            .eq("dog_a_id", dog_a)
            .eq("dog_b_id", dog_b)
            .limit(1)
        )
        rows = await self._execute("find_conversation", query, dog_a_id=dog_a, dog_b_id=dog_b)
        return conversation_from_row(rows[0]) if rows else None

    async def list_conversations(self, owner_id: str) -> List[Conversation]:
        """All conversations the owner takes part in, most recent first."""
        query = (
            self.client.table(self.conversations_table)
            .select("*")
            .or_(f"owner_a_id.eq.{owner_id},owner_b_id.eq.{owner_id}")
            .order("last_message_at", desc=True)
        )
        rows = await self._execute("list_conversations", query, owner_id=owner_id)
        return [conversation_from_row(row) for row in rows]

    async def create_conversation(self, conversation: Conversation) -> None:
        query = self.client.table(self.conversations_table).insert(conversation_to_row(conversation))
        await self._execute("create_conversation", query, conversation_id=conversation.id)
        logger.info(f"Created conversation {conversation.id}", extra={"conversation_id": conversation.id})

    async def touch_conversation(self, conversation_id: str, last_message_at: datetime) -> None:
        query = (
            self.client.table(self.conversations_table)
            .update({"last_message_at": format_timestamp(last_message_at)})
            .eq("id", conversation_id)
        )
        await self._execute("touch_conversation", query, conversation_id=conversation_id)

    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and its messages."""
        messages = self.client.table(self.messages_table).delete().eq("conversation_id", conversation_id)
        await self._execute("delete_messages", messages, conversation_id=conversation_id)

        conversation = self.client.table(self.conversations_table).delete().eq("id", conversation_id)
        await self._execute("delete_conversation", conversation, conversation_id=conversation_id)
        logger.info(f"Deleted conversation {conversation_id}", extra={"conversation_id": conversation_id})

    # Messages

    async def fetch_messages(self, conversation_id: str, local_user_id: str) -> List[Message]:
        query = (
            self.client.table(self.messages_table)
            .select("*")
            .eq("conversation_id", conversation_id)
            .order("created_at", desc=False)
        )
        rows = await self._execute("fetch_messages", query, conversation_id=conversation_id)
        return [message_from_row(row, local_user_id) for row in rows]

    async def insert_message(self, message: Message) -> None:
        query = self.client.table(self.messages_table).insert(message_to_row(message))
        await self._execute(
            "insert_message", query,
            conversation_id=message.conversation_id, message_id=message.id
        )

    # Change feed

    async def subscribe_to_inserts(
        self,
        channel_name: str,
        conversation_id: str,
        on_insert: Callable[[Dict[str, Any]], None],
        on_status: Callable[[str, Optional[Exception]], None]
    ):
        """
        Open a realtime channel delivering message inserts for one conversation.

        Args:
            channel_name: Per-conversation channel name
            conversation_id: Conversation whose inserts are wanted
            on_insert: Called with each raw insert payload
            on_status: Called with the channel status name and optional error

        Returns:
            The realtime channel, to be passed back to remove_channel()
        """
        def _status(state, error=None):
            on_status(getattr(state, "value", str(state)), error)

        try:
            channel = self.client.channel(channel_name)
            channel.on_postgres_changes(
                "INSERT",
                callback=on_insert,
                table=self.messages_table,
                schema=self.schema,
                filter=f"conversation_id=eq.{conversation_id}",
            )
            await channel.subscribe(_status)
            logger.debug(f"Subscribing channel {channel_name}", extra={"channel": channel_name})
            return channel
        except Exception as e:
            raise ChatGatewayError(GatewayError(
                code="SUBSCRIPTION_ERROR",
                message=f"Failed to open channel {channel_name}: {e}",
                details={
                    "channel": channel_name,
                    "conversation_id": conversation_id,
                    "original_error": str(e),
                    "error_type": type(e).__name__
                }
            )) from e

    async def remove_channel(self, channel) -> None:
        try:
            await self.client.remove_channel(channel)
        except Exception as e:
            raise ChatGatewayError(GatewayError(
                code="SUBSCRIPTION_ERROR",
                message=f"Failed to remove channel: {e}",
                details={"original_error": str(e), "error_type": type(e).__name__}
            )) from e

    async def _execute(self, operation: str, query, **context) -> List[Dict[str, Any]]:
        """Run a PostgREST query once, mapping failures to ChatGatewayError."""
        try:
            response = await query.execute()
            return response.data or []

        except PostgrestAPIError as e:
            code = "CONFLICT" if getattr(e, "code", None) == UNIQUE_VIOLATION else "API_ERROR"
            error = GatewayError(
                code=code,
                message=f"{operation} rejected by backend: {getattr(e, 'message', None) or e}",
                details={
                    "operation": operation,
                    "postgres_code": getattr(e, "code", None),
                    "original_error": str(e),
                    **context
                }
            )
            logger.error(
                f"Backend error: operation={operation}, code={error.details['postgres_code']}, error={e}",
                extra={"error_code": code, "conversation_id": context.get("conversation_id")}
            )
            raise ChatGatewayError(error) from e

        except httpx.HTTPError as e:
            error = GatewayError(
                code="NETWORK_ERROR",
                message=f"Network error during {operation}: {e}",
                details={"operation": operation, "original_error": str(e), **context}
            )
            logger.error(
                f"Network error: operation={operation}, error={e}",
                extra={"error_code": error.code, "conversation_id": context.get("conversation_id")}
            )
            raise ChatGatewayError(error) from e

        except Exception as e:
            error = GatewayError(
                code="UNKNOWN_ERROR",
                message=f"Unexpected error during {operation}: {e}",
                details={
                    "operation": operation,
                    "original_error": str(e),
                    "error_type": type(e).__name__,
                    **context
                }
            )
            logger.error(
                f"Unexpected error: operation={operation}, error={e}",
                exc_info=True,
                extra={"error_code": error.code, "conversation_id": context.get("conversation_id")}
            )
            raise ChatGatewayError(error) from e
