"""Chat state store: the session's conversations and messages."""
import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Callable, Dict, FrozenSet, List, Optional

from models.conversation import (
    Conversation,
    Message,
    Participant,
    SyncStatus,
    pair_key,
    sort_conversations,
    sort_messages,
    utcnow,
)
from services.change_feed import ChangeFeedListener, RetryPolicy
from services.chat_gateway import ChatGateway, ChatGatewayError

logger = logging.getLogger(__name__)


class ChatStore:
    """
    Holds the conversation list for one signed-in user and mediates every
    read and write the presentation layer makes.

    Local changes are applied first and tagged ``pending``; the backend
    result then confirms them or rolls them back. All methods are expected to
    run on the same event loop.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        local_user_id: str,
        retry_policy: Optional[RetryPolicy] = None,
        listener_factory: Optional[Callable[[str], ChangeFeedListener]] = None
    ):
        """
        Args:
            gateway: Remote chat gateway
            local_user_id: Id of the signed-in owner; messages they author
                are "from current user"
            retry_policy: Reconnect policy for change feed listeners
            listener_factory: Builds a listener for a conversation id
                (defaults to a ChangeFeedListener feeding ``receive``)
        """
        self.gateway = gateway
        self.local_user_id = local_user_id
        self.retry_policy = retry_policy or RetryPolicy()
        self._listener_factory = listener_factory or self._default_listener

        self._conversations: List[Conversation] = []
        self._listeners: Dict[str, ChangeFeedListener] = {}
        self._pair_locks: Dict[FrozenSet[str], asyncio.Lock] = {}
        self._pair_waiters: Dict[FrozenSet[str], int] = {}

    @property
    def conversations(self) -> List[Conversation]:
        """Snapshot of the conversation list, most recent first."""
        return list(self._conversations)

    def get(self, conversation_id: str) -> Optional[Conversation]:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def find_local(self, dog_x: str, dog_y: str) -> Optional[Conversation]:
        for conversation in self._conversations:
            if conversation.involves(dog_x, dog_y):
                return conversation
        return None

    async def load(self) -> List[Conversation]:
        """
        Replace the local list with the user's conversations from the backend.

        On failure the current list is kept and the error is logged.
        """
        try:
            remote = await self.gateway.list_conversations(self.local_user_id)
        except ChatGatewayError as e:
            logger.error(f"Failed to load conversations: {e}", extra={"error_code": e.code})
            return self.conversations

        held = {c.id: c for c in self._conversations}
        for conversation in remote:
            existing = held.get(conversation.id)
            if existing is not None and existing.messages is not None:
                conversation.messages = existing.messages
        self._conversations = remote
        sort_conversations(self._conversations)
        logger.info(f"Loaded {len(remote)} conversations")
        return self.conversations

    async def load_messages(self, conversation: Conversation) -> List[Message]:
        """Fetch a conversation's history and merge it with what is already held."""
        local = self.get(conversation.id)
        if local is None:
            logger.warning(
                f"load_messages for unknown conversation {conversation.id}",
                extra={"conversation_id": conversation.id}
            )
            return []

        try:
            fetched = await self.gateway.fetch_messages(local.id, self.local_user_id)
        except ChatGatewayError as e:
            logger.error(
                f"Failed to load messages for {local.id}: {e}",
                extra={"conversation_id": local.id, "error_code": e.code}
            )
            return list(local.messages or [])

        merged = {m.id: m for m in fetched}
        # Anything held locally wins: it may be pending or newer than the fetch
        for message in local.messages or []:
            merged[message.id] = message
        local.messages = list(merged.values())
        sort_messages(local.messages)
        if local.messages and local.messages[-1].timestamp > local.last_message_at:
            local.last_message_at = local.messages[-1].timestamp
            sort_conversations(self._conversations)
        return list(local.messages)

    async def find_or_create(
        self,
        from_participant: Participant,
        to_participant: Participant
    ) -> Optional[Conversation]:
        """
        Return the conversation between two dogs, creating it on first contact.

        The new record is persisted before it is added locally. Calls for the
        same pair are serialized within this store; a uniqueness conflict from
        the backend (another client created it first) adopts the existing row.

        Returns:
            The conversation, or None if it could not be created
        """
        existing = self.find_local(from_participant.dog_id, to_participant.dog_id)
        if existing is not None:
            return existing

        key = pair_key(from_participant.dog_id, to_participant.dog_id)
        lock = self._pair_locks.setdefault(key, asyncio.Lock())
        self._pair_waiters[key] = self._pair_waiters.get(key, 0) + 1
        try:
            async with lock:
                return await self._find_or_create_locked(from_participant, to_participant)
        finally:
            self._pair_waiters[key] -= 1
            if not self._pair_waiters[key]:
                del self._pair_waiters[key]
                del self._pair_locks[key]

    async def _find_or_create_locked(
        self,
        from_participant: Participant,
        to_participant: Participant
    ) -> Optional[Conversation]:
        existing = self.find_local(from_participant.dog_id, to_participant.dog_id)
        if existing is not None:
            return existing

        try:
            remote = await self.gateway.find_conversation(from_participant.dog_id, to_participant.dog_id)
            if remote is not None:
                return self._adopt(remote)

            now = utcnow()
            conversation = Conversation(
                id=str(uuid.uuid4()),
                participant_a=from_participant,
                participant_b=to_participant,
                created_at=now,
                last_message_at=now,
                messages=[],
            )
            try:
                await self.gateway.create_conversation(conversation)
            except ChatGatewayError as e:
                if e.code != "CONFLICT":
                    raise
                logger.info(
                    f"Conversation for {from_participant.dog_id}/{to_participant.dog_id} "
                    f"already created elsewhere, adopting it"
                )
                remote = await self.gateway.find_conversation(from_participant.dog_id, to_participant.dog_id)
                if remote is None:
                    raise
                return self._adopt(remote)

            return self._adopt(conversation)

        except ChatGatewayError as e:
            logger.error(
                f"Failed to create conversation between {from_participant.dog_id} "
                f"and {to_participant.dog_id}: {e}",
                extra={"error_code": e.code}
            )
            return None

    async def send(self, text: str, conversation: Conversation) -> Optional[Message]:
        """
        Send a message from the local user.

        The message is appended at once as ``pending`` and the conversation
        moves to the top of the list. When persistence fails the message is
        kept and tagged ``failed``; the failure is logged, not raised.

        Raises:
            ValueError: If text is empty
        """
        if not text or not text.strip():
            raise ValueError("Message text cannot be empty")

        local = self.get(conversation.id)
        if local is None:
            logger.warning(
                f"send to unknown conversation {conversation.id}",
                extra={"conversation_id": conversation.id}
            )
            return None

        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=local.id,
            sender_id=self.local_user_id,
            text=text.strip(),
            is_from_current_user=True,
            timestamp=utcnow(),
            status=SyncStatus.PENDING,
        )
        self._append(local, message, to_top=True)
        await self._persist(local, message)
        return message

    async def resend(self, message: Message, conversation: Conversation) -> Optional[Message]:
        """Retry persisting a ``failed`` message under its original id."""
        local = self.get(conversation.id)
        if local is None:
            return None
        held = next((m for m in local.messages or [] if m.id == message.id), None)
        if held is None or held.status is not SyncStatus.FAILED:
            return held

        held.status = SyncStatus.PENDING
        await self._persist(local, held)
        return held

    def receive(self, message: Message) -> bool:
        """
        Apply a message that arrived from the change feed.

        Returns:
            True if it was added, False if unknown conversation or duplicate
        """
        local = self.get(message.conversation_id)
        if local is None:
            logger.debug(
                f"Ignoring message {message.id} for unknown conversation",
                extra={"conversation_id": message.conversation_id, "message_id": message.id}
            )
            return False

        if any(m.id == message.id for m in local.messages or []):
            return False

        message.status = SyncStatus.CONFIRMED
        self._append(local, message)
        logger.debug(
            f"Received message {message.id}",
            extra={"conversation_id": local.id, "message_id": message.id}
        )
        return True

    async def delete(self, conversation: Conversation) -> bool:
        """
        Delete a conversation: removed locally first, restored if the backend
        delete fails.

        Returns:
            True if deleted, False if rolled back
        """
        index = next((i for i, c in enumerate(self._conversations) if c.id == conversation.id), None)
        if index is None:
            return False

        local = self._conversations.pop(index)
        local.status = SyncStatus.PENDING
        try:
            await self.gateway.delete_conversation(local.id)
        except ChatGatewayError as e:
            logger.error(
                f"Failed to delete conversation {local.id}, restoring it: {e}",
                extra={"conversation_id": local.id, "error_code": e.code}
            )
            local.status = SyncStatus.CONFIRMED
            self._conversations.append(local)
            sort_conversations(self._conversations)
            return False

        await self.unwatch(local)
        return True

    async def delete_many(self, conversation_ids: List[str]) -> List[str]:
        """
        Delete several conversations.

        Returns:
            Ids whose delete failed and was rolled back
        """
        wanted = set(conversation_ids)
        targets = [c for c in self._conversations if c.id in wanted]
        results = await asyncio.gather(*(self.delete(c) for c in targets))
        return [c.id for c, ok in zip(targets, results) if not ok]

    async def watch(self, conversation: Conversation) -> ChangeFeedListener:
        """Subscribe to a conversation's change feed, reusing an existing listener."""
        listener = self._listeners.get(conversation.id)
        if listener is None:
            listener = self._listener_factory(conversation.id)
            self._listeners[conversation.id] = listener
        await listener.subscribe()
        return listener

    async def unwatch(self, conversation: Conversation) -> None:
        listener = self._listeners.pop(conversation.id, None)
        if listener is not None:
            await listener.unsubscribe()

    async def close(self) -> None:
        """Tear down every change feed subscription."""
        listeners, self._listeners = self._listeners, {}
        for listener in listeners.values():
            await listener.unsubscribe()

    def listener_for(self, conversation_id: str) -> Optional[ChangeFeedListener]:
        return self._listeners.get(conversation_id)

    def _append(self, conversation: Conversation, message: Message, to_top: bool = False) -> None:
        """
        Add ``message`` and advance ``last_message_at``.

        With ``to_top`` the conversation is also placed ahead of every other
        one, even when their ``last_message_at`` came from a clock ahead of
        this device.
        """
        if conversation.messages is None:
            conversation.messages = []
        conversation.messages.append(message)
        sort_messages(conversation.messages)
        latest = message.timestamp
        if to_top:
            others = [c.last_message_at for c in self._conversations if c.id != conversation.id]
            if others and max(others) >= latest:
                latest = max(others) + timedelta(microseconds=1)
        if latest > conversation.last_message_at:
            conversation.last_message_at = latest
        sort_conversations(self._conversations)

    def _adopt(self, conversation: Conversation) -> Conversation:
        existing = self.get(conversation.id)
        if existing is not None:
            return existing
        self._conversations.append(conversation)
        sort_conversations(self._conversations)
        return conversation

    async def _persist(self, conversation: Conversation, message: Message) -> None:
        try:
            await self.gateway.insert_message(message)
        except ChatGatewayError as e:
            message.status = SyncStatus.FAILED
            logger.error(
                f"Failed to send message {message.id}: {e}",
                extra={"conversation_id": conversation.id, "message_id": message.id, "error_code": e.code}
            )
            return

        message.status = SyncStatus.CONFIRMED
        try:
            await self.gateway.touch_conversation(conversation.id, conversation.last_message_at)
        except ChatGatewayError as e:
            logger.warning(
                f"Failed to update last_message_at for {conversation.id}: {e}",
                extra={"conversation_id": conversation.id, "error_code": e.code}
            )

    def _default_listener(self, conversation_id: str) -> ChangeFeedListener:
        return ChangeFeedListener(
            self.gateway,
            conversation_id,
            self.local_user_id,
            on_message=self.receive,
            retry_policy=self.retry_policy,
        )
