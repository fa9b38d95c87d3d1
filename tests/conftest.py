"""Shared fixtures: an in-memory gateway standing in for Supabase."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from models.conversation import Conversation, Message, Participant
from services.chat_gateway import ChatGatewayError, GatewayError

LOCAL_USER = "owner-local"
REMOTE_USER = "owner-remote"


def participant(dog_id: str, owner_id: str, dog_name: Optional[str] = None) -> Participant:
    return Participant(
        dog_id=dog_id,
        dog_name=dog_name or dog_id.title(),
        owner_id=owner_id,
        dog_photo=f"dog_{dog_id}",
        owner_name=f"Owner of {dog_id}",
    )


def make_conversation(conversation_id: str, minutes_ago: int, messages=None) -> Conversation:
    ts = datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    return Conversation(
        id=conversation_id,
        participant_a=participant(f"dog-{conversation_id}-a", LOCAL_USER),
        participant_b=participant(f"dog-{conversation_id}-b", REMOTE_USER),
        created_at=ts,
        last_message_at=ts,
        messages=messages,
    )


def insert_payload(message_id: str, conversation_id: str, sender_id: str = REMOTE_USER, text: str = "woof") -> dict:
    return {
        "data": {
            "schema": "public",
            "table": "messages",
            "type": "INSERT",
            "record": {
                "id": message_id,
                "conversation_id": conversation_id,
                "sender_id": sender_id,
                "text": text,
                "created_at": datetime.now(timezone.utc).isoformat(),
            },
        },
        "ids": [1],
    }


class FakeChannel:
    def __init__(self, name: str, conversation_id: str, on_insert, on_status):
        self.name = name
        self.conversation_id = conversation_id
        self.on_insert = on_insert
        self.on_status = on_status


class FakeGateway:
    """
    In-memory gateway. ``fail`` holds operation names that should raise;
    ``subscribe_script`` holds the status each subscribe attempt acknowledges
    with (``None`` means never acknowledge); ``subscribe_gate`` holds an
    opened channel back from the caller until the event is set.
    """

    def __init__(self):
        self.conversations: Dict[str, Conversation] = {}
        self.messages: List[Message] = []
        self.fail = set()
        self.conflict_winner: Optional[Conversation] = None
        self.create_calls = 0
        self.deleted: List[str] = []
        self.touched: List[str] = []
        self.subscribe_script: List[Optional[str]] = []
        self.channels: List[FakeChannel] = []
        self.removed: List[FakeChannel] = []
        self.subscribe_gate: Optional[asyncio.Event] = None

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail:
            raise ChatGatewayError(GatewayError(
                code="NETWORK_ERROR",
                message=f"{operation} failed",
                details={"operation": operation}
            ))

    async def find_conversation(self, dog_x, dog_y):
        await asyncio.sleep(0)
        self._maybe_fail("find_conversation")
        for conversation in self.conversations.values():
            if conversation.involves(dog_x, dog_y):
                return dataclasses.replace(conversation, messages=None)
        return None

    async def list_conversations(self, owner_id):
        self._maybe_fail("list_conversations")
        return [
            dataclasses.replace(c, messages=None)
            for c in self.conversations.values()
            if owner_id in (c.participant_a.owner_id, c.participant_b.owner_id)
        ]

    async def create_conversation(self, conversation):
        self.create_calls += 1
        await asyncio.sleep(0)
        self._maybe_fail("create_conversation")
        if self.conflict_winner is not None:
            self.conversations[self.conflict_winner.id] = self.conflict_winner
            raise ChatGatewayError(GatewayError(code="CONFLICT", message="duplicate key", details={}))
        self.conversations[conversation.id] = dataclasses.replace(conversation, messages=None)

    async def touch_conversation(self, conversation_id, last_message_at):
        self._maybe_fail("touch_conversation")
        self.touched.append(conversation_id)

    async def delete_conversation(self, conversation_id):
        await asyncio.sleep(0)
        self._maybe_fail("delete_conversation")
        self.conversations.pop(conversation_id, None)
        self.deleted.append(conversation_id)

    async def fetch_messages(self, conversation_id, local_user_id):
        self._maybe_fail("fetch_messages")
        return [
            dataclasses.replace(m, is_from_current_user=m.sender_id == local_user_id)
            for m in sorted(self.messages, key=lambda m: m.timestamp)
            if m.conversation_id == conversation_id
        ]

    async def insert_message(self, message):
        await asyncio.sleep(0)
        self._maybe_fail("insert_message")
        self.messages.append(dataclasses.replace(message))

    async def subscribe_to_inserts(self, channel_name, conversation_id, on_insert, on_status):
        self._maybe_fail("subscribe")
        channel = FakeChannel(channel_name, conversation_id, on_insert, on_status)
        self.channels.append(channel)
        if self.subscribe_gate is not None:
            await self.subscribe_gate.wait()
        status = self.subscribe_script.pop(0) if self.subscribe_script else "SUBSCRIBED"
        if status is not None:
            asyncio.get_running_loop().call_soon(on_status, status, None)
        return channel

    async def remove_channel(self, channel):
        self.removed.append(channel)


@pytest.fixture
def gateway():
    return FakeGateway()
