"""Conversation data models."""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, List, Optional

_FRACTION = re.compile(r"\.(\d+)")


class SyncStatus(str, Enum):
    """Where a locally applied change stands with the backend."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class Participant:
    """One side of a conversation: a dog and the person who owns it."""
    dog_id: str
    dog_name: str
    owner_id: str
    dog_photo: str = ""
    owner_name: str = "Dog Owner"


@dataclass
class Message:
    """Represents an individual message in a conversation."""
    id: str
    conversation_id: str
    sender_id: str
    text: str
    is_from_current_user: bool
    timestamp: datetime
    status: SyncStatus = SyncStatus.CONFIRMED


@dataclass
class Conversation:
    """
    A single thread of messages between two dogs.

    Participants are kept in canonical order (``participant_a.dog_id`` sorts
    first) so the same pair always maps to the same row shape. ``messages`` is
    ``None`` until history has been loaded or a message has arrived.
    """
    id: str
    participant_a: Participant
    participant_b: Participant
    created_at: datetime
    last_message_at: datetime
    messages: Optional[List[Message]] = None
    status: SyncStatus = SyncStatus.CONFIRMED

    def __post_init__(self):
        if self.participant_b.dog_id < self.participant_a.dog_id:
            self.participant_a, self.participant_b = self.participant_b, self.participant_a

    @property
    def pair_key(self) -> FrozenSet[str]:
        return pair_key(self.participant_a.dog_id, self.participant_b.dog_id)

    @property
    def last_message_text(self) -> str:
        if not self.messages:
            return ""
        return self.messages[-1].text

    def involves(self, dog_x: str, dog_y: str) -> bool:
        """True if this conversation is between the two dogs, in either order."""
        return self.pair_key == pair_key(dog_x, dog_y)

    def other_participant(self, identity: str) -> Participant:
        """Return the side that does not match ``identity`` (a dog id or owner id)."""
        if identity in (self.participant_a.dog_id, self.participant_a.owner_id):
            return self.participant_b
        return self.participant_a


def pair_key(dog_x: str, dog_y: str) -> FrozenSet[str]:
    """Unordered identity of a dog pair."""
    return frozenset((dog_x, dog_y))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime:
    """
    Parse a timestamp coming back from the backend.

    PostgREST emits ISO-8601 with a variable number of fractional digits and
    sometimes a trailing ``Z``; ``fromisoformat`` only accepts up to six
    digits on older interpreters, so the fraction is normalized first.
    Naive values are taken as UTC.

    Args:
        value: ISO-8601 string or an existing datetime

    Returns:
        Timezone-aware datetime
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime for the wire."""
    return value.astimezone(timezone.utc).isoformat()


def sort_messages(messages: List[Message]) -> None:
    """Order messages by timestamp ascending, in place."""
    messages.sort(key=lambda m: m.timestamp)


def sort_conversations(conversations: List[Conversation]) -> None:
    """Order conversations by most recent message first, in place."""
    conversations.sort(key=lambda c: c.last_message_at, reverse=True)
