"""Request/response models for the HTTP surface."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.conversation import Conversation, Message, Participant
from models.dog import Dog, Location


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=1)


class UserModel(BaseModel):
    id: str
    name: str
    email: str
    phone_number: Optional[str] = None
    photos: Optional[List[str]] = None


class ParticipantModel(BaseModel):
    dog_id: str
    dog_name: str
    owner_id: str
    dog_photo: str = ""
    owner_name: str = "Dog Owner"

    def to_participant(self) -> Participant:
        return Participant(
            dog_id=self.dog_id,
            dog_name=self.dog_name,
            owner_id=self.owner_id,
            dog_photo=self.dog_photo,
            owner_name=self.owner_name,
        )

    @classmethod
    def from_participant(cls, participant: Participant) -> "ParticipantModel":
        return cls(
            dog_id=participant.dog_id,
            dog_name=participant.dog_name,
            owner_id=participant.owner_id,
            dog_photo=participant.dog_photo,
            owner_name=participant.owner_name,
        )


class FindOrCreateRequest(BaseModel):
    from_participant: ParticipantModel
    to_participant: ParticipantModel


class SendMessageRequest(BaseModel):
    text: str


class MessageModel(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    text: str
    is_from_current_user: bool
    timestamp: datetime
    status: str

    @classmethod
    def from_message(cls, message: Message) -> "MessageModel":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            text=message.text,
            is_from_current_user=message.is_from_current_user,
            timestamp=message.timestamp,
            status=message.status.value,
        )


class ConversationModel(BaseModel):
    id: str
    participant_a: ParticipantModel
    participant_b: ParticipantModel
    created_at: datetime
    last_message_at: datetime
    last_message_text: str
    status: str

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationModel":
        return cls(
            id=conversation.id,
            participant_a=ParticipantModel.from_participant(conversation.participant_a),
            participant_b=ParticipantModel.from_participant(conversation.participant_b),
            created_at=conversation.created_at,
            last_message_at=conversation.last_message_at,
            last_message_text=conversation.last_message_text,
            status=conversation.status.value,
        )


class BatchDeleteRequest(BaseModel):
    conversation_ids: List[str]


class BatchDeleteResponse(BaseModel):
    deleted: List[str]
    rolled_back: List[str]


class SubscriptionModel(BaseModel):
    conversation_id: str
    channel: str
    state: str


class LocationModel(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    def to_location(self) -> Location:
        return Location(latitude=self.latitude, longitude=self.longitude)


class DogModel(BaseModel):
    id: str
    name: str
    breed: str
    age: int
    location: LocationModel
    interests: List[str] = []
    photos: List[str] = []
    about_me: Optional[str] = None
    owner_name: Optional[str] = None

    @classmethod
    def from_dog(cls, dog: Dog) -> "DogModel":
        return cls(
            id=dog.id,
            name=dog.name,
            breed=dog.breed,
            age=dog.age,
            location=LocationModel(latitude=dog.location.latitude, longitude=dog.location.longitude),
            interests=dog.interests,
            photos=dog.photos,
            about_me=dog.about_me,
            owner_name=dog.owner_name,
        )


class CreateDogRequest(BaseModel):
    name: str
    breed: str
    age: int
    location: LocationModel
    interests: Optional[List[str]] = None
    about_me: Optional[str] = None
    owner_name: Optional[str] = None


class UpdateDogRequest(BaseModel):
    name: Optional[str] = None
    breed: Optional[str] = None
    age: Optional[int] = None
    location: Optional[LocationModel] = None
    interests: Optional[List[str]] = None
    about_me: Optional[str] = None
    owner_name: Optional[str] = None
