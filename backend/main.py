"""Main entry point for the Creamie chat sync API."""
import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL, PORT
from logger import setup_logging
from models.api import (
    BatchDeleteRequest,
    BatchDeleteResponse,
    ConversationModel,
    CreateDogRequest,
    DogModel,
    FindOrCreateRequest,
    LoginRequest,
    MessageModel,
    SendMessageRequest,
    SubscriptionModel,
    UpdateDogRequest,
    UserModel,
)
from models.conversation import Conversation
from models.dog import Location
from services.api_client import APIClient, APIClientError
from services.auth_service import AuthService, AuthenticationError, TokenStore
from services.chat_gateway import ChatGateway
from services.chat_store import ChatStore
from services.dog_profile_service import DogProfileService

# Initialize logging
logger = logging.getLogger(__name__)


async def start_chat_session(app: FastAPI) -> ChatStore:
    """Build the chat store for the signed-in user and load their conversations."""
    await end_chat_session(app)
    user = app.state.auth_service.current_user
    store = ChatStore(app.state.gateway, user.id)
    await store.load()
    app.state.chat_store = store
    logger.info(f"Chat session started for user {user.id}")
    return store


async def end_chat_session(app: FastAPI) -> None:
    store = getattr(app.state, "chat_store", None)
    app.state.chat_store = None
    if store is not None:
        await store.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, tear subscriptions down on shutdown."""
    if LOG_FORMAT == "json":
        setup_logging(LOG_LEVEL)

    logger.info("Initializing Creamie chat sync services...")
    try:
        token_store = TokenStore()
        api_client = APIClient(token_provider=lambda: token_store.token)
        app.state.api_client = api_client
        app.state.auth_service = AuthService(api_client, token_store)
        app.state.dog_service = DogProfileService(api_client)
        app.state.gateway = await ChatGateway.connect()
        app.state.chat_store = None

        if app.state.auth_service.is_authenticated:
            await start_chat_session(app)

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise

    yield

    await end_chat_session(app)
    await app.state.api_client.close()


# Initialize FastAPI app
app = FastAPI(
    title="Creamie Chat Sync",
    description="Conversation store and realtime sync for Creamie dog owners",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_chat_store(request: Request) -> ChatStore:
    store = getattr(request.app.state, "chat_store", None)
    if store is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return store


def get_dog_service(request: Request) -> DogProfileService:
    return request.app.state.dog_service


def _api_error(e: APIClientError) -> HTTPException:
    """Map a REST backend failure onto the response the caller sees."""
    if e.code == "UNAUTHORIZED":
        status_code = 401
    elif e.code == "SERVER_ERROR" and e.error.details.get("status_code") == 404:
        status_code = 404
    else:
        status_code = 502
    return HTTPException(
        status_code=status_code,
        detail={
            "error": {
                "code": e.error.code,
                "message": e.error.message,
                "details": e.error.details
            }
        }
    )


def _require_conversation(store: ChatStore, conversation_id: str) -> Conversation:
    conversation = store.get(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")
    return conversation


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Creamie Chat Sync API"}


@app.get("/health")
async def health(request: Request):
    """Detailed health check."""
    store = getattr(request.app.state, "chat_store", None)
    return {
        "status": "healthy",
        "service": "creamie-chat-sync",
        "version": "1.0.0",
        "authenticated": store is not None
    }


@app.post("/auth/login", response_model=UserModel)
async def login(body: LoginRequest, request: Request, auth: AuthService = Depends(get_auth_service)) -> UserModel:
    try:
        user = await auth.sign_in(body.email, body.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except APIClientError as e:
        raise _api_error(e)

    await start_chat_session(request.app)
    return UserModel(
        id=user.id,
        name=user.name,
        email=user.email,
        phone_number=user.phone_number,
        photos=user.photos
    )


@app.post("/auth/logout")
async def logout(request: Request, auth: AuthService = Depends(get_auth_service)):
    await end_chat_session(request.app)
    auth.sign_out()
    return {"status": "signed_out"}


@app.get("/conversations", response_model=List[ConversationModel])
async def list_conversations(store: ChatStore = Depends(get_chat_store)) -> List[ConversationModel]:
    return [ConversationModel.from_conversation(c) for c in store.conversations]


@app.post("/conversations", response_model=ConversationModel)
async def find_or_create_conversation(
    body: FindOrCreateRequest,
    store: ChatStore = Depends(get_chat_store)
) -> ConversationModel:
    conversation = await store.find_or_create(
        body.from_participant.to_participant(),
        body.to_participant.to_participant()
    )
    if conversation is None:
        raise HTTPException(status_code=502, detail="Could not create conversation")
    return ConversationModel.from_conversation(conversation)


@app.post("/conversations/batch-delete", response_model=BatchDeleteResponse)
async def batch_delete_conversations(
    body: BatchDeleteRequest,
    store: ChatStore = Depends(get_chat_store)
) -> BatchDeleteResponse:
    known = [cid for cid in body.conversation_ids if store.get(cid) is not None]
    rolled_back = await store.delete_many(known)
    return BatchDeleteResponse(
        deleted=[cid for cid in known if cid not in rolled_back],
        rolled_back=rolled_back
    )


@app.delete("/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, store: ChatStore = Depends(get_chat_store)):
    conversation = _require_conversation(store, conversation_id)
    if not await store.delete(conversation):
        raise HTTPException(status_code=409, detail="Delete failed; conversation restored")
    return {"status": "deleted", "conversation_id": conversation_id}


@app.get("/conversations/{conversation_id}/messages", response_model=List[MessageModel])
async def list_messages(conversation_id: str, store: ChatStore = Depends(get_chat_store)) -> List[MessageModel]:
    conversation = _require_conversation(store, conversation_id)
    messages = await store.load_messages(conversation)
    return [MessageModel.from_message(m) for m in messages]


@app.post("/conversations/{conversation_id}/messages", response_model=MessageModel)
async def send_message(
    conversation_id: str,
    body: SendMessageRequest,
    store: ChatStore = Depends(get_chat_store)
) -> MessageModel:
    conversation = _require_conversation(store, conversation_id)
    try:
        message = await store.send(body.text, conversation)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return MessageModel.from_message(message)


@app.post("/conversations/{conversation_id}/watch", response_model=SubscriptionModel)
async def watch_conversation(conversation_id: str, store: ChatStore = Depends(get_chat_store)) -> SubscriptionModel:
    conversation = _require_conversation(store, conversation_id)
    listener = await store.watch(conversation)
    return SubscriptionModel(
        conversation_id=conversation_id,
        channel=listener.channel_name,
        state=listener.state.value
    )


@app.delete("/conversations/{conversation_id}/watch")
async def unwatch_conversation(conversation_id: str, store: ChatStore = Depends(get_chat_store)):
    conversation = _require_conversation(store, conversation_id)
    await store.unwatch(conversation)
    return {"status": "idle", "conversation_id": conversation_id}


@app.get("/dogs/user", response_model=List[DogModel])
async def list_user_dogs(dogs: DogProfileService = Depends(get_dog_service)) -> List[DogModel]:
    try:
        return [DogModel.from_dog(d) for d in await dogs.fetch_user_dogs()]
    except APIClientError as e:
        raise _api_error(e)


@app.get("/dogs/nearby", response_model=List[DogModel])
async def list_nearby_dogs(
    lat: float,
    lng: float,
    radius: float = 5.0,
    dogs: DogProfileService = Depends(get_dog_service)
) -> List[DogModel]:
    try:
        nearby = await dogs.get_nearby_dogs(Location(latitude=lat, longitude=lng), radius)
    except APIClientError as e:
        raise _api_error(e)
    return [DogModel.from_dog(d) for d in nearby]


@app.get("/dogs/{dog_id}", response_model=DogModel)
async def get_dog(dog_id: str, dogs: DogProfileService = Depends(get_dog_service)) -> DogModel:
    try:
        return DogModel.from_dog(await dogs.get_dog(dog_id))
    except APIClientError as e:
        raise _api_error(e)


@app.post("/dogs", response_model=DogModel)
async def create_dog(body: CreateDogRequest, dogs: DogProfileService = Depends(get_dog_service)) -> DogModel:
    try:
        dog = await dogs.create_dog(
            name=body.name,
            breed=body.breed,
            age=body.age,
            location=body.location.to_location(),
            interests=body.interests,
            about_me=body.about_me,
            owner_name=body.owner_name
        )
    except APIClientError as e:
        raise _api_error(e)
    return DogModel.from_dog(dog)


@app.put("/dogs/{dog_id}", response_model=DogModel)
async def update_dog(
    dog_id: str,
    body: UpdateDogRequest,
    dogs: DogProfileService = Depends(get_dog_service)
) -> DogModel:
    changes = body.model_dump(exclude_none=True, exclude={"location"})
    if body.location is not None:
        changes["location"] = body.location.to_location()
    try:
        return DogModel.from_dog(await dogs.update_dog(dog_id, **changes))
    except APIClientError as e:
        raise _api_error(e)


@app.delete("/dogs/{dog_id}")
async def delete_dog(dog_id: str, dogs: DogProfileService = Depends(get_dog_service)):
    try:
        await dogs.delete_dog(dog_id)
    except APIClientError as e:
        raise _api_error(e)
    return {"status": "deleted", "dog_id": dog_id}


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Creamie Chat Sync API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
