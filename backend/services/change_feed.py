"""Per-conversation change feed listener."""
import asyncio
import functools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config import (
    SUBSCRIBE_INITIAL_DELAY,
    SUBSCRIBE_MAX_ATTEMPTS,
    SUBSCRIBE_MAX_DELAY,
    SUBSCRIBE_TIMEOUT,
)
from models.conversation import Message
from services.chat_gateway import (
    ChatGateway,
    ChatGatewayError,
    decode_insert_payload,
    message_from_row,
)

logger = logging.getLogger(__name__)


class ListenerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class SubscriptionError(Exception):
    """The backend refused or dropped the channel while connecting."""


@dataclass
class RetryPolicy:
    """
    Reconnect policy for a change feed subscription.

    Attributes:
        max_attempts: Connect attempts before giving up (per connect cycle)
        initial_delay: Seconds to wait after the first failed attempt
        max_delay: Upper bound on the wait between attempts
        multiplier: Growth factor applied to the wait after each failure
        subscribe_timeout: Seconds to wait for the SUBSCRIBED acknowledgement
    """
    max_attempts: int = SUBSCRIBE_MAX_ATTEMPTS
    initial_delay: float = SUBSCRIBE_INITIAL_DELAY
    max_delay: float = SUBSCRIBE_MAX_DELAY
    multiplier: float = 2.0
    subscribe_timeout: float = SUBSCRIBE_TIMEOUT

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following failed attempt number ``attempt`` (1-based)."""
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


def channel_name_for(conversation_id: str) -> str:
    return f"conversation-{conversation_id}"


class ChangeFeedListener:
    """
    Watches message inserts for one conversation and forwards other people's
    messages to ``on_message``.

    States move idle -> connecting -> connected. A failed attempt goes to
    failed and is retried under the RetryPolicy; a drop while connected starts
    a new connect cycle. ``unsubscribe`` always returns the listener to idle.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        conversation_id: str,
        local_user_id: str,
        on_message: Callable[[Message], Any],
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.gateway = gateway
        self.conversation_id = conversation_id
        self.local_user_id = local_user_id
        self.channel_name = channel_name_for(conversation_id)
        self.retry_policy = retry_policy or RetryPolicy()
        self._on_message = on_message

        self._state = ListenerState.IDLE
        self._channel = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[int] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._closing = False
        # Bumped per connect attempt and on unsubscribe; statuses from older channels are ignored
        self._generation = 0

    @property
    def state(self) -> ListenerState:
        return self._state

    async def subscribe(self) -> bool:
        """
        Open the subscription, retrying with backoff.

        Concurrent callers share one connect attempt; calling this while
        already connected is a no-op.

        Returns:
            True once connected, False if every attempt failed
        """
        if self._state is ListenerState.CONNECTED:
            return True

        if self._connect_task is None or self._connect_task.done():
            self._loop = asyncio.get_running_loop()
            self._loop_thread = threading.get_ident()
            self._closing = False
            self._connect_task = self._loop.create_task(self._connect())

        try:
            return await asyncio.shield(self._connect_task)
        except asyncio.CancelledError:
            if self._closing:
                return False
            raise

    async def unsubscribe(self) -> None:
        """Tear the subscription down. Safe to call in any state, any number of times."""
        self._closing = True
        self._generation += 1

        task = self._connect_task
        self._connect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass

        await self._drop_channel()
        if self._state is not ListenerState.IDLE:
            logger.info(
                f"Unsubscribed from {self.channel_name}",
                extra={"channel": self.channel_name, "conversation_id": self.conversation_id}
            )
        self._set_state(ListenerState.IDLE)

    async def _connect(self) -> bool:
        policy = self.retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            self._set_state(ListenerState.CONNECTING)
            self._ready = self._loop.create_future()
            self._generation += 1
            try:
                self._channel = await self._open_channel(self._generation)
                await asyncio.wait_for(self._ready, timeout=policy.subscribe_timeout)
                self._set_state(ListenerState.CONNECTED)
                logger.info(
                    f"Subscribed to {self.channel_name} on attempt {attempt}",
                    extra={"channel": self.channel_name, "conversation_id": self.conversation_id}
                )
                return True

            except (ChatGatewayError, SubscriptionError, asyncio.TimeoutError) as e:
                self._set_state(ListenerState.FAILED)
                await self._drop_channel()
                if attempt >= policy.max_attempts:
                    logger.error(
                        f"Giving up on {self.channel_name} after {attempt} attempts: {str(e) or type(e).__name__}",
                        extra={"channel": self.channel_name, "conversation_id": self.conversation_id}
                    )
                    return False

                delay = policy.delay_for(attempt)
                logger.warning(
                    f"Subscribe attempt {attempt}/{policy.max_attempts} for {self.channel_name} failed: "
                    f"{str(e) or type(e).__name__}. Retrying in {delay}s...",
                    extra={"channel": self.channel_name, "conversation_id": self.conversation_id}
                )
                await asyncio.sleep(delay)

        return False

    async def _open_channel(self, generation: int):
        opening = asyncio.ensure_future(self.gateway.subscribe_to_inserts(
            self.channel_name,
            self.conversation_id,
            self._handle_insert,
            functools.partial(self._handle_status, generation),
        ))
        try:
            return await asyncio.shield(opening)
        except asyncio.CancelledError:
            # The gateway call keeps running; remove whatever channel it opens
            opening.add_done_callback(self._discard_opened)
            raise

    def _discard_opened(self, opening: asyncio.Future) -> None:
        if opening.cancelled() or opening.exception() is not None:
            return
        self._loop.create_task(self._remove_channel(opening.result()))

    async def _drop_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is None:
            return
        await self._remove_channel(channel)

    async def _remove_channel(self, channel) -> None:
        try:
            await self.gateway.remove_channel(channel)
        except ChatGatewayError as e:
            logger.warning(
                f"Failed to remove channel {self.channel_name}: {e}",
                extra={"channel": self.channel_name, "error_code": e.code}
            )

    def _set_state(self, state: ListenerState) -> None:
        if state is not self._state:
            logger.debug(
                f"{self.channel_name}: {self._state.value} -> {state.value}",
                extra={"channel": self.channel_name, "state": state.value}
            )
        self._state = state

    # Realtime callbacks

    def _handle_insert(self, payload: Dict[str, Any]) -> None:
        self._dispatch(self._process_insert, payload)

    def _handle_status(self, generation: int, status: str, error: Optional[Exception] = None) -> None:
        self._dispatch(self._process_status, generation, status, error)

    def _dispatch(self, callback, *args) -> None:
        """Run ``callback`` on the loop that owns the store."""
        if self._loop is None or threading.get_ident() == self._loop_thread:
            callback(*args)
        else:
            self._loop.call_soon_threadsafe(callback, *args)

    def _process_insert(self, payload: Dict[str, Any]) -> None:
        try:
            row = decode_insert_payload(payload)
            message = message_from_row(row, self.local_user_id)
        except ChatGatewayError as e:
            logger.warning(
                f"Dropping undecodable insert on {self.channel_name}: {e}",
                extra={"channel": self.channel_name, "error_code": e.code}
            )
            return

        if message.conversation_id != self.conversation_id:
            return
        if message.sender_id == self.local_user_id:
            # Our own send; already applied optimistically
            return

        self._on_message(message)

    def _process_status(self, generation: int, status: str, error: Optional[Exception]) -> None:
        if generation != self._generation:
            logger.debug(
                f"Ignoring {status} from a stale {self.channel_name} channel",
                extra={"channel": self.channel_name, "state": status}
            )
            return

        ready = self._ready
        if status == "SUBSCRIBED":
            if ready is not None and not ready.done():
                ready.set_result(True)
            return

        if status not in ("CHANNEL_ERROR", "TIMED_OUT", "CLOSED"):
            return

        if ready is not None and not ready.done():
            ready.set_exception(SubscriptionError(f"{status}: {error}" if error else status))
            return

        if self._closing or self._state is not ListenerState.CONNECTED:
            return

        logger.warning(
            f"Channel {self.channel_name} dropped ({status}), reconnecting",
            extra={"channel": self.channel_name, "state": status}
        )
        self._set_state(ListenerState.FAILED)
        self._connect_task = self._loop.create_task(self._reconnect())

    async def _reconnect(self) -> bool:
        await self._drop_channel()
        await asyncio.sleep(self.retry_policy.delay_for(1))
        return await self._connect()
