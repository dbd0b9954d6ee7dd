import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Protocol, Set

from app.models.user import OnlineUser, UserType
from app.utils.events import DeliveryEvent, MessageSent, NotificationRaised
from app.utils.record_store import RecordStore

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """A live client connection the presence layer can push events to."""

    id: str

    async def send(self, event: str, data: Any) -> None:
        ...


def user_channel(user_id: int, user_type: UserType) -> str:
    return f"{UserType(user_type).value}_{user_id}"


def conversation_channel(conversation_id: int) -> str:
    return f"conversation_{conversation_id}"


class PresenceService:
    """Tracks live connections and fans events out to channels.

    State lives in this process only. Each connection mutates only its own
    entries (connect, authenticate, join, leave, disconnect); delivery only
    reads. Events for a channel nobody is subscribed to are dropped, since the
    message log in the record store is the durable copy.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self._connections: Dict[str, Connection] = {}
        self._users: Dict[str, OnlineUser] = {}
        self._channels: Dict[str, Set[str]] = defaultdict(set)

    # Connection lifecycle

    def connect(self, connection: Connection) -> None:
        self._connections[connection.id] = connection
        logger.info(f"Connection opened: {connection.id}")

    def disconnect(self, connection: Connection) -> None:
        self._connections.pop(connection.id, None)
        user = self._users.pop(connection.id, None)
        self._leave_all(connection.id)
        if user:
            logger.info(f"User disconnected: {user.user_type.value} {user.user_id} ({connection.id})")
        else:
            logger.info(f"Connection closed: {connection.id}")

    async def authenticate(self, connection: Connection, user_id: Any, user_type: Any) -> bool:
        try:
            user_type = UserType(user_type)
            user_id = int(user_id)
        except (TypeError, ValueError):
            await connection.send("auth_error", {"message": "userId and userType are required"})
            return False

        try:
            record = await self.store.find_unique(user_type.collection, user_id)
        except Exception:
            logger.exception(f"Authentication lookup failed for {user_type.value} {user_id}")
            await connection.send("auth_error", {"message": "Authentication failed"})
            return False

        if record is None:
            label = "Service provider" if user_type is UserType.PROVIDER else "Consumer"
            await connection.send("auth_error", {"message": f"{label} not found"})
            return False

        previous = self._users.get(connection.id)
        if previous and (previous.user_id, previous.user_type) != (user_id, user_type):
            # Switching identity drops every channel granted to the old one
            self._leave_all(connection.id)

        self._users[connection.id] = OnlineUser(
            user_id=user_id, user_type=user_type, connection_id=connection.id
        )
        self._channels[user_channel(user_id, user_type)].add(connection.id)
        logger.info(f"User authenticated: {user_type.value} {user_id} ({connection.id})")
        await connection.send(
            "authenticated",
            {"message": "Successfully authenticated", "userId": user_id, "userType": user_type.value},
        )
        return True

    async def join_conversation(self, connection: Connection, conversation_id: Any) -> bool:
        user = self._users.get(connection.id)
        if user is None:
            await connection.send(
                "join_error",
                {"conversationId": conversation_id, "message": "Authenticate before joining a conversation"},
            )
            return False

        try:
            conversation_id = int(conversation_id)
        except (TypeError, ValueError):
            await connection.send("join_error", {"conversationId": conversation_id, "message": "Invalid conversation ID"})
            return False

        conversation = await self.store.find_unique("conversations", conversation_id)
        if conversation is None:
            await connection.send("join_error", {"conversationId": conversation_id, "message": "Conversation not found"})
            return False

        participant_id = (
            conversation["provider_id"] if user.user_type is UserType.PROVIDER else conversation["consumer_id"]
        )
        if participant_id != user.user_id:
            await connection.send(
                "join_error",
                {"conversationId": conversation_id, "message": "Not a participant in this conversation"},
            )
            return False

        self._channels[conversation_channel(conversation_id)].add(connection.id)
        logger.info(f"{user.user_type.value} {user.user_id} joined conversation {conversation_id}")
        await connection.send("joined", {"conversationId": conversation_id})
        return True

    def leave_conversation(self, connection: Connection, conversation_id: Any) -> None:
        try:
            channel = conversation_channel(int(conversation_id))
        except (TypeError, ValueError):
            return
        self._discard(channel, connection.id)
        logger.info(f"Connection {connection.id} left conversation {conversation_id}")

    def _discard(self, channel: str, connection_id: str) -> None:
        members = self._channels.get(channel)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._channels[channel]

    def _leave_all(self, connection_id: str) -> None:
        for channel in list(self._channels):
            self._discard(channel, connection_id)

    # Delivery

    async def _emit(self, channel: str, event: str, data: Any) -> int:
        delivered = 0
        for connection_id in list(self._channels.get(channel, ())):
            connection = self._connections.get(connection_id)
            if connection is None:
                continue
            try:
                await connection.send(event, data)
                delivered += 1
            except Exception as e:
                logger.warning(f"Failed to deliver {event} to connection {connection_id}: {e}")
        return delivered

    async def send_to_conversation(self, conversation_id: int, payload: Dict[str, Any]) -> int:
        return await self._emit(conversation_channel(conversation_id), "new_message", payload)

    async def send_to_user(self, user_id: int, user_type: UserType, payload: Dict[str, Any]) -> int:
        return await self._emit(user_channel(user_id, user_type), "new_message", payload)

    async def notify(self, user_id: int, user_type: UserType, payload: Dict[str, Any]) -> int:
        return await self._emit(user_channel(user_id, user_type), "notification", payload)

    async def publish(self, event: DeliveryEvent) -> None:
        if isinstance(event, MessageSent):
            await self.send_to_conversation(event.conversation_id, {"message": event.message})
        elif isinstance(event, NotificationRaised):
            await self.notify(event.recipient_id, event.recipient_type, event.payload)
        else:
            raise TypeError(f"Unsupported delivery event: {event!r}")

    # Queries

    def is_online(self, user_id: int, user_type: UserType) -> bool:
        user_type = UserType(user_type)
        return any(u.user_id == user_id and u.user_type is user_type for u in self._users.values())

    def list_online(self) -> List[OnlineUser]:
        return list(self._users.values())

    def user_for(self, connection: Connection) -> Optional[OnlineUser]:
        return self._users.get(connection.id)
