
import asyncio
import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from redis.asyncio import Redis
from redis.exceptions import WatchError

from .errors import SessionNotFound
from .models import ConversationMessage, ConversationSession, Role, utcnow

MAX_APPEND_ATTEMPTS = 5


class SessionStore(Protocol):
    """What the chat pipeline needs from the conversation store."""

    async def get_or_create_session(
        self, candidate_id: Optional[str] = None
    ) -> ConversationSession: ...

    async def append_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationMessage: ...

    async def load_recent_messages(
        self, session_id: str, limit: int
    ) -> List[ConversationMessage]: ...

    async def load_messages(self, session_id: str) -> List[ConversationMessage]: ...


def _new_message(
    session_id: str,
    role: Role,
    content: str,
    metadata: Optional[Dict[str, Any]],
    after: Optional[datetime] = None,
) -> ConversationMessage:
    created = utcnow()
    # keep history ordering non-decreasing even if the clock steps back
    if after is not None and created < after:
        created = after
    return ConversationMessage(
        id=str(uuid.uuid4()),
        session_id=session_id,
        role=role,
        content=content,
        metadata=metadata,
        created_at=created,
    )


class RedisContextStore:
    """
    Sessions and their messages in Redis.

    Layout::

        chat:session:<id>            hash   session_id / created_at / last_activity
        chat:session:<id>:messages   list   JSON-encoded ConversationMessage, oldest first

    Both keys share a sliding TTL, refreshed on every turn.
    """

    def __init__(self, redis: Redis, ttl_seconds: int = 30 * 86_400, key_prefix: str = "chat"):
        self.redis = redis
        self.ttl = ttl_seconds
        self.prefix = key_prefix

    def _session_key(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}"

    def _messages_key(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}:messages"

    async def _load_session(self, session_id: str) -> Optional[ConversationSession]:
        raw = await self.redis.hgetall(self._session_key(session_id))
        if not raw:
            return None
        raw = {_decode(k): _decode(v) for k, v in raw.items()}
        return ConversationSession.model_validate(raw)

    async def _touch(self, session: ConversationSession) -> None:
        session_key = self._session_key(session.session_id)
        await self.redis.hset(
            session_key,
            mapping={
                "session_id": session.session_id,
                "created_at": session.created_at.isoformat(),
                "last_activity": session.last_activity.isoformat(),
            },
        )
        await self.redis.expire(session_key, self.ttl)
        await self.redis.expire(self._messages_key(session.session_id), self.ttl)

    async def get_or_create_session(
        self, candidate_id: Optional[str] = None
    ) -> ConversationSession:
        if candidate_id:
            session = await self._load_session(candidate_id)
            if session is not None:
                session = session.model_copy(update={"last_activity": utcnow()})
                await self._touch(session)
                return session

        session = ConversationSession(session_id=str(uuid.uuid4()))
        await self._touch(session)
        return session

    async def append_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationMessage:
        session = await self._load_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        key = self._messages_key(session_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            for attempt in range(MAX_APPEND_ATTEMPTS):
                try:
                    # another append to this session between WATCH and EXEC aborts the push
                    await pipe.watch(key)
                    last = await pipe.lrange(key, -1, -1)
                    after = _parse_message(last[0]).created_at if last else None
                    message = _new_message(session_id, role, content, metadata, after=after)
                    pipe.multi()
                    pipe.rpush(key, message.model_dump_json())
                    await pipe.execute()
                    break
                except WatchError:
                    if attempt == MAX_APPEND_ATTEMPTS - 1:
                        raise

        await self._touch(session.model_copy(update={"last_activity": message.created_at}))
        return message

    async def load_recent_messages(self, session_id: str, limit: int) -> List[ConversationMessage]:
        if limit <= 0:
            return []
        data = await self.redis.lrange(self._messages_key(session_id), -limit, -1)
        return [_parse_message(item) for item in data]

    async def load_messages(self, session_id: str) -> List[ConversationMessage]:
        data = await self.redis.lrange(self._messages_key(session_id), 0, -1)
        return [_parse_message(item) for item in data]


class InMemoryContextStore:
    """Single-process store used for local development and tests."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ConversationSession] = {}
        self._messages: Dict[str, List[ConversationMessage]] = {}
        self._lock = asyncio.Lock()

    async def get_or_create_session(
        self, candidate_id: Optional[str] = None
    ) -> ConversationSession:
        async with self._lock:
            if candidate_id and candidate_id in self._sessions:
                session = self._sessions[candidate_id].model_copy(
                    update={"last_activity": utcnow()}
                )
            else:
                session = ConversationSession(session_id=str(uuid.uuid4()))
                self._messages[session.session_id] = []
            self._sessions[session.session_id] = session
            return session

    async def append_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationMessage:
        async with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFound(session_id)
            history = self._messages[session_id]
            after = history[-1].created_at if history else None
            message = _new_message(session_id, role, content, metadata, after=after)
            history.append(message)
            self._sessions[session_id] = self._sessions[session_id].model_copy(
                update={"last_activity": message.created_at}
            )
            return message

    async def load_recent_messages(self, session_id: str, limit: int) -> List[ConversationMessage]:
        if limit <= 0:
            return []
        return list(self._messages.get(session_id, [])[-limit:])

    async def load_messages(self, session_id: str) -> List[ConversationMessage]:
        return list(self._messages.get(session_id, []))


def _decode(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else value


def _parse_message(raw: Any) -> ConversationMessage:
    return ConversationMessage.model_validate(json.loads(_decode(raw)))
