"""
Realtime Fan-out Service

Propagates challenge state changes (weigh-ins, chat, moderation, status) to
connected observers.

- SubscriptionRegistry: challenge_id -> open connections subscribed to it
- EventBroadcaster: local best-effort delivery + Redis pub/sub for other processes
- RealtimeConnectionManager: owns the Redis subscription and relays events
  published by other processes, reconnecting with a configurable backoff

Delivery is at-most-once per connection and never raises to the caller.
There is no replay log: observers re-read leaderboard/feed after reconnecting.
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set

from shapeup.core.cache import get_redis_client
from shapeup.core.config import settings
from shapeup.models.realtime import RealtimeEvent
from shapeup.services.logger import logger


class Connection(Protocol):
    """Anything that can push JSON to one observer (e.g. a FastAPI WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


def channel_for_challenge(challenge_id: str, prefix: Optional[str] = None) -> str:
    """Return Redis channel name for a challenge."""
    return f"{prefix or settings.REALTIME_CHANNEL_PREFIX}{challenge_id}"


class SubscriptionRegistry:
    """Tracks which connections observe which challenges."""

    def __init__(self) -> None:
        self._topics: Dict[str, Set[Connection]] = {}
        self._all: Set[Connection] = set()

    def subscribe(self, connection: Connection, challenge_id: str) -> None:
        self._topics.setdefault(challenge_id, set()).add(connection)

    def unsubscribe(self, connection: Connection, challenge_id: str) -> None:
        observers = self._topics.get(challenge_id)
        if not observers:
            return
        observers.discard(connection)
        if not observers:
            del self._topics[challenge_id]

    def subscribe_all(self, connection: Connection) -> None:
        """Observe every challenge (admin dashboards)."""
        self._all.add(connection)

    def remove(self, connection: Connection) -> None:
        """Drop a connection from every topic, e.g. on disconnect."""
        self._all.discard(connection)
        for challenge_id in list(self._topics):
            self.unsubscribe(connection, challenge_id)

    def subscribers_for(self, challenge_id: str) -> Set[Connection]:
        return set(self._topics.get(challenge_id, set())) | self._all

    def topics_for(self, connection: Connection) -> List[str]:
        return sorted(
            challenge_id
            for challenge_id, observers in self._topics.items()
            if connection in observers
        )

    @property
    def connection_count(self) -> int:
        connections: Set[Connection] = set(self._all)
        for observers in self._topics.values():
            connections |= observers
        return len(connections)


class EventBroadcaster:
    """Publishes events to local subscribers and to other processes via Redis."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        redis_client: Any = None,
        channel_prefix: Optional[str] = None,
        instance_id: Optional[str] = None,
        send_timeout: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self._redis = redis_client
        self.channel_prefix = channel_prefix or settings.REALTIME_CHANNEL_PREFIX
        self.instance_id = instance_id or uuid.uuid4().hex
        self.send_timeout = (
            settings.REALTIME_SEND_TIMEOUT_SECONDS if send_timeout is None else send_timeout
        )

    def _redis_client(self):
        if self._redis is not None:
            return self._redis
        return get_redis_client()

    async def publish(self, event: RealtimeEvent) -> int:
        """Fire-and-forget publish. Returns the number of local deliveries."""
        delivered = await self.deliver_local(event)
        self._publish_remote(event)
        return delivered

    async def _send(self, connection: Connection, message: Dict[str, Any]) -> None:
        await asyncio.wait_for(connection.send_json(message), timeout=self.send_timeout)

    async def deliver_local(self, event: RealtimeEvent) -> int:
        """
        Send to every matching observer at once. A send that fails or takes
        longer than `send_timeout` drops that observer; the others are unaffected.
        """
        message = event.model_dump(mode="json")
        connections = list(self.registry.subscribers_for(event.challenge_id))
        if not connections:
            return 0

        results = await asyncio.gather(
            *(self._send(connection, message) for connection in connections),
            return_exceptions=True,
        )

        delivered = 0
        for connection, result in zip(connections, results):
            if not isinstance(result, BaseException):
                delivered += 1
                continue
            reason = "timed out" if isinstance(result, asyncio.TimeoutError) else str(result)
            # Dead or stalled socket: forget it, the client re-reads state on reconnect
            logger.warning(
                f"[Realtime] Dropping connection after failed send: {reason}",
                {"challenge_id": event.challenge_id, "kind": event.kind},
            )
            self.registry.remove(connection)
        return delivered

    def _publish_remote(self, event: RealtimeEvent) -> bool:
        try:
            redis = self._redis_client()
            if not redis or not hasattr(redis, "publish"):
                return False
            envelope = json.dumps(
                {"origin": self.instance_id, "event": event.model_dump(mode="json")}
            )
            redis.publish(
                channel_for_challenge(event.challenge_id, self.channel_prefix), envelope
            )
            return True
        except Exception as e:
            logger.warning(f"[Realtime] Failed to publish event to Redis: {e}")
            return False


@dataclass
class ReconnectPolicy:
    max_attempts: int = 10
    backoff_seconds: List[float] = field(default_factory=lambda: [1.0, 2.0, 5.0])

    @classmethod
    def from_settings(cls) -> "ReconnectPolicy":
        return cls(
            max_attempts=settings.REALTIME_RECONNECT_MAX_ATTEMPTS,
            backoff_seconds=settings.realtime_backoff_schedule,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before reconnect attempt number `attempt` (1-based)."""
        if not self.backoff_seconds:
            return 0.0
        index = min(max(attempt, 1), len(self.backoff_seconds)) - 1
        return self.backoff_seconds[index]


def _default_client_factory():
    import redis.asyncio as aioredis

    return aioredis.from_url(settings.redis_connection_url)


class RealtimeConnectionManager:
    """
    Relays events published by other API processes to this process's
    subscribers. Envelopes carrying our own instance id are skipped, local
    subscribers already got those from EventBroadcaster.publish.
    """

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        policy: Optional[ReconnectPolicy] = None,
        client_factory: Optional[Callable[[], Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.broadcaster = broadcaster
        self.policy = policy or ReconnectPolicy.from_settings()
        self._client_factory = client_factory or _default_client_factory
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self.failed_attempts = 0
        self.connected = False

    @property
    def pattern(self) -> str:
        return f"{self.broadcaster.channel_prefix}*"

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.connected = False

    async def run(self) -> None:
        while not self._stopping:
            try:
                await self._listen()
                if self._stopping:
                    break
                raise ConnectionError("Redis subscription closed")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.connected = False
                self.failed_attempts += 1
                if self.failed_attempts > self.policy.max_attempts:
                    logger.error(
                        f"[Realtime] Giving up on Redis relay after {self.policy.max_attempts} attempts: {e}"
                    )
                    return
                delay = self.policy.delay_for(self.failed_attempts)
                logger.warning(
                    f"[Realtime] Redis relay lost ({e}), reconnect attempt "
                    f"{self.failed_attempts} in {delay}s"
                )
                await self._sleep(delay)

    async def _listen(self) -> None:
        client = self._client_factory()
        pubsub = None
        try:
            pubsub = client.pubsub()
            await pubsub.psubscribe(self.pattern)
            self.connected = True
            self.failed_attempts = 0
            logger.info(f"[Realtime] Subscribed to {self.pattern}")
            async for message in pubsub.listen():
                if message.get("type") not in ("message", "pmessage"):
                    continue
                await self.handle_message(message.get("data"))
        finally:
            self.connected = False
            # Each attempt owns its client; close it so reconnects don't pile up pools
            for resource in (pubsub, client):
                if resource is None:
                    continue
                try:
                    await resource.aclose()
                except Exception as e:
                    logger.warning(f"[Realtime] Failed to close Redis relay resource: {e}")

    async def handle_message(self, raw: Any) -> bool:
        """Deliver one relayed envelope locally. Returns True if delivered."""
        try:
            data = raw.decode("utf-8") if isinstance(raw, bytes) else raw
            envelope = json.loads(data)
            if envelope.get("origin") == self.broadcaster.instance_id:
                return False
            event = RealtimeEvent.model_validate(envelope["event"])
        except Exception as e:
            logger.warning(f"[Realtime] Ignoring malformed relay message: {e}")
            return False
        await self.broadcaster.deliver_local(event)
        return True


# Global instances
subscription_registry = SubscriptionRegistry()
event_broadcaster = EventBroadcaster(subscription_registry)
