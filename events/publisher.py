from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
import json
import logging
import os
import time
from typing import Any, Callable

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def _redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def _stream_name() -> str:
    return os.getenv("CLIP_EVENTS_STREAM", "grn.clips")


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ReconnectPolicy:
    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay_s, self.base_delay_s * max(1, attempt))


class ClipEventPublisher:
    """Publishes clip domain events (``clip.uploaded``...) to a Redis stream.

    Connection handling is an explicit state machine:
    disconnected -> connecting -> connected -> disconnected. A connect attempt
    retries at most ``policy.max_attempts`` times with linear backoff capped at
    ``policy.max_delay_s`` and then gives up until the next publish; nothing
    reconnects in the background.
    """

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        stream: str | None = None,
        policy: ReconnectPolicy | None = None,
        maxlen: int = 100_000,
        connect: Callable[[], Any] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        url = redis_url or _redis_url()
        self.stream = stream or _stream_name()
        self.policy = policy or ReconnectPolicy()
        self.maxlen = maxlen
        self._connect = connect or (lambda: Redis.from_url(url))
        self._sleep = sleep
        self._client: Any | None = None
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    def connect(self) -> bool:
        if self._state == ConnectionState.CONNECTED and self._client is not None:
            return True
        self._state = ConnectionState.CONNECTING
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                client = self._connect()
                client.ping()
            except (RedisError, ValueError) as exc:
                # ValueError: malformed REDIS_URL.
                logger.warning(
                    "clip events: connect attempt %d/%d failed: %s",
                    attempt,
                    self.policy.max_attempts,
                    exc,
                )
                if attempt < self.policy.max_attempts:
                    self._sleep(self.policy.delay_for(attempt))
                continue
            self._client = client
            self._state = ConnectionState.CONNECTED
            logger.info("clip events: connected, stream=%s", self.stream)
            return True
        self._disconnect()
        return False

    def publish(self, event: str, message: dict[str, Any]) -> bool:
        if not self.connect():
            logger.error("clip events: dropping %r, broker unavailable", event)
            return False
        fields = {
            "event": event,
            "payload": json.dumps(message, default=str),
            "ts": datetime.now(UTC).isoformat(),
        }
        try:
            self._client.xadd(self.stream, fields, maxlen=self.maxlen, approximate=True)
        except RedisError as exc:
            logger.error("clip events: failed to publish %r: %s", event, exc)
            self._disconnect()
            return False
        logger.info("clip events: published %r", event)
        return True

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except RedisError:
                logger.debug("clip events: error while closing connection", exc_info=True)
        self._disconnect()

    def _disconnect(self) -> None:
        self._client = None
        self._state = ConnectionState.DISCONNECTED
