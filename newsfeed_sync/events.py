"""Real-time event channel.

The server pushes three events over a Socket.IO connection:
- news:deleted  {id}
- news:paused   {id, isPaused}
- news:updated  {id, ...changed fields}

Payloads are validated into tagged dataclasses before any listener sees
them. The channel is receive-only.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import socketio

logger = logging.getLogger(__name__)

NEWS_DELETED = "news:deleted"
NEWS_PAUSED = "news:paused"
NEWS_UPDATED = "news:updated"
EVENT_NAMES = (NEWS_DELETED, NEWS_PAUSED, NEWS_UPDATED)


class EventPayloadError(ValueError):
    """Raised when a pushed event has an unknown name or a malformed payload."""


@dataclass(frozen=True)
class NewsDeleted:
    id: int


@dataclass(frozen=True)
class NewsPaused:
    id: int
    is_paused: bool


@dataclass(frozen=True)
class NewsUpdated:
    """Changed fields, in the server's camelCase shape, excluding the id."""

    id: int
    fields: dict[str, Any] = field(default_factory=dict, hash=False)


NewsEvent = NewsDeleted | NewsPaused | NewsUpdated
EventListener = Callable[[NewsEvent], None]


def _require_id(payload: Any) -> int:
    if not isinstance(payload, dict):
        raise EventPayloadError(f"payload must be an object, got {type(payload).__name__}")
    raw_id = payload.get("id")
    if isinstance(raw_id, bool) or raw_id is None:
        raise EventPayloadError("payload has no id")
    try:
        return int(raw_id)
    except (TypeError, ValueError) as e:
        raise EventPayloadError(f"invalid id: {raw_id!r}") from e


def parse_event(name: str, payload: Any) -> NewsEvent:
    """Validate a pushed event.

    Args:
        name: Event name
        payload: Decoded event payload

    Returns:
        The tagged event

    Raises:
        EventPayloadError: If the name is unknown or the payload malformed
    """
    news_id = _require_id(payload)

    if name == NEWS_DELETED:
        return NewsDeleted(id=news_id)

    if name == NEWS_PAUSED:
        is_paused = payload.get("isPaused")
        if not isinstance(is_paused, bool):
            raise EventPayloadError(f"isPaused must be a boolean, got {is_paused!r}")
        return NewsPaused(id=news_id, is_paused=is_paused)

    if name == NEWS_UPDATED:
        return NewsUpdated(id=news_id, fields={k: v for k, v in payload.items() if k != "id"})

    raise EventPayloadError(f"unknown event: {name}")


class EventChannel:
    """One authenticated Socket.IO connection with typed dispatch.

    Listeners receive validated events. Reconnect listeners are called
    whenever the connection comes back after the first connect, since
    events pushed during the gap are not replayed.
    """

    TRANSPORTS = ["websocket", "polling"]

    def __init__(self, url: str, credential: str, client: Any = None) -> None:
        """Initialize EventChannel.

        Args:
            url: Server URL
            credential: Bearer credential sent in the connect auth payload
            client: socketio.AsyncClient (created when not given)
        """
        self._url = url
        self._credential = credential
        self._client = client if client is not None else socketio.AsyncClient(reconnection=True)
        self._listeners: list[EventListener] = []
        self._reconnect_listeners: list[Callable[[], None]] = []
        self._connected_once = False

        for name in EVENT_NAMES:
            self._client.on(name, self._make_handler(name))
        self._client.on("connect", self._on_connect)
        self._client.on("disconnect", self._on_disconnect)
        self._client.on("connect_error", self._on_connect_error)

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    async def connect(self) -> None:
        logger.info("Connecting event channel to %s", self._url)
        await self._client.connect(
            self._url,
            auth={"token": f"Bearer {self._credential}"},
            transports=self.TRANSPORTS,
        )

    async def disconnect(self) -> None:
        await self._client.disconnect()

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener for validated events.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)
        return lambda: self._remove(self._listeners, listener)

    def on_reconnect(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._reconnect_listeners.append(listener)
        return lambda: self._remove(self._reconnect_listeners, listener)

    def dispatch(self, name: str, payload: Any) -> NewsEvent | None:
        """Validate a raw event and deliver it to every listener.

        Malformed events are logged and dropped, and listener failures are
        logged without affecting other listeners.

        Returns:
            The delivered event, or None if it was dropped
        """
        try:
            event = parse_event(name, payload)
        except EventPayloadError as e:
            logger.warning("Dropping malformed %s event: %s", name, e)
            return None

        logger.info("Event received: %s", event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", name)
        return event

    def _make_handler(self, name: str) -> Callable[[Any], None]:
        def handler(payload: Any) -> None:
            self.dispatch(name, payload)

        return handler

    def _on_connect(self) -> None:
        logger.info("Event channel connected")
        if not self._connected_once:
            self._connected_once = True
            return
        for listener in list(self._reconnect_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Reconnect listener failed")

    def _on_disconnect(self, *args: Any) -> None:
        logger.info("Event channel disconnected: %s", args[0] if args else "")

    def _on_connect_error(self, data: Any = None) -> None:
        logger.error("Event channel connection error: %s", data)

    @staticmethod
    def _remove(listeners: list, listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)


class ConnectionManager:
    """Owns the single event channel of an authenticated session."""

    def __init__(
        self,
        url: str,
        channel_factory: Callable[[str, str], EventChannel] | None = None,
    ) -> None:
        """Initialize ConnectionManager.

        Args:
            url: Server URL
            channel_factory: Builds a channel from (url, credential)
        """
        self._url = url
        self._factory = channel_factory or (lambda u, c: EventChannel(u, c))
        self._channel: EventChannel | None = None
        self._credential: str | None = None

    def current(self) -> EventChannel | None:
        return self._channel

    async def connect(self, credential: str | None) -> EventChannel | None:
        """Connect with a credential, reusing a live channel for the same one.

        Returns:
            The channel, or None when no credential is given or connecting failed
        """
        if not credential:
            logger.info("No credential provided, skipping event channel")
            return None

        if self._channel is not None:
            if self._credential == credential and self._channel.connected:
                return self._channel
            await self.disconnect()

        channel = self._factory(self._url, credential)
        try:
            await channel.connect()
        except Exception as e:
            # Feeds keep working from REST; focus refetches cover missed events
            logger.error("Event channel connection failed: %s", e)
            return None
        self._channel = channel
        self._credential = credential
        return channel

    async def disconnect(self) -> None:
        if self._channel is None:
            return
        channel, self._channel, self._credential = self._channel, None, None
        try:
            await channel.disconnect()
        except Exception:
            logger.exception("Error while disconnecting event channel")
        logger.info("Event channel closed")
