"""
Protocol interceptor — taps the player's real-time channel.
- Wraps the channel factory once; monitored channels come back as a
  transparent proxy, everything else is returned untouched.
- Inbound text frames are classified and turned into page-channel events.
- Outbound commands are serialised onto the active channel once the
  group id is known. Nothing is acknowledged or retried.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from aiohttp import ClientWebSocketResponse, WSMessage, WSMsgType

from sonos_relay.config.settings import settings
from sonos_relay.services import protocol
from sonos_relay.services.messaging import BoundaryUnavailable, Envelope, MessageChannel
from sonos_relay.services.models import (
    MessageType,
    PendingCommand,
    SessionContext,
    TrackState,
)
from sonos_relay.services.protocol import FrameKind, FrameParseError
from sonos_relay.utils.origin import is_monitored_channel, same_origin

logger = logging.getLogger(__name__)

ChannelFactory = Callable[..., Awaitable[ClientWebSocketResponse]]

_CLOSING = (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)


class MissingSessionError(Exception):
    pass


class MonitoredChannel:
    """Proxy with the websocket's full interface; taps every received text frame."""

    def __init__(self, ws: ClientWebSocketResponse, on_frame: Callable[[Any], None]):
        self._ws = ws
        self._on_frame = on_frame

    def __getattr__(self, name: str) -> Any:
        return getattr(self._ws, name)

    @property
    def wrapped(self) -> ClientWebSocketResponse:
        return self._ws

    async def receive(self, timeout: Optional[float] = None) -> WSMessage:
        msg = await self._ws.receive(timeout)
        if msg.type is WSMsgType.TEXT:
            self._on_frame(msg.data)
        return msg

    async def receive_str(self, *, timeout: Optional[float] = None) -> str:
        msg = await self.receive(timeout)
        if msg.type is not WSMsgType.TEXT:
            raise TypeError(f"Received message {msg.type}:{msg.data!r} is not str")
        return msg.data

    async def receive_json(self, *, loads: Callable[[str], Any] = json.loads, timeout: Optional[float] = None) -> Any:
        data = await self.receive_str(timeout=timeout)
        return loads(data)

    def __aiter__(self) -> "MonitoredChannel":
        return self

    async def __anext__(self) -> WSMessage:
        msg = await self.receive()
        if msg.type in _CLOSING:
            raise StopAsyncIteration
        return msg

    async def __aenter__(self) -> "MonitoredChannel":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self._ws.close()


class _ConnectContext:
    """Awaitable and async-context-manager, like aiohttp's own ws_connect result."""

    def __init__(self, connect: Awaitable[Any]):
        self._connect = connect
        self._channel: Any = None

    def __await__(self):
        return self._connect.__await__()

    async def __aenter__(self) -> Any:
        self._channel = await self._connect
        return self._channel

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._channel is not None:
            await self._channel.close()


class ProtocolInterceptor:
    def __init__(
        self,
        page: MessageChannel,
        *,
        origin: str = settings.PAGE_ORIGIN,
        channel_match: str = settings.CHANNEL_MATCH,
    ):
        self._page = page
        self._origin = origin
        self._channel_match = channel_match
        self.session = SessionContext()
        self._remove_listener = page.add_listener(self._on_page_message)

    # ── Channel construction ────────────────────────────────────────────────

    def wrap(self, factory: ChannelFactory) -> Callable[..., _ConnectContext]:
        """Return a drop-in replacement for `factory` that taps monitored channels."""
        if getattr(factory, "_sonos_relay_wrapped", False):
            return factory

        def connect(url: Any, *args: Any, **kwargs: Any) -> _ConnectContext:
            return _ConnectContext(self._open(factory, url, *args, **kwargs))

        connect._sonos_relay_wrapped = True  # type: ignore[attr-defined]
        return connect

    async def _open(self, factory: ChannelFactory, url: Any, *args: Any, **kwargs: Any) -> Any:
        ws = await factory(url, *args, **kwargs)
        if not is_monitored_channel(url, self._channel_match):
            return ws
        channel = MonitoredChannel(ws, self.on_frame)
        self.session.channel = channel
        logger.info("Monitoring channel", extra={"url": str(url)[:120]})
        return channel

    # ── Inbound ─────────────────────────────────────────────────────────────

    def on_frame(self, raw: Any) -> None:
        """Handle one inbound frame. Never raises into the channel's reader."""
        try:
            header, payload = protocol.parse_frame(raw)
        except FrameParseError as exc:
            logger.debug("Dropping unparseable frame", extra={"error": str(exc)})
            return

        kind = protocol.classify(header)
        if kind is None:
            return
        try:
            self._dispatch(kind, header, payload)
        except BoundaryUnavailable as exc:
            logger.warning("Page channel unavailable", extra={"error": str(exc)})
        except Exception:
            logger.exception("Frame handling failed", extra={"kind": kind.value})

    def _dispatch(self, kind: FrameKind, header: dict, payload: Any) -> None:
        if kind is FrameKind.EXTENDED_PLAYBACK_STATUS:
            track = protocol.extract_track(payload)
            if track is None:
                logger.debug("Incomplete track frame ignored")
                return
            is_playing, position = protocol.extract_play_state(payload)
            self.emit_track(track, is_playing, position)
        elif kind is FrameKind.DEVICE_STATUS:
            self._resolve_group(protocol.extract_group_id(header, payload))
        elif kind is FrameKind.GROUP_VOLUME:
            volume = protocol.extract_volume(payload)
            if volume is None:
                return
            self.emit({"type": MessageType.VOLUME_INFO, "volume": volume[0], "muted": volume[1]})

    def _resolve_group(self, group_id: Optional[str]) -> None:
        if group_id is None or self.session.group_id is not None:
            return
        self.session.group_id = group_id
        logger.info("Group resolved", extra={"group_id": group_id})

    def emit_track(self, track: TrackState, is_playing: bool, position_millis: Optional[int]) -> None:
        message: dict[str, Any] = {
            "type": MessageType.TRACK_INFO,
            "track": track.to_message(),
            "isPlaying": is_playing,
        }
        if position_millis is not None:
            message["positionMillis"] = position_millis
        self.emit(message)

    def emit(self, message: dict) -> None:
        self._page.post(message, origin=self._origin)

    # ── Outbound ────────────────────────────────────────────────────────────

    async def _on_page_message(self, envelope: Envelope) -> None:
        if envelope.type != MessageType.SEND_COMMAND:
            return
        if not same_origin(envelope.origin, self._origin):
            logger.warning("Rejected command from foreign origin", extra={"origin": envelope.origin})
            return
        command = envelope.data.get("command")
        if not isinstance(command, str):
            return
        props = envelope.data.get("props")
        await self.send_command(command, props if isinstance(props, dict) else {})

    def _require_group_id(self) -> str:
        if self.session.group_id is None:
            raise MissingSessionError("Group id not resolved yet")
        return self.session.group_id

    async def send_command(self, command: str, props: Optional[dict] = None) -> Optional[PendingCommand]:
        """Write one command frame. Returns what was sent, or None if dropped."""
        try:
            group_id = self._require_group_id()
        except MissingSessionError:
            logger.warning("Dropping command, no group yet", extra={"command": command})
            return None

        channel = self.session.channel
        if channel is None or channel.closed:
            logger.warning("Dropping command, no open channel", extra={"command": command})
            return None

        pending = protocol.build_command(command, props, group_id)
        try:
            await channel.send_str(protocol.serialize_command(pending))
        except (ConnectionError, RuntimeError) as exc:
            logger.warning("Command write failed", extra={"command": command, "error": str(exc)})
            return None
        logger.info("Command sent", extra={"command": command, "corr_id": pending.correlation_id})
        return pending

    def detach(self) -> None:
        self._remove_listener()
