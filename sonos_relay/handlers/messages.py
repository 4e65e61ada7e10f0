"""
Runtime-channel handlers for the coordinator.
- TRACK_INFO     → on_state_changed
- PLAYBACK_INFO  → on_playback_changed
- VOLUME_INFO    → on_volume_changed
- intents        → handle_intent
Messages from untrusted origins and malformed messages are logged and
dropped; nothing raises back across the channel.
"""
import logging
from typing import Awaitable, Callable, Iterable, Optional

from sonos_relay.config.settings import settings
from sonos_relay.services.coordinator import Coordinator
from sonos_relay.services.messaging import Envelope, MessageChannel
from sonos_relay.services.models import INTENT_TYPES, MessageType, PlaybackState, TrackState
from sonos_relay.utils.origin import same_origin

logger = logging.getLogger(__name__)


def build_runtime_handler(
    coordinator: Coordinator,
    trusted_origins: Optional[Iterable[str]] = None,
) -> Callable[[Envelope], Awaitable[None]]:
    # the bridge posts as the page, surfaces post as the extension
    trusted = tuple(trusted_origins or (settings.PAGE_ORIGIN, settings.EXTENSION_ORIGIN))

    async def handle(envelope: Envelope) -> None:
        if not any(same_origin(envelope.origin, origin) for origin in trusted):
            logger.warning("Runtime message from untrusted origin dropped", extra={"origin": envelope.origin})
            return
        data = envelope.data
        kind = envelope.type

        if kind == MessageType.TRACK_INFO:
            try:
                track = TrackState.from_message(data["track"])
            except (KeyError, TypeError):
                logger.warning("Malformed TRACK_INFO dropped", extra={"origin": envelope.origin})
                return
            playback = PlaybackState(
                is_playing=bool(data.get("isPlaying")),
                position_millis=data.get("positionMillis"),
            )
            status = await coordinator.on_state_changed(track, playback)
            logger.debug("Track handled", extra={"status": status})

        elif kind == MessageType.PLAYBACK_INFO:
            await coordinator.on_playback_changed(bool(data.get("isPlaying")), data.get("positionMillis"))

        elif kind == MessageType.VOLUME_INFO:
            volume = data.get("volume")
            if not isinstance(volume, int):
                logger.warning("Malformed VOLUME_INFO dropped")
                return
            await coordinator.on_volume_changed(volume, bool(data.get("muted")))

        elif kind in INTENT_TYPES:
            extra = {k: v for k, v in data.items() if k != "type"}
            await coordinator.handle_intent(MessageType(kind), extra)

        else:
            logger.debug("Unhandled runtime message", extra={"type": kind})

    return handle


def register(
    runtime: MessageChannel,
    coordinator: Coordinator,
    trusted_origins: Optional[Iterable[str]] = None,
) -> Callable[[], None]:
    """Attach the coordinator to the runtime channel. Returns the detach function."""
    return runtime.add_listener(build_runtime_handler(coordinator, trusted_origins))
