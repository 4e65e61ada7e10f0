"""
Coordinator — privileged context, no page access.
  track/playback/volume events → persist → broadcast → notify (deduplicated)
  intents → freshest persisted state → protocol command → tab channel
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

from sonos_relay.config.settings import settings
from sonos_relay.services import protocol
from sonos_relay.services.messaging import BoundaryUnavailable, MessageChannel
from sonos_relay.services.models import (
    INTENT_TYPES,
    MessageType,
    PlaybackState,
    TrackState,
    clamp_volume,
    dedup_key,
)
from sonos_relay.services.notifications import NOTIFICATION_ID, Notification, NotificationSink
from sonos_relay.services.store import PersistenceError, StateStore
from sonos_relay.utils.origin import matches_pattern

logger = logging.getLogger(__name__)

ArtworkResolver = Callable[[Optional[str]], Awaitable[str]]


class Surface(Protocol):
    async def focus(self) -> None: ...


SurfaceLocator = Callable[[str], Awaitable[Optional[Surface]]]


class SurfaceRegistry:
    """Open player surfaces by URL; `locate` is a SurfaceLocator."""

    def __init__(self) -> None:
        self._surfaces: dict[str, Surface] = {}

    def register(self, url: str, surface: Surface) -> Callable[[], None]:
        self._surfaces[url] = surface

        def remove() -> None:
            if self._surfaces.get(url) is surface:
                del self._surfaces[url]

        return remove

    async def locate(self, pattern: str) -> Optional[Surface]:
        for url, surface in self._surfaces.items():
            if matches_pattern(url, pattern):
                return surface
        return None


@dataclass(frozen=True)
class ResolvedCommand:
    command: str
    props: dict = field(default_factory=dict)


def resolve_command(
    intent_type: MessageType,
    playback: PlaybackState,
    extra: Optional[dict] = None,
) -> ResolvedCommand:
    """Map an abstract intent onto a protocol command. Pure."""
    extra = extra or {}
    if intent_type == MessageType.TOGGLE_PLAY_PAUSE:
        command = protocol.PAUSE if playback.is_playing else protocol.PLAY
        return ResolvedCommand(command, dict(protocol.PLAYBACK_FLAGS))
    if intent_type == MessageType.PREV:
        return ResolvedCommand(protocol.SKIP_BACK)
    if intent_type == MessageType.NEXT:
        return ResolvedCommand(protocol.SKIP_NEXT)
    if intent_type == MessageType.TOGGLE_MUTE:
        return ResolvedCommand(protocol.SET_MUTE, {"muted": not playback.muted})
    if intent_type == MessageType.SET_VOLUME:
        return ResolvedCommand(protocol.SET_VOLUME, {"volume": clamp_volume(extra["volume"])})
    if intent_type == MessageType.SEEK:
        return ResolvedCommand(protocol.SEEK, {"positionMillis": max(0, int(extra["positionMillis"]))})
    raise ValueError(f"Unknown intent: {intent_type}")


async def _no_artwork(image_url: Optional[str]) -> str:
    return settings.DEFAULT_ICON_URL


async def _no_surface(pattern: str) -> Optional[Surface]:
    return None


class Coordinator:
    def __init__(
        self,
        store: StateStore,
        preferences: StateStore,
        tab: MessageChannel,
        broadcast: MessageChannel,
        notifier: NotificationSink,
        *,
        resolve_artwork: ArtworkResolver = _no_artwork,
        locate_surface: SurfaceLocator = _no_surface,
        origin: str = settings.EXTENSION_ORIGIN,
    ):
        self._store = store
        self._preferences = preferences
        self._tab = tab
        self._broadcast = broadcast
        self._notifier = notifier
        self._resolve_artwork = resolve_artwork
        self._locate_surface = locate_surface
        self._origin = origin
        self._notified_key: Optional[str] = None

    @property
    def notified_key(self) -> Optional[str]:
        return self._notified_key

    # ── State events ────────────────────────────────────────────────────────

    async def on_state_changed(self, track: TrackState, playback: PlaybackState) -> str:
        """Persist, broadcast and (maybe) notify. Returns a status string."""
        song = track.to_record()
        play_settings = {"isPlaying": playback.is_playing}
        try:
            await self._store.set({"currentSong": song})
            play_settings = await self._store.merge("playSettings", play_settings)
        except PersistenceError as exc:
            logger.error("Could not persist track", extra={"error": str(exc)})
        self._broadcast_state(song, play_settings)

        if not await self._notifications_enabled():
            return "notifications_disabled"

        key = dedup_key(track)
        if key == self._notified_key:
            logger.debug("Notification suppressed", extra={"track": track.display_name})
            return "duplicate"

        icon_url = await self._artwork_for(track)
        notification = Notification(
            title=track.title,
            message=f"by {track.artist}",
            icon_url=icon_url,
        )
        try:
            await self._notifier.clear(NOTIFICATION_ID)
            await self._notifier.create(NOTIFICATION_ID, notification)
        except Exception as exc:
            logger.error("Notification creation failed", extra={"error": str(exc)})
            return "error"
        self._notified_key = key
        logger.info("Notification created", extra={"track": track.display_name})
        return "notification_sent"

    async def on_playback_changed(self, is_playing: bool, position_millis: Optional[int] = None) -> None:
        # position is not part of playSettings
        logger.debug("Playback changed", extra={"is_playing": is_playing, "position_millis": position_millis})
        await self._merge_and_broadcast({"isPlaying": is_playing})

    async def on_volume_changed(self, volume: int, muted: bool) -> None:
        await self._merge_and_broadcast({"volume": volume, "muted": muted})

    async def _merge_and_broadcast(self, fields: dict) -> None:
        try:
            await self._store.merge("playSettings", fields)
            state = await self._store.get("currentSong", "playSettings")
        except PersistenceError as exc:
            logger.error("Could not persist playback", extra={"error": str(exc)})
            state = {"playSettings": fields}
        self._broadcast_state(state.get("currentSong"), state.get("playSettings", fields))

    def _broadcast_state(self, song: Optional[dict], play_settings: dict) -> None:
        message = {
            "type": MessageType.SONG_UPDATED,
            "data": {"currentSong": song, "playSettings": play_settings},
        }
        try:
            self._broadcast.post(message, origin=self._origin)
        except BoundaryUnavailable as exc:
            logger.warning("Broadcast failed", extra={"error": str(exc)})

    async def _notifications_enabled(self) -> bool:
        try:
            prefs = await self._preferences.get("notificationsEnabled")
        except PersistenceError as exc:
            logger.warning("Preferences unreadable, assuming enabled", extra={"error": str(exc)})
            return True
        return bool(prefs.get("notificationsEnabled", settings.NOTIFICATIONS_ENABLED_DEFAULT))

    async def _artwork_for(self, track: TrackState) -> str:
        try:
            return await self._resolve_artwork(track.image_url)
        except Exception as exc:
            logger.warning("Artwork resolution failed", extra={"error": str(exc)})
            return settings.DEFAULT_ICON_URL

    # ── Intents ─────────────────────────────────────────────────────────────

    async def current_playback(self) -> PlaybackState:
        try:
            state = await self._store.get("playSettings")
        except PersistenceError as exc:
            logger.warning("Playback state unreadable", extra={"error": str(exc)})
            return PlaybackState()
        return PlaybackState.from_record(state.get("playSettings"))

    async def handle_intent(self, intent_type: MessageType, extra: Optional[dict] = None) -> bool:
        """Resolve an intent against the freshest state and relay it. Returns True if relayed."""
        if intent_type not in INTENT_TYPES:
            logger.debug("Not an intent", extra={"type": str(intent_type)})
            return False
        playback = await self.current_playback()
        try:
            resolved = resolve_command(intent_type, playback, extra)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Intent rejected", extra={"type": str(intent_type), "error": str(exc)})
            return False
        return self.relay_command(resolved)

    def relay_command(self, resolved: ResolvedCommand) -> bool:
        message: dict[str, Any] = {
            "type": MessageType.SEND_COMMAND,
            "command": resolved.command,
            "props": resolved.props,
        }
        try:
            self._tab.post(message, origin=self._origin, require_receiver=True)
        except BoundaryUnavailable as exc:
            logger.warning("No bridge to relay command", extra={"command": resolved.command, "error": str(exc)})
            return False
        return True

    # ── Notification surface callbacks ─────────────────────────────────────

    async def on_button_activated(self, index: int) -> bool:
        if index == 0:
            return await self.handle_intent(MessageType.PREV)
        if index == 1:
            return await self.handle_intent(MessageType.NEXT)
        logger.debug("Unknown notification button", extra={"index": index})
        return False

    async def on_notification_clicked(self, notification_id: str) -> None:
        if notification_id == NOTIFICATION_ID:
            await self.on_surface_activated()

    async def on_surface_activated(self) -> bool:
        surface = await self._locate_surface(settings.SURFACE_URL_PATTERN)
        if surface is None:
            logger.debug("No player surface to focus")
            return False
        await surface.focus()
        return True

