"""
Presentation surface (popup-style view).
Pulls canonical state when opened, follows SONG_UPDATED broadcasts, and
turns button presses into intents. It never writes track or playback state.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sonos_relay.config.settings import settings
from sonos_relay.services.messaging import BoundaryUnavailable, Envelope, MessageChannel
from sonos_relay.services.models import MessageType
from sonos_relay.services.store import PersistenceError, StateStore

logger = logging.getLogger(__name__)

NO_SONG = "No song playing"


@dataclass
class ViewState:
    title: str = NO_SONG
    artist: Optional[str] = None
    image_url: Optional[str] = None
    is_playing: bool = False
    volume: Optional[int] = None
    muted: bool = False
    notifications_enabled: bool = True

    @property
    def has_song(self) -> bool:
        return self.artist is not None

    @property
    def subtitle(self) -> Optional[str]:
        return f"by {self.artist}" if self.artist else None


def view_from_state(state: dict, notifications_enabled: bool = True) -> ViewState:
    song = state.get("currentSong") or {}
    play = state.get("playSettings") or {}
    view = ViewState(notifications_enabled=notifications_enabled)
    if song.get("trackName"):
        view.title = song["trackName"]
        view.artist = song.get("artistName")
        view.image_url = song.get("imageUrl")
    view.is_playing = bool(play.get("isPlaying", False))
    view.volume = play.get("volume")
    view.muted = bool(play.get("muted", False))
    return view


class PresentationSurface:
    def __init__(
        self,
        store: StateStore,
        preferences: StateStore,
        runtime: MessageChannel,
        broadcast: MessageChannel,
        render: Callable[[ViewState], None],
        *,
        origin: str = settings.EXTENSION_ORIGIN,
    ):
        self._store = store
        self._preferences = preferences
        self._runtime = runtime
        self._broadcast = broadcast
        self._render = render
        self._origin = origin
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.view = ViewState()

    async def open(self) -> ViewState:
        try:
            state = await self._store.get("currentSong", "playSettings")
            prefs = await self._preferences.get("notificationsEnabled")
        except PersistenceError as exc:
            logger.warning("Could not load state", extra={"error": str(exc)})
            state, prefs = {}, {}
        enabled = bool(prefs.get("notificationsEnabled", settings.NOTIFICATIONS_ENABLED_DEFAULT))
        self.view = view_from_state(state, enabled)
        self._render(self.view)
        if self._unsubscribe is None:
            self._unsubscribe = self._broadcast.add_listener(self._on_broadcast)
        return self.view

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_broadcast(self, envelope: Envelope) -> None:
        if envelope.type != MessageType.SONG_UPDATED:
            return
        data = envelope.data.get("data")
        if not isinstance(data, dict):
            return
        self.view = view_from_state(data, self.view.notifications_enabled)
        self._render(self.view)

    # ── Intents ─────────────────────────────────────────────────────────────

    def toggle_play_pause(self) -> None:
        # optimistic icon flip; the next broadcast is authoritative
        self.view.is_playing = not self.view.is_playing
        self._render(self.view)
        self._send(MessageType.TOGGLE_PLAY_PAUSE)

    def previous(self) -> None:
        self._send(MessageType.PREV)

    def next(self) -> None:
        self._send(MessageType.NEXT)

    def toggle_mute(self) -> None:
        self._send(MessageType.TOGGLE_MUTE)

    def set_volume(self, volume: int) -> None:
        self._send(MessageType.SET_VOLUME, volume=int(volume))

    def seek(self, position_millis: int) -> None:
        self._send(MessageType.SEEK, positionMillis=int(position_millis))

    async def set_notifications_enabled(self, enabled: bool) -> None:
        self.view.notifications_enabled = bool(enabled)
        try:
            await self._preferences.set({"notificationsEnabled": bool(enabled)})
        except PersistenceError as exc:
            logger.error("Could not save preference", extra={"error": str(exc)})

    def _send(self, intent: MessageType, **extra) -> None:
        try:
            self._runtime.post({"type": intent, **extra}, origin=self._origin, require_receiver=True)
        except BoundaryUnavailable as exc:
            logger.warning("Coordinator unreachable", extra={"intent": intent.value, "error": str(exc)})
