"""
State bridge — sits between the page and the coordinator.
- Caches the current track and playback state seen on the page channel.
- Forwards track changes, play/pause flips and volume reports to the
  coordinator over the runtime channel.
- Owns the overlay toggle and its lyrics cache.
- Debounces wheel volume input into a single write and a single intent.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sonos_relay.config.settings import settings
from sonos_relay.services.messaging import BoundaryUnavailable, Envelope, MessageChannel
from sonos_relay.services.models import (
    MessageType,
    PlaybackState,
    TrackState,
    clamp_volume,
)
from sonos_relay.services.store import PersistenceError, StateStore
from sonos_relay.utils.debounce import Debouncer
from sonos_relay.utils.http_client import ResourceFetchError
from sonos_relay.utils.origin import same_origin

logger = logging.getLogger(__name__)

LyricsLookup = Callable[[TrackState], Awaitable[Optional[str]]]

LYRICS_UNAVAILABLE = "Lyrics not available"

# wheel adjustments never go below 1
WHEEL_VOLUME_MIN = 1
WHEEL_VOLUME_MAX = 100


@dataclass
class OverlayState:
    visible: bool = False
    lyrics: Optional[str] = None
    volume_label: Optional[int] = None


class StateBridge:
    def __init__(
        self,
        page: MessageChannel,
        runtime: MessageChannel,
        tab: MessageChannel,
        store: StateStore,
        *,
        lyrics_lookup: Optional[LyricsLookup] = None,
        page_origin: str = settings.PAGE_ORIGIN,
        extension_origin: str = settings.EXTENSION_ORIGIN,
        debounce_seconds: float = settings.VOLUME_DEBOUNCE_SECONDS,
    ):
        self._page = page
        self._runtime = runtime
        self._tab = tab
        self._store = store
        self._lyrics_lookup = lyrics_lookup
        self._origin = page_origin
        self._extension_origin = extension_origin

        self.track: Optional[TrackState] = None
        self.playback = PlaybackState()
        self.overlay = OverlayState()
        self._lyrics: Optional[str] = None

        self._volume_base: Optional[int] = None
        self._volume_delta = 0
        self._volume_debounce = Debouncer(self._commit_volume, delay=debounce_seconds)

        self._detached = False
        self._unsubscribe = [
            page.add_listener(self._on_page_message),
            tab.add_listener(self._on_tab_message),
        ]

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def lyrics(self) -> Optional[str]:
        return self._lyrics

    # ── Page channel ────────────────────────────────────────────────────────

    async def _on_page_message(self, envelope: Envelope) -> None:
        kind = envelope.type
        if kind not in (MessageType.TRACK_INFO, MessageType.VOLUME_INFO):
            return
        if not same_origin(envelope.origin, self._origin):
            logger.warning("Ignoring page message from foreign origin", extra={"origin": envelope.origin})
            return

        data = envelope.data
        if kind == MessageType.TRACK_INFO:
            try:
                track = TrackState.from_message(data["track"])
            except (KeyError, TypeError):
                logger.debug("Malformed track message ignored")
                return
            await self.on_track_event(track, bool(data.get("isPlaying")), data.get("positionMillis"))
        else:
            volume = data.get("volume")
            if not isinstance(volume, int):
                return
            await self.on_volume_event(volume, bool(data.get("muted")))

    async def on_track_event(
        self,
        track: TrackState,
        is_playing: bool,
        position_millis: Optional[int] = None,
    ) -> None:
        if self.track is not None and self.track.identity == track.identity:
            self.playback.is_playing = is_playing
            if position_millis is not None:
                self.playback.position_millis = position_millis
            message: dict[str, Any] = {"type": MessageType.PLAYBACK_INFO, "isPlaying": is_playing}
            if position_millis is not None:
                message["positionMillis"] = position_millis
            self._send_runtime(message)
            return

        logger.info("Track changed", extra={"track": track.display_name})
        self.track = track
        self.playback.is_playing = is_playing
        self.playback.position_millis = position_millis
        self._lyrics = None
        self.overlay.lyrics = None

        message = {
            "type": MessageType.TRACK_INFO,
            "track": track.to_message(),
            "isPlaying": is_playing,
        }
        if position_millis is not None:
            message["positionMillis"] = position_millis
        self._send_runtime(message)

        if self.overlay.visible:
            await self._load_lyrics()

    async def on_volume_event(self, volume: int, muted: bool) -> None:
        self.playback.volume = volume
        self.playback.muted = muted
        if not self._volume_debounce.pending:
            self.overlay.volume_label = volume
        self._send_runtime({"type": MessageType.VOLUME_INFO, "volume": volume, "muted": muted})

    # ── Tab channel ─────────────────────────────────────────────────────────

    async def _on_tab_message(self, envelope: Envelope) -> None:
        if envelope.type != MessageType.SEND_COMMAND:
            return
        if not same_origin(envelope.origin, self._extension_origin):
            logger.warning("Ignoring command from foreign origin", extra={"origin": envelope.origin})
            return
        if self._detached:
            return
        try:
            self._page.post(
                {
                    "type": MessageType.SEND_COMMAND,
                    "command": envelope.data.get("command"),
                    "props": envelope.data.get("props") or {},
                },
                origin=self._origin,
            )
        except BoundaryUnavailable as exc:
            logger.warning("Page channel gone, command dropped", extra={"error": str(exc)})

    # ── Intents ─────────────────────────────────────────────────────────────

    def relay_intent(self, intent_type: MessageType, extra: Optional[dict] = None) -> None:
        self._send_runtime({"type": intent_type, **(extra or {})})

    def debounce_volume_adjust(self, delta: int) -> Optional[int]:
        """
        Accumulate a volume delta. Returns the value shown immediately, or
        None when the current volume is not known yet.
        """
        if self._detached:
            return None
        if not self._volume_debounce.pending:
            if self.playback.volume is None:
                logger.debug("Volume unknown, adjustment ignored")
                return None
            self._volume_base = self.playback.volume
            self._volume_delta = 0

        base = self._volume_base
        if base is None:
            return None
        self._volume_delta += delta
        shown = self._target_volume(base)
        self.overlay.volume_label = shown
        self._volume_debounce.trigger()
        return shown

    def wheel(self, steps: int, step: int = settings.VOLUME_WHEEL_STEP) -> Optional[int]:
        """Scroll-wheel input: positive steps raise volume."""
        return self.debounce_volume_adjust(steps * step)

    def _target_volume(self, base: int) -> int:
        return clamp_volume(base + self._volume_delta, WHEEL_VOLUME_MIN, WHEEL_VOLUME_MAX)

    async def _commit_volume(self) -> None:
        base = self._volume_base
        if base is None:
            return
        volume = self._target_volume(base)
        self._volume_base = None
        self._volume_delta = 0
        self.playback.volume = volume

        try:
            await self._store.merge("playSettings", {"volume": volume})
        except PersistenceError as exc:
            logger.error("Volume not persisted", extra={"error": str(exc)})
        self.relay_intent(MessageType.SET_VOLUME, {"volume": volume})

    async def flush_volume(self) -> None:
        await self._volume_debounce.flush()

    async def wait_for_volume_commit(self) -> None:
        await self._volume_debounce.wait()

    # ── Overlay ─────────────────────────────────────────────────────────────

    async def toggle_overlay(self) -> bool:
        self.overlay.visible = not self.overlay.visible
        if self.overlay.visible:
            await self._load_lyrics()
        return self.overlay.visible

    async def _load_lyrics(self) -> None:
        if self.track is None:
            self.overlay.lyrics = None
            return
        if self._lyrics is not None:
            self.overlay.lyrics = self._lyrics
            return

        track = self.track
        text: Optional[str] = None
        if self._lyrics_lookup is not None:
            try:
                text = await self._lyrics_lookup(track)
            except ResourceFetchError as exc:
                logger.warning("Lyrics lookup failed", extra={"track": track.display_name, "error": str(exc)})

        if self.track is not track:
            return  # track changed while fetching
        self._lyrics = text or LYRICS_UNAVAILABLE
        self.overlay.lyrics = self._lyrics

    # ── Boundary ────────────────────────────────────────────────────────────

    def _send_runtime(self, message: dict) -> None:
        if self._detached:
            return
        try:
            self._runtime.post(message, origin=self._origin, require_receiver=True)
        except BoundaryUnavailable as exc:
            logger.warning("Coordinator unreachable, detaching", extra={"error": str(exc)})
            self.detach()

    def detach(self) -> None:
        if self._detached:
            return
        self._detached = True
        self._volume_debounce.cancel()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
