"""
Wire protocol of the player's real-time channel.
- Inbound frames are JSON arrays `[header, payload]`.
- Outbound commands use the same two-element shape.
Only the handful of frame kinds the relay needs are understood; everything
else on the channel is left alone.
"""
import json
import uuid
from enum import Enum
from typing import Any, Optional

from sonos_relay.services.models import PendingCommand, TrackState


class FrameParseError(ValueError):
    pass


class FrameKind(str, Enum):
    EXTENDED_PLAYBACK_STATUS = "extendedPlaybackStatus"
    DEVICE_STATUS = "deviceStatus"
    GROUP_VOLUME = "groupVolume"


class Namespace(str, Enum):
    PLAYBACK = "playback"
    GROUP_VOLUME = "groupVolume"


# ── Command names ───────────────────────────────────────────────────────────
PLAY = "play"
PAUSE = "pause"
SKIP_BACK = "skipBack"
SKIP_NEXT = "skipToNextTrack"
SET_MUTE = "setMute"
SET_VOLUME = "setVolume"
SEEK = "seek"

_VOLUME_COMMANDS = frozenset({SET_MUTE, SET_VOLUME})

# play/pause always carry these two flags
PLAYBACK_FLAGS: dict[str, Any] = {"allowTvPauseRestore": True, "deviceFeedback": "NONE"}

_PLAYING_STATES = frozenset({"PLAYBACK_STATE_PLAYING", "PLAYBACK_STATE_BUFFERING", "PLAYING"})


def parse_frame(raw: Any) -> tuple[dict, Any]:
    """Decode one text frame into (header, payload)."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FrameParseError("Frame is not UTF-8") from exc
    if not isinstance(raw, str):
        raise FrameParseError(f"Unsupported frame type {type(raw).__name__}")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameParseError(f"Frame is not JSON: {exc.msg}") from exc
    if not isinstance(data, list) or len(data) != 2:
        raise FrameParseError("Frame is not a two-element array")
    header, payload = data
    if not isinstance(header, dict):
        raise FrameParseError("Frame header is not an object")
    return header, payload


def classify(header: dict) -> Optional[FrameKind]:
    """Return the frame kind, or None for traffic the relay ignores."""
    kind = header.get("type")
    try:
        return FrameKind(kind)
    except ValueError:
        return None


def extract_track(payload: Any) -> Optional[TrackState]:
    """Track info from an extended playback status payload; None if incomplete."""
    track = _dig(payload, "metadata", "currentItem", "track")
    if not isinstance(track, dict):
        return None
    title = _text(track.get("name"))
    artist = _text(_dig(track, "artist", "name"))
    if not title or not artist:
        return None

    duration = track.get("durationMillis")
    return TrackState(
        title=title,
        artist=artist,
        album=_text(_dig(track, "album", "name")),
        image_url=_text(track.get("imageUrl")),
        duration_millis=duration if isinstance(duration, int) else None,
    )


def extract_play_state(payload: Any) -> tuple[bool, Optional[int]]:
    """(is_playing, position_millis) from an extended playback status payload."""
    playback = _dig(payload, "playback")
    if not isinstance(playback, dict):
        return False, None
    state = playback.get("playbackState")
    position = playback.get("positionMillis")
    return state in _PLAYING_STATES, position if isinstance(position, int) else None


def extract_group_id(header: dict, payload: Any) -> Optional[str]:
    group_id = header.get("groupId") or _dig(payload, "groupId")
    return group_id if isinstance(group_id, str) and group_id else None


def extract_volume(payload: Any) -> Optional[tuple[int, bool]]:
    """(volume, muted) from a group volume payload; None if volume is missing."""
    if not isinstance(payload, dict):
        return None
    volume = payload.get("volume")
    if isinstance(volume, bool) or not isinstance(volume, (int, float)):
        return None
    return int(volume), bool(payload.get("muted", False))


def namespace_for(command: str) -> Namespace:
    return Namespace.GROUP_VOLUME if command in _VOLUME_COMMANDS else Namespace.PLAYBACK


def build_command(command: str, props: Optional[dict], group_id: str) -> PendingCommand:
    return PendingCommand(
        command=command,
        namespace=namespace_for(command).value,
        correlation_id=uuid.uuid4().hex,
        group_id=group_id,
        props=dict(props or {}),
    )


def serialize_command(pending: PendingCommand) -> str:
    return json.dumps(pending.to_frame(), separators=(",", ":"))


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None
