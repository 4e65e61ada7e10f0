import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class MessageType(str, Enum):
    # Interceptor / bridge events
    TRACK_INFO = "TRACK_INFO"
    PLAYBACK_INFO = "PLAYBACK_INFO"
    VOLUME_INFO = "VOLUME_INFO"
    # User intents
    TOGGLE_PLAY_PAUSE = "TOGGLE_PLAY_PAUSE"
    PREV = "PREV"
    NEXT = "NEXT"
    TOGGLE_MUTE = "TOGGLE_MUTE"
    SET_VOLUME = "SET_VOLUME"
    SEEK = "SEEK"
    # Coordinator → bridge / surfaces
    SEND_COMMAND = "SEND_COMMAND"
    SONG_UPDATED = "SONG_UPDATED"


INTENT_TYPES = frozenset({
    MessageType.TOGGLE_PLAY_PAUSE,
    MessageType.PREV,
    MessageType.NEXT,
    MessageType.TOGGLE_MUTE,
    MessageType.SET_VOLUME,
    MessageType.SEEK,
})


@dataclass(frozen=True)
class TrackState:
    title: str
    artist: str
    album: Optional[str] = None
    image_url: Optional[str] = None
    duration_millis: Optional[int] = None

    @property
    def identity(self) -> tuple[str, str]:
        return (self.title, self.artist)

    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.title}"

    def to_message(self) -> dict[str, Any]:
        data: dict[str, Any] = {"title": self.title, "artist": self.artist}
        if self.album:
            data["album"] = self.album
        if self.image_url:
            data["imageUrl"] = self.image_url
        if self.duration_millis is not None:
            data["durationMillis"] = self.duration_millis
        return data

    @classmethod
    def from_message(cls, data: dict) -> "TrackState":
        return cls(
            title=data["title"],
            artist=data["artist"],
            album=data.get("album"),
            image_url=data.get("imageUrl"),
            duration_millis=data.get("durationMillis"),
        )

    def to_record(self) -> dict[str, Any]:
        """Persisted `currentSong` shape."""
        return {
            "trackName": self.title,
            "artistName": self.artist,
            "imageUrl": self.image_url,
        }


@dataclass
class PlaybackState:
    is_playing: bool = False
    position_millis: Optional[int] = None
    volume: Optional[int] = None
    muted: bool = False

    @classmethod
    def from_record(cls, record: Optional[dict]) -> "PlaybackState":
        record = record or {}
        return cls(
            is_playing=bool(record.get("isPlaying", False)),
            volume=record.get("volume"),
            muted=bool(record.get("muted", False)),
        )

    def to_record(self) -> dict[str, Any]:
        """Persisted `playSettings` shape."""
        return {"isPlaying": self.is_playing, "volume": self.volume, "muted": self.muted}


@dataclass
class SessionContext:
    """Per-channel session owned by the interceptor."""

    group_id: Optional[str] = None
    channel: Any = None


@dataclass(frozen=True)
class PendingCommand:
    command: str
    namespace: str
    correlation_id: str
    group_id: str
    props: dict = field(default_factory=dict)

    def to_frame(self) -> list:
        header = {
            "command": self.command,
            "namespace": self.namespace,
            "groupId": self.group_id,
            "corrId": self.correlation_id,
        }
        return [header, dict(self.props)]


def dedup_key(track: TrackState) -> str:
    """Notification dedup key; depends on track identity only."""
    raw = f"{track.title}\x1f{track.artist}"
    return hashlib.sha256(raw.encode()).hexdigest()


def clamp_volume(value: int, lower: int = 0, upper: int = 100) -> int:
    return max(lower, min(upper, int(value)))
