import json
from typing import Optional

import pytest
from aiohttp import WSMessage, WSMsgType

from sonos_relay.services.store import StateStore

PAGE_ORIGIN = "https://play.sonos.com"


class FakeWebSocket:
    """Stand-in for aiohttp's ClientWebSocketResponse."""

    def __init__(self, frames=()):
        self.sent: list[str] = []
        self.closed = False
        self._frames = list(frames)

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("closed")
        self.sent.append(data)

    async def receive(self, timeout: Optional[float] = None) -> WSMessage:
        if not self._frames:
            self.closed = True
            return WSMessage(WSMsgType.CLOSED, None, None)
        return WSMessage(WSMsgType.TEXT, self._frames.pop(0), None)

    async def close(self) -> bool:
        self.closed = True
        return True


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.calls: list[tuple] = []
        self.fail = fail

    async def clear(self, notification_id):
        self.calls.append(("clear", notification_id))

    async def create(self, notification_id, notification):
        if self.fail:
            raise RuntimeError("surface gone")
        self.calls.append(("create", notification_id, notification))

    @property
    def created(self):
        return [call[2] for call in self.calls if call[0] == "create"]


def frame(header: dict, payload) -> str:
    return json.dumps([header, payload])


def playback_frame(title="A", artist="B", state="PLAYBACK_STATE_PLAYING", position=None, image_url=None) -> str:
    track = {"name": title, "artist": {"name": artist}}
    if image_url:
        track["imageUrl"] = image_url
    playback = {"playbackState": state}
    if position is not None:
        playback["positionMillis"] = position
    return frame(
        {"namespace": "playback:1", "type": "extendedPlaybackStatus"},
        {"playback": playback, "metadata": {"currentItem": {"track": track}}},
    )


def device_frame(group_id="RINCON_1:2") -> str:
    return frame({"type": "deviceStatus", "groupId": group_id}, {})


def volume_frame(volume=30, muted=False) -> str:
    return frame({"namespace": "groupVolume:1", "type": "groupVolume"}, {"volume": volume, "muted": muted})


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path / "state.json")


@pytest.fixture
def preferences(tmp_path):
    return StateStore(tmp_path / "preferences.json", defaults={"notificationsEnabled": True})
