import asyncio

import pytest

from sonos_relay.handlers import messages
from sonos_relay.services.messaging import MessageChannel
from sonos_relay.services.models import MessageType, PlaybackState, TrackState


class StubCoordinator:
    def __init__(self):
        self.calls = []

    async def on_state_changed(self, track, playback):
        self.calls.append(("state", track, playback))
        return "notification_sent"

    async def on_playback_changed(self, is_playing, position_millis=None):
        self.calls.append(("playback", is_playing))

    async def on_volume_changed(self, volume, muted):
        self.calls.append(("volume", volume, muted))

    async def handle_intent(self, intent_type, extra=None):
        self.calls.append(("intent", intent_type, extra))
        return True


def _dispatch(*posted, origin="https://play.sonos.com"):
    async def scenario():
        runtime = MessageChannel("runtime")
        coordinator = StubCoordinator()
        messages.register(runtime, coordinator)
        for message in posted:
            runtime.post(message, origin=origin)
        await runtime.drain()
        return coordinator.calls

    return asyncio.run(scenario())


class TestRuntimeHandler:
    def test_track_info(self):
        calls = _dispatch({
            "type": "TRACK_INFO",
            "track": {"title": "A", "artist": "B", "imageUrl": "http://x/a.jpg"},
            "isPlaying": True,
            "positionMillis": 1200,
        })
        assert calls == [(
            "state",
            TrackState(title="A", artist="B", image_url="http://x/a.jpg"),
            PlaybackState(is_playing=True, position_millis=1200),
        )]

    def test_playback_and_volume(self):
        calls = _dispatch(
            {"type": "PLAYBACK_INFO", "isPlaying": False},
            {"type": "VOLUME_INFO", "volume": 12, "muted": True},
        )
        assert calls == [("playback", False), ("volume", 12, True)]

    @pytest.mark.parametrize("message,extra", [
        ({"type": "NEXT"}, {}),
        ({"type": "SET_VOLUME", "volume": 30}, {"volume": 30}),
    ])
    def test_intents(self, message, extra):
        [call] = _dispatch(message)
        assert call == ("intent", MessageType(message["type"]), extra)

    @pytest.mark.parametrize("message", [
        {"type": "TRACK_INFO"},
        {"type": "VOLUME_INFO", "volume": "loud"},
        {"type": "SONG_UPDATED", "data": {}},
        {"no": "type"},
    ])
    def test_malformed_dropped(self, message):
        assert _dispatch(message) == []

    def test_messages_handled_in_order(self):
        calls = _dispatch(
            {"type": "PLAYBACK_INFO", "isPlaying": True},
            {"type": "PLAYBACK_INFO", "isPlaying": False},
            {"type": "PLAYBACK_INFO", "isPlaying": True},
        )
        assert [c[1] for c in calls] == [True, False, True]

    def test_surface_origin_accepted(self):
        [call] = _dispatch({"type": "PREV"}, origin="extension://sonos-relay")
        assert call == ("intent", MessageType.PREV, {})

    @pytest.mark.parametrize("origin", ["https://evil.example", "", "extension://other"])
    def test_untrusted_origin_dropped(self, origin):
        calls = _dispatch(
            {"type": "NEXT"},
            {"type": "TRACK_INFO", "track": {"title": "A", "artist": "B"}, "isPlaying": True},
            origin=origin,
        )
        assert calls == []
