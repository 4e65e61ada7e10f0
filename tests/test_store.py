import asyncio
import json
import time

import pytest

from sonos_relay.services import store as store_module
from sonos_relay.services.store import PersistenceError, StateStore


def test_defaults_and_roundtrip(tmp_path):
    path = tmp_path / "prefs.json"

    async def scenario():
        store = StateStore(path, defaults={"notificationsEnabled": True})
        before = await store.get("notificationsEnabled")
        await store.set({"notificationsEnabled": False})
        after = await StateStore(path, defaults={"notificationsEnabled": True}).get("notificationsEnabled")
        return before, after

    before, after = asyncio.run(scenario())
    assert before == {"notificationsEnabled": True}
    assert after == {"notificationsEnabled": False}
    assert json.loads(path.read_text())["notificationsEnabled"] is False


def test_missing_key_is_absent(store):
    assert asyncio.run(store.get("currentSong")) == {}


def test_concurrent_merges_keep_every_field(store):
    async def scenario():
        await asyncio.gather(
            store.merge("playSettings", {"isPlaying": True}),
            store.merge("playSettings", {"volume": 40}),
            store.merge("playSettings", {"muted": True}),
        )
        return await store.get("playSettings")

    assert asyncio.run(scenario()) == {
        "playSettings": {"isPlaying": True, "volume": 40, "muted": True}
    }


def test_returned_values_are_copies(store):
    async def scenario():
        merged = await store.merge("playSettings", {"volume": 10})
        merged["volume"] = 99
        return await store.get("playSettings")

    assert asyncio.run(scenario())["playSettings"]["volume"] == 10


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    assert asyncio.run(StateStore(path).get("playSettings")) == {}


def test_write_failure_raises_persistence_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    store = StateStore(blocker / "state.json")

    with pytest.raises(PersistenceError):
        asyncio.run(store.set({"currentSong": {"trackName": "A"}}))


def test_slow_first_read_does_not_drop_merges(tmp_path, monkeypatch):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"playSettings": {"isPlaying": True}}))
    read_json = store_module._read_json

    def slow_read(p):
        time.sleep(0.2)
        return read_json(p)

    monkeypatch.setattr(store_module, "_read_json", slow_read)

    async def scenario():
        store = StateStore(path)
        reader = asyncio.ensure_future(store.get("playSettings"))
        await asyncio.sleep(0)
        await store.merge("playSettings", {"volume": 40})
        await store.merge("playSettings", {"muted": True})
        first = await reader
        return first, await store.get("playSettings")

    first, final = asyncio.run(scenario())
    assert first["playSettings"]["isPlaying"] is True
    assert final == {"playSettings": {"isPlaying": True, "volume": 40, "muted": True}}
    assert json.loads(path.read_text())["playSettings"] == final["playSettings"]
