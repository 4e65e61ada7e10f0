import asyncio

from sonos_relay.utils.debounce import Debouncer


def test_burst_collapses_into_one_call():
    async def scenario():
        calls = []

        async def callback():
            calls.append(asyncio.get_running_loop().time())

        debouncer = Debouncer(callback, delay=0.1)
        for _ in range(10):
            debouncer.trigger()
            await asyncio.sleep(0.01)
        assert calls == []
        await asyncio.sleep(0.25)
        await debouncer.wait()
        return calls, debouncer.pending

    calls, pending = asyncio.run(scenario())
    assert len(calls) == 1
    assert pending is False


def test_separate_windows_fire_separately():
    async def scenario():
        calls = []

        async def callback():
            calls.append(1)

        debouncer = Debouncer(callback, delay=0.02)
        debouncer.trigger()
        await asyncio.sleep(0.06)
        debouncer.trigger()
        await asyncio.sleep(0.06)
        await debouncer.wait()
        return calls

    assert asyncio.run(scenario()) == [1, 1]


def test_cancel_and_flush():
    async def scenario():
        calls = []

        async def callback():
            calls.append(1)

        debouncer = Debouncer(callback, delay=10)
        debouncer.trigger()
        debouncer.cancel()
        await debouncer.flush()
        assert calls == []

        debouncer.trigger()
        await debouncer.flush()
        return calls, debouncer.pending

    calls, pending = asyncio.run(scenario())
    assert calls == [1]
    assert pending is False
