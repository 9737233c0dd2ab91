from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Callable

import httpx
import pytest

from build_monitor.config import AppConfig, HostItem
from build_monitor.models import Host, StabilityState, classify
from build_monitor.monitor import Monitor
from build_monitor.notifier import BellSink, NullSink
from build_monitor.poller import parse_rfc3339


T1 = "2025-01-01T00:00:00Z"
T2 = "2025-01-02T00:00:00Z"


class _CountingSink:
    def __init__(self) -> None:
        self.pulses = 0

    def __call__(self) -> None:
        self.pulses += 1


def _scripted(responses: dict[str, list[Callable[[httpx.Request], httpx.Response]]]) -> httpx.MockTransport:
    """Each host answers with the next scripted response, repeating the last one."""
    calls: dict[str, int] = defaultdict(int)

    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        script = responses[host]
        idx = min(calls[host], len(script) - 1)
        calls[host] += 1
        return script[idx](request)

    return httpx.MockTransport(handler)


def _build(ts: str) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(200, json={"buildAt": ts})


def _status(code: int) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(code, json={"buildAt": T1})


def _refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _garbage(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"not json")


@pytest.mark.asyncio
async def test_window_of_three_gains_then_loses_stability() -> None:
    sink = _CountingSink()
    transport = _scripted({"a.test": [_build(T1), _build(T1), _build(T1), _build(T2)]})
    async with httpx.AsyncClient(transport=transport) as client:
        monitor = Monitor(interval_ms=1000, stability_window=3, sink=sink, client=client)
        poller = monitor.add_host(Host(id="a", url="http://a.test/"))

        states = []
        pulses = []
        for _ in range(3):
            states.append(classify(await poller.tick()))
            pulses.append(sink.pulses)
        assert states == [StabilityState.UNSTABLE, StabilityState.UNSTABLE, StabilityState.STABLE]
        assert pulses == [0, 0, 1]

        status = await poller.tick()

    assert classify(status) == StabilityState.UNSTABLE
    assert sink.pulses == 2
    assert status.build_stability.recent_builds == (parse_rfc3339(T1), parse_rfc3339(T1), parse_rfc3339(T2))
    assert monitor.get_status()["a"] == status


@pytest.mark.asyncio
async def test_transport_failure_on_first_poll() -> None:
    sink = _CountingSink()
    async with httpx.AsyncClient(transport=_scripted({"down.test": [_refused]})) as client:
        monitor = Monitor(interval_ms=1000, stability_window=3, sink=sink, client=client)
        poller = monitor.add_host(Host(id="down", url="http://down.test/"))
        status = await poller.tick()

    assert status.is_healthy is False
    assert status.error_message == "connection refused"
    assert status.build_at is None
    assert classify(status) == StabilityState.UNHEALTHY
    assert sink.pulses == 0


@pytest.mark.asyncio
async def test_http_500_leaves_window_untouched() -> None:
    transport = _scripted({"a.test": [_build(T1), _build(T1), _status(500), _build(T1)]})
    async with httpx.AsyncClient(transport=transport) as client:
        monitor = Monitor(interval_ms=1000, stability_window=3, client=client)
        poller = monitor.add_host(Host(id="a", url="http://a.test/"))
        await poller.tick()
        await poller.tick()

        failed = await poller.tick()
        assert failed.is_healthy is False
        assert failed.error_message == "HTTP 500"
        assert failed.build_at is None
        assert monitor.tracker.window("a") == (parse_rfc3339(T1), parse_rfc3339(T1))

        recovered = await poller.tick()

    assert classify(recovered) == StabilityState.STABLE


@pytest.mark.asyncio
async def test_unparsable_body_keeps_history_and_reports_empty_window() -> None:
    sink = _CountingSink()
    transport = _scripted({"a.test": [_build(T1), _build(T1), _garbage, _build(T1)]})
    async with httpx.AsyncClient(transport=transport) as client:
        monitor = Monitor(interval_ms=1000, stability_window=3, sink=sink, client=client)
        poller = monitor.add_host(Host(id="a", url="http://a.test/"))
        await poller.tick()
        await poller.tick()

        no_signal = await poller.tick()
        assert no_signal.is_healthy is True
        assert no_signal.error_message is None
        assert no_signal.build_stability.is_stable is False
        assert no_signal.build_stability.recent_builds == ()
        assert len(monitor.tracker.window("a")) == 2

        status = await poller.tick()

    assert classify(status) == StabilityState.STABLE
    assert sink.pulses == 1


@pytest.mark.asyncio
async def test_stable_host_going_down_fires_once() -> None:
    sink = _CountingSink()
    transport = _scripted({"a.test": [_build(T1), _build(T1), _refused, _refused]})
    async with httpx.AsyncClient(transport=transport) as client:
        monitor = Monitor(interval_ms=1000, stability_window=2, sink=sink, client=client)
        poller = monitor.add_host(Host(id="a", url="http://a.test/"))
        for _ in range(4):
            await poller.tick()

    assert sink.pulses == 2
    assert monitor.notifier.state_of("a") == StabilityState.UNHEALTHY


@pytest.mark.asyncio
async def test_slow_host_does_not_block_other_hosts() -> None:
    release = asyncio.Event()
    fast_calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal fast_calls
        if request.url.host == "slow.test":
            await release.wait()
        else:
            fast_calls += 1
        return httpx.Response(200, json={"buildAt": T1})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        monitor = Monitor(interval_ms=10, stability_window=2, client=client)
        monitor.add_host(Host(id="slow", url="http://slow.test/"))
        monitor.add_host(Host(id="fast", url="http://fast.test/"))
        monitor.start_all()
        try:
            for _ in range(200):
                if fast_calls >= 3:
                    break
                await asyncio.sleep(0.01)
            snapshot = monitor.get_status()
            assert fast_calls >= 3
            assert "fast" in snapshot
            assert "slow" not in snapshot
            assert classify(snapshot["fast"]) == StabilityState.STABLE
        finally:
            release.set()
            await monitor.stop()

    assert monitor.tasks == {}


@pytest.mark.asyncio
async def test_poll_all_once_polls_every_host() -> None:
    transport = _scripted({"a.test": [_build(T1)], "b.test": [_status(503)]})
    async with httpx.AsyncClient(transport=transport) as client:
        monitor = Monitor(interval_ms=1000, stability_window=3, client=client)
        monitor.add_host(Host(id="a", url="http://a.test/"))
        monitor.add_host(Host(id="b", url="http://b.test/"))
        snapshot = await monitor.poll_all_once()

    assert snapshot["a"].is_healthy is True
    assert snapshot["b"].error_message == "HTTP 503"


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_failing_sink_does_not_stop_any_host() -> None:
    calls: dict[str, int] = defaultdict(int)

    def handler(request: httpx.Request) -> httpx.Response:
        calls[request.url.host] += 1
        return httpx.Response(200, json={"buildAt": T1})

    def sink() -> None:
        raise RuntimeError("sink exploded")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        monitor = Monitor(interval_ms=10, stability_window=1, sink=sink, client=client)
        monitor.add_host(Host(id="a", url="http://a.test/"))
        monitor.add_host(Host(id="b", url="http://b.test/"))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(monitor.run(), 0.5)

    assert calls["a.test"] >= 3
    assert calls["b.test"] >= 3
    assert monitor.notifier.state_of("a") == StabilityState.STABLE
    assert monitor.tasks == {}


@pytest.mark.asyncio
async def test_store_failure_is_local_to_one_cycle(monkeypatch: pytest.MonkeyPatch) -> None:
    async with httpx.AsyncClient(transport=_scripted({"a.test": [_build(T1)], "b.test": [_build(T2)]})) as client:
        monitor = Monitor(interval_ms=10, stability_window=2, client=client)
        monitor.add_host(Host(id="a", url="http://a.test/"))
        monitor.add_host(Host(id="b", url="http://b.test/"))

        real_put = monitor.store.put
        failures = {"a": 2}

        def flaky_put(host_id, status) -> None:
            if failures.get(host_id):
                failures[host_id] -= 1
                raise RuntimeError("store unavailable")
            real_put(host_id, status)

        monkeypatch.setattr(monitor.store, "put", flaky_put)
        monitor.start_all()
        try:
            await _wait_until(lambda: "a" in monitor.get_status() and monitor.pollers["b"].cycles >= 3)
            snapshot = monitor.get_status()
            assert failures["a"] == 0
            assert snapshot["a"].is_healthy is True
            assert classify(snapshot["b"]) == StabilityState.STABLE
            assert all(not t.done() for t in monitor.tasks.values())
        finally:
            await monitor.stop()


@pytest.mark.asyncio
async def test_running_poller_recovers_after_failed_cycles() -> None:
    transport = _scripted({"a.test": [_refused, _refused, _build(T1)]})
    async with httpx.AsyncClient(transport=transport) as client:
        monitor = Monitor(interval_ms=10, stability_window=3, client=client)
        monitor.add_host(Host(id="a", url="http://a.test/"))
        monitor.start_all()
        try:
            await _wait_until(lambda: monitor.pollers["a"].cycles >= 5)
            status = monitor.get_status()["a"]
        finally:
            await monitor.stop()

    assert monitor.pollers["a"].cycles >= 5
    assert status.is_healthy is True
    assert status.build_at == parse_rfc3339(T1)
    assert classify(status) == StabilityState.STABLE


@pytest.mark.asyncio
async def test_monitor_polls_again_after_stop(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = _scripted({"a.test": [_build(T1)]})
    created: list[httpx.AsyncClient] = []
    real_client = httpx.AsyncClient

    class _ScriptedClient(real_client):
        def __init__(self, **kwargs) -> None:
            super().__init__(transport=transport, **kwargs)
            created.append(self)

    monkeypatch.setattr(httpx, "AsyncClient", _ScriptedClient)

    monitor = Monitor(interval_ms=10, stability_window=2)
    poller = monitor.add_host(Host(id="a", url="http://a.test/"))
    assert (await poller.tick()).is_healthy is True
    await monitor.stop()
    assert created[0].is_closed

    status = await poller.tick()
    assert status.is_healthy is True
    assert status.error_message is None

    monitor.start_all()
    try:
        await _wait_until(lambda: poller.cycles >= 4)
        assert classify(monitor.get_status()["a"]) == StabilityState.STABLE
    finally:
        await monitor.stop()

    assert len(created) == 2
    assert all(c.is_closed for c in created)


@pytest.mark.asyncio
async def test_duplicate_host_is_rejected() -> None:
    monitor = Monitor(interval_ms=1000)
    monitor.add_host(Host(id="a", url="http://a.test/"))
    with pytest.raises(ValueError):
        monitor.add_host(Host(id="a", url="http://other.test/"))
    await monitor.stop()


@pytest.mark.asyncio
async def test_from_config_builds_pollers_and_sink() -> None:
    config = AppConfig(interval=250, stability_window=4, enable_bell=False)
    config.add_host(HostItem(name="a", url="http://a.test/"))
    config.add_host(HostItem(name="b", url="http://b.test/"))

    async with httpx.AsyncClient() as client:
        monitor = Monitor.from_config(config, client=client)
        assert [h.id for h in monitor.hosts] == ["a", "b"]
        assert monitor.tracker.window_size == 4
        assert monitor.pollers["a"].interval_ms == 250
        assert isinstance(monitor.notifier.sink, NullSink)

        config.enable_bell = True
        assert isinstance(Monitor.from_config(config, client=client).notifier.sink, BellSink)
