"""
Tests for the Sync Engine.

All waits go through FakeClock, so backoff and debounce are asserted on the
requested delays rather than on wall time.
"""

import asyncio
import logging

import httpx
import pytest

from onboarding.errors import InvalidSelectionError, NetworkError, ServerError, UnauthorizedError
from onboarding.gateway import SelectionGateway
from onboarding.selection import Category, SelectionStore
from onboarding.sync import (
    ErrorKind,
    NetworkMonitor,
    PersistOutcome,
    SyncEngine,
    SyncPolicy,
    SyncStatus,
)


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio needed)."""
    return asyncio.run(coro)


SUB = Category.SUBCATEGORIES


class TestPolicy:

    def test_backoff_is_quadratic(self):
        policy = SyncPolicy()
        assert policy.backoff_delay(1) == pytest.approx(0.2)
        assert policy.backoff_delay(2) == pytest.approx(0.8)

    def test_from_settings(self):
        class _Settings:
            sync_max_attempts = 5
            sync_backoff_base_ms = 100
            sync_debounce_ms = 50

        policy = SyncPolicy.from_settings(_Settings())
        assert policy.max_attempts == 5
        assert policy.backoff_base == pytest.approx(0.1)
        assert policy.debounce == pytest.approx(0.05)


class TestNoOpShortCircuit:

    def test_identical_set_makes_no_call(self, engine, gateway):
        gateway.server[SUB] = ["sushi", "vegan", "cafes"]

        async def scenario():
            await engine.hydrate(SUB)
            return await engine.persist(SUB, ["vegan", "cafes", "sushi"])

        result = _run(scenario())

        assert result.outcome == PersistOutcome.OK
        assert gateway.replace_calls == []

    def test_changed_set_is_sent_once_and_remembered(self, engine, gateway):
        async def scenario():
            first = await engine.persist(SUB, ["vegan", "sushi"])
            second = await engine.persist(SUB, ["sushi", "vegan"])
            return first, second

        first, second = _run(scenario())

        assert first.is_ok and second.is_ok
        assert gateway.replace_calls == [(SUB, ["sushi", "vegan"])]
        assert engine.last_persisted(SUB) == {"sushi", "vegan"}

    def test_unhydrated_category_always_sends(self, engine, gateway):
        result = _run(engine.persist(SUB, []))
        assert result.is_ok
        assert gateway.replace_calls == [(SUB, [])]

    def test_payload_is_cleaned(self, engine, gateway):
        _run(engine.persist(SUB, [" sushi", "sushi", ""]))
        assert gateway.replace_calls == [(SUB, ["sushi"])]


class TestRetry:

    def test_three_network_failures(self, engine, gateway, clock):
        gateway.failures = [NetworkError("reset"), NetworkError("reset"), NetworkError("reset")]
        store = SelectionStore(SUB)
        store.replace(["sushi", "vegan", "cafes"])

        result = _run(engine.persist(SUB, store.selected))

        assert result.outcome == PersistOutcome.ERR
        assert result.error_kind == ErrorKind.NETWORK
        assert len(gateway.replace_calls) == 3
        assert clock.sleeps == [pytest.approx(0.2), pytest.approx(0.8)]
        assert store.selected == {"sushi", "vegan", "cafes"}
        assert engine.latest_entry(SUB).status == SyncStatus.FAILED
        assert engine.latest_entry(SUB).attempt == 3

    def test_recovers_after_transient_failure(self, engine, gateway, clock):
        gateway.failures = [ServerError("unavailable", 503)]

        result = _run(engine.persist(SUB, ["sushi"]))

        assert result.is_ok
        assert len(gateway.replace_calls) == 2
        assert clock.sleeps == [pytest.approx(0.2)]
        assert engine.latest_entry(SUB).status == SyncStatus.SUCCEEDED
        assert gateway.server[SUB] == ["sushi"]

    def test_validation_error_is_not_retried(self, engine, gateway, clock):
        gateway.failures = [InvalidSelectionError("One or more subcategory IDs are invalid", 400)]

        result = _run(engine.persist(SUB, ["not-a-thing"]))

        assert result.error_kind == ErrorKind.VALIDATION
        assert result.message == "One or more subcategory IDs are invalid"
        assert len(gateway.replace_calls) == 1
        assert clock.sleeps == []

    def test_auth_error_is_not_retried(self, engine, gateway, clock):
        gateway.failures = [UnauthorizedError("Unauthorized", 401)]

        result = _run(engine.persist(SUB, ["sushi"]))

        assert result.error_kind == ErrorKind.AUTH
        assert len(gateway.replace_calls) == 1
        assert engine.last_persisted(SUB) is None

    def test_going_offline_during_backoff_queues(self, gateway, monitor):
        class _DisconnectingClock:
            async def sleep(self, seconds):
                monitor.set_online(False)

        engine = SyncEngine(gateway, monitor=monitor, clock=_DisconnectingClock())
        gateway.failures = [NetworkError("reset")]

        result = _run(engine.persist(SUB, ["sushi"]))

        assert result.is_deferred
        assert len(gateway.replace_calls) == 1
        assert engine.queued_offline(SUB).status == SyncStatus.QUEUED_OFFLINE


class TestOffline:

    def test_offline_persist_makes_no_call(self, engine, gateway, monitor):
        monitor.set_online(False)

        result = _run(engine.persist(SUB, ["sushi"]))

        assert result.is_deferred
        assert gateway.replace_calls == []
        assert engine.queued_offline(SUB).payload == {"sushi"}

    def test_reconnect_replays_latest_entry_once(self, engine, gateway, monitor):
        async def scenario():
            monitor.set_online(False)
            await engine.persist(SUB, ["sushi"])
            await engine.persist(SUB, ["sushi", "vegan"])
            monitor.set_online(True)
            await engine.wait_idle()

        _run(scenario())

        assert gateway.replace_calls == [(SUB, ["sushi", "vegan"])]
        assert engine.queued_offline(SUB) is None
        assert engine.last_persisted(SUB) == {"sushi", "vegan"}

    def test_reconnect_without_queue_is_quiet(self, engine, gateway, monitor):
        async def scenario():
            monitor.set_online(False)
            monitor.set_online(True)
            await engine.wait_idle()

        _run(scenario())
        assert gateway.replace_calls == []

    def test_categories_replay_independently(self, engine, gateway, monitor):
        async def scenario():
            monitor.set_online(False)
            await engine.persist(Category.INTERESTS, ["food-drink"])
            await engine.persist(Category.DEALBREAKERS, ["trust"])
            monitor.set_online(True)
            await engine.wait_idle()

        _run(scenario())

        assert sorted(call[0].value for call in gateway.replace_calls) == ["dealbreakers", "interests"]

    def test_reverting_offline_edit_drops_queued_entry(self, engine, gateway, monitor):
        gateway.server[SUB] = ["vegan"]

        async def scenario():
            await engine.hydrate(SUB)
            monitor.set_online(False)
            await engine.persist(SUB, ["vegan", "sushi"])
            await engine.persist(SUB, ["vegan"])
            monitor.set_online(True)
            await engine.wait_idle()

        _run(scenario())

        assert engine.queued_offline(SUB) is None
        assert gateway.replace_calls == []

    def test_monitor_only_reports_transitions(self):
        monitor = NetworkMonitor(online=True)
        seen = []
        monitor.subscribe(seen.append)
        monitor.set_online(True)
        monitor.set_online(False)
        monitor.set_online(False)
        assert seen == [False]


class TestSupersession:

    def test_newer_payload_waits_for_in_flight_call(self, engine, gateway):
        async def scenario():
            gateway.hold = asyncio.Event()
            first = asyncio.create_task(engine.persist(SUB, ["sushi"]))
            await asyncio.sleep(0)
            assert engine.is_in_flight(SUB)

            second = await engine.persist(SUB, ["sushi", "vegan"])
            third = await engine.persist(SUB, ["vegan"])
            gateway.hold.set()
            return await first, second, third

        first, second, third = _run(scenario())

        assert second.is_deferred and third.is_deferred
        assert gateway.replace_calls == [(SUB, ["sushi"]), (SUB, ["vegan"])]
        assert first.is_ok
        assert engine.last_persisted(SUB) == {"vegan"}

    def test_rapid_add_remove_sends_only_final_state(self, engine, gateway):
        async def scenario():
            store = SelectionStore(SUB)
            store.toggle("vegan")
            engine.schedule(SUB, store.selected)
            store.toggle("sushi")
            engine.schedule(SUB, store.selected)
            store.toggle("sushi")
            engine.schedule(SUB, store.selected)
            await engine.wait_idle()

        _run(scenario())

        assert gateway.replace_calls == [(SUB, ["vegan"])]

    def test_rapid_toggle_back_to_saved_state_sends_nothing(self, engine, gateway, clock):
        gateway.server[SUB] = ["casual-eats", "cafes", "vegan"]

        async def scenario():
            store = SelectionStore(SUB)
            store.replace(await engine.hydrate(SUB))
            store.toggle("sushi")
            engine.schedule(SUB, store.selected)
            store.toggle("sushi")
            engine.schedule(SUB, store.selected)
            await engine.wait_idle()

        _run(scenario())

        assert gateway.replace_calls == []
        assert gateway.server[SUB] == ["casual-eats", "cafes", "vegan"]
        assert clock.sleeps == [pytest.approx(0.3), pytest.approx(0.3)]

    def test_immediate_persist_cancels_waiting_debounce(self, engine, gateway):
        async def scenario():
            task = engine.schedule(SUB, ["sushi"])
            now = await engine.persist(SUB, ["vegan"])
            await engine.wait_idle()
            return now, task.result()

        now, debounced = _run(scenario())

        assert now.is_ok
        assert debounced.is_deferred
        assert gateway.replace_calls == [(SUB, ["vegan"])]


class TestDebounce:

    def test_persist_debounced_waits_then_saves(self, engine, gateway, clock):
        result = _run(engine.persist_debounced(SUB, ["sushi"]))

        assert result.is_ok
        assert clock.sleeps == [pytest.approx(0.3)]
        assert gateway.replace_calls == [(SUB, ["sushi"])]

    def test_older_debounced_call_is_superseded(self, engine, gateway):
        async def scenario():
            return await asyncio.gather(
                engine.persist_debounced(SUB, ["sushi"]),
                engine.persist_debounced(SUB, ["vegan"]),
            )

        older, newer = _run(scenario())

        assert older.is_deferred
        assert newer.is_ok
        assert gateway.replace_calls == [(SUB, ["vegan"])]

    def test_mark_persisted_enables_short_circuit(self, engine, gateway):
        engine.mark_persisted(SUB, ["sushi", " vegan"])

        result = _run(engine.persist(SUB, ["vegan", "sushi"]))

        assert result.message == "No changes needed"
        assert gateway.replace_calls == []


class TestConnectionLoss:

    def test_exhausted_retries_while_offline_are_queued(self, engine, gateway, monitor, clock):
        gateway.failures = [NetworkError("reset")] * 3
        send = gateway.replace_selections

        async def drops_before_last_attempt(category, ids):
            if len(gateway.replace_calls) == 2:
                monitor.set_online(False)
            return await send(category, ids)

        gateway.replace_selections = drops_before_last_attempt

        result = _run(engine.persist(SUB, ["sushi"]))

        assert result.is_deferred
        assert len(gateway.replace_calls) == 3
        assert clock.sleeps == [pytest.approx(0.2), pytest.approx(0.8)]
        assert engine.queued_offline(SUB).payload == {"sushi"}
        assert engine.queued_offline(SUB).status == SyncStatus.QUEUED_OFFLINE

    def test_reconnect_flap_during_replay_sends_once(self, engine, gateway, monitor):
        async def scenario():
            monitor.set_online(False)
            await engine.persist(SUB, ["sushi"])
            gateway.hold = asyncio.Event()
            monitor.set_online(True)
            await asyncio.sleep(0)
            assert engine.is_in_flight(SUB)

            second = await engine.replay_offline(SUB)
            gateway.hold.set()
            await engine.wait_idle()
            return second

        second = _run(scenario())

        assert second.is_deferred
        assert gateway.replace_calls == [(SUB, ["sushi"])]
        assert engine.queued_offline(SUB) is None
        assert engine.last_persisted(SUB) == {"sushi"}

    def test_reconnect_reported_from_sync_code(self, engine, gateway, monitor):
        monitor.set_online(False)
        _run(engine.persist(SUB, ["sushi"]))

        monitor.set_online(True)
        assert gateway.replace_calls == []

        _run(engine.wait_idle())

        assert gateway.replace_calls == [(SUB, ["sushi"])]
        assert engine.queued_offline(SUB) is None

    def test_sync_reconnect_replays_on_next_persist(self, engine, gateway, monitor):
        monitor.set_online(False)
        _run(engine.persist(Category.INTERESTS, ["food-drink"]))
        monitor.set_online(True)

        async def scenario():
            await engine.persist(SUB, ["sushi"])
            await engine.wait_idle()

        _run(scenario())

        assert sorted(call[0].value for call in gateway.replace_calls) == ["interests", "subcategories"]

    def test_replay_crash_is_logged(self, engine, gateway, monitor, caplog):
        gateway.failures = [RuntimeError("boom")]

        async def scenario():
            monitor.set_online(False)
            await engine.persist(SUB, ["sushi"])
            monitor.set_online(True)
            await engine.wait_idle()
            await asyncio.sleep(0)

        with caplog.at_level(logging.ERROR, logger="onboarding.sync"):
            _run(scenario())

        assert any("Offline replay crashed" in r.message for r in caplog.records)


class TestBrokenResponses:

    def _engine(self, handler, monitor, clock):
        gateway = SelectionGateway("http://api.test", transport=httpx.MockTransport(handler))
        return SyncEngine(gateway, monitor=monitor, clock=clock)

    def test_undecodable_body_is_retried_then_reported(self, monitor, clock):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip")

        engine = self._engine(handler, monitor, clock)
        result = _run(engine.persist(SUB, ["sushi"]))

        assert result.error_kind == ErrorKind.NETWORK
        assert len(calls) == 3

    def test_non_object_body_is_reported(self, monitor, clock):
        def handler(request):
            return httpx.Response(200, json=["sushi"])

        engine = self._engine(handler, monitor, clock)
        result = _run(engine.persist(SUB, ["sushi"]))

        assert result.is_err
        assert "unexpected response shape" in result.message
        assert engine.last_persisted(SUB) is None
