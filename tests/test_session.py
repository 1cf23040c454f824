"""Tests for the session store and experience session."""

from __future__ import annotations

import asyncio
import random

import pytest

from threshold.asset_fetch.fetcher import BinaryAssetFetcher
from threshold.presentation.selector import PresentationMode, PresentationSelector
from threshold.session import ExperienceSession, SessionPhase, SessionStore
from threshold.world_generation.asset_resolver import AssetResolver
from threshold.world_generation.client import WorldGenerationClient
from threshold.world_generation.models import NormalizedWorldAsset
from threshold.world_generation.orchestrator import GenerationOrchestrator

pytestmark = pytest.mark.usefixtures("add_repo_to_path")

BASE = "https://api.worldlabs.ai/marble/v1"
START_URL = f"{BASE}/worlds:generate"
SPLAT_URL = "https://cdn.example.com/w/full.spz"
PAYLOAD = bytes(range(256)) * 16


@pytest.fixture
def session(resolver, pipeline_config, fake_clock):
    client = WorldGenerationClient(
        resolver,
        "test-key",
        service=pipeline_config.service,
        polling=pipeline_config.polling,
        clock=fake_clock,
        sleep=fake_clock.sleep,
        wall_clock_ms=lambda: 1,
    )
    orchestrator = GenerationOrchestrator(
        client,
        AssetResolver(pipeline_config.resolution),
        pipeline_config,
        rng=random.Random(3),
    )
    selector = PresentationSelector(
        BinaryAssetFetcher(resolver, min_bytes=pipeline_config.fetch.min_bytes),
        pipeline_config.resolution.category_priority,
    )
    return ExperienceSession(SessionStore(), orchestrator, selector)


def _script_success(fake_transport, make_response, operation_id="op-1"):
    fake_transport.add(START_URL, make_response(200, json_body={"operation_id": operation_id}))
    fake_transport.add(
        f"{BASE}/operations/{operation_id}?",
        make_response(200, json_body={"done": False}),
        make_response(
            200,
            json_body={"done": True, "response": {"id": "w1", "links": {"spz": SPLAT_URL}}},
        ),
    )
    fake_transport.add(SPLAT_URL, make_response(200, PAYLOAD))


@pytest.mark.integration
def test_portal_to_exploring(session, fake_transport, make_response):
    _script_success(fake_transport, make_response)
    events = []
    session.store.subscribe(events.append)
    session.enter_staging()

    presentation = asyncio.run(session.enter_portal("Floating Lavender Sky Islands"))

    store = session.store
    assert presentation.mode is PresentationMode.SPLAT
    assert store.phase is SessionPhase.EXPLORING
    assert store.current_world.splat_url == SPLAT_URL
    assert store.presentation is presentation
    assert store.history == [store.current_world]
    assert session.last_theme == "Floating Lavender Sky Islands"
    phases = [event.phase for event in events if event.kind == "phase"]
    assert phases == [SessionPhase.STAGING, SessionPhase.GENERATING, SessionPhase.EXPLORING]
    statuses = [event.message for event in events if event.kind == "status"]
    assert "Materializing world... (0s)" in statuses
    assert "Materializing world... (10s)" in statuses


@pytest.mark.integration
def test_failure_enters_error_with_sanitized_message(session, fake_transport, make_response):
    fake_transport.add(
        START_URL,
        make_response(503, "<html><body><h1>Service Unavailable</h1></body></html>", content_type="text/html"),
    )

    result = asyncio.run(session.enter_portal("Theme"))

    store = session.store
    assert result is None
    assert store.phase is SessionPhase.ERROR
    assert store.error_message == "The world service is unavailable right now."
    assert store.recovery_action == "restart"
    assert store.current_world is None


@pytest.mark.integration
def test_retry_after_error_runs_a_fresh_attempt(session, fake_transport, make_response):
    fake_transport.add(
        START_URL,
        make_response(500, b"temporarily broken"),
        make_response(200, json_body={"operation_id": "op-2"}),
    )
    fake_transport.add(
        f"{BASE}/operations/op-2?",
        make_response(200, json_body={"done": True, "response": {"links": {"spz": SPLAT_URL}}}),
    )
    fake_transport.add(SPLAT_URL, make_response(200, PAYLOAD))

    assert asyncio.run(session.enter_portal("Theme")) is None
    assert session.store.phase is SessionPhase.ERROR

    presentation = asyncio.run(session.retry())

    assert presentation is not None
    assert session.store.phase is SessionPhase.EXPLORING
    assert session.store.error_message is None


@pytest.mark.unit
def test_retry_outside_error_does_nothing(session, fake_transport):
    assert asyncio.run(session.retry()) is None
    assert fake_transport.calls == []


@pytest.mark.unit
def test_return_to_staging_releases_presentation(session, fake_transport, make_response):
    _script_success(fake_transport, make_response)
    presentation = asyncio.run(session.enter_portal("Theme"))

    session.return_to_staging()

    assert presentation.released
    assert presentation.data is None
    assert session.store.phase is SessionPhase.STAGING
    assert session.store.current_world is None
    assert session.store.presentation is None
    assert len(session.store.history) == 1


@pytest.mark.unit
def test_new_world_supersedes_and_releases_previous(session, fake_transport, make_response):
    _script_success(fake_transport, make_response)
    first = asyncio.run(session.enter_portal("Theme"))
    second = asyncio.run(session.enter_portal("Theme"))

    assert first.released
    assert not second.released
    assert session.store.presentation is second
    assert len(session.store.history) == 2


@pytest.mark.unit
def test_repeated_triggers_while_generating_are_ignored(session, fake_transport, make_response):
    _script_success(fake_transport, make_response)

    async def _scenario():
        gate = asyncio.Event()
        real_start = session.orchestrator.client.start_generation

        async def _slow_start(request):
            await gate.wait()
            return await real_start(request)

        session.orchestrator.client.start_generation = _slow_start
        first = asyncio.create_task(session.enter_portal("Theme"))
        await asyncio.sleep(0)
        ignored = [await session.enter_portal("Theme") for _ in range(3)]
        gate.set()
        return ignored, await first

    ignored, presentation = asyncio.run(_scenario())

    assert ignored == [None, None, None]
    assert presentation.mode is PresentationMode.SPLAT
    assert len(fake_transport.calls_to(START_URL)) == 1


@pytest.mark.unit
def test_results_of_cancelled_attempt_do_not_leak(session, fake_transport, make_response):
    _script_success(fake_transport, make_response)

    async def _scenario():
        gate = asyncio.Event()
        real_start = session.orchestrator.client.start_generation

        async def _slow_start(request):
            await gate.wait()
            return await real_start(request)

        session.orchestrator.client.start_generation = _slow_start
        first = asyncio.create_task(session.enter_portal("Theme"))
        await asyncio.sleep(0)
        session.return_to_staging()
        gate.set()
        return await first

    assert asyncio.run(_scenario()) is None
    assert session.store.phase is SessionPhase.STAGING
    assert session.store.current_world is None
    assert session.store.history == []


@pytest.mark.unit
def test_store_listeners_can_unsubscribe_and_fail_safely():
    store = SessionStore()
    seen = []

    def _broken(event):
        raise RuntimeError("listener bug")

    store.subscribe(_broken)
    unsubscribe = store.subscribe(seen.append)
    store.set_status("hello")
    unsubscribe()
    store.set_status("ignored")

    assert [event.message for event in seen] == ["hello"]


@pytest.mark.unit
def test_show_world_records_history():
    store = SessionStore()
    world = NormalizedWorldAsset(id="w", theme="t", preview_image_url="https://x.example.com/a.png")

    class _Presentation:
        notice = None
        released = False

        def release(self):
            self.released = True

    presentation = _Presentation()
    store.show_world(world, presentation)

    assert store.phase is SessionPhase.EXPLORING
    assert store.history == [world]
    store.clear_world()
    assert presentation.released
