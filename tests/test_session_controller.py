from session_controller import (
    SessionController,
    Session,
    RESOLVING_MESSAGE,
    INVALID_URL_MESSAGE,
    EMPTY_URL_MESSAGE,
    ENGINE_UNAVAILABLE_MESSAGE,
)
from recovery import MANIFEST_LOADED_MESSAGE
from surface import AUTOPLAY_BLOCKED_MESSAGE, request_play
from status import StatusReporter
from models import (
    EngineEvents,
    ErrorData,
    ErrorTypes,
    PlaybackStrategy,
    RecoveryState,
    Severity,
    ENGINE_CONFIG,
)
import asyncio
import pytest

from conftest import FakeSurface

LIVE_URL = "https://example.com/live.m3u8"
SEGMENT_URL = "https://example.com/seg.ts"
LIVE_RELAY = "/proxy/https%3A%2F%2Fexample.com%2Flive.m3u8"


class RecordingReporter(StatusReporter):
    def __init__(self):
        super().__init__()
        self.history = []

    def report(self, message, severity=Severity.INFO):
        self.history.append((message, severity))
        super().report(message, severity)


class TestStatusReporter:
    """Test status sink"""

    def test_empty_by_default(self):
        reporter = StatusReporter()
        assert reporter.message == ""
        assert reporter.severity == Severity.INFO

    def test_overwrites_last_status(self):
        reporter = StatusReporter()
        reporter.report("first")
        reporter.report("second", Severity.ERROR)
        assert reporter.message == "second"
        assert reporter.to_dict() == {"message": "second", "severity": "error"}


class TestRequestPlay:
    """Test the fire-and-forget play request"""

    @pytest.mark.asyncio
    async def test_rejection_reported_while_current(self):
        reporter = StatusReporter()
        rejected = []
        task = request_play(FakeSurface(reject_play=True), reporter,
                            on_rejected=lambda: rejected.append(True), is_current=lambda: True)
        assert await task is False
        assert reporter.message == AUTOPLAY_BLOCKED_MESSAGE
        assert rejected == [True]

    @pytest.mark.asyncio
    async def test_rejection_dropped_once_superseded(self):
        reporter = StatusReporter()
        reporter.report("current")
        rejected = []
        task = request_play(FakeSurface(reject_play=True), reporter,
                            on_rejected=lambda: rejected.append(True), is_current=lambda: False)
        assert await task is False
        assert reporter.message == "current"
        assert rejected == []

    @pytest.mark.asyncio
    async def test_success_calls_back(self):
        started = []
        task = request_play(FakeSurface(), StatusReporter(), on_success=lambda: started.append(True))
        assert await task is True
        assert started == [True]


class TestSessionController:
    """Test session lifecycle and strategy dispatch"""

    @pytest.fixture
    def reporter(self):
        return RecordingReporter()

    @pytest.fixture
    def controller(self, surface, reporter, engine_factory):
        return SessionController(
            surface,
            reporter=reporter,
            engine_factory=engine_factory,
            presets={"willow": "", "sky": "https://example.com/sky.m3u8"},
            relay_prefix="/proxy/",
        )

    @pytest.mark.asyncio
    async def test_engine_session_scenario(self, controller, surface, reporter, engine_factory):
        session = await controller.start_session(LIVE_URL)

        assert reporter.history[0] == (RESOLVING_MESSAGE, Severity.INFO)
        assert session.strategy == PlaybackStrategy.ENGINE_ADAPTIVE
        assert controller.session is session
        assert session.state == RecoveryState.LOADING

        engine = engine_factory.created[0]
        assert session.engine_handle is engine
        assert engine.config == ENGINE_CONFIG
        assert engine.source == LIVE_RELAY
        assert engine.media is surface

        engine.emit(EngineEvents.MANIFEST_PARSED, {"levels": 1})
        assert reporter.message == MANIFEST_LOADED_MESSAGE
        assert session.state == RecoveryState.PLAYING

    @pytest.mark.asyncio
    async def test_raw_segment_plays_directly(self, controller, surface, engine_factory):
        surface.native_support = "probably"
        session = await controller.start_session(SEGMENT_URL)

        assert session.strategy == PlaybackStrategy.DIRECT_TRANSPORT_STREAM
        assert session.engine_handle is None
        assert engine_factory.created == []
        assert surface.src == "/proxy/https%3A%2F%2Fexample.com%2Fseg.ts"

        await session.play_task
        assert surface.play_calls == 1
        assert session.state == RecoveryState.PLAYING

    @pytest.mark.asyncio
    async def test_native_adaptive(self, controller, surface, engine_factory):
        surface.native_support = "maybe"
        session = await controller.start_session(LIVE_URL)

        assert session.strategy == PlaybackStrategy.NATIVE_ADAPTIVE
        assert engine_factory.created == []
        assert surface.src == LIVE_RELAY
        await session.play_task
        assert surface.play_calls == 1

    @pytest.mark.asyncio
    async def test_autoplay_blocked_keeps_session(self, controller, surface, reporter):
        surface.reject_play = True
        session = await controller.start_session(SEGMENT_URL)
        await session.play_task

        assert reporter.message == AUTOPLAY_BLOCKED_MESSAGE
        assert reporter.severity == Severity.ERROR
        assert controller.session is session
        assert session.state == RecoveryState.LOADING

    @pytest.mark.asyncio
    async def test_invalid_url_creates_nothing(self, controller, reporter, engine_factory):
        assert await controller.start_session("example.com/live.m3u8") is None

        assert reporter.history == [
            (RESOLVING_MESSAGE, Severity.INFO),
            (INVALID_URL_MESSAGE, Severity.ERROR),
        ]
        assert controller.session is None
        assert engine_factory.created == []

    @pytest.mark.asyncio
    async def test_invalid_url_leaves_active_session(self, controller, engine_factory):
        session = await controller.start_session(LIVE_URL)
        await controller.start_session("::not a url::")
        assert controller.session is session
        assert engine_factory.created[0].destroyed is False

    @pytest.mark.asyncio
    async def test_supersede_destroys_previous_engine_first(self, controller, engine_factory, log):
        await controller.start_session(LIVE_URL)
        await controller.start_session("https://example.com/other.m3u8")

        assert log == ["create:0", "destroy:0", "create:1"]
        assert engine_factory.max_live == 1
        assert engine_factory.live == 1

    @pytest.mark.asyncio
    async def test_supersede_by_direct_destroys_engine_before_assignment(
            self, controller, engine_factory, log):
        await controller.start_session(LIVE_URL)
        await controller.start_session(SEGMENT_URL)

        assert log == ["create:0", "destroy:0",
                       "src:/proxy/https%3A%2F%2Fexample.com%2Fseg.ts"]
        assert engine_factory.live == 0

    @pytest.mark.asyncio
    async def test_overlapping_play_actions_keep_one_engine(self, controller, engine_factory):
        engine_factory.destroy_delay = 0.01
        await controller.start_session(LIVE_URL)

        first, second = await asyncio.gather(
            controller.start_session("https://example.com/a.m3u8"),
            controller.start_session("https://example.com/b.m3u8"),
        )

        assert engine_factory.max_live == 1
        assert len(engine_factory.created) == 3
        assert controller.session is second
        assert first.engine_handle is None

        await controller.teardown()
        assert engine_factory.live == 0

    @pytest.mark.asyncio
    async def test_superseded_autoplay_rejection_ignored(
            self, controller, surface, reporter, engine_factory):
        surface.reject_play = True
        surface.play_delay = 0.01
        first = await controller.start_session(LIVE_URL)
        engine_factory.created[0].emit(EngineEvents.MANIFEST_PARSED, {"levels": 1})
        stale_play = first.recovery.play_task

        second = await controller.start_session("https://example.com/other.m3u8")
        reporter.report("current")
        await asyncio.sleep(0.05)

        assert stale_play.cancelled()
        assert reporter.message == "current"
        assert second.state == RecoveryState.LOADING

    @pytest.mark.asyncio
    async def test_superseded_engine_events_ignored(self, controller, reporter, engine_factory):
        await controller.start_session(LIVE_URL)
        second = await controller.start_session("https://example.com/other.m3u8")
        reporter.report("current")

        old_engine = engine_factory.created[0]
        old_engine.emit(EngineEvents.ERROR, ErrorData(
            type=ErrorTypes.NETWORK_ERROR, details="manifestLoadError", fatal=True))

        assert reporter.message == "current"
        assert old_engine.start_load_calls == 0
        assert second.state == RecoveryState.LOADING

    @pytest.mark.asyncio
    async def test_teardown_without_session_is_noop(self, controller, reporter):
        reporter.report("idle")
        await controller.teardown()
        await controller.teardown()
        assert controller.session is None
        assert reporter.message == "idle"

    @pytest.mark.asyncio
    async def test_teardown_idempotent(self, controller, engine_factory):
        await controller.start_session(LIVE_URL)
        await controller.teardown()
        await controller.teardown()

        engine = engine_factory.created[0]
        assert engine.destroy_calls == 1
        assert controller.session is None

    @pytest.mark.asyncio
    async def test_terminated_session_requires_fresh_session(self, controller, engine_factory):
        session = await controller.start_session(LIVE_URL)
        engine = engine_factory.created[0]
        engine.emit(EngineEvents.ERROR, ErrorData(
            type=ErrorTypes.OTHER_ERROR, details="internalException", fatal=True))
        await session.recovery.destroy_task
        assert session.state == RecoveryState.TERMINATED

        fresh = await controller.start_session(LIVE_URL)
        assert fresh is not session
        assert len(engine_factory.created) == 2
        assert engine.destroy_calls == 1
        assert fresh.state == RecoveryState.LOADING

    @pytest.mark.asyncio
    async def test_missing_engine_factory(self, surface, reporter):
        controller = SessionController(surface, reporter=reporter, relay_prefix="/proxy/")
        assert await controller.start_session(LIVE_URL) is None
        assert reporter.message == ENGINE_UNAVAILABLE_MESSAGE
        assert reporter.severity == Severity.ERROR
        assert controller.session is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [None, "", "   "])
    async def test_submit_empty_input(self, controller, reporter, raw):
        assert await controller.submit(raw) is None
        assert reporter.history == [(EMPTY_URL_MESSAGE, Severity.ERROR)]

    @pytest.mark.asyncio
    async def test_submit_trims(self, controller):
        session = await controller.submit(f"  {LIVE_URL}  ")
        assert session.target.upstream_url == LIVE_URL

    @pytest.mark.asyncio
    async def test_empty_preset_is_informational(self, controller, reporter, engine_factory):
        assert await controller.play_preset("willow") is None
        assert reporter.history == [
            ("No WILLOW URL configured. Paste one in the input.", Severity.INFO)]
        assert engine_factory.created == []

    @pytest.mark.asyncio
    async def test_configured_preset_plays(self, controller):
        session = await controller.play_preset("sky")
        assert session.target.upstream_url == "https://example.com/sky.m3u8"

    @pytest.mark.asyncio
    async def test_unknown_preset(self, controller):
        with pytest.raises(KeyError):
            await controller.play_preset("nope")

    @pytest.mark.asyncio
    async def test_session_to_dict(self, controller):
        session = await controller.start_session(LIVE_URL)
        data = session.to_dict()
        assert data["active"] is True
        assert data["strategy"] == "engine_adaptive"
        assert data["relay_url"] == LIVE_RELAY
        assert data["state"] == "loading"
        assert data["has_engine"] is True
        assert isinstance(session, Session)
