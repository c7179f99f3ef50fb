"""
Session Controller

Owns at most one playback session. Every play action resolves the URL,
picks a strategy, destroys whatever engine the previous session owned and
only then starts the new session.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from capability import CapabilityDetector
from config import settings
from engine import AdaptiveEngine
from errors import EngineUnavailableError, InvalidUrlError
from models import (
    ENGINE_CONFIG,
    EngineConfig,
    PlaybackStrategy,
    RecoveryState,
    ResolvedTarget,
    Severity,
)
from recovery import RecoveryStateMachine
from status import StatusReporter
from strategy import select_strategy
from surface import RenderingSurface, request_play
from url_resolver import resolve

logger = logging.getLogger(__name__)

RESOLVING_MESSAGE = "Resolving stream..."
INVALID_URL_MESSAGE = "Invalid URL"
EMPTY_URL_MESSAGE = "Please paste a .m3u8 or .ts URL"
ENGINE_UNAVAILABLE_MESSAGE = "Adaptive engine not available"


@dataclass
class Session:
    strategy: PlaybackStrategy
    target: ResolvedTarget
    engine_handle: Optional[AdaptiveEngine] = None
    recovery: Optional[RecoveryStateMachine] = None
    play_task: Optional[asyncio.Task] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Only used when no engine drives the state
    _state: RecoveryState = RecoveryState.LOADING

    @property
    def state(self) -> RecoveryState:
        if self.recovery is not None:
            return self.recovery.state
        return self._state

    @state.setter
    def state(self, value: RecoveryState):
        self._state = value

    def to_dict(self) -> dict:
        return {
            "active": True,
            "strategy": self.strategy.value,
            "relay_url": self.target.relay_url,
            "upstream_url": self.target.upstream_url,
            "state": self.state.value,
            "has_engine": self.engine_handle is not None,
            "created_at": self.created_at.isoformat(),
        }


class SessionController:
    def __init__(
        self,
        surface: RenderingSurface,
        reporter: Optional[StatusReporter] = None,
        engine_factory: Optional[Callable[[EngineConfig], AdaptiveEngine]] = None,
        detector: Optional[CapabilityDetector] = None,
        presets: Optional[Dict[str, str]] = None,
        relay_prefix: Optional[str] = None,
        max_fatal_recoveries: Optional[int] = None
    ):
        self.surface = surface
        self.reporter = reporter or StatusReporter()
        self.engine_factory = engine_factory
        self.detector = detector or CapabilityDetector(surface)
        self.presets = settings.presets if presets is None else presets
        self.relay_prefix = relay_prefix or settings.RELAY_PATH_PREFIX
        self.max_fatal_recoveries = max_fatal_recoveries
        self.session: Optional[Session] = None
        # Serializes teardown-then-acquire across overlapping play actions
        self._lock = asyncio.Lock()

    async def submit(self, raw_url: Optional[str]) -> Optional[Session]:
        """Play button / Enter key: empty input is an error, no session"""
        url = (raw_url or "").strip()
        if not url:
            self.reporter.report(EMPTY_URL_MESSAGE, Severity.ERROR)
            return None
        return await self.start_session(url)

    async def play_preset(self, name: str) -> Optional[Session]:
        """
        Play a configured preset. Raises KeyError for an unknown preset name.
        An empty preset is reported as information, not as an error.
        """
        url = self.presets[name]
        if not url:
            self.reporter.report(
                f"No {name.upper()} URL configured. Paste one in the input.")
            return None
        return await self.start_session(url)

    async def start_session(self, raw_url: str) -> Optional[Session]:
        self.reporter.report(RESOLVING_MESSAGE)

        target = resolve(raw_url, self.relay_prefix)
        if target is None:
            error = InvalidUrlError(INVALID_URL_MESSAGE, raw_url)
            logger.warning(f"{error.message}: {raw_url!r}")
            self.reporter.report(error.message, Severity.ERROR)
            return None

        strategy = select_strategy(raw_url, target, self.detector)
        logger.info(f"Starting {strategy.value} session for {target.upstream_url}")

        async with self._lock:
            # The previous engine must be gone before anything new is acquired
            await self._teardown()

            if strategy == PlaybackStrategy.ENGINE_ADAPTIVE:
                return self._start_engine_session(target)
            return self._start_surface_session(strategy, target)

    def _start_surface_session(self, strategy: PlaybackStrategy, target: ResolvedTarget) -> Session:
        session = Session(strategy=strategy, target=target)
        self.session = session
        self.surface.src = target.relay_url

        def _started():
            if self.session is session:
                session.state = RecoveryState.PLAYING

        session.play_task = request_play(
            self.surface, self.reporter, on_success=_started,
            is_current=lambda: self.session is session)
        return session

    def _start_engine_session(self, target: ResolvedTarget) -> Optional[Session]:
        if self.engine_factory is None:
            error = EngineUnavailableError(ENGINE_UNAVAILABLE_MESSAGE)
            logger.error(error.message)
            self.reporter.report(error.message, Severity.ERROR)
            return None

        engine = self.engine_factory(ENGINE_CONFIG)
        recovery = RecoveryStateMachine(
            engine, self.surface, self.reporter, self.max_fatal_recoveries)
        session = Session(
            strategy=PlaybackStrategy.ENGINE_ADAPTIVE,
            target=target,
            engine_handle=engine,
            recovery=recovery,
        )
        self.session = session

        recovery.attach()
        engine.load_source(target.relay_url)
        engine.attach_media(self.surface)
        return session

    async def teardown(self):
        """Destroy the active engine, if any. Safe to call repeatedly."""
        async with self._lock:
            await self._teardown()

    async def _teardown(self):
        session = self.session
        if session is None:
            return
        self.session = None

        _cancel_pending(session.play_task)
        if session.recovery is not None:
            _cancel_pending(session.recovery.play_task)

        engine = session.engine_handle
        if engine is None:
            return
        session.engine_handle = None

        recovery = session.recovery
        if recovery is not None:
            recovery.detach()
            if recovery.destroy_task is not None:
                # Already destroyed after an unrecoverable error
                await recovery.destroy_task
                return
        await engine.destroy()
        logger.info(f"Destroyed engine for {session.target.upstream_url}")


def _cancel_pending(task: Optional[asyncio.Task]):
    if task is not None and not task.done():
        task.cancel()
