"""
Recovery state machine driven by the adaptive engine's event stream.

    Idle -> Loading -> Playing
    Loading/Playing -> Recovering -> Loading   (fatal network error, reload)
    Loading/Playing -> Recovering -> Playing   (fatal media error, in-place recovery)
    Loading/Playing -> Terminated              (any other fatal error)

Terminated is final; a new session has to be started.
"""

import asyncio
import logging
from dataclasses import asdict
from typing import Optional, Union

from errors import (
    EngineError,
    FatalMediaError,
    FatalNetworkError,
    FatalOtherError,
    NonFatalNotice,
)
from models import (
    EngineEvents,
    ErrorData,
    ErrorTypes,
    LevelDetails,
    RecoveryState,
    Severity,
)
from surface import request_play

logger = logging.getLogger(__name__)

MANIFEST_LOADED_MESSAGE = "Manifest loaded, starting playback"
LIVE_DETECTED_MESSAGE = "Live stream detected"

ACTIVE_STATES = (RecoveryState.LOADING, RecoveryState.PLAYING)

# Fatal error class -> (recovery action, state after the action)
FATAL_TRANSITIONS = {
    FatalNetworkError: ("_reload", RecoveryState.LOADING),
    FatalMediaError: ("_recover_media", RecoveryState.PLAYING),
    FatalOtherError: ("_terminate", RecoveryState.TERMINATED),
}


def _error_data(data: Union[ErrorData, dict]) -> ErrorData:
    if isinstance(data, ErrorData):
        return data
    return ErrorData(
        type=data.get("type", ErrorTypes.OTHER_ERROR),
        details=data.get("details"),
        fatal=bool(data.get("fatal", False)),
        url=data.get("url"),
    )


def classify_error(data: Union[ErrorData, dict]) -> EngineError:
    """Map an engine error payload to its class. The engine decides fatality."""
    data = _error_data(data)
    if not data.fatal:
        return NonFatalNotice(data.type, data.details)
    if data.type == ErrorTypes.NETWORK_ERROR:
        return FatalNetworkError(data.type, data.details)
    if data.type == ErrorTypes.MEDIA_ERROR:
        return FatalMediaError(data.type, data.details)
    return FatalOtherError(data.type, data.details)


class RecoveryStateMachine:
    def __init__(self, engine, surface, reporter, max_fatal_recoveries: Optional[int] = None):
        self.engine = engine
        self.surface = surface
        self.reporter = reporter
        self.max_fatal_recoveries = max_fatal_recoveries
        self.state = RecoveryState.IDLE
        self.consecutive_recoveries = 0
        self.play_task: Optional[asyncio.Task] = None
        self.destroy_task: Optional[asyncio.Task] = None
        self._active = False
        self._fatal_this_tick = False
        self._handlers = {
            EngineEvents.MANIFEST_PARSED: self.on_manifest_parsed,
            EngineEvents.LEVEL_LOADED: self.on_level_loaded,
            EngineEvents.ERROR: self.on_error,
        }

    def attach(self):
        """Subscribe to the engine's events and start in Loading"""
        for event, handler in self._handlers.items():
            self.engine.on(event, handler)
        self._active = True
        self._set_state(RecoveryState.LOADING)

    def detach(self):
        """Stop reacting to events, e.g. once the session is superseded"""
        self._active = False

    def handle(self, event: str, data=None):
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"Ignoring unknown engine event {event}")
            return
        handler(event, data)

    def _accepts(self, event: str) -> bool:
        if not self._active:
            logger.debug(f"Ignoring {event}: session no longer active")
            return False
        if self.state not in ACTIVE_STATES:
            logger.debug(f"Ignoring {event} in state {self.state.value}")
            return False
        return True

    def _set_state(self, state: RecoveryState):
        if state != self.state:
            logger.debug(f"Recovery state {self.state.value} -> {state.value}")
        self.state = state

    def on_manifest_parsed(self, event, data=None):
        if not self._accepts(event) or self.state != RecoveryState.LOADING:
            return
        self.consecutive_recoveries = 0
        self.reporter.report(MANIFEST_LOADED_MESSAGE)
        self._set_state(RecoveryState.PLAYING)
        self.play_task = request_play(
            self.surface, self.reporter, on_rejected=self._play_rejected,
            is_current=lambda: self._active)

    def _play_rejected(self):
        # Playback never started; wait in Loading for the operator
        if self._active and self.state == RecoveryState.PLAYING:
            self._set_state(RecoveryState.LOADING)

    def on_level_loaded(self, event, data=None):
        if not self._accepts(event):
            return
        self.consecutive_recoveries = 0
        details = getattr(data, "details", None)
        if details is None and isinstance(data, dict):
            details = data.get("details")
        if isinstance(details, dict):
            live = bool(details.get("live"))
        elif isinstance(details, LevelDetails):
            live = details.live
        else:
            live = False
        if live:
            self.reporter.report(LIVE_DETECTED_MESSAGE)

    def on_error(self, event, data):
        if not self._accepts(event):
            return
        data = _error_data(data)
        error = classify_error(data)
        logger.warning(f"Engine error: {error.message} fatal={data.fatal} {asdict(data)}")

        if not error.fatal:
            if self._fatal_this_tick:
                logger.debug(f"Suppressing non-fatal notice behind fatal error: {error.message}")
                return
            self.reporter.report(error.message, Severity.INFO)
            return

        self.reporter.report(error.message, Severity.ERROR)
        self._mark_fatal_tick()

        action, next_state = FATAL_TRANSITIONS[type(error)]
        if action != "_terminate":
            self.consecutive_recoveries += 1
            if (self.max_fatal_recoveries is not None
                    and self.consecutive_recoveries > self.max_fatal_recoveries):
                logger.error(
                    f"Giving up after {self.max_fatal_recoveries} consecutive recoveries")
                self.reporter.report(
                    f"{error.message} (giving up after {self.max_fatal_recoveries} recovery attempts)",
                    Severity.ERROR)
                action, next_state = FATAL_TRANSITIONS[FatalOtherError]

        self._set_state(RecoveryState.RECOVERING)
        getattr(self, action)()
        self._set_state(next_state)

    def _mark_fatal_tick(self):
        self._fatal_this_tick = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop, nothing else can be pending in this tick
            self._fatal_this_tick = False
            return
        loop.call_soon(self._clear_fatal_tick)

    def _clear_fatal_tick(self):
        self._fatal_this_tick = False

    def _reload(self):
        logger.info("Fatal network error, reloading source")
        self.engine.start_load()

    def _recover_media(self):
        logger.info("Fatal media error, recovering in place")
        self.engine.recover_media_error()

    def _terminate(self):
        logger.error("Unrecoverable engine error, destroying engine")
        self._active = False
        self.destroy_task = asyncio.ensure_future(self.engine.destroy())
