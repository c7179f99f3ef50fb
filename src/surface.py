"""
Rendering surface contract and the headless surface used by the service.

A surface accepts a source URL, answers native format support queries and
starts playback through an awaitable play request.
"""

import asyncio
import logging
from typing import Callable, Optional, Protocol, runtime_checkable

from errors import AutoplayBlockedError
from models import Severity

logger = logging.getLogger(__name__)

AUTOPLAY_BLOCKED_MESSAGE = "Autoplay blocked: press Play button."


@runtime_checkable
class RenderingSurface(Protocol):
    src: str

    def can_play_type(self, media_type: str) -> str:
        """Return "probably", "maybe" or "" / "no" for media_type"""
        ...

    async def play(self) -> None:
        """Start playback of src. Raises when the request is refused."""
        ...


class HeadlessSurface:
    """Surface without a display. Records what it was asked to play."""

    def __init__(self, native_support: str = "no", autoplay_allowed: bool = True):
        self.native_support = native_support
        self.autoplay_allowed = autoplay_allowed
        self.src = ""
        self.playing = False

    def can_play_type(self, media_type: str) -> str:
        return self.native_support

    async def play(self) -> None:
        if not self.autoplay_allowed:
            self.playing = False
            raise AutoplayBlockedError("play() request was rejected by the autoplay policy")
        if not self.src:
            raise AutoplayBlockedError("No source assigned")
        self.playing = True
        logger.debug(f"Headless surface playing {self.src}")


def request_play(
    surface,
    reporter,
    on_success: Optional[Callable[[], None]] = None,
    on_rejected: Optional[Callable[[], None]] = None,
    is_current: Optional[Callable[[], bool]] = None
) -> asyncio.Task:
    """
    Ask the surface to play without waiting for the outcome.

    A rejection is reported as an autoplay-blocked error status; it never
    propagates further, and is dropped once is_current() turns False so a
    superseded session never overwrites the status of its successor. The
    returned task completes once the request settles.
    """

    async def _play():
        try:
            await surface.play()
        except Exception as e:
            logger.warning(f"Play request rejected: {e}")
            if is_current is not None and not is_current():
                logger.debug("Ignoring rejection from a superseded session")
                return False
            reporter.report(AUTOPLAY_BLOCKED_MESSAGE, Severity.ERROR)
            if on_rejected:
                on_rejected()
            return False
        if on_success:
            on_success()
        return True

    return asyncio.ensure_future(_play())
