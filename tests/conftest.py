"""Fakes for the rendering surface and the adaptive engine."""
import asyncio

import pytest

from errors import AutoplayBlockedError


class FakeSurface:
    def __init__(self, native_support="no", reject_play=False, log=None, play_delay=0):
        self.native_support = native_support
        self.reject_play = reject_play
        self.play_delay = play_delay
        self.log = log if log is not None else []
        self.play_calls = 0
        self.can_play_calls = 0
        self._src = ""

    @property
    def src(self):
        return self._src

    @src.setter
    def src(self, value):
        self.log.append(f"src:{value}")
        self._src = value

    def can_play_type(self, media_type):
        self.can_play_calls += 1
        return self.native_support

    async def play(self):
        self.play_calls += 1
        if self.play_delay:
            await asyncio.sleep(self.play_delay)
        if self.reject_play:
            raise AutoplayBlockedError("NotAllowedError")


class FakeEngine:
    def __init__(self, config, index, log, destroy_delay=0):
        self.config = config
        self.destroy_delay = destroy_delay
        self.index = index
        self.log = log
        self.handlers = {}
        self.source = None
        self.media = None
        self.start_load_calls = 0
        self.recover_calls = 0
        self.destroy_calls = 0
        self.destroyed = False

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, data=None):
        for handler in list(self.handlers.get(event, [])):
            handler(event, data)

    def load_source(self, url):
        self.source = url

    def attach_media(self, surface):
        self.media = surface

    def start_load(self):
        self.start_load_calls += 1

    def recover_media_error(self):
        self.recover_calls += 1

    async def destroy(self):
        self.destroy_calls += 1
        if self.destroy_delay:
            await asyncio.sleep(self.destroy_delay)
        if not self.destroyed:
            self.destroyed = True
            self.log.append(f"destroy:{self.index}")


class EngineFactory:
    """Callable engine factory that tracks how many engines are alive"""

    def __init__(self, log=None, destroy_delay=0):
        self.log = log if log is not None else []
        self.destroy_delay = destroy_delay
        self.created = []
        self.max_live = 0

    @property
    def live(self):
        return sum(1 for engine in self.created if not engine.destroyed)

    def __call__(self, config):
        engine = FakeEngine(config, len(self.created), self.log, self.destroy_delay)
        self.created.append(engine)
        self.log.append(f"create:{engine.index}")
        self.max_live = max(self.max_live, self.live)
        return engine


@pytest.fixture
def log():
    return []


@pytest.fixture
def surface(log):
    return FakeSurface(log=log)


@pytest.fixture
def engine_factory(log):
    return EngineFactory(log=log)
