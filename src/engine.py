"""
Adaptive engine contract and a headless implementation.

PlaylistEngine fetches the manifest through the relay, follows the first
variant and keeps refreshing live level playlists, reporting progress and
failures through hls.js style events. It does not demux or buffer media.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Protocol, runtime_checkable
from urllib.parse import urljoin

import httpx
import m3u8

from config import settings
from models import (
    ENGINE_CONFIG,
    EngineConfig,
    EngineEvents,
    ErrorData,
    ErrorDetails,
    ErrorTypes,
    LevelDetails,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, object], None]

DEFAULT_TARGET_DURATION = 6.0
MIN_REFRESH_INTERVAL = 1.0
# Live refreshes without a new segment before a stall is reported
STALL_REFRESH_THRESHOLD = 3


@runtime_checkable
class AdaptiveEngine(Protocol):
    def on(self, event: str, handler: EventHandler) -> None: ...

    def load_source(self, url: str) -> None: ...

    def attach_media(self, surface) -> None: ...

    def start_load(self) -> None: ...

    def recover_media_error(self) -> None: ...

    async def destroy(self) -> None: ...


class PlaylistEngine:
    def __init__(
        self,
        config: EngineConfig = ENGINE_CONFIG,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        level_load_max_retry: Optional[int] = None,
        manifest_load_max_retry: Optional[int] = None
    ):
        self.config = config
        self.base_url = base_url or settings.RELAY_BASE_URL
        self.level_load_max_retry = (
            settings.LEVEL_LOAD_MAX_RETRY if level_load_max_retry is None else level_load_max_retry)
        self.manifest_load_max_retry = (
            settings.MANIFEST_LOAD_MAX_RETRY if manifest_load_max_retry is None
            else manifest_load_max_retry)
        self.url: Optional[str] = None
        self.media = None
        self.level_url: Optional[str] = None
        self.destroyed = False
        self._listeners: Dict[str, List[EventHandler]] = {}
        self._task: Optional[asyncio.Task] = None
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=settings.ENGINE_CONNECT_TIMEOUT,
                read=settings.ENGINE_READ_TIMEOUT,
                write=settings.ENGINE_READ_TIMEOUT,
                pool=10.0
            ),
            follow_redirects=True,
            max_redirects=10,
        )

    def on(self, event: str, handler: EventHandler):
        self._listeners.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler):
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, data=None):
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(event, data)
            except Exception as e:
                logger.error(f"Error in {event} handler: {e}")

    def load_source(self, url: str):
        self.url = url
        self.level_url = None
        if self.media is not None:
            self.start_load()

    def attach_media(self, surface):
        self.media = surface
        if self.url:
            self.start_load()

    def start_load(self):
        """(Re)start loading from the manifest"""
        if self.destroyed or not self.url:
            return
        self._restart(self._load())

    def recover_media_error(self):
        """Reattach to the current level without fetching the manifest again"""
        if self.destroyed:
            return
        if not self.level_url:
            self.start_load()
            return
        logger.info(f"Recovering media on {self.level_url}")
        self._restart(self._follow_level(self.level_url))

    async def destroy(self):
        if self.destroyed:
            return
        self.destroyed = True
        self._listeners.clear()
        self.media = None
        await self._cancel()
        if self._owns_client:
            await self.http_client.aclose()
        logger.debug("Playlist engine destroyed")

    def _restart(self, coro):
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = asyncio.ensure_future(coro)

    async def _cancel(self):
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _fetch(self, url: str) -> m3u8.M3U8:
        if not self.config.with_credentials:
            self.http_client.cookies.clear()
        response = await self.http_client.get(url)
        response.raise_for_status()
        text = response.text
        if not text.lstrip().startswith("#EXTM3U"):
            raise ValueError(f"Not an M3U8 playlist: {url}")
        return m3u8.loads(text, uri=str(response.url))

    def _error(self, error_type: str, details: str, fatal: bool, url: Optional[str] = None, **extra):
        self.emit(EngineEvents.ERROR, ErrorData(
            type=error_type, details=details, fatal=fatal, url=url, extra=extra))

    async def _load(self):
        manifest_url = urljoin(self.base_url, self.url)
        try:
            try:
                playlist = await self._fetch_manifest(manifest_url)
            except httpx.HTTPError as e:
                self._error(ErrorTypes.NETWORK_ERROR, ErrorDetails.MANIFEST_LOAD_ERROR,
                            True, manifest_url, reason=str(e))
                return
            except ValueError as e:
                logger.warning(f"Manifest parsing failed for {manifest_url}: {e}")
                self._error(ErrorTypes.NETWORK_ERROR, ErrorDetails.MANIFEST_PARSING_ERROR,
                            True, manifest_url, reason=str(e))
                return

            if playlist.is_variant:
                if not playlist.playlists:
                    self._error(ErrorTypes.NETWORK_ERROR, ErrorDetails.MANIFEST_PARSING_ERROR,
                                True, manifest_url, reason="no variants")
                    return
                levels = len(playlist.playlists)
                self.level_url = playlist.playlists[0].absolute_uri
                first_level = None
            else:
                levels = 1
                self.level_url = manifest_url
                first_level = playlist

            self.emit(EngineEvents.MANIFEST_PARSED, {"levels": levels, "url": manifest_url})
            await self._follow_level(self.level_url, first_level)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Unexpected engine failure: {e}")
            self._error(ErrorTypes.OTHER_ERROR, ErrorDetails.INTERNAL_EXCEPTION,
                        True, manifest_url, reason=str(e))

    async def _fetch_manifest(self, manifest_url: str) -> m3u8.M3U8:
        """Fetch the manifest, retrying network failures with a growing delay"""
        attempts = 0
        while True:
            try:
                return await self._fetch(manifest_url)
            except httpx.HTTPError as e:
                attempts += 1
                logger.warning(
                    f"Manifest load failed ({attempts}/{self.manifest_load_max_retry + 1}) "
                    f"for {manifest_url}: {e}")
                if attempts > self.manifest_load_max_retry:
                    raise
                await asyncio.sleep(MIN_REFRESH_INTERVAL * attempts)

    async def _follow_level(self, level_url: str, level: Optional[m3u8.M3U8] = None):
        failures = 0
        stalled = 0
        last_position = None
        while not self.destroyed:
            if level is None:
                try:
                    level = await self._fetch(level_url)
                except (httpx.HTTPError, ValueError) as e:
                    failures += 1
                    fatal = failures > self.level_load_max_retry
                    logger.warning(
                        f"Level load failed ({failures}/{self.level_load_max_retry}) for {level_url}: {e}")
                    self._error(ErrorTypes.NETWORK_ERROR, ErrorDetails.LEVEL_LOAD_ERROR,
                                fatal, level_url, reason=str(e))
                    if fatal:
                        return
                    await asyncio.sleep(MIN_REFRESH_INTERVAL * failures)
                    continue

            failures = 0
            details = LevelDetails(
                live=not level.is_endlist,
                url=level_url,
                target_duration=float(level.target_duration or 0),
                media_sequence=int(level.media_sequence or 0),
                fragments=len(level.segments),
            )
            self.emit(EngineEvents.LEVEL_LOADED, {"details": details})
            if not details.live:
                return

            position = (details.media_sequence, details.fragments)
            if position == last_position:
                stalled += 1
                if stalled >= STALL_REFRESH_THRESHOLD:
                    self._error(ErrorTypes.MEDIA_ERROR, ErrorDetails.BUFFER_STALLED_ERROR,
                                False, level_url)
                    stalled = 0
            else:
                stalled = 0
            last_position = position

            level = None
            await asyncio.sleep(self.refresh_interval(details))

    def refresh_interval(self, details: LevelDetails) -> float:
        interval = details.target_duration or DEFAULT_TARGET_DURATION
        if self.config.low_latency_mode:
            interval = interval / 2
        return max(MIN_REFRESH_INTERVAL, interval)


def create_engine(config: EngineConfig = ENGINE_CONFIG) -> PlaylistEngine:
    return PlaylistEngine(config=config)
