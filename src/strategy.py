import logging
from typing import Optional

from config import settings
from models import PlaybackStrategy, ResolvedTarget

logger = logging.getLogger(__name__)


def is_raw_segment(raw_url: str, extension: Optional[str] = None) -> bool:
    """Check if URL points at a single transport-stream segment"""
    extension = (extension or settings.RAW_SEGMENT_EXTENSION).lower()
    return raw_url.strip().lower().endswith(extension)


def select_strategy(
    raw_url: str,
    target: ResolvedTarget,
    detector,
    extension: Optional[str] = None
) -> PlaybackStrategy:
    """
    Pick how a resolved stream is fetched and decoded. First match wins:

    1. raw transport-stream segment -> played directly by the surface
    2. surface decodes adaptive manifests natively -> handed to the surface
    3. otherwise -> external adaptive engine
    """
    if is_raw_segment(raw_url, extension):
        strategy = PlaybackStrategy.DIRECT_TRANSPORT_STREAM
    elif detector.supports_native_adaptive_playback():
        strategy = PlaybackStrategy.NATIVE_ADAPTIVE
    else:
        strategy = PlaybackStrategy.ENGINE_ADAPTIVE

    logger.debug(f"Strategy for {target.relay_url}: {strategy.value}")
    return strategy
