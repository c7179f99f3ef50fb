"""
Shared value types for the relay player: strategies, recovery states,
status records and the adaptive engine's event vocabulary.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class PlaybackStrategy(str, Enum):
    DIRECT_TRANSPORT_STREAM = "direct_transport_stream"
    NATIVE_ADAPTIVE = "native_adaptive"
    ENGINE_ADAPTIVE = "engine_adaptive"


class RecoveryState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    RECOVERING = "recovering"
    TERMINATED = "terminated"


class Severity(str, Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class StreamRequest:
    raw_url: str


@dataclass(frozen=True)
class ResolvedTarget:
    relay_url: str
    # Canonical absolute upstream URL embedded in relay_url
    upstream_url: str


@dataclass(frozen=True)
class Status:
    message: str
    severity: Severity = Severity.INFO


# Adaptive engine vocabulary (hls.js compatible names)
class EngineEvents:
    MANIFEST_PARSED = "hlsManifestParsed"
    LEVEL_LOADED = "hlsLevelLoaded"
    ERROR = "hlsError"


class ErrorTypes:
    NETWORK_ERROR = "networkError"
    MEDIA_ERROR = "mediaError"
    OTHER_ERROR = "otherError"


class ErrorDetails:
    MANIFEST_LOAD_ERROR = "manifestLoadError"
    MANIFEST_PARSING_ERROR = "manifestParsingError"
    LEVEL_LOAD_ERROR = "levelLoadError"
    BUFFER_STALLED_ERROR = "bufferStalledError"
    INTERNAL_EXCEPTION = "internalException"


@dataclass
class LevelDetails:
    live: bool
    url: str = ""
    target_duration: float = 0.0
    media_sequence: int = 0
    fragments: int = 0


@dataclass
class ErrorData:
    type: str
    details: Optional[str] = None
    fatal: bool = False
    url: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EngineConfig:
    """Fixed adaptive engine configuration; not operator-tunable."""

    max_buffer_length: float = 30.0
    max_max_buffer_length: float = 120.0
    live_back_buffer_length: float = 30.0
    back_buffer_length: float = 30.0
    low_latency_mode: bool = True
    enable_worker: bool = True
    # Never send cookies or auth through the relay
    with_credentials: bool = False


ENGINE_CONFIG = EngineConfig()

ADAPTIVE_MEDIA_TYPE = "application/vnd.apple.mpegurl"
