"""
Failure taxonomy for the relay player.

Every failure ends up as a status report; these classes give each path a
name and carry the text that is shown to the operator.
"""

from typing import Optional


class PlayerError(Exception):
    """Base class for all player failures"""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidUrlError(PlayerError):
    """Raw input is not an absolute URL; no session is created"""


class AutoplayBlockedError(PlayerError):
    """The rendering surface refused a play request"""


class EngineUnavailableError(PlayerError):
    """Adaptive playback was selected but no engine can be constructed"""


class EngineError(PlayerError):
    """Error reported by the adaptive engine"""

    fatal = False

    def __init__(self, error_type: str, details: Optional[str] = None):
        super().__init__(f"{error_type}: {details or ''}", details)
        self.error_type = error_type


class NonFatalNotice(EngineError):
    """Engine keeps going on its own, status only"""


class FatalNetworkError(EngineError):
    """Recovered by re-issuing the load on the same engine"""

    fatal = True


class FatalMediaError(EngineError):
    """Recovered in place by the engine's media-error recovery"""

    fatal = True


class FatalOtherError(EngineError):
    """Unrecoverable, the session is terminated"""

    fatal = True
