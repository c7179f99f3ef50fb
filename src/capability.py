from models import ADAPTIVE_MEDIA_TYPE

NATIVE_ANSWERS = ("probably", "maybe")


class CapabilityDetector:
    """Asks the rendering surface whether it decodes adaptive manifests itself."""

    def __init__(self, surface, media_type: str = ADAPTIVE_MEDIA_TYPE):
        self.surface = surface
        self.media_type = media_type

    def supports_native_adaptive_playback(self) -> bool:
        # Not cached: the answer is cheap and the environment may change
        return self.surface.can_play_type(self.media_type) in NATIVE_ANSWERS
