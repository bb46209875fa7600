# domain/errors.py


class RenderError(Exception):
    """Base class for failures surfaced by a render pass."""


class AssetUnavailable(RenderError):
    """An image could not be fetched or opened. Never fatal to a render pass."""

    def __init__(self, ref: str, reason: str = ""):
        self.ref = ref
        self.reason = reason
        super().__init__(f"Asset '{ref}' unavailable{': ' + reason if reason else ''}")


class InvalidGeometry(RenderError):
    """Card or page geometry rejected before any bytes are written."""


class SinkFailure(RenderError):
    """The output destination rejected a write. Remaining work is abandoned."""
