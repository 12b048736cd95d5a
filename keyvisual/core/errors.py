"""
Exception types raised by the key visual pipeline
"""


class KeyVisualError(Exception):
    """Base class for key visual errors"""


class ImageDecodeError(KeyVisualError):
    """An image or depth map could not be fetched or decoded"""

    def __init__(self, source: str, reason: str = ""):
        self.source = source
        self.reason = reason
        message = f"Failed to load image: {source}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class PointCloudFormatError(KeyVisualError, ValueError):
    """A baked point cloud buffer is not valid TFPC data"""


class CapabilityError(KeyVisualError):
    """The graphics context lacks what the GPU simulation needs"""
