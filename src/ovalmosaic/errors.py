"""Error taxonomy for the mosaic service.

Zero detected faces and degenerate contours are not errors; they are
pass-through cases handled by the pipeline.
"""

from __future__ import annotations


class MosaicError(Exception):
    """Base class for all service errors."""


class InitializationError(MosaicError):
    """The landmark model or its runtime failed to load."""


class DecodeError(MosaicError):
    """An input file could not be decoded into an image."""


class DetectionError(MosaicError):
    """The landmark detector raised while processing an image."""


class PackagingError(MosaicError):
    """Building the output archive failed."""


class NoImagesError(MosaicError):
    """A batch contained no image files after filtering."""


class PipelineBusyError(MosaicError):
    """A batch run is already in progress."""
