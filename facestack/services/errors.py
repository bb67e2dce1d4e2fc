"""
Error kinds raised by the composition pipeline.

Every failure carries a stable ``kind`` string so callers (and the HTTP
layer) can tell a missing face apart from a broken file or a failed encode.
"""


class CompositionError(Exception):
    """Base class for composition failures."""

    kind = "composition_error"

    def __init__(self, message: str, source_id: str | None = None):
        super().__init__(message)
        self.source_id = source_id


class InvalidInput(CompositionError):
    """Missing or non-video input, rejected before any pipeline work starts."""

    kind = "invalid_input"


class DecodeError(CompositionError):
    """A source frame could not be decoded at the requested timestamp."""

    kind = "decode_error"


class FaceNotDetected(CompositionError):
    """No face was found in the sampled frame of an input."""

    kind = "face_not_detected"


class EncodeError(CompositionError):
    """The FFmpeg filter-graph/encode stage failed."""

    kind = "encode_error"
