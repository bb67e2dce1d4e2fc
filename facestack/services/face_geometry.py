"""
Face box geometry: turning a detected face into a crop rectangle.

All functions here are pure. Coordinates are pixels with the origin at the
top-left corner of the frame.
"""

import math
from dataclasses import dataclass

# Crop size as a multiple of the detected face size
DEFAULT_ZOOM_FACTOR = 2.5


@dataclass(frozen=True)
class FrameDimensions:
    """Native decoded resolution of a video frame."""

    width: int
    height: int

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height


@dataclass(frozen=True)
class FaceBox:
    """A detected face, in the coordinate space of the frame it came from."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (
            _round_half_up(self.x),
            _round_half_up(self.y),
            _round_half_up(self.width),
            _round_half_up(self.height),
        )


@dataclass(frozen=True)
class Rectangle:
    """Integer crop rectangle fully contained in its source frame."""

    x: int
    y: int
    width: int
    height: int

    def to_crop_filter(self) -> str:
        """FFmpeg crop filter for this rectangle (crop=w:h:x:y)."""
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"

    def fits_within(self, frame: FrameDimensions) -> bool:
        return (
            self.x >= 0
            and self.y >= 0
            and self.width > 0
            and self.height > 0
            and self.x + self.width <= frame.width
            and self.y + self.height <= frame.height
        )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_crop_rectangle(
    box: FaceBox,
    frame: FrameDimensions,
    zoom_factor: float = DEFAULT_ZOOM_FACTOR,
) -> Rectangle:
    """
    Compute a crop rectangle centred on a face.

    The crop is ``zoom_factor`` times the face box on each axis, clamped to the
    frame size, centred on the face centre and then shifted back inside the
    frame when the face sits near an edge.

    Args:
        box: Detected face box in frame coordinates
        frame: Native dimensions of the frame the box was detected on
        zoom_factor: Crop size as a multiple of the face size

    Returns:
        Rectangle fully inside the frame

    Raises:
        ValueError: If the box or the frame is degenerate
    """
    if frame.width < 1 or frame.height < 1:
        raise ValueError(f"Invalid frame dimensions: {frame.width}x{frame.height}")
    if box.width <= 0 or box.height <= 0:
        raise ValueError(f"Degenerate face box: {box.width}x{box.height}")

    center_x, center_y = box.center

    crop_width = min(box.width * zoom_factor, frame.width)
    crop_height = min(box.height * zoom_factor, frame.height)

    crop_x = max(0.0, center_x - crop_width / 2)
    crop_y = max(0.0, center_y - crop_height / 2)

    if crop_x + crop_width > frame.width:
        crop_x = frame.width - crop_width
    if crop_y + crop_height > frame.height:
        crop_y = frame.height - crop_height

    # Two half-pixel roundings can overshoot the far edge by one pixel
    width = max(1, min(_round_half_up(crop_width), frame.width))
    height = max(1, min(_round_half_up(crop_height), frame.height))
    x = max(0, min(_round_half_up(crop_x), frame.width - width))
    y = max(0, min(_round_half_up(crop_y), frame.height - height))

    return Rectangle(x=x, y=y, width=width, height=height)


def aspect_ratios_match(
    source: FrameDimensions,
    target: FrameDimensions,
    tolerance: float = 0.02,
) -> bool:
    """Check whether two frames share aspect ratio within a relative tolerance."""
    return abs(source.aspect_ratio - target.aspect_ratio) <= tolerance * target.aspect_ratio


def rescale_box(
    box: FaceBox,
    source: FrameDimensions,
    target: FrameDimensions,
    tolerance: float = 0.02,
) -> FaceBox:
    """
    Rescale a face box from detector-native coordinates to display coordinates.

    Raises:
        ValueError: If source and target do not share aspect ratio
    """
    if not aspect_ratios_match(source, target, tolerance):
        raise ValueError(
            f"Aspect ratio mismatch: detector frame {source.width}x{source.height} "
            f"vs display {target.width}x{target.height}"
        )

    scale_x = target.width / source.width
    scale_y = target.height / source.height
    return FaceBox(
        x=box.x * scale_x,
        y=box.y * scale_y,
        width=box.width * scale_x,
        height=box.height * scale_y,
    )
