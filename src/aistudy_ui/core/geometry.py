"""
Box Geometry
============

This module holds the geometric primitives shared by the annotation tool, the
trial engine and the AI prediction loader:

- **Box / Size**: axis-aligned rectangles and image dimensions
- **IoU**: intersection-over-union between two boxes in the same space
- **Coordinate transforms**: pointer, display, natural and normalized spaces

Coordinate Spaces
-----------------
Three spaces are in play and are never mixed silently:

- *display*: pixels of the rendered image on screen (changes with resize)
- *natural*: pixels of the original image file (canonical internal space)
- *normalized*: fractions 0-1 of the natural size (dataset files only)

Every box stored on a trial, compared by IoU or persisted is in natural
space. Each conversion below is named for its direction.

Notes
-----
All transforms return None instead of NaN/inf when a size is zero, which
happens routinely before the image has been laid out or decoded.

See Also
--------
aistudy_ui.core.box_tool : Interactive drawing model built on these transforms
aistudy_ui.core.predictions : Converts dataset boxes at load time
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Size:
    """Width and height of an image in one coordinate space."""

    width: float
    height: float

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


@dataclass(frozen=True)
class Box:
    """
    Axis-aligned rectangle given by its top-left corner and extent.

    Parameters
    ----------
    x, y : float
        Top-left corner
    width, height : float
        Extent, both non-negative. A zero-area box is valid but degenerate.

    Raises
    ------
    ValueError
        If width or height is negative

    Examples
    --------
    >>> b = Box.from_corners(60, 40, 10, 10)
    >>> b
    Box(x=10, y=10, width=50, height=30)
    >>> b.area
    1500
    """

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Box extent must be non-negative, got {self.width}x{self.height}"
            )

    @classmethod
    def from_corners(cls, x0, y0, x1, y1) -> "Box":
        """Build a box from any two opposite corners."""
        return cls(min(x0, x1), min(y0, y1), abs(x1 - x0), abs(y1 - y0))

    @classmethod
    def from_dict(cls, d: dict) -> "Box":
        return cls(d["x"], d["y"], d["width"], d["height"])

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def is_degenerate(self) -> bool:
        return self.area <= 0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


def iou(a: Box | None, b: Box | None) -> float:
    """
    Intersection-over-union of two boxes in the same coordinate space.

    Parameters
    ----------
    a, b : Box or None
        Boxes to compare. Both must be in the same space (natural pixels
        everywhere in this package).

    Returns
    -------
    float
        Overlap as a fraction in [0, 1]. Missing boxes, degenerate boxes and
        a zero union all give 0.0.

    Notes
    -----
    The fraction is the only convention used in code. Percentages are a
    display concern (``aistudy_ui.ui.format_iou``) and are never fed back
    into computations.

    Examples
    --------
    >>> iou(Box(0, 0, 10, 10), Box(5, 0, 10, 10))
    0.3333333333333333
    >>> iou(Box(0, 0, 10, 10), None)
    0.0
    """
    if a is None or b is None:
        return 0.0
    if a.is_degenerate or b.is_degenerate:
        return 0.0
    if a == b:
        return 1.0
    ix1 = max(a.x, b.x)
    iy1 = max(a.y, b.y)
    ix2 = min(a.right, b.right)
    iy2 = min(a.bottom, b.bottom)
    iw = max(0.0, ix2 - ix1)
    ih = max(0.0, iy2 - iy1)
    inter = iw * ih
    union = a.area + b.area - inter
    if union <= 0:
        return 0.0
    # float corner arithmetic can overshoot by an ulp
    return min(1.0, max(0.0, inter / union))


def client_to_display(client_x, client_y, image_rect: Box):
    """
    Map a pointer position to display coordinates of the rendered image.

    Parameters
    ----------
    client_x, client_y : float
        Pointer position in the coordinates of the widget hosting the image
    image_rect : Box
        Where the image is rendered inside that widget

    Returns
    -------
    tuple of float or None
        ``(x, y)`` relative to the image's top-left corner, clamped to the
        rendered rectangle, or None when the image has no rendered size yet.
    """
    if image_rect is None or image_rect.is_degenerate:
        return None
    x = min(max(client_x - image_rect.x, 0.0), image_rect.width)
    y = min(max(client_y - image_rect.y, 0.0), image_rect.height)
    return x, y


def _scale(box: Box, sx: float, sy: float, rounded: bool) -> Box:
    vals = (box.x * sx, box.y * sy, box.width * sx, box.height * sy)
    if rounded:
        vals = tuple(round(v) for v in vals)
    return Box(*vals)


def display_to_natural(box: Box | None, display_size: Size, natural_size: Size):
    """
    Convert a display-space box to natural image pixels.

    Coordinates are rounded to whole pixels, which is what gets persisted.
    Returns None when ``box`` is None or either size is empty.
    """
    if box is None or display_size.is_empty or natural_size.is_empty:
        return None
    sx = natural_size.width / display_size.width
    sy = natural_size.height / display_size.height
    return _scale(box, sx, sy, rounded=True)


def natural_to_display(box: Box | None, display_size: Size, natural_size: Size):
    """
    Project a natural-pixel box onto the current rendering of the image.

    Used to draw persisted, user-committed and AI boxes. Returns None when
    ``box`` is None or either size is empty.
    """
    if box is None or display_size.is_empty or natural_size.is_empty:
        return None
    sx = display_size.width / natural_size.width
    sy = display_size.height / natural_size.height
    return _scale(box, sx, sy, rounded=False)


def normalized_to_natural(box: Box | None, natural_size: Size):
    """Convert a 0-1 normalized box to natural pixels (None on empty size)."""
    if box is None or natural_size.is_empty:
        return None
    return _scale(box, natural_size.width, natural_size.height, rounded=False)


def natural_to_normalized(box: Box | None, natural_size: Size):
    """Convert a natural-pixel box to 0-1 fractions (None on empty size)."""
    if box is None or natural_size.is_empty:
        return None
    return _scale(box, 1.0 / natural_size.width, 1.0 / natural_size.height, False)
