"""
Image I/O Utilities
===================

This module loads study images for display and reads their natural pixel
dimensions. Natural dimensions are what every stored box is measured
against, so they are read from the file header rather than from whatever
size the image happens to be rendered at.

Functions
---------
load_image_for_display
    Load and convert an image to RGB for the annotation canvas
image_size
    Natural (width, height) of an image file without decoding pixel data

See Also
--------
aistudy_ui.core.predictions : Uses image_size to convert normalized boxes
aistudy_ui.ui.box_canvas : Displays images loaded here
"""

import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .geometry import Size

logger = logging.getLogger(__name__)


def load_image_for_display(path: str | Path):
    """
    Load an image and convert it to RGB for GUI display.

    Parameters
    ----------
    path : str or Path
        Path to a PNG or JPEG study image

    Returns
    -------
    PIL.Image
        RGB image (8-bit, 3 channels) at its natural size

    Examples
    --------
    >>> img = load_image_for_display("dataset/no_map/1.png")
    >>> img.mode
    'RGB'
    """
    return Image.open(str(path)).convert("RGB")


def image_size(path: str | Path) -> Size | None:
    """
    Read the natural size of an image from its header.

    Parameters
    ----------
    path : str or Path
        Image file

    Returns
    -------
    Size or None
        Natural width and height in pixels, or None when the file is missing
        or not a readable image.

    Notes
    -----
    ``PIL.Image.open`` is lazy, so only the header is parsed. This keeps the
    one-time prediction load fast even for a few hundred images.
    """
    p = Path(path)
    if not p.is_file():
        return None
    try:
        with Image.open(p) as img:
            w, h = img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("Cannot read image size of %s: %s", p, e)
        return None
    return Size(w, h)
