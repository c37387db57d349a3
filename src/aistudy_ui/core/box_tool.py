"""
Bounding-Box Tool Model
=======================

Toolkit-independent state of the box drawing tool: the finding slots, which
slot (if any) is armed for drawing, the drag gesture and the conversion of
the dragged rectangle into natural image pixels. The Qt widget in
``aistudy_ui.ui.box_canvas`` only forwards mouse events here and paints
what ``render_items()`` reports, so all drawing rules can be tested without
a display.

Classes
-------
Slot
    A named finding slot holding zero or one committed box
ColoredBox
    Committed box with its slot id, color and label
Overlay
    One paint instruction in display coordinates
BoxTool
    Slot registry, active-slot handling and press/move/release gesture

Functions
---------
label_position
    Anchor for a box label: above the box, or below it when there is no room

Gesture Rules
-------------
- Only one slot is active at a time (``active_slot_id``).
- Press starts a candidate at the pointer; move updates the opposite corner;
  the candidate is always min/max-normalized.
- Release converts the candidate to natural pixels, stores it in the active
  slot, reports it through ``on_change`` and disarms the slot.
- A zero-area release is discarded: the slot keeps its previous box, no
  change is reported and the slot stays armed for another attempt.
- A disabled tool or one with no active slot ignores pointer input but still
  renders committed boxes.

Examples
--------
>>> from aistudy_ui.core.geometry import Box, Size
>>> tool = BoxTool()
>>> tool.add_slot("finding1", "#00c853", "Finding 1")
>>> tool.set_image("1.png", Size(1000, 800))
>>> tool.set_layout(Box(0, 0, 500, 400))
>>> tool.activate("finding1")
>>> tool.press(10, 10); tool.move(60, 40)
True
True
>>> tool.release()
Box(x=20, y=20, width=100, height=60)
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .geometry import (
    Box,
    Size,
    client_to_display,
    display_to_natural,
    natural_to_display,
)

logger = logging.getLogger(__name__)

DRAWING_LABEL = "Drawing…"
LABEL_MARGIN = 4


@dataclass
class Slot:
    id: str
    color: str
    label: str | None = None
    box: Box | None = None


@dataclass(frozen=True)
class ColoredBox:
    id: str
    box: Box
    color: str
    label: str | None = None


@dataclass(frozen=True)
class Overlay:
    """A box to paint, already in display coordinates of the image."""

    slot_id: str | None
    box: Box
    color: str
    label: str | None
    label_pos: tuple[float, float] | None
    candidate: bool = False


def label_position(box: Box, text_height: float, surface_height: float):
    """
    Anchor point (left, baseline) for a label drawn next to a box.

    The label sits just above the box. When the box touches the top edge and
    the text would be clipped, it moves just below the box instead; if that
    also falls off the surface the baseline is clamped to the bottom edge.
    """
    above = box.y - LABEL_MARGIN
    if above - text_height >= 0:
        return box.x, above
    below = box.bottom + LABEL_MARGIN + text_height
    if surface_height > 0:
        below = min(below, surface_height)
    return box.x, below


class BoxTool:
    """
    Drawing model for one image and a set of finding slots.

    Parameters
    ----------
    on_change : callable, optional
        ``on_change(slot_id, box)`` called when a drag commits a box
    enabled : bool, default=True
        Whether pointer input is accepted at all
    text_height : float, default=14
        Label height used for label placement

    Attributes
    ----------
    image_source : str or None
        Currently displayed image
    natural_size : Size
        Pixel size of the image file; zero until the image is decoded
    image_rect : Box or None
        Where the image is rendered inside the host widget
    surface_size : Size
        Pixel size of the drawing surface, derived from ``image_rect``
    active_slot_id : str or None
        Slot armed for drawing
    """

    def __init__(
        self,
        on_change: Optional[Callable[[str, Box | None], None]] = None,
        enabled: bool = True,
        text_height: float = 14,
    ):
        self.on_change = on_change
        self.enabled = enabled
        self.text_height = text_height
        self.image_source = None
        self.natural_size = Size(0, 0)
        self.image_rect = None
        self.surface_size = Size(0, 0)
        self.active_slot_id = None
        self._slots: dict[str, Slot] = {}
        self._start = None
        self._candidate = None

    # slots -------------------------------------------------------------

    @property
    def slots(self) -> list[Slot]:
        return list(self._slots.values())

    def add_slot(self, slot_id: str, color: str, label: str | None = None) -> Slot:
        slot = Slot(slot_id, color, label)
        self._slots[slot_id] = slot
        return slot

    def remove_slot(self, slot_id: str):
        self._slots.pop(slot_id, None)
        if self.active_slot_id == slot_id:
            self.activate(None)

    def slot(self, slot_id: str) -> Slot:
        return self._slots[slot_id]

    def set_box(self, slot_id: str, box: Box | None):
        """Set a slot's committed box (natural pixels) without firing on_change."""
        self._slots[slot_id].box = box

    def clear(self, slot_id: str):
        self.set_box(slot_id, None)

    def clear_all(self):
        for s in self._slots.values():
            s.box = None
        self.activate(None)

    def boxes(self) -> list[ColoredBox]:
        return [
            ColoredBox(s.id, s.box, s.color, s.label)
            for s in self._slots.values()
            if s.box is not None
        ]

    def activate(self, slot_id: str | None):
        """
        Arm one slot for drawing, or disarm with None.

        Arming a slot disarms whichever slot was armed before and abandons
        any drag in progress.

        Raises
        ------
        KeyError
            If ``slot_id`` is not a registered slot
        """
        if slot_id is not None and slot_id not in self._slots:
            raise KeyError(slot_id)
        self._cancel()
        self.active_slot_id = slot_id

    # image & layout ----------------------------------------------------

    def set_image(self, source, natural_size: Size):
        self.image_source = source
        self.natural_size = natural_size
        self._cancel()

    def set_layout(self, image_rect: Box | None) -> bool:
        """
        Record where the image is rendered and resize the drawing surface.

        Returns False when the image has no rendered size yet.
        """
        self.image_rect = image_rect
        if image_rect is None or image_rect.is_degenerate:
            self.surface_size = Size(0, 0)
            return False
        self.surface_size = Size(round(image_rect.width), round(image_rect.height))
        return True

    @property
    def display_size(self) -> Size:
        if self.image_rect is None:
            return Size(0, 0)
        return Size(self.image_rect.width, self.image_rect.height)

    @property
    def is_ready(self) -> bool:
        return not self.natural_size.is_empty and not self.display_size.is_empty

    @property
    def is_interactive(self) -> bool:
        return self.enabled and self.active_slot_id is not None

    @property
    def is_drawing(self) -> bool:
        return self._start is not None

    @property
    def candidate(self) -> Box | None:
        return self._candidate

    # gesture -----------------------------------------------------------

    def _cancel(self):
        self._start = None
        self._candidate = None

    def press(self, x: float, y: float) -> bool:
        if not self.is_interactive or not self.is_ready:
            return False
        p = client_to_display(x, y, self.image_rect)
        if p is None:
            return False
        self._start = p
        self._candidate = None
        return True

    def move(self, x: float, y: float) -> bool:
        if not self.is_interactive or self._start is None:
            return False
        p = client_to_display(x, y, self.image_rect)
        if p is None:
            return False
        self._candidate = Box.from_corners(self._start[0], self._start[1], p[0], p[1])
        return True

    def release(self) -> Box | None:
        """
        Finish the drag and commit the candidate to the active slot.

        Returns
        -------
        Box or None
            The committed box in natural pixels, or None when nothing was
            committed (no drag, disabled tool, or zero-area candidate).
        """
        if self._start is None:
            return None
        candidate = self._candidate
        self._cancel()
        slot_id = self.active_slot_id
        if not self.is_interactive or candidate is None or candidate.is_degenerate:
            return None
        nat = display_to_natural(candidate, self.display_size, self.natural_size)
        if nat is None or nat.is_degenerate:
            logger.debug("Discarded zero-area box for slot %s", slot_id)
            return None
        self._slots[slot_id].box = nat
        self.active_slot_id = None
        if self.on_change is not None:
            self.on_change(slot_id, nat)
        return nat

    # rendering ---------------------------------------------------------

    def _overlay(self, slot_id, box, color, label, candidate=False):
        pos = None
        if label:
            pos = label_position(box, self.text_height, self.surface_size.height)
        return Overlay(slot_id, box, color, label, pos, candidate)

    def render_items(self) -> list[Overlay]:
        """
        Everything to paint, in display coordinates of the rendered image.

        Committed boxes come first in slot order. While a drag is running,
        the active slot's committed box is replaced by the candidate.
        """
        items = []
        for s in self._slots.values():
            if self.is_drawing and s.id == self.active_slot_id:
                continue
            d = natural_to_display(s.box, self.display_size, self.natural_size)
            if d is not None:
                items.append(self._overlay(s.id, d, s.color, s.label))
        if self.is_drawing and self._candidate is not None:
            color = self._slots[self.active_slot_id].color
            items.append(
                self._overlay(
                    self.active_slot_id, self._candidate, color, DRAWING_LABEL, True
                )
            )
        return items
