from PySide6.QtWidgets import QWidget
from PySide6.QtGui import QPainter, QPen, QColor, QPixmap, QImage, QFontMetrics
from PySide6.QtCore import Qt, QRectF, QPointF, Signal

from aistudy_ui.core.box_tool import BoxTool, ColoredBox, label_position
from aistudy_ui.core.geometry import Box, Size, natural_to_display

HEATMAP_OPACITY = 0.35


class BoxCanvas(QWidget):
    """
    Image canvas with bounding-box drawing.

    Mouse events are forwarded to a ``BoxTool``; the widget only tracks where
    the image is painted and draws what the tool reports. Committed boxes are
    emitted in natural image pixels through ``boxChanged``.

    Signals
    -------
    boxChanged : Signal(str, object)
        Slot id and the committed ``Box``
    """

    boxChanged = Signal(str, object)

    def __init__(self, parent=None):
        super().__init__(parent)
        self.pix = None
        self.heatmap = None
        self.show_heatmap = False
        self.references: list[ColoredBox] = []
        self._draw_rect = QRectF()
        self.tool = BoxTool(on_change=self._on_tool_change)
        self.tool.text_height = QFontMetrics(self.font()).height()

    def set_image(self, qpix: QPixmap, source=None, natural_size: Size | None = None):
        self.pix = qpix
        if natural_size is None:
            natural_size = Size(qpix.width(), qpix.height())
        self.tool.set_image(source, natural_size)
        self._compute_draw_rect()
        self.update()

    def clear_image(self):
        self.pix = None
        self.tool.set_image(None, Size(0, 0))
        self._compute_draw_rect()
        self.update()

    def set_heatmap(self, qimg: QImage | None):
        self.heatmap = qimg
        self.update()

    def set_heatmap_visible(self, visible: bool):
        self.show_heatmap = visible
        self.update()

    def set_references(self, boxes: list[ColoredBox]):
        """Read-only boxes (natural pixels) painted dashed under the slots."""
        self.references = list(boxes)
        self.update()

    def set_interactive(self, enabled: bool):
        self.tool.enabled = enabled
        if not enabled:
            self.tool.activate(None)
        self._update_cursor()
        self.update()

    def activate(self, slot_id: str | None):
        self.tool.activate(slot_id)
        self._update_cursor()
        self.update()

    def _update_cursor(self):
        if self.tool.is_interactive:
            self.setCursor(Qt.CursorShape.CrossCursor)
        else:
            self.unsetCursor()

    def _on_tool_change(self, slot_id, box):
        self._update_cursor()
        self.boxChanged.emit(slot_id, box)

    def _compute_draw_rect(self) -> QRectF:
        r = self.rect()
        if not self.pix:
            self._draw_rect = QRectF()
            self.tool.set_layout(None)
            return self._draw_rect
        prf = QRectF(self.pix.rect())
        prf = prf.scaled(r.width(), r.height(), Qt.AspectRatioMode.KeepAspectRatio)
        x = (r.width() - prf.width()) / 2
        y = (r.height() - prf.height()) / 2
        self._draw_rect = QRectF(x, y, prf.width(), prf.height())
        self.tool.set_layout(Box(x, y, prf.width(), prf.height()))
        return self._draw_rect

    def resizeEvent(self, e):
        self._compute_draw_rect()
        super().resizeEvent(e)

    def mousePressEvent(self, e):
        if e.button() != Qt.MouseButton.LeftButton:
            return
        pos = e.position()
        if self.tool.press(pos.x(), pos.y()):
            self.update()

    def mouseMoveEvent(self, e):
        pos = e.position()
        if self.tool.move(pos.x(), pos.y()):
            self.update()

    def mouseReleaseEvent(self, e):
        if e.button() != Qt.MouseButton.LeftButton or not self.tool.is_drawing:
            return
        self.tool.release()
        self.update()

    def paintEvent(self, e):
        p = QPainter(self)
        p.fillRect(self.rect(), QColor("#f5f5f5"))
        dr = self._compute_draw_rect()
        if self.pix:
            p.drawPixmap(dr, self.pix, QRectF(self.pix.rect()))
            if self.heatmap is not None and self.show_heatmap:
                p.setOpacity(HEATMAP_OPACITY)
                p.drawImage(dr, self.heatmap)
                p.setOpacity(1.0)

        def to_widget(box):
            return QRectF(dr.x() + box.x, dr.y() + box.y, box.width, box.height)

        def draw_label(text, pos, color):
            p.setPen(QColor(color))
            p.drawText(QPointF(dr.x() + pos[0], dr.y() + pos[1]), text)

        for ref in self.references:
            d = natural_to_display(ref.box, self.tool.display_size, self.tool.natural_size)
            if d is None:
                continue
            pen = QPen(QColor(ref.color), 2, Qt.PenStyle.DashLine)
            p.setPen(pen)
            p.drawRect(to_widget(d))
            if ref.label:
                pos = label_position(d, self.tool.text_height, dr.height())
                draw_label(ref.label, pos, ref.color)

        for item in self.tool.render_items():
            style = Qt.PenStyle.DotLine if item.candidate else Qt.PenStyle.SolidLine
            p.setPen(QPen(QColor(item.color), 3, style))
            p.drawRect(to_widget(item.box))
            if item.label and item.label_pos is not None:
                draw_label(item.label, item.label_pos, item.color)
        p.end()
