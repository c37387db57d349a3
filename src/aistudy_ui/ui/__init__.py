"""
UI Components for the Annotation Study
======================================

PySide6 widgets for running trials:

1. **BoxCanvas**
   - Aspect-fit image display with optional heatmap overlay
   - Bounding-box drawing driven by ``core.box_tool.BoxTool``
   - Read-only reference boxes (AI box, participant boxes) for feedback

2. **TrialTab**
   - One page per trial step: findings and diagnosis, confidence,
     AI feedback, final confidence
   - Buttons enabled from the trial guards ("no wrong moves")
   - Background commit with a Retry/Cancel dialog on failure

3. **MainWindow**
   - Hosts the trial tab and a completion page with the outcome summary

Architecture Notes
------------------
- Widgets hold no answers; everything lives on ``core.trial.Trial``
- Commits and the dataset load run through ``core.tasks.submit()``
- Boxes are always handed to the trial in natural image pixels

Functions
---------
format_iou
    Present an IoU fraction as a whole percentage

Examples
--------
>>> from PySide6.QtWidgets import QApplication
>>> from aistudy_ui.ui.main_window import MainWindow
>>> app = QApplication(sys.argv)
>>> window = MainWindow(controller)
>>> window.show()
>>> sys.exit(app.exec())

See Also
--------
aistudy_ui.core : Trial engine and storage
apps.gui_app : Entry point for launching the GUI
"""


def format_iou(value: float | None) -> str:
    """
    Format an IoU fraction for display.

    >>> format_iou(0.4567)
    '46%'
    >>> format_iou(None)
    'n/a'
    """
    if value is None:
        return "n/a"
    return f"{round(value * 100)}%"


__all__ = ["format_iou"]
