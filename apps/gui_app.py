#!/usr/bin/env python
"""
AI-Assist Annotation Study GUI entry point.

Usage: gui_app.py [user_id]

Without a user id the participant is asked for one at startup. Settings come
from ``AISTUDY_*`` environment variables or a ``.env`` file.
"""

import sys
from pathlib import Path

# Add src to path for development
src_path = Path(__file__).parent.parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from PySide6.QtWidgets import QApplication, QInputDialog  # noqa: E402
from aistudy_ui.core.config import settings  # noqa: E402
from aistudy_ui.core.logging_utils import get_logger, setup_logging  # noqa: E402
from aistudy_ui.core.predictions import PredictionLookup  # noqa: E402
from aistudy_ui.core.session import SessionController  # noqa: E402
from aistudy_ui.core.state import ManifestStore  # noqa: E402
from aistudy_ui.ui.main_window import MainWindow  # noqa: E402


def main():
    """
    Launch the study GUI.

    Returns
    -------
    int
        Exit code (0 for success)
    """
    setup_logging(settings)
    logger = get_logger(__name__)

    app = QApplication(sys.argv)
    app.setApplicationName("AI-Assist Annotation Study")
    app.setStyle("Fusion")

    user_id = sys.argv[1] if len(sys.argv) > 1 else None
    if not user_id:
        user_id, ok = QInputDialog.getText(None, "Participant", "Participant ID:")
        user_id = user_id.strip()
        if not ok or not user_id:
            return 1

    store = ManifestStore(Path(settings.data_root))
    lookup = PredictionLookup(
        settings.predictions_path,
        settings.image_dir,
        settings.heatmap_dir,
        box_units=settings.box_units,
    )
    controller = SessionController(store, lookup, settings.total_trials)
    logger.info(
        "Starting session for %s (%d trials per phase%s)",
        user_id,
        settings.total_trials,
        ", debug mode" if settings.debug_mode else "",
    )

    window = MainWindow(controller)
    window.show()
    window.start(user_id)

    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
