"""
AI-Assist Annotation Study
==========================

Desktop application for a crossover reader study on AI assistance in image
diagnosis. Each participant annotates a fixed sequence of images twice,
once with and once without AI support:

1. **Findings**: classify each finding slot as present, uncertain or absent
   and draw a bounding box around present findings
2. **Diagnosis**: give a binary diagnosis and a 1-7 confidence rating
3. **AI feedback** (AI phase only): compare against the AI's diagnosis,
   confidence, box and heatmap, optionally revise, and rate confidence again

Every answer, box and timing is stored per trial so the effect of the AI
can be analysed afterwards; sessions resume where the participant left off.

Main Modules
------------
core
    Trial engine, AI prediction lookup, storage, metrics, settings
ui
    PySide6 widgets: drawing canvas, trial tab, main window

See Also
--------
apps/gui_app.py : Launch the study GUI
apps/summarize.py : Write per-participant outcome metrics
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
