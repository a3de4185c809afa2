import logging
import os
import sys

from PyQt6.QtGui import QPalette
from PyQt6.QtWidgets import QApplication

from nodeflow import log
from nodeflow.editor.canvas import NodeCanvas
from nodeflow.editor.editor_window import FlowEditorWindow

ENV_LOG_LEVEL = "NODEFLOW_LOG_LEVEL"


def apply_dark_palette(app: QApplication):
    """Fusion style tinted to match the canvas colours."""
    app.setStyle("Fusion")

    canvas = NodeCanvas
    roles = {
        QPalette.ColorRole.Window: canvas.COLOR_BODY_BG,
        QPalette.ColorRole.WindowText: canvas.COLOR_TITLE_TEXT,
        QPalette.ColorRole.Base: canvas.COLOR_BACKGROUND,
        QPalette.ColorRole.AlternateBase: canvas.COLOR_GRID,
        QPalette.ColorRole.ToolTipBase: canvas.COLOR_TITLE_BG,
        QPalette.ColorRole.ToolTipText: canvas.COLOR_TITLE_TEXT,
        QPalette.ColorRole.Text: canvas.COLOR_TITLE_TEXT,
        QPalette.ColorRole.Button: canvas.COLOR_TITLE_BG,
        QPalette.ColorRole.ButtonText: canvas.COLOR_TITLE_TEXT,
        QPalette.ColorRole.Highlight: canvas.COLOR_SELECTED,
        QPalette.ColorRole.HighlightedText: canvas.COLOR_BORDER,
        QPalette.ColorRole.Link: canvas.COLOR_PORT_INPUT,
    }

    palette = QPalette()
    for role, color in roles.items():
        palette.setColor(role, color)
    for role in (QPalette.ColorRole.Text, QPalette.ColorRole.ButtonText, QPalette.ColorRole.WindowText):
        palette.setColor(QPalette.ColorGroup.Disabled, role, canvas.COLOR_PARAM_TEXT.darker(150))

    app.setPalette(palette)


def configure_logging():
    level_name = os.environ.get(ENV_LOG_LEVEL, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    log.set_level(level)


def run_editor(argv=None):
    argv = list(sys.argv if argv is None else argv)
    configure_logging()

    app = QApplication(argv)
    apply_dark_palette(app)

    win = FlowEditorWindow()
    if len(argv) > 1:
        win.load_graph_file(argv[1])
    win.show()

    return app.exec()


if __name__ == "__main__":
    sys.exit(run_editor())
