"""Qt front end of the NodeFlow editor."""

from nodeflow.editor.settings import EditorSettings

__all__ = [
    "EditorSettings",
]
