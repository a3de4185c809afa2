"""Запуск редактора через ``python -m nodeflow.editor``."""

import sys

from .run_editor import run_editor


def main():
    sys.exit(run_editor())


if __name__ == "__main__":
    main()
