"""
Дымовые тесты Qt-слоя редактора. Запускаются на offscreen-платформе.
"""

import json
import os

import pytest

pytest.importorskip("PyQt6")
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")


@pytest.fixture(scope="module")
def qapp():
    from PyQt6.QtWidgets import QApplication

    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def settings(tmp_path):
    from PyQt6.QtCore import QSettings

    from nodeflow.editor.settings import EditorSettings

    return EditorSettings(QSettings(str(tmp_path / "settings.ini"), QSettings.Format.IniFormat))


@pytest.fixture
def window(qapp, settings):
    from nodeflow.editor.editor_window import FlowEditorWindow
    from nodeflow.nodegraph.config import EditorConfig
    from nodeflow.nodegraph.persistence import MemoryStore

    store = MemoryStore()
    win = FlowEditorWindow(config=EditorConfig(), store=store, settings=settings)
    win.test_store = store
    yield win
    win.deleteLater()


# ============== Settings ==============

def test_settings_config_round_trip(qapp, settings, monkeypatch):
    """Конфигурация сохраняется в QSettings и читается обратно."""
    from nodeflow.nodegraph.config import ENV_SERVER_URL, ENV_STORAGE_DIR, EditorConfig

    monkeypatch.delenv(ENV_SERVER_URL, raising=False)
    monkeypatch.delenv(ENV_STORAGE_DIR, raising=False)

    settings.save_config(EditorConfig(max_scale=2.0, autosave=False, server_url="http://host:1"))
    config = settings.load_config()

    assert config.max_scale == 2.0
    assert config.autosave is False
    assert config.server_url == "http://host:1"
    assert config.storage_dir is None


# ============== Window ==============

def test_window_builds_palette(window):
    """Окно строит дерево палитры по библиотеке."""
    assert window._palette.topLevelItemCount() > 0
    assert window.test_store.load("palette") is not None


def test_properties_follow_selection(window):
    """Панель свойств показывает контролы выбранного узла."""
    node = window.editor.graph.create_node("restart_service")

    assert window._properties.node is node
    assert window._properties._form.rowCount() == len(node.definition.controls)

    window.editor.graph.selection.clear()
    assert window._properties.node is None


def test_load_graph_file(window, tmp_path):
    """Граф загружается из файла, битый файл не ломает окно."""
    from nodeflow.nodegraph.builtin import builtin_definitions
    from nodeflow.nodegraph.flow_editor import FlowEditor

    source = FlowEditor(builtin_definitions())
    source.graph.create_node("get_process")
    path = tmp_path / "flow.nodeflow.json"
    path.write_text(json.dumps(source.graph_data()), encoding="utf-8")

    assert window.load_graph_file(path)
    assert len(window.editor.graph.nodes) == 1

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    assert window.load_graph_file(broken) is False


def test_close_autosaves(window):
    """Закрытие окна сохраняет изменённый граф."""
    window.editor.graph.create_node("get_process")

    window.close()

    assert window.test_store.load("graph") is not None
    assert window._loop.is_closed()


def _pump_until_idle(window, attempts=50):
    for _ in range(attempts):
        window._pump_async()
        if not window._tasks:
            return


def test_run_async_does_not_block(window):
    """run_async только планирует корутину, её выполняет таймер окна."""
    import asyncio

    steps = []

    async def work():
        steps.append("started")
        await asyncio.sleep(0)
        steps.append("finished")
        return 42

    task = window.run_async(work())

    assert steps == []
    assert window._async_timer.isActive()

    _pump_until_idle(window)

    assert task.result() == 42
    assert steps == ["started", "finished"]
    assert not window._async_timer.isActive()


def test_run_node_failure_reported(window, monkeypatch):
    """Ошибка автозапуска узла показывается пользователю, задача завершается."""
    errors = []
    monkeypatch.setattr(window, "_show_error", errors.append)

    async def failing(node_id, include_upstream=True):
        raise RuntimeError("host offline")

    monkeypatch.setattr(window.editor.auto, "run_auto_node", failing)

    window._run_node("get_process_1")
    _pump_until_idle(window)

    assert errors == ["host offline"]
    assert not window._tasks


def test_dark_palette_follows_canvas_colors(qapp):
    """Палитра приложения берёт цвета холста."""
    from PyQt6.QtGui import QPalette

    from nodeflow.editor.canvas import NodeCanvas
    from nodeflow.editor.run_editor import apply_dark_palette

    apply_dark_palette(qapp)

    palette = qapp.palette()
    assert palette.color(QPalette.ColorRole.Highlight) == NodeCanvas.COLOR_SELECTED
    assert palette.color(QPalette.ColorRole.Base) == NodeCanvas.COLOR_BACKGROUND
