"""
Настройки редактора.

Централизованное хранение и загрузка настроек между сессиями.
Использует QSettings для кроссплатформенного хранения.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

from PyQt6.QtCore import QSettings, QStandardPaths

from nodeflow.nodegraph.config import EditorConfig


class EditorSettings:
    """
    Менеджер настроек редактора.

    Singleton-класс для доступа к настройкам из любого места.
    Настройки хранятся в:
    - Windows: реестр HKEY_CURRENT_USER\\Software\\NodeFlow\\NodeFlowEditor
    - Linux: ~/.config/NodeFlow/NodeFlowEditor.conf
    - macOS: ~/Library/Preferences/com.nodeflow.NodeFlowEditor.plist
    """

    _instance: "EditorSettings | None" = None

    # Ключи настроек
    KEY_LAST_GRAPH_PATH = "Editor/lastGraphPath"
    KEY_LAST_SCRIPT_PATH = "Editor/lastScriptPath"
    KEY_WINDOW_GEOMETRY = "Editor/windowGeometry"
    KEY_WINDOW_STATE = "Editor/windowState"
    KEY_SPLITTER_SIZES = "Editor/splitterSizes"
    CONFIG_GROUP = "Config"

    def __init__(self, settings: QSettings | None = None):
        self._settings = settings if settings is not None else QSettings("NodeFlow", "NodeFlowEditor")

    @classmethod
    def instance(cls) -> "EditorSettings":
        """Получить singleton экземпляр."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def get(self, key: str, default: Any = None) -> Any:
        """Получить значение настройки."""
        return self._settings.value(key, default)

    def set(self, key: str, value: Any) -> None:
        """Установить значение настройки."""
        self._settings.setValue(key, value)

    def sync(self) -> None:
        """Принудительно сохранить настройки на диск."""
        self._settings.sync()

    # --- Конфигурация ядра ---

    def load_config(self) -> EditorConfig:
        """
        Собрать EditorConfig из сохранённых значений и переменных окружения.

        Отсутствующие ключи берутся из значений по умолчанию.
        Переменные окружения имеют приоритет над QSettings.
        """
        data = {}
        for f in fields(EditorConfig):
            value = self.get(f"{self.CONFIG_GROUP}/{f.name}")
            if value is not None and value != "":
                data[f.name] = value
        try:
            config = EditorConfig.from_mapping(data)
        except (TypeError, ValueError):
            config = EditorConfig()
        return EditorConfig.from_env(config)

    def save_config(self, config: EditorConfig) -> None:
        """Сохранить EditorConfig."""
        for name, value in config.to_dict().items():
            key = f"{self.CONFIG_GROUP}/{name}"
            if value is None:
                self._settings.remove(key)
            elif isinstance(value, tuple):
                self.set(key, list(value))
            else:
                self.set(key, value)

    def storage_dir(self, config: EditorConfig) -> Path:
        """Каталог автосохранения: из конфигурации или стандартный AppData."""
        if config.storage_dir:
            return Path(config.storage_dir)
        location = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.AppDataLocation)
        return Path(location or Path.home() / ".nodeflow")

    # --- Удобные методы для частых настроек ---

    def get_last_graph_path(self) -> Path | None:
        """Получить путь последнего сохранённого/загруженного графа."""
        path_str = self.get(self.KEY_LAST_GRAPH_PATH)
        if path_str:
            path = Path(path_str)
            if path.exists():
                return path
        return None

    def set_last_graph_path(self, path: Path | str) -> None:
        """Сохранить путь графа."""
        self.set(self.KEY_LAST_GRAPH_PATH, str(path))

    def get_last_script_path(self) -> Path | None:
        """Получить путь последнего экспортированного скрипта."""
        path_str = self.get(self.KEY_LAST_SCRIPT_PATH)
        return Path(path_str) if path_str else None

    def set_last_script_path(self, path: Path | str) -> None:
        """Сохранить путь скрипта."""
        self.set(self.KEY_LAST_SCRIPT_PATH, str(path))

    def get_window_geometry(self) -> bytes | None:
        """Получить геометрию окна."""
        return self.get(self.KEY_WINDOW_GEOMETRY)

    def set_window_geometry(self, geometry: bytes) -> None:
        """Сохранить геометрию окна."""
        self.set(self.KEY_WINDOW_GEOMETRY, geometry)

    def get_window_state(self) -> bytes | None:
        """Получить состояние окна."""
        return self.get(self.KEY_WINDOW_STATE)

    def set_window_state(self, state: bytes) -> None:
        """Сохранить состояние окна."""
        self.set(self.KEY_WINDOW_STATE, state)

    def get_splitter_sizes(self) -> list[int] | None:
        """Получить размеры панелей сплиттера."""
        sizes = self.get(self.KEY_SPLITTER_SIZES)
        if not sizes:
            return None
        try:
            return [int(size) for size in sizes]
        except (TypeError, ValueError):
            return None

    def set_splitter_sizes(self, sizes: list[int]) -> None:
        """Сохранить размеры панелей сплиттера."""
        self.set(self.KEY_SPLITTER_SIZES, list(sizes))
