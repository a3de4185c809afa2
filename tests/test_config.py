"""
Тесты конфигурации редактора.
"""

import pytest


def test_defaults():
    """Значения по умолчанию совпадают с поведением холста."""
    from nodeflow.nodegraph.config import DEFAULT_SERVER_URL, EditorConfig

    config = EditorConfig()

    assert (config.min_scale, config.max_scale) == (0.25, 3.0)
    assert config.hit_stroke_width == 6.0
    assert config.server_url == DEFAULT_SERVER_URL
    assert config.storage_dir is None


def test_invalid_values_rejected():
    """Неверный диапазон масштаба или шаг зума - ValueError."""
    from nodeflow.nodegraph.config import EditorConfig

    with pytest.raises(ValueError):
        EditorConfig(min_scale=3.0, max_scale=1.0)
    with pytest.raises(ValueError):
        EditorConfig(zoom_step=1.0)


def test_from_mapping_coerces_strings():
    """Строки из QSettings приводятся к типам полей, неизвестные ключи игнорируются."""
    from nodeflow.nodegraph.config import EditorConfig

    config = EditorConfig.from_mapping({
        "min_scale": "0.5",
        "max_scale": "2.5",
        "autosave": "false",
        "placement_origin": ["30", 40],
        "storage_dir": "",
        "server_url": "http://host:1",
        "unknown": 1,
        "zoom_step": None,
    })

    assert config.min_scale == 0.5
    assert config.max_scale == 2.5
    assert config.autosave is False
    assert config.placement_origin == (30.0, 40.0)
    assert config.storage_dir is None
    assert config.server_url == "http://host:1"
    assert config.zoom_step == 1.1


def test_from_env_overrides(monkeypatch):
    """Переменные окружения перекрывают адрес хоста и каталог хранения."""
    from nodeflow.nodegraph.config import ENV_SERVER_URL, ENV_STORAGE_DIR, EditorConfig

    monkeypatch.setenv(ENV_SERVER_URL, "http://remote:9")
    monkeypatch.setenv(ENV_STORAGE_DIR, "/tmp/nodeflow")

    config = EditorConfig.from_env(EditorConfig(max_scale=2.0))

    assert config.server_url == "http://remote:9"
    assert config.storage_dir == "/tmp/nodeflow"
    assert config.max_scale == 2.0


def test_from_env_without_variables(monkeypatch):
    """Без переменных окружения конфигурация не меняется."""
    from nodeflow.nodegraph.config import ENV_SERVER_URL, ENV_STORAGE_DIR, EditorConfig

    monkeypatch.delenv(ENV_SERVER_URL, raising=False)
    monkeypatch.delenv(ENV_STORAGE_DIR, raising=False)
    base = EditorConfig()

    assert EditorConfig.from_env(base) is base


def test_to_dict_round_trip():
    """to_dict() и from_mapping() взаимно обратны."""
    from nodeflow.nodegraph.config import EditorConfig

    config = EditorConfig(zoom_step=1.25, autosave=False, storage_dir="/data")
    assert EditorConfig.from_mapping(config.to_dict()) == config
