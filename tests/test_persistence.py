"""
Тесты хранилищ: в памяти и JSON-файлы в каталоге.
"""


def test_memory_store_copies_values():
    """MemoryStore хранит копии, изменение снаружи не влияет на сохранённое."""
    from nodeflow.nodegraph.persistence import MemoryStore, PersistenceStore

    store = MemoryStore()
    value = {"items": [1, 2]}

    assert store.save("key", value)
    value["items"].append(3)
    loaded = store.load("key")
    loaded["items"].append(4)

    assert store.load("key") == {"items": [1, 2]}
    assert isinstance(store, PersistenceStore)

    store.clear("key")
    assert store.load("key") is None
    store.clear("key")


def test_json_file_store_round_trip(tmp_path):
    """JsonFileStore пишет файл `{key}.json` и читает его обратно."""
    from nodeflow.nodegraph.persistence import JsonFileStore

    store = JsonFileStore(tmp_path / "storage")
    data = {"name": "узел", "values": [1, 2.5, None, True]}

    assert store.save("graph", data)

    path = tmp_path / "storage" / "graph.json"
    assert path.exists()
    assert store.load("graph") == data
    assert list((tmp_path / "storage").glob("*.tmp")) == []


def test_json_file_store_sanitizes_keys(tmp_path):
    """Недопустимые символы ключа заменяются подчёркиванием."""
    from nodeflow.nodegraph.persistence import JsonFileStore

    store = JsonFileStore(tmp_path)
    assert store.path_for("../custom nodes") == tmp_path / ".._custom_nodes.json"


def test_json_file_store_missing_and_broken(tmp_path):
    """Отсутствующий или повреждённый файл читается как None."""
    from nodeflow.nodegraph.persistence import JsonFileStore

    store = JsonFileStore(tmp_path)
    assert store.load("missing") is None

    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    assert store.load("broken") is None


def test_json_file_store_clear(tmp_path):
    """clear() удаляет файл, повторный вызов безопасен."""
    from nodeflow.nodegraph.persistence import JsonFileStore

    store = JsonFileStore(tmp_path)
    store.save("palette", {"a": 1})
    store.clear("palette")

    assert not (tmp_path / "palette.json").exists()
    store.clear("palette")


def test_json_file_store_failed_replace_removes_temp(tmp_path):
    """Если заменить целевой файл не удалось, временный файл удаляется, ошибка пробрасывается."""
    import pytest

    from nodeflow.nodegraph.persistence import JsonFileStore

    store = JsonFileStore(tmp_path)
    (tmp_path / "graph.json").mkdir()

    with pytest.raises(OSError):
        store.save("graph", {"nodes": []})

    assert list(tmp_path.glob("*.tmp")) == []
