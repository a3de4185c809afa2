"""
Тесты сохранения графа: формат, восстановление, автосохранение.
"""

import json

import pytest


def _library():
    from nodeflow.nodegraph.builtin import builtin_definitions

    return builtin_definitions(include_samples=False)


def _sample_graph():
    from nodeflow.nodegraph.builtin import GET_PROCESS, RESTART_SERVICE, TEXT_VALUE, WRITE_OUTPUT
    from nodeflow.nodegraph.geometry import Point
    from nodeflow.nodegraph.graph import NodeGraph

    graph = NodeGraph(_library())
    text = graph.create_node(TEXT_VALUE, Point(10, 20))
    service = graph.create_node(RESTART_SERVICE, Point(300, 40.5))
    processes = graph.create_node(GET_PROCESS, Point(-50, 200))
    writer = graph.create_node(WRITE_OUTPUT, Point(260, 220))
    graph.set_control_value(text.id, "Value", "spooler")
    graph.add_connection(text.id, "Value", service.id, "Name")
    graph.add_connection(processes.id, "Processes", writer.id, "InputObject")
    graph.set_control_value(service.id, "Force", True)
    return graph


# ============== Format ==============

def test_serialize_graph_shape():
    """Сериализованный граф имеет поля nodes/connections в сохраняемом формате."""
    from nodeflow.nodegraph.serialization import serialize_graph

    data = serialize_graph(_sample_graph())

    assert [n["id"] for n in data["nodes"]] == [
        "ui_text_value_1", "restart_service_2", "get_process_3", "write_output_4",
    ]
    first = data["nodes"][0]
    assert first["type"] == "ui_text_value"
    assert first["position"] == {"x": 10, "y": 20}
    assert first["config"]["Value"] == "spooler"
    assert data["connections"][0] == {
        "fromNode": "ui_text_value_1",
        "fromPort": "Value",
        "toNode": "restart_service_2",
        "toPort": "Name",
    }
    json.dumps(data)


def test_snapshot_does_not_share_config():
    """Снимок не ссылается на живой конфиг узлов."""
    from nodeflow.nodegraph.serialization import serialize_graph

    graph = _sample_graph()
    data = serialize_graph(graph)
    data["nodes"][0]["config"]["Value"] = "changed"

    assert graph.nodes["ui_text_value_1"].config["Value"] == "spooler"


# ============== Round trip ==============

def test_round_trip_restores_ids_positions_config():
    """Восстановление против той же библиотеки воспроизводит id, позиции и конфиг."""
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.serialization import deserialize_graph, serialize_graph

    original = _sample_graph()
    data = json.loads(json.dumps(serialize_graph(original)))

    restored = NodeGraph(_library())
    stats = deserialize_graph(data, restored)

    assert stats == {"nodes": 4, "connections": 2, "skipped_nodes": 0, "skipped_connections": 0}
    for node_id, node in original.nodes.items():
        copy = restored.nodes[node_id]
        assert copy.type == node.type
        assert copy.position == node.position
        assert copy.config == node.config
    assert [c.key for c in restored.connections] == [c.key for c in original.connections]
    assert not restored.dirty
    assert restored.selection.is_empty()


def test_restored_graph_continues_counter():
    """После восстановления новые id продолжают максимальный суффикс."""
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.serialization import deserialize_graph, serialize_graph

    restored = NodeGraph(_library())
    deserialize_graph(serialize_graph(_sample_graph()), restored)

    assert restored.create_node("write_output").id == "write_output_5"


def test_unknown_types_and_dangling_connections_are_dropped():
    """Узлы неизвестного типа и соединения к ним отбрасываются молча."""
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.serialization import deserialize_graph

    data = {
        "nodes": [
            {"id": "get_process_1", "type": "get_process", "position": {"x": 1, "y": 2}, "config": {}},
            {"id": "gone_2", "type": "gone", "position": {"x": 0, "y": 0}, "config": {}},
            {"id": "write_output_3", "type": "write_output", "position": None},
            "garbage",
        ],
        "connections": [
            {"fromNode": "gone_2", "fromPort": "Out", "toNode": "write_output_3", "toPort": "InputObject"},
            {"fromNode": "get_process_1", "fromPort": "Processes", "toNode": "write_output_3", "toPort": "Nope"},
            {"fromNode": "get_process_1"},
            {"fromNode": "get_process_1", "fromPort": "Processes", "toNode": "write_output_3", "toPort": "InputObject"},
        ],
    }
    graph = NodeGraph(_library())

    stats = deserialize_graph(data, graph)

    assert set(graph.nodes) == {"get_process_1", "write_output_3"}
    assert stats["skipped_nodes"] == 2
    assert stats["skipped_connections"] == 3
    assert len(graph.connections) == 1
    assert graph.nodes["get_process_1"].config["Name"] == "'*'"


def test_deserialize_replaces_existing_content():
    """Загрузка заменяет текущее содержимое графа."""
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.serialization import deserialize_graph

    graph = NodeGraph(_library())
    graph.create_node("get_process")
    deserialize_graph({"nodes": [], "connections": []}, graph)

    assert graph.nodes == {}
    assert not graph.dirty


# ============== Autosave ==============

def test_autosave_envelope_round_trip():
    """Автосохранение оборачивает граф в конверт с версией и временем."""
    from nodeflow.nodegraph.persistence import MemoryStore
    from nodeflow.nodegraph.serialization import AUTOSAVE_VERSION, GraphAutosave

    store = MemoryStore()
    autosave = GraphAutosave(store)
    data = {"nodes": [], "connections": []}

    assert autosave.save(data)

    payload = store.load("graph")
    assert payload["version"] == AUTOSAVE_VERSION
    assert isinstance(payload["updatedAt"], int)
    assert autosave.load() == data

    autosave.clear()
    assert autosave.load() is None


def test_autosave_size_limit():
    """Слишком большой снимок не сохраняется."""
    from nodeflow.nodegraph.persistence import MemoryStore
    from nodeflow.nodegraph.serialization import AutosaveTooLarge, GraphAutosave

    store = MemoryStore()
    autosave = GraphAutosave(store, max_bytes=64)

    with pytest.raises(AutosaveTooLarge):
        autosave.save({"nodes": [{"id": "x" * 100}], "connections": []})
    assert store.load("graph") is None


@pytest.mark.parametrize("payload,expected", [
    (None, None),
    ("text", None),
    ({"graph": "bad"}, None),
    ({"nodes": [], "connections": []}, {"nodes": [], "connections": []}),
    ({"version": 1, "graph": {"nodes": []}}, {"nodes": []}),
    ({"other": 1}, None),
])
def test_unwrap_autosave(payload, expected):
    """Принимается конверт или голый граф, остальное - None."""
    from nodeflow.nodegraph.serialization import unwrap_autosave

    assert unwrap_autosave(payload) == expected
