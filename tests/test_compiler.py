"""
Тесты компилятора графа в PowerShell: топологическая сортировка, привязка переменных,
разрешение входов, подстановка плейсхолдеров и сборка скрипта.
"""

from datetime import datetime, timezone

import pytest


def _linear_library():
    from nodeflow.nodegraph.definition import NodeDefinition, ScriptTemplate

    a = NodeDefinition(
        id="a",
        label="A",
        outputs=("Value",),
        script=ScriptTemplate('{{output.Value}} = "5"'),
    )
    b = NodeDefinition(
        id="b",
        label="B",
        inputs=("Value",),
        outputs=("Sum",),
        script=ScriptTemplate("{{output.Sum}} = {{input.Value}} + 1"),
    )
    return [a, b]


# ============== Topological sort ==============

def test_topological_sort_respects_edges():
    """Каждый узел встречается ровно один раз, источник ребра идёт раньше цели."""
    from nodeflow.nodegraph.compiler import topological_sort
    from nodeflow.nodegraph.graph_data import Connection

    nodes = ["d", "c", "b", "a", "e"]
    connections = [
        Connection("a", "o", "b", "i"),
        Connection("b", "o", "c", "i"),
        Connection("a", "o", "d", "i"),
        Connection("d", "o", "c", "j"),
    ]

    order = topological_sort(nodes, connections)

    assert sorted(order) == sorted(nodes)
    for connection in connections:
        assert order.index(connection.from_node) < order.index(connection.to_node)


def test_topological_sort_is_stable_for_independent_nodes():
    """Независимые узлы сохраняют исходный порядок."""
    from nodeflow.nodegraph.compiler import topological_sort

    assert topological_sort(["x", "y", "z"], []) == ["x", "y", "z"]


def test_topological_sort_ignores_unknown_endpoints():
    """Соединения с неизвестными концами не участвуют в сортировке."""
    from nodeflow.nodegraph.compiler import topological_sort
    from nodeflow.nodegraph.graph_data import Connection

    assert topological_sort(["a"], [Connection("ghost", "o", "a", "i")]) == ["a"]


def test_topological_sort_detects_cycle():
    """Цикл - CycleError."""
    from nodeflow.nodegraph.compiler import CycleError, topological_sort
    from nodeflow.nodegraph.graph_data import Connection

    with pytest.raises(CycleError):
        topological_sort(["a", "b"], [Connection("a", "o", "b", "i"), Connection("b", "o", "a", "i")])


# ============== Variable binding ==============

def test_variable_binder_is_deterministic_and_unique():
    """Одна и та же пара даёт одну переменную, коллизии после санитизации получают суффикс."""
    from nodeflow.nodegraph.compiler import VariableBinder

    binder = VariableBinder()

    first = binder.bind("node-1", "Out put")
    assert first == "$node_1_Out_put"
    assert binder.bind("node-1", "Out put") == first

    clash = binder.bind("node_1", "Out_put")
    assert clash == "$node_1_Out_put_2"
    assert len(binder.bindings) == 2


# ============== Placeholders ==============

def test_unknown_placeholder_is_left_verbatim():
    """Плейсхолдер без значения остаётся в тексте как есть."""
    from nodeflow.nodegraph.definition import expand_placeholders

    text = expand_placeholders(
        "{{input.Bound}} {{input.Unbound}} {{config.Key}} {{ output.Out }}",
        {"Bound": "$x"},
        {"Out": "$y"},
        {},
    )

    assert text == "$x {{input.Unbound}} {{config.Key}} $y"


def test_placeholder_expansion_is_single_pass():
    """Подставленное значение, похожее на плейсхолдер, повторно не раскрывается."""
    from nodeflow.nodegraph.definition import ScriptTemplate

    template = ScriptTemplate("{{config.A}}")
    assert template({}, {}, {"A": "{{config.B}}", "B": "boom"}) == "{{config.B}}"


def test_blank_template_emits_nothing():
    """Пустой шаблон не даёт текста."""
    from nodeflow.nodegraph.definition import ScriptTemplate

    assert ScriptTemplate("  \r\n ")({}, {}, {}) == ""


# ============== Script generation ==============

def test_linear_pipeline_uses_upstream_variable():
    """B ссылается на переменную A, операторы A идут раньше B."""
    from nodeflow.nodegraph.compiler import generate_script_body
    from nodeflow.nodegraph.graph import NodeGraph

    graph = NodeGraph(_linear_library())
    b = graph.create_node("b")
    a = graph.create_node("a")
    graph.add_connection(a.id, "Value", b.id, "Value")

    body = generate_script_body(graph)

    assert body == '$a_2_Value = "5"\n\n$b_1_Sum = $a_2_Value + 1'


def test_ui_value_is_inlined_as_literal():
    """Значение UI-узла подставляется литералом, переменная для UI-узла не объявляется."""
    from nodeflow.nodegraph.definition import ExecutionMode, NodeDefinition, ScriptTemplate
    from nodeflow.nodegraph.compiler import generate_script_body
    from nodeflow.nodegraph.graph import NodeGraph

    ui = NodeDefinition(id="server", label="Server", execution=ExecutionMode.UI, outputs=("Name",))
    ping = NodeDefinition(
        id="ping",
        label="Ping",
        inputs=("Target",),
        script=ScriptTemplate("Test-Connection -ComputerName {{input.Target}}"),
    )
    graph = NodeGraph([ui, ping])
    source = graph.create_node("server")
    target = graph.create_node("ping")
    graph.update_config(source.id, "Name", "server01")
    graph.add_connection(source.id, "Name", target.id, "Target")

    body = generate_script_body(graph)

    assert body == "Test-Connection -ComputerName 'server01'"
    assert "$server" not in body


def test_ui_raw_value_is_preferred():
    """Непустое `__raw` значение UI-узла предпочитается сохранённому."""
    from nodeflow.nodegraph.builtin import TEXT_VALUE, WRITE_OUTPUT
    from nodeflow.nodegraph.compiler import generate_script_body
    from nodeflow.nodegraph.graph import NodeGraph

    graph = NodeGraph([TEXT_VALUE, WRITE_OUTPUT])
    text = graph.create_node(TEXT_VALUE)
    writer = graph.create_node(WRITE_OUTPUT)
    graph.add_connection(text.id, "Value", writer.id, "InputObject")
    graph.update_config(text.id, "Value", "stored")
    graph.update_config(text.id, "Value__raw", "raw text")

    assert generate_script_body(graph) == "Write-Output 'raw text'"


def test_bound_control_substitutes_missing_wire():
    """Без провода вход берётся из связанного контрола."""
    from nodeflow.nodegraph.builtin import RESTART_SERVICE
    from nodeflow.nodegraph.compiler import generate_script_body
    from nodeflow.nodegraph.graph import NodeGraph

    graph = NodeGraph([RESTART_SERVICE])
    node = graph.create_node(RESTART_SERVICE)
    graph.set_control_value(node.id, "ServiceName", "'spooler'")

    assert generate_script_body(graph) == "Restart-Service -Name 'spooler'"

    graph.set_control_value(node.id, "Force", True)
    assert generate_script_body(graph) == "Restart-Service -Name 'spooler' -Force"


def test_missing_input_is_an_error():
    """Пустой объявленный вход - MissingInputError с меткой узла и именами входов."""
    from nodeflow.nodegraph.builtin import RESTART_SERVICE
    from nodeflow.nodegraph.compiler import MissingInputError, generate_script
    from nodeflow.nodegraph.graph import NodeGraph

    graph = NodeGraph([RESTART_SERVICE])
    node = graph.create_node(RESTART_SERVICE)

    with pytest.raises(MissingInputError) as info:
        generate_script(graph)

    assert str(info.value) == "Restart Service is missing required input: Name"
    assert info.value.node_id == node.id
    assert info.value.missing == ["Name"]


def test_any_empty_input_is_reported():
    """Ошибка перечисляет все пустые входы, даже если часть заполнена."""
    from nodeflow.nodegraph.compiler import MissingInputError, generate_script_body
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.library import import_sample_spec, spec_to_definition

    definition = spec_to_definition(import_sample_spec("sample_math_add"))
    graph = NodeGraph([definition])
    node = graph.create_node(definition)
    graph.update_config(node.id, "FirstValue", "1")

    with pytest.raises(MissingInputError) as info:
        generate_script_body(graph)
    assert info.value.missing == ["SecondValue"]


def test_cycle_fails_compile():
    """Граф с циклом не компилируется, сообщение передаётся как есть."""
    from nodeflow.nodegraph.definition import NodeDefinition, ScriptTemplate
    from nodeflow.nodegraph.compiler import CycleError, generate_script
    from nodeflow.nodegraph.graph import NodeGraph

    loop = NodeDefinition(
        id="loop",
        label="Loop",
        inputs=("In",),
        outputs=("Out",),
        script=ScriptTemplate("{{output.Out}} = {{input.In}}"),
    )
    graph = NodeGraph([loop])
    a = graph.create_node("loop")
    b = graph.create_node("loop")
    graph.add_connection(a.id, "Out", b.id, "In")
    graph.add_connection(b.id, "Out", a.id, "In")

    with pytest.raises(CycleError, match="Circular dependency detected."):
        generate_script(graph)


def test_ui_nodes_emit_no_script():
    """Граф только из UI-узлов компилируется в заглушку."""
    from nodeflow.nodegraph.builtin import TEXT_VALUE
    from nodeflow.nodegraph.compiler import EMPTY_BODY, generate_script
    from nodeflow.nodegraph.graph import NodeGraph

    graph = NodeGraph([TEXT_VALUE])
    graph.create_node(TEXT_VALUE)

    assert EMPTY_BODY in generate_script(graph, "T")


def test_boolean_config_becomes_powershell_literal():
    """Булевы значения конфигурации попадают в шаблон как $true/$false."""
    from nodeflow.nodegraph.definition import ControlKind, ControlSpec, NodeDefinition, ScriptTemplate
    from nodeflow.nodegraph.compiler import generate_script_body
    from nodeflow.nodegraph.graph import NodeGraph

    definition = NodeDefinition(
        id="flag",
        label="Flag",
        controls=(ControlSpec("Enabled", ControlKind.CHECK_BOX, default=False),),
        script=ScriptTemplate("$enabled = {{config.Enabled}}"),
    )
    graph = NodeGraph([definition])
    node = graph.create_node(definition)

    assert generate_script_body(graph) == "$enabled = $false"
    graph.update_config(node.id, "Enabled", True)
    assert generate_script_body(graph) == "$enabled = $true"


# ============== Assembly ==============

def test_wrap_script_layout():
    """Заголовок, отметка времени, strict-mode пролог и тело через пустые строки."""
    from nodeflow.nodegraph.compiler import wrap_script

    script = wrap_script("Write-Output 1", "2024-01-02T03:04:05.000Z")

    assert script == (
        "# Generated with NodeFlow\n"
        "# 2024-01-02T03:04:05.000Z\n"
        "\n"
        "Set-StrictMode -Version Latest\n"
        "$ErrorActionPreference = 'Stop'\n"
        "\n"
        "Write-Output 1\n"
    )


def test_wrap_script_formats_datetime():
    """datetime выводится в ISO-формате с миллисекундами и суффиксом Z."""
    from nodeflow.nodegraph.compiler import wrap_script

    stamp = datetime(2024, 5, 6, 7, 8, 9, 123000, tzinfo=timezone.utc)
    assert "# 2024-05-06T07:08:09.123Z\n" in wrap_script("", stamp)


def test_empty_graph_has_placeholder_body():
    """Пустой граф даёт скрипт с заглушкой, а не пустую строку."""
    from nodeflow.nodegraph.compiler import generate_script
    from nodeflow.nodegraph.graph import NodeGraph

    script = generate_script(NodeGraph(), "T")

    assert script.endswith("# Flow contains no executable steps\n")
    assert script.startswith("# Generated with NodeFlow\n# T\n")


def test_builtin_pipeline_end_to_end():
    """Get Process -> Filter -> Export CSV собирается в упорядоченный скрипт."""
    from nodeflow.nodegraph.builtin import EXPORT_CSV, FILTER_OBJECTS, GET_PROCESS, builtin_definitions
    from nodeflow.nodegraph.compiler import generate_script
    from nodeflow.nodegraph.graph import NodeGraph

    graph = NodeGraph(builtin_definitions())
    export = graph.create_node(EXPORT_CSV)
    processes = graph.create_node(GET_PROCESS)
    filtered = graph.create_node(FILTER_OBJECTS)
    graph.add_connection(processes.id, "Processes", filtered.id, "InputObject")
    graph.add_connection(filtered.id, "Filtered", export.id, "InputObject")
    graph.set_control_value(export.id, "Mode", "Append")

    script = generate_script(graph, "T")

    get_line = "$get_process_2_Processes = Get-Process -Name '*'"
    filter_line = (
        "$filter_objects_3_Filtered = $get_process_2_Processes | Where-Object { $_.CPU -gt 10 }"
    )
    export_line = (
        "$filter_objects_3_Filtered | Export-Csv -Path 'output.csv' "
        "-Encoding utf8 -NoTypeInformation -Append"
    )
    assert get_line in script
    assert script.index(get_line) < script.index(filter_line) < script.index(export_line)


def test_text_value_into_write_output():
    """Text Value -> Write Output подставляет экранированный литерал."""
    from nodeflow.nodegraph.builtin import TEXT_VALUE, WRITE_OUTPUT
    from nodeflow.nodegraph.compiler import generate_script
    from nodeflow.nodegraph.graph import NodeGraph

    graph = NodeGraph([TEXT_VALUE, WRITE_OUTPUT])
    text = graph.create_node(TEXT_VALUE)
    writer = graph.create_node(WRITE_OUTPUT)
    graph.set_control_value(text.id, "Value", "hello")
    graph.add_connection(text.id, "Value", writer.id, "InputObject")

    assert "Write-Output 'hello'" in generate_script(graph, "T")


def test_numeric_text_value_stays_unquoted():
    """Число в экспоненциальной записи подставляется без кавычек."""
    from nodeflow.nodegraph.builtin import TEXT_VALUE, WRITE_OUTPUT
    from nodeflow.nodegraph.compiler import generate_script
    from nodeflow.nodegraph.graph import NodeGraph

    graph = NodeGraph([TEXT_VALUE, WRITE_OUTPUT])
    text = graph.create_node(TEXT_VALUE)
    writer = graph.create_node(WRITE_OUTPUT)
    graph.set_control_value(text.id, "Value", "2.5e3")
    graph.add_connection(text.id, "Value", writer.id, "InputObject")

    assert "Write-Output 2.5e3" in generate_script(graph, "T")
