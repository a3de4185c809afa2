"""
Тесты цепочки автозапуска: сбор upstream-узлов, порядок, мемоизация, поведение при ошибке.
"""

import asyncio

import pytest


def _make_graph(calls, fail_on=None, delay=0.0):
    """
    Граф: fetch_a -> fetch_b -> report (chain entry), плюс независимый fetch_c.
    Каждый hook записывает своё имя в calls и пишет значение в конфиг.
    """
    from nodeflow.nodegraph.auto_exec import AutoExecutor
    from nodeflow.nodegraph.definition import NodeDefinition, ScriptTemplate
    from nodeflow.nodegraph.graph import NodeGraph

    async def fetch(context):
        calls.append(context.node.id)
        if delay:
            await asyncio.sleep(delay)
        if fail_on is not None and context.node.id == fail_on:
            raise RuntimeError(f"{context.node.id} failed")
        context.update_config("Result", f"value of {context.node.id}", silent=True)
        return context.node.id

    def report(context):
        calls.append(context.node.id)
        return "report"

    fetch_def = NodeDefinition(
        id="fetch",
        label="Fetch",
        inputs=("In",),
        outputs=("Out",),
        auto_execute=fetch,
        script=ScriptTemplate("{{output.Out}} = 1"),
    )
    report_def = NodeDefinition(
        id="report",
        label="Report",
        inputs=("In",),
        auto_execute=report,
        chain_execution=True,
    )
    graph = NodeGraph([fetch_def, report_def])
    entry = graph.create_node("report")
    b = graph.create_node("fetch")
    a = graph.create_node("fetch")
    c = graph.create_node("fetch")
    graph.add_connection(a.id, "Out", b.id, "In")
    graph.add_connection(b.id, "Out", entry.id, "In")
    executor = AutoExecutor(graph)
    return graph, executor, {"entry": entry.id, "a": a.id, "b": b.id, "c": c.id}


# ============== Collection ==============

def test_collect_upstream_auto_nodes():
    """Сбор идёт по всем upstream-соединениям, сам узел и несвязанные узлы не входят."""
    graph, executor, ids = _make_graph([])

    collected = executor.collect_upstream_auto_nodes(ids["entry"])

    assert set(collected) == {ids["a"], ids["b"]}
    assert executor.collect_upstream_auto_nodes(ids["a"]) == []


def test_collect_respects_port_filter():
    """Фильтр портов ограничивает только первый шаг."""
    graph, executor, ids = _make_graph([])

    assert executor.collect_upstream_auto_nodes(ids["entry"], ports=["Other"]) == []
    assert set(executor.collect_upstream_auto_nodes(ids["entry"], ports=["In"])) == {ids["a"], ids["b"]}


def test_chain_entries():
    """Точки входа цепочки - узлы с chain_execution и hook."""
    graph, executor, ids = _make_graph([])
    assert executor.chain_entries() == [ids["entry"]]


# ============== Chain run ==============

def test_run_chain_in_topological_order():
    """Upstream-узлы выполняются раньше зависимых, несвязанный узел не запускается."""
    calls = []
    graph, executor, ids = _make_graph(calls)

    order = asyncio.run(executor.run_chain())

    assert order == [ids["a"], ids["b"], ids["entry"]]
    assert calls == order
    assert graph.nodes[ids["b"]].config["Result"] == f"value of {ids['b']}"
    assert "Result" not in graph.nodes[ids["c"]].config


def test_run_chain_without_entries():
    """Без точек входа цепочка ничего не делает."""
    from nodeflow.nodegraph.auto_exec import AutoExecutor
    from nodeflow.nodegraph.graph import NodeGraph

    assert asyncio.run(AutoExecutor(NodeGraph()).run_chain()) == []


def test_failure_aborts_without_rollback():
    """Ошибка прерывает проход, конфиг уже выполненных узлов не откатывается."""
    calls = []
    graph, executor, ids = _make_graph(calls, fail_on="fetch_2")
    assert ids["b"] == "fetch_2"

    with pytest.raises(RuntimeError, match="fetch_2 failed"):
        asyncio.run(executor.run_chain())

    assert graph.nodes[ids["a"]].config["Result"] == f"value of {ids['a']}"
    assert "Result" not in graph.nodes[ids["b"]].config
    assert ids["entry"] not in calls


def test_concurrent_triggers_share_one_run():
    """Параллельные запросы одного узла ждут один и тот же запуск."""
    calls = []
    graph, executor, ids = _make_graph(calls, delay=0.01)

    async def scenario():
        return await asyncio.gather(executor.execute(ids["a"]), executor.execute(ids["a"]))

    results = asyncio.run(scenario())

    assert results == [ids["a"], ids["a"]]
    assert calls == [ids["a"]]


def test_finished_run_can_be_triggered_again_outside_pass():
    """Вне прохода цепочки завершённый узел запускается заново."""
    calls = []
    graph, executor, ids = _make_graph(calls)

    async def scenario():
        await executor.execute(ids["a"])
        await executor.execute(ids["a"])

    asyncio.run(scenario())
    assert calls == [ids["a"], ids["a"]]


def test_pass_reuses_completed_upstream_results():
    """В одном проходе цепочки повторный запрос upstream-узла не перезапускает его, следующий проход - перезапускает."""
    from nodeflow.nodegraph.auto_exec import AutoExecutor
    from nodeflow.nodegraph.definition import NodeDefinition
    from nodeflow.nodegraph.graph import NodeGraph

    calls = []

    def fetch(context):
        calls.append(context.node.id)

    async def entry(context):
        await context.ensure_auto_nodes()
        calls.append(context.node.id)

    fetch_def = NodeDefinition(id="fetch", label="Fetch", outputs=("Out",), auto_execute=fetch)
    entry_def = NodeDefinition(
        id="entry",
        label="Entry",
        inputs=("In",),
        auto_execute=entry,
        chain_execution=True,
    )
    graph = NodeGraph([fetch_def, entry_def])
    source = graph.create_node("fetch")
    target = graph.create_node("entry")
    graph.add_connection(source.id, "Out", target.id, "In")
    executor = AutoExecutor(graph)

    asyncio.run(executor.run_chain())
    assert calls == [source.id, target.id]
    assert not executor.in_pass

    asyncio.run(executor.run_chain())
    assert calls == [source.id, target.id, source.id, target.id]


def test_run_auto_node_includes_upstream():
    """Ручной запуск узла сначала выполняет его upstream-узлы."""
    calls = []
    graph, executor, ids = _make_graph(calls)

    result = asyncio.run(executor.run_auto_node(ids["b"]))

    assert result == ids["b"]
    assert calls == [ids["a"], ids["b"]]


def test_hook_context_helpers():
    """HookContext даёт доступ к живым входам и запуску upstream-узлов."""
    from nodeflow.nodegraph.auto_exec import AutoExecutor, HookContext
    from nodeflow.nodegraph.builtin import TEXT_VALUE
    from nodeflow.nodegraph.definition import NodeDefinition
    from nodeflow.nodegraph.graph import NodeGraph

    seen = {}

    async def lookup(context: HookContext):
        await context.ensure_auto_nodes()
        seen["name"] = context.resolve_input("Name", prefer_raw=True)
        context.update_config("Status", context.to_literal(seen["name"] + " ok"))

    lookup_def = NodeDefinition(id="lookup", label="Lookup", inputs=("Name",), auto_execute=lookup)
    graph = NodeGraph([TEXT_VALUE, lookup_def])
    executor = AutoExecutor(graph)
    text = graph.create_node(TEXT_VALUE)
    node = graph.create_node(lookup_def)
    graph.set_control_value(text.id, "Value", "dns")
    graph.add_connection(text.id, "Value", node.id, "Name")

    asyncio.run(executor.run_auto_node(node.id))

    assert seen["name"] == "dns"
    assert node.config["Status"] == "'dns ok'"


def test_result_for_removed_node_is_dropped():
    """Hook, завершившийся после удаления узла, ничего не пишет в граф."""
    from nodeflow.nodegraph.auto_exec import AutoExecutor
    from nodeflow.nodegraph.definition import NodeDefinition
    from nodeflow.nodegraph.graph import NodeGraph

    async def slow(context):
        await asyncio.sleep(0.01)
        return context.update_config("Result", "late")

    definition = NodeDefinition(id="slow", label="Slow", auto_execute=slow)
    graph = NodeGraph([definition])
    executor = AutoExecutor(graph)
    node = graph.create_node(definition)

    async def scenario():
        task = asyncio.ensure_future(executor.execute(node.id))
        await asyncio.sleep(0)
        graph.remove_node(node.id)
        return await task

    assert asyncio.run(scenario()) is False
    assert node.id not in graph.nodes
