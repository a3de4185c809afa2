"""Selection - selected nodes, selected connection and box-select preview."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Iterable, Optional, Set

if TYPE_CHECKING:
    from nodeflow.nodegraph.graph_data import Connection


class Selection:
    """
    Управляет выделением в графе.

    Ответственности:
    - Множество выделенных узлов
    - Не более одного выделенного соединения
    - Превью выделения рамкой
    - Уведомление подписчика об изменениях

    Выделение узлов и выделение соединения взаимоисключающие.
    """

    def __init__(self, on_changed: Optional[Callable[[], None]] = None):
        self._on_changed = on_changed
        self._nodes: Set[str] = set()
        self._connection: Optional["Connection"] = None
        self._preview: Set[str] = set()

    @property
    def nodes(self) -> Set[str]:
        return set(self._nodes)

    @property
    def connection(self) -> Optional["Connection"]:
        return self._connection

    @property
    def preview(self) -> Set[str]:
        return set(self._preview)

    def set_on_changed(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_changed = callback

    def is_selected(self, node_id: str) -> bool:
        return node_id in self._nodes

    def is_empty(self) -> bool:
        return not self._nodes and self._connection is None

    def select_node(self, node_id: str, additive: bool = False, toggle: bool = True) -> bool:
        """
        Выделить узел.

        Args:
            node_id: Идентификатор узла
            additive: Добавить к текущему выделению
            toggle: В аддитивном режиме снимать выделение с уже выделенного узла

        Returns:
            True, если узел остался выделенным.
        """
        self._connection = None
        if additive:
            if node_id in self._nodes and toggle:
                self._nodes.discard(node_id)
                self._notify()
                return False
            self._nodes.add(node_id)
        else:
            self._nodes = {node_id}
        self._notify()
        return True

    def select_nodes(self, node_ids: Iterable[str], additive: bool = False) -> None:
        self._connection = None
        if additive:
            self._nodes.update(node_ids)
        else:
            self._nodes = set(node_ids)
        self._notify()

    def select_connection(self, connection: "Connection") -> None:
        self._nodes.clear()
        self._connection = connection
        self._notify()

    def discard_node(self, node_id: str) -> None:
        if node_id in self._nodes or node_id in self._preview:
            self._nodes.discard(node_id)
            self._preview.discard(node_id)
            self._notify()

    def clear_nodes(self) -> None:
        if self._nodes:
            self._nodes.clear()
            self._notify()

    def clear_connection(self) -> None:
        if self._connection is not None:
            self._connection = None
            self._notify()

    def clear(self) -> None:
        changed = bool(self._nodes or self._preview) or self._connection is not None
        self._nodes.clear()
        self._preview.clear()
        self._connection = None
        if changed:
            self._notify()

    def set_preview(self, node_ids: Iterable[str]) -> None:
        preview = set(node_ids)
        if preview != self._preview:
            self._preview = preview
            self._notify()

    def clear_preview(self) -> None:
        self.set_preview(())

    def _notify(self) -> None:
        if self._on_changed is not None:
            self._on_changed()
