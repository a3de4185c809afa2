"""Palette - hierarchical catalog of node definitions.

PaletteTree stores items in an arena keyed by id with parent pointers,
so ancestor checks are a walk up the parent chain. PaletteController
connects the tree to the graph library, persistence and user prompts.
"""

from __future__ import annotations

import inspect
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

from nodeflow import log
from nodeflow.nodegraph.definition import NodeDefinition

if TYPE_CHECKING:
    from nodeflow.nodegraph.graph import NodeGraph
    from nodeflow.nodegraph.graph_data import NodeInstance
    from nodeflow.nodegraph.interaction import InteractionController
    from nodeflow.nodegraph.persistence import PersistenceStore

ROOT_ID = "dir:root"
ROOT_NAME = "Nodes"
NODE_PREFIX = "node:"
DIR_PREFIX = "dir:"


class PaletteError(ValueError):
    pass


class PaletteItemKind(Enum):
    DIRECTORY = "directory"
    NODE = "node"


@dataclass
class PaletteItem:
    id: str
    kind: PaletteItemKind
    name: str = ""
    definition_id: Optional[str] = None
    parent_id: Optional[str] = None
    children: List[str] = field(default_factory=list)
    collapsed: bool = False
    generated: bool = False

    @property
    def is_directory(self) -> bool:
        return self.kind is PaletteItemKind.DIRECTORY


@dataclass(frozen=True)
class DropTarget:
    """Insertion point: position `index` among `parent_id`'s children."""
    parent_id: str
    index: int


def node_item_id(definition_id: str) -> str:
    return NODE_PREFIX + definition_id


class PaletteTree:
    """
    Directory tree whose leaves reference definition ids.

    Exactly one root. Each definition id appears at most once
    (leaf ids are derived from it); ensure_integrity() makes it exactly
    once for a given library.
    """

    def __init__(self):
        self.items: Dict[str, PaletteItem] = {
            ROOT_ID: PaletteItem(ROOT_ID, PaletteItemKind.DIRECTORY, ROOT_NAME),
        }

    @property
    def root(self) -> PaletteItem:
        return self.items[ROOT_ID]

    def get(self, item_id: str) -> Optional[PaletteItem]:
        return self.items.get(item_id)

    def _require(self, item_id: str) -> PaletteItem:
        item = self.items.get(item_id)
        if item is None:
            raise PaletteError(f"Unknown palette item '{item_id}'")
        return item

    def _require_directory(self, item_id: str) -> PaletteItem:
        item = self._require(item_id)
        if not item.is_directory:
            raise PaletteError(f"Palette item '{item_id}' is not a directory")
        return item

    # --- Construction ---

    @classmethod
    def default_for(cls, definitions: Iterable[NodeDefinition]) -> "PaletteTree":
        """One generated directory per category, categories sorted by name."""
        tree = cls()
        by_category: Dict[str, List[NodeDefinition]] = {}
        for definition in definitions:
            by_category.setdefault(definition.category or "Custom", []).append(definition)

        for category in sorted(by_category, key=str.lower):
            directory_id = tree.create_directory(ROOT_ID, category, generated=True)
            for definition in by_category[category]:
                tree.insert_definition(definition.id, directory_id)
        return tree

    @classmethod
    def from_dict(cls, data: dict) -> "PaletteTree":
        """
        Rebuild from the nested JSON form produced by to_dict().

        Raises:
            PaletteError: the root is missing or malformed.
        """
        if not isinstance(data, dict) or data.get("type") != "directory":
            raise PaletteError("Palette root must be a directory")

        tree = cls()
        root = tree.root
        root.name = str(data.get("name") or ROOT_NAME)
        root.collapsed = bool((data.get("meta") or {}).get("collapsed", False))
        tree._load_children(ROOT_ID, data.get("children") or [])
        return tree

    def _load_children(self, parent_id: str, children: list) -> None:
        for child in children:
            if not isinstance(child, dict):
                continue
            kind = child.get("type")
            meta = child.get("meta") or {}
            if kind == "node":
                definition_id = child.get("definitionId") or _strip_prefix(child.get("id", ""), NODE_PREFIX)
                if not definition_id or node_item_id(definition_id) in self.items:
                    continue
                self.insert_definition(definition_id, parent_id)
            elif kind == "directory":
                directory_id = str(child.get("id") or "")
                if not directory_id.startswith(DIR_PREFIX) or directory_id in self.items:
                    directory_id = self._new_directory_id()
                item = PaletteItem(
                    directory_id,
                    PaletteItemKind.DIRECTORY,
                    str(child.get("name") or "Folder"),
                    collapsed=bool(meta.get("collapsed", False)),
                    generated=bool(meta.get("generated", False)),
                )
                self._attach(item, parent_id, None)
                self._load_children(directory_id, child.get("children") or [])

    def to_dict(self, item_id: str = ROOT_ID) -> dict:
        item = self._require(item_id)
        if not item.is_directory:
            return {"id": item.id, "type": "node", "definitionId": item.definition_id}
        return {
            "id": item.id,
            "type": "directory",
            "name": item.name,
            "meta": {"collapsed": item.collapsed, "generated": item.generated},
            "children": [self.to_dict(child_id) for child_id in item.children],
        }

    # --- Traversal ---

    def walk(self, item_id: str = ROOT_ID, visible_only: bool = False) -> Iterator[Tuple[PaletteItem, int]]:
        """Depth-first (item, depth) pairs below `item_id`, excluding it."""
        stack = [(child_id, 0) for child_id in reversed(self._require(item_id).children)]
        while stack:
            child_id, depth = stack.pop()
            item = self.items[child_id]
            yield item, depth
            if item.is_directory and not (visible_only and item.collapsed):
                stack.extend((grandchild, depth + 1) for grandchild in reversed(item.children))

    def definition_ids(self) -> List[str]:
        return [item.definition_id for item, _ in self.walk() if not item.is_directory]

    def collect_definition_ids(self, item_id: str) -> List[str]:
        item = self._require(item_id)
        if not item.is_directory:
            return [item.definition_id]
        return [child.definition_id for child, _ in self.walk(item_id) if not child.is_directory]

    def directory_by_name(self, name: str) -> Optional[PaletteItem]:
        for item, _ in self.walk():
            if item.is_directory and item.name == name:
                return item
        return None

    def is_descendant(self, ancestor_id: str, item_id: str) -> bool:
        """True if `item_id` lies strictly below `ancestor_id`."""
        current = self.items.get(item_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id == ancestor_id:
                return True
            current = self.items.get(current.parent_id)
        return False

    def index_in_parent(self, item_id: str) -> int:
        item = self._require(item_id)
        if item.parent_id is None:
            return 0
        return self.items[item.parent_id].children.index(item_id)

    # --- Mutation ---

    def _new_directory_id(self) -> str:
        while True:
            candidate = DIR_PREFIX + secrets.token_hex(4)
            if candidate not in self.items:
                return candidate

    def _attach(self, item: PaletteItem, parent_id: str, index: Optional[int]) -> None:
        parent = self._require_directory(parent_id)
        self.items[item.id] = item
        item.parent_id = parent_id
        if index is None or index > len(parent.children):
            parent.children.append(item.id)
        else:
            parent.children.insert(max(index, 0), item.id)

    def create_directory(
        self,
        parent_id: str = ROOT_ID,
        name: str = "New folder",
        index: Optional[int] = None,
        generated: bool = False,
    ) -> str:
        item = PaletteItem(self._new_directory_id(), PaletteItemKind.DIRECTORY, name, generated=generated)
        self._attach(item, parent_id, index)
        return item.id

    def rename_directory(self, item_id: str, name: str) -> None:
        self._require_directory(item_id).name = name

    def insert_definition(self, definition_id: str, parent_id: str = ROOT_ID, index: Optional[int] = None) -> str:
        item_id = node_item_id(definition_id)
        if item_id in self.items:
            raise PaletteError(f"Definition '{definition_id}' is already in the palette")
        item = PaletteItem(item_id, PaletteItemKind.NODE, definition_id=definition_id)
        self._attach(item, parent_id, index)
        return item_id

    def remove_item(self, item_id: str) -> List[str]:
        """
        Remove an item and its whole subtree.

        Returns:
            Definition ids that were referenced by removed leaves.
        """
        if item_id == ROOT_ID:
            raise PaletteError("The palette root cannot be removed")
        item = self._require(item_id)
        removed_definitions = self.collect_definition_ids(item_id)

        subtree = [item_id] + [child.id for child, _ in self.walk(item_id)] if item.is_directory else [item_id]
        parent = self.items[item.parent_id]
        parent.children.remove(item_id)
        for removed_id in subtree:
            del self.items[removed_id]
        return removed_definitions

    def toggle_collapsed(self, item_id: str) -> bool:
        item = self._require_directory(item_id)
        item.collapsed = not item.collapsed
        return item.collapsed

    def can_move(self, item_id: str, parent_id: str) -> bool:
        item = self.items.get(item_id)
        target = self.items.get(parent_id)
        if item is None or target is None or item_id == ROOT_ID or not target.is_directory:
            return False
        if item.is_directory and (parent_id == item_id or self.is_descendant(item_id, parent_id)):
            return False
        return True

    def move_item(self, item_id: str, parent_id: str, index: int) -> bool:
        """
        Move an item under `parent_id` at `index` (index before removal).

        Moving a directory into itself or one of its descendants is refused.

        Returns:
            True if the tree changed.
        """
        if not self.can_move(item_id, parent_id):
            return False

        item = self.items[item_id]
        origin = self.items[item.parent_id]
        origin_index = origin.children.index(item_id)
        target = self.items[parent_id]

        index = min(max(int(index), 0), len(target.children))
        if origin is target and origin_index < index:
            index -= 1
        if origin is target and origin_index == index:
            return False

        origin.children.pop(origin_index)
        target.children.insert(index, item_id)
        item.parent_id = parent_id
        return True

    def ensure_integrity(self, definitions: Iterable[NodeDefinition]) -> bool:
        """
        Make every library definition appear exactly once.

        Stale leaves are pruned; missing definitions are appended to the
        directory named after their category, or to the root.

        Returns:
            True if the tree changed.
        """
        definitions = list(definitions)
        known = {d.id for d in definitions}
        changed = False

        for item, _ in list(self.walk()):
            if not item.is_directory and item.definition_id not in known and item.id in self.items:
                self.remove_item(item.id)
                changed = True

        for definition in definitions:
            if node_item_id(definition.id) in self.items:
                continue
            directory = self.directory_by_name(definition.category or "Custom")
            self.insert_definition(definition.id, directory.id if directory else ROOT_ID)
            changed = True
        return changed

    # --- Drop placement ---

    def drop_target_for_item(self, item_id: str, pointer_y: float, top: float, height: float) -> Optional[DropTarget]:
        """
        Insertion point when hovering an item row.

        Directory rows take the item as their last child. Node rows insert
        before or after themselves depending on which half is hovered.
        """
        item = self.items.get(item_id)
        if item is None:
            return None
        if item.is_directory:
            return DropTarget(item.id, len(item.children))
        index = self.index_in_parent(item_id)
        if pointer_y >= top + height / 2:
            index += 1
        return DropTarget(item.parent_id, index)

    def drop_target_in_container(
        self,
        parent_id: str,
        pointer_y: float,
        child_spans: Sequence[Tuple[float, float]],
    ) -> DropTarget:
        """Insertion point inside a directory body given its children's (top, height) rows."""
        for index, (top, height) in enumerate(child_spans):
            if pointer_y < top + height / 2:
                return DropTarget(parent_id, index)
        return DropTarget(parent_id, len(child_spans))


def _strip_prefix(text: str, prefix: str) -> str:
    return text[len(prefix):] if text.startswith(prefix) else ""


@dataclass
class RemoveResult:
    """Outcome of a remove callback."""
    cancelled: bool = False
    removed_ids: Optional[List[str]] = None


# (definition ids, skip_confirm) -> bool | RemoveResult | None, possibly awaitable
RemoveCallback = Callable[[List[str], bool], Any]
# definition -> new NodeDefinition | None, possibly awaitable
DuplicateCallback = Callable[[NodeDefinition], Any]


async def _resolve(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class PaletteController:
    """
    Palette behaviour on top of PaletteTree.

    Keeps the tree in sync with the graph library, persists it, runs the
    drag-reorder gesture and delegates duplicate/remove to callbacks that
    may talk to a backing store. A failed callback leaves both the tree
    and the library as they were.
    """

    STORAGE_KEY = "palette"

    def __init__(
        self,
        graph: "NodeGraph",
        store: Optional["PersistenceStore"] = None,
        interaction: Optional["InteractionController"] = None,
        on_duplicate: Optional[DuplicateCallback] = None,
        on_remove: Optional[RemoveCallback] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        prompt: Optional[Callable[[str, str], Optional[str]]] = None,
        on_changed: Optional[Callable[[], None]] = None,
    ):
        self.graph = graph
        self.store = store
        self.interaction = interaction
        self.on_duplicate = on_duplicate
        self.on_remove = on_remove
        self.confirm = confirm
        self.prompt = prompt
        self._on_changed = on_changed

        self.tree = PaletteTree.default_for(graph.library.values())
        self.drag_item_id: Optional[str] = None
        self.drop_target: Optional[DropTarget] = None

        graph.add_listener(self._on_graph_event)

    def set_on_changed(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_changed = callback

    def _notify(self) -> None:
        if self._on_changed is not None:
            self._on_changed()

    def _on_graph_event(self, event: str) -> None:
        if event == "library":
            self.sync_library()

    # --- Persistence ---

    def load(self) -> None:
        data = None
        if self.store is not None:
            try:
                data = self.store.load(self.STORAGE_KEY)
            except Exception as e:
                log.warn(e, "Failed to load palette layout")
        if data:
            try:
                self.tree = PaletteTree.from_dict(data)
            except PaletteError as e:
                log.warn(e, "Stored palette layout is invalid, using default")
                self.tree = PaletteTree.default_for(self.graph.library.values())
        if self.tree.ensure_integrity(self.graph.library.values()) or not data:
            self.save()
        self._notify()

    def save(self) -> bool:
        if self.store is None:
            return False
        try:
            return self.store.save(self.STORAGE_KEY, self.tree.to_dict()) is not False
        except Exception as e:
            log.error(e, "Failed to save palette layout")
            return False

    def sync_library(self) -> None:
        if self.tree.ensure_integrity(self.graph.library.values()):
            self.save()
        self._notify()

    # --- Directories ---

    def toggle_collapsed(self, directory_id: str) -> bool:
        collapsed = self.tree.toggle_collapsed(directory_id)
        self.save()
        self._notify()
        return collapsed

    def prompt_create_directory(self, parent_id: str = ROOT_ID) -> Optional[str]:
        if self.prompt is None:
            return None
        name = self.prompt("Directory name", "New folder")
        if not name or not name.strip():
            return None
        directory_id = self.tree.create_directory(parent_id, name.strip())
        self.save()
        self._notify()
        return directory_id

    def rename_directory(self, directory_id: str, name: str) -> bool:
        if not name or not name.strip():
            return False
        self.tree.rename_directory(directory_id, name.strip())
        self.save()
        self._notify()
        return True

    async def remove_directory(self, directory_id: str) -> bool:
        """
        Delete a directory and every definition inside it.

        Asks for confirmation once, then hands all contained definition
        ids to the remove callback without a second confirmation.
        """
        directory = self.tree.get(directory_id)
        if directory is None or not directory.is_directory or directory_id == ROOT_ID:
            return False

        definition_ids = self.tree.collect_definition_ids(directory_id)
        if self.confirm is not None:
            message = f"Delete directory '{directory.name}'"
            if definition_ids:
                message += f" and {len(definition_ids)} node definition(s)"
            if not self.confirm(message + "?"):
                return False

        removed = await self._remove_definitions(definition_ids, skip_confirm=True)
        if removed is None:
            return False

        if directory_id in self.tree.items:
            self.tree.remove_item(directory_id)
        self._apply_library_without(removed)
        return True

    # --- Node items ---

    async def remove_node(self, item_id: str) -> bool:
        item = self.tree.get(item_id)
        if item is None or item.is_directory:
            return False
        removed = await self._remove_definitions([item.definition_id], skip_confirm=False)
        if removed is None or item.definition_id not in removed:
            return False
        self.tree.remove_item(item_id)
        self._apply_library_without(removed)
        return True

    async def _remove_definitions(self, definition_ids: List[str], skip_confirm: bool) -> Optional[List[str]]:
        """Run the remove callback. None means cancelled or failed."""
        if not definition_ids or self.on_remove is None:
            return list(definition_ids)
        try:
            result = await _resolve(self.on_remove(list(definition_ids), skip_confirm))
        except Exception as e:
            log.error(e, "Failed to remove node definitions")
            return None

        if result is False:
            return None
        if isinstance(result, RemoveResult):
            if result.cancelled:
                return None
            if result.removed_ids is not None:
                return list(result.removed_ids)
        return list(definition_ids)

    def _apply_library_without(self, definition_ids: Iterable[str]) -> None:
        removed = set(definition_ids)
        remaining = [d for d in self.graph.library.values() if d.id not in removed]
        self.graph.set_library(remaining)
        self.save()
        self._notify()

    async def duplicate_node(self, item_id: str) -> Optional[NodeDefinition]:
        """Duplicate a definition; the copy is placed right after the source item."""
        item = self.tree.get(item_id)
        if item is None or item.is_directory or self.on_duplicate is None:
            return None
        definition = self.graph.library.get(item.definition_id)
        if definition is None:
            return None

        try:
            duplicate = await _resolve(self.on_duplicate(definition))
        except Exception as e:
            log.error(e, f"Failed to duplicate node definition '{definition.id}'")
            return None
        if not isinstance(duplicate, NodeDefinition) or duplicate.id in self.graph.library:
            return None

        parent_id = item.parent_id or ROOT_ID
        self.tree.insert_definition(duplicate.id, parent_id, self.tree.index_in_parent(item_id) + 1)
        self.graph.set_library(list(self.graph.library.values()) + [duplicate], persist=False)
        self.save()
        self._notify()
        return duplicate

    def instantiate(self, definition_id: str) -> Optional["NodeInstance"]:
        """Click-to-place: put a new node at a free spot near the canvas corner."""
        definition = self.graph.library.get(definition_id)
        if definition is None:
            return None
        if self.interaction is not None:
            position = self.interaction.find_available_position()
            return self.graph.create_node(definition, position)
        return self.graph.create_node(definition)

    # --- Drag and drop ---

    def begin_drag(self, item_id: str) -> bool:
        if item_id == ROOT_ID or item_id not in self.tree.items:
            return False
        self.drag_item_id = item_id
        self.drop_target = None
        return True

    def _accept(self, target: Optional[DropTarget]) -> Optional[DropTarget]:
        if target is None or self.drag_item_id is None:
            self.drop_target = None
        elif self.tree.can_move(self.drag_item_id, target.parent_id):
            self.drop_target = target
        else:
            self.drop_target = None
        return self.drop_target

    def drag_over_item(self, item_id: str, pointer_y: float, top: float, height: float) -> Optional[DropTarget]:
        if item_id == self.drag_item_id:
            return self._accept(None)
        return self._accept(self.tree.drop_target_for_item(item_id, pointer_y, top, height))

    def drag_over_container(
        self,
        parent_id: str,
        pointer_y: float,
        child_spans: Sequence[Tuple[float, float]],
    ) -> Optional[DropTarget]:
        return self._accept(self.tree.drop_target_in_container(parent_id, pointer_y, child_spans))

    def drop(self) -> bool:
        item_id, target = self.drag_item_id, self.drop_target
        self.cancel_drag()
        if item_id is None or target is None:
            return False
        moved = self.tree.move_item(item_id, target.parent_id, target.index)
        if moved:
            self.save()
            self._notify()
        return moved

    def cancel_drag(self) -> None:
        self.drag_item_id = None
        self.drop_target = None
