"""User-authored node specs and their conversion to NodeDefinitions.

A spec is a JSON-friendly dict:

    {
        "id": "my_node",
        "label": "My node",
        "category": "Custom",
        "inputs": ["Value"],
        "outputs": ["Result"],
        "constants": [{"key": "factor", "default": "2"}],
        "script": "{{output.Result}} = {{input.Value}} * {{config.factor}}",
        "description": "",
        "createdAt": "...",
        "updatedAt": "...",
    }
"""

from __future__ import annotations

import copy
import re
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from nodeflow import log
from nodeflow.nodegraph.definition import (
    ControlKind,
    ControlSpec,
    ExecutionMode,
    NodeDefinition,
    ScriptTemplate,
)

if TYPE_CHECKING:
    from nodeflow.nodegraph.persistence import PersistenceStore

STORAGE_KEY = "customNodes"
DEFAULT_CONSTANT_PLACEHOLDER = "# set value"

_WHITESPACE_RE = re.compile(r"\s+")
_NON_IDENT_RE = re.compile(r"[^A-Za-z0-9_]")


def sanitize_id(value: Any) -> str:
    text = "" if value is None else str(value)
    return _NON_IDENT_RE.sub("_", _WHITESPACE_RE.sub("_", text.strip()))


def normalize_list(value: Any) -> List[str]:
    """Trimmed, de-duplicated names from a list or a newline-separated string."""
    if isinstance(value, str):
        items = value.splitlines()
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return []

    result: List[str] = []
    for item in items:
        name = "" if item is None else str(item).strip()
        if name and name not in result:
            result.append(name)
    return result


def normalize_constants(constants: Any) -> List[Dict[str, str]]:
    if not isinstance(constants, (list, tuple)):
        return []
    seen = set()
    result = []
    for constant in constants:
        if not isinstance(constant, dict):
            continue
        raw_key = constant.get("key") if isinstance(constant.get("key"), str) else constant.get("id")
        key = sanitize_id(raw_key)
        if not key or key in seen:
            continue
        seen.add(key)

        default = constant.get("default")
        if not (isinstance(default, str) and default.strip()):
            default = constant.get("value")
        if not (isinstance(default, str) and default.strip()):
            default = DEFAULT_CONSTANT_PLACEHOLDER
        result.append({"key": key, "default": default})
    return result


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_spec(spec: Optional[dict], previous: Optional[dict] = None) -> dict:
    """Fill defaults and clean up a spec. `previous` keeps the original createdAt."""
    spec = spec or {}
    previous = previous or {}
    label = str(spec.get("label") or "").strip()
    category = str(spec.get("category") or "").strip()
    now = _now_iso()

    spec_id = sanitize_id(spec.get("id") or spec.get("identifier") or "")
    if not spec_id and label:
        spec_id = sanitize_id(label)
    if not spec_id:
        spec_id = f"custom_node_{int(time.time() * 1000)}"

    script = spec.get("script")
    description = spec.get("description")
    return {
        "id": spec_id,
        "label": label or "Untitled node",
        "category": category or "Custom",
        "inputs": normalize_list(spec.get("inputs")),
        "outputs": normalize_list(spec.get("outputs")),
        "constants": normalize_constants(spec.get("constants")),
        "script": script.replace("\r\n", "\n") if isinstance(script, str) else "",
        "description": description if isinstance(description, str) else "",
        "createdAt": previous.get("createdAt") or spec.get("createdAt") or now,
        "updatedAt": spec.get("updatedAt") or previous.get("updatedAt") or now,
    }


def spec_to_definition(spec: dict) -> NodeDefinition:
    normalized = normalize_spec(spec, spec)
    return NodeDefinition(
        id=normalized["id"],
        label=normalized["label"],
        category=normalized["category"],
        execution=ExecutionMode.SCRIPT,
        inputs=tuple(normalized["inputs"]),
        outputs=tuple(normalized["outputs"]),
        controls=tuple(
            ControlSpec(
                key=constant["key"],
                kind=ControlKind.TEXT_BOX,
                default=constant["default"],
                placeholder=constant["default"],
            )
            for constant in normalized["constants"]
        ),
        script=ScriptTemplate(normalized["script"]),
        description=normalized["description"],
        spec_id=normalized["id"],
    )


def specs_to_definitions(specs: Iterable[dict]) -> List[NodeDefinition]:
    """Convert specs; the first spec with a given id wins."""
    definitions: List[NodeDefinition] = []
    seen = set()
    for spec in specs or []:
        definition = spec_to_definition(spec)
        if definition.id in seen:
            continue
        seen.add(definition.id)
        definitions.append(definition)
    return definitions


SAMPLE_NODE_TEMPLATES: List[dict] = [
    {
        "id": "sample_log_message",
        "label": "Sample: Log Message",
        "category": "Samples",
        "description": "Writes a constant message and exposes it as an output.",
        "inputs": [],
        "outputs": ["LoggedMessage"],
        "constants": [{"key": "message", "default": '"Hello from custom node"'}],
        "script": "\n".join([
            "Write-Host {{config.message}}",
            "{{output.LoggedMessage}} = {{config.message}}",
        ]),
    },
    {
        "id": "sample_math_add",
        "label": "Sample: Sum Inputs",
        "category": "Samples",
        "description": "Adds two incoming values.",
        "inputs": ["FirstValue", "SecondValue"],
        "outputs": ["Total"],
        "constants": [{"key": "castAsInt", "default": "$false"}],
        "script": "\n".join([
            "if ({{config.castAsInt}}) {",
            "  $first = [int]({{input.FirstValue}})",
            "  $second = [int]({{input.SecondValue}})",
            "} else {",
            "  $first = {{input.FirstValue}}",
            "  $second = {{input.SecondValue}}",
            "}",
            "{{output.Total}} = $first + $second",
        ]),
    },
    {
        "id": "sample_invoke_command",
        "label": "Sample: Invoke ScriptBlock",
        "category": "Samples",
        "description": "Invokes a script block with one input argument.",
        "inputs": ["ScriptInput"],
        "outputs": ["Result"],
        "constants": [{"key": "scriptBlock", "default": '[ScriptBlock]::Create("param($value) $value")'}],
        "script": "\n".join([
            "$__sb = {{config.scriptBlock}}",
            "{{output.Result}} = $__sb.Invoke({{input.ScriptInput}})",
        ]),
    },
]


def create_empty_spec() -> dict:
    return {
        "id": "",
        "label": "",
        "category": "Custom",
        "inputs": [],
        "outputs": [],
        "constants": [{"key": "note", "default": "# describe behavior"}],
        "script": "\n".join([
            "# Use {{input.Name}} to reference incoming values,",
            "# {{config.key}} for constant fields, and {{output.Result}} for outputs.",
        ]),
    }


def import_sample_spec(sample_id: str) -> Optional[dict]:
    for template in SAMPLE_NODE_TEMPLATES:
        if template["id"] == sample_id:
            return copy.deepcopy(template)
    return None


class CustomNodeStore:
    """User node specs persisted under one key of a PersistenceStore."""

    def __init__(self, store: "PersistenceStore", key: str = STORAGE_KEY):
        self.store = store
        self.key = key

    def _read(self) -> List[dict]:
        try:
            raw = self.store.load(self.key)
        except Exception as e:
            log.error(e, "Failed to read custom node specs")
            return []
        if not isinstance(raw, list):
            return []
        specs: List[dict] = []
        seen = set()
        for item in raw:
            if not isinstance(item, dict):
                continue
            spec = normalize_spec(item, item)
            if spec["id"] in seen:
                continue
            seen.add(spec["id"])
            specs.append(spec)
        return specs

    def list_specs(self) -> List[dict]:
        return sorted(self._read(), key=lambda spec: spec["label"].lower())

    def get_spec(self, spec_id: str) -> Optional[dict]:
        for spec in self._read():
            if spec["id"] == spec_id:
                return spec
        return None

    def save_spec(self, spec: dict) -> dict:
        """Insert or replace by id. Returns the stored, normalized spec."""
        specs = self._read()
        previous = next((s for s in specs if s["id"] == sanitize_id((spec or {}).get("id"))), None)
        normalized = normalize_spec(spec, previous)
        normalized["updatedAt"] = _now_iso()
        if previous is not None:
            normalized["createdAt"] = previous["createdAt"]
            specs[specs.index(previous)] = normalized
        else:
            specs.append(normalized)
        self.store.save(self.key, specs)
        return normalized

    def delete_spec(self, spec_id: str) -> List[dict]:
        specs = [s for s in self._read() if s["id"] != spec_id]
        self.store.save(self.key, specs)
        return specs

    def duplicate_spec(self, spec_id: str) -> Optional[dict]:
        """Copy a spec under a fresh `{id}_copy[_N]` id and label."""
        source = self.get_spec(spec_id)
        if source is None:
            return None
        taken = {s["id"] for s in self._read()}
        new_id = f"{source['id']}_copy"
        suffix = 2
        while new_id in taken:
            new_id = f"{source['id']}_copy_{suffix}"
            suffix += 1
        clone = copy.deepcopy(source)
        clone.update({"id": new_id, "label": f"{source['label']} (copy)", "createdAt": None, "updatedAt": None})
        return self.save_spec(clone)

    def definitions(self) -> List[NodeDefinition]:
        return specs_to_definitions(self.list_specs())
