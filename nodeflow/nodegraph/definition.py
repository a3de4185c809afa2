"""Node definitions - immutable templates that node instances are created from."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from nodeflow.nodegraph.auto_exec import HookContext

PLACEHOLDER_RE = re.compile(r"\{\{\s*(input|output|config)\.([A-Za-z0-9_]+)\s*\}\}")

RAW_SUFFIX = "__raw"

# (inputs, outputs, config) -> script text
ScriptFunction = Callable[[Mapping[str, str], Mapping[str, str], Mapping[str, Any]], str]
# Render hook returns an optional disposer.
RenderHook = Callable[["HookContext"], Optional[Callable[[], None]]]
AutoExecuteHook = Callable[["HookContext"], Any]


class ExecutionMode(Enum):
    SCRIPT = "script"
    UI = "ui"

    @classmethod
    def parse(cls, value) -> "ExecutionMode":
        if isinstance(value, cls):
            return value
        return cls.UI if str(value).lower() == "ui" else cls.SCRIPT


class ControlKind(Enum):
    TEXT_BOX = "TextBox"
    REFERENCE = "Reference"
    CHECK_BOX = "CheckBox"
    RADIO_BUTTON = "RadioButton"
    SELECT_BOX = "SelectBox"

    @classmethod
    def parse(cls, value) -> "ControlKind":
        if isinstance(value, cls):
            return value
        for kind in cls:
            if kind.value.lower() == str(value).lower():
                return kind
        return cls.TEXT_BOX

    @property
    def has_options(self) -> bool:
        return self in (ControlKind.SELECT_BOX, ControlKind.RADIO_BUTTON)


@dataclass(frozen=True)
class ControlSpec:
    """User-editable configuration field of a node."""
    key: str
    kind: ControlKind = ControlKind.TEXT_BOX
    default: Any = ""
    options: Tuple[str, ...] = ()
    binds_to_input: Optional[str] = None
    label: Optional[str] = None
    placeholder: str = ""

    def __post_init__(self):
        object.__setattr__(self, "kind", ControlKind.parse(self.kind))
        object.__setattr__(self, "options", tuple(str(o) for o in self.options))

    @property
    def display_label(self) -> str:
        return self.label or self.key

    @property
    def initial_value(self) -> Any:
        if self.default is None:
            return ""
        return self.default

    @classmethod
    def from_dict(cls, data: dict) -> "ControlSpec":
        return cls(
            key=str(data["key"]),
            kind=ControlKind.parse(data.get("type", data.get("kind", "TextBox"))),
            default=data.get("default", ""),
            options=tuple(data.get("options") or ()),
            binds_to_input=data.get("bindsToInput"),
            label=data.get("label"),
            placeholder=data.get("placeholder", ""),
        )


@dataclass(frozen=True)
class NodeDefinition:
    """
    Immutable node template.

    Port names are unique per side. Controls are unique by key.
    UI nodes emit no script text; their outputs are live config values.
    """
    id: str
    label: str
    category: str = "Custom"
    execution: ExecutionMode = ExecutionMode.SCRIPT
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    controls: Tuple[ControlSpec, ...] = ()
    script: Optional[ScriptFunction] = None
    initial_config: Mapping[str, Any] = field(default_factory=dict)
    render: Optional[RenderHook] = None
    auto_execute: Optional[AutoExecuteHook] = None
    chain_execution: bool = False
    preserve_config_keys: Tuple[str, ...] = ()
    description: str = ""
    spec_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "execution", ExecutionMode.parse(self.execution))
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        object.__setattr__(self, "controls", tuple(self.controls))
        object.__setattr__(self, "preserve_config_keys", tuple(self.preserve_config_keys))
        object.__setattr__(self, "initial_config", dict(self.initial_config or {}))

        for side, names in (("input", self.inputs), ("output", self.outputs)):
            if len(set(names)) != len(names):
                raise ValueError(f"Node definition '{self.id}' has duplicate {side} ports")
        keys = [c.key for c in self.controls]
        if len(set(keys)) != len(keys):
            raise ValueError(f"Node definition '{self.id}' has duplicate control keys")

    @property
    def is_ui(self) -> bool:
        return self.execution is ExecutionMode.UI

    @property
    def has_auto_execute(self) -> bool:
        return callable(self.auto_execute)

    @property
    def is_chain_entry(self) -> bool:
        return self.chain_execution and self.has_auto_execute

    def default_config(self) -> Dict[str, Any]:
        """Initial config overlaid with control defaults."""
        config = dict(self.initial_config)
        for control in self.controls:
            config[control.key] = control.initial_value
        return config

    def control(self, key: str) -> Optional[ControlSpec]:
        for control in self.controls:
            if control.key == key:
                return control
        return None

    def control_for_input(self, input_name: str) -> Optional[ControlSpec]:
        """Control that substitutes for an unwired input."""
        for control in self.controls:
            if control.binds_to_input == input_name:
                return control
        return None

    def keeps_config_key(self, key: str) -> bool:
        """Whether `key` survives a library reload on existing instances."""
        if key in self.preserve_config_keys:
            return True
        if key.endswith(RAW_SUFFIX):
            return key[: -len(RAW_SUFFIX)] in self.preserve_config_keys
        return False

    def emit_script(
        self,
        inputs: Mapping[str, str],
        outputs: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> str:
        match self.execution:
            case ExecutionMode.UI:
                return ""
            case ExecutionMode.SCRIPT:
                if self.script is None:
                    return ""
                text = self.script(inputs, outputs, config)
                return str(text) if text else ""


def expand_placeholders(
    text: str,
    inputs: Mapping[str, Any],
    outputs: Mapping[str, Any],
    config: Mapping[str, Any],
) -> str:
    """
    Single substitution pass over {{scope.key}} placeholders.

    Unknown keys are left verbatim.
    """
    scopes = {"input": inputs, "output": outputs, "config": config}

    def replace(match: re.Match) -> str:
        values = scopes[match.group(1)]
        key = match.group(2)
        if key in values:
            value = values[key]
            return "" if value is None else str(value)
        return match.group(0)

    return PLACEHOLDER_RE.sub(replace, text)


class ScriptTemplate:
    """Script function backed by placeholder text."""

    def __init__(self, text: str):
        self.text = (text or "").replace("\r\n", "\n")

    def __call__(
        self,
        inputs: Mapping[str, Any],
        outputs: Mapping[str, Any],
        config: Mapping[str, Any],
    ) -> str:
        if not self.text.strip():
            return ""
        return expand_placeholders(self.text, inputs, outputs, config)

    def __repr__(self) -> str:
        return f"ScriptTemplate({self.text!r})"
