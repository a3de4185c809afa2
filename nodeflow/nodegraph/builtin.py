"""Built-in node definitions shipped with the editor."""

from __future__ import annotations

from typing import Any, List, Mapping

from nodeflow.nodegraph.definition import (
    ControlKind,
    ControlSpec,
    ExecutionMode,
    NodeDefinition,
    ScriptTemplate,
)
from nodeflow.nodegraph.library import SAMPLE_NODE_TEMPLATES, specs_to_definitions
from nodeflow.nodegraph.literals import to_powershell_literal


def _restart_service(inputs: Mapping[str, str], outputs: Mapping[str, str], config: Mapping[str, Any]) -> str:
    force = " -Force" if config.get("Force") == "$true" else ""
    return f"Restart-Service -Name {inputs['Name']}{force}"


def _export_csv(inputs: Mapping[str, str], outputs: Mapping[str, str], config: Mapping[str, Any]) -> str:
    path = to_powershell_literal(config.get("Path") or "output.csv")
    encoding = config.get("Encoding") or "utf8"
    append = " -Append" if config.get("Mode") == "Append" else ""
    return (
        f"{inputs['InputObject']} | Export-Csv -Path {path} "
        f"-Encoding {encoding} -NoTypeInformation{append}"
    )


TEXT_VALUE = NodeDefinition(
    id="ui_text_value",
    label="Text Value",
    category="Inputs",
    execution=ExecutionMode.UI,
    outputs=("Value",),
    controls=(ControlSpec("Value", ControlKind.TEXT_BOX, default="", placeholder="Type a value"),),
    initial_config={"Value__raw": ""},
    preserve_config_keys=("Value",),
)

GET_PROCESS = NodeDefinition(
    id="get_process",
    label="Get Process",
    category="System",
    outputs=("Processes",),
    controls=(ControlSpec("Name", default="'*'", label="Process name"),),
    script=ScriptTemplate("{{output.Processes}} = Get-Process -Name {{config.Name}}"),
)

FILTER_OBJECTS = NodeDefinition(
    id="filter_objects",
    label="Filter Objects",
    category="Pipeline",
    inputs=("InputObject",),
    outputs=("Filtered",),
    controls=(ControlSpec("Filter", default="$_.CPU -gt 10"),),
    script=ScriptTemplate(
        "{{output.Filtered}} = {{input.InputObject}} | Where-Object { {{config.Filter}} }"
    ),
)

WRITE_OUTPUT = NodeDefinition(
    id="write_output",
    label="Write Output",
    category="Output",
    inputs=("InputObject",),
    script=ScriptTemplate("Write-Output {{input.InputObject}}"),
)

RESTART_SERVICE = NodeDefinition(
    id="restart_service",
    label="Restart Service",
    category="System",
    inputs=("Name",),
    controls=(
        ControlSpec("ServiceName", default="", binds_to_input="Name", label="Service name"),
        ControlSpec("Force", ControlKind.CHECK_BOX, default=False),
    ),
    script=_restart_service,
)

EXPORT_CSV = NodeDefinition(
    id="export_csv",
    label="Export CSV",
    category="Output",
    inputs=("InputObject",),
    controls=(
        ControlSpec("Path", ControlKind.REFERENCE, default="output.csv"),
        ControlSpec("Encoding", ControlKind.SELECT_BOX, default="utf8", options=("utf8", "ascii", "unicode")),
        ControlSpec("Mode", ControlKind.RADIO_BUTTON, default="Overwrite", options=("Overwrite", "Append")),
    ),
    script=_export_csv,
)


def builtin_definitions(include_samples: bool = True) -> List[NodeDefinition]:
    definitions = [
        TEXT_VALUE,
        GET_PROCESS,
        FILTER_OBJECTS,
        WRITE_OUTPUT,
        RESTART_SERVICE,
        EXPORT_CSV,
    ]
    if include_samples:
        definitions.extend(specs_to_definitions(SAMPLE_NODE_TEMPLATES))
    return definitions
