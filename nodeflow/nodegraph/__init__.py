"""Node graph model, interaction and PowerShell compiler."""

from nodeflow.nodegraph.definition import ControlKind, ControlSpec, ExecutionMode, NodeDefinition, ScriptTemplate
from nodeflow.nodegraph.geometry import Point, Rect, Viewport
from nodeflow.nodegraph.graph import GraphError, NodeGraph
from nodeflow.nodegraph.graph_data import Connection, NodeInstance
from nodeflow.nodegraph.compiler import CompileError, CycleError, MissingInputError, generate_script
from nodeflow.nodegraph.flow_editor import FlowEditor

__all__ = [
    "ControlKind",
    "ControlSpec",
    "ExecutionMode",
    "NodeDefinition",
    "ScriptTemplate",
    "Point",
    "Rect",
    "Viewport",
    "GraphError",
    "NodeGraph",
    "Connection",
    "NodeInstance",
    "CompileError",
    "CycleError",
    "MissingInputError",
    "generate_script",
    "FlowEditor",
]
