"""
YAML Tool Loader

Loads individual YAML tool definitions from `agent_studio/tools/defs/` and
converts them into provider-neutral ToolDefinition instances whose
`parameters` field is a JSON-schema object.

YAML schema (per file):

id: execute_shell
name: execute_shell
description: Execute a shell command within the project directory
manipulations:
  - shell.exec
parameters:
  - name: command
    type: string
    description: The shell command to execute
    required: true
  - name: timeout
    type: number
    required: false
    minimum: 1

"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List

import yaml

from ..provider_ir import ToolDefinition


DEFAULT_DEFS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "tools", "defs")

REQUIRED_TOP_LEVEL_FIELDS = ["id", "name", "description", "parameters"]

# Per-parameter keys copied verbatim into the JSON schema property.
_SCHEMA_PASSTHROUGH = ("enum", "default", "items", "minimum", "maximum", "pattern")


@dataclass
class LoadedTools:
    tools: List[ToolDefinition]
    manipulations_by_id: Dict[str, List[str]]

    def by_name(self) -> Dict[str, ToolDefinition]:
        return {tool.name: tool for tool in self.tools}


def _validate_tool_dict(tool_data: Dict[str, Any], file_path: str) -> None:
    for field in REQUIRED_TOP_LEVEL_FIELDS:
        if field not in tool_data:
            raise ValueError(f"Tool YAML missing required field '{field}' in {file_path}")
    if not isinstance(tool_data.get("parameters") or [], list):
        raise ValueError(f"Tool YAML 'parameters' must be a list in {file_path}")


def _to_json_schema(params: List[Dict[str, Any]]) -> Dict[str, Any]:
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for p in params or []:
        name = p.get("name")
        if not name:
            raise ValueError(f"Tool parameter without a name: {p!r}")
        prop: Dict[str, Any] = {"type": p.get("type", "string")}
        if p.get("description"):
            prop["description"] = p["description"]
        for key in _SCHEMA_PASSTHROUGH:
            if key in p:
                prop[key] = p[key]
        properties[name] = prop
        if p.get("required"):
            required.append(name)
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _to_tool(tool_data: Dict[str, Any]) -> ToolDefinition:
    return ToolDefinition(
        name=str(tool_data.get("name")),
        description=str(tool_data.get("description") or "").strip(),
        parameters=_to_json_schema(tool_data.get("parameters") or []),
    )


def load_yaml_tools(defs_dir: str = DEFAULT_DEFS_DIR) -> LoadedTools:
    """
    Load all YAML tool definitions from the given directory.

    Returns:
        LoadedTools: list of ToolDefinition and manipulations mapping.
    """
    if not os.path.isdir(defs_dir):
        raise FileNotFoundError(f"Tools definitions directory not found: {defs_dir}")

    tools: List[ToolDefinition] = []
    manipulations_by_id: Dict[str, List[str]] = {}
    seen: Dict[str, str] = {}

    for fname in sorted(os.listdir(defs_dir)):
        if not fname.endswith(".yaml") and not fname.endswith(".yml"):
            continue
        path = os.path.join(defs_dir, fname)
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        _validate_tool_dict(data, path)
        tool = _to_tool(data)
        if tool.name in seen:
            raise ValueError(f"Duplicate tool name '{tool.name}' in {path} and {seen[tool.name]}")
        seen[tool.name] = path
        tools.append(tool)

        tool_id = data.get("id") or data.get("name")
        manipulations_by_id[tool_id] = list(data.get("manipulations", []))

    return LoadedTools(tools=tools, manipulations_by_id=manipulations_by_id)
