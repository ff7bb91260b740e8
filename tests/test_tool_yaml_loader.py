from pathlib import Path

import pytest

from agent_studio.compilation.tool_yaml_loader import load_yaml_tools


EXPECTED_TOOLS = {
    "read_file", "write_file", "list_directory", "create_directory", "delete_file", "move_file",
    "execute_shell", "web_search", "get_system_info", "install_package", "git_operation",
    "deploy", "manage_process", "set_env_variable",
}


def test_load_yaml_tools_success():
    loaded = load_yaml_tools()
    tools = loaded.by_name()
    assert set(tools) == EXPECTED_TOOLS
    m = loaded.manipulations_by_id
    assert "execute_shell" in m and "shell.exec" in m["execute_shell"]

    shell = tools["execute_shell"].parameters
    assert shell["required"] == ["command"]
    assert shell["properties"]["timeout"] == {
        "type": "number",
        "description": "Timeout in milliseconds (default: 30000). Ignored for background processes.",
        "minimum": 1,
    }
    assert tools["manage_process"].properties["action"]["enum"] == ["list", "kill", "restart"]
    assert tools["get_system_info"].parameters == {"type": "object", "properties": {}}


def test_load_yaml_tools_required_fields(tmp_path: Path):
    # Create a minimal invalid YAML missing required fields
    bad = tmp_path / "bad.yaml"
    bad.write_text("""
name: missing_required_id
description: no id or parameters
""".strip())
    with pytest.raises(ValueError):
        load_yaml_tools(str(tmp_path))


def test_load_yaml_tools_duplicate_names(tmp_path: Path):
    body = "id: {id}\nname: same\ndescription: d\nparameters: []\n"
    (tmp_path / "a.yaml").write_text(body.format(id="a"))
    (tmp_path / "b.yaml").write_text(body.format(id="b"))
    with pytest.raises(ValueError):
        load_yaml_tools(str(tmp_path))


def test_load_yaml_tools_missing_dir(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_yaml_tools(str(tmp_path / "nope"))
